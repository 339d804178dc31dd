"""Standup output directory layout."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

REPORTS_DIR = "reports"
SYNC_DIR = "sync"
SUMMARY_FILE = "summary.md"


def standup_timestamp(now: Optional[datetime] = None) -> str:
    """UTC ISO timestamp to the second with colons replaced for filesystem safety."""
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H-%M-%S")


def create_standup_dir(config_dir: Path, now: Optional[datetime] = None) -> Path:
    """Create ``<config_dir>/standups/<timestamp>/{reports,sync}`` and return the standup dir."""
    standup_dir = Path(config_dir) / "standups" / standup_timestamp(now)
    (standup_dir / REPORTS_DIR).mkdir(parents=True, exist_ok=True)
    (standup_dir / SYNC_DIR).mkdir(parents=True, exist_ok=True)
    return standup_dir
