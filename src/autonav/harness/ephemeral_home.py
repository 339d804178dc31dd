"""Throwaway per-session home directories for subprocess backends."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class EphemeralHome:
    """A directory owned by one session and removed exactly once."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._cleaned = False

    @property
    def cleaned(self) -> bool:
        return self._cleaned

    def cleanup(self) -> None:
        if self._cleaned:
            return
        self._cleaned = True
        try:
            shutil.rmtree(self.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to remove ephemeral home %s: %s", self.path, exc)

    def __enter__(self) -> "EphemeralHome":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.cleanup()


def home_base_dir(harness: str) -> Path:
    """Base directory for homes: ``AUTONAV_<HARNESS>_HOME`` or the system temp dir."""
    env_name = f"AUTONAV_{harness.upper().replace('-', '_')}_HOME"
    override = os.environ.get(env_name)
    return Path(override) if override else Path(tempfile.gettempdir())


def create_ephemeral_home(
    harness: str,
    setup: Optional[Callable[[Path], None]] = None,
) -> EphemeralHome:
    """Create ``autonav-<harness>-<id>`` and populate it with ``setup``.

    The directory is removed before the exception propagates when ``setup`` fails.

    Args:
        harness (str): Harness name used in the directory name and env override.
        setup (Optional[Callable[[Path], None]]): Callback that writes
            backend-specific files into the new directory.

    Returns:
        EphemeralHome: Handle whose ``cleanup`` removes the directory.
    """
    base = home_base_dir(harness)
    base.mkdir(parents=True, exist_ok=True)
    path = base / f"autonav-{harness}-{uuid.uuid4().hex[:8]}"
    path.mkdir()
    home = EphemeralHome(path)
    if setup is not None:
        try:
            setup(path)
        except Exception:
            home.cleanup()
            raise
    logger.debug("Created ephemeral home %s", path)
    return home
