"""Global and per-navigator configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

CONFIG_DIR_ENV_VAR = "AUTONAV_CONFIG_DIR"
GLOBAL_CONFIG_FILE = "config.yaml"
NAVIGATOR_CONFIG_FILE = "config.json"
NAVIGATOR_PROMPT_FILE = "CLAUDE.md"


def _as_dict(value: Any) -> dict[str, Any]:
    """Return ``value`` only when it is a dictionary."""
    return value if isinstance(value, dict) else {}


def _read_mapping(path: Path) -> dict[str, Any]:
    """Parse a YAML (or JSON) file into a dict; a missing file yields ``{}``.

    Raises:
        ValueError: If the file exists but cannot be parsed.
    """
    if not path.exists():
        return {}
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Malformed config file {path}: {exc}") from exc
    return _as_dict(loaded)


def resolve_config_dir(override: Optional[str] = None) -> Path:
    """Global config directory: override, then ``AUTONAV_CONFIG_DIR``, then ``~/.config/autonav``."""
    if override:
        return Path(override).expanduser().resolve()
    env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir).expanduser().resolve()
    return Path.home() / ".config" / "autonav"


@dataclass(frozen=True)
class GlobalConfig:
    """Defaults from ``<config_dir>/config.yaml``; CLI flags override them.

    Attributes:
        harness: Default harness type, if configured.
        memento: Raw ``memento`` section (model, nav_model, max_turns,
            review_rounds, max_wait_seconds).
        standup: Raw ``standup`` section (model, max_turns, max_budget_usd).
    """

    harness: Optional[str] = None
    memento: dict[str, Any] = field(default_factory=dict)
    standup: dict[str, Any] = field(default_factory=dict)


def load_global_config(config_dir: Path) -> GlobalConfig:
    raw = _read_mapping(config_dir / GLOBAL_CONFIG_FILE)
    harness = _as_dict(raw.get("harness")).get("type") or raw.get("harness")
    return GlobalConfig(
        harness=str(harness).strip() if isinstance(harness, str) and harness.strip() else None,
        memento=_as_dict(raw.get("memento")),
        standup=_as_dict(raw.get("standup")),
    )


@dataclass(frozen=True)
class NavigatorConfig:
    """A navigator directory: identity, system prompt, and workspace scope."""

    directory: Path
    name: str
    description: str
    system_prompt: str
    knowledge_base_path: Path
    working_directories: tuple[Path, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict)

    def sandbox_enabled(self, operation: str, default: bool = True) -> bool:
        """Per-operation sandbox flag from ``config.json`` ``sandbox.<operation>.enabled``."""
        enabled = _as_dict(_as_dict(self.raw.get("sandbox")).get(operation)).get("enabled")
        return enabled if isinstance(enabled, bool) else default


def _resolve_nav_path(raw_path: str, base: Path) -> Path:
    path = Path(raw_path).expanduser()
    return path if path.is_absolute() else (base / path).resolve()


def load_navigator(directory: str | Path, *, require_prompt: bool = True) -> NavigatorConfig:
    """Load a navigator from its directory.

    Args:
        directory (str | Path): Navigator root containing ``CLAUDE.md`` and an
            optional ``config.json``.
        require_prompt (bool): Raise when ``CLAUDE.md`` is missing.

    Returns:
        NavigatorConfig: Parsed navigator settings with defaults applied.

    Raises:
        FileNotFoundError: If the directory (or a required ``CLAUDE.md``) is missing.
        ValueError: If ``config.json`` cannot be parsed.
    """
    root = Path(directory).expanduser().resolve()
    if not root.is_dir():
        raise FileNotFoundError(f"Navigator directory not found: {root}")

    prompt_path = root / NAVIGATOR_PROMPT_FILE
    if prompt_path.exists():
        system_prompt = prompt_path.read_text(encoding="utf-8")
    elif require_prompt:
        raise FileNotFoundError(f"Navigator {NAVIGATOR_PROMPT_FILE} not found: {prompt_path}")
    else:
        system_prompt = ""

    raw = _read_mapping(root / NAVIGATOR_CONFIG_FILE)
    name = str(raw.get("name") or "").strip() or root.name
    description = str(raw.get("description") or "").strip()
    kb_raw = raw.get("knowledgeBasePath")
    knowledge_base = _resolve_nav_path(kb_raw, root) if isinstance(kb_raw, str) and kb_raw else root / "knowledge"
    working = raw.get("workingDirectories")
    working_dirs = tuple(
        _resolve_nav_path(p, root) for p in (working if isinstance(working, list) else []) if isinstance(p, str)
    )
    return NavigatorConfig(
        directory=root,
        name=name,
        description=description,
        system_prompt=system_prompt,
        knowledge_base_path=knowledge_base,
        working_directories=working_dirs,
        raw=raw,
    )
