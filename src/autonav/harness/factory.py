"""Resolve which harness backend to use and construct it."""

from __future__ import annotations

import os
from typing import Any, Mapping, Optional, cast

from .types import Harness, HarnessType

HARNESS_ENV_VAR = "AUTONAV_HARNESS"
DEFAULT_HARNESS: HarnessType = "claude-code"
VALID_HARNESS_TYPES: tuple[HarnessType, ...] = ("claude-code", "chibi")


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def validate_harness_type(value: str) -> HarnessType:
    """Normalize and validate a harness name.

    Raises:
        ValueError: If ``value`` is not a supported harness type.
    """
    normalized = str(value or "").strip().lower()
    if normalized not in VALID_HARNESS_TYPES:
        raise ValueError(
            f'Invalid harness type: "{value}". Valid types: {", ".join(VALID_HARNESS_TYPES)}'
        )
    return cast(HarnessType, normalized)


def resolve_harness_type(
    explicit: Optional[str] = None,
    navigator_config: Optional[Mapping[str, Any]] = None,
) -> HarnessType:
    """Pick a harness type by precedence.

    Order: explicit argument, ``AUTONAV_HARNESS``, the navigator config's
    ``harness.type``, then the ``claude-code`` default.

    Args:
        explicit (Optional[str]): Value from a CLI flag or caller.
        navigator_config (Optional[Mapping[str, Any]]): Parsed navigator config
            that may contain ``{"harness": {"type": ...}}``.

    Returns:
        HarnessType: The validated harness type.
    """
    if explicit:
        return validate_harness_type(explicit)
    env_value = os.environ.get(HARNESS_ENV_VAR)
    if env_value:
        return validate_harness_type(env_value)
    configured = _as_dict(dict(navigator_config or {}).get("harness")).get("type")
    if configured:
        return validate_harness_type(str(configured))
    return DEFAULT_HARNESS


def create_harness(harness_type: HarnessType) -> Harness:
    if harness_type == "claude-code":
        from .claude_code import ClaudeCodeHarness

        return ClaudeCodeHarness()
    if harness_type == "chibi":
        from .chibi import ChibiHarness

        return ChibiHarness()
    raise ValueError(f"Unknown harness type: {harness_type}")


def resolve_and_create_harness(
    explicit: Optional[str] = None,
    navigator_config: Optional[Mapping[str, Any]] = None,
) -> Harness:
    return create_harness(resolve_harness_type(explicit, navigator_config))
