"""Wrap backend commands in a ``nono`` sandbox according to a path policy."""

from __future__ import annotations

import functools
import logging
import os
import subprocess
import sys
from typing import Optional

from .types import SandboxPolicy

logger = logging.getLogger(__name__)

SANDBOX_BINARY = "nono"
SANDBOX_ENV_VAR = "AUTONAV_SANDBOX"

_LINUX_SYSTEM_PATHS = ("/bin", "/usr/bin", "/usr/lib", "/usr/lib64", "/lib", "/lib64")
_DARWIN_SYSTEM_PATHS = ("/bin", "/usr/bin", "/usr/lib", "/usr/libexec", "/opt/homebrew", "/usr/local")


@functools.lru_cache(maxsize=1)
def is_nono_available() -> bool:
    """Return whether the sandbox binary runs; the answer is cached per process."""
    try:
        subprocess.run(
            [SANDBOX_BINARY, "--version"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=3,
            check=True,
        )
    except (OSError, subprocess.SubprocessError):
        return False
    return True


def is_sandbox_enabled(policy: Optional[SandboxPolicy] = None) -> bool:
    """Decide whether sandboxing applies.

    Precedence: explicit ``policy.enabled``, then ``AUTONAV_SANDBOX=0``, then
    auto-detection of the sandbox binary. An explicit ``True`` still requires
    the binary to be installed.
    """
    if policy is not None and policy.enabled is not None:
        return policy.enabled and is_nono_available()
    if os.environ.get(SANDBOX_ENV_VAR) == "0":
        return False
    return is_nono_available()


def system_read_paths() -> list[str]:
    candidates = _DARWIN_SYSTEM_PATHS if sys.platform == "darwin" else _LINUX_SYSTEM_PATHS
    return [p for p in candidates if os.path.exists(p)]


def build_sandbox_args(policy: SandboxPolicy) -> list[str]:
    """Translate a policy into sandbox arguments, ending with the ``--`` separator."""
    args = ["run", "--silent", "--allow-cwd"]
    for path in system_read_paths():
        args += ["--read", path]
    for path in policy.read_paths:
        args += ["--read", path]
    for path in policy.write_paths:
        args += ["--allow", path]
    if policy.block_network:
        args.append("--net-block")
    args.append("--")
    return args


def wrap_command(command: str, args: list[str], policy: Optional[SandboxPolicy]) -> list[str]:
    """Return the argv that runs ``command args`` under ``policy``.

    Args:
        command (str): Executable to run.
        args (list[str]): Arguments for the executable.
        policy (Optional[SandboxPolicy]): Sandbox policy; ``None`` disables wrapping.

    Returns:
        list[str]: Either the unchanged ``[command, *args]`` or the sandboxed argv.
    """
    if policy is None or not is_sandbox_enabled(policy):
        return [command, *args]
    wrapped = [SANDBOX_BINARY, *build_sandbox_args(policy), command, *args]
    logger.debug("Sandboxed command: %s", wrapped)
    return wrapped


def merge_session_paths(
    policy: Optional[SandboxPolicy], *, home: str, cwd: Optional[str]
) -> Optional[SandboxPolicy]:
    """Add a session's ephemeral home (writable) and cwd (readable) to ``policy``.

    ``cwd`` is added as a read path only when no write path already covers it.
    """
    if policy is None:
        return None
    write_paths = list(policy.write_paths)
    if home not in write_paths:
        write_paths.append(home)
    read_paths = list(policy.read_paths)
    if cwd:
        cwd_abs = os.path.abspath(cwd)
        covered = any(_is_within(cwd_abs, os.path.abspath(p)) for p in write_paths)
        if not covered and cwd not in read_paths:
            read_paths.append(cwd)
    return SandboxPolicy(
        read_paths=tuple(read_paths),
        write_paths=tuple(write_paths),
        block_network=policy.block_network,
        enabled=policy.enabled,
    )


def _is_within(path: str, parent: str) -> bool:
    try:
        return os.path.commonpath([path, parent]) == parent
    except ValueError:
        return False
