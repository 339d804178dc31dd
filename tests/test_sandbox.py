from __future__ import annotations

import pytest

import autonav.harness.sandbox as sandbox
from autonav.harness.sandbox import build_sandbox_args, is_sandbox_enabled, merge_session_paths, wrap_command
from autonav.harness.types import SandboxPolicy


@pytest.fixture
def nono_installed(monkeypatch):
    monkeypatch.setattr(sandbox, "is_nono_available", lambda: True)
    monkeypatch.setattr(sandbox, "system_read_paths", lambda: ["/usr/bin"])
    monkeypatch.delenv("AUTONAV_SANDBOX", raising=False)


def test_no_policy_runs_command_unchanged(nono_installed) -> None:
    assert wrap_command("chibi-json", ["--flag"], None) == ["chibi-json", "--flag"]


def test_policy_wraps_command_with_paths(nono_installed) -> None:
    policy = SandboxPolicy(read_paths=("/src",), write_paths=("/home/x",), block_network=True)

    argv = wrap_command("chibi-json", [], policy)

    assert argv == [
        "nono",
        "run",
        "--silent",
        "--allow-cwd",
        "--read",
        "/usr/bin",
        "--read",
        "/src",
        "--allow",
        "/home/x",
        "--net-block",
        "--",
        "chibi-json",
    ]


def test_args_end_with_separator_without_network_block(nono_installed) -> None:
    args = build_sandbox_args(SandboxPolicy())

    assert args[-1] == "--"
    assert "--net-block" not in args


def test_explicit_policy_flag_beats_environment(nono_installed, monkeypatch) -> None:
    monkeypatch.setenv("AUTONAV_SANDBOX", "0")

    assert is_sandbox_enabled(SandboxPolicy()) is False
    assert is_sandbox_enabled(SandboxPolicy(enabled=True)) is True
    monkeypatch.delenv("AUTONAV_SANDBOX")
    assert is_sandbox_enabled(SandboxPolicy(enabled=False)) is False
    assert wrap_command("x", [], SandboxPolicy(enabled=False)) == ["x"]


def test_missing_binary_disables_even_explicit_policy(monkeypatch) -> None:
    monkeypatch.setattr(sandbox, "is_nono_available", lambda: False)

    assert is_sandbox_enabled(SandboxPolicy(enabled=True)) is False
    assert wrap_command("x", ["y"], SandboxPolicy(enabled=True)) == ["x", "y"]


def test_merge_adds_home_and_uncovered_cwd(tmp_path) -> None:
    home = str(tmp_path / "home")
    cwd = str(tmp_path / "nav")

    merged = merge_session_paths(SandboxPolicy(read_paths=("/kb",)), home=home, cwd=cwd)

    assert merged is not None
    assert merged.write_paths == (home,)
    assert merged.read_paths == ("/kb", cwd)


def test_merge_skips_cwd_covered_by_write_path(tmp_path) -> None:
    code = str(tmp_path / "code")

    merged = merge_session_paths(
        SandboxPolicy(write_paths=(code,), enabled=True), home=str(tmp_path / "home"), cwd=f"{code}/sub"
    )

    assert merged is not None
    assert merged.read_paths == ()
    assert merged.enabled is True
    assert merge_session_paths(None, home="/h", cwd="/c") is None
