from __future__ import annotations

from pathlib import Path

import pytest

from autonav.harness.ephemeral_home import create_ephemeral_home, home_base_dir


def test_home_is_created_under_env_base(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("AUTONAV_CHIBI_HOME", str(tmp_path / "base"))

    home = create_ephemeral_home("chibi", lambda path: (path / "settings.json").write_text("{}"))

    assert home.path.parent == tmp_path / "base"
    assert home.path.name.startswith("autonav-chibi-")
    assert (home.path / "settings.json").read_text() == "{}"


def test_cleanup_runs_once(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("AUTONAV_CHIBI_HOME", str(tmp_path))
    home = create_ephemeral_home("chibi")

    home.cleanup()
    home.path.mkdir()
    home.cleanup()

    assert home.cleaned
    assert home.path.exists()


def test_context_manager_removes_directory(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("AUTONAV_CHIBI_HOME", str(tmp_path))

    with create_ephemeral_home("chibi") as home:
        (home.path / "scratch").write_text("x")
        path = home.path

    assert not path.exists()


def test_failed_setup_removes_directory(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("AUTONAV_CHIBI_HOME", str(tmp_path))

    def _boom(path: Path) -> None:
        raise OSError("disk full")

    with pytest.raises(OSError, match="disk full"):
        create_ephemeral_home("chibi", _boom)

    assert list(tmp_path.iterdir()) == []


def test_base_dir_env_name_normalizes_harness(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("AUTONAV_CLAUDE_CODE_HOME", str(tmp_path))

    assert home_base_dir("claude-code") == tmp_path
