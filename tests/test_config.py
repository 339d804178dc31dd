from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from autonav.config import load_global_config, load_navigator, resolve_config_dir
from autonav.standup.config import create_standup_dir, standup_timestamp
from fakes import make_navigator


def test_config_dir_precedence(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("AUTONAV_CONFIG_DIR", str(tmp_path / "env"))

    assert resolve_config_dir(str(tmp_path / "flag")) == (tmp_path / "flag").resolve()
    assert resolve_config_dir() == (tmp_path / "env").resolve()
    monkeypatch.delenv("AUTONAV_CONFIG_DIR")
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    assert resolve_config_dir() == tmp_path / "home" / ".config" / "autonav"


def test_global_config_reads_yaml_sections(tmp_path: Path) -> None:
    (tmp_path / "config.yaml").write_text(
        "harness:\n  type: chibi\nmemento:\n  nav_model: claude-opus-4-5\n  max_wait_seconds: 600\n"
        "standup:\n  max_budget_usd: 2.5\n",
        encoding="utf-8",
    )

    config = load_global_config(tmp_path)

    assert config.harness == "chibi"
    assert config.memento == {"nav_model": "claude-opus-4-5", "max_wait_seconds": 600}
    assert config.standup["max_budget_usd"] == 2.5


def test_global_config_missing_or_malformed(tmp_path: Path) -> None:
    assert load_global_config(tmp_path).harness is None
    (tmp_path / "config.yaml").write_text("harness: [unclosed\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Malformed config file"):
        load_global_config(tmp_path)


def test_navigator_defaults(tmp_path: Path) -> None:
    nav_dir = tmp_path / "platform-nav"
    nav_dir.mkdir()
    (nav_dir / "CLAUDE.md").write_text("# Platform\n", encoding="utf-8")

    navigator = load_navigator(nav_dir)

    assert navigator.name == "platform-nav"
    assert navigator.description == ""
    assert navigator.system_prompt == "# Platform\n"
    assert navigator.knowledge_base_path == nav_dir.resolve() / "knowledge"
    assert navigator.working_directories == ()
    assert navigator.sandbox_enabled("memento") is True


def test_navigator_config_fields(tmp_path: Path) -> None:
    nav_dir = make_navigator(
        tmp_path / "nav",
        config=(
            '{"name": "api", "description": "Owns the API", "knowledgeBasePath": "kb",'
            ' "workingDirectories": ["../app", "/abs/lib"], "sandbox": {"standup": {"enabled": false}}}'
        ),
    )

    navigator = load_navigator(nav_dir)

    assert navigator.name == "api"
    assert navigator.description == "Owns the API"
    assert navigator.knowledge_base_path == nav_dir.resolve() / "kb"
    assert navigator.working_directories == ((tmp_path / "app").resolve(), Path("/abs/lib"))
    assert navigator.sandbox_enabled("standup") is False
    assert navigator.sandbox_enabled("memento") is True


def test_navigator_missing_prompt(tmp_path: Path) -> None:
    (tmp_path / "nav").mkdir()

    with pytest.raises(FileNotFoundError, match="CLAUDE.md not found"):
        load_navigator(tmp_path / "nav")
    assert load_navigator(tmp_path / "nav", require_prompt=False).system_prompt == ""
    with pytest.raises(FileNotFoundError, match="directory not found"):
        load_navigator(tmp_path / "missing")


def test_standup_dir_layout(tmp_path: Path) -> None:
    now = datetime(2026, 3, 1, 9, 5, 7, tzinfo=timezone.utc)

    standup_dir = create_standup_dir(tmp_path, now)

    assert standup_timestamp(now) == "2026-03-01T09-05-07"
    assert standup_dir == tmp_path / "standups" / "2026-03-01T09-05-07"
    assert (standup_dir / "reports").is_dir()
    assert (standup_dir / "sync").is_dir()
