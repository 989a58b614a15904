"""Tests for cchp.cli — CLI commands."""

import argparse
import json
import os
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from cchp.cli import (
    cmd_close,
    cmd_doctor,
    cmd_guides,
    cmd_init,
    cmd_journals,
    cmd_prune,
    cmd_status,
    main,
)
from cchp.core.config import Settings
from cchp.core.counter import CounterStore
from cchp.core.journal import JournalStore, on_session_end


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    guide_dir = tmp_path / "agents"
    guide_dir.mkdir()
    (guide_dir / "testing.md").write_text("---\nkeywords: [test, jest]\n---\nTest guide\n")
    return Settings(
        state_dir=tmp_path / "state",
        guide_dir=guide_dir,
        learned_dir=tmp_path / "learned",
    )


@pytest.fixture
def settings_path(tmp_path: Path) -> Path:
    return tmp_path / ".claude" / "settings.json"


class TestInit:
    def test_registers_all_hooks(self, settings: Settings, settings_path: Path, capsys):
        result = cmd_init(argparse.Namespace(settings=str(settings_path)), settings)

        assert result == 0
        cfg = json.loads(settings_path.read_text())
        for event, runner_event in (
            ("UserPromptSubmit", "user_prompt_submit"),
            ("PreToolUse", "pre_tool_use"),
            ("SessionStart", "session_start"),
            ("PreCompact", "pre_compact"),
            ("SessionEnd", "session_end"),
        ):
            command = cfg["hooks"][event][0]["hooks"][0]["command"]
            assert command.endswith(f"-m cchp.hooks.runner {runner_event}")
        assert settings.sessions_dir.is_dir()
        assert "Registered 5 hooks" in capsys.readouterr().out

    def test_preserves_foreign_settings(self, settings: Settings, settings_path: Path):
        settings_path.parent.mkdir(parents=True)
        foreign_hook = {"matcher": "", "hooks": [{"type": "command", "command": "other-tool"}]}
        settings_path.write_text(json.dumps({
            "model": "sonnet",
            "hooks": {"SessionStart": [foreign_hook]},
        }))

        cmd_init(argparse.Namespace(settings=str(settings_path)), settings)
        cmd_init(argparse.Namespace(settings=str(settings_path)), settings)

        cfg = json.loads(settings_path.read_text())
        assert cfg["model"] == "sonnet"
        session_start = cfg["hooks"]["SessionStart"]
        assert session_start[0] == foreign_hook
        # Re-running init does not duplicate our entry
        assert len(session_start) == 2


class TestDoctor:
    def test_healthy_after_init(self, settings: Settings, settings_path: Path, capsys):
        cmd_init(argparse.Namespace(settings=str(settings_path)), settings)
        capsys.readouterr()

        result = cmd_doctor(argparse.Namespace(settings=str(settings_path)), settings)

        assert result == 0
        assert "All checks passed" in capsys.readouterr().out

    def test_missing_settings(self, settings: Settings, settings_path: Path, capsys):
        settings.state_dir.mkdir(parents=True)

        result = cmd_doctor(argparse.Namespace(settings=str(settings_path)), settings)

        assert result == 1
        assert "hooks won't fire" in capsys.readouterr().out

    def test_unregistered_event(self, settings: Settings, settings_path: Path, capsys):
        cmd_init(argparse.Namespace(settings=str(settings_path)), settings)
        cfg = json.loads(settings_path.read_text())
        del cfg["hooks"]["PreToolUse"]
        settings_path.write_text(json.dumps(cfg))

        result = cmd_doctor(argparse.Namespace(settings=str(settings_path)), settings)

        assert result == 1
        assert "PreToolUse not registered" in capsys.readouterr().out


class TestGuides:
    def test_lists_guides(self, settings: Settings, capsys):
        assert cmd_guides(argparse.Namespace(match=None), settings) == 0
        assert "testing.md: test, jest" in capsys.readouterr().out

    def test_match(self, settings: Settings, capsys):
        cmd_guides(argparse.Namespace(match="run the JEST suite"), settings)
        assert capsys.readouterr().out.strip() == "testing.md"

    def test_no_match(self, settings: Settings, capsys):
        cmd_guides(argparse.Namespace(match="deploy to prod"), settings)
        assert "No guides match" in capsys.readouterr().out


class TestJournals:
    def test_status_and_journals(self, settings: Settings, capsys):
        on_session_end(JournalStore(settings.sessions_dir), "abc", notes="x")
        CounterStore(settings.counters_dir).increment("abc")

        assert cmd_status(argparse.Namespace(session="abc"), settings) == 0
        out = capsys.readouterr().out
        assert "Tool calls for abc: 1" in out
        assert "Recent journals: 1" in out

        assert cmd_journals(argparse.Namespace(), settings) == 0
        assert "abc" in capsys.readouterr().out

    def test_close(self, settings: Settings, capsys):
        store = JournalStore(settings.sessions_dir)
        on_session_end(store, "abc", notes="x")
        today = datetime.now().strftime("%Y-%m-%d")

        assert cmd_close(argparse.Namespace(session="abc", date=None), settings) == 0
        assert store.load("abc", today).is_closed

    def test_close_missing(self, settings: Settings, capsys):
        assert cmd_close(argparse.Namespace(session="nope", date="2026-01-01"), settings) == 1

    def test_raw_session_ids_are_sanitized(self, settings: Settings, capsys):
        store = JournalStore(settings.sessions_dir)
        on_session_end(store, "a_b", notes="x")
        CounterStore(settings.counters_dir).increment("a_b")
        today = datetime.now().strftime("%Y-%m-%d")

        cmd_status(argparse.Namespace(session="a/b"), settings)
        assert "Tool calls for a_b: 1" in capsys.readouterr().out

        assert cmd_close(argparse.Namespace(session="a/b", date=None), settings) == 0
        assert store.load("a_b", today).is_closed

    def test_close_cannot_escape_sessions_dir(self, settings: Settings, tmp_path: Path, capsys):
        outside = tmp_path / "state" / f"x-{datetime.now():%Y-%m-%d}.md"

        assert cmd_close(argparse.Namespace(session="../x", date=None), settings) == 1
        assert "No journal for _x" in capsys.readouterr().out
        assert not outside.exists()
        assert not (tmp_path / "state" / "x.lock").exists()


def _age(path: Path, days: int) -> None:
    stamp = (datetime.now() - timedelta(days=days)).timestamp()
    os.utime(path, (stamp, stamp))


class TestPrune:
    def test_removes_only_stale_locks(self, settings: Settings, capsys):
        settings.counters_dir.mkdir(parents=True)
        stale = settings.counters_dir / "old.count.lock"
        stale.touch()
        _age(stale, settings.retention_days + 1)
        fresh = settings.counters_dir / "new.count.lock"
        fresh.touch()

        assert cmd_prune(argparse.Namespace(), settings) == 0
        assert "Pruned 1 stale lock file(s)" in capsys.readouterr().out
        assert not stale.exists()
        assert fresh.exists()

    def test_doctor_reports_stale_locks(self, settings: Settings, settings_path: Path, capsys):
        cmd_init(argparse.Namespace(settings=str(settings_path)), settings)
        stale = settings.sessions_dir / "old-2026-01-01.md.lock"
        stale.touch()
        _age(stale, settings.retention_days + 1)
        capsys.readouterr()

        assert cmd_doctor(argparse.Namespace(settings=str(settings_path)), settings) == 1
        assert "1 stale lock file(s)" in capsys.readouterr().out

        cmd_prune(argparse.Namespace(), settings)
        assert cmd_doctor(argparse.Namespace(settings=str(settings_path)), settings) == 0


class TestMain:
    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out

    def test_dispatch(self, settings: Settings, capsys):
        with patch("cchp.cli.load_settings", return_value=settings):
            assert main(["guides"]) == 0
        assert "testing.md" in capsys.readouterr().out
