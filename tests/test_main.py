"""Tests for the CLI runner: exit codes and the generic failure message."""

import argparse

import pytest
import yaml

from market_intel.errors import USER_FACING_MESSAGE, QueueError
from market_intel.main import run
from market_intel.tasks import SqlTaskQueue


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "feeds": [{"name": "Test", "url": "https://example.com/rss"}],
        "startup": {"connect_attempts": 1, "backoff_initial": 0.01, "backoff_max": 0.01},
        "worker": {"poll_interval": 0.1},
    }))
    return str(path)


@pytest.fixture
def env(tmp_path, monkeypatch):
    """Point settings at a throwaway database, away from any local .env."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("QUEUE_BACKEND", "sql")
    return monkeypatch


def _args(config_path: str, command: str, **extra) -> argparse.Namespace:
    return argparse.Namespace(config=config_path, verbose=False, command=command, **extra)


class TestRun:
    def test_trigger_succeeds(self, env, config_path, capsys):
        assert run(_args(config_path, "trigger")) == 0
        out = capsys.readouterr().out
        assert "Scrape triggered" in out

    def test_feed_on_empty_store(self, env, config_path, capsys):
        assert run(_args(config_path, "feed")) == 0
        assert USER_FACING_MESSAGE not in capsys.readouterr().err

    def test_unreachable_database(self, env, tmp_path, config_path, capsys):
        # a directory cannot be opened as a SQLite database
        env.setenv("DATABASE_URL", f"sqlite:///{tmp_path}")
        assert run(_args(config_path, "report")) == 1
        assert USER_FACING_MESSAGE in capsys.readouterr().err

    def test_failing_command(self, env, config_path, capsys):
        def refuse(self, command):
            raise QueueError("Queue is closed")

        env.setattr(SqlTaskQueue, "enqueue", refuse)
        assert run(_args(config_path, "trigger")) == 1
        captured = capsys.readouterr()
        assert USER_FACING_MESSAGE in captured.err
        assert "Scrape triggered" not in captured.out

    def test_unknown_queue_backend(self, env, config_path, capsys):
        env.setenv("QUEUE_BACKEND", "kafka")
        assert run(_args(config_path, "trigger")) == 1
        assert USER_FACING_MESSAGE in capsys.readouterr().err

    def test_blank_chat_message(self, env, config_path, capsys):
        assert run(_args(config_path, "chat", message=["   "])) == 1
        assert USER_FACING_MESSAGE in capsys.readouterr().err
