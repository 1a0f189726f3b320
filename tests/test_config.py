"""Tests for config loading."""

from datetime import timedelta

from market_intel.config import AppConfig, load_config


class TestLoadConfig:
    def test_defaults_when_missing(self, tmp_path):
        config, settings = load_config(str(tmp_path / "nope.yaml"))
        assert [f.name for f in config.feeds] == ["Yahoo Finance", "CNBC Markets", "Investing.com"]
        assert config.ingestion.per_feed_limit == 5
        assert config.embedding.dimensions == 1536
        assert config.report.freshness == timedelta(hours=3)
        assert config.feed.recency == timedelta(hours=24)
        assert config.feed.limit == 50
        assert config.chat.context_items == 10
        assert settings.queue_backend in ("sql", "memory")

    def test_yaml_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "feeds:\n"
            "  - name: ABC Business\n"
            "    url: https://abc.example.com/rss\n"
            "report:\n"
            "  freshness_hours: 1.5\n"
            "ingestion:\n"
            "  run_on_start: false\n",
            encoding="utf-8",
        )
        config, _ = load_config(str(path))
        assert [f.name for f in config.feeds] == ["ABC Business"]
        assert config.feeds[0].kind == "rss"
        assert config.report.freshness == timedelta(minutes=90)
        assert config.ingestion.run_on_start is False
        assert config.report.context_items == 15

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        config, _ = load_config(str(path))
        assert config == AppConfig()

    def test_settings_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db:5432/intel")
        monkeypatch.setenv("QUEUE_BACKEND", "memory")
        _, settings = load_config(str(tmp_path / "nope.yaml"))
        assert settings.database_url == "postgresql://u:p@db:5432/intel"
        assert settings.queue_backend == "memory"
