"""Configuration loading from config.yaml + .env."""

from datetime import timedelta
from pathlib import Path

import yaml
from pydantic import BaseModel
from pydantic_settings import BaseSettings


# ---------------------------------------------------------------------------
# Config sub-models (loaded from config.yaml)
# ---------------------------------------------------------------------------

class FeedConfig(BaseModel):
    name: str
    url: str
    kind: str = "rss"  # collector registry key


DEFAULT_FEEDS: list[FeedConfig] = [
    FeedConfig(name="Yahoo Finance", url="https://finance.yahoo.com/rss/topstories"),
    FeedConfig(
        name="CNBC Markets",
        url="https://www.cnbc.com/id/15839069/device/rss/rss.html",
    ),
    FeedConfig(name="Investing.com", url="https://www.investing.com/rss/news_1.rss"),
]


class IngestionConfig(BaseModel):
    per_feed_limit: int = 5  # top N items per feed, caps embedding cost per run
    fetch_timeout: float = 30.0
    run_on_start: bool = True  # 启动时先抓取一次


class EmbeddingConfig(BaseModel):
    model: str = "text-embedding-3-small"
    dimensions: int = 1536


class LlmConfig(BaseModel):
    model: str = "gpt-3.5-turbo"
    base_url: str = "https://api.openai.com/v1"
    max_retries: int = 3  # OpenAI client 重试次数（应对 429 限流）
    timeout: float = 60.0  # per-call timeout, seconds


class ReportConfig(BaseModel):
    freshness_hours: float = 3.0
    context_items: int = 15
    wait_timeout: float | None = 120.0  # how long a caller waits on generation

    @property
    def freshness(self) -> timedelta:
        return timedelta(hours=self.freshness_hours)


class ChatConfig(BaseModel):
    context_items: int = 10


class FeedDisplayConfig(BaseModel):
    recency_hours: float = 24.0
    limit: int = 50

    @property
    def recency(self) -> timedelta:
        return timedelta(hours=self.recency_hours)


class StartupConfig(BaseModel):
    connect_attempts: int = 10
    backoff_initial: float = 1.0
    backoff_max: float = 15.0


class WorkerConfig(BaseModel):
    error_backoff: float = 2.0  # sleep after a failed loop iteration
    poll_interval: float = 5.0  # upper bound on a single queue wait


class AppConfig(BaseModel):
    """Application config loaded from config.yaml."""

    feeds: list[FeedConfig] = DEFAULT_FEEDS
    ingestion: IngestionConfig = IngestionConfig()
    embedding: EmbeddingConfig = EmbeddingConfig()
    llm: LlmConfig = LlmConfig()
    report: ReportConfig = ReportConfig()
    chat: ChatConfig = ChatConfig()
    feed: FeedDisplayConfig = FeedDisplayConfig()
    startup: StartupConfig = StartupConfig()
    worker: WorkerConfig = WorkerConfig()


# ---------------------------------------------------------------------------
# Secrets (loaded from .env / environment variables)
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """Secret settings loaded from environment / .env file."""

    openai_api_key: str = ""
    database_url: str = "sqlite:///data/market_intel.db"
    queue_backend: str = "sql"  # "sql" (durable) or "memory" (single process)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(config_path: str = "config.yaml") -> tuple[AppConfig, Settings]:
    """Load app config from YAML and secrets from .env."""
    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        app_config = AppConfig(**data)
    else:
        app_config = AppConfig()

    settings = Settings()
    return app_config, settings
