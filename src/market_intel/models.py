"""Data models for Market Intel."""

from datetime import datetime

from pydantic import BaseModel


class RawFeedItem(BaseModel):
    """A single entry as returned by a feed collector."""

    title: str = "Market Update"
    link: str = "#"
    description: str = ""

    @property
    def content(self) -> str:
        """Text that is scored, embedded and stored."""
        return f"{self.title}. {self.description}"


class NewsItem(BaseModel):
    """A scored + embedded item ready for insertion."""

    dedup_key: str
    content: str
    embedding: list[float]
    source: str  # feed name, e.g. "CNBC Markets"
    link: str
    priority_score: int = 0


class StoredNews(BaseModel):
    """A row read back from the news table (embedding not loaded)."""

    id: int
    content: str
    source: str
    link: str
    priority_score: int
    created_at: datetime


class Report(BaseModel):
    """An immutable generated market report."""

    id: int
    report_text: str
    created_at: datetime


class ReportResult(BaseModel):
    """What report callers receive: the report plus whether it came from cache."""

    report: str
    timestamp: datetime
    is_cached: bool


class IngestionStats(BaseModel):
    """Outcome counters for one ingestion run."""

    feeds_ok: int = 0
    feeds_failed: int = 0
    items_seen: int = 0
    items_inserted: int = 0
    items_duplicate: int = 0
    items_failed: int = 0
    setup_error: str | None = None  # 整轮无法开始时的原因

    @property
    def ok(self) -> bool:
        return self.setup_error is None
