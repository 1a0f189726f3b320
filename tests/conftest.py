"""Shared fixtures and fakes.

网络相关的协作方（RSS / embedding / completion）全部用假实现替代；
数据库使用 tmp_path 下的 SQLite 文件，走与生产相同的 SQLAlchemy 代码路径。
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from market_intel.collectors import BaseCollector
from market_intel.config import FeedConfig
from market_intel.models import RawFeedItem
from market_intel.store import NewsStore, ReportStore, Schema, create_db_engine, init_schema

DIMENSIONS = 4


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeEmbedder:
    """Returns a fixed vector; fails for texts containing a marker."""

    def __init__(self, fail_marker: str | None = None) -> None:
        self.fail_marker = fail_marker
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, text: str) -> list[float]:
        with self._lock:
            self.calls.append(text)
        if self.fail_marker and self.fail_marker in text:
            raise RuntimeError("embedding service unavailable")
        return [0.1] * DIMENSIONS


class FakeCollector(BaseCollector):
    """Serves canned items per feed name; an Exception value is raised instead."""

    name = "rss"

    def __init__(self, items_by_feed: dict[str, list[RawFeedItem] | Exception]) -> None:
        self.items_by_feed = items_by_feed
        self.collected: list[str] = []

    def collect(self, feed: FeedConfig) -> list[RawFeedItem]:
        self.collected.append(feed.name)
        value = self.items_by_feed.get(feed.name, [])
        if isinstance(value, Exception):
            raise value
        return list(value)


class FakeSummarizer:
    """Counts calls; can block on a gate and fail on demand."""

    def __init__(self, reply: str = "- Markets steady", fail: bool = False) -> None:
        self.reply = reply
        self.fail = fail
        self.calls: list[tuple[str, str]] = []
        self.gate: threading.Event | None = None
        self.entered = threading.Event()
        self._lock = threading.Lock()

    def __call__(self, system: str, user: str) -> str:
        with self._lock:
            self.calls.append((system, user))
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.fail:
            raise RuntimeError("completion service down")
        return f"{self.reply} #{len(self.calls)}"


def make_feed_items(prefix: str, count: int) -> list[RawFeedItem]:
    return [
        RawFeedItem(
            title=f"{prefix} headline {i}",
            link=f"https://news.example.com/{prefix}/{i}",
            description=f"{prefix} description {i}",
        )
        for i in range(count)
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def schema() -> Schema:
    return Schema(dimensions=DIMENSIONS)


@pytest.fixture
def engine(tmp_path, schema):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'market_intel.db'}")
    init_schema(engine, schema)
    yield engine
    engine.dispose()


@pytest.fixture
def news_store(engine, schema, clock) -> NewsStore:
    return NewsStore(engine, schema, clock=clock)


@pytest.fixture
def report_store(engine, schema, clock) -> ReportStore:
    return ReportStore(engine, schema, clock=clock)
