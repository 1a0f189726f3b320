"""Relational storage: news items, generated reports and queued tasks.

PostgreSQL + pgvector in production; SQLite works for local runs and tests
(the embedding column falls back to JSON there).
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    func,
    insert,
    select,
    text,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from .models import NewsItem, Report, StoredNews

logger = logging.getLogger(__name__)

DEFAULT_DIMENSIONS = 1536

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is written as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class Schema:
    """Table definitions; the vector width is fixed per deployment."""

    def __init__(self, dimensions: int = DEFAULT_DIMENSIONS) -> None:
        self.dimensions = dimensions
        self.metadata = MetaData()

        self.news = Table(
            "market_news",
            self.metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("dedup_key", String(2048), nullable=False, unique=True),
            Column("content", Text, nullable=False),
            Column("embedding", Vector(dimensions).with_variant(JSON(), "sqlite")),
            Column("source", Text, nullable=False),
            Column("link", Text, nullable=False),
            Column("priority_score", Integer, nullable=False, default=0),
            Column("created_at", DateTime(timezone=True), nullable=False, index=True),
        )

        self.reports = Table(
            "global_reports",
            self.metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("report_text", Text, nullable=False),
            Column("created_at", DateTime(timezone=True), nullable=False, index=True),
        )

        self.tasks = Table(
            "task_queue",
            self.metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("command", String(64), nullable=False),
            Column("enqueued_at", DateTime(timezone=True), nullable=False),
            Column("claimed_at", DateTime(timezone=True), nullable=True),
        )


def _normalize_database_url(url: str) -> str:
    """Route plain postgres URLs to the psycopg (v3) driver."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


def create_db_engine(url: str) -> Engine:
    """Create an engine; for SQLite files the parent directory is created."""
    url = _normalize_database_url(url)
    if url.startswith("sqlite"):
        db_path = url.split("///", 1)[-1]
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def ping(engine: Engine) -> None:
    """Round-trip a trivial query; raises if the database is unreachable."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def init_schema(engine: Engine, schema: Schema) -> None:
    """Create the vector extension (PostgreSQL) and all tables if missing."""
    with engine.begin() as conn:
        if engine.dialect.name == "postgresql":
            logger.info("Ensuring pgvector and %d-dim tables exist...", schema.dimensions)
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        schema.metadata.create_all(conn)


def _insert_ignore(engine: Engine, table: Table, conflict_column: str):
    """INSERT ... ON CONFLICT DO NOTHING for dialects that support it."""
    if engine.dialect.name == "postgresql":
        return postgresql.insert(table).on_conflict_do_nothing(index_elements=[conflict_column])
    if engine.dialect.name == "sqlite":
        return sqlite.insert(table).on_conflict_do_nothing(index_elements=[conflict_column])
    return None


# ---------------------------------------------------------------------------
# News store
# ---------------------------------------------------------------------------

class NewsStore:
    """Append-only news table with a uniqueness guarantee on dedup_key."""

    def __init__(self, engine: Engine, schema: Schema, clock: Clock = utc_now) -> None:
        self.engine = engine
        self.schema = schema
        self._clock = clock

    def insert_if_absent(self, item: NewsItem) -> bool:
        """Insert item unless its dedup key is already stored.

        Returns True iff a new row was created. Safe to call repeatedly.
        """
        table = self.schema.news
        values = {
            "dedup_key": item.dedup_key,
            "content": item.content,
            "embedding": item.embedding,
            "source": item.source,
            "link": item.link,
            "priority_score": item.priority_score,
            "created_at": self._clock(),
        }

        stmt = _insert_ignore(self.engine, table, "dedup_key")
        if stmt is not None:
            with self.engine.begin() as conn:
                result = conn.execute(stmt.values(**values))
            return result.rowcount == 1

        try:
            with self.engine.begin() as conn:
                conn.execute(insert(table).values(**values))
        except IntegrityError:
            return False
        return True

    def _select_rows(self):
        news = self.schema.news
        return select(
            news.c.id,
            news.c.content,
            news.c.source,
            news.c.link,
            news.c.priority_score,
            news.c.created_at,
        )

    def _fetch(self, stmt) -> list[StoredNews]:
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [
            StoredNews(**{**row, "created_at": _as_utc(row["created_at"])})
            for row in rows
        ]

    def query_recent(self, window: timedelta, limit: int) -> list[StoredNews]:
        """Items created within window of now, highest priority first.

        Ties on priority are broken by recency.
        """
        news = self.schema.news
        since = self._clock() - window
        stmt = (
            self._select_rows()
            .where(news.c.created_at > since)
            .order_by(news.c.priority_score.desc(), news.c.created_at.desc(), news.c.id.desc())
            .limit(limit)
        )
        return self._fetch(stmt)

    def query_latest(self, limit: int) -> list[StoredNews]:
        """The limit most recently stored items regardless of age, newest first."""
        news = self.schema.news
        stmt = (
            self._select_rows()
            .order_by(news.c.created_at.desc(), news.c.id.desc())
            .limit(limit)
        )
        return self._fetch(stmt)

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(self.schema.news)).scalar_one()


# ---------------------------------------------------------------------------
# Report store
# ---------------------------------------------------------------------------

class ReportStore:
    """Append-only table of generated reports; newer rows supersede older."""

    def __init__(self, engine: Engine, schema: Schema, clock: Clock = utc_now) -> None:
        self.engine = engine
        self.schema = schema
        self._clock = clock

    def add(self, report_text: str) -> Report:
        created_at = self._clock()
        with self.engine.begin() as conn:
            result = conn.execute(
                insert(self.schema.reports).values(report_text=report_text, created_at=created_at)
            )
            report_id = result.inserted_primary_key[0]
        return Report(id=report_id, report_text=report_text, created_at=_as_utc(created_at))

    def latest(self) -> Report | None:
        reports = self.schema.reports
        stmt = (
            select(reports.c.id, reports.c.report_text, reports.c.created_at)
            .order_by(reports.c.created_at.desc(), reports.c.id.desc())
            .limit(1)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).mappings().first()
        if row is None:
            return None
        return Report(**{**row, "created_at": _as_utc(row["created_at"])})
