"""Application context: every long-lived resource, wired once.

Lifecycle: ``MarketIntel.connect()`` at startup (store + queue connected with
bounded retries), ``close()`` at shutdown. Components receive their
collaborators explicitly; nothing is held in module globals.
"""

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from tenacity import (
    RetryError,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .chat import ChatService
from .config import AppConfig, Settings
from .errors import InfrastructureError, QueueError
from .llm import LlmClient
from .models import IngestionStats, ReportResult, StoredNews
from .pipeline import IngestionPipeline, build_collectors
from .report import ReportCache
from .store import NewsStore, ReportStore, Schema, create_db_engine, init_schema, ping
from .tasks import MemoryTaskQueue, SqlTaskQueue, Task, TaskCommand, TaskQueue
from .worker import IngestionWorker

logger = logging.getLogger(__name__)


def connect_with_retry(engine: Engine, schema: Schema, config: AppConfig) -> None:
    """Ping the database and create the schema, retrying with backoff.

    数据库可能晚于服务启动（docker compose 等），按指数退避重试，用尽后视为致命错误。
    """
    startup = config.startup

    @retry(
        retry=retry_if_exception_type(SQLAlchemyError),
        stop=stop_after_attempt(startup.connect_attempts),
        wait=wait_exponential(
            multiplier=startup.backoff_initial,
            min=startup.backoff_initial,
            max=startup.backoff_max,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    def _connect() -> None:
        ping(engine)
        init_schema(engine, schema)

    try:
        _connect()
    except RetryError as exc:
        cause = exc.last_attempt.exception()
        raise InfrastructureError(
            f"Database unreachable after {startup.connect_attempts} attempts: {cause}"
        ) from cause
    logger.info("✅ Infrastructure ready")


class MarketIntel:
    """Holds the engine, stores, queue, pipeline, cache, chat and worker."""

    def __init__(
        self,
        config: AppConfig,
        engine: Engine,
        schema: Schema,
        queue: TaskQueue,
        llm: LlmClient,
    ) -> None:
        self.config = config
        self.engine = engine
        self.schema = schema
        self.queue = queue
        self.llm = llm

        self.news_store = NewsStore(engine, schema)
        self.report_store = ReportStore(engine, schema)

        collectors = build_collectors(
            config.feeds,
            per_feed_limit=config.ingestion.per_feed_limit,
            fetch_timeout=config.ingestion.fetch_timeout,
        )
        self.pipeline = IngestionPipeline(
            feeds=config.feeds,
            collectors=collectors,
            store=self.news_store,
            embed=llm.embed,
            per_feed_limit=config.ingestion.per_feed_limit,
            health_check=lambda: ping(engine),
        )
        self.reports = ReportCache(
            news_store=self.news_store,
            report_store=self.report_store,
            summarize=llm.complete,
            freshness=config.report.freshness,
            context_items=config.report.context_items,
            ingest=self.pipeline.run,
            wait_timeout=config.report.wait_timeout,
        )
        self.chat_service = ChatService(
            self.news_store,
            llm.complete,
            context_items=config.chat.context_items,
        )
        self.worker = IngestionWorker(
            queue=queue,
            pipeline=self.pipeline,
            run_on_start=config.ingestion.run_on_start,
            error_backoff=config.worker.error_backoff,
            poll_interval=config.worker.poll_interval,
        )

    @classmethod
    def connect(cls, config: AppConfig, settings: Settings) -> "MarketIntel":
        """Build every component and connect to the store with bounded retries.

        Raises InfrastructureError if the database never becomes reachable.
        """
        engine = create_db_engine(settings.database_url)
        schema = Schema(dimensions=config.embedding.dimensions)
        connect_with_retry(engine, schema, config)

        if settings.queue_backend == "memory":
            queue: TaskQueue = MemoryTaskQueue()
        elif settings.queue_backend == "sql":
            queue = SqlTaskQueue(engine, schema, poll_interval=config.worker.poll_interval)
        else:
            raise ValueError(f"Unknown queue backend: {settings.queue_backend!r}")

        llm = LlmClient(config.llm, config.embedding, settings)
        logger.info(
            "Connected: db=%s, queue=%s, feeds=%d, model=%s",
            engine.dialect.name,
            settings.queue_backend,
            len(config.feeds),
            config.llm.model,
        )
        return cls(config, engine, schema, queue, llm)

    # -- operations --------------------------------------------------------

    def trigger_ingestion(self) -> Task:
        """Queue an "ingest now" command for the worker."""
        logger.info("⚡ Triggering manual scrape...")
        try:
            return self.queue.enqueue(TaskCommand.INGEST_NEWS)
        except QueueError:
            logger.exception("Failed to trigger scrape")
            raise

    def intel_feed(self) -> list[StoredNews]:
        """Recent items ranked for display."""
        feed = self.config.feed
        try:
            return self.news_store.query_recent(feed.recency, feed.limit)
        except SQLAlchemyError as exc:
            raise InfrastructureError(f"Feed query failed: {exc}") from exc

    def market_report(self) -> ReportResult:
        return self.reports.get()

    def refresh_all(self) -> ReportResult:
        return self.reports.refresh_all()

    def chat(self, message: str) -> str:
        return self.chat_service.answer(message)

    def ingest_now(self) -> IngestionStats:
        """Run one ingestion pass synchronously, bypassing the queue."""
        return self.pipeline.run()

    # -- lifecycle ---------------------------------------------------------

    def start_worker(self) -> IngestionWorker:
        self.worker.start()
        return self.worker

    def close(self) -> None:
        self.worker.request_stop()
        self.queue.close()  # wakes a consumer blocked in dequeue
        self.worker.stop(timeout=self.config.worker.poll_interval + 1)
        self.reports.close()
        self.pipeline.close()
        self.engine.dispose()
        logger.info("Shut down cleanly")
