"""Ingestion pipeline: fetch → score → embed → store, for every configured feed.

Each feed and each item is isolated: a failure is logged, counted and
skipped. A failed run is not retried here; the next queue trigger retries it.
"""

import logging
import threading
from collections.abc import Callable

from .collectors import REGISTRY, BaseCollector
from .config import FeedConfig
from .dedup import dedup_key
from .models import IngestionStats, NewsItem, RawFeedItem
from .scoring import calculate_priority
from .store import NewsStore

logger = logging.getLogger(__name__)

Embedder = Callable[[str], list[float]]


def build_collectors(
    feeds: list[FeedConfig],
    per_feed_limit: int = 5,
    fetch_timeout: float = 30.0,
) -> dict[str, BaseCollector]:
    """Instantiate one collector per feed kind in use.

    根据 feeds 中出现的 kind 实例化 collector，未知 kind 只记录警告。
    """
    collectors: dict[str, BaseCollector] = {}
    for kind in sorted({feed.kind for feed in feeds}):
        cls = REGISTRY.get(kind)
        if cls is None:
            logger.warning("Unknown collector kind: %s (not in registry)", kind)
            continue
        collectors[kind] = cls(limit=per_feed_limit, timeout=fetch_timeout)
        logger.debug("Initialized collector: %s", collectors[kind])
    return collectors


class IngestionPipeline:
    """Runs one ingestion pass over all feeds.

    Runs are serialized: a second caller blocks until the current run has
    finished, so worker-triggered and refresh-triggered runs never overlap.
    """

    def __init__(
        self,
        feeds: list[FeedConfig],
        collectors: dict[str, BaseCollector],
        store: NewsStore,
        embed: Embedder,
        per_feed_limit: int = 5,
        health_check: Callable[[], None] | None = None,
    ) -> None:
        self.feeds = feeds
        self.collectors = collectors
        self.store = store
        self.embed = embed
        self.per_feed_limit = per_feed_limit
        self.health_check = health_check
        self._run_lock = threading.Lock()

    def run(self) -> IngestionStats:
        """Ingest every feed; never raises.

        Returns the run's counters. If the store is unreachable before any work
        starts, ``setup_error`` is set and nothing is fetched.
        """
        with self._run_lock:
            stats = IngestionStats()

            if self.health_check is not None:
                try:
                    self.health_check()
                except Exception as exc:
                    logger.exception("Ingestion aborted: store unreachable")
                    stats.setup_error = f"store unreachable: {exc}"
                    return stats

            logger.info("--- Ingesting %d feeds ---", len(self.feeds))
            for feed in self.feeds:
                try:
                    self._ingest_feed(feed, stats)
                    stats.feeds_ok += 1
                except Exception:
                    stats.feeds_failed += 1
                    logger.exception("✗ Error scraping %s", feed.name)

            logger.info(
                "Ingestion done: %d/%d feeds ok, %d seen, %d new, %d duplicate, %d failed",
                stats.feeds_ok,
                len(self.feeds),
                stats.items_seen,
                stats.items_inserted,
                stats.items_duplicate,
                stats.items_failed,
            )
            return stats

    def _ingest_feed(self, feed: FeedConfig, stats: IngestionStats) -> None:
        collector = self.collectors.get(feed.kind)
        if collector is None:
            raise ValueError(f"No collector for feed kind {feed.kind!r}")

        raw_items = collector.collect(feed)[: self.per_feed_limit]
        for raw in raw_items:
            stats.items_seen += 1
            try:
                if self._ingest_item(feed, raw):
                    stats.items_inserted += 1
                else:
                    stats.items_duplicate += 1
            except Exception:
                stats.items_failed += 1
                logger.exception("Failed to ingest item from %s: %s", feed.name, raw.link)

        logger.info("✓ %s: %d items processed", feed.name, len(raw_items))

    def _ingest_item(self, feed: FeedConfig, raw: RawFeedItem) -> bool:
        content = raw.content
        item = NewsItem(
            dedup_key=dedup_key(raw.link, feed.name, content),
            content=content,
            embedding=self.embed(content),
            source=feed.name,
            link=raw.link,
            priority_score=calculate_priority(content),
        )
        inserted = self.store.insert_if_absent(item)
        logger.debug(
            "%s [%d] %s",
            "new" if inserted else "dup",
            item.priority_score,
            content[:80],
        )
        return inserted

    def close(self) -> None:
        for collector in self.collectors.values():
            collector.close()
