"""Tests for the ingestion worker loop, including the end-to-end flow.

enqueue "ingest now" → worker dequeues → pipeline stores 3 feeds × ≤5 items
→ ranked feed query returns them.
"""

import threading
import time
from datetime import timedelta

import pytest

from market_intel.config import FeedConfig
from market_intel.errors import QueueError
from market_intel.models import IngestionStats, RawFeedItem
from market_intel.pipeline import IngestionPipeline
from market_intel.tasks import MemoryTaskQueue, SqlTaskQueue, Task, TaskCommand
from market_intel.worker import IngestionWorker

from conftest import FakeCollector, FakeEmbedder, make_feed_items

FEEDS = [
    FeedConfig(name="Yahoo Finance", url="https://y.example.com/rss"),
    FeedConfig(name="CNBC Markets", url="https://c.example.com/rss"),
    FeedConfig(name="Investing.com", url="https://i.example.com/rss"),
]


class CountingPipeline:
    """Stands in for IngestionPipeline; signals each completed run."""

    def __init__(self) -> None:
        self.runs = 0
        self.done = threading.Event()
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def run(self) -> IngestionStats:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.02)
        with self._lock:
            self.active -= 1
            self.runs += 1
        self.done.set()
        return IngestionStats()


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class FlakyQueue(MemoryTaskQueue):
    """Fails the first dequeue as if the backend connection dropped."""

    def __init__(self) -> None:
        super().__init__()
        self.failures = 1

    def dequeue(self, timeout=None):
        if self.failures:
            self.failures -= 1
            raise QueueError("connection lost")
        return super().dequeue(timeout)


class TestIngestionWorker:
    def test_processes_trigger(self):
        queue = MemoryTaskQueue()
        pipeline = CountingPipeline()
        worker = IngestionWorker(queue, pipeline, run_on_start=False, poll_interval=0.05)
        worker.start()
        try:
            queue.enqueue(TaskCommand.INGEST_NEWS)
            assert _wait_for(lambda: worker.runs_completed == 1)
        finally:
            worker.stop(2)
        assert not worker.running

    def test_startup_run(self):
        queue = MemoryTaskQueue()
        pipeline = CountingPipeline()
        worker = IngestionWorker(queue, pipeline, run_on_start=True, poll_interval=0.05)
        worker.start()
        try:
            assert _wait_for(lambda: pipeline.runs == 1)
        finally:
            worker.stop(2)

    def test_runs_never_overlap(self):
        queue = MemoryTaskQueue()
        pipeline = CountingPipeline()
        for _ in range(4):
            queue.enqueue(TaskCommand.INGEST_NEWS)
        worker = IngestionWorker(queue, pipeline, run_on_start=False, poll_interval=0.05)
        worker.start()
        try:
            assert _wait_for(lambda: pipeline.runs == 4)
        finally:
            worker.stop(2)
        assert pipeline.max_active == 1

    def test_acks_processed_tasks(self):
        queue = MemoryTaskQueue()
        worker = IngestionWorker(queue, CountingPipeline(), run_on_start=False, poll_interval=0.05)
        queue.enqueue(TaskCommand.INGEST_NEWS)
        worker.start()
        try:
            assert _wait_for(lambda: worker.runs_completed == 1)
        finally:
            worker.stop(2)
        assert queue.requeue_unacked() == 0

    def test_unknown_command_ignored_and_acked(self):
        queue = MemoryTaskQueue()
        pipeline = CountingPipeline()
        worker = IngestionWorker(queue, pipeline, run_on_start=False)
        worker.handle(Task(id=99, command="REBALANCE"))
        assert pipeline.runs == 0

    def test_queue_error_backs_off_and_continues(self):
        queue = FlakyQueue()
        pipeline = CountingPipeline()
        worker = IngestionWorker(
            queue, pipeline, run_on_start=False, error_backoff=0.05, poll_interval=0.05,
        )
        worker.start()
        try:
            queue.enqueue(TaskCommand.INGEST_NEWS)
            assert _wait_for(lambda: pipeline.runs == 1)
        finally:
            worker.stop(2)

    def test_redelivers_unacked_on_start(self):
        queue = MemoryTaskQueue()
        queue.enqueue(TaskCommand.INGEST_NEWS)
        queue.dequeue(timeout=1)  # claimed by a consumer that "crashed"

        pipeline = CountingPipeline()
        worker = IngestionWorker(queue, pipeline, run_on_start=False, poll_interval=0.05)
        worker.start()
        try:
            assert _wait_for(lambda: pipeline.runs == 1)
        finally:
            worker.stop(2)

    def test_stop_while_idle(self):
        queue = MemoryTaskQueue()
        worker = IngestionWorker(queue, CountingPipeline(), run_on_start=False, poll_interval=0.05)
        worker.start()
        worker.stop(2)
        assert not worker.running


class TestEndToEnd:
    @pytest.mark.parametrize("backend", ["memory", "sql"])
    def test_trigger_to_ranked_feed(self, backend, engine, schema, news_store):
        items = {
            "Yahoo Finance": make_feed_items("yahoo", 7),
            "CNBC Markets": [
                RawFeedItem(title="Fed and CPI dominate", link="https://c.example.com/1"),
                RawFeedItem(title="Bakery wins award", link="https://c.example.com/2"),
            ],
            "Investing.com": [
                RawFeedItem(title="EUR/USD slides after GDP miss", link="https://i.example.com/1"),
            ],
        }
        pipeline = IngestionPipeline(
            feeds=FEEDS,
            collectors={"rss": FakeCollector(items)},
            store=news_store,
            embed=FakeEmbedder(),
            per_feed_limit=5,
        )
        if backend == "memory":
            queue = MemoryTaskQueue()
        else:
            queue = SqlTaskQueue(engine, schema, poll_interval=0.05)
        worker = IngestionWorker(queue, pipeline, run_on_start=False, poll_interval=0.05)
        worker.start()
        try:
            queue.enqueue(TaskCommand.INGEST_NEWS)
            assert _wait_for(lambda: worker.runs_completed == 1)

            # a repeated trigger is a harmless no-op
            queue.enqueue(TaskCommand.INGEST_NEWS)
            assert _wait_for(lambda: worker.runs_completed == 2)
        finally:
            worker.stop(2)
            queue.close()

        rows = news_store.query_recent(timedelta(hours=24), 50)
        assert len(rows) == 8  # 5 + 2 + 1, capped per feed
        assert rows[0].content.startswith("Fed and CPI")
        assert rows[0].priority_score == 200
        assert rows[1].priority_score == 100  # FX pair + GDP
        scores = [r.priority_score for r in rows]
        assert scores == sorted(scores, reverse=True)
        assert worker.last_stats.items_duplicate == 8
