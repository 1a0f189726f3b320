"""Ingestion worker: the single consumer of the task queue.

Dequeue (blocking) → run the pipeline to completion → ack → dequeue again.
Because it finishes each run before taking the next task, triggers that pile
up while a run is in progress are processed one after another.
"""

import logging
import threading

from .errors import QueueError
from .models import IngestionStats
from .pipeline import IngestionPipeline
from .tasks import Task, TaskCommand, TaskQueue

logger = logging.getLogger(__name__)


class IngestionWorker:
    """Runs the consumer loop on a dedicated daemon thread."""

    def __init__(
        self,
        queue: TaskQueue,
        pipeline: IngestionPipeline,
        run_on_start: bool = True,
        error_backoff: float = 2.0,
        poll_interval: float = 5.0,
    ) -> None:
        self.queue = queue
        self.pipeline = pipeline
        self.run_on_start = run_on_start
        self.error_backoff = error_backoff
        self.poll_interval = poll_interval
        self.runs_completed = 0
        self.last_stats: IngestionStats | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="ingestion-worker", daemon=True)
        self._thread.start()

    def request_stop(self) -> None:
        self._stop.set()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def _ingest(self) -> None:
        self.last_stats = self.pipeline.run()
        self.runs_completed += 1

    def handle(self, task: Task) -> None:
        """Process one dequeued task."""
        if task.command == TaskCommand.INGEST_NEWS.value:
            logger.info("🔍 Task %d: triggering live scrape", task.id)
            self._ingest()
        else:
            logger.warning("Ignoring unknown task command: %s", task.command)

    def run_forever(self) -> None:
        """Consumer loop; returns only after stop()."""
        try:
            released = self.queue.requeue_unacked()
            if released:
                logger.info("Redelivering %d task(s) left by a previous worker", released)
        except QueueError:
            logger.exception("Could not release stale task claims")

        if self.run_on_start:
            logger.info("🚀 Running initial startup scrape...")
            self._ingest()

        logger.info("📡 Waiting for tasks...")
        while not self._stop.is_set():
            try:
                task = self.queue.dequeue(timeout=self.poll_interval)
            except QueueError:
                if self._stop.is_set():
                    break
                logger.exception("⚠️ Queue error, backing off %.1fs", self.error_backoff)
                self._stop.wait(self.error_backoff)
                continue

            if task is None:
                continue

            try:
                self.handle(task)
            finally:
                try:
                    self.queue.ack(task)
                except QueueError:
                    logger.exception("Failed to ack task %d; it may be redelivered", task.id)

        logger.info("Worker stopped after %d run(s)", self.runs_completed)
