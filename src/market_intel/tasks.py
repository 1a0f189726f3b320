"""Task queue carrying ingestion triggers from producers to the worker.

FIFO, at-least-once: a dequeued task is only claimed; it is removed by
``ack`` after the worker has finished with it. Claims left behind by a
consumer that died mid-run are released by ``requeue_unacked`` on the next
start, so the trigger is redelivered (idempotent inserts make that harmless).

两种实现：
  - MemoryTaskQueue: 单进程内存队列（测试 / 本地）
  - SqlTaskQueue: 持久化到数据库表，PostgreSQL 下用 LISTEN/NOTIFY 唤醒消费者
"""

import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from enum import Enum

import psycopg
from pydantic import BaseModel
from sqlalchemy import delete, insert, select, text, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .errors import QueueError
from .store import Clock, Schema, utc_now

logger = logging.getLogger(__name__)

NOTIFY_CHANNEL = "market_intel_tasks"


class TaskCommand(str, Enum):
    INGEST_NEWS = "INGEST_NEWS"


class Task(BaseModel):
    """A queued command; identity is only its queue position."""

    id: int
    command: str


class TaskQueue(ABC):
    """Durable FIFO between API-side producers and the single consumer."""

    @abstractmethod
    def enqueue(self, command: TaskCommand) -> Task:
        """Append command; raises QueueError if it could not be recorded."""
        ...

    @abstractmethod
    def dequeue(self, timeout: float | None = None) -> Task | None:
        """Claim the oldest task, blocking until one is available.

        With ``timeout=None`` this waits indefinitely; otherwise it returns
        None once the timeout elapses without a task.
        """
        ...

    @abstractmethod
    def ack(self, task: Task) -> None:
        """Mark a claimed task as done, removing it from the queue."""
        ...

    @abstractmethod
    def requeue_unacked(self) -> int:
        """Release all claimed-but-unacked tasks; returns how many."""
        ...

    def close(self) -> None:
        """Release resources and wake any blocked consumer."""


# ---------------------------------------------------------------------------
# In-memory queue
# ---------------------------------------------------------------------------

class MemoryTaskQueue(TaskQueue):
    """Process-local queue. Not durable; survives nothing but is handy for tests."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._pending: deque[Task] = deque()
        self._claimed: dict[int, Task] = {}
        self._ids = itertools.count(1)
        self._closed = False

    def enqueue(self, command: TaskCommand) -> Task:
        with self._cond:
            if self._closed:
                raise QueueError("Queue is closed")
            task = Task(id=next(self._ids), command=TaskCommand(command).value)
            self._pending.append(task)
            self._cond.notify()
        return task

    def dequeue(self, timeout: float | None = None) -> Task | None:
        with self._cond:
            ready = self._cond.wait_for(lambda: self._pending or self._closed, timeout)
            if not ready:
                return None
            if self._closed:
                raise QueueError("Queue is closed")
            task = self._pending.popleft()
            self._claimed[task.id] = task
            return task

    def ack(self, task: Task) -> None:
        with self._cond:
            self._claimed.pop(task.id, None)

    def requeue_unacked(self) -> int:
        with self._cond:
            claimed = sorted(self._claimed.values(), key=lambda t: t.id, reverse=True)
            for task in claimed:
                self._pending.appendleft(task)
            self._claimed.clear()
            if claimed:
                self._cond.notify_all()
            return len(claimed)

    def pending(self) -> int:
        with self._cond:
            return len(self._pending)

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()


# ---------------------------------------------------------------------------
# Database-backed queue
# ---------------------------------------------------------------------------

class SqlTaskQueue(TaskQueue):
    """Queue persisted in the ``task_queue`` table.

    On PostgreSQL claims use ``FOR UPDATE SKIP LOCKED`` and an idle consumer
    sleeps on ``LISTEN`` until a producer's ``pg_notify``. Other databases
    fall back to an in-process wake-up, bounded by ``poll_interval`` so
    producers in other processes are still picked up.
    """

    def __init__(
        self,
        engine: Engine,
        schema: Schema,
        clock: Clock = utc_now,
        poll_interval: float = 5.0,
    ) -> None:
        self.engine = engine
        self.schema = schema
        self.poll_interval = poll_interval
        self._clock = clock
        self._is_postgres = engine.dialect.name == "postgresql"
        self._wakeup = threading.Condition()
        self._generation = 0  # bumped on every local enqueue
        self._listener: psycopg.Connection | None = None
        self._closed = False

    # -- producer side -----------------------------------------------------

    def enqueue(self, command: TaskCommand) -> Task:
        command = TaskCommand(command)
        if self._closed:
            raise QueueError("Queue is closed")
        tasks = self.schema.tasks
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    insert(tasks).values(command=command.value, enqueued_at=self._clock())
                )
                task_id = result.inserted_primary_key[0]
                if self._is_postgres:
                    conn.execute(
                        text("SELECT pg_notify(:channel, :payload)"),
                        {"channel": NOTIFY_CHANNEL, "payload": str(task_id)},
                    )
        except SQLAlchemyError as exc:
            raise QueueError(f"Failed to enqueue {command.value}: {exc}") from exc

        with self._wakeup:
            self._generation += 1
            self._wakeup.notify_all()
        logger.info("Enqueued task %d (%s)", task_id, command.value)
        return Task(id=task_id, command=command.value)

    # -- consumer side -----------------------------------------------------

    def _claim(self) -> Task | None:
        tasks = self.schema.tasks
        stmt = (
            select(tasks.c.id, tasks.c.command)
            .where(tasks.c.claimed_at.is_(None))
            .order_by(tasks.c.id)
            .limit(1)
        )
        if self._is_postgres:
            stmt = stmt.with_for_update(skip_locked=True)

        with self.engine.begin() as conn:
            row = conn.execute(stmt).first()
            if row is None:
                return None
            claimed = conn.execute(
                update(tasks)
                .where(tasks.c.id == row.id, tasks.c.claimed_at.is_(None))
                .values(claimed_at=self._clock())
            )
            if claimed.rowcount != 1:
                return None
        return Task(id=row.id, command=row.command)

    def _ensure_listener(self) -> None:
        if not self._is_postgres or self._listener is not None:
            return
        conninfo = self.engine.url.set(drivername="postgresql").render_as_string(
            hide_password=False
        )
        self._listener = psycopg.connect(conninfo, autocommit=True)
        self._listener.execute(f"LISTEN {NOTIFY_CHANNEL}")

    def _drop_listener(self) -> None:
        if self._listener is not None:
            try:
                self._listener.close()
            except psycopg.Error:
                logger.debug("Ignoring error while closing LISTEN connection")
            self._listener = None

    def _wait_for_signal(self, seen_generation: int, timeout: float) -> None:
        if self._listener is not None:
            for _ in self._listener.notifies(timeout=timeout, stop_after=1):
                break
            return
        with self._wakeup:
            self._wakeup.wait_for(
                lambda: self._generation != seen_generation or self._closed,
                timeout,
            )

    def dequeue(self, timeout: float | None = None) -> Task | None:
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self._closed:
                raise QueueError("Queue is closed")
            with self._wakeup:
                seen = self._generation
            try:
                self._ensure_listener()
                task = self._claim()
            except (SQLAlchemyError, psycopg.Error) as exc:
                self._drop_listener()
                raise QueueError(f"Failed to dequeue: {exc}") from exc
            if task is not None:
                logger.debug("Claimed task %d (%s)", task.id, task.command)
                return task

            if deadline is None:
                wait = self.poll_interval
            else:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                wait = min(self.poll_interval, remaining)

            try:
                self._wait_for_signal(seen, wait)
            except psycopg.Error as exc:
                self._drop_listener()
                raise QueueError(f"Lost queue notification channel: {exc}") from exc

    def ack(self, task: Task) -> None:
        tasks = self.schema.tasks
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(tasks).where(tasks.c.id == task.id))
        except SQLAlchemyError as exc:
            raise QueueError(f"Failed to ack task {task.id}: {exc}") from exc

    def requeue_unacked(self) -> int:
        tasks = self.schema.tasks
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    update(tasks).where(tasks.c.claimed_at.is_not(None)).values(claimed_at=None)
                )
        except SQLAlchemyError as exc:
            raise QueueError(f"Failed to release claimed tasks: {exc}") from exc
        if result.rowcount:
            logger.warning("Released %d unacknowledged task(s) for redelivery", result.rowcount)
        return result.rowcount

    def pending(self) -> int:
        tasks = self.schema.tasks
        with self.engine.connect() as conn:
            rows = conn.execute(select(tasks.c.id).where(tasks.c.claimed_at.is_(None))).all()
        return len(rows)

    def close(self) -> None:
        self._closed = True
        with self._wakeup:
            self._wakeup.notify_all()
        self._drop_listener()
