"""
Embedding Queue

Keeps record vectors eventually consistent with record content.

Record writes enqueue a task and return immediately. A single scheduling
loop on the application's event loop admits up to ``max_concurrent`` tasks
at a time; task bodies (store reads, the embedding call, the vector write)
are blocking I/O and run in worker threads via ``asyncio.to_thread``.

Pipeline per task:
1. Load the full record when the payload is minimal
2. Join place / service / author context
3. Render embedding text
4. Embed and validate (1536 finite numbers)
5. Persist the vector and stamp ``updated_at``

Failures are retried at the head of the queue after ``retry_delay``, up to
``max_retries``; then the task is dropped with an error log. A missing row is
retried too, since a write hook may enqueue before its transaction commits.
Records whose content can never embed (empty text, malformed vector or
payload) are dropped immediately. The vector column is only ever written
on success.
"""

import asyncio
import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional, Set, Union

from pydantic import ValidationError

from ..common.config import QueueConfig
from ..common.embedding_service import EMBEDDING_DIMENSIONS, EmbeddingService, validate_embedding
from ..common.errors import EmptyContentError, InvalidVectorError
from ..common.record_store import RecordStore
from ..common.schemas.records import Priority, Record, RecordKind
from ..common.schemas.templates import render_embedding_text

logger = logging.getLogger("rekky.indexer.embedding_queue")

# Retrying cannot fix these
PERMANENT_ERRORS = (EmptyContentError, InvalidVectorError, ValidationError)


def _coerce(enum_cls, value):
    """Enum member from a member or a case-insensitive value string"""
    if isinstance(value, enum_cls):
        return value
    return enum_cls(str(value).strip().lower())


@dataclass
class EmbeddingTask:
    """A pending (re)computation of one record's vector"""
    id: str
    kind: RecordKind
    record_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    priority: Priority = Priority.NORMAL
    retry_count: int = 0
    max_retries: int = 3
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_minimal(self) -> bool:
        """Payload lacks the fields needed to render text on its own"""
        return "user_id" not in self.payload or len(self.payload) <= 2


@dataclass
class QueueStatus:
    queue_length: int
    in_flight: int
    is_running: bool
    pending_retries: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "queue_length": self.queue_length,
            "in_flight": self.in_flight,
            "is_running": self.is_running,
            "pending_retries": self.pending_retries,
        }


class EmbeddingQueue:
    """
    In-process background queue with bounded concurrency and retry.

    ``enqueue`` is synchronous and thread-safe. The scheduler starts on the
    event loop that is running when the first task is enqueued (or on the
    loop passed in), and stops by itself once there is nothing queued or
    in flight.
    """

    def __init__(
        self,
        store: RecordStore,
        embedding_service: EmbeddingService,
        config: Optional[QueueConfig] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self._store = store
        self._embedding = embedding_service
        self._config = config or QueueConfig()
        self._loop = loop

        self._queue: Deque[EmbeddingTask] = deque()
        self._in_flight: Dict[str, EmbeddingTask] = {}
        self._retry_handles: Dict[str, asyncio.TimerHandle] = {}
        self._workers: Set[asyncio.Task] = set()
        self._lock = threading.Lock()
        self._sequence = itertools.count(1)

        self._wakeup: Optional[asyncio.Event] = None
        self._scheduler: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enqueue(
        self,
        kind: Union[RecordKind, str],
        record_id: str,
        payload: Optional[Dict[str, Any]] = None,
        priority: Union[Priority, str] = Priority.NORMAL,
    ) -> str:
        """
        Queue a record for embedding. Never blocks.

        Kind and priority strings are case-insensitive; anything that is not a
        known kind or priority raises ValueError.

        Args:
            kind: annotation, recommendation or question
            record_id: Record primary key
            payload: Record fields known to the caller (may be minimal)
            priority: high tasks jump the queue; normal/low go to the tail

        Returns:
            Task id
        """
        kind = _coerce(RecordKind, kind)
        priority = _coerce(Priority, priority)
        task = EmbeddingTask(
            id=f"{kind.value}-{record_id}-{next(self._sequence)}",
            kind=kind,
            record_id=str(record_id),
            payload=dict(payload or {}),
            priority=priority,
            max_retries=self._config.max_retries,
        )

        with self._lock:
            if priority == Priority.HIGH:
                self._queue.appendleft(task)
            else:
                self._queue.append(task)
            queue_length = len(self._queue)

        logger.info("Queued embedding task %s (priority=%s, queue length=%d)",
                    task.id, priority.value, queue_length)
        self._kick()
        return task.id

    def get_status(self) -> QueueStatus:
        with self._lock:
            return QueueStatus(
                queue_length=len(self._queue),
                in_flight=len(self._in_flight),
                is_running=self._scheduler is not None and not self._scheduler.done(),
                pending_retries=len(self._retry_handles),
            )

    def clear(self) -> None:
        """
        Drop every queued task and pending retry.

        In-flight tasks are not dropped: their bodies are already running in
        worker threads and cannot be interrupted, so they stay counted against
        ``max_concurrent`` until they finish and may still persist a vector.
        """
        with self._lock:
            dropped = len(self._queue)
            self._queue.clear()
            handles = list(self._retry_handles.values())
            self._retry_handles.clear()
        for handle in handles:
            handle.cancel()
        logger.info("Cleared embedding queue (%d queued, %d retries)", dropped, len(handles))

    async def join(self, poll_interval: float = 0.01) -> None:
        """Wait until nothing is queued, in flight or waiting to retry."""
        self._kick()
        while True:
            with self._lock:
                if not self._queue and not self._in_flight and not self._retry_handles:
                    return
            await asyncio.sleep(poll_interval)

    async def close(self) -> None:
        """Stop the scheduler, cancelling pending retries. Queued tasks are kept."""
        with self._lock:
            handles = list(self._retry_handles.values())
            self._retry_handles.clear()
        for handle in handles:
            handle.cancel()
        if self._scheduler is not None and not self._scheduler.done():
            self._scheduler.cancel()
            try:
                await self._scheduler
            except asyncio.CancelledError:
                pass
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _resolve_loop(self) -> Optional[asyncio.AbstractEventLoop]:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if self._loop is None or self._loop.is_closed():
            if running is None:
                return None
            self._loop = running
            self._wakeup = None
            self._scheduler = None
        return self._loop

    def _kick(self) -> None:
        """Make sure the scheduler is running and awake, from any thread."""
        loop = self._resolve_loop()
        if loop is None:
            logger.debug("No event loop yet, queued tasks start with the next enqueue or join")
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._ensure_scheduler()
        else:
            loop.call_soon_threadsafe(self._ensure_scheduler)

    def _ensure_scheduler(self) -> None:
        # Always called on the event loop thread
        if self._wakeup is None:
            self._wakeup = asyncio.Event()
        self._wakeup.set()
        if self._scheduler is None or self._scheduler.done():
            self._scheduler = self._loop.create_task(self._run())

    async def _run(self) -> None:
        logger.debug("Embedding queue scheduler started")
        while True:
            self._wakeup.clear()
            with self._lock:
                if not self._queue and not self._in_flight:
                    break
                admitted = []
                while self._queue and len(self._in_flight) < self._config.max_concurrent:
                    task = self._queue.popleft()
                    self._in_flight[task.id] = task
                    admitted.append(task)

            for task in admitted:
                worker = self._loop.create_task(self._execute(task))
                self._workers.add(worker)
                worker.add_done_callback(self._workers.discard)

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._config.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.debug("Embedding queue scheduler idle, stopping")

    async def _execute(self, task: EmbeddingTask) -> None:
        try:
            await asyncio.to_thread(self._process, task)
        except PERMANENT_ERRORS as e:
            logger.error("Dropping embedding task %s: %s", task.id, e)
        except Exception as e:
            self._handle_failure(task, e)
        else:
            logger.info("Embedded %s %s", task.kind.value, task.record_id)
        finally:
            with self._lock:
                self._in_flight.pop(task.id, None)
            if self._wakeup is not None:
                self._wakeup.set()

    def _handle_failure(self, task: EmbeddingTask, error: Exception) -> None:
        if task.retry_count >= task.max_retries:
            logger.error("Embedding task %s failed after %d retries, dropping: %s",
                         task.id, task.retry_count, error)
            return

        task.retry_count += 1
        logger.warning("Embedding task %s failed (%s), retry %d/%d in %.1fs",
                       task.id, error, task.retry_count, task.max_retries, self._config.retry_delay)
        handle = self._loop.call_later(self._config.retry_delay, self._requeue, task)
        with self._lock:
            self._retry_handles[task.id] = handle

    def _requeue(self, task: EmbeddingTask) -> None:
        with self._lock:
            if self._retry_handles.pop(task.id, None) is None:
                return  # cleared while waiting
            self._queue.appendleft(task)
        self._ensure_scheduler()

    # ------------------------------------------------------------------
    # Task body (worker thread)
    # ------------------------------------------------------------------

    def _process(self, task: EmbeddingTask) -> None:
        if task.is_minimal:
            record = self._store.fetch_full_record(task.kind, task.record_id)
        else:
            record = Record.model_validate({**task.payload, "id": task.record_id})

        context = self._store.fetch_entity_context(
            place_id=record.place_id,
            service_id=record.service_id,
            user_id=record.user_id,
        )
        text = render_embedding_text(task.kind, record, context)

        vector = self._embedding.embed(text)
        dimensions = getattr(self._embedding, "dimensions", EMBEDDING_DIMENSIONS)
        if not validate_embedding(vector, dimensions):
            raise InvalidVectorError(f"Invalid embedding for {task.kind.value} {task.record_id}")

        self._store.persist_vector(task.kind, task.record_id, vector)
