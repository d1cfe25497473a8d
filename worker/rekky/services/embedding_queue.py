"""Background embedding generation with bounded concurrency and retries.

Callers enqueue a reference to an already persisted annotation or
recommendation and return immediately. A scheduler thread hands tasks to a
fixed-size thread pool; each task loads whatever context it is missing,
asks the generator for a vector and writes it back. Failures are retried
from the front of the queue after a delay and dropped once the retry
budget is spent.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Mapping, Optional, Set

from rekky.core.config import Settings
from rekky.etl.embedding_text import recommendation_fields
from rekky.models import PRIORITIES, RECORD_KINDS, EmbeddingTask, QueueStatus

logger = logging.getLogger(__name__)


class TaskTimeoutError(TimeoutError):
    """Raised inside a task that ran past its deadline."""


@dataclass(frozen=True)
class QueueConfig:
    max_concurrent: int = 3
    retry_delay: float = 5.0
    max_retries: int = 3
    batch_size: int = 5
    poll_interval: float = 1.0
    task_timeout: float = 120.0
    lease_seconds: float = 300.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "QueueConfig":
        return cls(
            max_concurrent=settings.queue_max_concurrent,
            retry_delay=settings.queue_retry_delay_ms / 1000.0,
            max_retries=settings.queue_max_retries,
            batch_size=settings.queue_batch_size,
            poll_interval=settings.queue_poll_interval_ms / 1000.0,
            task_timeout=settings.queue_task_timeout,
        )


def payload_is_incomplete(data: Mapping[str, Any]) -> bool:
    """A payload without an owner, or with barely any fields, is only a reference."""
    return not data.get("user_id") or len(data) <= 2


class EmbeddingTaskQueue:
    def __init__(self, record_store, generator, config: Optional[QueueConfig] = None, journal=None) -> None:
        self.record_store = record_store
        self.generator = generator
        self.config = config or QueueConfig()
        self.journal = journal

        self._queue: Deque[EmbeddingTask] = deque()
        self._processing: Set[str] = set()
        self._retry_timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._wake = threading.Event()
        self._is_processing = False
        self._closed = False
        self._generation = 0
        self._sequence = itertools.count(1)
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_concurrent, thread_name_prefix="embedding-task"
        )

    # ---------- Public API ----------

    def enqueue(
        self,
        kind: str,
        record_id: Any,
        data: Optional[Mapping[str, Any]] = None,
        priority: str = "normal",
    ) -> str:
        """Queue an embedding task and return its id without waiting for it."""
        if kind not in RECORD_KINDS:
            raise ValueError(f"Unknown record kind {kind!r}; expected one of {', '.join(RECORD_KINDS)}")
        if priority not in PRIORITIES:
            raise ValueError(f"Unknown priority {priority!r}; expected one of {', '.join(PRIORITIES)}")

        task = EmbeddingTask(
            id=f"{kind}-{record_id}-{int(time.time() * 1000)}-{next(self._sequence)}",
            kind=kind,
            record_id=record_id,
            data=dict(data or {}),
            max_retries=self.config.max_retries,
            priority=priority,
        )
        with self._lock:
            if self._closed:
                raise RuntimeError("Embedding queue has been shut down")
            # Recorded before it becomes visible to workers, so lease/ack always find the row.
            self._journal("record", task)
            if priority == "high":
                self._queue.appendleft(task)
            else:
                self._queue.append(task)
            self._start_locked()

        logger.info("Queued embedding task: %s (%s %s)", task.id, kind, record_id)
        return task.id

    def get_status(self) -> QueueStatus:
        with self._lock:
            return QueueStatus(
                queue_length=len(self._queue),
                processing=len(self._processing),
                is_processing=self._is_processing,
                retrying=len(self._retry_timers),
            )

    def clear(self) -> None:
        """Drop queued tasks, pending retries and in-flight bookkeeping."""
        with self._lock:
            self._generation += 1
            self._queue.clear()
            self._processing.clear()
            self._cancel_retries_locked()
            self._is_processing = False
            self._idle.notify_all()
        self._wake.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Block until nothing is queued, running or waiting to retry."""
        with self._idle:
            return self._idle.wait_for(self._is_idle_locked, timeout)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
            self._generation += 1
            self._cancel_retries_locked()
            self._is_processing = False
            left = len(self._queue)
            self._idle.notify_all()
        self._wake.set()
        self._executor.shutdown(wait=wait)
        logger.info("Embedding queue shut down (%d tasks left queued)", left)

    def recover(self) -> int:
        """Reload journaled tasks left pending by a previous process."""
        if self.journal is None:
            return 0
        tasks: List[EmbeddingTask] = self._journal("claim_pending", self.config.lease_seconds) or []
        if not tasks:
            return 0
        with self._lock:
            self._queue.extend(tasks)
            self._start_locked()
        logger.info("Recovered %d embedding tasks from the journal", len(tasks))
        return len(tasks)

    # ---------- Scheduling ----------

    def _is_idle_locked(self) -> bool:
        return not self._queue and not self._processing and not self._retry_timers

    def _start_locked(self) -> None:
        if self._is_processing:
            self._wake.set()
            return
        self._is_processing = True
        thread = threading.Thread(
            target=self._run_loop, args=(self._generation,), name="embedding-queue", daemon=True
        )
        thread.start()

    def _cancel_retries_locked(self) -> None:
        for timer in self._retry_timers.values():
            timer.cancel()
        self._retry_timers.clear()

    def _run_loop(self, generation: int) -> None:
        logger.info("Starting embedding queue processing")
        while True:
            self._wake.clear()
            with self._lock:
                if generation != self._generation:
                    return
                if not self._queue and not self._processing:
                    self._is_processing = False
                    self._idle.notify_all()
                    break
                batch: List[EmbeddingTask] = []
                available_slots = self.config.max_concurrent - len(self._processing)
                while available_slots > 0 and self._queue:
                    task = self._queue.popleft()
                    self._processing.add(task.id)
                    batch.append(task)
                    available_slots -= 1

            for task in batch:
                self._dispatch(task, generation)
            self._wake.wait(self.config.poll_interval)
        logger.info("Embedding queue processing completed")

    def _dispatch(self, task: EmbeddingTask, generation: int) -> None:
        try:
            self._executor.submit(self._run_task, task, generation)
        except RuntimeError:
            # Pool already shut down; leave the task for the journal to recover.
            with self._lock:
                self._processing.discard(task.id)
                self._idle.notify_all()

    # ---------- Task execution ----------

    def _run_task(self, task: EmbeddingTask, generation: int) -> None:
        self._journal("lease", task.id, self.config.lease_seconds)
        try:
            logger.info("Processing embedding task: %s", task.id)
            self._process(task, time.monotonic() + self.config.task_timeout)
        except Exception as exc:  # noqa: BLE001
            self._handle_failure(task, exc, generation)
        else:
            self._journal("ack", task.id)
            logger.info("Successfully processed embedding task: %s", task.id)
        finally:
            with self._lock:
                self._processing.discard(task.id)
                self._idle.notify_all()
            self._wake.set()

    def _process(self, task: EmbeddingTask, deadline: float) -> None:
        record = task.data
        if payload_is_incomplete(record):
            record = self.record_store.get_record(task.kind, task.record_id)
            self._check_deadline(task, deadline, "record fetch")

        place = self.record_store.get_place(record["place_id"]) if record.get("place_id") else None
        service = self.record_store.get_service(record["service_id"]) if record.get("service_id") else None
        user = self.record_store.get_user(record["user_id"]) if record.get("user_id") else None
        self._check_deadline(task, deadline, "enrichment")

        enriched = dict(record)
        enriched.update(
            place_name=place.get("name") if place else None,
            place_address=place.get("address") if place else None,
            user_name=user.get("display_name") if user else None,
            service_name=service.get("name") if service else None,
            service_type=service.get("service_type") if service else None,
            business_name=service.get("business_name") if service else None,
            address=service.get("address") if service else None,
        )

        if task.kind == "recommendation":
            vector = self.generator.generate_recommendation_embedding(recommendation_fields(enriched))
        else:
            vector = self.generator.generate_annotation_embedding(enriched)

        self.record_store.write_embedding(task.kind, task.record_id, vector)

    def _check_deadline(self, task: EmbeddingTask, deadline: float, stage: str) -> None:
        if time.monotonic() > deadline:
            raise TaskTimeoutError(
                f"Embedding task {task.id} exceeded {self.config.task_timeout:g}s during {stage}"
            )

    def _handle_failure(self, task: EmbeddingTask, exc: Exception, generation: int) -> None:
        error = f"{type(exc).__name__}: {exc}"
        if task.retry_count >= task.max_retries:
            logger.error(
                "Permanently failed embedding task %s after %d retries: %s", task.id, task.max_retries, error
            )
            self._journal("bury", task, error)
            return

        task.retry_count += 1
        logger.warning(
            "Failed to process embedding task %s: %s; retrying (attempt %d/%d)",
            task.id,
            error,
            task.retry_count,
            task.max_retries,
        )
        self._journal("release", task, error)

        timer = threading.Timer(self.config.retry_delay, self._requeue, args=(task, generation))
        timer.daemon = True
        with self._lock:
            if generation != self._generation:
                return
            self._retry_timers[task.id] = timer
        timer.start()

    def _requeue(self, task: EmbeddingTask, generation: int) -> None:
        with self._lock:
            self._retry_timers.pop(task.id, None)
            if generation != self._generation or self._closed:
                self._idle.notify_all()
                return
            self._queue.appendleft(task)
            self._start_locked()

    def _journal(self, method: str, *args: Any) -> Any:
        if self.journal is None:
            return None
        try:
            return getattr(self.journal, method)(*args)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Task journal %s failed: %s", method, exc)
            return None
