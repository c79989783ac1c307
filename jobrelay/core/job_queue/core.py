"""Job Queue Core.

Provides the in-process background queue:
- Job definition
- FIFO processing loop with linear-backoff retries
- Hand-off of exhausted jobs to the dead letter store
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import secrets
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

from jobrelay.core.dead_letter_queue import DeadLetterEntry, DeadLetterStore
from jobrelay.core.errors import JobValidationError, QueueFullError
from jobrelay.core.logging.structured import job_context

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Union[Awaitable[Any], Any]]
SleepFunc = Callable[[float], Awaitable[Any]]

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 1000


class JobStatus(str, Enum):
    """State of a job."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"  # Handed to the dead letter queue


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    """A unit of deferred work. Owned by the queue once enqueued."""
    id: str
    type: str
    handler: Handler
    payload: Any = None
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_base_ms: int = DEFAULT_RETRY_DELAY_MS
    status: JobStatus = JobStatus.QUEUED
    retries: int = 0
    added_at: datetime = field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def can_retry(self) -> bool:
        return self.retries < self.max_retries

    @property
    def next_retry_delay_seconds(self) -> float:
        # Linear: base * attempt number
        return self.retry_delay_base_ms * self.retries / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status.value,
            "retries": self.retries,
            "max_retries": self.max_retries,
            "retry_delay_base_ms": self.retry_delay_base_ms,
            "added_at": self.added_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "last_error": self.last_error,
        }


def generate_job_id() -> str:
    return f"job_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def _validate(job_type: Any, handler: Any, max_retries: int, retry_delay_ms: int) -> None:
    if not isinstance(job_type, str) or not job_type.strip():
        raise JobValidationError("Job must have a non-empty type")
    if handler is None or not callable(handler):
        raise JobValidationError("Job must have a callable handler")
    if max_retries < 1:
        raise JobValidationError(f"max_retries must be at least 1, got {max_retries}")
    if retry_delay_ms < 0:
        raise JobValidationError(f"retry_delay_ms must not be negative, got {retry_delay_ms}")


def create_job(
    job_type: Optional[str],
    handler: Optional[Handler],
    payload: Any = None,
    max_retries: Optional[int] = None,
    retry_delay_ms: Optional[int] = None,
    job_id: Optional[str] = None,
) -> Job:
    """Validate arguments and build a queued job."""
    max_retries = DEFAULT_MAX_RETRIES if max_retries is None else max_retries
    retry_delay_ms = DEFAULT_RETRY_DELAY_MS if retry_delay_ms is None else retry_delay_ms
    _validate(job_type, handler, max_retries, retry_delay_ms)

    return Job(
        id=job_id or generate_job_id(),
        type=job_type,
        handler=handler,
        payload=payload,
        max_retries=max_retries,
        retry_delay_base_ms=retry_delay_ms,
    )


@dataclass
class QueueStats:
    """Point-in-time queue statistics."""
    total_jobs: int
    completed_jobs: int
    failed_jobs: int
    current_queue_size: int
    processing: bool

    @property
    def success_rate(self) -> str:
        if self.total_jobs == 0:
            return "N/A"
        return f"{self.completed_jobs / self.total_jobs * 100:.2f}%"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalJobs": self.total_jobs,
            "completedJobs": self.completed_jobs,
            "failedJobs": self.failed_jobs,
            "currentQueueSize": self.current_queue_size,
            "processing": self.processing,
            "successRate": self.success_rate,
        }


class JobQueue:
    """Single-worker background queue.

    ``enqueue`` returns as soon as the job is appended; the processing loop runs
    as an asyncio task on the caller's event loop and executes jobs one at a
    time in arrival order. A failed job waits ``base * attempt`` ms inside the
    loop, so later jobs wait too, and then goes back to the tail. After
    ``max_retries`` attempts the job is recorded in the dead letter store.

    All state is mutated on the event loop thread only.
    """

    def __init__(
        self,
        dead_letters: DeadLetterStore,
        *,
        default_max_retries: int = DEFAULT_MAX_RETRIES,
        default_retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
        max_queue_size: Optional[int] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        self._dead_letters = dead_letters
        self._default_max_retries = default_max_retries
        self._default_retry_delay_ms = default_retry_delay_ms
        self._max_queue_size = max_queue_size
        self._sleep = sleep or asyncio.sleep

        self._pending: Deque[Job] = deque()
        self._processing = False
        self._task: Optional[asyncio.Task] = None

        self._total_jobs = 0
        self._completed_jobs = 0
        self._failed_jobs = 0

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def dead_letters(self) -> DeadLetterStore:
        return self._dead_letters

    def __len__(self) -> int:
        return len(self._pending)

    def enqueue(
        self,
        job_type: Optional[str] = None,
        handler: Optional[Handler] = None,
        payload: Any = None,
        *,
        max_retries: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
    ) -> Job:
        """Queue ``handler(payload)`` for background execution.

        Raises:
            JobValidationError: ``job_type`` or ``handler`` is missing or invalid.
            QueueFullError: the queue is bounded and already full.
        """
        job = create_job(
            job_type,
            handler,
            payload,
            max_retries=self._default_max_retries if max_retries is None else max_retries,
            retry_delay_ms=(
                self._default_retry_delay_ms if retry_delay_ms is None else retry_delay_ms
            ),
        )
        return self.enqueue_job(job)

    def enqueue_job(self, job: Job) -> Job:
        """Queue a job built with ``create_job``.

        Raises:
            JobValidationError: the job is invalid, or it was already submitted.
            QueueFullError: the queue is bounded and already full.
        """
        _validate(job.type, job.handler, job.max_retries, job.retry_delay_base_ms)
        if (
            job.status != JobStatus.QUEUED
            or job.retries
            or job.started_at is not None
            or any(pending is job for pending in self._pending)
        ):
            raise JobValidationError(f"Job {job.id} has already been submitted")

        if self._max_queue_size is not None and len(self._pending) >= self._max_queue_size:
            raise QueueFullError(
                f"Queue is full ({self._max_queue_size} pending jobs), rejecting {job.type}"
            )

        self._pending.append(job)
        self._total_jobs += 1

        logger.info(
            f"Job queued: {job.type} (ID: {job.id})",
            extra={"extra_fields": {"queue_size": len(self._pending)}},
        )

        self._ensure_processing()
        return job

    def start(self) -> None:
        """Start the processing loop if jobs are waiting (e.g. queued before the loop ran)."""
        self._ensure_processing()

    def _ensure_processing(self) -> None:
        if self._processing or not self._pending:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; job processing deferred")
            return
        self._processing = True
        self._task = loop.create_task(self._process())

    async def _process(self) -> None:
        logger.info("Starting job processor")
        try:
            while self._pending:
                job = self._pending.popleft()
                await self._run_job(job)
        finally:
            self._processing = False
            self._task = None
            logger.info("Job processor stopped (queue empty)")

    async def _run_job(self, job: Job) -> None:
        job.status = JobStatus.PROCESSING
        job.started_at = _utcnow()
        logger.info(f"Processing job: {job.type} (ID: {job.id})")

        try:
            with job_context(job.id, job.type):
                result = job.handler(job.payload)
                if inspect.isawaitable(result):
                    await result
        except Exception as e:
            await self._handle_failure(job, e)
            return

        job.status = JobStatus.COMPLETED
        job.completed_at = _utcnow()
        self._completed_jobs += 1

        duration_ms = (job.completed_at - job.started_at).total_seconds() * 1000
        logger.info(
            f"Job completed: {job.type} (ID: {job.id}) in {duration_ms:.0f}ms",
            extra={"extra_fields": {"duration_ms": round(duration_ms, 2), "retries": job.retries}},
        )

    async def _handle_failure(self, job: Job, error: Exception) -> None:
        job.retries += 1
        job.last_error = str(error) or type(error).__name__

        if job.can_retry:
            delay = job.next_retry_delay_seconds
            logger.warning(
                f"Job failed: {job.type} (ID: {job.id}), retrying in {delay:.3f}s "
                f"(attempt {job.retries}/{job.max_retries}): {job.last_error}"
            )
            await self._sleep(delay)
            job.status = JobStatus.QUEUED
            self._pending.append(job)
            return

        job.status = JobStatus.FAILED
        self._failed_jobs += 1
        logger.error(
            f"Job permanently failed: {job.type} (ID: {job.id}) "
            f"after {job.max_retries} attempts: {job.last_error}"
        )
        self._dead_letters.record_failure(job)

    def get_stats(self) -> QueueStats:
        return QueueStats(
            total_jobs=self._total_jobs,
            completed_jobs=self._completed_jobs,
            failed_jobs=self._failed_jobs,
            current_queue_size=len(self._pending),
            processing=self._processing,
        )

    def pending_jobs(self) -> List[Dict[str, Any]]:
        """Snapshot of not-yet-started jobs in FIFO order, for debugging."""
        return [
            {
                "id": job.id,
                "type": job.type,
                "status": job.status.value,
                "added_at": job.added_at.isoformat(),
                "retries": job.retries,
            }
            for job in self._pending
        ]

    def clear(self) -> int:
        """Discard pending jobs. The in-flight job and the DLQ are untouched."""
        count = len(self._pending)
        self._pending.clear()
        logger.info(f"Cleared {count} pending jobs")
        return count

    async def join(self, timeout: Optional[float] = None) -> bool:
        """Wait until the processing loop goes idle. Returns False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while self._task is not None:
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=remaining)
            except asyncio.TimeoutError:
                return False
        return not self._processing

    # Dead letter passthroughs

    def get_dead_letter_entries(self) -> List[DeadLetterEntry]:
        return self._dead_letters.list()

    def clear_dead_letter_entries(self) -> int:
        return self._dead_letters.clear()

    def requeue_dead_letter_entry(self, entry_id: str) -> DeadLetterEntry:
        """Remove an entry from the DLQ and return it for the caller to re-enqueue."""
        return self._dead_letters.requeue(entry_id)
