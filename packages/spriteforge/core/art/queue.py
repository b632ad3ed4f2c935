"""Bounded-concurrency priority queue for generation jobs.

Jobs are dispatched from a heap ordered by (priority rank, arrival sequence),
so higher priorities always run first and equal priorities run FIFO. At most
``concurrency`` jobs hold a slot at any moment. A job keeps its slot across
retries: the retry loop (with linear backoff) runs inside the slot rather than
re-entering the heap, which throttles provider pressure to ``concurrency``
calls even under sustained failure.

Finished job records stay queryable for ``retention_seconds`` and are then
swept from the job table.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import dataclasses
from dataclasses import dataclass
from datetime import UTC, datetime
import functools
import heapq
import itertools
import logging
import time
import uuid

from spriteforge.core.art.errors import (
    GenerationFailureError,
    JobCancelledError,
    QueueClearedError,
    is_retryable,
)
from spriteforge.core.art.events import EventBus, EventType, LifecycleEvent
from spriteforge.core.art.models import (
    GenerationJob,
    GenerationRequest,
    GenerationResult,
    JobStatus,
    QueueStats,
)

logger = logging.getLogger(__name__)

JobExecutor = Callable[[GenerationJob], Awaitable[GenerationResult]]


def _snapshot(job: GenerationJob) -> GenerationJob:
    return dataclasses.replace(job)


@dataclass
class JobRecord:
    """Job table slot: the live job plus its scheduling state."""

    job: GenerationJob
    executor: JobExecutor
    future: asyncio.Future[GenerationResult]
    seq: int
    finished_at: float | None = None

    def not_started(self) -> bool:
        """Queued with no attempt made yet (retry backoff does not count)."""
        return self.job.status == JobStatus.QUEUED and self.job.attempts == 0


class JobTable:
    """Id-addressed arena of job records with explicit expiry sweeps."""

    def __init__(self, retention_seconds: float) -> None:
        self.retention_seconds = retention_seconds
        self._records: dict[str, JobRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._records

    def add(self, record: JobRecord) -> None:
        self._records[record.job.id] = record

    def get(self, job_id: str) -> JobRecord | None:
        return self._records.get(job_id)

    def remove(self, job_id: str) -> JobRecord | None:
        return self._records.pop(job_id, None)

    def records(self) -> list[JobRecord]:
        return list(self._records.values())

    def sweep(self, now: float) -> int:
        """Drop finished records whose retention window has elapsed."""
        expired = [
            job_id
            for job_id, record in self._records.items()
            if record.finished_at is not None
            and now - record.finished_at >= self.retention_seconds
        ]
        for job_id in expired:
            del self._records[job_id]
        return len(expired)

    def drop_finished(self) -> int:
        """Drop every finished record regardless of age."""
        finished = [
            job_id for job_id, record in self._records.items() if record.job.status.is_finished()
        ]
        for job_id in finished:
            del self._records[job_id]
        return len(finished)


class AssetQueue:
    """Priority job scheduler with bounded concurrency and retries.

    Args:
        concurrency: Maximum number of jobs holding a slot at once.
        timeout_seconds: Per-attempt timeout; expiry counts as a transient failure.
        max_retries: Total attempt budget per job (the executor runs at most this often).
        backoff_seconds: Linear backoff unit; attempt N waits ``N * backoff_seconds``.
        retention_seconds: How long finished jobs stay queryable.
        active_job_estimate_ms: Wait estimate for the job at the head of the queue.
        per_job_estimate_ms: Added wait per job ahead in the queue.
        events: Bus receiving lifecycle events (a private bus if omitted).
        clock: Monotonic time source for retention (injectable for tests).
    """

    def __init__(
        self,
        concurrency: int = 3,
        timeout_seconds: float = 30.0,
        max_retries: int = 2,
        backoff_seconds: float = 1.0,
        retention_seconds: float = 300.0,
        active_job_estimate_ms: float = 2500.0,
        per_job_estimate_ms: float = 5000.0,
        events: EventBus | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")

        self.concurrency = concurrency
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.active_job_estimate_ms = active_job_estimate_ms
        self.per_job_estimate_ms = per_job_estimate_ms
        self.events = events or EventBus()
        self._clock = clock

        self._table = JobTable(retention_seconds)
        self._heap: list[tuple[int, int, str]] = []
        self._seq = itertools.count()
        self._active = 0
        self._paused = False
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Submission and dispatch
    # ------------------------------------------------------------------

    def enqueue(
        self,
        request: GenerationRequest,
        executor: JobExecutor,
    ) -> tuple[GenerationJob, asyncio.Future[GenerationResult]]:
        """Register a job and schedule it.

        Must be called from a running event loop.

        Returns:
            A snapshot of the new job and a future that resolves with the result
            or raises the final error.
        """
        self._sweep()

        loop = asyncio.get_running_loop()
        job = GenerationJob(id=uuid.uuid4().hex, request=request)
        record = JobRecord(
            job=job,
            executor=executor,
            future=loop.create_future(),
            seq=next(self._seq),
        )
        self._table.add(record)
        heapq.heappush(self._heap, (request.priority.rank, record.seq, job.id))

        logger.debug(
            "Queued job %s (%s, priority=%s)",
            job.id,
            request.asset_type.value,
            request.priority.value,
        )
        self._publish(EventType.JOB_QUEUED, job)
        self._dispatch()

        return _snapshot(job), record.future

    def _dispatch(self) -> None:
        while not self._paused and self._active < self.concurrency and self._heap:
            _, _, job_id = heapq.heappop(self._heap)
            record = self._table.get(job_id)
            if record is None or record.future.done():
                continue
            self._active += 1
            task = asyncio.get_running_loop().create_task(
                self._run(record), name=f"art-job-{job_id}"
            )
            self._tasks.add(task)
            task.add_done_callback(functools.partial(self._release, record))

    def _release(self, record: JobRecord, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        self._active -= 1
        if not record.future.done():
            # Cancelled before its first step ran.
            self._fail(record, GenerationFailureError("Job interrupted by shutdown"))
        self._dispatch()

    async def _run(self, record: JobRecord) -> None:
        job = record.job
        if record.future.done() or job.id not in self._table:
            return
        try:
            while True:
                job.status = JobStatus.GENERATING
                if job.started_at is None:
                    job.started_at = datetime.now(UTC)
                job.attempts += 1
                self._publish(EventType.JOB_STARTED, job)

                try:
                    result = await asyncio.wait_for(
                        record.executor(_snapshot(job)), timeout=self.timeout_seconds
                    )
                except TimeoutError:
                    error: BaseException = GenerationFailureError(
                        f"Generation timed out after {self.timeout_seconds:g}s"
                    )
                except Exception as e:
                    error = e
                else:
                    self._complete(record, result)
                    return

                if is_retryable(error) and job.attempts < self.max_retries:
                    job.status = JobStatus.QUEUED
                    delay = job.attempts * self.backoff_seconds
                    logger.warning(
                        "Job %s failed (%s), retrying in %.1fs (%d/%d)",
                        job.id,
                        error,
                        delay,
                        job.attempts,
                        self.max_retries,
                    )
                    await asyncio.sleep(delay)
                    continue

                self._fail(record, error)
                return
        except asyncio.CancelledError:
            self._fail(record, GenerationFailureError("Job interrupted by shutdown"))
            raise

    def _complete(self, record: JobRecord, result: GenerationResult) -> None:
        job = record.job
        job.status = JobStatus.COMPLETE
        job.completed_at = datetime.now(UTC)
        job.result = result
        record.finished_at = self._clock()

        logger.debug("Job %s complete after %d attempt(s)", job.id, job.attempts)
        if not record.future.done():
            record.future.set_result(result)
        self._publish(EventType.JOB_COMPLETE, job, result=result)

    def _fail(self, record: JobRecord, error: BaseException) -> None:
        job = record.job
        job.status = JobStatus.FAILED
        job.completed_at = datetime.now(UTC)
        job.error = str(error) or type(error).__name__
        record.finished_at = self._clock()

        logger.error("Job %s failed after %d attempt(s): %s", job.id, job.attempts, job.error)
        if not record.future.done():
            record.future.set_exception(error)
        self._publish(EventType.JOB_FAILED, job, error=job.error)

    def _publish(
        self,
        event_type: EventType,
        job: GenerationJob,
        *,
        result: GenerationResult | None = None,
        error: str | None = None,
    ) -> None:
        self.events.publish(
            LifecycleEvent(type=event_type, job=_snapshot(job), result=result, error=error)
        )

    def _sweep(self) -> None:
        removed = self._table.sweep(self._clock())
        if removed:
            logger.debug("Swept %d expired job records", removed)

    def _remove_from_heap(self, job_ids: set[str]) -> None:
        self._heap = [entry for entry in self._heap if entry[2] not in job_ids]
        heapq.heapify(self._heap)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> GenerationJob | None:
        """Snapshot of a job, or None if unknown or expired."""
        self._sweep()
        record = self._table.get(job_id)
        return _snapshot(record.job) if record else None

    def get_all_jobs(self) -> list[GenerationJob]:
        self._sweep()
        return [_snapshot(record.job) for record in self._table.records()]

    def get_position(self, job_id: str) -> int:
        """1-based rank among queued jobs by arrival, or -1 if not queued."""
        self._sweep()
        queued = sorted(
            (r for r in self._table.records() if r.not_started()),
            key=lambda r: r.seq,
        )
        for index, record in enumerate(queued, start=1):
            if record.job.id == job_id:
                return index
        return -1

    def get_estimated_wait(self, job_id: str) -> float:
        """Estimated milliseconds until the job finishes waiting (0 if not queued)."""
        position = self.get_position(job_id)
        if position == -1:
            return 0.0
        return self.active_job_estimate_ms + (position - 1) * self.per_job_estimate_ms

    def get_stats(self) -> QueueStats:
        self._sweep()
        counts = {status: 0 for status in JobStatus}
        pending = 0
        for record in self._table.records():
            counts[record.job.status] += 1
            pending += record.not_started()
        return QueueStats(
            pending=pending,
            active=counts[JobStatus.GENERATING],
            completed=counts[JobStatus.COMPLETE],
            failed=counts[JobStatus.FAILED],
            size=len(self._heap),
        )

    @property
    def paused(self) -> bool:
        return self._paused

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def cancel(self, job_id: str) -> bool:
        """Cancel a job that has not started yet.

        Jobs that are generating, or waiting in retry backoff, cannot be cancelled.
        """
        self._sweep()
        record = self._table.get(job_id)
        if record is None or not record.not_started():
            return False

        self._table.remove(job_id)
        self._remove_from_heap({job_id})
        record.job.status = JobStatus.FAILED
        record.job.error = "Cancelled"
        if not record.future.done():
            record.future.set_exception(JobCancelledError(job_id))

        logger.info("Cancelled job %s", job_id)
        return True

    def pause(self) -> None:
        """Stop dispatching new jobs. Running jobs continue."""
        self._paused = True

    def resume(self) -> None:
        self._paused = False
        self._dispatch()

    def clear(self) -> int:
        """Drop every job that has not started. Returns the number dropped."""
        dropped = [record for record in self._table.records() if record.not_started()]
        for record in dropped:
            self._table.remove(record.job.id)
            if not record.future.done():
                record.future.set_exception(QueueClearedError(record.job.id))
        self._remove_from_heap({record.job.id for record in dropped})

        if dropped:
            logger.info("Cleared %d queued jobs", len(dropped))
        return len(dropped)

    def cleanup(self) -> int:
        """Drop finished job records immediately. Returns the number removed."""
        return self._table.drop_finished()

    async def join(self) -> None:
        """Wait until no job is running (jobs dispatched meanwhile included)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Clear pending jobs, interrupt running ones and wait for them to exit."""
        self.clear()
        for task in list(self._tasks):
            task.cancel()
        await self.join()
