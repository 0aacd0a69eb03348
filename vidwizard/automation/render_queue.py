"""
Render Job Queue

Client-side queue that feeds render requests to the remote render backend
without exceeding a concurrency cap, and reconciles job state by polling.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from .automation_models import (
    BackendJobStatus, BackendStatus, JobStatus, QueueMetrics, QueueSnapshot, RenderJob
)
from .queue_store import QueueStore
from .render_backend import RenderBackend, SubmissionError, TransientError
from ..utils.config import QueueConfig
from ..utils.errors import InvariantViolation
from ..video_assembly.video_models import parse_render_request

JobListener = Callable[[RenderJob], None]


class RenderJobQueue:
    """
    Render job queue with a fixed number of processing slots.

    Lifecycle per job: Queued -> Processing -> Completed | Failed.

    - ``enqueue`` only decides whether a job may run; it never talks to the backend
    - ``tick`` submits Processing jobs that have no backend handle, polls the
      ones that do, and promotes the oldest Queued job when a slot frees up
    - every mutation is written to the snapshot store; on startup, Processing
      jobs that never received a handle go back to Queued
    """

    def __init__(self,
                 backend: RenderBackend,
                 store: Optional[QueueStore] = None,
                 config: Optional[QueueConfig] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config or QueueConfig()
        self.backend = backend
        self.store = store
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        # State management
        self._jobs: List[RenderJob] = []
        self._submitting: Set[str] = set()
        self._polling: Set[str] = set()
        self._poll_failures: Dict[str, int] = {}
        self._next_poll_at: Dict[str, float] = {}
        self._deadlines: Dict[str, float] = {}
        self._listeners: List[JobListener] = []

        self._tick_running = False
        self._wake = asyncio.Event()
        self.is_running = False

        self._restore()

    # ----- queries -----

    @property
    def jobs(self) -> List[RenderJob]:
        """Jobs in enqueue order"""
        return list(self._jobs)

    def get_job(self, job_id: str) -> Optional[RenderJob]:
        for job in self._jobs:
            if job.id == job_id:
                return job
        return None

    @property
    def active_count(self) -> int:
        return sum(1 for job in self._jobs if job.status == JobStatus.PROCESSING)

    @property
    def can_start_new(self) -> bool:
        return self.active_count < self.config.max_concurrent

    def get_queue_metrics(self) -> QueueMetrics:
        metrics = QueueMetrics(max_concurrent=self.config.max_concurrent)
        for job in self._jobs:
            if job.status == JobStatus.QUEUED:
                metrics.queued_count += 1
            elif job.status == JobStatus.PROCESSING:
                metrics.processing_count += 1
            elif job.status == JobStatus.COMPLETED:
                metrics.completed_count += 1
            else:
                metrics.failed_count += 1
        metrics.submitting_count = len(self._submitting)
        metrics.polling_count = len(self._polling)
        return metrics

    def is_idle(self) -> bool:
        return all(job.status.is_terminal for job in self._jobs)

    def add_listener(self, listener: JobListener) -> None:
        """Register a callback invoked with a job after each lifecycle change"""
        self._listeners.append(listener)

    # ----- mutations -----

    def enqueue(self, request, name: Optional[str] = None) -> str:
        """Add a render request; it starts Processing if a slot is free, else waits Queued"""
        if isinstance(request, dict):
            request = parse_render_request(request)

        job = RenderJob(
            id=str(uuid.uuid4()),
            name=name or request.name,
            request=request,
        )
        if self.can_start_new:
            self._mark_processing(job)

        self._jobs.append(job)
        self.logger.info(f"Enqueued render job {job.id} ({job.name}) as {job.status.value}")

        self._changed(job)
        self._wake.set()
        return job.id

    def remove(self, job_id: str) -> bool:
        """Dismiss a queued or finished job. Processing jobs cannot be removed."""
        job = self.get_job(job_id)
        if job is None:
            return False

        if job.status == JobStatus.PROCESSING:
            raise InvariantViolation(f"Job {job_id} is processing and cannot be removed")

        self._jobs.remove(job)
        self._forget(job_id)
        self.logger.info(f"Removed render job {job_id}")

        self._persist()
        self._wake.set()
        return True

    def clear_completed(self) -> int:
        """Remove every Completed or Failed job, returning how many were dropped"""
        finished = [job for job in self._jobs if job.status.is_terminal]
        if not finished:
            return 0

        self._jobs = [job for job in self._jobs if not job.status.is_terminal]
        for job in finished:
            self._forget(job.id)
        self.logger.info(f"Cleared {len(finished)} finished render jobs")

        self._persist()
        return len(finished)

    # ----- reconciliation -----

    async def tick(self) -> None:
        """Run one submit/poll/promote cycle. Overlapping calls are skipped."""
        if self._tick_running:
            self.logger.debug("Tick already in progress, skipping")
            return

        self._tick_running = True
        try:
            self._expire_overdue()

            now = self.clock()
            to_submit = [
                job for job in self._jobs
                if job.status == JobStatus.PROCESSING
                and not job.backend_handle
                and job.id not in self._submitting
            ]
            to_poll = [
                job for job in self._jobs
                if job.status == JobStatus.PROCESSING
                and job.backend_handle
                and job.id not in self._polling
                and self._next_poll_at.get(job.id, 0.0) <= now
            ]

            if to_submit:
                await asyncio.gather(*(self._submit(job) for job in to_submit))

            if to_poll:
                await asyncio.gather(*(self._poll(job) for job in to_poll))
        finally:
            self._tick_running = False

    async def run(self) -> None:
        """Tick every ``poll_interval_seconds`` until stopped; mutations wake the loop early"""
        if self.is_running:
            self.logger.warning("Render queue already running")
            return

        self.is_running = True
        self.logger.info("Starting render queue...")

        try:
            while self.is_running:
                self._wake.clear()
                await self.tick()

                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=self.config.poll_interval_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.is_running = False
            self.logger.info("Render queue stopped")

    def stop(self) -> None:
        self.is_running = False
        self._wake.set()

    async def wait_until_idle(self) -> None:
        """Tick until no job is Queued or Processing"""
        while not self.is_idle():
            await self.tick()
            if self.is_idle():
                break
            await asyncio.sleep(self.config.poll_interval_seconds)

    async def _call(self, coro):
        timeout = self.config.call_timeout_seconds
        if timeout is None:
            return await coro
        return await asyncio.wait_for(coro, timeout=timeout)

    async def _submit(self, job: RenderJob) -> None:
        self._submitting.add(job.id)
        try:
            handle = await self._call(self.backend.submit(job.request))
        except asyncio.TimeoutError:
            self.logger.error(f"Submission of job {job.id} timed out")
            self._finish(job, JobStatus.FAILED, error="Render submission timed out")
        except SubmissionError as e:
            self.logger.error(f"Render backend rejected job {job.id}: {e}")
            self._finish(job, JobStatus.FAILED, error=str(e) or "Render submission rejected")
        except Exception as e:
            self.logger.error(f"Unexpected error submitting job {job.id}: {e!r}")
            self._finish(job, JobStatus.FAILED, error=str(e) or e.__class__.__name__)
        else:
            if job.status != JobStatus.PROCESSING or job.backend_handle:
                self.logger.warning(f"Ignoring handle {handle} for job {job.id} ({job.status.value})")
                return
            job.backend_handle = handle
            self.logger.info(f"Job {job.id} submitted, backend handle {handle}")
            self._changed(job)
        finally:
            self._submitting.discard(job.id)

    async def _poll(self, job: RenderJob) -> None:
        self._polling.add(job.id)
        try:
            status = await self._call(self.backend.poll_status(job.backend_handle))
        except (TransientError, asyncio.TimeoutError) as e:
            self._poll_failed(job, e)
        except Exception as e:
            self.logger.error(f"Unexpected error polling job {job.id}: {e!r}")
            self._poll_failed(job, e)
        else:
            self._apply_status(job, status)
        finally:
            self._polling.discard(job.id)

    def _apply_status(self, job: RenderJob, status: BackendStatus) -> None:
        if job.status != JobStatus.PROCESSING:
            return

        self._poll_failures.pop(job.id, None)
        self._next_poll_at.pop(job.id, None)

        if status.status == BackendJobStatus.COMPLETED:
            if status.result_url:
                self.logger.info(f"Job {job.id} completed: {status.result_url}")
                self._finish(job, JobStatus.COMPLETED, result_url=status.result_url)
            else:
                self.logger.error(f"Job {job.id} completed without a result URL")
                self._finish(job, JobStatus.FAILED, error="Render completed without a result URL")
        elif status.status == BackendJobStatus.FAILED:
            self.logger.error(f"Job {job.id} failed on the render backend: {status.error}")
            self._finish(job, JobStatus.FAILED, error=status.error or "Render failed")
        elif status.progress > job.progress:
            job.progress = status.progress
            self._changed(job)

    def _poll_failed(self, job: RenderJob, error: Exception) -> None:
        failures = self._poll_failures.get(job.id, 0) + 1
        self._poll_failures[job.id] = failures

        delay = 0.0
        if self.config.backoff_base_seconds > 0:
            delay = min(self.config.backoff_max_seconds,
                        self.config.backoff_base_seconds * 2 ** (failures - 1))
        self._next_poll_at[job.id] = self.clock() + delay

        self.logger.warning(
            f"Poll for job {job.id} failed ({failures} in a row), retrying in {delay:.1f}s: {error}"
        )

    def _expire_overdue(self) -> None:
        if self.config.job_deadline_seconds is None:
            return
        now = self.clock()
        for job in list(self._jobs):
            deadline = self._deadlines.get(job.id)
            if job.status == JobStatus.PROCESSING and deadline is not None and now >= deadline:
                self.logger.error(f"Job {job.id} exceeded its {self.config.job_deadline_seconds:.0f}s deadline")
                self._finish(job, JobStatus.FAILED,
                             error=f"Render timed out after {self.config.job_deadline_seconds:.0f}s")

    # ----- lifecycle helpers -----

    def _mark_processing(self, job: RenderJob) -> None:
        job.status = JobStatus.PROCESSING
        job.started_at = datetime.now()
        if self.config.job_deadline_seconds is not None:
            self._deadlines[job.id] = self.clock() + self.config.job_deadline_seconds

    def _finish(self, job: RenderJob, status: JobStatus,
                result_url: Optional[str] = None, error: Optional[str] = None) -> None:
        job.status = status
        job.completed_at = datetime.now()
        if status == JobStatus.COMPLETED:
            job.progress = 100
            job.result_url = result_url
            job.error = None
        else:
            job.result_url = None
            job.error = error

        self._poll_failures.pop(job.id, None)
        self._next_poll_at.pop(job.id, None)
        self._deadlines.pop(job.id, None)

        self._notify(job)
        self._promote()
        self._persist()

    def _promote(self) -> List[RenderJob]:
        """Move the oldest Queued jobs into free Processing slots"""
        queued = sorted((job for job in self._jobs if job.status == JobStatus.QUEUED),
                        key=lambda j: j.created_at)
        promoted = []
        while queued and self.can_start_new:
            job = queued.pop(0)
            self._mark_processing(job)
            promoted.append(job)
            self.logger.info(f"Promoted job {job.id} to processing")
            self._notify(job)
        return promoted

    def _forget(self, job_id: str) -> None:
        for bookkeeping in (self._poll_failures, self._next_poll_at, self._deadlines):
            bookkeeping.pop(job_id, None)

    def _changed(self, job: RenderJob) -> None:
        self._notify(job)
        self._persist()

    def _notify(self, job: RenderJob) -> None:
        for listener in self._listeners:
            try:
                listener(job)
            except Exception as e:
                self.logger.error(f"Queue listener failed for job {job.id}: {e}")

    def _persist(self) -> None:
        if self.store is None:
            return
        try:
            self.store.save(QueueSnapshot(jobs=list(self._jobs)))
        except Exception as e:
            self.logger.error(f"Failed to save render queue: {e}")

    def _restore(self) -> None:
        if self.store is None:
            return
        try:
            snapshot = self.store.load()
        except Exception as e:
            self.logger.error(f"Failed to load render queue: {e}")
            return
        if snapshot is None:
            return

        for job in snapshot.jobs:
            if job.status != JobStatus.PROCESSING:
                continue
            if not job.backend_handle:
                # never got a handle, so the submission outcome is unknown
                job.status = JobStatus.QUEUED
                job.progress = 0
                job.started_at = None
                self.logger.info(f"Job {job.id} was interrupted before submission, re-queued")
            elif self.config.job_deadline_seconds is not None:
                self._deadlines[job.id] = self.clock() + self.config.job_deadline_seconds

        self._jobs = list(snapshot.jobs)
        self.logger.info(f"Restored {len(self._jobs)} render jobs")
        self._promote()
        self._persist()
