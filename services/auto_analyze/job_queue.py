"""In-process queue for long-running analysis jobs."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

from shared.enums import JobPhase, JobStatus
from shared.logging_utils import setup_logging
from shared.models import AnalysisReport, JobSnapshot

from .jobs import AnalysisJob

logger = setup_logging("analysis-job-queue")

JobRunner = Callable[[AnalysisJob], Awaitable[None]]


class JobQueue:
    """Registry of analysis jobs and the tasks running them.

    Jobs are kept after they finish so their results can be fetched, until
    they are purged, expire, or the queue is destroyed.
    """

    def __init__(self, retention_seconds: float = 3600) -> None:
        self.retention = timedelta(seconds=retention_seconds)
        self._jobs: dict[str, AnalysisJob] | None = None
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def initialized(self) -> bool:
        return self._jobs is not None

    def init(self) -> None:
        """Create the job registry if it does not exist yet."""
        if self._jobs is None:
            self._jobs = {}
            logger.info("Job queue initialized")

    def _registry(self) -> dict[str, AnalysisJob]:
        if self._jobs is None:
            self.init()
        return self._jobs

    def enqueue(self, job: AnalysisJob, runner: JobRunner) -> str:
        """Register ``job`` and schedule ``runner(job)`` without waiting for it."""
        jobs = self._registry()
        self.purge_expired()
        if job.job_id in jobs:
            raise ValueError(f"Job {job.job_id} is already queued")

        jobs[job.job_id] = job
        task = asyncio.create_task(self._run(job, runner), name=f"analysis-job-{job.job_id}")
        self._tasks[job.job_id] = task
        task.add_done_callback(lambda _task, job_id=job.job_id: self._tasks.pop(job_id, None))

        logger.info(f"Queued analysis job {job.job_id} for bot {job.bot_id}")
        return job.job_id

    async def _run(self, job: AnalysisJob, runner: JobRunner) -> None:
        try:
            await runner(job)
        except asyncio.CancelledError:
            job.finish(JobStatus.CANCELLED, current_step="Analysis task cancelled")
            raise
        except Exception as e:
            logger.error(f"Analysis job {job.job_id} crashed: {type(e).__name__}: {e}")
            job.finish(
                JobStatus.ERROR,
                phase=JobPhase.ERROR,
                current_step="Analysis failed",
                error=str(e) or type(e).__name__,
            )
            return

        if not job.is_terminal:
            logger.error(f"Analysis job {job.job_id} returned while still {job.status.value}")
            job.finish(
                JobStatus.ERROR,
                phase=JobPhase.ERROR,
                current_step="Analysis failed",
                error="Analysis ended without reaching a final state",
            )

    @property
    def running_tasks(self) -> int:
        return len(self._tasks)

    def _lookup(self, job_id: str) -> AnalysisJob | None:
        if self._jobs is None:
            return None
        return self._jobs.get(job_id)

    def get_job(self, job_id: str) -> JobSnapshot | None:
        job = self._lookup(job_id)
        return job.snapshot() if job else None

    def get_report(self, job_id: str) -> tuple[JobSnapshot, AnalysisReport | None] | None:
        job = self._lookup(job_id)
        if job is None:
            return None
        return job.snapshot(), job.report

    def list_jobs(self, bot_id: str | None = None) -> list[JobSnapshot]:
        if self._jobs is None:
            return []
        return [
            job.snapshot()
            for job in self._jobs.values()
            if bot_id is None or job.bot_id == bot_id
        ]

    def cancel(self, job_id: str, reason: str = "Cancelled by user") -> bool:
        """Request cooperative cancellation. Returns False for unknown or finished jobs."""
        job = self._lookup(job_id)
        if job is None or job.is_terminal:
            return False
        job.cancel_token.cancel(reason)
        logger.info(f"Cancellation requested for job {job_id}")
        return True

    async def wait_for(self, job_id: str, timeout: float | None = None) -> JobSnapshot | None:
        """Wait until the job's task has finished, then return its snapshot."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        return self.get_job(job_id)

    def purge(self, job_id: str) -> bool:
        """Drop a finished job. Running jobs are never purged."""
        job = self._lookup(job_id)
        if job is None or not job.is_terminal:
            return False
        del self._jobs[job_id]
        return True

    def purge_expired(self, now: datetime | None = None) -> int:
        """Drop finished jobs older than the retention period."""
        if self._jobs is None:
            return 0
        cutoff = (now or datetime.now(UTC)) - self.retention
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.is_terminal and job.completed_at is not None and job.completed_at < cutoff
        ]
        for job_id in expired:
            del self._jobs[job_id]
        if expired:
            logger.info(f"Purged {len(expired)} expired analysis jobs")
        return len(expired)

    def destroy(self) -> None:
        """Signal every live job to stop and release the registry.

        Running tasks stay tracked until they finish; use ``shutdown()`` to
        wait for them.
        """
        if self._jobs is not None:
            for job in self._jobs.values():
                if not job.is_terminal:
                    job.cancel_token.cancel("Job queue shut down")
            logger.info(f"Job queue destroyed with {len(self._jobs)} jobs")
        self._jobs = None

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Destroy the queue and wait for running tasks, cancelling stragglers."""
        tasks = list(self._tasks.values())
        self.destroy()
        if not tasks:
            return

        _done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
