"""Analysis job records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import uuid4

from shared.cancellation import CancellationToken
from shared.enums import JobPhase, JobStatus
from shared.logging_utils import setup_logging
from shared.models import (
    AnalysisConfig,
    AnalysisReport,
    Credentials,
    JobSnapshot,
    Progress,
)

logger = setup_logging("analysis-jobs")


@dataclass
class AnalysisJob:
    """Mutable job record owned by the JobQueue.

    Only the job's own orchestration coroutine mutates it; everyone else
    reads it through ``snapshot()``.
    """

    job_id: str
    analysis_id: str
    config: AnalysisConfig
    credentials: Credentials
    progress: Progress
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    report: AnalysisReport | None = None
    error: str | None = None

    @classmethod
    def create(cls, config: AnalysisConfig, credentials: Credentials) -> AnalysisJob:
        analysis_id = f"analysis_{uuid4().hex[:16]}"
        return cls(
            job_id=uuid4().hex,
            analysis_id=analysis_id,
            config=config,
            credentials=credentials,
            progress=Progress(
                analysis_id=analysis_id,
                model_id=config.model_id,
                bot_id=credentials.bot_id,
                total_sessions=config.session_count,
            ),
        )

    @property
    def bot_id(self) -> str:
        return self.credentials.bot_id

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def update_progress(self, **changes) -> Progress:
        """Replace the progress record with a copy carrying ``changes``."""
        self.progress = self.progress.updated(**changes)
        return self.progress

    def mark_running(self) -> bool:
        if self.status != JobStatus.QUEUED:
            logger.warning(f"Job {self.job_id} cannot start from status {self.status.value}")
            return False
        now = datetime.now(UTC)
        self.status = JobStatus.RUNNING
        self.started_at = now
        self.update_progress(phase=JobPhase.SAMPLING, current_step="Starting analysis", start_time=now)
        return True

    def finish(
        self,
        status: JobStatus,
        *,
        current_step: str,
        phase: JobPhase | None = None,
        error: str | None = None,
        report: AnalysisReport | None = None,
    ) -> bool:
        """Move to a terminal status. Later transitions are ignored and return False."""
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        if self.is_terminal:
            logger.info(
                f"Ignoring transition of job {self.job_id} to {status.value}; "
                f"already {self.status.value}"
            )
            return False

        now = datetime.now(UTC)
        self.status = status
        self.completed_at = now
        self.error = error
        if report is not None:
            self.report = report
        self.update_progress(
            phase=phase or self.progress.phase,
            current_step=current_step,
            end_time=now,
            eta_seconds=0.0,
            error=error,
        )
        return True

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            job_id=self.job_id,
            analysis_id=self.analysis_id,
            bot_id=self.bot_id,
            status=self.status,
            progress=self.progress,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            error=self.error,
            has_report=self.report is not None,
        )
