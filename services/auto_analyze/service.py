"""Control surface for auto-analyze jobs: start, progress, results, cancel."""

from __future__ import annotations

from datetime import UTC, datetime

from shared.enums import JobStatus, ResultsState
from shared.errors import InvalidAnalysisRequestError
from shared.logging_utils import setup_logging
from shared.models import (
    AnalysisConfig,
    Credentials,
    Progress,
    ResultsLookup,
    StartedAnalysis,
)
from shared.pricing import GPT_MODELS, is_supported_model

from .job_queue import JobQueue
from .jobs import AnalysisJob
from .orchestrator import OrchestratorRegistry
from .settings import AnalysisSettings

logger = setup_logging("auto-analyze-service")


class AutoAnalyzeService:
    """Entry point used by the HTTP layer and by other in-process callers.

    Contract violations raise ``InvalidAnalysisRequestError`` from ``start``
    before anything is queued. Once a job exists, its outcome is reported
    through status and phase fields rather than exceptions.
    """

    def __init__(
        self,
        queue: JobQueue,
        registry: OrchestratorRegistry,
        settings: AnalysisSettings | None = None,
    ) -> None:
        self.queue = queue
        self.registry = registry
        self.settings = settings or registry.settings

    def validate(self, analysis_config: AnalysisConfig, credentials: Credentials) -> None:
        """Check the request contract; raises InvalidAnalysisRequestError on the first violation."""
        if not credentials.is_complete():
            raise InvalidAnalysisRequestError("Bot credentials are incomplete: botId, clientId and clientSecret are required")

        low, high = self.settings.min_session_count, self.settings.max_session_count
        if not low <= analysis_config.session_count <= high:
            raise InvalidAnalysisRequestError(f"sessionCount must be between {low} and {high}")

        if not is_supported_model(analysis_config.model_id):
            raise InvalidAnalysisRequestError(
                f"Unknown modelId {analysis_config.model_id!r}; expected one of {', '.join(GPT_MODELS)}"
            )

        if not analysis_config.openai_api_key.get_secret_value().strip():
            raise InvalidAnalysisRequestError("An OpenAI API key is required")

        if analysis_config.start_instant() > datetime.now(UTC):
            raise InvalidAnalysisRequestError("Start date and time must be in the past")

    async def start(self, analysis_config: AnalysisConfig, credentials: Credentials) -> StartedAnalysis:
        """Validate, queue the job and return immediately with its ids."""
        self.validate(analysis_config, credentials)

        orchestrator = self.registry.get_or_create(credentials)
        job = AnalysisJob.create(analysis_config, credentials)
        self.queue.enqueue(job, orchestrator.run)

        logger.info(
            f"Started analysis {job.analysis_id} as job {job.job_id} for bot {credentials.bot_id} "
            f"({analysis_config.session_count} sessions, {analysis_config.model_id})"
        )
        return StartedAnalysis(job_id=job.job_id, analysis_id=job.analysis_id)

    def get_progress(self, job_id: str) -> Progress | None:
        snapshot = self.queue.get_job(job_id)
        return snapshot.progress if snapshot else None

    def get_results(self, job_id: str) -> ResultsLookup:
        found = self.queue.get_report(job_id)
        if found is None:
            return ResultsLookup(state=ResultsState.NOT_FOUND, message=f"Analysis {job_id} not found")

        snapshot, report = found
        if report is None:
            if snapshot.status == JobStatus.ERROR:
                message = snapshot.error or "Analysis failed"
            elif snapshot.status == JobStatus.CANCELLED:
                message = "Analysis was cancelled before any results were produced"
            else:
                message = f"Analysis is not complete (status: {snapshot.status.value})"
            return ResultsLookup(state=ResultsState.NOT_READY, status=snapshot.status, message=message)

        return ResultsLookup(state=ResultsState.FOUND, status=snapshot.status, report=report)

    def cancel(self, job_id: str) -> bool:
        return self.queue.cancel(job_id)
