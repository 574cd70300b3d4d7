"""Analysis orchestrator driving a job through sampling, analysis and reporting."""

from __future__ import annotations

import time
from collections.abc import Callable

from services.batch_analysis.analyzer import CANCELLED_BEFORE_ANALYSIS, BatchAnalyzer, BatchOutcome
from services.inference.base import InferenceClient
from services.inference.openai_driver import OpenAIInferenceDriver
from services.reporting.aggregation import aggregate_results
from services.reporting.narrative import SummaryNarrator
from services.sampling.sampler import SamplingProgress, TimeWindowSampler, min_message_filter
from services.transcript_store.base import TranscriptStore
from services.transcript_store.kore import KoreTranscriptStore
from shared.enums import JobPhase, JobStatus
from shared.errors import FatalAnalysisError, NoSessionsFoundError
from shared.logging_utils import setup_logging
from shared.models import AnalysisConfig, AnalysisReport, AnalysisResult, Credentials

from .jobs import AnalysisJob
from .settings import AnalysisSettings

logger = setup_logging("analysis-orchestrator")

CANCELLATION_REQUESTED = "Cancellation requested"

StoreFactory = Callable[[Credentials], TranscriptStore]
InferenceFactory = Callable[[AnalysisConfig], InferenceClient]


def default_store_factory(credentials: Credentials) -> TranscriptStore:
    return KoreTranscriptStore(credentials)


def default_inference_factory(analysis_config: AnalysisConfig) -> InferenceClient:
    return OpenAIInferenceDriver(api_key=analysis_config.openai_api_key.get_secret_value())


class AnalysisOrchestrator:
    """Runs analysis jobs for a single bot.

    State machine per job: queued -> sampling -> analyzing -> complete, with
    a side exit to error from either active phase. A cancellation seen before
    any batch settled ends the job as cancelled with no report. One seen
    after some batches settled ends it as cancelled with a partial report.
    """

    def __init__(
        self,
        credentials: Credentials,
        settings: AnalysisSettings | None = None,
        store_factory: StoreFactory | None = None,
        inference_factory: InferenceFactory | None = None,
    ) -> None:
        self.bot_id = credentials.bot_id
        self.credentials = credentials
        self.settings = settings or AnalysisSettings()
        self.store_factory = store_factory or default_store_factory
        self.inference_factory = inference_factory or default_inference_factory

    def update_credentials(self, credentials: Credentials) -> None:
        """Swap stored credentials; jobs already running keep their own copy."""
        if credentials.bot_id != self.bot_id:
            raise ValueError(f"Credentials for bot {credentials.bot_id} given to orchestrator of {self.bot_id}")
        self.credentials = credentials

    async def run(self, job: AnalysisJob) -> None:
        """Drive ``job`` to a terminal state. Fatal pipeline errors end it as ``error``."""
        if not job.mark_running():
            return

        logger.info(
            f"Starting analysis {job.analysis_id} (job {job.job_id}) for bot {self.bot_id}: "
            f"{job.config.session_count} sessions from {job.config.start_date} {job.config.start_time} "
            f"{job.config.timezone} with {job.config.model_id}"
        )
        inference = self.inference_factory(job.config)
        try:
            await self._run_pipeline(job, inference)
        except FatalAnalysisError as e:
            logger.error(f"Analysis {job.analysis_id} failed: {e}")
            job.finish(JobStatus.ERROR, phase=JobPhase.ERROR, current_step="Analysis failed", error=str(e))
        finally:
            await inference.close()

    async def _run_pipeline(self, job: AnalysisJob, inference: InferenceClient) -> None:
        settings = self.settings
        token = job.cancel_token
        sampler = TimeWindowSampler(
            self.store_factory(job.credentials),
            ladder=settings.window_ladder,
            fetch_limit=settings.session_fetch_limit,
            message_buffer_hours=settings.message_buffer_hours,
            default_filter=min_message_filter(settings.min_messages_per_session, settings.min_content_chars),
        )

        job.update_progress(phase=JobPhase.SAMPLING, current_step="Searching for sessions...")

        def on_sampling_progress(update: SamplingProgress) -> None:
            job.update_progress(
                current_step=CANCELLATION_REQUESTED if token.is_cancelled else update.current_step,
                sessions_found=update.sessions_found,
                windows_searched=update.windows_searched,
                current_window_label=update.window_label,
            )

        sampling = await sampler.sample(
            job.config.start_instant(),
            job.config.session_count,
            cancel_token=token,
            on_progress=on_sampling_progress,
        )
        job.update_progress(
            sessions_found=len(sampling.sessions),
            total_sessions=len(sampling.sessions),
            windows_searched=sampling.windows_searched,
        )

        if token.is_cancelled:
            job.finish(JobStatus.CANCELLED, current_step="Analysis cancelled during sampling")
            return
        if not sampling.sessions:
            raise NoSessionsFoundError(
                f"No sessions found after searching {sampling.windows_searched} time windows "
                f"starting {job.config.start_date} {job.config.start_time} {job.config.timezone}"
            )
        if len(sampling.sessions) < job.config.session_count:
            logger.warning(
                f"Analysis {job.analysis_id}: found {len(sampling.sessions)} of "
                f"{job.config.session_count} requested sessions"
            )

        job.update_progress(current_step=f"Loading transcripts for {len(sampling.sessions)} sessions")
        sessions = await sampler.attach_transcripts(sampling.sessions)
        if token.is_cancelled:
            job.finish(JobStatus.CANCELLED, current_step="Analysis cancelled before batch analysis")
            return

        analyzer = BatchAnalyzer(
            inference,
            job.config.model_id,
            batch_size=settings.batch_size,
            concurrency_limit=settings.concurrency_limit,
            max_session_chars=settings.max_session_chars,
            max_attempts=settings.max_attempts,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            additional_context=job.config.additional_context,
        )
        total_batches = len(analyzer.partition(sessions))
        job.update_progress(
            phase=JobPhase.ANALYZING,
            current_step=f"Analyzing {len(sessions)} sessions in {total_batches} batches",
            total_batches=total_batches,
        )

        analysis_started = time.monotonic()

        def on_batch_complete(outcome: BatchOutcome) -> None:
            progress = job.progress
            completed = progress.batches_completed + 1
            average_batch_time = (time.monotonic() - analysis_started) / completed
            step = f"Completed batch {outcome.batch_number} of {total_batches}"
            job.update_progress(
                current_step=CANCELLATION_REQUESTED if token.is_cancelled else step,
                batches_completed=completed,
                batches_failed=progress.batches_failed + (0 if outcome.succeeded else 1),
                sessions_processed=progress.sessions_processed + len(outcome.results),
                sessions_unanalyzed=progress.sessions_unanalyzed + outcome.unanalyzed_count,
                tokens_used=progress.tokens_used + outcome.usage.total_tokens,
                estimated_cost=progress.estimated_cost + outcome.cost,
                eta_seconds=average_batch_time * (total_batches - completed),
            )

        results = await analyzer.analyze(sessions, cancel_token=token, on_batch_complete=on_batch_complete)

        skipped = sum(1 for result in results if result.error == CANCELLED_BEFORE_ANALYSIS)
        if skipped:
            if job.progress.batches_completed == 0:
                job.finish(JobStatus.CANCELLED, current_step="Analysis cancelled before any batch finished")
                return
            job.update_progress(sessions_unanalyzed=job.progress.sessions_unanalyzed + skipped)
            report = self._build_report(job, results, sampling.windows_searched, sampling.total_found, partial=True)
            logger.info(
                f"Analysis {job.analysis_id} cancelled with {len(results) - skipped} of {len(results)} "
                f"sessions settled; keeping partial report"
            )
            job.finish(
                JobStatus.CANCELLED,
                current_step="Analysis cancelled; partial results available",
                report=report,
            )
            return

        report = self._build_report(job, results, sampling.windows_searched, sampling.total_found)
        if settings.summary_enabled and not token.is_cancelled:
            report = await self._add_narrative(job, inference, report)

        job.finish(
            JobStatus.COMPLETE,
            phase=JobPhase.COMPLETE,
            current_step="Analysis complete",
            report=report,
        )
        logger.info(
            f"Analysis {job.analysis_id} complete: {report.statistics.analyzed_sessions} analyzed, "
            f"{report.statistics.unanalyzed_sessions} unanalyzed, {job.progress.tokens_used} tokens, "
            f"${job.progress.estimated_cost:.4f}"
        )

    def _build_report(
        self,
        job: AnalysisJob,
        results: list[AnalysisResult],
        windows_searched: int,
        total_found: int,
        partial: bool = False,
    ) -> AnalysisReport:
        return AnalysisReport(
            analysis_id=job.analysis_id,
            bot_id=job.bot_id,
            model_id=job.config.model_id,
            sessions=results,
            statistics=aggregate_results(results),
            partial=partial,
            windows_searched=windows_searched,
            total_found=total_found,
        )

    async def _add_narrative(
        self, job: AnalysisJob, inference: InferenceClient, report: AnalysisReport
    ) -> AnalysisReport:
        job.update_progress(current_step="Generating analysis summary", eta_seconds=None)
        narrator = SummaryNarrator(
            inference,
            job.config.model_id,
            temperature=self.settings.summary_temperature,
            max_tokens=self.settings.summary_max_tokens,
            sample_transcripts=self.settings.summary_sample_transcripts,
        )
        try:
            outcome = await narrator.narrate(report.sessions, report.statistics)
        except Exception as e:
            logger.warning(f"Narrative for {job.analysis_id} skipped: {e}")
            return report.model_copy(update={"narrative_error": str(e)})

        job.update_progress(
            tokens_used=job.progress.tokens_used + outcome.usage.total_tokens,
            estimated_cost=job.progress.estimated_cost + outcome.cost,
        )
        return report.model_copy(update={"narrative": outcome.narrative, "narrative_error": outcome.error})


class OrchestratorRegistry:
    """One orchestrator per bot id, owned by the application lifespan."""

    def __init__(
        self,
        settings: AnalysisSettings | None = None,
        store_factory: StoreFactory | None = None,
        inference_factory: InferenceFactory | None = None,
    ) -> None:
        self.settings = settings or AnalysisSettings()
        self.store_factory = store_factory
        self.inference_factory = inference_factory
        self._orchestrators: dict[str, AnalysisOrchestrator] = {}

    def get_or_create(self, credentials: Credentials) -> AnalysisOrchestrator:
        orchestrator = self._orchestrators.get(credentials.bot_id)
        if orchestrator is not None:
            orchestrator.update_credentials(credentials)
            return orchestrator

        orchestrator = AnalysisOrchestrator(
            credentials,
            settings=self.settings,
            store_factory=self.store_factory,
            inference_factory=self.inference_factory,
        )
        self._orchestrators[credentials.bot_id] = orchestrator
        logger.info(f"Created orchestrator for bot {credentials.bot_id}")
        return orchestrator

    def get(self, bot_id: str) -> AnalysisOrchestrator | None:
        return self._orchestrators.get(bot_id)

    def clear(self) -> None:
        self._orchestrators.clear()

    def __len__(self) -> int:
        return len(self._orchestrators)
