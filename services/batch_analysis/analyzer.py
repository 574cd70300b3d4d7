"""Bounded-concurrency batch analysis of sessions."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Sequence

from pydantic import BaseModel, ConfigDict, Field

from services.inference.base import InferenceClient
from shared.cancellation import CancellationToken
from shared.enums import AnalysisStatus
from shared.errors import FatalAnalysisError, InferenceError
from shared.logging_utils import setup_logging
from shared.models import (
    AnalysisMetadata,
    AnalysisResult,
    SessionFacts,
    SessionRecord,
    TokenUsage,
)
from shared.pricing import calculate_cost

from .parser import ParsedBatch, parse_batch_response
from .prompts import SESSION_ANALYSIS_SYSTEM_PROMPT, KnownClassifications, build_batch_prompt

logger = setup_logging("batch-analyzer")

CANCELLED_BEFORE_ANALYSIS = "Cancelled before analysis"


class Batch(BaseModel):
    """Ordered group of sessions sent to the model in one call."""

    model_config = ConfigDict(frozen=True)

    number: int
    sessions: list[SessionRecord]


class BatchOutcome(BaseModel):
    """What happened to one batch, reported as each batch settles."""

    batch_number: int
    succeeded: bool
    attempts: int
    results: list[AnalysisResult]
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: float = 0.0
    processing_time: float = 0.0
    error: str | None = None

    @property
    def analyzed_count(self) -> int:
        return sum(1 for result in self.results if result.is_analyzed)

    @property
    def unanalyzed_count(self) -> int:
        return len(self.results) - self.analyzed_count


BatchCallback = Callable[[BatchOutcome], None]


class BatchAnalyzer:
    """Runs batches through an inference client with a fixed worker limit.

    Failures are contained per batch: after the final failed attempt every
    session of that batch comes back unanalyzed with the reason attached,
    and the other batches are unaffected. Only ``FatalAnalysisError`` stops
    the run; it is raised once the batches already in flight have settled.
    """

    def __init__(
        self,
        inference: InferenceClient,
        model_id: str,
        batch_size: int = 5,
        concurrency_limit: int = 3,
        max_session_chars: int = 8000,
        max_attempts: int = 2,
        retry_backoff_seconds: float = 2.0,
        temperature: float = 0.0,
        max_tokens: int = 4000,
        additional_context: str | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.inference = inference
        self.model_id = model_id
        self.batch_size = batch_size
        self.concurrency_limit = concurrency_limit
        self.max_session_chars = max_session_chars
        self.max_attempts = max_attempts
        self.retry_backoff_seconds = retry_backoff_seconds
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.additional_context = additional_context
        self.known_classifications = KnownClassifications()

    def partition(self, sessions: Sequence[SessionRecord]) -> list[Batch]:
        """Split sessions into ordered batches; oversized transcripts get a batch of their own."""
        groups: list[list[SessionRecord]] = []
        current: list[SessionRecord] = []
        for session in sessions:
            if len(session.transcript_text()) > self.max_session_chars:
                if current:
                    groups.append(current)
                    current = []
                groups.append([session])
                continue
            current.append(session)
            if len(current) == self.batch_size:
                groups.append(current)
                current = []
        if current:
            groups.append(current)

        return [Batch(number=number, sessions=group) for number, group in enumerate(groups, start=1)]

    async def analyze(
        self,
        sessions: Sequence[SessionRecord],
        *,
        cancel_token: CancellationToken | None = None,
        on_batch_complete: BatchCallback | None = None,
    ) -> list[AnalysisResult]:
        """
        Analyze ``sessions`` and return exactly one result per session, in input order.

        Cancellation is checked before each batch is submitted. Batches that
        were never submitted come back unanalyzed.
        """
        batches = self.partition(sessions)
        if not batches:
            return []

        semaphore = asyncio.Semaphore(self.concurrency_limit)
        outcomes: dict[int, BatchOutcome] = {}
        tasks: list[asyncio.Task] = []
        fatal_errors: list[FatalAnalysisError] = []

        async def run_batch(batch: Batch) -> None:
            try:
                outcome = await self._process_batch(batch)
            except FatalAnalysisError as e:
                logger.error(f"Batch {batch.number} hit a fatal error: {e}")
                fatal_errors.append(e)
                return
            finally:
                semaphore.release()

            outcomes[batch.number] = outcome
            if on_batch_complete is not None:
                on_batch_complete(outcome)

        logger.info(
            f"Analyzing {len(sessions)} sessions in {len(batches)} batches "
            f"(batch size {self.batch_size}, concurrency {self.concurrency_limit}, model {self.model_id})"
        )

        for batch in batches:
            await semaphore.acquire()
            if fatal_errors:
                semaphore.release()
                logger.warning(f"Stopping submission at batch {batch.number} after a fatal error")
                break
            if cancel_token is not None and cancel_token.is_cancelled:
                semaphore.release()
                logger.info(f"Cancellation observed; batches {batch.number}..{len(batches)} not submitted")
                break
            tasks.append(asyncio.create_task(run_batch(batch)))

        if tasks:
            await asyncio.gather(*tasks)

        if fatal_errors:
            raise fatal_errors[0]

        results: list[AnalysisResult] = []
        for batch in batches:
            outcome = outcomes.get(batch.number)
            if outcome is not None:
                results.extend(outcome.results)
            else:
                results.extend(
                    self._unanalyzed(session, batch.number, CANCELLED_BEFORE_ANALYSIS, attempts=0)
                    for session in batch.sessions
                )
        return results

    async def _process_batch(self, batch: Batch) -> BatchOutcome:
        started = time.monotonic()
        prompt = build_batch_prompt(
            batch.sessions,
            self.known_classifications.model_copy(deep=True),
            self.additional_context,
        )
        usage = TokenUsage()
        last_error = "No attempt made"

        for attempt in range(1, self.max_attempts + 1):
            try:
                completion = await self.inference.complete(
                    prompt,
                    self.model_id,
                    self.temperature,
                    self.max_tokens,
                    system_prompt=SESSION_ANALYSIS_SYSTEM_PROMPT,
                )
            except FatalAnalysisError:
                raise
            except InferenceError as e:
                last_error = str(e)
                logger.warning(f"Batch {batch.number} attempt {attempt}/{self.max_attempts} failed: {e}")
            except Exception as e:
                last_error = f"Unexpected error: {e}"
                logger.error(f"Batch {batch.number} attempt {attempt}/{self.max_attempts} raised {type(e).__name__}: {e}")
            else:
                usage = usage + completion.usage
                parsed = parse_batch_response(completion.text, batch.sessions)
                if isinstance(parsed, ParsedBatch):
                    self._remember(parsed.facts)
                    return self._build_outcome(batch, attempt, usage, started, facts=parsed.facts)
                last_error = f"Unparseable response: {parsed.reason}"
                logger.warning(f"Batch {batch.number} attempt {attempt}/{self.max_attempts}: {parsed.reason}")

            if attempt < self.max_attempts and self.retry_backoff_seconds > 0:
                await asyncio.sleep(self.retry_backoff_seconds * attempt)

        logger.error(f"Batch {batch.number} failed after {self.max_attempts} attempts: {last_error}")
        return self._build_outcome(batch, self.max_attempts, usage, started, error=last_error)

    def _build_outcome(
        self,
        batch: Batch,
        attempts: int,
        usage: TokenUsage,
        started: float,
        facts: list[SessionFacts] | None = None,
        error: str | None = None,
    ) -> BatchOutcome:
        elapsed = time.monotonic() - started
        cost = calculate_cost(usage, self.model_id)
        count = len(batch.sessions)
        base_tokens, extra_tokens = divmod(usage.total_tokens, count)

        results = []
        for index, session in enumerate(batch.sessions):
            metadata = AnalysisMetadata(
                batch_number=batch.number,
                attempts=attempts,
                tokens_used=base_tokens + (1 if index < extra_tokens else 0),
                cost=cost / count,
                model=self.model_id,
                processing_time=elapsed,
            )
            if facts is not None:
                results.append(
                    AnalysisResult(
                        session=session,
                        status=AnalysisStatus.ANALYZED,
                        facts=facts[index],
                        metadata=metadata,
                    )
                )
            else:
                results.append(
                    AnalysisResult(
                        session=session,
                        status=AnalysisStatus.UNANALYZED,
                        error=error,
                        metadata=metadata,
                    )
                )

        return BatchOutcome(
            batch_number=batch.number,
            succeeded=facts is not None,
            attempts=attempts,
            results=results,
            usage=usage,
            cost=cost,
            processing_time=elapsed,
            error=error,
        )

    def _unanalyzed(
        self, session: SessionRecord, batch_number: int, reason: str, attempts: int
    ) -> AnalysisResult:
        return AnalysisResult(
            session=session,
            status=AnalysisStatus.UNANALYZED,
            error=reason,
            metadata=AnalysisMetadata(batch_number=batch_number, attempts=attempts, model=self.model_id),
        )

    def _remember(self, facts: list[SessionFacts]) -> None:
        for fact in facts:
            if fact.general_intent:
                self.known_classifications.general_intents.add(fact.general_intent)
            if fact.transfer_reason:
                self.known_classifications.transfer_reasons.add(fact.transfer_reason)
            if fact.drop_off_location:
                self.known_classifications.drop_off_locations.add(fact.drop_off_location)
