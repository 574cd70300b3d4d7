"""Tests for the bounded-concurrency batch analyzer."""

import pytest

from conftest import FakeInferenceClient, make_session
from services.batch_analysis.analyzer import CANCELLED_BEFORE_ANALYSIS, BatchAnalyzer
from services.batch_analysis.prompts import KnownClassifications, build_batch_prompt
from shared.cancellation import CancellationToken
from shared.enums import AnalysisStatus
from shared.errors import InferenceAuthenticationError, TransientInferenceError
from shared.models import TokenUsage


def build_analyzer(inference, **overrides) -> BatchAnalyzer:
    options = {"batch_size": 2, "concurrency_limit": 2, "retry_backoff_seconds": 0}
    options.update(overrides)
    return BatchAnalyzer(inference, "gpt-4o-mini", **options)


class TestPartition:
    def test_batches_preserve_order_and_size(self) -> None:
        sessions = [make_session(f"s{i}") for i in range(5)]
        batches = build_analyzer(FakeInferenceClient()).partition(sessions)

        assert [b.number for b in batches] == [1, 2, 3]
        assert [[s.session_id for s in b.sessions] for b in batches] == [["s0", "s1"], ["s2", "s3"], ["s4"]]

    def test_oversized_session_gets_its_own_batch(self) -> None:
        long_text = "x" * 200
        sessions = [
            make_session("s0", transcript=True),
            make_session("big", transcript=True, text=long_text),
            make_session("s2", transcript=True),
            make_session("s3", transcript=True),
        ]
        analyzer = build_analyzer(FakeInferenceClient(), max_session_chars=300)

        batches = analyzer.partition(sessions)

        assert [[s.session_id for s in b.sessions] for b in batches] == [["s0"], ["big"], ["s2", "s3"]]

    def test_every_session_in_exactly_one_batch(self) -> None:
        sessions = [make_session(f"s{i}") for i in range(11)]
        batches = build_analyzer(FakeInferenceClient(), batch_size=4).partition(sessions)
        flattened = [s.session_id for b in batches for s in b.sessions]
        assert flattened == [s.session_id for s in sessions]
        assert all(len(b.sessions) <= 4 for b in batches)


class TestBatchAnalyzer:
    """Analysis, failure isolation, retry and cancellation."""

    @pytest.mark.asyncio
    async def test_one_result_per_session_in_input_order(self) -> None:
        sessions = [make_session(f"s{i}", transcript=True) for i in range(7)]
        results = await build_analyzer(FakeInferenceClient()).analyze(sessions)

        assert [r.session.session_id for r in results] == [s.session_id for s in sessions]
        assert all(r.status == AnalysisStatus.ANALYZED for r in results)
        assert results[0].facts.general_intent == "Claim Status"

    @pytest.mark.asyncio
    async def test_empty_input(self) -> None:
        assert await build_analyzer(FakeInferenceClient()).analyze([]) == []

    @pytest.mark.asyncio
    async def test_malformed_batch_isolated(self) -> None:
        """Sessions of a batch that never parses are unanalyzed; others are unaffected."""
        sessions = [make_session(f"s{i}", transcript=True) for i in range(6)]
        inference = FakeInferenceClient(malformed_for={"s2"})

        results = await build_analyzer(inference).analyze(sessions)

        statuses = {r.session.session_id: r.status for r in results}
        assert statuses["s2"] == AnalysisStatus.UNANALYZED
        assert statuses["s3"] == AnalysisStatus.UNANALYZED
        assert all(statuses[f"s{i}"] == AnalysisStatus.ANALYZED for i in (0, 1, 4, 5))
        failed = next(r for r in results if r.session.session_id == "s2")
        assert "Unparseable response" in failed.error
        assert failed.metadata.attempts == 2
        assert len(inference.calls) == 4

    @pytest.mark.asyncio
    async def test_transient_error_retried_once(self) -> None:
        inference = FakeInferenceClient(errors=[TransientInferenceError("timeout")])
        results = await build_analyzer(inference, concurrency_limit=1).analyze(
            [make_session("s0", transcript=True), make_session("s1", transcript=True)]
        )

        assert all(r.is_analyzed for r in results)
        assert results[0].metadata.attempts == 2
        assert len(inference.calls) == 2

    @pytest.mark.asyncio
    async def test_repeated_transient_errors_mark_batch_unanalyzed(self) -> None:
        inference = FakeInferenceClient(
            errors=[TransientInferenceError("timeout"), TransientInferenceError("timeout again")]
        )
        results = await build_analyzer(inference, concurrency_limit=1).analyze(
            [make_session("s0", transcript=True), make_session("s1", transcript=True)]
        )

        assert all(r.status == AnalysisStatus.UNANALYZED for r in results)
        assert results[0].error == "timeout again"

    @pytest.mark.asyncio
    async def test_unexpected_exception_contained_to_batch(self) -> None:
        inference = FakeInferenceClient(errors=[RuntimeError("bug"), RuntimeError("bug")])
        sessions = [make_session(f"s{i}", transcript=True) for i in range(4)]

        results = await build_analyzer(inference, concurrency_limit=1).analyze(sessions)

        assert [r.is_analyzed for r in results] == [False, False, True, True]

    @pytest.mark.asyncio
    async def test_fatal_error_raised_after_in_flight_batches(self) -> None:
        inference = FakeInferenceClient(errors=[InferenceAuthenticationError("bad key")])
        sessions = [make_session(f"s{i}", transcript=True) for i in range(8)]

        with pytest.raises(InferenceAuthenticationError):
            await build_analyzer(inference, concurrency_limit=1).analyze(sessions)

        assert len(inference.calls) == 1

    @pytest.mark.asyncio
    async def test_concurrency_limit_respected(self) -> None:
        inference = FakeInferenceClient(delay=0.01)
        sessions = [make_session(f"s{i}", transcript=True) for i in range(12)]

        await build_analyzer(inference, batch_size=1, concurrency_limit=3).analyze(sessions)

        assert inference.max_in_flight <= 3
        assert len(inference.calls) == 12

    @pytest.mark.asyncio
    async def test_cancellation_stops_submission(self) -> None:
        """Batches already submitted finish; the rest come back unanalyzed."""
        token = CancellationToken()
        sessions = [make_session(f"s{i}", transcript=True) for i in range(6)]
        completed = []

        def on_batch_complete(outcome) -> None:
            completed.append(outcome.batch_number)
            token.cancel()

        results = await build_analyzer(FakeInferenceClient(), concurrency_limit=1).analyze(
            sessions, cancel_token=token, on_batch_complete=on_batch_complete
        )

        assert completed == [1]
        assert len(results) == 6
        assert [r.is_analyzed for r in results] == [True, True, False, False, False, False]
        assert results[-1].error == CANCELLED_BEFORE_ANALYSIS

    @pytest.mark.asyncio
    async def test_token_usage_apportioned_across_sessions(self) -> None:
        inference = FakeInferenceClient(usage=TokenUsage(prompt_tokens=1000, completion_tokens=1))
        sessions = [make_session(f"s{i}", transcript=True) for i in range(2)]

        results = await build_analyzer(inference).analyze(sessions)

        assert sum(r.metadata.tokens_used for r in results) == 1001
        expected_cost = 1000 / 1_000_000 * 0.15 + 1 / 1_000_000 * 0.60
        assert sum(r.metadata.cost for r in results) == pytest.approx(expected_cost)

    @pytest.mark.asyncio
    async def test_failed_attempt_tokens_land_on_unanalyzed_results(self) -> None:
        inference = FakeInferenceClient(malformed_for={"s0"})
        results = await build_analyzer(inference).analyze([make_session("s0", transcript=True)])

        assert results[0].metadata.tokens_used == 300

    @pytest.mark.asyncio
    async def test_known_classifications_carried_to_later_batches(self) -> None:
        inference = FakeInferenceClient()
        sessions = [make_session(f"s{i}", transcript=True) for i in range(4)]

        await build_analyzer(inference, concurrency_limit=1).analyze(sessions)

        assert "Existing general_intent values" not in inference.calls[0]
        assert "Existing general_intent values: Claim Status" in inference.calls[1]


class TestBatchPrompt:
    def test_prompt_lists_sessions_and_context(self) -> None:
        sessions = [make_session("a", transcript=True), make_session("b", transcript=True)]
        known = KnownClassifications(general_intents={"Billing", "Accounts"})

        prompt = build_batch_prompt(sessions, known, additional_context="Healthcare payer bot")

        assert "Session ID: a" in prompt
        assert "--- Session 2 ---" in prompt
        assert "Existing general_intent values: Accounts, Billing" in prompt
        assert "Healthcare payer bot" in prompt
        assert "### SESSION <number>" in prompt
