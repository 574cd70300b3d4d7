"""LLM-written narrative summary for an analysis report."""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import BaseModel, Field

from services.inference.base import InferenceClient
from shared.errors import FatalAnalysisError, InferenceError
from shared.logging_utils import setup_logging
from shared.models import AnalysisResult, AnalysisStatistics, SummaryNarrative, TokenUsage
from shared.pricing import calculate_cost
from shared.section_parser import ParseFailure, extract_sections

logger = setup_logging("report-narrator")

NARRATIVE_SECTIONS = ("ANALYSIS_OVERVIEW", "ANALYSIS_SUMMARY", "CONTAINMENT_SUGGESTION")

NARRATIVE_SYSTEM_PROMPT = (
    "You are a conversational AI analyst writing an executive report about a bot's sessions."
)


class NarrativeOutcome(BaseModel):
    """Narrative (or the reason there is none) plus what it cost."""

    narrative: SummaryNarrative | None = None
    error: str | None = None
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: float = 0.0


def _format_histogram(title: str, histogram: dict[str, int]) -> str:
    if not histogram:
        return f"{title}: none"
    lines = "\n".join(f"- {label}: {count}" for label, count in histogram.items())
    return f"{title}:\n{lines}"


def build_narrative_prompt(
    results: Sequence[AnalysisResult],
    statistics: AnalysisStatistics,
    sample_transcripts: int = 5,
) -> str:
    analyzed = [result for result in results if result.is_analyzed and result.facts is not None]
    notes = "\n".join(f"- {r.facts.notes}" for r in analyzed if r.facts.notes)
    samples = [r for r in analyzed if r.session.has_transcript][:sample_transcripts]
    sample_text = "\n\n".join(
        f"Session {r.session.session_id} ({r.facts.general_intent}, {r.facts.session_outcome.value}):\n"
        f"{r.session.transcript_text()}"
        for r in samples
    )

    return "\n\n".join(
        [
            "Write an analysis of the following bot session data.",
            (
                f"Sessions: {statistics.total_sessions} "
                f"({statistics.analyzed_sessions} analyzed, {statistics.unanalyzed_sessions} unanalyzed)\n"
                f"Contained: {statistics.contained_count} ({statistics.containment_rate}%)\n"
                f"Transferred: {statistics.transfer_count} ({statistics.transfer_rate}%)\n"
                f"Average session length: {statistics.average_session_minutes} minutes\n"
                f"Average messages per session: {statistics.average_messages_per_session}"
            ),
            _format_histogram("Intents", statistics.intent_breakdown),
            _format_histogram("Transfer reasons", statistics.transfer_reason_breakdown),
            _format_histogram("Drop-off locations", statistics.drop_off_breakdown),
            f"Session notes:\n{notes or '- none'}",
            f"Sample transcripts:\n{sample_text or 'none'}",
            (
                "Respond with exactly these three markdown sections:\n"
                "## ANALYSIS_OVERVIEW\n<two or three paragraphs on overall performance>\n"
                "## ANALYSIS_SUMMARY\n<key findings about intents, transfers and drop-off points>\n"
                "## CONTAINMENT_SUGGESTION\n<the single most impactful change to raise containment>"
            ),
        ]
    )


class SummaryNarrator:
    """Generates the narrative sections of a report.

    The narrative is optional: inference and parse failures are reported in
    the outcome instead of raised. Fatal errors still propagate.
    """

    def __init__(
        self,
        inference: InferenceClient,
        model_id: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        sample_transcripts: int = 5,
    ) -> None:
        self.inference = inference
        self.model_id = model_id
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.sample_transcripts = sample_transcripts

    async def narrate(
        self, results: Sequence[AnalysisResult], statistics: AnalysisStatistics
    ) -> NarrativeOutcome:
        if statistics.analyzed_sessions == 0:
            return NarrativeOutcome(error="No analyzed sessions to summarize")

        prompt = build_narrative_prompt(results, statistics, self.sample_transcripts)
        try:
            completion = await self.inference.complete(
                prompt,
                self.model_id,
                self.temperature,
                self.max_tokens,
                system_prompt=NARRATIVE_SYSTEM_PROMPT,
            )
        except FatalAnalysisError:
            raise
        except InferenceError as e:
            logger.warning(f"Narrative generation failed: {e}")
            return NarrativeOutcome(error=f"Narrative generation failed: {e}")
        except Exception as e:
            logger.error(f"Unexpected error generating narrative: {e}", exc_info=True)
            return NarrativeOutcome(error=f"Narrative generation failed: {e}")

        cost = calculate_cost(completion.usage, self.model_id)
        parsed = extract_sections(completion.text, NARRATIVE_SECTIONS)
        if isinstance(parsed, ParseFailure):
            logger.warning(f"Narrative response could not be parsed: {parsed.reason}")
            return NarrativeOutcome(
                error=f"Could not parse narrative response: {parsed.reason}",
                usage=completion.usage,
                cost=cost,
            )

        return NarrativeOutcome(
            narrative=SummaryNarrative(
                overview=parsed.get("ANALYSIS_OVERVIEW"),
                summary=parsed.get("ANALYSIS_SUMMARY"),
                containment_suggestion=parsed.get("CONTAINMENT_SUGGESTION"),
            ),
            usage=completion.usage,
            cost=cost,
        )
