"""Deterministic aggregation of per-session analysis results."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence

from shared.enums import SessionOutcome
from shared.models import AnalysisResult, AnalysisStatistics


def _histogram(values: Iterable[str]) -> dict[str, int]:
    counts = Counter(value for value in values if value)
    return dict(sorted(counts.items(), key=lambda item: (-item[1], item[0])))


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def aggregate_results(results: Sequence[AnalysisResult]) -> AnalysisStatistics:
    """
    Summarize results into report statistics.

    Outcome rates and the label histograms only count analyzed sessions.
    Session length and message averages use every session. The same input
    always produces the same output, histogram ordering included.
    """
    total = len(results)
    analyzed = [result for result in results if result.is_analyzed and result.facts is not None]
    transfers = [r for r in analyzed if r.facts.session_outcome == SessionOutcome.TRANSFER]
    contained = len(analyzed) - len(transfers)

    total_messages = sum(result.session.message_count for result in results)
    total_minutes = sum(result.session.length_minutes() for result in results)

    return AnalysisStatistics(
        total_sessions=total,
        analyzed_sessions=len(analyzed),
        unanalyzed_sessions=total - len(analyzed),
        transfer_count=len(transfers),
        contained_count=contained,
        transfer_rate=_percent(len(transfers), len(analyzed)),
        containment_rate=_percent(contained, len(analyzed)),
        intent_breakdown=_histogram(r.facts.general_intent for r in analyzed),
        transfer_reason_breakdown=_histogram(r.facts.transfer_reason for r in transfers),
        drop_off_breakdown=_histogram(r.facts.drop_off_location for r in transfers),
        average_session_minutes=round(total_minutes / total, 2) if total else 0.0,
        total_messages=total_messages,
        average_messages_per_session=round(total_messages / total, 2) if total else 0.0,
        total_tokens=sum(result.metadata.tokens_used for result in results),
        total_cost=sum(result.metadata.cost for result in results),
    )
