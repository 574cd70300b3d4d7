"""Report building for completed analyses."""

from .aggregation import aggregate_results
from .narrative import NarrativeOutcome, SummaryNarrator, build_narrative_prompt

__all__ = [
    "NarrativeOutcome",
    "SummaryNarrator",
    "aggregate_results",
    "build_narrative_prompt",
]
