"""Session sampling service.

Searches the transcript store with a ladder of progressively wider time
windows until enough qualifying sessions are found, then loads the
transcripts of the sampled sessions.
"""

from .sampler import (
    DEFAULT_WINDOW_LADDER,
    SamplingProgress,
    SamplingResult,
    TimeWindowSampler,
    WindowStep,
    min_message_filter,
)

__all__ = [
    "DEFAULT_WINDOW_LADDER",
    "SamplingProgress",
    "SamplingResult",
    "TimeWindowSampler",
    "WindowStep",
    "min_message_filter",
]
