"""
Enums and constants used across the application.
"""

from enum import Enum


class JobStatus(str, Enum):
    """Lifecycle status of an analysis job."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETE, JobStatus.ERROR, JobStatus.CANCELLED})


class JobPhase(str, Enum):
    """Pipeline phase reported in job progress."""

    SAMPLING = "sampling"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"


class ContainmentType(str, Enum):
    """How a session ended, as tagged by the transcript store."""

    AGENT = "agent"
    SELF_SERVICE = "selfService"
    DROP_OFF = "dropOff"


class SessionOutcome(str, Enum):
    """Outcome extracted by the analysis model."""

    TRANSFER = "Transfer"
    CONTAINED = "Contained"


class MessageType(str, Enum):
    """Speaker of a transcript message."""

    USER = "user"
    BOT = "bot"


class AnalysisStatus(str, Enum):
    """Whether a session received facts from the model."""

    ANALYZED = "analyzed"
    UNANALYZED = "unanalyzed"


class ResultsState(str, Enum):
    """Outcome of a results lookup."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    NOT_READY = "not_ready"
