"""
Pydantic models shared by the analysis services.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic.alias_generators import to_camel

from shared.enums import (
    AnalysisStatus,
    ContainmentType,
    JobPhase,
    JobStatus,
    MessageType,
    ResultsState,
    SessionOutcome,
)
from shared.errors import InvalidAnalysisRequestError

DEFAULT_TIMEZONE = "America/New_York"


# ---------------------------------------------------------------------------
# Transcript store records
# ---------------------------------------------------------------------------


class Message(BaseModel):
    """One transcript line."""

    model_config = ConfigDict(frozen=True)

    session_id: str | None = None
    type: MessageType
    text: str
    created_on: datetime | None = None


class SessionRecord(BaseModel):
    """A conversational session as returned by the transcript store.

    Records are never mutated; attaching a transcript produces a copy.
    """

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(..., description="Unique id, used as the dedup key")
    user_id: str = Field(default="", description="End-user identifier")
    start_time: datetime
    end_time: datetime | None = None
    containment_type: ContainmentType | None = None
    tags: list[str] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)
    reported_message_count: int | None = Field(
        None, description="Message count from store metadata, used before transcripts load"
    )
    duration_seconds: float | None = None

    @property
    def message_count(self) -> int:
        if self.messages:
            return len(self.messages)
        return self.reported_message_count or 0

    @property
    def has_transcript(self) -> bool:
        return bool(self.messages)

    def transcript_text(self) -> str:
        """Render the transcript as ``speaker: text`` lines."""
        return "\n".join(f"{message.type.value}: {message.text}" for message in self.messages)

    @property
    def content_length(self) -> int:
        return sum(len(message.text.strip()) for message in self.messages)

    def length_minutes(self) -> float:
        if self.duration_seconds is not None:
            return self.duration_seconds / 60
        if self.end_time is not None:
            return max((self.end_time - self.start_time).total_seconds(), 0.0) / 60
        return 0.0

    def with_messages(self, messages: list[Message]) -> SessionRecord:
        return self.model_copy(update={"messages": list(messages)})


class TimeWindow(BaseModel):
    """A half-open search window ``[start, end)``."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime
    duration_hours: float
    label: str


# ---------------------------------------------------------------------------
# Job request and credentials
# ---------------------------------------------------------------------------


class AnalysisConfig(BaseModel):
    """Parameters of one auto-analyze run. Accepts snake_case or camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    start_date: str = Field(..., description="Local start date, YYYY-MM-DD")
    start_time: str = Field(..., description="Local start time, HH:MM (24h)")
    timezone: str = Field(default=DEFAULT_TIMEZONE, description="IANA time zone name")
    session_count: int = Field(..., description="Target number of sessions to analyze")
    model_id: str = Field(..., description="Inference model identifier")
    openai_api_key: SecretStr = Field(..., description="API key for the inference provider")
    additional_context: str | None = Field(
        None, description="Free-text context appended to every batch prompt"
    )

    def start_instant(self) -> datetime:
        """Resolve the local start date/time in ``timezone`` to an aware UTC instant."""
        try:
            local_date = date.fromisoformat(self.start_date)
        except ValueError as e:
            raise InvalidAnalysisRequestError("startDate must be in YYYY-MM-DD format") from e
        try:
            hour_text, minute_text = self.start_time.split(":")
            if len(hour_text) != 2 or len(minute_text) != 2:
                raise ValueError(self.start_time)
            local_time = time(int(hour_text), int(minute_text))
        except ValueError as e:
            raise InvalidAnalysisRequestError("startTime must be in HH:MM format (24-hour)") from e
        try:
            zone = ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise InvalidAnalysisRequestError(f"Unknown time zone: {self.timezone}") from e

        return datetime.combine(local_date, local_time, tzinfo=zone).astimezone(UTC)


class Credentials(BaseModel):
    """Transcript store credentials for one bot."""

    bot_id: str
    client_id: str
    client_secret: SecretStr
    base_url: str | None = None

    def is_complete(self) -> bool:
        return bool(self.bot_id and self.client_id and self.client_secret.get_secret_value())


# ---------------------------------------------------------------------------
# Progress and job views
# ---------------------------------------------------------------------------


class Progress(BaseModel):
    """Observable state of a running analysis.

    Instances are immutable; every update replaces the whole record.
    """

    model_config = ConfigDict(frozen=True)

    analysis_id: str
    phase: JobPhase = JobPhase.SAMPLING
    current_step: str = "Queued"
    sessions_found: int = 0
    sessions_processed: int = 0
    sessions_unanalyzed: int = 0
    total_sessions: int = 0
    batches_completed: int = 0
    batches_failed: int = 0
    total_batches: int = 0
    tokens_used: int = 0
    estimated_cost: float = 0.0
    windows_searched: int = 0
    current_window_label: str | None = None
    model_id: str | None = None
    bot_id: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    eta_seconds: float | None = None
    error: str | None = None

    def updated(self, **changes: Any) -> Progress:
        return self.model_copy(update=changes)


class JobSnapshot(BaseModel):
    """Read-only view of a job handed out by the queue."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    analysis_id: str
    bot_id: str
    status: JobStatus
    progress: Progress
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    has_report: bool = False


class StartedAnalysis(BaseModel):
    """Acknowledgement returned by ``start``."""

    job_id: str
    analysis_id: str
    status: JobStatus = JobStatus.QUEUED
    message: str = "Analysis started. Use the job ID to track progress."


# ---------------------------------------------------------------------------
# Inference
# ---------------------------------------------------------------------------


class TokenUsage(BaseModel):
    """Token counts reported by the inference provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


class Completion(BaseModel):
    """Text completion with its usage."""

    text: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str | None = None


# ---------------------------------------------------------------------------
# Analysis results and report
# ---------------------------------------------------------------------------


class SessionFacts(BaseModel):
    """Facts extracted for one session."""

    general_intent: str
    session_outcome: SessionOutcome
    transfer_reason: str = ""
    drop_off_location: str = ""
    notes: str = ""


class AnalysisMetadata(BaseModel):
    """Bookkeeping attached to each per-session result."""

    batch_number: int
    attempts: int = 0
    tokens_used: int = 0
    cost: float = 0.0
    model: str
    processing_time: float = 0.0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class AnalysisResult(BaseModel):
    """Outcome for one session: facts when analyzed, a reason when not."""

    session: SessionRecord
    status: AnalysisStatus
    facts: SessionFacts | None = None
    error: str | None = None
    metadata: AnalysisMetadata

    @property
    def is_analyzed(self) -> bool:
        return self.status == AnalysisStatus.ANALYZED


class AnalysisStatistics(BaseModel):
    """Deterministic aggregate over a list of results."""

    total_sessions: int = 0
    analyzed_sessions: int = 0
    unanalyzed_sessions: int = 0
    transfer_count: int = 0
    contained_count: int = 0
    transfer_rate: float = 0.0
    containment_rate: float = 0.0
    intent_breakdown: dict[str, int] = Field(default_factory=dict)
    transfer_reason_breakdown: dict[str, int] = Field(default_factory=dict)
    drop_off_breakdown: dict[str, int] = Field(default_factory=dict)
    average_session_minutes: float = 0.0
    total_messages: int = 0
    average_messages_per_session: float = 0.0
    total_tokens: int = 0
    total_cost: float = 0.0


class SummaryNarrative(BaseModel):
    """Narrative sections generated for the report."""

    overview: str
    summary: str
    containment_suggestion: str


class AnalysisReport(BaseModel):
    """Final (or partial) output of an analysis job."""

    analysis_id: str
    bot_id: str
    model_id: str
    sessions: list[AnalysisResult]
    statistics: AnalysisStatistics
    narrative: SummaryNarrative | None = None
    narrative_error: str | None = None
    partial: bool = False
    windows_searched: int = 0
    total_found: int = 0
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ResultsLookup(BaseModel):
    """Result of ``get_results``: found, not found, or not ready yet."""

    state: ResultsState
    status: JobStatus | None = None
    report: AnalysisReport | None = None
    message: str | None = None
