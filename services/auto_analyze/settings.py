"""
Typed settings for the auto-analyze pipeline.
Values come from the pipeline YAML (``config/pipeline.yaml``) with
``PIPELINE_FLAG_*`` environment overrides.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from services.sampling.sampler import DEFAULT_WINDOW_LADDER, WindowStep
from shared.config import ServiceConfig, config as service_config


class AnalysisSettings(BaseModel):
    """Knobs for sampling, batch analysis, the narrative and job retention."""

    window_ladder: list[WindowStep] = Field(default_factory=lambda: list(DEFAULT_WINDOW_LADDER))
    session_fetch_limit: int = 10000
    min_messages_per_session: int = 2
    min_content_chars: int = 10
    message_buffer_hours: float = 1.0

    batch_size: int = Field(default=5, ge=1)
    concurrency_limit: int = Field(default=3, ge=1)
    max_session_chars: int = 8000
    max_attempts: int = Field(default=2, ge=1)
    retry_backoff_seconds: float = Field(default=2.0, ge=0)
    temperature: float = 0.0
    max_tokens: int = 4000
    min_session_count: int = Field(default=1, ge=1)
    max_session_count: int = 1000

    summary_enabled: bool = True
    summary_temperature: float = 0.7
    summary_max_tokens: int = 2000
    summary_sample_transcripts: int = 5

    retention_seconds: float = 3600

    @field_validator("window_ladder")
    @classmethod
    def _ladder_strictly_increasing(cls, ladder: list[WindowStep]) -> list[WindowStep]:
        if not ladder:
            raise ValueError("window_ladder must not be empty")
        hours = [step.hours for step in ladder]
        if any(later <= earlier for earlier, later in zip(hours, hours[1:])):
            raise ValueError(f"window_ladder durations must strictly increase: {hours}")
        return ladder

    @classmethod
    def from_config(cls, cfg: ServiceConfig | None = None) -> AnalysisSettings:
        """Build settings from pipeline configuration, keeping defaults for missing keys."""
        cfg = cfg or service_config
        defaults = cls()
        pick = cfg.get_pipeline_value

        ladder = pick("sampling.window_ladder", None)
        return cls(
            window_ladder=ladder or defaults.window_ladder,
            session_fetch_limit=pick("sampling.session_fetch_limit", defaults.session_fetch_limit),
            min_messages_per_session=pick(
                "sampling.min_messages_per_session", defaults.min_messages_per_session
            ),
            min_content_chars=pick("sampling.min_content_chars", defaults.min_content_chars),
            message_buffer_hours=pick("sampling.message_buffer_hours", defaults.message_buffer_hours),
            batch_size=pick("analysis.batch_size", defaults.batch_size),
            concurrency_limit=pick("analysis.concurrency_limit", defaults.concurrency_limit),
            max_session_chars=pick("analysis.max_session_chars", defaults.max_session_chars),
            max_attempts=pick("analysis.max_attempts", defaults.max_attempts),
            retry_backoff_seconds=pick("analysis.retry_backoff_seconds", defaults.retry_backoff_seconds),
            temperature=pick("analysis.temperature", defaults.temperature),
            max_tokens=pick("analysis.max_tokens", defaults.max_tokens),
            min_session_count=pick("analysis.min_session_count", defaults.min_session_count),
            max_session_count=pick("analysis.max_session_count", defaults.max_session_count),
            summary_enabled=pick("summary.enabled", defaults.summary_enabled),
            summary_temperature=pick("summary.temperature", defaults.summary_temperature),
            summary_max_tokens=pick("summary.max_tokens", defaults.summary_max_tokens),
            summary_sample_transcripts=pick(
                "summary.sample_transcripts", defaults.summary_sample_transcripts
            ),
            retention_seconds=pick("jobs.retention_seconds", defaults.retention_seconds),
        )
