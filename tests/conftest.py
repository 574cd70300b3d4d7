import asyncio
import re
import sys
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from services.auto_analyze.settings import AnalysisSettings
from services.inference.base import InferenceClient
from services.transcript_store.base import TranscriptStore
from shared.enums import ContainmentType, MessageType
from shared.errors import TranscriptStoreError
from shared.models import (
    AnalysisConfig,
    Completion,
    Credentials,
    Message,
    SessionRecord,
    TokenUsage,
)

BASE_TIME = datetime(2025, 3, 10, 14, 0, tzinfo=UTC)
SESSION_ID_PATTERN = re.compile(r"^Session ID: (?P<session_id>\S+)$", re.MULTILINE)


def make_session(
    session_id: str,
    offset_hours: float = 0.5,
    message_count: int = 4,
    transcript: bool = False,
    containment_type: ContainmentType = ContainmentType.SELF_SERVICE,
    text: str = "I need help with my claim status please",
) -> SessionRecord:
    """Build a session starting ``offset_hours`` after BASE_TIME."""
    start = BASE_TIME + timedelta(hours=offset_hours)
    messages = []
    if transcript:
        messages = [
            Message(
                session_id=session_id,
                type=MessageType.USER if index % 2 == 0 else MessageType.BOT,
                text=f"{text} ({index})",
                created_on=start + timedelta(seconds=30 * index),
            )
            for index in range(message_count)
        ]
    return SessionRecord(
        session_id=session_id,
        user_id=f"user-{session_id}",
        start_time=start,
        end_time=start + timedelta(minutes=6),
        containment_type=containment_type,
        reported_message_count=message_count,
        messages=messages,
        duration_seconds=360,
    )


class FakeTranscriptStore(TranscriptStore):
    """In-memory store returning sessions whose start falls in the requested range."""

    def __init__(
        self,
        sessions: list[SessionRecord] | None = None,
        failing_calls: set[int] | None = None,
        message_error: Exception | None = None,
    ) -> None:
        self.sessions = list(sessions or [])
        self.failing_calls = failing_calls or set()
        self.message_error = message_error
        self.session_calls: list[tuple[datetime, datetime, int, int]] = []
        self.message_calls: list[tuple[datetime, datetime, list[str] | None]] = []

    async def list_sessions(self, date_from, date_to, skip=0, limit=10000, containment_type=None):
        self.session_calls.append((date_from, date_to, skip, limit))
        if len(self.session_calls) in self.failing_calls:
            raise TranscriptStoreError("upstream unavailable", status=503)
        return [
            session.model_copy(update={"messages": []})
            for session in self.sessions
            if date_from <= session.start_time < date_to
        ][skip:skip + limit]

    async def list_messages(self, date_from, date_to, session_ids=None):
        self.message_calls.append((date_from, date_to, session_ids))
        if self.message_error is not None:
            raise self.message_error
        wanted = set(session_ids or [])
        messages = []
        for session in self.sessions:
            if not wanted or session.session_id in wanted:
                messages.extend(session.messages)
        return messages


def section_response(session_ids: list[str], outcome: str = "Contained") -> str:
    """Well-formed batch response for the given session ids."""
    sections = []
    for number, session_id in enumerate(session_ids, start=1):
        transferred = outcome == "Transfer"
        sections.append(
            f"### SESSION {number}\n"
            f"session_id: {session_id}\n"
            f"general_intent: Claim Status\n"
            f"session_outcome: {outcome}\n"
            f"transfer_reason: {'Live Agent Request' if transferred else ''}\n"
            f"drop_off_location: {'Help Offer Prompt' if transferred else ''}\n"
            f"notes: User asked about claim {session_id}."
        )
    return "\n\n".join(sections)


class FakeInferenceClient(InferenceClient):
    """Answers batch prompts with well-formed sections unless told otherwise.

    ``malformed_for``: a batch containing any of these session ids always gets garbage.
    ``errors``: exceptions raised by the first calls, in order.
    ``outcome_for``: per-session outcome override.
    """

    def __init__(
        self,
        malformed_for: set[str] | None = None,
        errors: list[Exception] | None = None,
        delay: float = 0.0,
        usage: TokenUsage | None = None,
        outcome_for: dict[str, str] | None = None,
        narrative: str | None = None,
    ) -> None:
        self.malformed_for = malformed_for or set()
        self.errors = list(errors or [])
        self.delay = delay
        self.usage = usage or TokenUsage(prompt_tokens=100, completion_tokens=50)
        self.outcome_for = outcome_for or {}
        self.narrative = narrative
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def complete(self, prompt, model, temperature, max_tokens, system_prompt=None):
        self.calls.append(prompt)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            if self.errors:
                raise self.errors.pop(0)

            session_ids = SESSION_ID_PATTERN.findall(prompt)
            if not session_ids:
                text = self.narrative or (
                    "## ANALYSIS_OVERVIEW\nMost sessions were contained.\n\n"
                    "## ANALYSIS_SUMMARY\nClaim status dominates.\n\n"
                    "## CONTAINMENT_SUGGESTION\nImprove provider ID capture."
                )
                return Completion(text=text, usage=self.usage, model=model)
            if self.malformed_for.intersection(session_ids):
                return Completion(text="I could not analyze these sessions.", usage=self.usage, model=model)

            sections = []
            for number, session_id in enumerate(session_ids, start=1):
                outcome = self.outcome_for.get(session_id, "Contained")
                sections.append(section_response([session_id], outcome).replace("SESSION 1", f"SESSION {number}"))
            return Completion(text="\n\n".join(sections), usage=self.usage, model=model)
        finally:
            self.in_flight -= 1

    async def close(self):
        self.closed = True


@pytest.fixture
def session_factory() -> Callable[..., SessionRecord]:
    return make_session


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(bot_id="st-bot-1", client_id="cs-client", client_secret="secret-value")


@pytest.fixture
def analysis_config() -> AnalysisConfig:
    return AnalysisConfig(
        start_date="2025-03-10",
        start_time="10:00",
        timezone="America/New_York",
        session_count=5,
        model_id="gpt-4o-mini",
        openai_api_key="sk-test-key",
    )


@pytest.fixture
def fast_settings() -> AnalysisSettings:
    """Settings with no retry backoff and the narrative disabled."""
    return AnalysisSettings(retry_backoff_seconds=0, summary_enabled=False, concurrency_limit=2)
