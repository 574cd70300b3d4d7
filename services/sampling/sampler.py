"""Progressive time-window sampling of sessions."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

import aiohttp
from pydantic import BaseModel, ConfigDict, Field

from services.transcript_store.base import TranscriptStore
from shared.cancellation import CancellationToken
from shared.errors import FatalAnalysisError, InvalidAnalysisRequestError, TranscriptStoreError
from shared.logging_utils import setup_logging
from shared.models import Message, SessionRecord, TimeWindow

logger = setup_logging("session-sampler")

STORE_FAILURES = (TranscriptStoreError, aiohttp.ClientError, asyncio.TimeoutError, ValueError)


class WindowStep(BaseModel):
    """One rung of the window ladder."""

    model_config = ConfigDict(frozen=True)

    hours: float = Field(..., gt=0)
    label: str


DEFAULT_WINDOW_LADDER: tuple[WindowStep, ...] = (
    WindowStep(hours=3, label="Initial 3-hour window"),
    WindowStep(hours=6, label="Extended to 6 hours"),
    WindowStep(hours=12, label="Extended to 12 hours"),
    WindowStep(hours=144, label="Extended to 6 days"),
)

SessionFilter = Callable[[SessionRecord], bool]


class SamplingProgress(BaseModel):
    """Progress emitted before and after each window search."""

    model_config = ConfigDict(frozen=True)

    current_step: str
    sessions_found: int
    window_index: int
    windows_searched: int
    window_label: str


SamplingProgressCallback = Callable[[SamplingProgress], None]


class SamplingResult(BaseModel):
    """Sessions found by a ladder search plus how far the search went."""

    sessions: list[SessionRecord]
    windows: list[TimeWindow] = Field(default_factory=list)
    windows_searched: int = 0
    total_found: int = 0
    cancelled: bool = False
    window_errors: list[str] = Field(default_factory=list)


def min_message_filter(min_messages: int = 2, min_content_chars: int = 10) -> SessionFilter:
    """Keep sessions with enough messages, and enough text once a transcript is loaded."""

    def _qualifies(session: SessionRecord) -> bool:
        if not session.has_transcript:
            return session.message_count >= min_messages
        return session.message_count >= min_messages and session.content_length >= min_content_chars

    return _qualifies


class TimeWindowSampler:
    """Searches widening windows that all begin at the requested start instant."""

    def __init__(
        self,
        store: TranscriptStore,
        ladder: Sequence[WindowStep] = DEFAULT_WINDOW_LADDER,
        fetch_limit: int = 10000,
        message_buffer_hours: float = 1.0,
        default_filter: SessionFilter | None = None,
    ) -> None:
        if not ladder:
            raise ValueError("Window ladder must contain at least one step")
        durations = [step.hours for step in ladder]
        if any(later <= earlier for earlier, later in zip(durations, durations[1:])):
            raise ValueError(f"Window ladder durations must strictly increase: {durations}")

        self.store = store
        self.ladder = tuple(ladder)
        self.fetch_limit = fetch_limit
        self.message_buffer = timedelta(hours=message_buffer_hours)
        self.default_filter = default_filter or min_message_filter()

    def build_windows(self, start: datetime) -> list[TimeWindow]:
        return [
            TimeWindow(
                start=start,
                end=start + timedelta(hours=step.hours),
                duration_hours=step.hours,
                label=step.label,
            )
            for step in self.ladder
        ]

    async def sample(
        self,
        start: datetime,
        target_count: int,
        filter_predicate: SessionFilter | None = None,
        *,
        cancel_token: CancellationToken | None = None,
        on_progress: SamplingProgressCallback | None = None,
    ) -> SamplingResult:
        """
        Collect up to ``target_count`` qualifying sessions starting at ``start``.

        Windows are searched in ladder order and the search stops as soon as the
        accumulated, de-duplicated set reaches the target. The result keeps
        first-discovery order and is truncated to the target. Finding fewer
        sessions than requested is not an error.

        Raises:
            InvalidAnalysisRequestError: target_count is not positive
            FatalAnalysisError: the store rejected the credentials
        """
        if target_count <= 0:
            raise InvalidAnalysisRequestError(f"Target session count must be positive, got {target_count}")

        qualifies = filter_predicate or self.default_filter
        found: dict[str, SessionRecord] = {}
        searched: list[TimeWindow] = []
        window_errors: list[str] = []
        cancelled = False

        for index, window in enumerate(self.build_windows(start)):
            if cancel_token is not None and cancel_token.is_cancelled:
                logger.info(f"Sampling cancelled before window '{window.label}'")
                cancelled = True
                break

            self._emit(on_progress, f"Searching in {window.label}...", len(found), index, len(searched), window.label)
            searched.append(window)

            try:
                candidates = await self.store.list_sessions(
                    window.start, window.end, skip=0, limit=self.fetch_limit
                )
            except FatalAnalysisError:
                raise
            except STORE_FAILURES as e:
                logger.warning(f"Session search failed for window '{window.label}': {e}")
                window_errors.append(f"{window.label}: {e}")
                candidates = []

            for session in candidates:
                if session.session_id in found or not qualifies(session):
                    continue
                found[session.session_id] = session

            logger.info(
                f"Window '{window.label}' returned {len(candidates)} sessions, "
                f"{len(found)} qualifying so far (target {target_count})"
            )
            self._emit(
                on_progress,
                f"Found {len(found)} sessions in {window.label}",
                len(found),
                index,
                len(searched),
                window.label,
            )

            if len(found) >= target_count:
                break

        sessions = list(found.values())[:target_count]
        if len(sessions) < target_count and not cancelled:
            logger.info(f"Ladder exhausted with {len(sessions)} of {target_count} requested sessions")

        return SamplingResult(
            sessions=sessions,
            windows=searched,
            windows_searched=len(searched),
            total_found=len(found),
            cancelled=cancelled,
            window_errors=window_errors,
        )

    async def attach_transcripts(self, sessions: list[SessionRecord]) -> list[SessionRecord]:
        """
        Load transcripts for ``sessions`` with a single ranged message query.

        Returns copies with messages attached, in the same order. Sessions with
        no messages in the response are returned unchanged, and a failed store
        call returns the input as-is.
        """
        if not sessions:
            return []

        date_from = min(session.start_time for session in sessions) - self.message_buffer
        date_to = max(session.end_time or session.start_time for session in sessions) + self.message_buffer
        session_ids = [session.session_id for session in sessions]

        try:
            messages = await self.store.list_messages(date_from, date_to, session_ids)
        except FatalAnalysisError:
            raise
        except STORE_FAILURES as e:
            logger.warning(f"Could not load transcripts for {len(sessions)} sessions: {e}")
            return list(sessions)

        grouped: dict[str, list[Message]] = {}
        for message in messages:
            if message.session_id:
                grouped.setdefault(message.session_id, []).append(message)

        attached = [
            session.with_messages(grouped[session.session_id]) if grouped.get(session.session_id) else session
            for session in sessions
        ]
        logger.info(
            f"Attached {len(messages)} messages to "
            f"{sum(1 for session in attached if session.has_transcript)} of {len(sessions)} sessions"
        )
        return attached

    @staticmethod
    def _emit(
        callback: SamplingProgressCallback | None,
        step: str,
        sessions_found: int,
        window_index: int,
        windows_searched: int,
        label: str,
    ) -> None:
        if callback is None:
            return
        callback(
            SamplingProgress(
                current_step=step,
                sessions_found=sessions_found,
                window_index=window_index,
                windows_searched=windows_searched,
                window_label=label,
            )
        )
