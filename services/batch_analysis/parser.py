"""Strict parser for batch analysis responses."""

from __future__ import annotations

import re
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict

from shared.enums import SessionOutcome
from shared.models import SessionFacts, SessionRecord
from shared.section_parser import ParseFailure, split_sections

FIELD_PATTERN = re.compile(r"^[\s\-*]*(?P<key>[A-Za-z][A-Za-z _\-]*?)\**\s*:\s*(?P<value>.*?)\s*$")
BLANK_VALUES = {"", "-", "n/a", "na", "none", "null", "blank"}
REQUIRED_FIELDS = ("general_intent", "session_outcome")


class ParsedBatch(BaseModel):
    """Facts for every session of a batch, in batch order."""

    model_config = ConfigDict(frozen=True)

    facts: list[SessionFacts]


def _read_fields(body: str) -> dict[str, str]:
    fields: dict[str, str] = {}
    for line in body.splitlines():
        match = FIELD_PATTERN.match(line)
        if not match:
            continue
        key = re.sub(r"[\s\-]+", "_", match.group("key").strip()).lower()
        fields.setdefault(key, match.group("value").strip().strip("*").strip())
    return fields


def _clean(value: str | None) -> str:
    if value is None or value.strip().lower() in BLANK_VALUES:
        return ""
    return value.strip()


def _parse_outcome(raw: str) -> SessionOutcome | None:
    for outcome in SessionOutcome:
        if raw.strip().lower() == outcome.value.lower():
            return outcome
    return None


def parse_batch_response(text: str, sessions: Sequence[SessionRecord]) -> ParsedBatch | ParseFailure:
    """
    Parse one ``### SESSION <n>`` section per session.

    Any missing section, missing required field, unknown outcome, or
    mismatched session id fails the whole batch. Contained sessions never
    carry a transfer reason or drop-off location.
    """
    if not text or not text.strip():
        return ParseFailure(reason="Empty response from model")

    sections = split_sections(text)
    facts: list[SessionFacts] = []
    for number, session in enumerate(sessions, start=1):
        body = sections.get(f"SESSION_{number}")
        if body is None:
            return ParseFailure(reason=f"Missing section for session {number}")

        fields = _read_fields(body)
        missing = [name for name in REQUIRED_FIELDS if not _clean(fields.get(name))]
        if missing:
            return ParseFailure(reason=f"Session {number} is missing {', '.join(missing)}")

        reported_id = _clean(fields.get("session_id"))
        if reported_id and reported_id != session.session_id:
            return ParseFailure(
                reason=f"Session {number} answered for {reported_id}, expected {session.session_id}"
            )

        outcome = _parse_outcome(fields["session_outcome"])
        if outcome is None:
            return ParseFailure(
                reason=f"Session {number} has invalid session_outcome {fields['session_outcome']!r}"
            )

        transferred = outcome == SessionOutcome.TRANSFER
        facts.append(
            SessionFacts(
                general_intent=_clean(fields["general_intent"]),
                session_outcome=outcome,
                transfer_reason=_clean(fields.get("transfer_reason")) if transferred else "",
                drop_off_location=_clean(fields.get("drop_off_location")) if transferred else "",
                notes=_clean(fields.get("notes")),
            )
        )

    return ParsedBatch(facts=facts)
