"""Prompt templates for per-session fact extraction."""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import BaseModel, Field

from shared.models import SessionRecord

SESSION_ANALYSIS_SYSTEM_PROMPT = (
    "You are an expert session analyst. Classify each conversational session transcript "
    "consistently and answer strictly in the requested section format."
)

CLASSIFICATION_INSTRUCTIONS = """For each session, provide the following classifications:

1. general_intent: what the user is trying to accomplish, usually 1-2 words (for example
   "Claim Status", "Billing", "Eligibility", "Live Agent", "Authorization"). Use "Unknown"
   when it cannot be determined. When the user asked for a live agent and also had another
   intent, use the other intent.
2. session_outcome: "Transfer" when the session was handed to a live agent near its end,
   otherwise "Contained". A bot closing the conversation is still "Contained".
3. transfer_reason: why the session was transferred, for example "Invalid Provider ID",
   "Live Agent Request", "Invalid Member ID", "Authentication Failed", "Technical Issue".
   Leave blank when the outcome is "Contained".
4. drop_off_location: the prompt at which the user started being routed to an agent, not
   counting error or live-agent rebuttal prompts, for example "Help Offer Prompt",
   "Authentication", "Provider ID", "Date of Service". Leave blank when "Contained".
5. notes: one sentence describing what happened in the session.

Reuse existing classifications whenever one fits so labels stay consistent."""

RESPONSE_FORMAT_INSTRUCTIONS = """Respond with exactly one section per session, in the same order, and nothing else:

### SESSION <number>
session_id: <session id exactly as given>
general_intent: <intent>
session_outcome: <Transfer or Contained>
transfer_reason: <reason or blank>
drop_off_location: <location or blank>
notes: <one sentence>"""


class KnownClassifications(BaseModel):
    """Labels assigned by earlier batches, fed to later prompts for consistency."""

    general_intents: set[str] = Field(default_factory=set)
    transfer_reasons: set[str] = Field(default_factory=set)
    drop_off_locations: set[str] = Field(default_factory=set)

    def is_empty(self) -> bool:
        return not (self.general_intents or self.transfer_reasons or self.drop_off_locations)


def format_session(index: int, session: SessionRecord) -> str:
    transcript = session.transcript_text() or "(transcript unavailable)"
    return (
        f"--- Session {index} ---\n"
        f"Session ID: {session.session_id}\n"
        f"User ID: {session.user_id or 'unknown'}\n"
        f"Transcript:\n{transcript}"
    )


def build_batch_prompt(
    sessions: Sequence[SessionRecord],
    known: KnownClassifications | None = None,
    additional_context: str | None = None,
) -> str:
    """Assemble the user prompt for one batch of sessions."""
    parts = [
        f"Analyze the following {len(sessions)} session transcripts and classify each session "
        "according to the criteria below."
    ]

    if additional_context:
        parts.append(f"Additional context and instructions from the user: {additional_context}")

    if known is not None and not known.is_empty():
        guidance = []
        if known.general_intents:
            guidance.append(f"Existing general_intent values: {', '.join(sorted(known.general_intents))}")
        if known.transfer_reasons:
            guidance.append(f"Existing transfer_reason values: {', '.join(sorted(known.transfer_reasons))}")
        if known.drop_off_locations:
            guidance.append(
                f"Existing drop_off_location values: {', '.join(sorted(known.drop_off_locations))}"
            )
        parts.append("\n".join(guidance))

    parts.append(CLASSIFICATION_INSTRUCTIONS)
    parts.append(RESPONSE_FORMAT_INSTRUCTIONS)
    parts.append("\n\n".join(format_session(index, session) for index, session in enumerate(sessions, start=1)))
    return "\n\n".join(parts)
