"""
Cleanup of raw Kore.ai message text before it reaches transcripts and prompts.

Bot replies often arrive as JSON voice payloads or SSML markup, and both
speakers carry HTML entities. A few system messages ("Welcome Task" launches,
hangup redirects) are not conversation at all and are dropped.
"""

from __future__ import annotations

import html
import json
import re
from typing import Any

from shared.enums import MessageType

SILENT_USER_TEXT = "<User is silent>"
WELCOME_TASK_TEXT = "welcome task"
MAX_NO_INPUT_TEXT = "MAX_NO_INPUT"

SSML_PRESENT = re.compile(r"<speak\b[^>]*>.*</speak>|<prosody\b[^>]*>.*</prosody>", re.IGNORECASE | re.DOTALL)
SSML_TAGS = re.compile(
    r"</?speak\b[^>]*>|</?prosody\b[^>]*>|</?emphasis\b[^>]*>|</?say-as\b[^>]*>",
    re.IGNORECASE,
)
SSML_BREAK = re.compile(r"<break\s*/>", re.IGNORECASE)
HTML_ENTITY = re.compile(r"&[a-zA-Z][a-zA-Z0-9]*;|&#[0-9]+;|&#x[0-9a-fA-F]+;")


def _load_json_object(text: str) -> Any:
    stripped = text.strip()
    if not (stripped.startswith("{") and stripped.endswith("}")):
        return None
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        return None


def _say_text(node: Any) -> str | None:
    if not isinstance(node, dict):
        return None
    say = node.get("say")
    if not isinstance(say, dict) or not say.get("text"):
        return None
    text = say["text"]
    if isinstance(text, list):
        return " ".join(str(part) for part in text)
    return str(text)


def _find_text(node: Any) -> str | None:
    if isinstance(node, dict):
        if isinstance(node.get("text"), str):
            return node["text"]
        children = node.values()
    elif isinstance(node, list):
        children = node
    else:
        return None
    for child in children:
        found = _find_text(child)
        if found:
            return found
    return None


def extract_json_text(payload: Any) -> str | None:
    """Spoken text of a Kore voice payload: ``say.text``, then ``data[].say.text``, then any ``text``."""
    direct = _say_text(payload)
    if direct:
        return direct
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        for item in payload["data"]:
            found = _say_text(item)
            if found:
                return found
    return _find_text(payload)


def is_hangup_command(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    if payload.get("type") != "command" or payload.get("command") != "redirect":
        return False
    data = payload.get("data")
    if not isinstance(data, list):
        return False
    return any(isinstance(item, dict) and item.get("verb") == "hangup" for item in data)


def strip_ssml(text: str) -> str:
    cleaned = SSML_BREAK.sub(" ", text)
    cleaned = SSML_TAGS.sub("", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


def sanitize_message_text(text: str | None, message_type: MessageType) -> str | None:
    """
    Clean one message's text.

    Args:
        text: Raw component text as returned by the API
        message_type: Speaker of the message

    Returns:
        The cleaned text, or None when the message should be dropped
        (system messages, or nothing left after cleanup).
    """
    if not text or not isinstance(text, str):
        return None

    if message_type == MessageType.USER and text.strip().lower() == WELCOME_TASK_TEXT:
        return None

    cleaned = text
    if message_type == MessageType.BOT:
        payload = _load_json_object(text)
        if is_hangup_command(payload):
            return None
        if payload is not None:
            cleaned = extract_json_text(payload) or cleaned

    if SSML_PRESENT.search(cleaned):
        cleaned = strip_ssml(cleaned)

    if HTML_ENTITY.search(cleaned):
        cleaned = html.unescape(cleaned).replace("\xa0", " ")

    if message_type == MessageType.USER and cleaned.strip().upper() == MAX_NO_INPUT_TEXT:
        cleaned = SILENT_USER_TEXT

    return cleaned.strip() or None
