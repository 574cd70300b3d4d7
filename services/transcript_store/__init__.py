"""Transcript store adapters."""

from .base import TranscriptStore
from .kore import KoreTranscriptStore
from .sanitizer import sanitize_message_text

__all__ = [
    "TranscriptStore",
    "KoreTranscriptStore",
    "sanitize_message_text",
]
