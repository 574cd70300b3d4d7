"""Strict extraction of markdown-heading sections from model output.

Parsing never raises on malformed text. Callers receive either a
``ParsedSections`` or a ``ParseFailure`` and decide what to do with it.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict

HEADING_PATTERN = re.compile(r"^[ \t]{0,3}#{1,6}[ \t]*(?P<title>.+?)[ \t]*#*[ \t]*$", re.MULTILINE)


class ParsedSections(BaseModel):
    """Sections keyed by normalized heading (``ANALYSIS_OVERVIEW``, ``SESSION_2``...)."""

    model_config = ConfigDict(frozen=True)

    sections: dict[str, str]

    def get(self, name: str) -> str:
        return self.sections[normalize_heading(name)]


class ParseFailure(BaseModel):
    """Why a response could not be parsed."""

    model_config = ConfigDict(frozen=True)

    reason: str


def normalize_heading(title: str) -> str:
    """Upper-case a heading and collapse spaces, hyphens and trailing colons to ``_``."""
    cleaned = title.strip().rstrip(":").strip().strip("*").strip()
    return re.sub(r"[\s\-_]+", "_", cleaned).upper()


def split_sections(text: str) -> dict[str, str]:
    """Split text into ``{normalized heading: body}``; the first occurrence of a heading wins."""
    matches = list(HEADING_PATTERN.finditer(text or ""))
    sections: dict[str, str] = {}
    for index, match in enumerate(matches):
        body_end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
        key = normalize_heading(match.group("title"))
        if key not in sections:
            sections[key] = text[match.end():body_end].strip()
    return sections


def extract_sections(text: str, required: Iterable[str]) -> ParsedSections | ParseFailure:
    """Return every required section, or a failure naming the first one missing or empty."""
    if not text or not text.strip():
        return ParseFailure(reason="Empty response")

    sections = split_sections(text)
    for name in required:
        key = normalize_heading(name)
        if not sections.get(key):
            return ParseFailure(reason=f"Missing or empty section: {key}")
    return ParsedSections(sections=sections)
