"""Batch analysis of session transcripts with an inference model."""

from .analyzer import Batch, BatchAnalyzer, BatchOutcome
from .parser import ParsedBatch, parse_batch_response
from .prompts import KnownClassifications, build_batch_prompt

__all__ = [
    "Batch",
    "BatchAnalyzer",
    "BatchOutcome",
    "KnownClassifications",
    "ParsedBatch",
    "build_batch_prompt",
    "parse_batch_response",
]
