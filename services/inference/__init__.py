"""Inference driver implementations."""

from .base import InferenceClient
from .openai_driver import OpenAIInferenceDriver

__all__ = [
    "InferenceClient",
    "OpenAIInferenceDriver",
]
