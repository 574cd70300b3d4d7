"""OpenAI driver for session analysis using AsyncOpenAI."""

from __future__ import annotations

import openai
from openai import AsyncOpenAI

from shared.errors import (
    InferenceAuthenticationError,
    InferenceError,
    QuotaExceededError,
    TransientInferenceError,
)
from shared.logging_utils import setup_logging
from shared.models import Completion, TokenUsage
from shared.openai_client import create_openai_client

from .base import InferenceClient

logger = setup_logging("openai-inference")

DEFAULT_SYSTEM_PROMPT = (
    "You are an expert session analyst specializing in conversational AI analysis. "
    "Follow the requested output format exactly."
)


class OpenAIInferenceDriver(InferenceClient):
    """Chat-completions implementation using AsyncOpenAI client."""

    def __init__(self, api_key: str | None = None, client: AsyncOpenAI | None = None):
        """Initialize OpenAI client."""
        self.client = client or create_openai_client(api_key=api_key)

    async def complete(
        self,
        prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
        system_prompt: str | None = None,
    ) -> Completion:
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt or DEFAULT_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.APIError as e:
            raise self._map_error(e) from e

        content = response.choices[0].message.content if response.choices else None
        usage = response.usage
        return Completion(
            text=(content or "").strip(),
            usage=TokenUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
            model=getattr(response, "model", None) or model,
        )

    async def close(self) -> None:
        await self.client.close()

    @staticmethod
    def _map_error(error: openai.APIError) -> InferenceError:
        """Translate SDK exceptions into the pipeline's error taxonomy."""
        if getattr(error, "code", None) == "insufficient_quota":
            logger.error("OpenAI quota exhausted")
            return QuotaExceededError(
                "OpenAI API quota exceeded. Check your plan and billing details."
            )
        if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
            logger.error("OpenAI rejected the API key")
            return InferenceAuthenticationError(
                "Invalid OpenAI API key or insufficient permissions."
            )
        if isinstance(
            error,
            (
                openai.APITimeoutError,
                openai.APIConnectionError,
                openai.RateLimitError,
                openai.InternalServerError,
            ),
        ):
            return TransientInferenceError(f"OpenAI request failed transiently: {type(error).__name__}")
        return InferenceError(f"OpenAI request failed: {error.message}")
