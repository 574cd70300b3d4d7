"""Builder for OpenAI clients.

Each analysis job carries its own API key, so clients are created per job
rather than once per process.
"""

from __future__ import annotations

import os

from openai import AsyncOpenAI

from shared.config import config


def create_openai_client(
    api_key: str | None = None,
    timeout: float | None = None,
    max_retries: int = 0,
) -> AsyncOpenAI:
    """
    Create an AsyncOpenAI client.

    Args:
        api_key: OpenAI API key (falls back to OPENAI_API_KEY if None)
        timeout: Request timeout in seconds (defaults to configured value)
        max_retries: SDK-level retries

    Returns:
        Configured AsyncOpenAI client

    Raises:
        ValueError: If no API key is available
    """
    api_key = api_key or config.get("openai_api_key") or os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise ValueError("OpenAI API key not configured. Set OPENAI_API_KEY or pass api_key.")

    return AsyncOpenAI(
        api_key=api_key,
        timeout=timeout if timeout is not None else config.get("openai_timeout_seconds", 120.0),
        max_retries=max_retries,
    )
