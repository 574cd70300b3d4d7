from abc import ABC, abstractmethod

from shared.models import Completion


class InferenceClient(ABC):
    """Abstract base class for text-completion providers."""

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
        system_prompt: str | None = None,
    ) -> Completion:
        """Complete ``prompt`` and return the text with token usage."""
        pass

    async def close(self) -> None:
        """Release network resources held by the client."""
        return None
