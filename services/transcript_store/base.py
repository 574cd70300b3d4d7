from abc import ABC, abstractmethod
from datetime import datetime

from shared.enums import ContainmentType
from shared.models import Message, SessionRecord


class TranscriptStore(ABC):
    """Abstract base class for upstream session/transcript sources."""

    @abstractmethod
    async def list_sessions(
        self,
        date_from: datetime,
        date_to: datetime,
        skip: int = 0,
        limit: int = 10000,
        containment_type: ContainmentType | None = None,
    ) -> list[SessionRecord]:
        """Return session metadata for sessions starting in ``[date_from, date_to)``."""
        pass

    @abstractmethod
    async def list_messages(
        self,
        date_from: datetime,
        date_to: datetime,
        session_ids: list[str] | None = None,
    ) -> list[Message]:
        """Return transcript messages in the range, optionally limited to ``session_ids``."""
        pass
