"""Kore.ai public API adapter for session metadata and transcripts."""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime
from typing import Any, Callable

import aiohttp
from jose import jwt
from pydantic import ValidationError

from shared.config import config
from shared.enums import ContainmentType, MessageType
from shared.errors import StoreAuthenticationError, TranscriptStoreError
from shared.http_client import AsyncHTTPClient
from shared.logging_utils import setup_logging
from shared.models import Credentials, Message, SessionRecord

from .base import TranscriptStore
from .sanitizer import sanitize_message_text

logger = setup_logging("kore-transcript-store")

DEFAULT_BASE_URL = "https://bots.kore.ai"
TOKEN_TTL_SECONDS = 3600
MESSAGE_PAGE_SIZE = 10000


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision, as the Kore API expects."""
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


class KoreTranscriptStore(TranscriptStore):
    """Transcript store backed by the Kore.ai bot analytics API."""

    def __init__(
        self,
        credentials: Credentials,
        base_url: str | None = None,
        timeout: int | None = None,
        max_attempts: int = 3,
        rate_limit_delay: float = 5.0,
        http_client_factory: Callable[..., AsyncHTTPClient] = AsyncHTTPClient,
    ) -> None:
        self.credentials = credentials
        self.base_url = (
            base_url or credentials.base_url or config.get("kore_base_url") or DEFAULT_BASE_URL
        ).rstrip("/")
        self.timeout = timeout or config.get("http_timeout_seconds", 60)
        self.max_attempts = max_attempts
        self.rate_limit_delay = rate_limit_delay
        self._http_client_factory = http_client_factory

    def _generate_token(self) -> str:
        now = int(time.time())
        claims = {
            "iss": self.credentials.client_id,
            "sub": self.credentials.bot_id,
            "iat": now,
            "exp": now + TOKEN_TTL_SECONDS,
            "aud": DEFAULT_BASE_URL,
        }
        return jwt.encode(
            claims, self.credentials.client_secret.get_secret_value(), algorithm="HS256"
        )

    async def _post(
        self, path: str, payload: dict[str, Any], params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """POST with JWT auth, retrying rate-limited calls with a doubling delay."""
        retry_delay = self.rate_limit_delay
        for attempt in range(1, self.max_attempts + 1):
            try:
                async with self._http_client_factory(
                    base_url=self.base_url,
                    timeout=self.timeout,
                    headers={"Content-Type": "application/json"},
                ) as client:
                    return await client.post(
                        path, data=payload, params=params, headers={"auth": self._generate_token()}
                    )
            except aiohttp.ClientResponseError as e:
                if e.status in (401, 403):
                    raise StoreAuthenticationError(
                        f"Transcript store rejected credentials for bot {self.credentials.bot_id} "
                        f"(HTTP {e.status})",
                        status=e.status,
                    ) from e
                if e.status == 429 and attempt < self.max_attempts:
                    logger.warning(
                        f"Rate limited by transcript store on {path}; retrying in {retry_delay}s "
                        f"(attempt {attempt}/{self.max_attempts})"
                    )
                    await asyncio.sleep(retry_delay)
                    retry_delay *= 2
                    continue
                raise TranscriptStoreError(
                    f"Transcript store request to {path} failed with HTTP {e.status}: {e.message}",
                    status=e.status,
                ) from e
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise TranscriptStoreError(
                    f"Transcript store request to {path} failed: {type(e).__name__}"
                ) from e

        raise TranscriptStoreError(f"Transcript store request to {path} exhausted retries", status=429)

    async def list_sessions(
        self,
        date_from: datetime,
        date_to: datetime,
        skip: int = 0,
        limit: int = 10000,
        containment_type: ContainmentType | None = None,
    ) -> list[SessionRecord]:
        """Fetch sessions; without a containment type all three types are fetched concurrently."""
        if containment_type is not None:
            return await self._list_sessions_for_type(containment_type, date_from, date_to, skip, limit)

        containment_types = list(ContainmentType)
        results = await asyncio.gather(
            *(
                self._list_sessions_for_type(kind, date_from, date_to, skip, limit)
                for kind in containment_types
            ),
            return_exceptions=True,
        )

        sessions: list[SessionRecord] = []
        failures: list[BaseException] = []
        for kind, result in zip(containment_types, results):
            if isinstance(result, StoreAuthenticationError):
                raise result
            if isinstance(result, BaseException):
                logger.warning(f"Failed to fetch {kind.value} sessions: {result}")
                failures.append(result)
                continue
            sessions.extend(result)

        if failures and len(failures) == len(containment_types):
            raise TranscriptStoreError(
                f"All session requests failed for bot {self.credentials.bot_id}: {failures[0]}"
            ) from failures[0]

        logger.info(
            f"Fetched {len(sessions)} sessions between {format_timestamp(date_from)} "
            f"and {format_timestamp(date_to)}"
        )
        return sessions

    async def _list_sessions_for_type(
        self,
        containment_type: ContainmentType,
        date_from: datetime,
        date_to: datetime,
        skip: int,
        limit: int,
    ) -> list[SessionRecord]:
        response = await self._post(
            f"/api/public/bot/{self.credentials.bot_id}/getSessions",
            {
                "dateFrom": format_timestamp(date_from),
                "dateTo": format_timestamp(date_to),
                "skip": skip,
                "limit": limit,
            },
            params={"containmentType": containment_type.value},
        )
        if not isinstance(response, dict):
            raise TranscriptStoreError("Malformed getSessions response")

        sessions = []
        for raw in response.get("sessions") or []:
            session = self._convert_session(raw, containment_type)
            if session is not None:
                sessions.append(session)
        return sessions

    @staticmethod
    def _convert_session(raw: dict[str, Any], containment_type: ContainmentType) -> SessionRecord | None:
        metrics = raw.get("metrics") or {}
        try:
            return SessionRecord(
                session_id=raw.get("sessionId") or raw.get("session_id"),
                user_id=raw.get("userId") or raw.get("user_id") or "",
                start_time=raw.get("start_time"),
                end_time=raw.get("end_time") or None,
                containment_type=containment_type,
                tags=raw.get("tags") or [],
                reported_message_count=metrics.get("total_messages", raw.get("message_count")),
                duration_seconds=raw.get("duration_seconds"),
            )
        except ValidationError as e:
            logger.warning(f"Skipping malformed session record: {e.error_count()} validation errors")
            return None

    async def list_messages(
        self,
        date_from: datetime,
        date_to: datetime,
        session_ids: list[str] | None = None,
    ) -> list[Message]:
        """Fetch transcript messages page by page while the API reports more."""
        path = f"/api/public/bot/{self.credentials.bot_id}/getMessagesV2"
        messages: list[Message] = []
        skip = 0
        while True:
            payload: dict[str, Any] = {
                "skip": skip,
                "limit": MESSAGE_PAGE_SIZE,
                "dateFrom": format_timestamp(date_from),
                "dateTo": format_timestamp(date_to),
            }
            if session_ids:
                payload["sessionId"] = session_ids

            response = await self._post(path, payload)
            if not isinstance(response, dict):
                raise TranscriptStoreError("Malformed getMessagesV2 response")

            page = response.get("messages") or []
            for raw in page:
                message = self._convert_message(raw)
                if message is not None:
                    messages.append(message)

            if not response.get("moreAvailable") or not page:
                break
            skip += MESSAGE_PAGE_SIZE

        logger.info(f"Fetched {len(messages)} messages for {len(session_ids or [])} sessions")
        return messages

    @staticmethod
    def _convert_message(raw: dict[str, Any]) -> Message | None:
        text = None
        for component in raw.get("components") or []:
            data = component.get("data") or {}
            if component.get("cT") == "text" and data.get("text"):
                text = data["text"]
                break
        message_type = MessageType.USER if raw.get("type") == "incoming" else MessageType.BOT
        text = sanitize_message_text(text, message_type)
        if not text:
            return None

        try:
            return Message(
                session_id=raw.get("sessionId"),
                type=message_type,
                text=text,
                created_on=raw.get("createdOn") or None,
            )
        except ValidationError:
            logger.warning(f"Skipping malformed message for session {raw.get('sessionId')}")
            return None
