"""Tests for the Kore.ai transcript store adapter."""

import asyncio
from datetime import UTC, datetime
from unittest.mock import MagicMock

import aiohttp
import pytest
from jose import jwt

from services.transcript_store.kore import DEFAULT_BASE_URL, KoreTranscriptStore, format_timestamp
from shared.enums import ContainmentType, MessageType
from shared.errors import StoreAuthenticationError, TranscriptStoreError

DATE_FROM = datetime(2025, 3, 10, 14, 0, tzinfo=UTC)
DATE_TO = datetime(2025, 3, 10, 17, 0, tzinfo=UTC)


def http_error(status: int, message: str = "error") -> aiohttp.ClientResponseError:
    return aiohttp.ClientResponseError(request_info=MagicMock(), history=(), status=status, message=message)


class FakeHTTPClientFactory:
    """Stands in for AsyncHTTPClient; ``handler(path, data, params)`` answers each POST."""

    def __init__(self, handler) -> None:
        self.handler = handler
        self.requests: list[dict] = []

    def __call__(self, base_url: str = "", timeout: int = 30, headers=None):
        factory = self

        class _Client:
            async def __aenter__(self):
                return self

            async def __aexit__(self, exc_type, exc_val, exc_tb):
                return None

            async def post(self, path, data=None, params=None, headers=None):
                factory.requests.append(
                    {"base_url": base_url, "path": path, "data": data, "params": params, "headers": headers}
                )
                return factory.handler(path, data, params)

        return _Client()


def raw_session(session_id: str, **overrides) -> dict:
    record = {
        "sessionId": session_id,
        "userId": f"u-{session_id}",
        "start_time": "2025-03-10T14:30:00.000Z",
        "end_time": "2025-03-10T14:36:00.000Z",
        "tags": [],
        "metrics": {"total_messages": 6},
    }
    record.update(overrides)
    return record


def build_store(handler, **kwargs) -> tuple[KoreTranscriptStore, FakeHTTPClientFactory]:
    factory = FakeHTTPClientFactory(handler)
    store = KoreTranscriptStore(
        kwargs.pop("credentials"),
        rate_limit_delay=0,
        http_client_factory=factory,
        **kwargs,
    )
    return store, factory


class TestFormatting:
    def test_format_timestamp_millisecond_precision(self) -> None:
        value = datetime(2025, 3, 10, 14, 0, 5, 123456, tzinfo=UTC)
        assert format_timestamp(value) == "2025-03-10T14:00:05.123Z"

    def test_token_claims(self, credentials) -> None:
        store = KoreTranscriptStore(credentials)
        token = store._generate_token()

        claims = jwt.decode(token, "secret-value", algorithms=["HS256"], audience=DEFAULT_BASE_URL)

        assert claims["iss"] == "cs-client"
        assert claims["sub"] == "st-bot-1"
        assert claims["exp"] > claims["iat"]

    def test_base_url_from_credentials(self, credentials) -> None:
        creds = credentials.model_copy(update={"base_url": "https://eu-bots.kore.ai/"})
        assert KoreTranscriptStore(creds).base_url == "https://eu-bots.kore.ai"


class TestListSessions:
    """Session metadata queries across containment types."""

    @pytest.mark.asyncio
    async def test_fetches_every_containment_type(self, credentials) -> None:
        def handler(path, data, params):
            kind = params["containmentType"]
            return {"sessions": [raw_session(f"{kind}-1")]}

        store, factory = build_store(handler, credentials=credentials)
        sessions = await store.list_sessions(DATE_FROM, DATE_TO)

        assert sorted(s.session_id for s in sessions) == ["agent-1", "dropOff-1", "selfService-1"]
        by_id = {s.session_id: s for s in sessions}
        assert by_id["agent-1"].containment_type == ContainmentType.AGENT
        assert by_id["agent-1"].reported_message_count == 6
        assert len(factory.requests) == 3
        request = factory.requests[0]
        assert request["path"] == "/api/public/bot/st-bot-1/getSessions"
        assert request["data"]["dateFrom"] == "2025-03-10T14:00:00.000Z"
        assert request["data"]["limit"] == 10000
        assert "auth" in request["headers"]

    @pytest.mark.asyncio
    async def test_single_containment_type(self, credentials) -> None:
        store, factory = build_store(lambda *_: {"sessions": [raw_session("a")]}, credentials=credentials)

        sessions = await store.list_sessions(DATE_FROM, DATE_TO, containment_type=ContainmentType.DROP_OFF)

        assert [s.containment_type for s in sessions] == [ContainmentType.DROP_OFF]
        assert len(factory.requests) == 1

    @pytest.mark.asyncio
    async def test_malformed_records_skipped(self, credentials) -> None:
        def handler(path, data, params):
            return {"sessions": [raw_session("good"), raw_session("bad", start_time=None)]}

        store, _ = build_store(handler, credentials=credentials)
        sessions = await store.list_sessions(DATE_FROM, DATE_TO, containment_type=ContainmentType.AGENT)

        assert [s.session_id for s in sessions] == ["good"]

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_other_types(self, credentials) -> None:
        def handler(path, data, params):
            if params["containmentType"] == "agent":
                raise http_error(500, "Internal Server Error")
            return {"sessions": [raw_session(params["containmentType"])]}

        store, _ = build_store(handler, credentials=credentials)
        sessions = await store.list_sessions(DATE_FROM, DATE_TO)

        assert sorted(s.session_id for s in sessions) == ["dropOff", "selfService"]

    @pytest.mark.asyncio
    async def test_all_types_failing_raises(self, credentials) -> None:
        def handler(path, data, params):
            raise http_error(502, "Bad Gateway")

        store, _ = build_store(handler, credentials=credentials)
        with pytest.raises(TranscriptStoreError) as exc_info:
            await store.list_sessions(DATE_FROM, DATE_TO)
        assert not isinstance(exc_info.value, StoreAuthenticationError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_rejected_credentials_are_fatal(self, credentials, status) -> None:
        def handler(path, data, params):
            raise http_error(status, "Unauthorized")

        store, _ = build_store(handler, credentials=credentials)
        with pytest.raises(StoreAuthenticationError) as exc_info:
            await store.list_sessions(DATE_FROM, DATE_TO)
        assert exc_info.value.status == status

    @pytest.mark.asyncio
    async def test_rate_limit_retried(self, credentials) -> None:
        calls = []

        def handler(path, data, params):
            calls.append(path)
            if len(calls) == 1:
                raise http_error(429, "Too Many Requests")
            return {"sessions": [raw_session("a")]}

        store, _ = build_store(handler, credentials=credentials)
        sessions = await store.list_sessions(DATE_FROM, DATE_TO, containment_type=ContainmentType.AGENT)

        assert [s.session_id for s in sessions] == ["a"]
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self, credentials) -> None:
        def handler(path, data, params):
            raise http_error(429, "Too Many Requests")

        store, factory = build_store(handler, credentials=credentials, max_attempts=2)
        with pytest.raises(TranscriptStoreError) as exc_info:
            await store.list_sessions(DATE_FROM, DATE_TO, containment_type=ContainmentType.AGENT)

        assert exc_info.value.status == 429
        assert len(factory.requests) == 2

    @pytest.mark.asyncio
    async def test_timeout_becomes_store_error(self, credentials) -> None:
        def handler(path, data, params):
            raise asyncio.TimeoutError()

        store, _ = build_store(handler, credentials=credentials)
        with pytest.raises(TranscriptStoreError, match="TimeoutError"):
            await store.list_sessions(DATE_FROM, DATE_TO, containment_type=ContainmentType.AGENT)


class TestListMessages:
    @pytest.mark.asyncio
    async def test_paginates_and_converts(self, credentials) -> None:
        pages = [
            {
                "moreAvailable": True,
                "messages": [
                    {
                        "sessionId": "s1",
                        "type": "incoming",
                        "createdOn": "2025-03-10T14:30:00.000Z",
                        "components": [{"cT": "text", "data": {"text": "Check my claim"}}],
                    },
                    {"sessionId": "s1", "type": "outgoing", "components": [{"cT": "image", "data": {}}]},
                ],
            },
            {
                "moreAvailable": False,
                "messages": [
                    {
                        "sessionId": "s1",
                        "type": "outgoing",
                        "components": [{"cT": "text", "data": {"text": "Your claim is approved"}}],
                    }
                ],
            },
        ]

        store, factory = build_store(lambda *_: pages.pop(0), credentials=credentials)
        messages = await store.list_messages(DATE_FROM, DATE_TO, ["s1"])

        assert [m.text for m in messages] == ["Check my claim", "Your claim is approved"]
        assert [m.type for m in messages] == [MessageType.USER, MessageType.BOT]
        assert [r["data"]["skip"] for r in factory.requests] == [0, 10000]
        assert factory.requests[0]["data"]["sessionId"] == ["s1"]
        assert factory.requests[0]["path"] == "/api/public/bot/st-bot-1/getMessagesV2"

    @pytest.mark.asyncio
    async def test_errors_propagate(self, credentials) -> None:
        def handler(path, data, params):
            raise http_error(500)

        store, _ = build_store(handler, credentials=credentials)
        with pytest.raises(TranscriptStoreError):
            await store.list_messages(DATE_FROM, DATE_TO, ["s1"])

    @pytest.mark.asyncio
    async def test_messages_are_sanitized_and_system_messages_dropped(self, credentials) -> None:
        def text_message(kind: str, text: str) -> dict:
            return {"sessionId": "s1", "type": kind, "components": [{"cT": "text", "data": {"text": text}}]}

        page = {
            "moreAvailable": False,
            "messages": [
                text_message("incoming", "Welcome Task"),
                text_message("outgoing", '{"say": {"text": "<speak>How can I help?</speak>"}}'),
                text_message("incoming", "MAX_NO_INPUT"),
                text_message("outgoing", '{"type":"command","command":"redirect","data":[{"verb":"hangup"}]}'),
                text_message("incoming", "It&#39;s about my &quot;claim&quot;"),
            ],
        }

        store, _ = build_store(lambda *_: page, credentials=credentials)
        messages = await store.list_messages(DATE_FROM, DATE_TO, ["s1"])

        assert [m.text for m in messages] == ["How can I help?", "<User is silent>", 'It\'s about my "claim"']
        assert [m.type for m in messages] == [MessageType.BOT, MessageType.USER, MessageType.USER]
