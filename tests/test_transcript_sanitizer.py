"""Tests for Kore.ai message text cleanup."""

import json

import pytest

from services.transcript_store.sanitizer import SILENT_USER_TEXT, sanitize_message_text
from shared.enums import MessageType

USER = MessageType.USER
BOT = MessageType.BOT


class TestSystemMessages:
    """Messages that are not part of the conversation are dropped."""

    @pytest.mark.parametrize("text", ["Welcome Task", "  welcome task  ", "WELCOME TASK"])
    def test_welcome_task_from_user_dropped(self, text) -> None:
        assert sanitize_message_text(text, USER) is None

    def test_welcome_task_from_bot_kept(self) -> None:
        assert sanitize_message_text("Welcome Task", BOT) == "Welcome Task"

    def test_hangup_redirect_dropped(self) -> None:
        payload = {"type": "command", "command": "redirect", "data": [{"verb": "hangup", "headers": {}}]}
        assert sanitize_message_text(json.dumps(payload), BOT) is None

    def test_other_redirect_kept(self) -> None:
        payload = {"type": "command", "command": "redirect", "data": [{"verb": "say", "text": "Transferring you"}]}
        assert sanitize_message_text(json.dumps(payload), BOT) == "Transferring you"

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty_text_dropped(self, text) -> None:
        assert sanitize_message_text(text, USER) is None


class TestJsonPayloads:
    def test_say_text(self) -> None:
        assert sanitize_message_text('{"say": {"text": "Hello there"}}', BOT) == "Hello there"

    def test_say_text_list_joined(self) -> None:
        assert sanitize_message_text('{"say": {"text": ["Hello", "there"]}}', BOT) == "Hello there"

    def test_say_text_inside_data(self) -> None:
        payload = {"type": "command", "data": [{"verb": "config"}, {"say": {"text": "Please hold"}}]}
        assert sanitize_message_text(json.dumps(payload), BOT) == "Please hold"

    def test_any_nested_text_field(self) -> None:
        payload = {"response": {"payload": [{"text": "Your balance is 20"}]}}
        assert sanitize_message_text(json.dumps(payload), BOT) == "Your balance is 20"

    def test_invalid_json_left_as_is(self) -> None:
        assert sanitize_message_text("{not json}", BOT) == "{not json}"

    def test_user_json_not_unwrapped(self) -> None:
        text = '{"say": {"text": "typed by the user"}}'
        assert sanitize_message_text(text, USER) == text


class TestMarkupAndEntities:
    def test_ssml_speak_tags_removed(self) -> None:
        text = '<speak version="1.0">Thanks <break/> for   calling</speak>'
        assert sanitize_message_text(text, BOT) == "Thanks for calling"

    def test_prosody_emphasis_say_as_removed(self) -> None:
        text = '<prosody rate="slow">Call <emphasis>now</emphasis> on <say-as interpret-as="digits">123</say-as></prosody>'
        assert sanitize_message_text(text, BOT) == "Call now on 123"

    def test_ssml_inside_json_payload(self) -> None:
        text = '{"say": {"text": "<speak>One moment please</speak>"}}'
        assert sanitize_message_text(text, BOT) == "One moment please"

    def test_html_entities_decoded(self) -> None:
        text = "Fish &amp; chips &quot;today&quot; &#8211; &#x263A;&nbsp;ok"
        assert sanitize_message_text(text, USER) == 'Fish & chips "today" – ☺ ok'

    def test_plain_text_untouched(self) -> None:
        assert sanitize_message_text("  I need help with my claim  ", USER) == "I need help with my claim"


class TestSilence:
    @pytest.mark.parametrize("text", ["MAX_NO_INPUT", " max_no_input "])
    def test_max_no_input_from_user(self, text) -> None:
        assert sanitize_message_text(text, USER) == SILENT_USER_TEXT

    def test_max_no_input_from_bot_kept(self) -> None:
        assert sanitize_message_text("MAX_NO_INPUT", BOT) == "MAX_NO_INPUT"
