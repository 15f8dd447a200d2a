"""Testes do parsing de eventos do canal."""

from __future__ import annotations

import json

import pytest

from escuta.channel.protocol import (
    CompletedEvent,
    DeltaEvent,
    HeartbeatEvent,
    RemoteErrorEvent,
    SpeechStartedEvent,
    SpeechStoppedEvent,
    UnknownEvent,
    audio_append_message,
    heartbeat_message,
    parse_event,
)
from escuta.exceptions import MalformedEventError


def _payload(**fields: object) -> str:
    return json.dumps(fields)


# ---------------------------------------------------------------------------
# Eventos conhecidos
# ---------------------------------------------------------------------------


class TestKnownEvents:
    def test_delta(self) -> None:
        event = parse_event(
            _payload(type="conversation.item.input_audio_transcription.delta", delta="Hel")
        )
        assert event == DeltaEvent(text="Hel")

    def test_completed(self) -> None:
        event = parse_event(
            _payload(
                type="conversation.item.input_audio_transcription.completed",
                transcript=" Hello world ",
            )
        )
        assert isinstance(event, CompletedEvent)
        assert event.text == " Hello world "

    def test_delta_without_text_is_empty(self) -> None:
        event = parse_event(_payload(type="conversation.item.input_audio_transcription.delta"))
        assert event == DeltaEvent(text="")

    def test_speech_started_and_stopped(self) -> None:
        assert isinstance(
            parse_event(_payload(type="input_audio_buffer.speech_started")), SpeechStartedEvent
        )
        assert isinstance(
            parse_event(_payload(type="input_audio_buffer.speech_stopped")), SpeechStoppedEvent
        )

    def test_heartbeat_echo(self) -> None:
        event = parse_event(_payload(type="heartbeat", timestamp=1234))
        assert event == HeartbeatEvent(timestamp=1234)

    def test_bytes_payload(self) -> None:
        raw = _payload(type="input_audio_buffer.speech_started").encode("utf-8")
        assert isinstance(parse_event(raw), SpeechStartedEvent)


class TestRemoteError:
    def test_error_with_message_and_code(self) -> None:
        event = parse_event(
            _payload(type="error", error={"message": "rate limited", "code": "rate_limit"})
        )
        assert event == RemoteErrorEvent(message="rate limited", code="rate_limit")

    def test_error_without_message(self) -> None:
        event = parse_event(_payload(type="error", error={}))
        assert isinstance(event, RemoteErrorEvent)
        assert event.message == "erro remoto sem mensagem"
        assert event.code is None

    def test_error_as_plain_string(self) -> None:
        event = parse_event(_payload(type="error", error="boom"))
        assert event == RemoteErrorEvent(message="boom")


class TestUnknownEvents:
    def test_unknown_type_is_not_an_error(self) -> None:
        event = parse_event(_payload(type="session.created", session={"id": "x"}))
        assert isinstance(event, UnknownEvent)
        assert event.event_type == "session.created"
        assert event.raw["session"] == {"id": "x"}


# ---------------------------------------------------------------------------
# Payloads malformados
# ---------------------------------------------------------------------------


class TestMalformedPayloads:
    @pytest.mark.parametrize(
        "payload",
        [
            "not json",
            "{oops",
            "[1, 2, 3]",
            '"texto"',
            "{}",
            '{"type": ""}',
            '{"type": 42}',
        ],
    )
    def test_malformed_raises(self, payload: str) -> None:
        with pytest.raises(MalformedEventError):
            parse_event(payload)

    def test_invalid_utf8(self) -> None:
        with pytest.raises(MalformedEventError, match="UTF-8"):
            parse_event(b"\xff\xfe\x00")

    def test_raw_is_truncated(self) -> None:
        payload = "x" * 500
        with pytest.raises(MalformedEventError) as exc_info:
            parse_event(payload)
        assert len(exc_info.value.raw) == 200


# ---------------------------------------------------------------------------
# Mensagens do cliente
# ---------------------------------------------------------------------------


class TestClientMessages:
    def test_heartbeat_message(self) -> None:
        assert json.loads(heartbeat_message(now_ms=1_700_000_000_000)) == {
            "type": "heartbeat",
            "timestamp": 1_700_000_000_000,
        }

    def test_heartbeat_message_uses_wall_clock(self) -> None:
        message = json.loads(heartbeat_message())
        assert isinstance(message["timestamp"], int)
        assert message["timestamp"] > 1_600_000_000_000

    def test_audio_append_message(self) -> None:
        assert json.loads(audio_append_message("AAA=")) == {
            "type": "input_audio_buffer.append",
            "audio": "AAA=",
        }
