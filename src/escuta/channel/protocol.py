"""Protocolo do canal de eventos: parsing de eventos do endpoint remoto.

Recebe o payload texto de cada mensagem do canal e retorna um evento
tipado. Tipos desconhecidos viram UnknownEvent (nunca erro); payloads que
nao sao um objeto JSON com ``type`` levantam MalformedEventError.
"""

from __future__ import annotations

import json
import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from escuta.exceptions import MalformedEventError

DELTA_EVENT_TYPE = "conversation.item.input_audio_transcription.delta"
COMPLETED_EVENT_TYPE = "conversation.item.input_audio_transcription.completed"
SPEECH_STARTED_EVENT_TYPE = "input_audio_buffer.speech_started"
SPEECH_STOPPED_EVENT_TYPE = "input_audio_buffer.speech_stopped"
HEARTBEAT_EVENT_TYPE = "heartbeat"
ERROR_EVENT_TYPE = "error"
AUDIO_APPEND_EVENT_TYPE = "input_audio_buffer.append"

# ---------------------------------------------------------------------------
# Server -> Client events
# ---------------------------------------------------------------------------


class DeltaEvent(BaseModel):
    """Fragmento incremental de transcricao (utterance em andamento)."""

    model_config = ConfigDict(frozen=True)

    type: Literal["delta"] = "delta"
    text: str


class CompletedEvent(BaseModel):
    """Transcricao final de uma utterance."""

    model_config = ConfigDict(frozen=True)

    type: Literal["completed"] = "completed"
    text: str


class SpeechStartedEvent(BaseModel):
    """VAD remoto detectou inicio de fala."""

    model_config = ConfigDict(frozen=True)

    type: Literal["speech_started"] = "speech_started"


class SpeechStoppedEvent(BaseModel):
    """VAD remoto detectou fim de fala."""

    model_config = ConfigDict(frozen=True)

    type: Literal["speech_stopped"] = "speech_stopped"


class HeartbeatEvent(BaseModel):
    """Eco de heartbeat."""

    model_config = ConfigDict(frozen=True)

    type: Literal["heartbeat"] = "heartbeat"
    timestamp: int | None = None


class RemoteErrorEvent(BaseModel):
    """Erro reportado pelo endpoint remoto. Nao muda o status da sessao."""

    model_config = ConfigDict(frozen=True)

    type: Literal["remote_error"] = "remote_error"
    message: str
    code: str | None = None


class UnknownEvent(BaseModel):
    """Evento de tipo nao reconhecido. Descartado pelo controller."""

    model_config = ConfigDict(frozen=True)

    type: Literal["unknown"] = "unknown"
    event_type: str
    raw: dict[str, Any]


TranscriptionEvent = (
    DeltaEvent
    | CompletedEvent
    | SpeechStartedEvent
    | SpeechStoppedEvent
    | HeartbeatEvent
    | RemoteErrorEvent
    | UnknownEvent
)


def parse_event(payload: str | bytes) -> TranscriptionEvent:
    """Parseia o payload de uma mensagem do canal.

    Args:
        payload: Texto (ou bytes UTF-8) recebido no canal.

    Returns:
        Evento tipado correspondente ao campo ``type``.

    Raises:
        MalformedEventError: Payload nao e JSON, nao e objeto, ou nao tem ``type``.
    """
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedEventError(f"payload nao e UTF-8: {exc}") from exc

    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, ValueError) as exc:
        raise MalformedEventError(f"JSON invalido: {exc}", raw=payload[:200]) from exc

    if not isinstance(data, dict):
        raise MalformedEventError(
            "esperado objeto JSON, recebido " + type(data).__name__,
            raw=payload[:200],
        )

    event_type = data.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedEventError("campo obrigatorio ausente: 'type'", raw=payload[:200])

    if event_type == DELTA_EVENT_TYPE:
        return DeltaEvent(text=_as_text(data.get("delta")))
    if event_type == COMPLETED_EVENT_TYPE:
        return CompletedEvent(text=_as_text(data.get("transcript")))
    if event_type == SPEECH_STARTED_EVENT_TYPE:
        return SpeechStartedEvent()
    if event_type == SPEECH_STOPPED_EVENT_TYPE:
        return SpeechStoppedEvent()
    if event_type == HEARTBEAT_EVENT_TYPE:
        timestamp = data.get("timestamp")
        return HeartbeatEvent(timestamp=timestamp if isinstance(timestamp, int) else None)
    if event_type == ERROR_EVENT_TYPE:
        return _parse_error(data)

    return UnknownEvent(event_type=event_type, raw=data)


def heartbeat_message(now_ms: int | None = None) -> str:
    """Mensagem de heartbeat serializada: ``{"type": "heartbeat", "timestamp": ms}``."""
    timestamp = int(time.time() * 1000) if now_ms is None else now_ms
    return json.dumps({"type": HEARTBEAT_EVENT_TYPE, "timestamp": timestamp})


def audio_append_message(audio_b64: str) -> str:
    """Mensagem ``input_audio_buffer.append`` com audio PCM16 em base64."""
    return json.dumps({"type": AUDIO_APPEND_EVENT_TYPE, "audio": audio_b64})


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _parse_error(data: dict[str, Any]) -> RemoteErrorEvent:
    error = data.get("error")
    if isinstance(error, dict):
        code = error.get("code")
        return RemoteErrorEvent(
            message=_as_text(error.get("message")) or "erro remoto sem mensagem",
            code=str(code) if code is not None else None,
        )
    return RemoteErrorEvent(message=_as_text(error) or "erro remoto sem mensagem")
