"""Configuracao da sessao de transcricao enviada ao emissor de credenciais.

Espelha o corpo do POST /v1/realtime/transcription_sessions.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class TranscriptionModelConfig(BaseModel):
    """Modelo de transcricao do endpoint remoto."""

    model: str = "gpt-4o-transcribe"
    language: str | None = "en"
    prompt: str = ""


class TurnDetectionConfig(BaseModel):
    """VAD do lado do servidor (define quando um Completed e emitido)."""

    type: Literal["server_vad"] = "server_vad"
    threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    prefix_padding_ms: int = Field(default=300, ge=0)
    silence_duration_ms: int = Field(default=500, ge=0)


class NoiseReductionConfig(BaseModel):
    """Reducao de ruido aplicada pelo endpoint."""

    type: Literal["near_field", "far_field"] = "near_field"


class TranscriptionSessionConfig(BaseModel):
    """Configuracao da sessao de transcricao.

    Audio de entrada e sempre PCM 16-bit, 24kHz, mono.
    """

    input_audio_format: Literal["pcm16"] = "pcm16"
    input_audio_transcription: TranscriptionModelConfig = TranscriptionModelConfig()
    turn_detection: TurnDetectionConfig = TurnDetectionConfig()
    input_audio_noise_reduction: NoiseReductionConfig | None = NoiseReductionConfig()

    def to_request_body(self) -> dict[str, Any]:
        """Serializa para o corpo JSON do request de credencial."""
        body = self.model_dump(mode="json", exclude_none=True)
        transcription = body["input_audio_transcription"]
        if transcription.get("language") is None:
            transcription.pop("language", None)
        return body
