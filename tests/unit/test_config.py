"""Testes da configuracao do engine (EngineConfig + YAML)."""

from __future__ import annotations

from pathlib import Path

import pytest

from escuta._types import TransportKind
from escuta.config import EngineConfig, TranscriptionSessionConfig
from escuta.exceptions import ConfigParseError, ConfigValidationError

VALID_YAML = """\
api_base_url: https://proxy.example.com/
transport: websocket
heartbeat_interval_s: 2
recovery:
  max_attempts: 5
  backoff_s: 0.5
candidates:
  domain: example.metered.live
  api_key: secret
session:
  input_audio_transcription:
    model: gpt-4o-mini-transcribe
    language: pt
"""


class TestDefaults:
    def test_engine_defaults(self) -> None:
        config = EngineConfig()

        assert config.transport == TransportKind.WEBRTC
        assert config.channel_label == "oai-events"
        assert config.sample_rate == 24000
        assert config.block_size == 4096
        assert config.heartbeat_interval_s == 3.0
        assert config.recovery.max_attempts == 3
        assert config.recovery.backoff_s == 1.0
        assert config.recovery.disconnect_grace_s == 5.0
        assert not config.candidates.enabled

    def test_urls(self) -> None:
        config = EngineConfig(api_base_url="https://api.openai.com/")

        assert config.realtime_url == "https://api.openai.com/v1/realtime?intent=transcription"
        assert config.realtime_ws_url == "wss://api.openai.com/v1/realtime?intent=transcription"
        assert config.credential_url == "https://api.openai.com/v1/realtime/transcription_sessions"

    def test_plain_http_maps_to_ws(self) -> None:
        config = EngineConfig(api_base_url="http://localhost:8080")
        assert config.realtime_ws_url.startswith("ws://localhost:8080/")


class TestFromYaml:
    def test_valid_yaml(self) -> None:
        config = EngineConfig.from_yaml_string(VALID_YAML)

        assert config.transport == TransportKind.WEBSOCKET
        assert config.heartbeat_interval_s == 2.0
        assert config.recovery.max_attempts == 5
        assert config.candidates.enabled
        assert config.session.input_audio_transcription.model == "gpt-4o-mini-transcribe"
        assert config.realtime_url.startswith("https://proxy.example.com/v1/")

    def test_empty_yaml_uses_defaults(self) -> None:
        assert EngineConfig.from_yaml_string("") == EngineConfig()

    def test_invalid_yaml_syntax(self) -> None:
        with pytest.raises(ConfigParseError, match="YAML invalido"):
            EngineConfig.from_yaml_string("recovery: [unclosed")

    def test_non_mapping_yaml(self) -> None:
        with pytest.raises(ConfigParseError, match="mapeamento"):
            EngineConfig.from_yaml_string("- a\n- b\n")

    def test_validation_errors_have_field_path(self) -> None:
        with pytest.raises(ConfigValidationError) as exc_info:
            EngineConfig.from_yaml_string("recovery:\n  max_attempts: 0\n")

        assert any(err.startswith("recovery.max_attempts") for err in exc_info.value.errors)

    def test_unknown_transport_rejected(self) -> None:
        with pytest.raises(ConfigValidationError):
            EngineConfig.from_yaml_string("transport: carrier-pigeon\n")

    def test_from_path(self, tmp_path: Path) -> None:
        path = tmp_path / "engine.yaml"
        path.write_text(VALID_YAML, encoding="utf-8")

        config = EngineConfig.from_yaml_path(path)

        assert config.recovery.backoff_s == 0.5

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigParseError, match="nao encontrado"):
            EngineConfig.from_yaml_path(tmp_path / "nope.yaml")


class TestTranscriptionSession:
    def test_request_body_defaults(self) -> None:
        body = TranscriptionSessionConfig().to_request_body()

        assert body["input_audio_format"] == "pcm16"
        assert body["input_audio_transcription"] == {
            "model": "gpt-4o-transcribe",
            "language": "en",
            "prompt": "",
        }
        assert body["turn_detection"]["type"] == "server_vad"
        assert body["input_audio_noise_reduction"] == {"type": "near_field"}

    def test_language_omitted_when_none(self) -> None:
        config = TranscriptionSessionConfig.model_validate(
            {"input_audio_transcription": {"language": None}}
        )

        body = config.to_request_body()

        assert "language" not in body["input_audio_transcription"]

    def test_noise_reduction_can_be_disabled(self) -> None:
        config = TranscriptionSessionConfig(input_audio_noise_reduction=None)
        assert "input_audio_noise_reduction" not in config.to_request_body()
