"""Configuracao do engine de sessao (endpoint, timeouts, politica de recovery)."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from escuta._types import TransportKind  # noqa: TC001 - Pydantic needs at runtime
from escuta.config.transcription import TranscriptionSessionConfig
from escuta.exceptions import ConfigParseError, ConfigValidationError

DEFAULT_API_BASE_URL = "https://api.openai.com"


class RecoveryConfig(BaseModel):
    """Politica de recovery (ver RetryPolicy).

    Defaults:
        max_attempts: 3 reconexoes completas antes de FAILED
        backoff_s: 1s entre teardown e nova negociacao
        disconnect_grace_s: 5s de tolerancia em DISCONNECTED antes do restart
    """

    max_attempts: int = Field(default=3, ge=1)
    backoff_s: float = Field(default=1.0, ge=0.0)
    disconnect_grace_s: float = Field(default=5.0, gt=0.0)


class CandidateProviderConfig(BaseModel):
    """Provedor de credenciais TURN (Metered). Vazio = lista publica de fallback."""

    domain: str | None = None
    api_key: str | None = None

    @property
    def enabled(self) -> bool:
        """True se domain e api_key estao configurados."""
        return bool(self.domain and self.api_key)


class EngineConfig(BaseModel):
    """Configuracao completa do engine de sessao."""

    api_base_url: str = DEFAULT_API_BASE_URL
    transport: TransportKind = TransportKind.WEBRTC
    channel_label: str = "oai-events"

    sample_rate: int = Field(default=24000, gt=0)
    block_size: int = Field(default=4096, gt=0)
    input_device: str | int | None = None

    heartbeat_interval_s: float = Field(default=3.0, gt=0.0)
    gather_timeout_s: float = Field(default=5.0, gt=0.0)
    channel_open_timeout_s: float = Field(default=15.0, gt=0.0)
    http_timeout_s: float = Field(default=30.0, gt=0.0)

    recovery: RecoveryConfig = RecoveryConfig()
    candidates: CandidateProviderConfig = CandidateProviderConfig()
    session: TranscriptionSessionConfig = TranscriptionSessionConfig()

    @property
    def realtime_url(self) -> str:
        """URL HTTP de troca de SDP (intent=transcription)."""
        return f"{self.api_base_url.rstrip('/')}/v1/realtime?intent=transcription"

    @property
    def realtime_ws_url(self) -> str:
        """URL WebSocket para a variante socket."""
        base = self.api_base_url.rstrip("/")
        base = base.replace("https://", "wss://").replace("http://", "ws://")
        return f"{base}/v1/realtime?intent=transcription"

    @property
    def credential_url(self) -> str:
        """URL de emissao de credenciais de curta duracao."""
        return f"{self.api_base_url.rstrip('/')}/v1/realtime/transcription_sessions"

    @classmethod
    def from_yaml_path(cls, path: str | Path) -> EngineConfig:
        """Carrega configuracao a partir de arquivo YAML."""
        path = Path(path)
        if not path.exists():
            raise ConfigParseError(str(path), "Arquivo nao encontrado")

        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigParseError(str(path), f"Erro ao ler arquivo: {e}") from e

        return cls.from_yaml_string(raw, source_path=str(path))

    @classmethod
    def from_yaml_string(cls, raw: str, source_path: str = "<string>") -> EngineConfig:
        """Carrega configuracao a partir de string YAML."""
        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ConfigParseError(source_path, f"YAML invalido: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigParseError(source_path, "Conteudo YAML deve ser um mapeamento")

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            ]
            raise ConfigValidationError(source_path, errors) from e
