"""Configuracao do engine de transcricao (pydantic + YAML)."""

from __future__ import annotations

from escuta.config.engine import CandidateProviderConfig, EngineConfig, RecoveryConfig
from escuta.config.transcription import (
    NoiseReductionConfig,
    TranscriptionModelConfig,
    TranscriptionSessionConfig,
    TurnDetectionConfig,
)

__all__ = [
    "CandidateProviderConfig",
    "EngineConfig",
    "NoiseReductionConfig",
    "RecoveryConfig",
    "TranscriptionModelConfig",
    "TranscriptionSessionConfig",
    "TurnDetectionConfig",
]
