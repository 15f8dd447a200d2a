"""Conversao float32 <-> PCM 16-bit little-endian (formato de fio)."""

from __future__ import annotations

import numpy as np

BYTES_PER_SAMPLE = 2

# Escala assimetrica: int16 vai de -32768 a 32767
_NEGATIVE_SCALE = 32768.0
_POSITIVE_SCALE = 32767.0


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Converte amostras float para bytes PCM 16-bit little-endian.

    Amostras sao limitadas a [-1.0, 1.0] antes da escala. Valores negativos
    sao multiplicados por 32768 e nao-negativos por 32767, evitando overflow
    nos extremos. Audio multi-canal usa apenas o primeiro canal.

    Args:
        samples: Array numpy float (1D, ou 2D frames x canais).

    Returns:
        Bytes PCM int16 little-endian, 2 bytes por amostra.
    """
    data = np.asarray(samples, dtype=np.float32)
    if data.ndim > 1:
        data = data[:, 0]
    if data.size == 0:
        return b""

    clipped = np.clip(data, -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * _NEGATIVE_SCALE, clipped * _POSITIVE_SCALE)
    return scaled.astype("<i2").tobytes()


def pcm16_to_float(raw_bytes: bytes) -> np.ndarray:
    """Converte bytes PCM 16-bit little-endian para float32 em [-1.0, 1.0]."""
    if len(raw_bytes) % BYTES_PER_SAMPLE != 0:
        msg = "Audio PCM 16-bit deve ter numero par de bytes"
        raise ValueError(msg)
    pcm = np.frombuffer(raw_bytes, dtype="<i2").astype(np.float32)
    return np.where(pcm < 0, pcm / _NEGATIVE_SCALE, pcm / _POSITIVE_SCALE).astype(np.float32)
