"""Audio Pipeline: captura de microfone -> frames PCM 16-bit 24kHz mono."""

from __future__ import annotations

from escuta.audio.capture import AudioPipeline
from escuta.audio.pcm import BYTES_PER_SAMPLE, float_to_pcm16

__all__ = ["BYTES_PER_SAMPLE", "AudioPipeline", "float_to_pcm16"]
