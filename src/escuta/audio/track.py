"""PipelineAudioTrack — adapta o AudioPipeline para um MediaStreamTrack do aiortc.

Cada frame PCM16 do pipeline vira um av.AudioFrame s16 mono com pts
monotonicamente crescente (em amostras). Parar a track nao para o microfone:
o pipeline pode ser reusado por uma nova track apos reconexao.
"""

from __future__ import annotations

import fractions
from typing import TYPE_CHECKING

import av
import numpy as np
from aiortc import MediaStreamTrack
from aiortc.mediastreams import MediaStreamError

from escuta.logging import get_logger

if TYPE_CHECKING:
    from escuta.audio.capture import AudioPipeline

logger = get_logger("audio.track")


def pcm16_to_audio_frame(pcm_bytes: bytes, sample_rate: int, pts: int) -> av.AudioFrame:
    """Empacota bytes PCM16 mono em um av.AudioFrame."""
    samples = np.frombuffer(pcm_bytes, dtype="<i2").reshape(1, -1)
    frame = av.AudioFrame.from_ndarray(samples, format="s16", layout="mono")
    frame.sample_rate = sample_rate
    frame.pts = pts
    frame.time_base = fractions.Fraction(1, sample_rate)
    return frame


class PipelineAudioTrack(MediaStreamTrack):
    """Track de audio WebRTC alimentada pelo AudioPipeline.

    Args:
        pipeline: AudioPipeline ja iniciado.
    """

    kind = "audio"

    def __init__(self, pipeline: AudioPipeline) -> None:
        super().__init__()
        self._pipeline = pipeline
        self._pts = 0

    @property
    def pipeline(self) -> AudioPipeline:
        """Pipeline de origem dos frames."""
        return self._pipeline

    async def recv(self) -> av.AudioFrame:
        """Retorna o proximo frame de audio.

        Raises:
            MediaStreamError: Se a track ou o pipeline foram encerrados.
        """
        if self.readyState != "live":
            raise MediaStreamError

        pcm_bytes = await self._pipeline.read_frame()
        if pcm_bytes is None:
            logger.debug("track_pipeline_ended", samples_sent=self._pts)
            self.stop()
            raise MediaStreamError

        frame = pcm16_to_audio_frame(pcm_bytes, self._pipeline.sample_rate, self._pts)
        self._pts += frame.samples
        return frame
