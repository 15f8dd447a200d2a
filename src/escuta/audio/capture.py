"""AudioPipeline — captura do microfone em frames PCM 16-bit de tamanho fixo.

O callback do PortAudio roda em thread propria; cada bloco e convertido para
PCM16 e entregue ao event loop via call_soon_threadsafe. O consumidor
(PipelineAudioTrack ou o pump da variante socket) le os frames do loop.

Regras:
- Sample rate fixo (24kHz por default), mono, blocos de block_size amostras.
- Falha ao abrir o dispositivo levanta DeviceError (nao e retentada).
- stop() e idempotente e encerra o iterador de frames.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from escuta.audio.pcm import BYTES_PER_SAMPLE, float_to_pcm16
from escuta.exceptions import DeviceError
from escuta.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger("audio.capture")

# ~20s de audio em blocos de 4096 amostras a 24kHz
_DEFAULT_MAX_QUEUED_FRAMES = 120

_LOG_EVERY_N_FRAMES = 10


class AudioPipeline:
    """Captura de microfone que emite frames PCM16 de tamanho fixo.

    Lifecycle tipico:
        1. start() abre o dispositivo de entrada
        2. frames() / read_frame() consomem os blocos PCM16
        3. stop() fecha o dispositivo (idempotente)

    Args:
        sample_rate: Sample rate de captura em Hz (default: 24000).
        block_size: Amostras por frame (default: 4096).
        device: Dispositivo de entrada do sounddevice (None = default do sistema).
        max_queued_frames: Frames mantidos quando o consumidor atrasa; os mais
            antigos sao descartados.
    """

    def __init__(
        self,
        sample_rate: int = 24000,
        block_size: int = 4096,
        device: str | int | None = None,
        max_queued_frames: int = _DEFAULT_MAX_QUEUED_FRAMES,
    ) -> None:
        self._sample_rate = sample_rate
        self._block_size = block_size
        self._device = device
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize=max_queued_frames)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stream: Any = None
        self._capturing = False
        self._stopped = False
        self._frame_count = 0
        self._dropped_frames = 0

    @property
    def sample_rate(self) -> int:
        """Sample rate dos frames emitidos."""
        return self._sample_rate

    @property
    def block_size(self) -> int:
        """Amostras por frame."""
        return self._block_size

    @property
    def frame_bytes(self) -> int:
        """Tamanho de cada frame em bytes."""
        return self._block_size * BYTES_PER_SAMPLE

    @property
    def is_capturing(self) -> bool:
        """True entre start() e stop()."""
        return self._capturing

    @property
    def track_enabled(self) -> bool:
        """True se o stream de entrada ainda esta ativo e pode ser reusado."""
        if not self._capturing or self._stream is None:
            return False
        return bool(getattr(self._stream, "active", True))

    @property
    def frame_count(self) -> int:
        """Total de frames produzidos desde start()."""
        return self._frame_count

    def start(self) -> None:
        """Abre o microfone e inicia a captura.

        Idempotente enquanto capturando. Um pipeline parado nao reinicia:
        crie uma nova instancia.

        Raises:
            DeviceError: Se o dispositivo nao pode ser aberto.
        """
        if self._capturing:
            return
        if self._stopped:
            raise DeviceError("pipeline de audio ja foi encerrado")

        self._loop = asyncio.get_running_loop()

        try:
            import sounddevice as sd
        except (ImportError, OSError) as exc:
            raise DeviceError(f"sounddevice/PortAudio indisponivel: {exc}") from exc

        logger.info(
            "microphone_requested",
            sample_rate=self._sample_rate,
            block_size=self._block_size,
            device=self._device,
        )

        try:
            stream = sd.InputStream(
                samplerate=self._sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self._block_size,
                device=self._device,
                callback=self._audio_callback,
            )
        except (sd.PortAudioError, ValueError, OSError) as exc:
            raise DeviceError(str(exc)) from exc

        try:
            stream.start()
        except (sd.PortAudioError, OSError) as exc:
            stream.close()
            raise DeviceError(str(exc)) from exc

        self._stream = stream
        self._capturing = True
        logger.info("microphone_started", sample_rate=self._sample_rate)

    def stop(self) -> None:
        """Desconecta a captura, libera o dispositivo e encerra frames().

        Idempotente: chamadas em pipeline ja parado sao no-op.
        """
        if self._stopped:
            return
        self._stopped = True
        was_capturing = self._capturing
        self._capturing = False

        stream = self._stream
        self._stream = None
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()

        self._put_nowait(None)

        if was_capturing:
            logger.info(
                "microphone_stopped",
                frames=self._frame_count,
                dropped_frames=self._dropped_frames,
            )

    async def read_frame(self) -> bytes | None:
        """Aguarda o proximo frame PCM16. Retorna None apos stop()."""
        if self._stopped and self._queue.empty():
            return None
        frame = await self._queue.get()
        if frame is None:
            # Mantem o sentinela para outros consumidores
            self._put_nowait(None)
        return frame

    async def frames(self) -> AsyncIterator[bytes]:
        """Itera sobre frames PCM16 ate stop()."""
        while True:
            frame = await self.read_frame()
            if frame is None:
                return
            yield frame

    def _audio_callback(
        self,
        indata: Any,
        frames: int,
        time_info: object,
        status: object,
    ) -> None:
        """Callback do PortAudio (thread de audio)."""
        if status:
            logger.debug("audio_callback_status", status=str(status))
        pcm_bytes = float_to_pcm16(indata)
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._enqueue_frame, pcm_bytes)

    def _enqueue_frame(self, pcm_bytes: bytes) -> None:
        """Entrega um frame ao consumidor (roda no event loop)."""
        if not self._capturing:
            return

        if self._queue.full():
            # Consumidor atrasado: descarta o frame mais antigo
            self._queue.get_nowait()
            self._dropped_frames += 1

        self._queue.put_nowait(pcm_bytes)
        self._frame_count += 1
        if self._frame_count % _LOG_EVERY_N_FRAMES == 0:
            logger.debug(
                "audio_frame_captured",
                frame=self._frame_count,
                size_bytes=len(pcm_bytes),
            )

    def _put_nowait(self, item: bytes | None) -> None:
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(item)
