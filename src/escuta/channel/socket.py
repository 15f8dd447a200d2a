"""SocketEventChannel — variante do canal de eventos sobre WebSocket.

Subconjunto degradado do transporte WebRTC: a credencial vai na lista de
sub-protocolos, o audio e enviado como mensagens ``input_audio_buffer.append``
(PCM16 em base64) e os eventos chegam no mesmo socket. Nao ha restart
in-place nem heartbeat de aplicacao (o ping nativo do WebSocket cobre o
keepalive).
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import json
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from escuta.channel.event_channel import BaseEventChannel
from escuta.channel.protocol import audio_append_message
from escuta.exceptions import ChannelClosedError, NegotiationError
from escuta.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from escuta.audio.capture import AudioPipeline
    from escuta.transport.credentials import Credential

logger = get_logger("channel.socket")


def socket_subprotocols(credential: Credential) -> list[str]:
    """Sub-protocolos do handshake, com a credencial embutida."""
    return [
        "realtime",
        f"openai-insecure-api-key.{credential.token}",
        "openai-beta.realtime-v1",
    ]


class SocketEventChannel(BaseEventChannel):
    """Canal de eventos e audio sobre um unico WebSocket.

    Args:
        url: URL wss:// do endpoint (intent=transcription).
        credential: Credencial de curta duracao da sessao.
        open_timeout_s: Timeout do handshake.
        connect: Fabrica de conexao (default: websockets.asyncio.client.connect).
    """

    def __init__(
        self,
        url: str,
        credential: Credential,
        *,
        open_timeout_s: float = 15.0,
        connect: Callable[..., Any] | None = None,
    ) -> None:
        super().__init__(label="realtime-socket")
        self._url = url
        self._credential = credential
        self._open_timeout_s = open_timeout_s
        self._connect = connect or ws_connect
        self._ws: Any = None
        self._receive_task: asyncio.Task[None] | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._frames_sent = 0

    @property
    def frames_sent(self) -> int:
        """Frames de audio enviados."""
        return self._frames_sent

    async def connect(self) -> None:
        """Abre o socket e inicia o loop de recepcao.

        Raises:
            NegotiationError: Se o handshake falha ou expira.
        """
        logger.info("socket_connecting", url=self._url)
        try:
            self._ws = await self._connect(
                self._url,
                subprotocols=socket_subprotocols(self._credential),
                open_timeout=self._open_timeout_s,
            )
        except (WebSocketException, OSError, TimeoutError) as exc:
            raise NegotiationError(f"handshake WebSocket falhou: {exc}") from exc

        self._receive_task = asyncio.create_task(self._receive_loop())
        self._notify_opened()

    def start_audio(self, pipeline: AudioPipeline) -> None:
        """Inicia o envio dos frames do pipeline pelo socket."""
        if self._pump_task is not None or self._closed:
            return
        self._pump_task = asyncio.create_task(self._pump_audio(pipeline))

    async def send(self, payload: str | dict[str, Any]) -> None:
        """Envia mensagem de controle JSON.

        Raises:
            ChannelClosedError: Se o socket nao esta aberto.
        """
        if self._ws is None or self._closed or self._closed_notified:
            raise ChannelClosedError(self._label, "socket nao conectado")
        message = payload if isinstance(payload, str) else json.dumps(payload)
        try:
            await self._ws.send(message)
        except ConnectionClosed as exc:
            raise ChannelClosedError(self._label, str(exc)) from exc

    async def send_audio(self, frame: bytes) -> None:
        """Envia um frame PCM16 como ``input_audio_buffer.append``."""
        await self.send(audio_append_message(base64.b64encode(frame).decode("ascii")))
        self._frames_sent += 1

    async def close(self) -> None:
        """Para o envio de audio e a recepcao, fecha o socket. Idempotente."""
        if self._closed:
            return
        self._closed = True
        self._observers.clear()

        for task in (self._pump_task, self._receive_task):
            if task is None or task is asyncio.current_task():
                continue
            task.cancel()
            await asyncio.wait({task})
        self._pump_task = None
        self._receive_task = None

        ws = self._ws
        self._ws = None
        if ws is not None:
            with contextlib.suppress(WebSocketException, OSError):
                await ws.close()
        logger.debug(
            "socket_released",
            frames_sent=self._frames_sent,
            messages_received=self._messages_received,
        )

    async def _receive_loop(self) -> None:
        reason: str | None = None
        try:
            async for message in self._ws:
                self._handle_message(message)
        except ConnectionClosed as exc:
            reason = str(exc)
        except (WebSocketException, OSError) as exc:
            reason = str(exc)
            self._notify_error(exc)
        finally:
            # Qualquer fim do reader sem close() local conta como queda do canal
            if not self._closed:
                logger.warning("socket_closed_by_remote", reason=reason)
                self._notify_closed()

    async def _pump_audio(self, pipeline: AudioPipeline) -> None:
        async for frame in pipeline.frames():
            try:
                await self.send_audio(frame)
            except ChannelClosedError as exc:
                logger.debug("socket_audio_pump_stopped", reason=str(exc))
                return
