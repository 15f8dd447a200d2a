"""EventChannel — canal bidirecional de eventos sobre o data channel WebRTC.

Responsabilidades:
- Notificar observers de open, evento, close e erro (interface explicita).
- Heartbeat periodico enquanto o canal esta aberto.
- Parsing de mensagens; payload malformado e logado e descartado.

Regras:
- ``closed`` e notificado no maximo uma vez por canal.
- Heartbeat so e enviado com o canal em ``open``; nunca apos close().
- Mensagens sao entregues na ordem de chegada.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import TYPE_CHECKING, Any, Protocol

from escuta.channel.protocol import heartbeat_message, parse_event
from escuta.exceptions import ChannelClosedError, MalformedEventError
from escuta.logging import get_logger
from escuta.session.metrics import HAS_METRICS, heartbeats_sent_total

if TYPE_CHECKING:
    from collections.abc import Callable

    from escuta.channel.protocol import TranscriptionEvent

logger = get_logger("channel.events")

_CLOSED_STATES = frozenset({"closing", "closed"})


class ChannelObserver(Protocol):
    """Observer dos sinais do canal de eventos."""

    def on_channel_opened(self) -> None: ...

    def on_channel_event(self, event: TranscriptionEvent) -> None: ...

    def on_channel_closed(self) -> None: ...

    def on_channel_error(self, exc: BaseException) -> None: ...


class BaseEventChannel:
    """Observers, parsing e notificacoes comuns as variantes do canal.

    Args:
        label: Identificador do canal (para logs e erros).
    """

    def __init__(self, label: str) -> None:
        self._label = label
        self._observers: list[ChannelObserver] = []
        self._opened = False
        self._closed_notified = False
        self._closed = False
        self._messages_received = 0

    @property
    def label(self) -> str:
        """Label do canal."""
        return self._label

    @property
    def is_open(self) -> bool:
        """True entre a abertura e o fechamento do canal."""
        return self._opened and not self._closed_notified and not self._closed

    @property
    def messages_received(self) -> int:
        """Mensagens recebidas (incluindo malformadas)."""
        return self._messages_received

    def subscribe(self, observer: ChannelObserver) -> Callable[[], None]:
        """Registra observer. Retorna funcao que o remove."""
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def _notify_opened(self) -> None:
        if self._opened or self._closed:
            return
        self._opened = True
        logger.info("channel_opened", label=self._label)
        for observer in list(self._observers):
            observer.on_channel_opened()

    def _notify_closed(self) -> None:
        if self._closed_notified or self._closed:
            return
        self._closed_notified = True
        logger.info("channel_closed", label=self._label)
        for observer in list(self._observers):
            observer.on_channel_closed()

    def _notify_error(self, exc: BaseException) -> None:
        logger.error("channel_error", label=self._label, error=str(exc))
        for observer in list(self._observers):
            observer.on_channel_error(exc)

    def _handle_message(self, payload: str | bytes) -> None:
        """Parseia e despacha uma mensagem. Malformadas sao descartadas."""
        if self._closed:
            return
        self._messages_received += 1
        try:
            event = parse_event(payload)
        except MalformedEventError as exc:
            logger.warning(
                "malformed_event_dropped",
                label=self._label,
                error=exc.detail,
                raw=exc.raw,
            )
            return

        for observer in list(self._observers):
            observer.on_channel_event(event)


class EventChannel(BaseEventChannel):
    """Canal de eventos sobre um RTCDataChannel do aiortc.

    Lifecycle tipico:
        1. subscribe(observer)
        2. start() registra handlers (emite opened se o canal ja esta aberto)
        3. heartbeat a cada heartbeat_interval_s enquanto aberto
        4. close() (idempotente)

    Args:
        data_channel: RTCDataChannel criado pelo negociador.
        heartbeat_interval_s: Intervalo entre heartbeats (default: 3s).
        clock: Funcao que retorna timestamp em ms (para testes deterministicos).
    """

    def __init__(
        self,
        data_channel: Any,
        heartbeat_interval_s: float = 3.0,
        clock: Callable[[], int] | None = None,
    ) -> None:
        super().__init__(label=str(data_channel.label))
        self._channel = data_channel
        self._heartbeat_interval_s = heartbeat_interval_s
        self._clock = clock
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._heartbeats_sent = 0
        self._started = False
        self._incoming: list[Any] = []

    @property
    def ready_state(self) -> str:
        """readyState do data channel (connecting, open, closing, closed)."""
        return str(self._channel.readyState)

    @property
    def heartbeats_sent(self) -> int:
        """Heartbeats enviados desde a abertura."""
        return self._heartbeats_sent

    def start(self) -> None:
        """Registra os handlers no data channel. Idempotente."""
        if self._started or self._closed:
            return
        self._started = True
        self._channel.on("open", self._on_open)
        self._channel.on("message", self._handle_message)
        self._channel.on("close", self._on_close)
        self._channel.on("error", self._on_error)

        if self.ready_state == "open":
            self._on_open()

    def attach_incoming(self, data_channel: Any) -> None:
        """Consome tambem um data channel criado pelo servidor."""
        if self._closed:
            return
        logger.debug("incoming_channel_attached", label=str(data_channel.label))
        data_channel.on("message", self._handle_message)
        self._incoming.append(data_channel)

    def send(self, payload: str | dict[str, Any]) -> None:
        """Envia mensagem de controle JSON.

        Raises:
            ChannelClosedError: Se o canal nao esta aberto.
        """
        if self._closed or self.ready_state != "open":
            raise ChannelClosedError(self._label, f"estado {self.ready_state}")
        message = payload if isinstance(payload, str) else json.dumps(payload)
        self._channel.send(message)

    def heartbeat_tick(self) -> bool:
        """Executa um tick de heartbeat. Retorna True se o heartbeat foi enviado."""
        if self._closed:
            return False

        state = self.ready_state
        if state == "open":
            now_ms = self._clock() if self._clock is not None else None
            self._channel.send(heartbeat_message(now_ms))
            self._heartbeats_sent += 1
            if HAS_METRICS and heartbeats_sent_total is not None:
                heartbeats_sent_total.inc()
            logger.debug("heartbeat_sent", label=self._label, count=self._heartbeats_sent)
            return True

        logger.warning("heartbeat_skipped", label=self._label, state=state)
        if state in _CLOSED_STATES:
            self._on_close()
        return False

    async def close(self) -> None:
        """Para o heartbeat, fecha o data channel e descarta observers. Idempotente."""
        if self._closed:
            return
        self._closed = True
        await self._stop_heartbeat()

        self._remove_handlers()
        self._observers.clear()

        if self.ready_state not in _CLOSED_STATES:
            self._channel.close()
        logger.debug(
            "channel_released",
            label=self._label,
            heartbeats_sent=self._heartbeats_sent,
            messages_received=self._messages_received,
        )

    def _on_open(self) -> None:
        if self._opened or self._closed:
            return
        self._notify_opened()
        self._heartbeat_task = asyncio.get_running_loop().create_task(self._heartbeat_loop())

    def _on_close(self) -> None:
        self._cancel_heartbeat()
        self._notify_closed()

    def _on_error(self, exc: BaseException) -> None:
        self._notify_error(exc)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval_s)
            if self._closed or self._closed_notified:
                return
            self.heartbeat_tick()

    def _cancel_heartbeat(self) -> None:
        task = self._heartbeat_task
        if task is None or task.done():
            return
        if task is not asyncio.current_task():
            task.cancel()

    async def _stop_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.wait({task})

    def _remove_handlers(self) -> None:
        for event_name, handler in (
            ("open", self._on_open),
            ("message", self._handle_message),
            ("close", self._on_close),
            ("error", self._on_error),
        ):
            with contextlib.suppress(KeyError):
                self._channel.remove_listener(event_name, handler)
        for incoming in self._incoming:
            with contextlib.suppress(KeyError):
                incoming.remove_listener("message", self._handle_message)
        self._incoming.clear()
