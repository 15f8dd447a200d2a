"""Fixtures e fakes compartilhados para todos os testes."""

from __future__ import annotations

import asyncio
from typing import Any

import numpy as np
import pytest
from websockets.exceptions import ConnectionClosed

from escuta._types import TransportState
from escuta.config.engine import EngineConfig
from escuta.exceptions import DeviceError
from escuta.transport.credentials import Credential

SAMPLE_RATE = 24000
BLOCK_SIZE = 4096

ANSWER_SDP = "v=0\r\no=- 1 2 IN IP4 127.0.0.1\r\ns=-\r\nt=0 0\r\n"
OFFER_SDP = (
    "v=0\r\no=- 3 4 IN IP4 127.0.0.1\r\ns=-\r\nt=0 0\r\n"
    "a=candidate:1 1 udp 2130706431 192.168.0.10 50000 typ host\r\n"
)


class FakeClock:
    """Clock determinisico para testes."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start

    def __call__(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds


class FakeDataChannel:
    """Data channel com a API de eventos usada pelo EventChannel (on/remove_listener)."""

    def __init__(self, label: str = "oai-events", ready_state: str = "connecting") -> None:
        self.label = label
        self.readyState = ready_state
        self.sent: list[str] = []
        self.close_calls = 0
        self._handlers: dict[str, list[Any]] = {}

    def on(self, event: str, handler: Any) -> Any:
        self._handlers.setdefault(event, []).append(handler)
        return handler

    def remove_listener(self, event: str, handler: Any) -> None:
        handlers = self._handlers.get(event, [])
        if handler not in handlers:
            raise KeyError(event)
        handlers.remove(handler)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            handler(*args)

    def open(self) -> None:
        self.readyState = "open"
        self.emit("open")

    def remote_close(self) -> None:
        self.readyState = "closed"
        self.emit("close")

    def send(self, message: str) -> None:
        self.sent.append(message)

    def close(self) -> None:
        self.close_calls += 1
        self.readyState = "closed"
        self.emit("close")


class FakeTransport:
    """Transporte com a API do PeerTransport, sem rede."""

    def __init__(
        self,
        candidates: list[Any] | None = None,
        *,
        gathering_completes: bool = True,
        local_sdp: str | None = OFFER_SDP,
    ) -> None:
        self.candidates = candidates or []
        self.tracks: list[Any] = []
        self.data_channel: FakeDataChannel | None = None
        self.offers: list[bool] = []
        self.answers: list[str] = []
        self.close_calls = 0
        self.gathering_complete = asyncio.Event()
        if gathering_completes:
            self.gathering_complete.set()
        self.ice_gathering_state = "complete" if gathering_completes else "gathering"
        self.local_sdp = local_sdp
        self.state = TransportState.NEW
        self.offer_error: BaseException | None = None
        self.answer_error: BaseException | None = None
        self._listeners: list[Any] = []
        self._incoming: list[Any] = []

    @property
    def is_closed(self) -> bool:
        return self.close_calls > 0

    def add_listener(self, listener: Any) -> Any:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def on_incoming_channel(self, listener: Any) -> None:
        self._incoming.append(listener)

    def add_audio_track(self, track: Any) -> None:
        self.tracks.append(track)

    def create_data_channel(self, label: str) -> FakeDataChannel:
        self.data_channel = FakeDataChannel(label)
        return self.data_channel

    async def create_offer(self, *, ice_restart: bool = False) -> None:
        self.offers.append(ice_restart)
        if self.offer_error is not None:
            raise self.offer_error

    async def set_answer(self, sdp: str) -> None:
        self.answers.append(sdp)
        if self.answer_error is not None:
            raise self.answer_error

    async def close(self) -> None:
        self.close_calls += 1
        self._listeners.clear()

    def emit_state(self, state: TransportState) -> None:
        self.state = state
        for listener in list(self._listeners):
            listener(state)

    def emit_incoming(self, channel: Any) -> None:
        for listener in list(self._incoming):
            listener(channel)


class FakePipeline:
    """AudioPipeline sem dispositivo: frames vem de uma fila alimentada pelo teste."""

    def __init__(
        self,
        sample_rate: int = SAMPLE_RATE,
        block_size: int = BLOCK_SIZE,
        *,
        fail_with: str | None = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.start_calls = 0
        self.stop_calls = 0
        self._fail_with = fail_with
        self._capturing = False
        self._stopped = False
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    @property
    def track_enabled(self) -> bool:
        return self._capturing

    def start(self) -> None:
        self.start_calls += 1
        if self._fail_with is not None:
            raise DeviceError(self._fail_with)
        self._capturing = True

    def stop(self) -> None:
        self.stop_calls += 1
        if self._stopped:
            return
        self._stopped = True
        self._capturing = False
        self._queue.put_nowait(None)

    def push(self, frame: bytes) -> None:
        self._queue.put_nowait(frame)

    async def read_frame(self) -> bytes | None:
        frame = await self._queue.get()
        if frame is None:
            self._queue.put_nowait(None)
        return frame

    async def frames(self) -> Any:
        while True:
            frame = await self.read_frame()
            if frame is None:
                return
            yield frame


class FakeNegotiator:
    """Negociador roteirizado: cada negotiate() consome um item de ``outcomes``.

    Itens podem ser uma excecao (levantada) ou "open"/"pending" (transporte
    criado com o data channel ja aberto ou ainda conectando). Sem itens
    restantes, usa ``default``.
    """

    def __init__(self, outcomes: list[Any] | None = None, default: Any = "open") -> None:
        self.outcomes = list(outcomes or [])
        self.default = default
        self.transports: list[FakeTransport] = []
        self.negotiate_calls: list[tuple[Any, Any, Any]] = []
        self.restart_calls: list[tuple[FakeTransport, Credential]] = []
        self.restart_error: BaseException | None = None
        self.channel_label = "oai-events"

    async def negotiate(self, candidates: Any, credential: Credential, track: Any) -> FakeTransport:
        self.negotiate_calls.append((candidates, credential, track))
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        transport = FakeTransport(candidates)
        transport.add_audio_track(track)
        channel = transport.create_data_channel(self.channel_label)
        if outcome == "open":
            channel.readyState = "open"
        self.transports.append(transport)
        return transport

    async def restart(self, transport: FakeTransport, credential: Credential) -> None:
        self.restart_calls.append((transport, credential))
        if self.restart_error is not None:
            raise self.restart_error
        await transport.create_offer(ice_restart=True)

    @property
    def last_transport(self) -> FakeTransport:
        return self.transports[-1]


class FakeWebSocket:
    """WebSocket fake: mensagens recebidas vem de uma fila alimentada pelo teste."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.close_calls = 0
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()

    def feed(self, message: Any) -> None:
        self._incoming.put_nowait(message)

    def end(self) -> None:
        self._incoming.put_nowait(None)

    async def send(self, message: str) -> None:
        if self.close_calls:
            raise ConnectionClosed(None, None)
        self.sent.append(message)

    async def close(self) -> None:
        self.close_calls += 1

    async def __aiter__(self) -> Any:
        while True:
            message = await self._incoming.get()
            if message is None:
                return
            if isinstance(message, BaseException):
                raise message
            yield message


class FakeConnect:
    """Substituto de websockets connect(): um FakeWebSocket novo por chamada."""

    def __init__(self, error: BaseException | None = None) -> None:
        self.error = error
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.sockets: list[FakeWebSocket] = []

    @property
    def ws(self) -> FakeWebSocket:
        return self.sockets[-1]

    async def __call__(self, url: str, **kwargs: Any) -> FakeWebSocket:
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws


async def no_sleep(_seconds: float) -> None:
    """Substituto instantaneo de asyncio.sleep para backoff e grace period."""
    await asyncio.sleep(0)


@pytest.fixture
def engine_config() -> EngineConfig:
    """Configuracao com heartbeat longo (nao dispara durante os testes)."""
    return EngineConfig(heartbeat_interval_s=60.0, channel_open_timeout_s=1.0)


@pytest.fixture
def credential() -> Credential:
    return Credential(token="ek_test_token", issued_at=1_700_000_000.0)


@pytest.fixture
def sine_block() -> np.ndarray:
    """Bloco float32 (4096 x 1) com senoide de 440Hz em amplitude 0.5."""
    t = np.arange(BLOCK_SIZE, dtype=np.float32) / SAMPLE_RATE
    return (0.5 * np.sin(2 * np.pi * 440.0 * t)).astype(np.float32).reshape(-1, 1)
