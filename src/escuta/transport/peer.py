"""PeerTransport — wrapper do RTCPeerConnection (aiortc) usado pelo negociador.

Expoe apenas o que o engine precisa: criar offer (inclusive de restart),
aplicar answer, aguardar gathering, data channel de eventos e sinais de
estado da conexao. Ouvintes sao registrados explicitamente e removidos
no close().
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from aiortc import (
    RTCConfiguration,
    RTCDataChannel,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)

from escuta._types import TransportState
from escuta.logging import get_logger

if TYPE_CHECKING:
    from aiortc import MediaStreamTrack

    from escuta.transport.candidates import CandidateServer

logger = get_logger("transport.peer")

# iceConnectionState -> TransportState
_ICE_STATE_MAP: dict[str, TransportState] = {
    "new": TransportState.NEW,
    "checking": TransportState.CONNECTING,
    "connected": TransportState.CONNECTED,
    "completed": TransportState.CONNECTED,
    "disconnected": TransportState.DISCONNECTED,
    "failed": TransportState.FAILED,
    "closed": TransportState.CLOSED,
}

TransportListener = Callable[[TransportState], None]
IncomingChannelListener = Callable[[Any], None]


def to_ice_server(server: CandidateServer) -> RTCIceServer:
    """Converte CandidateServer para RTCIceServer do aiortc."""
    return RTCIceServer(
        urls=server.urls,
        username=server.username,
        credential=server.credential,
    )


def classify_candidate(sdp_line: str) -> str:
    """Tipo do candidato ICE (host, srflx, relay) a partir da linha SDP."""
    for kind in ("host", "srflx", "prflx", "relay"):
        if f" typ {kind}" in sdp_line:
            return kind
    return "unknown"


class PeerTransport:
    """Transporte WebRTC de uma Session.

    Args:
        candidates: Candidate set configurado no RTCPeerConnection.
    """

    def __init__(self, candidates: list[CandidateServer]) -> None:
        self._pc = RTCPeerConnection(
            configuration=RTCConfiguration(iceServers=[to_ice_server(c) for c in candidates]),
        )
        self._listeners: list[TransportListener] = []
        self._incoming_listeners: list[IncomingChannelListener] = []
        self._gathering_complete = asyncio.Event()
        self._data_channel: RTCDataChannel | None = None
        self._closed = False
        self._state = TransportState.NEW

        self._pc.on("connectionstatechange", self._on_connection_state_change)
        self._pc.on("iceconnectionstatechange", self._on_ice_connection_state_change)
        self._pc.on("icegatheringstatechange", self._on_ice_gathering_state_change)
        self._pc.on("datachannel", self._on_incoming_datachannel)

    @property
    def state(self) -> TransportState:
        """Ultimo estado emitido aos ouvintes (conexao ou ICE)."""
        return self._state

    @property
    def connection_state(self) -> TransportState:
        """Estado agregado da conexao."""
        return TransportState(self._pc.connectionState)

    @property
    def ice_connection_state(self) -> str:
        """iceConnectionState cru."""
        return str(self._pc.iceConnectionState)

    @property
    def ice_gathering_state(self) -> str:
        """iceGatheringState cru (new, gathering, complete)."""
        return str(self._pc.iceGatheringState)

    @property
    def gathering_complete(self) -> asyncio.Event:
        """Evento setado quando o gathering termina."""
        return self._gathering_complete

    @property
    def local_sdp(self) -> str | None:
        """SDP local com os candidatos coletados, ou None."""
        description = self._pc.localDescription
        return description.sdp if description is not None else None

    @property
    def data_channel(self) -> RTCDataChannel | None:
        """Data channel de eventos criado pelo cliente."""
        return self._data_channel

    @property
    def is_closed(self) -> bool:
        """True apos close()."""
        return self._closed

    def add_listener(self, listener: TransportListener) -> Callable[[], None]:
        """Registra ouvinte de mudancas de estado. Retorna funcao de remocao."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def on_incoming_channel(self, listener: IncomingChannelListener) -> None:
        """Registra ouvinte de data channels criados pelo servidor."""
        self._incoming_listeners.append(listener)

    def add_audio_track(self, track: MediaStreamTrack) -> None:
        """Anexa a track de audio do microfone (somente envio)."""
        self._pc.addTrack(track)

    def create_data_channel(self, label: str) -> RTCDataChannel:
        """Cria o data channel de eventos (confiavel e ordenado)."""
        self._data_channel = self._pc.createDataChannel(label, ordered=True)
        return self._data_channel

    async def create_offer(self, *, ice_restart: bool = False) -> None:
        """Cria offer e aplica como descricao local.

        O aiortc nao expoe iceRestart: um offer de restart e renegociado no
        mesmo peer connection, com o gathering reiniciado.
        """
        if ice_restart:
            self._gathering_complete.clear()
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        logger.debug(
            "local_description_set",
            ice_restart=ice_restart,
            candidates=self._count_candidates(),
        )

    async def set_answer(self, sdp: str) -> None:
        """Aplica o SDP answer do endpoint remoto."""
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="answer"))

    async def close(self) -> None:
        """Fecha o peer connection. Idempotente."""
        if self._closed:
            return
        self._closed = True
        self._listeners.clear()
        self._incoming_listeners.clear()
        await self._pc.close()
        logger.debug("peer_connection_closed")

    def _count_candidates(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for line in (self.local_sdp or "").splitlines():
            if line.startswith("a=candidate:"):
                kind = classify_candidate(line)
                counts[kind] = counts.get(kind, 0) + 1
        return counts

    def _emit(self, state: TransportState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)

    def _on_connection_state_change(self) -> None:
        state = self._pc.connectionState
        logger.info("connection_state_changed", state=state)
        self._emit(TransportState(state))

    def _on_ice_connection_state_change(self) -> None:
        state = self._pc.iceConnectionState
        logger.info("ice_connection_state_changed", state=state)
        mapped = _ICE_STATE_MAP.get(state)
        # Apenas falhas de ICE sao repassadas; sucesso vem de connectionstatechange
        if mapped in (TransportState.DISCONNECTED, TransportState.FAILED):
            self._emit(mapped)

    def _on_ice_gathering_state_change(self) -> None:
        state = self._pc.iceGatheringState
        logger.debug("ice_gathering_state_changed", state=state)
        if state == "complete":
            counts = self._count_candidates()
            if counts.get("relay"):
                logger.info("relay_candidate_gathered", relay_candidates=counts["relay"])
            logger.info("ice_gathering_complete", candidates=counts)
            self._gathering_complete.set()

    def _on_incoming_datachannel(self, channel: RTCDataChannel) -> None:
        logger.info("incoming_data_channel", label=channel.label)
        for listener in list(self._incoming_listeners):
            listener(channel)
