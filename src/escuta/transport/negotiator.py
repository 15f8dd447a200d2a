"""TransportNegotiator — estabelece o transporte WebRTC com o endpoint remoto.

Fluxo de negotiate():
    1. Cria PeerTransport com o candidate set
    2. Anexa a track de audio e cria o data channel de eventos
    3. Cria o offer e aguarda o gathering (limitado a gather_timeout_s)
    4. POST do SDP offer no endpoint, aplica o SDP answer

Qualquer falha fecha o transporte parcialmente construido antes de propagar.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING

import httpx
from aiortc.exceptions import InvalidStateError

from escuta.exceptions import NegotiationError
from escuta.logging import get_logger
from escuta.transport.peer import PeerTransport

if TYPE_CHECKING:
    from aiortc import MediaStreamTrack

    from escuta.transport.candidates import CandidateServer
    from escuta.transport.credentials import Credential

logger = get_logger("transport.negotiator")

TransportFactory = Callable[[list["CandidateServer"]], PeerTransport]


class TransportNegotiator:
    """Negociacao de offer/answer via HTTP.

    Args:
        endpoint_url: URL do endpoint de troca de SDP.
        channel_label: Label do data channel de eventos.
        gather_timeout_s: Limite de espera pelo gathering de candidatos.
        http_timeout_s: Timeout do POST do offer.
        transport_factory: Fabrica de transporte (default: PeerTransport).
        client: httpx.AsyncClient opcional (testes injetam MockTransport).
    """

    def __init__(
        self,
        endpoint_url: str,
        *,
        channel_label: str = "oai-events",
        gather_timeout_s: float = 5.0,
        http_timeout_s: float = 30.0,
        transport_factory: TransportFactory | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint_url = endpoint_url
        self._channel_label = channel_label
        self._gather_timeout_s = gather_timeout_s
        self._http_timeout_s = http_timeout_s
        self._transport_factory = transport_factory or PeerTransport
        self._client = client

    @property
    def channel_label(self) -> str:
        """Label do data channel criado em cada negociacao."""
        return self._channel_label

    async def negotiate(
        self,
        candidates: list[CandidateServer],
        credential: Credential,
        audio_track: MediaStreamTrack,
    ) -> PeerTransport:
        """Cria e conecta um novo transporte.

        Returns:
            PeerTransport com answer aplicado. O data channel pode ainda
            nao estar aberto.

        Raises:
            NegotiationError: Status nao-2xx, erro de rede, answer vazio ou
                descriptor rejeitado pelo aiortc.
        """
        transport = self._transport_factory(candidates)
        try:
            transport.add_audio_track(audio_track)
            transport.create_data_channel(self._channel_label)
            await self._create_offer(transport)
            await self._wait_for_gathering(transport)
            answer = await self._exchange(transport, credential)
            await self._apply_answer(transport, answer)
        except BaseException:
            await transport.close()
            raise

        logger.info(
            "transport_negotiated",
            candidate_servers=len(candidates),
            answer_length=len(answer),
        )
        return transport

    async def restart(self, transport: PeerTransport, credential: Credential) -> None:
        """Renegocia o transporte existente com um offer de ICE restart.

        Audio e data channel sao mantidos. Erros propagam para o caller
        (RecoveryManager), que escala para reconexao completa.

        Raises:
            NegotiationError: Mesmas condicoes de negotiate().
        """
        logger.info("ice_restart_started")
        await self._create_offer(transport, ice_restart=True)
        await self._wait_for_gathering(transport)
        answer = await self._exchange(transport, credential)
        await self._apply_answer(transport, answer)
        logger.info("ice_restart_completed")

    async def _create_offer(self, transport: PeerTransport, *, ice_restart: bool = False) -> None:
        try:
            await transport.create_offer(ice_restart=ice_restart)
        except (ValueError, InvalidStateError) as exc:
            raise NegotiationError(f"offer SDP invalido: {exc}") from exc

    async def _apply_answer(self, transport: PeerTransport, answer: str) -> None:
        """Aplica o SDP answer. Descriptor malformado vira NegotiationError."""
        try:
            await transport.set_answer(answer)
        except (ValueError, InvalidStateError) as exc:
            logger.error("sdp_answer_rejected", error=str(exc), answer_length=len(answer))
            raise NegotiationError(f"SDP answer invalido: {exc}") from exc

    async def _wait_for_gathering(self, transport: PeerTransport) -> None:
        """Aguarda o fim do gathering. Timeout e tratado como gathering completo."""
        try:
            await asyncio.wait_for(
                transport.gathering_complete.wait(),
                timeout=self._gather_timeout_s,
            )
        except TimeoutError:
            logger.warning(
                "ice_gathering_timeout",
                timeout_s=self._gather_timeout_s,
                gathering_state=transport.ice_gathering_state,
            )

    async def _exchange(self, transport: PeerTransport, credential: Credential) -> str:
        """POST do SDP offer. Retorna o SDP answer."""
        offer_sdp = transport.local_sdp
        if not offer_sdp:
            raise NegotiationError("offer SDP local ausente")

        headers = {
            **credential.bearer_header(),
            "Content-Type": "application/sdp",
            "OpenAI-Beta": "realtime=v1",
        }

        logger.debug("sdp_offer_sent", url=self._endpoint_url, offer_length=len(offer_sdp))
        try:
            response = await self._post(headers, offer_sdp)
        except httpx.HTTPError as exc:
            raise NegotiationError(f"request falhou: {exc}") from exc

        if not response.is_success:
            logger.error(
                "sdp_exchange_rejected",
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise NegotiationError(response.text or response.reason_phrase, response.status_code)

        answer = response.text
        if not answer.strip():
            raise NegotiationError("SDP answer vazio", response.status_code)

        return answer

    async def _post(self, headers: dict[str, str], body: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(
                self._endpoint_url,
                headers=headers,
                content=body,
                timeout=self._http_timeout_s,
            )
        async with httpx.AsyncClient(timeout=self._http_timeout_s) as client:
            return await client.post(self._endpoint_url, headers=headers, content=body)
