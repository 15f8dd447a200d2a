"""Candidate Set — servidores STUN/TURN para NAT traversal.

O provedor e um colaborador externo. Se falhar (ou retornar lista vazia),
o engine usa FALLBACK_CANDIDATES: caminho degradado, nunca erro.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from escuta.logging import get_logger

logger = get_logger("transport.candidates")


class CandidateServer(BaseModel):
    """Descriptor de servidor ICE (formato RTCIceServer)."""

    model_config = ConfigDict(frozen=True)

    urls: str | list[str]
    username: str | None = None
    credential: str | None = None

    @field_validator("username", "credential", mode="before")
    @classmethod
    def coerce_to_string(cls, v: Any) -> str | None:
        # Metered as vezes retorna credenciais numericas
        if v is None:
            return None
        return str(v)

    @property
    def url_list(self) -> list[str]:
        """URLs como lista."""
        return [self.urls] if isinstance(self.urls, str) else list(self.urls)

    @property
    def is_relay(self) -> bool:
        """True se algum URL e TURN/TURNS."""
        return any(url.startswith(("turn:", "turns:")) for url in self.url_list)


CandidateProvider = Callable[[], Awaitable[list[CandidateServer]]]

_OPENRELAY_USERNAME = "openrelayproject"
_OPENRELAY_CREDENTIAL = "openrelayproject"

# STUN publicos + TURN publico do OpenRelay, priorizando TCP (atravessa mais NATs)
FALLBACK_CANDIDATES: tuple[CandidateServer, ...] = (
    CandidateServer(urls="stun:stun.l.google.com:19302"),
    CandidateServer(urls="stun:stun1.l.google.com:19302"),
    CandidateServer(urls="stun:stun2.l.google.com:19302"),
    CandidateServer(
        urls="turn:openrelay.metered.ca:443?transport=tcp",
        username=_OPENRELAY_USERNAME,
        credential=_OPENRELAY_CREDENTIAL,
    ),
    CandidateServer(
        urls="turns:openrelay.metered.ca:443?transport=tcp",
        username=_OPENRELAY_USERNAME,
        credential=_OPENRELAY_CREDENTIAL,
    ),
    CandidateServer(
        urls="turn:openrelay.metered.ca:80",
        username=_OPENRELAY_USERNAME,
        credential=_OPENRELAY_CREDENTIAL,
    ),
)


def prefer_tcp(server: CandidateServer) -> CandidateServer:
    """Adiciona ``?transport=tcp`` a URLs ``turn:`` que nao especificam transporte."""
    if not isinstance(server.urls, str):
        return server
    url = server.urls
    if url.startswith("turn:") and "?transport=" not in url:
        return server.model_copy(update={"urls": f"{url}?transport=tcp"})
    return server


async def fetch_candidates(provider: CandidateProvider | None) -> list[CandidateServer]:
    """Obtem o candidate set, com fallback para a lista publica.

    Chamado uma vez por tentativa de conexao. Qualquer falha do provedor
    (excecao ou lista vazia) resulta em FALLBACK_CANDIDATES.

    Args:
        provider: Provedor externo, ou None para usar direto o fallback.

    Returns:
        Lista ordenada de CandidateServer.
    """
    if provider is None:
        return list(FALLBACK_CANDIDATES)

    try:
        servers = await provider()
    except Exception as exc:
        logger.warning("candidate_provider_failed_using_fallback", error=str(exc))
        return list(FALLBACK_CANDIDATES)

    if not servers:
        logger.warning("candidate_provider_empty_using_fallback")
        return list(FALLBACK_CANDIDATES)

    logger.info(
        "candidates_fetched",
        server_count=len(servers),
        urls=[url for s in servers for url in s.url_list],
        has_credentials=[bool(s.username and s.credential) for s in servers],
    )
    return list(servers)


class MeteredCandidateProvider:
    """Provedor de credenciais TURN via API da Metered.

    GET https://{domain}/api/v1/turn/credentials?apiKey={api_key}

    Args:
        domain: Dominio da conta Metered (ex: "app.metered.live").
        api_key: Secret key da conta.
        client: httpx.AsyncClient opcional (testes injetam MockTransport).
        timeout_s: Timeout do request em segundos.
    """

    def __init__(
        self,
        domain: str,
        api_key: str,
        client: httpx.AsyncClient | None = None,
        timeout_s: float = 10.0,
    ) -> None:
        self._domain = domain
        self._api_key = api_key
        self._client = client
        self._timeout_s = timeout_s

    async def __call__(self) -> list[CandidateServer]:
        """Busca servidores ICE. Levanta excecao em qualquer falha."""
        url = f"https://{self._domain}/api/v1/turn/credentials"
        params = {"apiKey": self._api_key}

        logger.debug("candidates_requested", domain=self._domain)
        if self._client is not None:
            response = await self._client.get(url, params=params, timeout=self._timeout_s)
        else:
            async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                response = await client.get(url, params=params)
        response.raise_for_status()

        data = response.json()
        if not isinstance(data, list):
            msg = f"Formato inesperado de credenciais TURN: {type(data).__name__}"
            raise ValueError(msg)

        try:
            servers = [CandidateServer.model_validate(item) for item in data]
        except ValidationError as exc:
            msg = f"Credencial TURN invalida: {exc}"
            raise ValueError(msg) from exc

        return [prefer_tcp(server) for server in servers]
