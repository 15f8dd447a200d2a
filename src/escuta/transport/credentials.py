"""Credenciais de curta duracao para o endpoint de transcricao.

O emissor e um colaborador externo: qualquer callable async que retorne uma
Credential. RealtimeCredentialIssuer e o adapter HTTP default, que troca a
API key de longa duracao por um client secret efemero.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from escuta.exceptions import CredentialError
from escuta.logging import get_logger

if TYPE_CHECKING:
    from escuta.config.transcription import TranscriptionSessionConfig

logger = get_logger("transport.credentials")


@dataclass(frozen=True, slots=True)
class Credential:
    """Token opaco de curta duracao.

    Pertence a uma unica Session e nunca e reusado entre sessoes. Em
    reconexao completa uma nova credencial e emitida.
    """

    token: str = field(repr=False)
    issued_at: float = field(default_factory=time.time)
    expires_at: float | None = None

    def is_expired(self, now: float | None = None) -> bool:
        """True se a credencial tem expiracao conhecida e ja passou."""
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return current >= self.expires_at

    def bearer_header(self) -> dict[str, str]:
        """Header Authorization para requests autenticados pela credencial."""
        return {"Authorization": f"Bearer {self.token}"}


CredentialIssuer = Callable[[], Awaitable[Credential]]


class RealtimeCredentialIssuer:
    """Emissor HTTP de client secrets efemeros.

    POST {credential_url} com a configuracao da sessao de transcricao;
    a resposta traz ``client_secret.value`` (e opcionalmente ``expires_at``).

    Args:
        api_key: API key de longa duracao (nunca enviada ao transporte).
        url: URL de /v1/realtime/transcription_sessions.
        session_config: Configuracao enviada no corpo do request.
        client: httpx.AsyncClient opcional (testes injetam MockTransport).
        timeout_s: Timeout do request em segundos.
    """

    def __init__(
        self,
        api_key: str,
        url: str,
        session_config: TranscriptionSessionConfig,
        client: httpx.AsyncClient | None = None,
        timeout_s: float = 30.0,
    ) -> None:
        self._api_key = api_key
        self._url = url
        self._session_config = session_config
        self._client = client
        self._timeout_s = timeout_s

    async def __call__(self) -> Credential:
        """Emite uma nova credencial.

        Raises:
            CredentialError: Se a API key falta, o request falha, o status nao
                e 2xx ou a resposta nao traz client_secret.
        """
        if not self._api_key:
            raise CredentialError("API key nao configurada")

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "OpenAI-Beta": "realtime=v1",
        }
        body = self._session_config.to_request_body()

        logger.info(
            "credential_requested",
            url=self._url,
            model=body["input_audio_transcription"].get("model"),
        )

        try:
            response = await self._post(headers, body)
        except httpx.HTTPError as exc:
            raise CredentialError(f"request falhou: {exc}") from exc

        if not response.is_success:
            raise CredentialError(response.text or response.reason_phrase, response.status_code)

        try:
            data: Any = response.json()
        except ValueError as exc:
            raise CredentialError("resposta nao e JSON") from exc

        secret = data.get("client_secret") if isinstance(data, dict) else None
        token = secret.get("value") if isinstance(secret, dict) else None
        if not token or not isinstance(token, str):
            keys = sorted(data) if isinstance(data, dict) else []
            raise CredentialError(f"resposta sem client_secret (chaves: {keys})")

        expires_at = secret.get("expires_at")
        credential = Credential(
            token=token,
            expires_at=float(expires_at) if isinstance(expires_at, (int, float)) else None,
        )
        logger.info("credential_issued", token_length=len(token), expires_at=expires_at)
        return credential

    async def _post(self, headers: dict[str, str], body: dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(
                self._url, headers=headers, json=body, timeout=self._timeout_s
            )
        async with httpx.AsyncClient(timeout=self._timeout_s) as client:
            return await client.post(self._url, headers=headers, json=body)
