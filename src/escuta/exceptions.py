"""Exceptions tipadas do Escuta.

Hierarquia:
    EscutaError (base)
    +-- ConfigError
    |   +-- ConfigParseError
    |   +-- ConfigValidationError
    +-- CredentialError
    +-- DeviceError
    +-- NegotiationError
    +-- ChannelError
    |   +-- ChannelClosedError
    |   +-- MalformedEventError
    |   +-- RemoteEventError
    +-- SessionError
        +-- InvalidTransitionError
        +-- RetriesExhaustedError

Fatais para a tentativa atual: CredentialError, DeviceError.
Recuperaveis (absorvidas pelo RecoveryManager): NegotiationError, ChannelClosedError.
Recuperada localmente (descartada e logada): MalformedEventError.
Terminal: RetriesExhaustedError.
"""

from __future__ import annotations


class EscutaError(Exception):
    """Base para todas as exceptions do Escuta."""


# --- Configuracao ---


class ConfigError(EscutaError):
    """Erro de configuracao do engine."""


class ConfigParseError(ConfigError):
    """Falha ao parsear arquivo de configuracao YAML."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Falha ao parsear configuracao '{path}': {reason}")


class ConfigValidationError(ConfigError):
    """Configuracao invalida (campos com tipos ou valores errados)."""

    def __init__(self, path: str, errors: list[str]) -> None:
        self.path = path
        self.errors = errors
        detail = "; ".join(errors)
        super().__init__(f"Configuracao '{path}' invalida: {detail}")


# --- Credencial ---


class CredentialError(EscutaError):
    """Falha ao obter credencial de curta duracao.

    Fatal para a tentativa: nao e retentada automaticamente, o caller
    precisa chamar start() de novo.
    """

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        self.detail = detail
        self.status_code = status_code
        msg = f"Falha ao obter credencial: {detail}"
        if status_code is not None:
            msg += f" (status {status_code})"
        super().__init__(msg)


# --- Dispositivo ---


class DeviceError(EscutaError):
    """Microfone indisponivel ou acesso negado."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Microfone indisponivel: {detail}")


# --- Negociacao ---


class NegotiationError(EscutaError):
    """Falha na troca de session descriptors com o endpoint remoto."""

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        self.detail = detail
        self.status_code = status_code
        msg = f"Falha na negociacao: {detail}"
        if status_code is not None:
            msg = f"Falha na negociacao ({status_code}): {detail}"
        super().__init__(msg)


# --- Canal de eventos ---


class ChannelError(EscutaError):
    """Erro relacionado ao canal de eventos."""


class ChannelClosedError(ChannelError):
    """Canal de eventos fechado (recuperavel enquanto a sessao escuta)."""

    def __init__(self, label: str, reason: str | None = None) -> None:
        self.label = label
        self.reason = reason
        msg = f"Canal '{label}' fechado"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class MalformedEventError(ChannelError):
    """Payload do canal que nao e um evento JSON valido."""

    def __init__(self, detail: str, raw: str = "") -> None:
        self.detail = detail
        self.raw = raw
        super().__init__(f"Evento malformado: {detail}")


class RemoteEventError(ChannelError):
    """Erro reportado pelo endpoint remoto em um evento ``error``.

    Registrado como last_error da sessao, sem mudar o status.
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        self.code = code
        msg = f"Erro remoto: {message}"
        if code:
            msg = f"Erro remoto ({code}): {message}"
        super().__init__(msg)


# --- Sessao ---


class SessionError(EscutaError):
    """Erro relacionado ao ciclo de vida da sessao."""


class InvalidTransitionError(SessionError):
    """Transicao de estado invalida na maquina de estados da sessao."""

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Transicao invalida: {from_state} -> {to_state}")


class RetriesExhaustedError(SessionError):
    """Tentativas de reconexao esgotadas. Terminal para a sessao."""

    def __init__(self, attempts: int, last_error: BaseException | None = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        msg = f"Conexao falhou apos {attempts} tentativas de recuperacao"
        if last_error is not None:
            msg += f": {last_error}"
        super().__init__(msg)
