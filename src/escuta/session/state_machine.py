"""SessionStateMachine — maquina de estados da sessao de transcricao.

Componente puro e sincrono: nao conhece WebRTC, WebSocket ou asyncio. O
caller (SessionController) chama transition() nos momentos corretos e a
maquina notifica os listeners de status (o colaborador de UI).

Estados:
    IDLE -> CONNECTING -> NEGOTIATING -> CONNECTED <-> RECOVERING -> FAILED

Regras:
- Qualquer estado diferente de IDLE pode transitar para IDLE (stop).
- ERROR e FAILED so saem via novo start (CONNECTING) ou stop (IDLE).
- Transicoes invalidas levantam InvalidTransitionError.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from escuta._types import SessionStatus
from escuta.exceptions import InvalidTransitionError
from escuta.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from escuta._types import StatusListener

logger = get_logger("session.state_machine")

# Transicoes validas: {estado_atual: {estados_alvo_permitidos}}
_VALID_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.IDLE: frozenset({SessionStatus.CONNECTING}),
    SessionStatus.CONNECTING: frozenset(
        {
            SessionStatus.NEGOTIATING,
            SessionStatus.RECOVERING,
            SessionStatus.ERROR,
            SessionStatus.IDLE,
        }
    ),
    SessionStatus.NEGOTIATING: frozenset(
        {
            SessionStatus.CONNECTED,
            SessionStatus.RECOVERING,
            SessionStatus.ERROR,
            SessionStatus.FAILED,
            SessionStatus.IDLE,
        }
    ),
    SessionStatus.CONNECTED: frozenset({SessionStatus.RECOVERING, SessionStatus.IDLE}),
    SessionStatus.RECOVERING: frozenset(
        {
            SessionStatus.CONNECTING,
            SessionStatus.NEGOTIATING,
            SessionStatus.CONNECTED,
            SessionStatus.FAILED,
            SessionStatus.ERROR,
            SessionStatus.IDLE,
        }
    ),
    SessionStatus.FAILED: frozenset({SessionStatus.CONNECTING, SessionStatus.IDLE}),
    SessionStatus.ERROR: frozenset({SessionStatus.CONNECTING, SessionStatus.IDLE}),
}

# Estados em que a sessao esta ocupada (start() e no-op)
BUSY_STATES: frozenset[SessionStatus] = frozenset(
    {
        SessionStatus.CONNECTING,
        SessionStatus.NEGOTIATING,
        SessionStatus.CONNECTED,
        SessionStatus.RECOVERING,
    }
)


class SessionStateMachine:
    """Maquina de estados da sessao de transcricao.

    Args:
        listeners: Callbacks ``(anterior, novo)`` chamados a cada transicao.
        clock: Funcao que retorna timestamp monotonic (para testes deterministicos).
    """

    def __init__(
        self,
        listeners: list[StatusListener] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._status = SessionStatus.IDLE
        self._listeners: list[StatusListener] = list(listeners or [])
        self._clock = clock or time.monotonic
        self._status_entered_at = self._clock()

    @property
    def status(self) -> SessionStatus:
        """Status atual da sessao."""
        return self._status

    @property
    def is_busy(self) -> bool:
        """True enquanto conectando, conectado ou em recovery."""
        return self._status in BUSY_STATES

    @property
    def elapsed_in_status_ms(self) -> int:
        """Tempo (em milissegundos) no status atual."""
        elapsed_s = self._clock() - self._status_entered_at
        return int(elapsed_s * 1000)

    def add_listener(self, listener: StatusListener) -> None:
        """Registra listener de mudancas de status."""
        self._listeners.append(listener)

    def can_transition(self, target: SessionStatus) -> bool:
        """True se a transicao para target e valida a partir do status atual."""
        return target in _VALID_TRANSITIONS[self._status]

    def transition(self, target: SessionStatus) -> None:
        """Transita para o status alvo e notifica os listeners.

        Args:
            target: Status alvo da transicao.

        Raises:
            InvalidTransitionError: Se a transicao e invalida.
        """
        if not self.can_transition(target):
            raise InvalidTransitionError(self._status.value, target.value)

        previous = self._status
        self._status = target
        self._status_entered_at = self._clock()

        logger.info("status_changed", previous=previous.value, status=target.value)
        for listener in list(self._listeners):
            listener(previous, target)
