"""RecoveryManager — supervisao e recuperacao de falhas parciais da sessao.

Gatilhos e respostas:
    transporte FAILED            -> restart imediato (ICE restart, mesma credencial)
    transporte DISCONNECTED      -> grace period; se continua desconectado, restart
    restart sem CONNECTED        -> apos o grace period, reconexao completa
    canal fechado / restart falho -> reconexao completa (nova credencial e candidatos)
    tentativas esgotadas         -> give_up (FAILED + RetriesExhaustedError)

Todo timer (grace, confirmacao de restart, backoff) roda em uma
asyncio.Task rastreada pelo manager e cancelada por cancel(). Uma reconexao
em andamento nunca e iniciada duas vezes.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import TYPE_CHECKING, Protocol

import httpx

from escuta._types import TransportState
from escuta.exceptions import (
    ChannelClosedError,
    CredentialError,
    DeviceError,
    NegotiationError,
    RetriesExhaustedError,
)
from escuta.logging import get_logger
from escuta.recovery.policy import RecoveryState
from escuta.session.metrics import HAS_METRICS, recovery_attempts_total

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Coroutine
    from typing import Any

    from escuta.recovery.policy import RetryPolicy

logger = get_logger("recovery.manager")

# Absorvidos pelo manager (nova tentativa)
RECOVERABLE_ERRORS: tuple[type[BaseException], ...] = (
    NegotiationError,
    ChannelClosedError,
    httpx.HTTPError,
    OSError,
    TimeoutError,
)

# Encerram a sessao com status ERROR (nao retentados)
FATAL_ERRORS: tuple[type[BaseException], ...] = (CredentialError, DeviceError)


class RecoveryActions(Protocol):
    """Operacoes que o manager pede a sessao supervisionada."""

    def is_listening(self) -> bool: ...

    def transport_state(self) -> TransportState | None: ...

    def mark_recovering(self) -> None: ...

    async def restart_transport(self) -> None: ...

    async def teardown(self) -> None: ...

    async def reconnect(self) -> None: ...

    async def give_up(self, error: RetriesExhaustedError) -> None: ...

    async def abort(self, error: BaseException) -> None: ...


def _record_attempt(kind: str, result: str) -> None:
    if HAS_METRICS and recovery_attempts_total is not None:
        recovery_attempts_total.labels(kind=kind, result=result).inc()


class RecoveryManager:
    """Executa a politica de recovery de uma sessao.

    Args:
        policy: Limites (tentativas, backoff, grace period).
        actions: Sessao supervisionada.
        session_id: Identificador para logs.
        clock: Funcao que retorna timestamp monotonic (para testes deterministicos).
        sleep: Funcao de espera (testes injetam uma versao instantanea).
    """

    def __init__(
        self,
        policy: RetryPolicy,
        actions: RecoveryActions,
        session_id: str = "",
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._policy = policy
        self._actions = actions
        self._session_id = session_id
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._state = RecoveryState(policy=policy)
        self._tasks: set[asyncio.Task[Any]] = set()
        self._grace_task: asyncio.Task[None] | None = None
        self._restart_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._confirm_task: asyncio.Task[None] | None = None
        self._restart_pending = False
        self._cancelled = False

    @property
    def state(self) -> RecoveryState:
        """Contador de tentativas."""
        return self._state

    @property
    def retry_count(self) -> int:
        """Tentativas de reconexao consumidas desde a ultima conexao confirmada."""
        return self._state.attempt

    @property
    def is_recovering(self) -> bool:
        """True se ha restart ou reconexao em andamento."""
        return _running(self._restart_task) or _running(self._reconnect_task)

    def launch(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Executa coro em uma task rastreada (cancelada por cancel())."""
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def on_connected(self) -> None:
        """Conexao confirmada: zera tentativas e descarta o grace pendente."""
        if self._state.attempt:
            logger.info(
                "recovery_succeeded",
                session_id=self._session_id,
                attempts=self._state.attempt,
            )
        self._state.reset()
        self._restart_pending = False
        self._cancel_task(self._grace_task)
        self._grace_task = None
        self._cancel_task(self._confirm_task)
        self._confirm_task = None

    def on_transport_failed(self) -> None:
        """Transporte FAILED: restart imediato, ou reconexao se o restart anterior nao resolveu."""
        if self._cancelled or not self._actions.is_listening():
            return
        if _running(self._reconnect_task) or _running(self._restart_task):
            return

        self._cancel_task(self._grace_task)
        self._grace_task = None

        if self._restart_pending:
            logger.warning("transport_failed_after_restart", session_id=self._session_id)
            self.request_reconnect(NegotiationError("transporte falhou apos ICE restart"))
            return

        self._actions.mark_recovering()
        self._restart_task = self.launch(self._restart("failed"))

    def on_transport_disconnected(self) -> None:
        """Transporte DISCONNECTED: agenda restart apos o grace period."""
        if self._cancelled or not self._actions.is_listening():
            return
        if _running(self._grace_task) or self.is_recovering:
            return
        logger.info(
            "transport_disconnected_grace_started",
            session_id=self._session_id,
            grace_period_s=self._policy.grace_period_s,
        )
        self._grace_task = self.launch(self._grace_then_restart())

    def on_channel_closed(self) -> None:
        """Canal fechado enquanto a sessao escuta: reconexao completa."""
        self.request_reconnect(ChannelClosedError("canal de eventos"))

    def request_reconnect(self, cause: BaseException | None = None) -> None:
        """Inicia o loop de reconexao, se ainda nao estiver em andamento."""
        if self._cancelled or not self._actions.is_listening():
            return
        if _running(self._reconnect_task):
            logger.debug("reconnect_already_in_progress", session_id=self._session_id)
            return

        self._cancel_task(self._grace_task)
        self._cancel_task(self._restart_task)
        self._cancel_task(self._confirm_task)
        self._grace_task = None
        self._restart_task = None
        self._confirm_task = None

        self._actions.mark_recovering()
        self._reconnect_task = self.launch(self._reconnect_loop(cause))

    async def join(self) -> None:
        """Aguarda ate nao haver tasks de recovery pendentes."""
        current = asyncio.current_task()
        while True:
            pending = {task for task in self._tasks if task is not current and not task.done()}
            if not pending:
                return
            await asyncio.wait(pending)

    async def cancel(self) -> None:
        """Cancela todas as tasks rastreadas (exceto a task atual) e aguarda."""
        self._cancelled = True
        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current and not task.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._grace_task = None
        self._restart_task = None
        self._reconnect_task = None
        self._confirm_task = None

    async def _grace_then_restart(self) -> None:
        await self._sleep(self._policy.grace_period_s)
        if not self._actions.is_listening():
            return
        if self._actions.transport_state() != TransportState.DISCONNECTED:
            logger.info("transport_recovered_within_grace", session_id=self._session_id)
            return
        self._grace_task = None
        if self.is_recovering:
            return
        self._actions.mark_recovering()
        self._restart_task = self.launch(self._restart("disconnected"))

    async def _restart(self, reason: str) -> None:
        logger.info("transport_restart_started", session_id=self._session_id, reason=reason)
        self._restart_pending = True
        try:
            await self._actions.restart_transport()
        except FATAL_ERRORS as exc:
            _record_attempt("restart", "failure")
            await self._actions.abort(exc)
            return
        except RECOVERABLE_ERRORS as exc:
            _record_attempt("restart", "failure")
            logger.warning(
                "transport_restart_failed",
                session_id=self._session_id,
                reason=reason,
                error=str(exc),
            )
            self._restart_task = None
            self.request_reconnect(exc)
            return
        except Exception as exc:
            _record_attempt("restart", "failure")
            logger.exception("transport_restart_crashed", session_id=self._session_id)
            await self._actions.abort(exc)
            return

        _record_attempt("restart", "success")
        logger.info("transport_restart_sent", session_id=self._session_id, reason=reason)
        self._confirm_task = self.launch(self._confirm_restart())

    async def _confirm_restart(self) -> None:
        """Escala para reconexao se o transporte nao voltar a CONNECTED no grace period."""
        await self._sleep(self._policy.grace_period_s)
        self._confirm_task = None
        if not self._actions.is_listening():
            return
        state = self._actions.transport_state()
        if state == TransportState.CONNECTED:
            return
        logger.warning(
            "transport_restart_unconfirmed",
            session_id=self._session_id,
            transport_state=state.value if state is not None else None,
        )
        self.request_reconnect(NegotiationError("transporte nao reconectou apos ICE restart"))

    async def _reconnect_loop(self, cause: BaseException | None) -> None:
        last_error = cause
        while True:
            if not self._actions.is_listening():
                return

            attempt = self._state.next_attempt(self._clock())
            if attempt is None:
                error = RetriesExhaustedError(self._state.attempt, last_error)
                _record_attempt("reconnect", "exhausted")
                logger.error(
                    "recovery_exhausted",
                    session_id=self._session_id,
                    attempts=self._state.attempt,
                    last_error=str(last_error) if last_error else None,
                )
                await self._actions.give_up(error)
                return

            logger.info(
                "reconnect_attempt",
                session_id=self._session_id,
                attempt=attempt,
                max_attempts=self._state.max_attempts,
                backoff_s=self._state.backoff_s,
            )
            self._actions.mark_recovering()
            await self._actions.teardown()
            await self._sleep(self._state.backoff_s)
            if not self._actions.is_listening():
                return

            try:
                await self._actions.reconnect()
            except FATAL_ERRORS as exc:
                _record_attempt("reconnect", "failure")
                await self._actions.abort(exc)
                return
            except RECOVERABLE_ERRORS as exc:
                _record_attempt("reconnect", "failure")
                logger.warning(
                    "reconnect_attempt_failed",
                    session_id=self._session_id,
                    attempt=attempt,
                    error=str(exc),
                )
                last_error = exc
                continue
            except Exception as exc:
                _record_attempt("reconnect", "failure")
                logger.exception(
                    "reconnect_attempt_crashed",
                    session_id=self._session_id,
                    attempt=attempt,
                )
                await self._actions.abort(exc)
                return

            _record_attempt("reconnect", "success")
            return

    def _cancel_task(self, task: asyncio.Task[Any] | None) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()


def _running(task: asyncio.Task[Any] | None) -> bool:
    return task is not None and not task.done()
