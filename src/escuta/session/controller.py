"""SessionController — orquestra uma sessao de transcricao em tempo real.

Fluxo de start():
    1. IDLE -> CONNECTING; emite credencial de curta duracao
    2. CONNECTING -> NEGOTIATING; candidate set, microfone, negociacao
    3. Canal de eventos aberto -> CONNECTED

Falhas recuperaveis sao entregues ao RecoveryManager da sessao; falhas
fatais (credencial, microfone) levam a ERROR; tentativas esgotadas levam a
FAILED. start() nunca levanta para esses erros: status e last_error sao a
superficie de erro.

Todo objeto de conexao vivo pertence a uma Session. stop() cancela timers,
fecha canal e transporte, para o microfone e descarta a credencial.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any

from escuta._types import SessionStatus, SpeechActivity, TransportKind, TransportState
from escuta.audio.capture import AudioPipeline
from escuta.audio.track import PipelineAudioTrack
from escuta.channel.event_channel import EventChannel
from escuta.channel.protocol import (
    CompletedEvent,
    DeltaEvent,
    HeartbeatEvent,
    RemoteErrorEvent,
    SpeechStartedEvent,
    SpeechStoppedEvent,
    UnknownEvent,
)
from escuta.channel.socket import SocketEventChannel
from escuta.exceptions import (
    ChannelClosedError,
    CredentialError,
    NegotiationError,
    RemoteEventError,
)
from escuta.logging import get_logger
from escuta.recovery.manager import FATAL_ERRORS, RECOVERABLE_ERRORS, RecoveryManager
from escuta.recovery.policy import RetryPolicy
from escuta.session.metrics import HAS_METRICS, active_sessions, utterances_total
from escuta.session.state_machine import SessionStateMachine
from escuta.session.transcript import TranscriptBuffer
from escuta.transport.candidates import fetch_candidates
from escuta.transport.negotiator import TransportNegotiator

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from escuta._types import SpeechListener, StatusListener, TranscriptListener
    from escuta.channel.event_channel import BaseEventChannel
    from escuta.channel.protocol import TranscriptionEvent
    from escuta.config.engine import EngineConfig
    from escuta.exceptions import RetriesExhaustedError
    from escuta.transport.candidates import CandidateProvider
    from escuta.transport.credentials import Credential, CredentialIssuer
    from escuta.transport.peer import PeerTransport

logger = get_logger("session.controller")


class _SessionStoppedError(Exception):
    """A sessao foi encerrada durante uma operacao assincrona."""


@dataclass
class Session:
    """Estado vivo de uma sessao. Unico dono dos objetos de conexao."""

    session_id: str
    recovery: RecoveryManager | None = None
    credential: Credential | None = None
    transport: PeerTransport | None = None
    channel: BaseEventChannel | None = None
    audio: AudioPipeline | None = None
    track: PipelineAudioTrack | None = None
    open_waiter: asyncio.Future[None] | None = None
    cleanups: list[Callable[[], None]] = field(default_factory=list)
    stopped: bool = False

    @property
    def retry_count(self) -> int:
        return self.recovery.retry_count if self.recovery is not None else 0


class _SessionObserver:
    """Liga os sinais do canal de eventos a uma sessao especifica."""

    def __init__(self, controller: SessionController, session: Session) -> None:
        self._controller = controller
        self._session = session

    def on_channel_opened(self) -> None:
        self._controller._on_channel_opened(self._session)

    def on_channel_event(self, event: TranscriptionEvent) -> None:
        self._controller._on_channel_event(self._session, event)

    def on_channel_closed(self) -> None:
        self._controller._on_channel_closed(self._session)

    def on_channel_error(self, exc: BaseException) -> None:
        self._controller._on_channel_error(self._session, exc)


class _SessionActions:
    """Operacoes de recovery executadas sobre uma sessao especifica."""

    def __init__(self, controller: SessionController, session: Session) -> None:
        self._controller = controller
        self._session = session

    def is_listening(self) -> bool:
        return self._controller._is_listening(self._session)

    def transport_state(self) -> TransportState | None:
        transport = self._session.transport
        return transport.state if transport is not None else None

    def mark_recovering(self) -> None:
        self._controller._mark_recovering(self._session)

    async def restart_transport(self) -> None:
        await self._controller._restart_transport(self._session)

    async def teardown(self) -> None:
        await self._controller._teardown_connection(self._session)

    async def reconnect(self) -> None:
        try:
            await self._controller._connect(self._session)
        except _SessionStoppedError:
            logger.debug("reconnect_abandoned", session_id=self._session.session_id)

    async def give_up(self, error: RetriesExhaustedError) -> None:
        await self._controller._terminate(self._session, SessionStatus.FAILED, error)

    async def abort(self, error: BaseException) -> None:
        await self._controller._terminate(self._session, SessionStatus.ERROR, error)


class SessionController:
    """Engine de sessao: transcricao continua do microfone.

    Args:
        config: Configuracao do engine.
        credential_issuer: Emissor de credenciais de curta duracao.
        candidate_provider: Provedor do candidate set (None = lista publica).
        negotiator: Negociador WebRTC (default: TransportNegotiator do config).
        audio_factory: Fabrica do pipeline de audio (default: AudioPipeline do config).
        channel_factory: Fabrica do canal sobre o data channel (default: EventChannel).
        socket_factory: Fabrica do canal da variante socket (default: SocketEventChannel).
        on_transcript: Listener ``(texto, is_final)``.
        on_speech: Listener de atividade de fala.
        on_status: Listener ``(anterior, novo)`` de mudancas de status.
        sleep: Funcao de espera do recovery (testes injetam uma versao instantanea).
        clock: Funcao que retorna timestamp monotonic.
    """

    def __init__(
        self,
        config: EngineConfig,
        credential_issuer: CredentialIssuer,
        *,
        candidate_provider: CandidateProvider | None = None,
        negotiator: TransportNegotiator | None = None,
        audio_factory: Callable[[], AudioPipeline] | None = None,
        channel_factory: Callable[[Any], EventChannel] | None = None,
        socket_factory: Callable[[Credential], SocketEventChannel] | None = None,
        on_transcript: TranscriptListener | None = None,
        on_speech: SpeechListener | None = None,
        on_status: StatusListener | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._credential_issuer = credential_issuer
        self._candidate_provider = candidate_provider
        self._negotiator = negotiator or TransportNegotiator(
            config.realtime_url,
            channel_label=config.channel_label,
            gather_timeout_s=config.gather_timeout_s,
            http_timeout_s=config.http_timeout_s,
        )
        self._audio_factory = audio_factory or partial(
            AudioPipeline,
            sample_rate=config.sample_rate,
            block_size=config.block_size,
            device=config.input_device,
        )
        self._channel_factory = channel_factory or partial(
            EventChannel,
            heartbeat_interval_s=config.heartbeat_interval_s,
        )
        self._socket_factory = socket_factory or partial(
            SocketEventChannel,
            config.realtime_ws_url,
            open_timeout_s=config.channel_open_timeout_s,
        )
        self._policy = RetryPolicy.from_config(config.recovery)
        self._sleep = sleep
        self._clock = clock

        self._transcript_listeners: list[TranscriptListener] = []
        self._speech_listeners: list[SpeechListener] = []
        if on_transcript is not None:
            self._transcript_listeners.append(on_transcript)
        if on_speech is not None:
            self._speech_listeners.append(on_speech)

        self._state_machine = SessionStateMachine(
            listeners=[on_status] if on_status is not None else None,
            clock=clock,
        )
        self._transcript = TranscriptBuffer()
        self._session: Session | None = None
        self._recovery: RecoveryManager | None = None
        self._last_error: BaseException | None = None

    # ------------------------------------------------------------------
    # Superficie publica
    # ------------------------------------------------------------------

    @property
    def status(self) -> SessionStatus:
        """Status atual da sessao."""
        return self._state_machine.status

    @property
    def session(self) -> Session | None:
        """Sessao viva, ou None."""
        return self._session

    @property
    def in_progress_text(self) -> str:
        """Texto acumulado da utterance em andamento."""
        return self._transcript.in_progress

    @property
    def utterances(self) -> list[str]:
        """Utterances finalizadas, em ordem."""
        return self._transcript.utterances

    @property
    def full_transcript(self) -> str:
        """Utterances finalizadas unidas por espaco."""
        return self._transcript.full_transcript

    @property
    def last_error(self) -> BaseException | None:
        """Ultimo erro registrado (fatal, esgotamento ou erro remoto)."""
        return self._last_error

    @property
    def retry_count(self) -> int:
        """Tentativas de reconexao da sessao mais recente desde a ultima conexao confirmada."""
        return self._recovery.retry_count if self._recovery is not None else 0

    def add_transcript_listener(self, listener: TranscriptListener) -> None:
        self._transcript_listeners.append(listener)

    def add_speech_listener(self, listener: SpeechListener) -> None:
        self._speech_listeners.append(listener)

    def add_status_listener(self, listener: StatusListener) -> None:
        self._state_machine.add_listener(listener)

    async def start(self) -> None:
        """Inicia uma nova sessao e aguarda ela assentar.

        No-op se a sessao ja esta conectando, conectada ou em recovery.
        Retorna com status CONNECTED, FAILED, ERROR ou IDLE (stop concorrente).
        """
        if self._state_machine.is_busy:
            logger.debug("start_ignored", status=self.status.value)
            return

        session = Session(session_id=f"sess_{uuid.uuid4().hex[:12]}")
        session.recovery = RecoveryManager(
            self._policy,
            _SessionActions(self, session),
            session_id=session.session_id,
            clock=self._clock,
            sleep=self._sleep,
        )
        self._session = session
        self._recovery = session.recovery
        self._last_error = None
        self._transcript.reset_in_progress()
        self._state_machine.transition(SessionStatus.CONNECTING)
        if HAS_METRICS and active_sessions is not None:
            active_sessions.inc()

        logger.info(
            "session_starting",
            session_id=session.session_id,
            transport=self._config.transport.value,
        )

        task = session.recovery.launch(self._initial_connect(session))
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()  # type: ignore[misc]
        await session.recovery.join()

    async def stop(self) -> None:
        """Encerra a sessao e libera todos os recursos. Idempotente."""
        session = self._session
        self._session = None
        if session is not None:
            await self._release(session)
            logger.info(
                "session_stopped",
                session_id=session.session_id,
                utterances=len(self._transcript.utterances),
            )
        if self.status != SessionStatus.IDLE:
            self._state_machine.transition(SessionStatus.IDLE)

    # ------------------------------------------------------------------
    # Conexao
    # ------------------------------------------------------------------

    async def _initial_connect(self, session: Session) -> None:
        assert session.recovery is not None
        try:
            await self._connect(session)
        except _SessionStoppedError:
            return
        except FATAL_ERRORS as exc:
            await self._terminate(session, SessionStatus.ERROR, exc)
        except RECOVERABLE_ERRORS as exc:
            logger.warning(
                "initial_connect_failed",
                session_id=session.session_id,
                error=str(exc),
            )
            session.recovery.request_reconnect(exc)
        except Exception as exc:
            logger.exception("initial_connect_crashed", session_id=session.session_id)
            await self._terminate(session, SessionStatus.ERROR, exc)

    async def _connect(self, session: Session) -> None:
        """Uma tentativa completa de conexao (credencial nova, candidatos, negociacao).

        Raises:
            CredentialError, DeviceError: Fatais.
            NegotiationError, ChannelClosedError: Recuperaveis.
        """
        credential = await self._issue_credential()
        self._ensure_current(session)
        session.credential = credential

        if self.status == SessionStatus.CONNECTING:
            self._state_machine.transition(SessionStatus.NEGOTIATING)

        waiter = asyncio.get_running_loop().create_future()
        session.open_waiter = waiter
        try:
            if self._config.transport == TransportKind.WEBRTC:
                await self._connect_webrtc(session, credential)
            else:
                await self._connect_socket(session, credential)
            await self._wait_for_open(waiter)
        finally:
            session.open_waiter = None

    async def _wait_for_open(self, waiter: asyncio.Future[None]) -> None:
        timeout_s = self._config.channel_open_timeout_s
        try:
            await asyncio.wait_for(waiter, timeout=timeout_s)
        except TimeoutError as exc:
            raise NegotiationError(f"canal de eventos nao abriu em {timeout_s}s") from exc

    async def _connect_webrtc(self, session: Session, credential: Credential) -> None:
        candidates = await fetch_candidates(self._candidate_provider)
        self._ensure_current(session)

        audio = self._acquire_audio(session)
        track = PipelineAudioTrack(audio)
        transport = await self._negotiator.negotiate(candidates, credential, track)
        if not self._is_current(session):
            await transport.close()
            raise _SessionStoppedError

        session.transport = transport
        session.track = track
        session.cleanups.append(
            transport.add_listener(partial(self._on_transport_state, session)),
        )

        data_channel = transport.data_channel
        if data_channel is None:
            raise NegotiationError("transporte sem data channel de eventos")
        channel = self._channel_factory(data_channel)
        session.channel = channel
        session.cleanups.append(channel.subscribe(_SessionObserver(self, session)))
        transport.on_incoming_channel(channel.attach_incoming)
        channel.start()

    async def _connect_socket(self, session: Session, credential: Credential) -> None:
        audio = self._acquire_audio(session)
        channel = self._socket_factory(credential)
        session.channel = channel
        session.cleanups.append(channel.subscribe(_SessionObserver(self, session)))
        await channel.connect()
        self._ensure_current(session)
        channel.start_audio(audio)

    async def _issue_credential(self) -> Credential:
        try:
            credential = await self._credential_issuer()
        except CredentialError:
            raise
        except Exception as exc:
            raise CredentialError(str(exc) or type(exc).__name__) from exc
        if not credential.token:
            raise CredentialError("credencial vazia")
        return credential

    def _acquire_audio(self, session: Session) -> AudioPipeline:
        """Reusa o microfone da sessao se ainda ativo; senao abre um novo."""
        audio = session.audio
        if audio is not None and audio.track_enabled:
            logger.debug("microphone_reused", session_id=session.session_id)
            return audio
        if audio is not None:
            audio.stop()

        audio = self._audio_factory()
        session.audio = audio
        audio.start()
        return audio

    async def _restart_transport(self, session: Session) -> None:
        if self._config.transport != TransportKind.WEBRTC:
            raise NegotiationError("variante socket nao suporta restart in-place")
        transport = session.transport
        credential = session.credential
        if transport is None or credential is None:
            raise NegotiationError("sem transporte ativo para restart")
        if credential.is_expired():
            raise NegotiationError("credencial expirada")
        await self._negotiator.restart(transport, credential)

    async def _teardown_connection(self, session: Session) -> None:
        """Fecha canal e transporte da sessao. O microfone e mantido."""
        for cleanup in session.cleanups:
            cleanup()
        session.cleanups.clear()

        waiter = session.open_waiter
        if waiter is not None and not waiter.done():
            waiter.cancel()

        channel = session.channel
        session.channel = None
        if channel is not None:
            await channel.close()

        transport = session.transport
        session.transport = None
        if transport is not None:
            await transport.close()

        session.track = None
        session.credential = None

    async def _release(self, session: Session) -> None:
        """Libera tudo da sessao: timers, canal, transporte, microfone, credencial."""
        if session.stopped:
            return
        session.stopped = True
        if session.recovery is not None:
            await session.recovery.cancel()
        await self._teardown_connection(session)

        audio = session.audio
        session.audio = None
        if audio is not None:
            audio.stop()

        if HAS_METRICS and active_sessions is not None:
            active_sessions.dec()

    async def _terminate(
        self,
        session: Session,
        status: SessionStatus,
        error: BaseException,
    ) -> None:
        """Encerra a sessao com FAILED ou ERROR, registrando last_error."""
        if not self._is_current(session):
            return
        self._session = None
        self._last_error = error
        logger.error(
            "session_terminated",
            session_id=session.session_id,
            status=status.value,
            error=str(error),
        )
        await self._release(session)
        self._state_machine.transition(status)

    # ------------------------------------------------------------------
    # Sinais do canal e do transporte
    # ------------------------------------------------------------------

    def _on_channel_opened(self, session: Session) -> None:
        if not self._is_current(session):
            return
        if self.status != SessionStatus.CONNECTED:
            self._state_machine.transition(SessionStatus.CONNECTED)
        if session.recovery is not None:
            session.recovery.on_connected()
        waiter = session.open_waiter
        if waiter is not None and not waiter.done():
            waiter.set_result(None)
        logger.info("session_connected", session_id=session.session_id)

    def _on_channel_closed(self, session: Session) -> None:
        if not self._is_current(session):
            return
        label = session.channel.label if session.channel is not None else "?"
        waiter = session.open_waiter
        if waiter is not None and not waiter.done():
            waiter.set_exception(ChannelClosedError(label, "fechado antes de abrir"))
            return
        if self._is_listening(session) and session.recovery is not None:
            session.recovery.on_channel_closed()

    def _on_channel_error(self, session: Session, exc: BaseException) -> None:
        if not self._is_current(session):
            return
        logger.warning("channel_error_reported", session_id=session.session_id, error=str(exc))

    def _on_channel_event(self, session: Session, event: TranscriptionEvent) -> None:
        if not self._is_current(session):
            return

        if isinstance(event, DeltaEvent):
            accumulated = self._transcript.append_delta(event.text)
            self._emit_transcript(accumulated, False)
        elif isinstance(event, CompletedEvent):
            final = self._transcript.complete(event.text)
            self._emit_transcript(event.text.strip(), True)
            if final is not None:
                if HAS_METRICS and utterances_total is not None:
                    utterances_total.inc()
                logger.info(
                    "utterance_completed",
                    session_id=session.session_id,
                    chars=len(final),
                    utterances=len(self._transcript.utterances),
                )
        elif isinstance(event, SpeechStartedEvent):
            self._emit_speech(SpeechActivity.STARTED)
        elif isinstance(event, SpeechStoppedEvent):
            self._emit_speech(SpeechActivity.STOPPED)
        elif isinstance(event, RemoteErrorEvent):
            logger.warning(
                "remote_error_event",
                session_id=session.session_id,
                message=event.message,
                code=event.code,
            )
            self._last_error = RemoteEventError(event.message, event.code)
        elif isinstance(event, HeartbeatEvent):
            logger.debug("heartbeat_received", session_id=session.session_id)
        elif isinstance(event, UnknownEvent):
            logger.debug(
                "unknown_event_dropped",
                session_id=session.session_id,
                event_type=event.event_type,
            )

    def _on_transport_state(self, session: Session, state: TransportState) -> None:
        if not self._is_current(session) or session.recovery is None:
            return
        if state == TransportState.FAILED:
            session.recovery.on_transport_failed()
        elif state == TransportState.DISCONNECTED:
            session.recovery.on_transport_disconnected()
        elif state == TransportState.CONNECTED:
            channel = session.channel
            if (
                self.status == SessionStatus.RECOVERING
                and channel is not None
                and channel.is_open
                and session.open_waiter is None
            ):
                self._state_machine.transition(SessionStatus.CONNECTED)
                session.recovery.on_connected()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _mark_recovering(self, session: Session) -> None:
        if not self._is_current(session):
            return
        if self.status in (
            SessionStatus.CONNECTING,
            SessionStatus.NEGOTIATING,
            SessionStatus.CONNECTED,
        ):
            self._state_machine.transition(SessionStatus.RECOVERING)

    def _is_current(self, session: Session) -> bool:
        return self._session is session and not session.stopped

    def _is_listening(self, session: Session) -> bool:
        return self._is_current(session) and self._state_machine.is_busy

    def _ensure_current(self, session: Session) -> None:
        if not self._is_current(session):
            raise _SessionStoppedError

    def _emit_transcript(self, text: str, is_final: bool) -> None:
        for listener in list(self._transcript_listeners):
            listener(text, is_final)

    def _emit_speech(self, activity: SpeechActivity) -> None:
        for listener in list(self._speech_listeners):
            listener(activity)
