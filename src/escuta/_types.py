"""Tipos fundamentais do Escuta.

Este modulo define enums e type aliases usados por todos os componentes
do engine. Alteracoes aqui impactam o sistema inteiro.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum


class SessionStatus(Enum):
    """Estado da sessao de transcricao.

    Transicoes validas:
        IDLE -> CONNECTING (start)
        CONNECTING -> NEGOTIATING (credencial obtida)
        NEGOTIATING -> CONNECTED (canal de eventos aberto)
        CONNECTED -> RECOVERING (falha de transporte ou canal)
        RECOVERING -> CONNECTED (restart/reconexao confirmada)
        RECOVERING -> FAILED (tentativas esgotadas)
        * -> ERROR (credencial ou microfone indisponivel)
        * -> IDLE (stop)
    """

    IDLE = "idle"
    CONNECTING = "connecting"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    RECOVERING = "recovering"
    FAILED = "failed"
    ERROR = "error"


class TransportState(Enum):
    """Estado de conexao do transporte WebRTC.

    Os valores seguem os nomes de connectionState/iceConnectionState.
    """

    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


class TransportKind(Enum):
    """Tipo de transporte usado pela sessao.

    - WEBRTC: peer connection negociada via SDP + data channel (canonico)
    - WEBSOCKET: socket com credencial no sub-protocol (variante degradada,
      sem restart in-place)
    """

    WEBRTC = "webrtc"
    WEBSOCKET = "websocket"


class SpeechActivity(Enum):
    """Atividade de fala reportada pelo VAD do endpoint remoto."""

    STARTED = "started"
    STOPPED = "stopped"


# Callback de transcricao: (texto acumulado ou final, is_final)
TranscriptListener = Callable[[str, bool], None]

SpeechListener = Callable[[SpeechActivity], None]

StatusListener = Callable[[SessionStatus, SessionStatus], None]
