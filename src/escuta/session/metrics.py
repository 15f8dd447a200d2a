"""Metricas Prometheus do engine de sessao.

Metricas sao opcionais: se prometheus_client nao estiver instalado,
o modulo exporta None para cada metrica e o codigo consumidor deve
verificar antes de usar.

Metricas definidas:
- escuta_active_sessions: Gauge de sessoes com transporte ativo
- escuta_recovery_attempts_total: Counter de recovery por tipo (restart, reconnect) e resultado
- escuta_utterances_total: Counter de utterances finalizadas
- escuta_heartbeats_sent_total: Counter de heartbeats enviados no canal de eventos
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prometheus_client import Counter, Gauge

try:
    from prometheus_client import Counter as _Counter
    from prometheus_client import Gauge as _Gauge

    active_sessions: Gauge | None = _Gauge(
        "escuta_active_sessions",
        "Number of transcription sessions holding a live transport",
    )

    recovery_attempts_total: Counter | None = _Counter(
        "escuta_recovery_attempts_total",
        "Recovery attempts by kind and result",
        ["kind", "result"],
    )

    utterances_total: Counter | None = _Counter(
        "escuta_utterances_total",
        "Finalized transcript utterances",
    )

    heartbeats_sent_total: Counter | None = _Counter(
        "escuta_heartbeats_sent_total",
        "Heartbeat messages sent on the event channel",
    )

    HAS_METRICS = True

except ImportError:
    active_sessions = None
    recovery_attempts_total = None
    utterances_total = None
    heartbeats_sent_total = None

    HAS_METRICS = False
