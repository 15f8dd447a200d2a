"""Politica de recovery como dados: RetryPolicy (imutavel) + RecoveryState."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from escuta.config.engine import RecoveryConfig


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Limites de recovery de uma sessao.

    Defaults:
        max_attempts: 3 reconexoes completas antes de FAILED
        backoff_s: 1s entre teardown e nova negociacao
        grace_period_s: 5s em DISCONNECTED antes do restart do transporte

    Raises:
        ValueError: Se max_attempts < 1 ou algum intervalo for negativo.
    """

    max_attempts: int = 3
    backoff_s: float = 1.0
    grace_period_s: float = 5.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = f"max_attempts deve ser >= 1, recebeu {self.max_attempts}"
            raise ValueError(msg)
        for field_name in ("backoff_s", "grace_period_s"):
            value = getattr(self, field_name)
            if value < 0:
                msg = f"'{field_name}' deve ser >= 0, recebeu {value}s"
                raise ValueError(msg)

    @classmethod
    def from_config(cls, config: RecoveryConfig) -> RetryPolicy:
        """Cria a politica a partir da configuracao do engine."""
        return cls(
            max_attempts=config.max_attempts,
            backoff_s=config.backoff_s,
            grace_period_s=config.disconnect_grace_s,
        )


@dataclass(slots=True)
class RecoveryState:
    """Contador de tentativas de reconexao de uma sessao.

    O contador so volta a zero com uma conexao confirmada (reset()).
    """

    policy: RetryPolicy = field(default_factory=RetryPolicy)
    attempt: int = 0
    last_attempt_at: float | None = None

    @property
    def max_attempts(self) -> int:
        return self.policy.max_attempts

    @property
    def backoff_s(self) -> float:
        return self.policy.backoff_s

    @property
    def exhausted(self) -> bool:
        """True se nao restam tentativas."""
        return self.attempt >= self.policy.max_attempts

    def next_attempt(self, now: float) -> int | None:
        """Consome uma tentativa.

        Returns:
            Numero da tentativa (1-based), ou None se esgotadas.
        """
        if self.exhausted:
            return None
        self.attempt += 1
        self.last_attempt_at = now
        return self.attempt

    def reset(self) -> None:
        """Zera o contador apos conexao confirmada."""
        self.attempt = 0
        self.last_attempt_at = None
