"""Recovery: politica de tentativas e supervisao de falhas parciais."""

from escuta.recovery.manager import RecoveryManager
from escuta.recovery.policy import RecoveryState, RetryPolicy

__all__ = ["RecoveryManager", "RecoveryState", "RetryPolicy"]
