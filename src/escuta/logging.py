"""Structured logging para o Escuta.

Usa structlog com stdlib logging como backend. Dois formatos:
- console: legivel no terminal do `escuta listen` (default)
- json: uma linha por evento, para coleta quando o engine roda embutido

Convencoes do engine:
- eventos em snake_case com contexto em kwargs (session_id, attempt, label)
- cada modulo obtem seu logger via get_logger("<subpacote>.<modulo>")
- segredos (API key, credencial efemera, TURN credential) nunca saem no log;
  campos com esses nomes sao mascarados pelo processor redact_secrets
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping

_configured = False

SECRET_KEYS = frozenset(
    {"token", "api_key", "authorization", "client_secret", "credential", "password"}
)
_REDACTED = "***"


def redact_secrets(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Processor structlog: mascara valores de campos sensiveis."""
    for key in event_dict.keys() & SECRET_KEYS:
        if event_dict[key]:
            event_dict[key] = _REDACTED
    return event_dict


def configure_logging(
    log_format: str | None = None,
    level: str | None = None,
    *,
    force: bool = False,
) -> None:
    """Configura logging estruturado para o engine e para a CLI.

    Idempotente: chamadas subsequentes sao ignoradas, exceto com force=True
    (a CLI reaplica formato e nivel escolhidos pelo usuario).

    Args:
        log_format: "json" ou "console". Default via ESCUTA_LOG_FORMAT env ou "console".
        level: Nivel de log (DEBUG, INFO, WARNING, ERROR). Default via ESCUTA_LOG_LEVEL
            env ou "INFO".
        force: Reconfigura mesmo se ja configurado.
    """
    global _configured
    if _configured and not force:
        return

    resolved_format = log_format or os.environ.get("ESCUTA_LOG_FORMAT", "console")
    resolved_level = level or os.environ.get("ESCUTA_LOG_LEVEL", "INFO")

    shared_processors: list[structlog.types.Processor] = [
        structlog.stdlib.add_log_level,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]

    if resolved_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, resolved_level.upper(), logging.INFO))

    # aioice/aiortc sao muito verbosos em DEBUG; so interessam warnings
    for noisy in ("aioice", "aiortc"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _configured = True


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Retorna logger com contexto de componente.

    Args:
        component: Nome do componente (ex: "session.controller", "transport.negotiator").

    Returns:
        BoundLogger com campo component vinculado.
    """
    configure_logging()
    return structlog.get_logger().bind(component=component)  # type: ignore[no-any-return]
