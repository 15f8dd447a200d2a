"""CLI do Escuta.

Registra todos os comandos no grupo principal.
"""

from escuta.cli.candidates import candidates
from escuta.cli.listen import listen
from escuta.cli.main import cli

__all__ = [
    "candidates",
    "cli",
    "listen",
]
