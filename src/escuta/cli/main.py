"""Grupo principal de comandos CLI do Escuta."""

from __future__ import annotations

import click

import escuta


@click.group()
@click.version_option(version=escuta.__version__, prog_name="escuta")
def cli() -> None:
    """Escuta — transcricao de microfone em tempo real via WebRTC."""
