"""Comando `escuta candidates` — mostra o candidate set resolvido."""

from __future__ import annotations

import asyncio

import click

from escuta.cli.listen import apply_overrides, build_candidate_provider, load_engine_config
from escuta.cli.main import cli
from escuta.logging import configure_logging
from escuta.transport.candidates import FALLBACK_CANDIDATES, fetch_candidates


@cli.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Arquivo YAML de configuracao do engine.",
)
@click.option(
    "--metered-domain",
    envvar="METERED_DOMAIN",
    default=None,
    help="Dominio Metered para credenciais TURN (env: METERED_DOMAIN).",
)
@click.option(
    "--metered-api-key",
    envvar="METERED_API_KEY",
    default=None,
    help="Secret key Metered (env: METERED_API_KEY).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    default="WARNING",
    show_default=True,
    help="Nivel de log.",
)
def candidates(
    config_path: str | None,
    metered_domain: str | None,
    metered_api_key: str | None,
    log_level: str,
) -> None:
    """Lista os servidores STUN/TURN que a proxima sessao usaria."""
    configure_logging(level=log_level, force=True)

    config = apply_overrides(
        load_engine_config(config_path),
        metered_domain=metered_domain,
        metered_api_key=metered_api_key,
    )
    provider = build_candidate_provider(config.candidates, config.http_timeout_s)
    servers = asyncio.run(fetch_candidates(provider))

    if provider is None:
        click.echo("Provedor TURN nao configurado: usando lista publica.")
    elif servers == list(FALLBACK_CANDIDATES):
        click.echo("Provedor TURN falhou: usando lista publica (fallback).", err=True)

    click.echo(f"{'URL':<55} {'TIPO':<6} CREDENCIAL")
    for server in servers:
        kind = "TURN" if server.is_relay else "STUN"
        has_credential = "sim" if server.username and server.credential else "nao"
        for url in server.url_list:
            click.echo(f"{url:<55} {kind:<6} {has_credential}")
