"""Comando `escuta listen` — transcricao do microfone em tempo real."""

from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING

import click

from escuta._types import SessionStatus, TransportKind
from escuta.cli.main import cli
from escuta.config.engine import CandidateProviderConfig, EngineConfig
from escuta.exceptions import ConfigError
from escuta.logging import configure_logging, get_logger

if TYPE_CHECKING:
    from escuta.session.controller import SessionController
    from escuta.transport.candidates import CandidateProvider

logger = get_logger("cli.listen")

_TERMINAL_STATUSES = frozenset({SessionStatus.FAILED, SessionStatus.ERROR})


def load_engine_config(config_path: str | None) -> EngineConfig:
    """Carrega EngineConfig do YAML (ou defaults). Encerra com exit 1 se invalido."""
    if config_path is None:
        return EngineConfig()
    try:
        return EngineConfig.from_yaml_path(config_path)
    except ConfigError as exc:
        click.echo(f"Erro: {exc}", err=True)
        sys.exit(1)


def build_candidate_provider(
    config: CandidateProviderConfig,
    timeout_s: float,
) -> CandidateProvider | None:
    """Provedor Metered se configurado; None usa a lista publica de fallback."""
    if not config.enabled:
        return None
    from escuta.transport.candidates import MeteredCandidateProvider

    assert config.domain is not None and config.api_key is not None
    return MeteredCandidateProvider(config.domain, config.api_key, timeout_s=timeout_s)


def apply_overrides(
    config: EngineConfig,
    *,
    model: str | None = None,
    language: str | None = None,
    transport: str | None = None,
    device: str | None = None,
    metered_domain: str | None = None,
    metered_api_key: str | None = None,
) -> EngineConfig:
    """Aplica opcoes da linha de comando sobre a configuracao carregada."""
    transcription = config.session.input_audio_transcription
    if model:
        transcription = transcription.model_copy(update={"model": model})
    if language:
        transcription = transcription.model_copy(update={"language": language})
    session = config.session.model_copy(update={"input_audio_transcription": transcription})

    candidates = config.candidates
    if metered_domain or metered_api_key:
        candidates = CandidateProviderConfig(
            domain=metered_domain or candidates.domain,
            api_key=metered_api_key or candidates.api_key,
        )

    update: dict[str, object] = {"session": session, "candidates": candidates}
    if transport:
        update["transport"] = TransportKind(transport)
    if device:
        update["input_device"] = int(device) if device.isdigit() else device
    return config.model_copy(update=update)


@cli.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Arquivo YAML de configuracao do engine.",
)
@click.option("--model", "-m", default=None, help="Modelo de transcricao (ex: gpt-4o-transcribe).")
@click.option("--language", "-l", default=None, help="Codigo ISO 639-1 do idioma.")
@click.option(
    "--transport",
    type=click.Choice([kind.value for kind in TransportKind]),
    default=None,
    help="Transporte: webrtc (default) ou websocket.",
)
@click.option("--device", default=None, help="Dispositivo de entrada (indice ou nome).")
@click.option(
    "--api-key",
    envvar="OPENAI_API_KEY",
    default=None,
    help="API key para emitir credenciais de curta duracao (env: OPENAI_API_KEY).",
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
    "--log-format",
    type=click.Choice(["console", "json"]),
    default="console",
    show_default=True,
    help="Formato de log.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    default="WARNING",
    show_default=True,
    help="Nivel de log.",
)
def listen(
    config_path: str | None,
    model: str | None,
    language: str | None,
    transport: str | None,
    device: str | None,
    api_key: str | None,
    metered_domain: str | None,
    metered_api_key: str | None,
    log_format: str,
    log_level: str,
) -> None:
    """Transcreve o microfone em tempo real ate Ctrl+C."""
    configure_logging(log_format=log_format, level=log_level, force=True)

    if not api_key:
        click.echo("Erro: API key ausente. Use --api-key ou OPENAI_API_KEY.", err=True)
        sys.exit(1)

    config = apply_overrides(
        load_engine_config(config_path),
        model=model,
        language=language,
        transport=transport,
        device=device,
        metered_domain=metered_domain,
        metered_api_key=metered_api_key,
    )

    try:
        exit_code = asyncio.run(_listen(config, api_key))
    except KeyboardInterrupt:
        click.echo("\n\nSessao encerrada.")
        exit_code = 0

    sys.exit(exit_code)


def build_controller(config: EngineConfig, api_key: str) -> SessionController:
    """Monta o SessionController com os adapters HTTP default e saida no terminal."""
    from escuta.session.controller import SessionController
    from escuta.transport.credentials import RealtimeCredentialIssuer

    issuer = RealtimeCredentialIssuer(
        api_key,
        config.credential_url,
        config.session,
        timeout_s=config.http_timeout_s,
    )
    printer = _TranscriptPrinter()
    return SessionController(
        config,
        issuer,
        candidate_provider=build_candidate_provider(config.candidates, config.http_timeout_s),
        on_transcript=printer.on_transcript,
        on_status=printer.on_status,
    )


async def _listen(config: EngineConfig, api_key: str) -> int:
    """Fluxo async do listen. Retorna o exit code."""
    controller = build_controller(config, api_key)
    finished = asyncio.Event()

    def _on_status(previous: SessionStatus, current: SessionStatus) -> None:
        if current in _TERMINAL_STATUSES:
            finished.set()

    controller.add_status_listener(_on_status)

    click.echo(f"Conectando ({config.transport.value}) ...")
    click.echo("Pressione Ctrl+C para encerrar.\n")

    try:
        await controller.start()
        if controller.status not in _TERMINAL_STATUSES:
            await finished.wait()
        terminal_status = controller.status
    finally:
        await controller.stop()

    # So chega aqui com FAILED ou ERROR; Ctrl+C sai via KeyboardInterrupt
    click.echo(f"\nErro ({terminal_status.value}): {controller.last_error}", err=True)
    if controller.full_transcript:
        click.echo(f"\nTranscricao: {controller.full_transcript}")
    return 1


class _TranscriptPrinter:
    """Escreve parciais reescrevendo a linha e finais em linhas novas."""

    def __init__(self) -> None:
        self._last_partial = ""

    def on_transcript(self, text: str, is_final: bool) -> None:
        if is_final:
            if text:
                click.echo(f"\r\033[K> {text}")
            else:
                click.echo("\r\033[K", nl=False)
            self._last_partial = ""
            return
        if text != self._last_partial:
            click.echo(f"\r\033[K  ... {text}", nl=False)
            self._last_partial = text

    def on_status(self, previous: SessionStatus, current: SessionStatus) -> None:
        if current == SessionStatus.CONNECTED:
            click.echo("[conectado]", err=True)
        elif current == SessionStatus.RECOVERING:
            click.echo("\n[recuperando conexao]", err=True)
