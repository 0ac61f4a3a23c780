"""Typer CLI entrypoint for utterance-stt."""

import asyncio
import base64
import binascii
import json
import logging
from pathlib import Path

import typer

from utterance_stt._types import TranscriptionRequest, TranscriptionResponse
from utterance_stt.config import Config, ConfigError, load_config
from utterance_stt.models import DEFAULT_MODELS, KNOWN_MODELS, is_model_available
from utterance_stt.pipeline import TranscriptionPipeline

app = typer.Typer(help="Offline speech-to-text for short utterances with hallucination filtering")

logger = logging.getLogger(__name__)

EXIT_REJECTED = 2


def _setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _apply_general_config(cfg: Config, verbose: bool) -> None:
    """Switch to verbose logging when the config file asks for it."""
    if cfg.general.verbose and not verbose:
        logger.debug("Enabling verbose logging from config")
        _setup_logging(True)


def _merge_config_overrides(
    cfg: Config,
    *,
    backend: str | None = None,
    model: str | None = None,
    device: str | None = None,
) -> Config:
    """Apply CLI overrides to configuration.

    CLI options take precedence over config file values.

    Raises:
        ConfigError: If override values are invalid
    """
    if backend is not None:
        logger.debug("Overriding backend to '%s'", backend)
        cfg.model.backend = backend
        if model is None and cfg.model.name not in KNOWN_MODELS.get(backend, ()):
            cfg.model.name = DEFAULT_MODELS.get(backend, cfg.model.name)

    if model is not None:
        logger.debug("Overriding model to '%s'", model)
        cfg.model.name = model

    if device is not None:
        logger.debug("Overriding compute device to '%s'", device)
        cfg.model.device = device

    cfg.validate()
    return cfg


def _read_audio(audio: Path, base64_input: bool) -> bytes:
    """Read the clip from disk, undoing base64 transport encoding if asked.

    Raises:
        ConfigError: If base64 text cannot be decoded
    """
    data = audio.read_bytes()
    if not base64_input:
        return data
    try:
        return base64.b64decode(data.strip(), validate=True)
    except binascii.Error as e:
        raise ConfigError(f"Failed to decode base64 audio from {audio}: {e}") from e


async def _run_request(
    pipeline: TranscriptionPipeline,
    request: TranscriptionRequest,
    timeout: float,
) -> TranscriptionResponse:
    if timeout > 0:
        return await asyncio.wait_for(pipeline.transcribe_async(request), timeout=timeout)
    return await pipeline.transcribe_async(request)


def _echo_response(response: TranscriptionResponse, json_output: bool) -> None:
    if json_output:
        typer.echo(json.dumps(response.to_dict(), indent=2))
    elif response.accepted is not None:
        typer.echo(response.accepted["text"])
    else:
        rejected = response.rejected or {}
        typer.echo(f"Rejected [{rejected.get('code')}]: {rejected.get('message')}")
        if rejected.get("detail"):
            typer.echo(f"  {rejected['detail']}")


@app.command()
def transcribe(
    audio: Path = typer.Argument(..., exists=True, dir_okay=False, help="Audio clip (16-bit PCM WAV)"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging"
    ),
    backend: str | None = typer.Option(
        None, "--backend", "-b", help="Override recognizer backend (faster_whisper, vosk)"
    ),
    model: str | None = typer.Option(
        None, "--model", "-m", help="Override model identifier"
    ),
    device: str | None = typer.Option(
        None, "--device", help="Override compute device (cpu, cuda, auto)"
    ),
    base64_input: bool = typer.Option(
        False, "--base64", help="Treat the file as base64-encoded audio"
    ),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of plain text"
    ),
) -> None:
    """Transcribe one audio clip and print the transcript or rejection."""
    _setup_logging(verbose)
    pipeline = None
    timed_out = False
    try:
        cfg = load_config(config)
        _apply_general_config(cfg, verbose)
        cfg = _merge_config_overrides(cfg, backend=backend, model=model, device=device)
        logger.debug("Config: %s", cfg)

        request = TranscriptionRequest(
            encoded_audio=_read_audio(audio, base64_input),
            model_identifier=cfg.model.name,
        )
        pipeline = TranscriptionPipeline.from_config(cfg)
        response = asyncio.run(_run_request(pipeline, request, cfg.transcription.timeout))
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except asyncio.TimeoutError:
        timed_out = True
        logger.error("Transcription timed out after %.1f seconds", cfg.transcription.timeout)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        logger.info("Transcription interrupted by user")
        raise typer.Exit(1)
    except Exception as e:
        logger.error("Unexpected error: %s", e, exc_info=True)
        raise typer.Exit(1)
    finally:
        if pipeline is not None:
            pipeline.shutdown(wait=not timed_out)

    _echo_response(response, json_output)
    if not response.ok:
        raise typer.Exit(EXIT_REJECTED)


@app.command()
def list_models(
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of table"
    ),
) -> None:
    """List known model identifiers and whether they are present locally."""
    _setup_logging(verbose)
    try:
        cfg = load_config(config)
        _apply_general_config(cfg, verbose)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)

    models = [
        {
            "backend": backend_name,
            "name": name,
            "default": DEFAULT_MODELS.get(backend_name) == name,
            "available": is_model_available(name, cfg.model.model_directory, backend_name),
        }
        for backend_name, names in KNOWN_MODELS.items()
        for name in names
    ]

    if json_output:
        typer.echo(json.dumps(models, indent=2))
        return

    typer.echo("Known models:")
    for entry in models:
        marker = " (default)" if entry["default"] else ""
        status = "available" if entry["available"] else "not downloaded"
        typer.echo(f"  [{entry['backend']}] {entry['name']}{marker} - {status}")


@app.command()
def check_config(
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Load and validate configuration without transcribing."""
    _setup_logging(verbose)
    try:
        cfg = load_config(config)
        _apply_general_config(cfg, verbose)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)

    logger.info("Configuration validated successfully")
    typer.echo(
        f"backend={cfg.model.backend} model={cfg.model.name} "
        f"device={cfg.model.device} language={cfg.recognition.language}"
    )


if __name__ == "__main__":
    app()
