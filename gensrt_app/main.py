"""Typer CLI entrypoint for gensrt."""

import asyncio
import json
import logging
import signal
from pathlib import Path
from typing import Callable

import typer

from gensrt_app._types import Job, JobStatus
from gensrt_app.config import Config, ConfigError, load_config
from gensrt_app.events import Event, JobProgress
from gensrt_app.files import (
    discover_media_files,
    discover_subtitle_files,
    subtitle_path_for,
    translated_path_for,
)
from gensrt_app.models import MODEL_NAMES, describe_models, get_model, validate_model_files
from gensrt_app.pipeline import TranscriptionPipeline
from gensrt_app.supervisor import JobSupervisor
from gensrt_app.translator import SubtitleTranslator

app = typer.Typer(help="Generate SRT subtitles from audio/video and translate them")

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _apply_general_settings(cfg: Config, verbose: bool = False) -> Config:
    """Apply the [general] section on top of the CLI flags."""
    if cfg.general.verbose and not verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Verbose logging enabled by configuration")
    if cfg.general.debug:
        cfg.model.debug = True
    return cfg


def _merge_config_overrides(
    cfg: Config,
    *,
    model: str | None = None,
    models_root: Path | None = None,
    output_dir: Path | None = None,
) -> Config:
    """Apply CLI overrides to configuration.

    CLI options take precedence over config file values.

    Raises:
        ConfigError: If override values are invalid
    """
    if model is not None:
        if model not in MODEL_NAMES:
            raise ConfigError(
                f"Unknown model '{model}'. Available: {', '.join(MODEL_NAMES)}"
            )
        logger.debug("Overriding model to '%s'", model)
        cfg.model.name = model

    if models_root is not None:
        logger.debug("Overriding models root to '%s'", models_root)
        cfg.model.models_root = str(models_root)

    if output_dir is not None:
        logger.debug("Overriding output directory to '%s'", output_dir)
        cfg.output.directory = str(output_dir)

    return cfg


def _event_logger(event: Event) -> None:
    """Log job-control events in human-readable form."""
    if isinstance(event, JobProgress):
        logger.info(
            "%s: %d%% | Time: %.1f/%.1fs | Speed: %.2fx",
            event.filename,
            event.percent,
            event.elapsed_seconds,
            event.remaining_seconds,
            event.speed,
        )
    elif event.type in ("job_error", "job_cancelled", "job_complete", "cancel_all_ack"):
        logger.info("Event %s: %s", event.type, event.to_message())
    else:
        logger.debug("Event %s: %s", event.type, event.to_message())


def _json_event_printer(event: Event) -> None:
    typer.echo(event.to_json())


async def _run_supervised(
    supervisor: JobSupervisor,
    submit: Callable[[JobSupervisor], list[Job]],
) -> list[Job]:
    """Run submitted jobs to completion; SIGINT/SIGTERM cancel everything."""
    loop = asyncio.get_running_loop()
    cancel_tasks: list[asyncio.Future] = []

    def _request_cancel() -> None:
        logger.info("Received interrupt, cancelling all jobs")
        cancel_tasks.append(asyncio.ensure_future(supervisor.cancel_all()))

    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_cancel)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handler for %s not supported", sig)

    jobs = submit(supervisor)
    supervisor.start()
    try:
        await supervisor.join()
        if cancel_tasks:
            await asyncio.gather(*cancel_tasks)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        await supervisor.shutdown()
    return jobs


def _summarize(jobs: list[Job]) -> int:
    """Log a per-status summary and return the CLI exit code."""
    counts = {status: 0 for status in JobStatus}
    for job in jobs:
        counts[job.status] += 1
    logger.info(
        "All processing complete: %d completed, %d failed, %d cancelled",
        counts[JobStatus.COMPLETED],
        counts[JobStatus.ERROR],
        counts[JobStatus.CANCELLED],
    )
    return 1 if counts[JobStatus.ERROR] else 0


@app.command()
def transcribe(
    path: Path = typer.Argument(..., help="Media file or directory of media files"),
    model: str | None = typer.Option(
        None, "--model", "-m", help=f"Model ({', '.join(MODEL_NAMES)})"
    ),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    models_root: Path | None = typer.Option(
        None, "--models-root", help="Directory holding the model directories"
    ),
    output_dir: Path | None = typer.Option(
        None, "--output-dir", "-o", help="Write subtitles here instead of beside the media"
    ),
    json_events: bool = typer.Option(
        False, "--json-events", help="Print job events as JSON lines"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging"
    ),
) -> None:
    """Transcribe audio/video files into SRT subtitles."""
    _setup_logging(verbose)
    try:
        cfg = load_config(config)
        cfg = _apply_general_settings(cfg, verbose)
        cfg = _merge_config_overrides(
            cfg, model=model, models_root=models_root, output_dir=output_dir
        )
        cfg.validate()
        variant = get_model(cfg.model.name, cfg.model.models_root)
        validate_model_files(variant)
        out_dir = Path(cfg.output.directory) if cfg.output.directory else None

        logger.info("Searching for files to process...")
        files = discover_media_files(path, out_dir)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except FileNotFoundError as e:
        logger.error("Error: %s", e)
        raise typer.Exit(1)

    if not files:
        logger.warning("No new compatible audio/video files found to process.")
        return

    logger.info("Found %d file(s) to process.", len(files))
    supervisor = JobSupervisor(
        pipeline=TranscriptionPipeline(cfg, variant),
        kill_grace=cfg.decoder.kill_grace_seconds,
    )
    supervisor.subscribe(_json_event_printer if json_events else _event_logger)

    def submit(sup: JobSupervisor) -> list[Job]:
        return [
            sup.submit_transcription(f, subtitle_path_for(f, out_dir), variant.name)
            for f in files
        ]

    try:
        jobs = asyncio.run(_run_supervised(supervisor, submit))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        raise typer.Exit(130)

    code = _summarize(jobs)
    if code:
        raise typer.Exit(code)


@app.command()
def translate(
    path: Path = typer.Argument(..., help="SRT file or directory of SRT files"),
    source_lang: str = typer.Argument(..., help="Source language code (or 'auto')"),
    target_lang: str = typer.Argument(..., help="Target language code"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    output_dir: Path | None = typer.Option(
        None, "--output-dir", "-o", help="Write translations here instead of beside the source"
    ),
    json_events: bool = typer.Option(
        False, "--json-events", help="Print job events as JSON lines"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging"
    ),
) -> None:
    """Translate SRT subtitle files."""
    _setup_logging(verbose)
    try:
        cfg = load_config(config)
        cfg = _apply_general_settings(cfg, verbose)
        cfg = _merge_config_overrides(cfg, output_dir=output_dir)
        cfg.validate()
        out_dir = Path(cfg.output.directory) if cfg.output.directory else None
        files = discover_subtitle_files(path, target_lang, out_dir)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except FileNotFoundError as e:
        logger.error("Error: %s", e)
        raise typer.Exit(1)

    if not files:
        logger.warning("No .srt files to translate.")
        return

    translator = SubtitleTranslator(cfg.translation)
    translator.cache.load()
    supervisor = JobSupervisor(translator=translator)
    supervisor.subscribe(_json_event_printer if json_events else _event_logger)

    def submit(sup: JobSupervisor) -> list[Job]:
        return [
            sup.submit_translation(
                f, translated_path_for(f, target_lang, out_dir), source_lang, target_lang
            )
            for f in files
        ]

    try:
        jobs = asyncio.run(_run_supervised(supervisor, submit))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        raise typer.Exit(130)

    code = _summarize(jobs)
    if code:
        raise typer.Exit(code)


@app.command()
def list_models(
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    models_root: Path | None = typer.Option(
        None, "--models-root", help="Directory holding the model directories"
    ),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of table"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """List available recognition models."""
    _setup_logging(verbose)
    try:
        cfg = load_config(config)
        cfg = _apply_general_settings(cfg, verbose)
        cfg = _merge_config_overrides(cfg, models_root=models_root)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)

    models = describe_models(cfg.model.models_root)
    if json_output:
        typer.echo(json.dumps(models, indent=2))
        return

    typer.echo("Available models:")
    for entry in models:
        state = "installed" if entry["installed"] else "missing"
        typer.echo(f"  {entry['name']} ({entry['type']}, {state})")
        typer.echo(f"    Directory: {entry['directory']}")


if __name__ == "__main__":
    app()
