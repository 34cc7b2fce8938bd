"""Typer CLI entrypoint for livescribe."""

import asyncio
import json
import logging
from pathlib import Path

import typer

from livescribe.config import (
    Config,
    ConfigError,
    discover_audio_devices,
    load_config,
)
from livescribe.recorder import LiveRecorder
from livescribe.session import TranscriptionSession
from livescribe.transcript import TranscriptSnapshot
from livescribe.transcriber import Transcriber

app = typer.Typer(help="Stable incremental transcription via Faster Whisper")

logger = logging.getLogger(__name__)

VALID_MODELS = ("tiny", "base", "small", "medium", "large-v3", "distil-large-v3")


def _setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _merge_config_overrides(
    cfg: Config,
    *,
    audio_device: int | None = None,
    model: str | None = None,
    eager: bool | None = None,
    language: str | None = None,
    use_vad: bool | None = None,
) -> Config:
    """Apply CLI overrides to configuration.

    CLI options take precedence over config file values.

    Raises:
        ConfigError: If override values are invalid
    """
    if audio_device is not None:
        available = discover_audio_devices()
        valid_indices = {d["index"] for d in available}
        if audio_device not in valid_indices:
            available_str = ", ".join(str(d["index"]) for d in available)
            raise ConfigError(
                f"Invalid audio device index {audio_device}. "
                f"Available: {available_str or 'none'}"
            )
        logger.debug("Overriding audio device to index %d", audio_device)
        cfg.audio.device = audio_device

    if model is not None:
        if model not in VALID_MODELS:
            raise ConfigError(
                f"Invalid model '{model}'. Must be one of: {', '.join(VALID_MODELS)}"
            )
        logger.debug("Overriding model to '%s'", model)
        cfg.model.name = model

    if eager is not None:
        logger.debug("Overriding eager mode to %s", eager)
        cfg.streaming.eager = eager

    if language is not None:
        logger.debug("Overriding language to '%s'", language)
        cfg.decoding.language = language

    if use_vad is not None:
        logger.debug("Overriding VAD to %s", use_vad)
        cfg.streaming.use_vad = use_vad

    return cfg


def _build_session(cfg: Config, recorder: LiveRecorder | None = None) -> TranscriptionSession:
    transcriber = Transcriber(
        model_name=cfg.model.name,
        device=cfg.model.device,
        compute_type=cfg.model.compute_type,
        model_directory=cfg.model.model_directory,
        beam_size=cfg.model.beam_size,
        word_timestamps=cfg.model.word_timestamps,
    )
    return TranscriptionSession(
        engine=transcriber,
        recorder=recorder,
        streaming=cfg.streaming,
        decoding=cfg.decoding,
        sample_rate=cfg.audio.sample_rate,
        model_name=cfg.model.name,
    )


class _TerminalView:
    """Prints newly confirmed text and the current provisional tail."""

    def __init__(self):
        self._printed_confirmed = ""
        self._last_tail = ""

    def __call__(self, snapshot: TranscriptSnapshot) -> None:
        if snapshot.confirmed_segments or snapshot.unconfirmed_segments:
            confirmed = "".join(s.text for s in snapshot.confirmed_segments)
            tail = "".join(s.text for s in snapshot.unconfirmed_segments)
        else:
            confirmed = snapshot.confirmed_text
            tail = snapshot.hypothesis_text

        if confirmed.startswith(self._printed_confirmed) and len(confirmed) > len(
            self._printed_confirmed
        ):
            typer.echo(confirmed[len(self._printed_confirmed) :].strip())
            self._printed_confirmed = confirmed

        tail = tail.strip()
        if tail and tail != self._last_tail:
            typer.secho(f"  ... {tail}", dim=True)
        self._last_tail = tail


async def _stream(session: TranscriptionSession, duration: float | None, loop: bool) -> None:
    await session.start_recording(loop=loop)
    try:
        if duration is not None:
            await asyncio.sleep(duration)
        else:
            await asyncio.Event().wait()
    finally:
        await session.stop_recording(loop=loop)
        await session.shutdown()


@app.command()
def stream(
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging"
    ),
    audio_device: int | None = typer.Option(
        None, "--audio-device", "-a", help="Override audio device by index"
    ),
    model: str | None = typer.Option(
        None, "--model", "-m", help="Override model name"
    ),
    eager: bool | None = typer.Option(
        None, "--eager/--no-eager", help="Use word-level agreement for lower latency"
    ),
    language: str | None = typer.Option(
        None, "--language", "-l", help="Language code, or 'auto' to detect"
    ),
    vad: bool | None = typer.Option(
        None, "--vad/--no-vad", help="Skip decoding while the new audio is silent"
    ),
    duration: float | None = typer.Option(
        None, "--duration", help="Stop after this many seconds"
    ),
    no_loop: bool = typer.Option(
        False, "--no-loop", help="Record only, decode once when stopped"
    ),
) -> None:
    """Transcribe the microphone live until interrupted."""
    _setup_logging(verbose)
    try:
        cfg = load_config(config)
        cfg = _merge_config_overrides(
            cfg,
            audio_device=audio_device,
            model=model,
            eager=eager,
            language=language,
            use_vad=vad,
        )
        cfg.validate()
        logger.info("Configuration validated successfully")

        recorder = LiveRecorder(
            sample_rate=cfg.audio.sample_rate,
            channels=cfg.audio.channels,
            chunk_size=cfg.audio.chunk_size,
            device=cfg.audio.device,
        )
        session = _build_session(cfg, recorder)
        session.add_listener(_TerminalView())

        notice = session.snapshot().notice
        if notice:
            typer.secho(notice, fg=typer.colors.YELLOW, err=True)

        asyncio.run(_stream(session, duration, loop=not no_loop))

    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        logger.info("Stream interrupted by user")
        raise typer.Exit(0)
    except Exception as e:
        logger.error("Unexpected error: %s", e, exc_info=True)
        raise typer.Exit(1)


@app.command()
def file(
    path: Path = typer.Argument(..., help="Audio file to transcribe"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    model: str | None = typer.Option(
        None, "--model", "-m", help="Override model name"
    ),
    language: str | None = typer.Option(
        None, "--language", "-l", help="Language code, or 'auto' to detect"
    ),
    timestamps: bool = typer.Option(
        False, "--timestamps", help="Prefix each segment with its time range"
    ),
) -> None:
    """Transcribe an audio file."""
    _setup_logging(verbose)
    try:
        cfg = load_config(config)
        cfg = _merge_config_overrides(cfg, model=model, language=language)
        cfg.validate()

        session = _build_session(cfg)

        async def _run():
            try:
                return await session.transcribe_file(path)
            finally:
                await session.shutdown()

        asyncio.run(_run())

        for segment in session.snapshot().confirmed_segments:
            text = segment.text.strip()
            if timestamps:
                text = f"[{segment.start:.2f} --> {segment.end:.2f}] {text}"
            typer.echo(text)

    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except Exception as e:
        logger.error("Transcription failed: %s", e, exc_info=verbose)
        raise typer.Exit(1)


@app.command()
def list_audio(
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of table"
    ),
) -> None:
    """List available audio devices."""
    _setup_logging(verbose)
    try:
        devices = discover_audio_devices()
        if not devices:
            logger.warning("No audio devices found")
            return

        if json_output:
            typer.echo(json.dumps(devices, indent=2))
        else:
            typer.echo("Available audio devices:")
            for dev in devices:
                typer.echo(
                    f"  [{dev['index']}] {dev['name']} "
                    f"({dev['channels']}ch, {dev['sample_rate']}Hz)"
                )
    except Exception as e:
        logger.error("Error listing audio devices: %s", e)
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
