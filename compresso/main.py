import json
import signal
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from compresso.config.loader import load_config
from compresso.domain.errors import CompressoError
from compresso.domain.events import CancelRequested
from compresso.domain.models import CropRect, EncodeSettings, PathRole
from compresso.infrastructure.encoder_resolver import EncoderResolver
from compresso.infrastructure.event_bus import EventBus
from compresso.infrastructure.ffprobe import FFprobeAdapter
from compresso.infrastructure.file_scanner import FileScanner
from compresso.infrastructure.housekeeping import HousekeepingService
from compresso.infrastructure.logging import setup_logging
from compresso.infrastructure.path_guard import PathGuard
from compresso.infrastructure.supervisor import CancelToken
from compresso.pipeline.job_runner import JobRunner
from compresso.pipeline.orchestrator import Orchestrator
from compresso.ui.dashboard import Dashboard, format_duration, format_size
from compresso.ui.manager import UIManager
from compresso.ui.state import UIState

EXIT_CANCELLED = 130

app = typer.Typer(help="compresso - safe video compression on top of ffmpeg")


def _fail(message: str, code: int = 1):
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _install_interrupt_handler(bus: EventBus, token: CancelToken):
    """First Ctrl+C cancels cooperatively, a second one aborts."""

    def handler(signum, frame):
        if token.cancelled:
            raise KeyboardInterrupt
        bus.publish(CancelRequested())

    return signal.signal(signal.SIGINT, handler)


@app.command()
def compress(
    inputs: List[str] = typer.Argument(..., help="Video files, directories or glob patterns"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output file (single input only)"),
    quality: Optional[int] = typer.Option(None, "--quality", "-q", min=0, max=100, help="Quality 0-100 (higher is better)"),
    preset: Optional[str] = typer.Option(None, "--preset", "-p", help="speed (thunderbolt) or quality (ironclad)"),
    fmt: Optional[str] = typer.Option(None, "--format", "-f", help="Output format: mp4, mov, webm, avi, mkv"),
    width: Optional[int] = typer.Option(None, "--width", help="Output width (keeps aspect if height omitted)"),
    height: Optional[int] = typer.Option(None, "--height", help="Output height (keeps aspect if width omitted)"),
    fps: Optional[float] = typer.Option(None, "--fps", help="Output frame rate"),
    mute: bool = typer.Option(False, "--mute", help="Drop the audio track"),
    rotate: Optional[int] = typer.Option(None, "--rotate", help="Rotate by 90, 180, 270, -90, -180 or -270 degrees"),
    flip_h: bool = typer.Option(False, "--flip-h", help="Flip horizontally"),
    flip_v: bool = typer.Option(False, "--flip-v", help="Flip vertically"),
    crop: Optional[str] = typer.Option(None, "--crop", help="Crop as WxH:X:Y or W:H:X:Y"),
    overwrite: bool = typer.Option(False, "--overwrite", "-y", help="Overwrite existing outputs"),
    recursive: Optional[bool] = typer.Option(None, "--recursive/--no-recursive", "-r", help="Descend into subdirectories"),
    json_output: bool = typer.Option(False, "--json", help="Print the batch summary as JSON"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", help="Write compresso.log into this directory"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Compress one or more videos."""
    try:
        config = load_config(config_path)
    except CompressoError as e:
        _fail(e.message)

    # Apply CLI overrides
    if recursive is not None:
        config.general.recursive = recursive
    if overwrite:
        config.general.overwrite = True
    if debug:
        config.general.debug = True
    if log_dir:
        config.general.log_dir = log_dir

    logger = setup_logging(config.general.log_dir, debug=config.general.debug)
    logger.info(f"compresso started: inputs={inputs}")

    try:
        settings = EncodeSettings(
            quality=quality if quality is not None else config.defaults.quality,
            preset=preset if preset is not None else config.defaults.preset,
            format=fmt,
            width=width,
            height=height,
            fps=fps,
            mute=mute,
            rotation=rotate,
            flip_horizontal=flip_h,
            flip_vertical=flip_v,
            crop=CropRect.parse(crop) if crop else None,
        )
    except ValueError as e:
        _fail(str(e), code=2)

    bus = EventBus()
    token = CancelToken()
    scanner = FileScanner(extensions=config.general.extensions, recursive=config.general.recursive)
    runner = JobRunner(config, bus, cancel_token=token)
    orchestrator = Orchestrator(config, bus, scanner, runner, cancel_token=token)

    try:
        requests = orchestrator.plan(inputs, settings, output=output, overwrite=config.general.overwrite)
    except CompressoError as e:
        _fail(e.message)
    if not requests:
        _fail("No video files found")

    # Housekeeping (Cleanup stale temp files from crashed runs)
    HousekeepingService().cleanup_directories(
        orchestrator.output_directories(requests),
        config.general.stale_temp_hours * 3600,
    )

    previous_handler = _install_interrupt_handler(bus, token)
    try:
        if json_output:
            summary = orchestrator.run(requests)
            typer.echo(summary.model_dump_json(indent=2))
        else:
            ui_state = UIState()
            UIManager(bus, ui_state)
            dashboard = Dashboard(ui_state)
            with dashboard:
                summary = orchestrator.run(requests)
            dashboard.print_summary(summary)
    except KeyboardInterrupt:
        typer.echo("\nInterrupted by user")
        raise typer.Exit(code=EXIT_CANCELLED)
    except Exception as e:
        logger.exception("Fatal error")
        _fail(f"Fatal Error: {e}")
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if token.cancelled:
        raise typer.Exit(code=EXIT_CANCELLED)
    if summary.failed:
        raise typer.Exit(code=1)


@app.command()
def info(
    input_path: str = typer.Argument(..., help="Video file to inspect"),
    json_output: bool = typer.Option(False, "--json", help="Print as JSON"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Show probe metadata and size of a video."""
    try:
        config = load_config(config_path)
        setup_logging(config.general.log_dir, debug=debug or config.general.debug)

        validated = PathGuard(extra_protected_dirs=config.security.extra_protected_dirs).validate(
            input_path, PathRole.INPUT
        )
        resolver = EncoderResolver(
            version_signature=config.encoder.version_signature,
            verify_timeout=config.encoder.verify_timeout_seconds,
        )
        encoder = resolver.resolve(config.encoder.ffmpeg_path, verify=config.encoder.verify_bundled)
        ffprobe = resolver.resolve_companion(encoder, "ffprobe", config.encoder.ffprobe_path)
        metadata = FFprobeAdapter(ffprobe_path=str(ffprobe)).probe(validated.real_path)
        size = validated.real_path.stat().st_size
    except CompressoError as e:
        _fail(e.message)

    if json_output:
        payload = {"path": str(validated.real_path), "size_bytes": size}
        payload.update(metadata.model_dump())
        typer.echo(json.dumps(payload, indent=2))
        return

    table = Table(title=validated.real_path.name, show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Path", str(validated.real_path))
    table.add_row("Size", format_size(size))
    table.add_row("Resolution", f"{metadata.width}x{metadata.height}")
    table.add_row("Codec", metadata.codec)
    table.add_row("FPS", f"{metadata.fps:g}" if metadata.fps else "unknown")
    table.add_row("Duration", format_duration(metadata.duration) if metadata.duration else "unknown")
    if metadata.bitrate_kbps:
        table.add_row("Bitrate", f"{metadata.bitrate_kbps:.0f} kb/s")
    Console().print(table)


if __name__ == "__main__":
    app()
