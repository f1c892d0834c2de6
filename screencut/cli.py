"""Main CLI application with typer subcommands."""

from __future__ import annotations

import shlex
from pathlib import Path
from typing import Annotated, Optional

import typer
from dotenv import load_dotenv
from rich.prompt import Confirm
from rich.table import Table

from screencut.render.encoders import EncoderChoice
from screencut.timeline.models import EncoderHint
from screencut.utils.config import DEFAULT_CONFIG_YAML, AppConfig, load_config, merge_cli_overrides, set_config
from screencut.utils.deps_check import check_all, print_dep_status
from screencut.utils.logging import (
    Verbosity, console, error, info, make_progress, setup_logging, success, warn,
)
from screencut.utils.media_executor import configure_media_executor

load_dotenv()

app = typer.Typer(
    name="screencut",
    help="Turn screen recordings into zoomed, styled MP4 exports.",
    rich_markup_mode="rich",
    no_args_is_help=True,
)


# ── Helpers ──────────────────────────────────────────────────────────────────

def _bootstrap(
    config: Path | None,
    verbose: bool = False,
    silent: bool = False,
    overrides: dict | None = None,
) -> AppConfig:
    cfg = load_config(config)
    if overrides:
        cfg = merge_cli_overrides(cfg, overrides)
    set_config(cfg)
    verbosity = Verbosity.VERBOSE if verbose else Verbosity.SILENT if silent else Verbosity.NORMAL
    setup_logging(verbosity, log_dir=Path(cfg.paths.log_dir))
    configure_media_executor(
        ffmpeg_threads=cfg.rendering.ffmpeg_threads,
        nice=cfg.rendering.nice,
        max_concurrent=cfg.rendering.max_concurrent,
    )
    return cfg


def _open_or_exit(project_id: str):
    from pydantic import ValidationError

    from screencut.project.store import ProjectNotFound, get_store
    try:
        return get_store().open(project_id)
    except ProjectNotFound:
        error(f"Project not found: {project_id}")
        raise typer.Exit(1)
    except ValidationError as e:
        error(f"Project file is invalid: {e}")
        raise typer.Exit(1)


ConfigOpt = Annotated[Optional[Path], typer.Option("--config", help="config.yaml path")]
VerboseOpt = Annotated[bool, typer.Option("--verbose", "-v")]
FFmpegOpt = Annotated[Optional[str], typer.Option("--ffmpeg", help="ffmpeg binary (overrides config)")]


# ── Commands ─────────────────────────────────────────────────────────────────

@app.command(name="init-config")
def init_config():
    """Generate a default config.yaml in the current directory."""
    setup_logging(Verbosity.NORMAL)
    p = Path("config.yaml")
    if p.exists():
        if not Confirm.ask("config.yaml exists. Overwrite?", default=False):
            raise typer.Exit(0)
    p.write_text(DEFAULT_CONFIG_YAML)
    success(f"Created {p}")


@app.command()
def doctor(config: ConfigOpt = None, ffmpeg: FFmpegOpt = None):
    """Check that ffmpeg and the zoompan filter are available."""
    cfg = _bootstrap(config, overrides={"render.ffmpeg_path": ffmpeg})
    if not print_dep_status(check_all(cfg.ffmpeg_path), strict=True):
        raise typer.Exit(1)
    success("All dependencies found")


@app.command()
def encoders(
    hint: Annotated[EncoderHint, typer.Option(help="Preferred encoder family")] = EncoderHint.auto,
    config: ConfigOpt = None,
    ffmpeg: FFmpegOpt = None,
):
    """Probe ffmpeg encoders and show the attempt chain."""
    from screencut.render.encoders import build_encoder_attempts, pick_encoder, probe_available_encoders

    cfg = _bootstrap(config, overrides={"render.ffmpeg_path": ffmpeg})
    available = probe_available_encoders(cfg.ffmpeg_path)
    preferred = pick_encoder(available, hint)
    chain = build_encoder_attempts(available, preferred)

    table = Table(title="Encoders")
    table.add_column("#", justify="right")
    table.add_column("Encoder")
    table.add_column("Probed")
    for i, enc in enumerate(chain, 1):
        table.add_row(str(i), enc.value, "yes" if enc in available else "[dim]fallback[/dim]")
    console.print(table)
    info(f"Preferred: {preferred.value}")


@app.command()
def projects(config: ConfigOpt = None):
    """List stored projects, most recently edited first."""
    from screencut.project.store import list_projects

    _bootstrap(config)
    rows = list_projects()
    if not rows:
        info("No projects yet")
        return
    table = Table(title="Projects")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Duration", justify="right")
    table.add_column("Updated")
    for p in rows:
        table.add_row(p["id"], p["name"], f"{p['duration_ms'] / 1000:.1f}s", p["updated_at"])
    console.print(table)


@app.command(name="import-recording")
def import_recording(
    screen: Annotated[Path, typer.Option("--screen", "-s", help="Captured video file")],
    duration_ms: Annotated[float, typer.Option("--duration-ms", help="Recording length in ms")],
    events: Annotated[Optional[Path], typer.Option("--events", "-e", help="NDJSON event file")] = None,
    name: Annotated[Optional[str], typer.Option("--name", "-n")] = None,
    clicks: Annotated[bool, typer.Option("--clicks/--no-clicks", help="Zoom on clicks")] = True,
    typing: Annotated[bool, typer.Option("--typing/--no-typing", help="Zoom on typing")] = True,
    focus: Annotated[bool, typer.Option("--focus/--no-focus", help="Zoom on app focus")] = True,
    config: ConfigOpt = None,
    verbose: VerboseOpt = False,
):
    """Create a project from a screen capture and its event stream."""
    from screencut.project.store import create_project_from_recording, load_events_file
    from screencut.timeline.models import AutoZoomSignals, RecordingProfile

    _bootstrap(config, verbose)
    if not screen.is_file():
        error(f"Screen capture not found: {screen}")
        raise typer.Exit(1)
    evts = load_events_file(events) if events else []
    profile = RecordingProfile(auto_zoom_signals=AutoZoomSignals(clicks=clicks, typing=typing, app_focus=focus))
    loaded = create_project_from_recording(screen, evts, duration_ms, profile, name)
    success(f"Project {loaded.project_id}: {len(loaded.project.timeline.zooms)} zoom segments")


@app.command()
def autozoom(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
    level: Annotated[Optional[float], typer.Option(min=1, max=4, help="Zoom level")] = None,
    segment_ms: Annotated[Optional[float], typer.Option(help="Zoom length after each event")] = None,
    merge_gap_ms: Annotated[Optional[float], typer.Option(help="Merge same-kind zooms this close")] = None,
    keep_manual: Annotated[bool, typer.Option("--keep-manual", help="Keep manual zooms")] = False,
    dry_run: Annotated[bool, typer.Option("--dry-run")] = False,
    config: ConfigOpt = None,
    verbose: VerboseOpt = False,
):
    """Regenerate auto zooms from the project's recorded events."""
    from screencut.project.store import get_store
    from screencut.timeline.editing import regenerate_auto_zooms
    from screencut.zoom.auto_zoom import AutoZoomOptions

    cfg = _bootstrap(config, verbose)
    loaded = _open_or_exit(project_id)
    store = get_store()
    opts = AutoZoomOptions.from_config(
        cfg, default_zoom_level=level, segment_ms=segment_ms, merge_gap_ms=merge_gap_ms,
    )
    project = regenerate_auto_zooms(loaded.project, store.read_events(project_id), opts, keep_manual)

    table = Table(title=f"Zooms ({len(project.timeline.zooms)})")
    for col in ("Start", "End", "Level", "Signal", "Target"):
        table.add_column(col)
    for z in project.timeline.zooms:
        target = f"{z.manual_target.x_norm:.2f},{z.manual_target.y_norm:.2f}" if z.manual_target else "-"
        table.add_row(f"{z.start_ms:.0f}", f"{z.end_ms:.0f}", f"{z.level:.2f}",
                      z.source_signal.value if z.source_signal else z.mode.value, target)
    console.print(table)

    if dry_run:
        warn("Dry run: project not saved")
        return
    store.save(project)
    success(f"Saved {project_id}")


@app.command()
def plan(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
    encoder: Annotated[EncoderChoice, typer.Option(help="Encoder to compile for")] = EncoderChoice.libx264,
    output: Annotated[Optional[Path], typer.Option("--output", "-o")] = None,
    config: ConfigOpt = None,
    ffmpeg: FFmpegOpt = None,
):
    """Print the compiled ffmpeg command without running it."""
    from screencut.render.compiler import create_render_plan
    from screencut.render.service import default_output_path, ensure_mp4_suffix, prepare_render_options

    cfg = _bootstrap(config, overrides={"render.ffmpeg_path": ffmpeg})
    loaded = _open_or_exit(project_id)
    project = loaded.project
    options, warnings = prepare_render_options(loaded)
    for msg in warnings:
        warn(msg)
    out = ensure_mp4_suffix(output) if output else default_output_path(project.meta.name)
    rp = create_render_plan(project.timeline, project.export, loaded.screen_track_path, out,
                            cfg.ffmpeg_path, encoder, options)
    console.print(shlex.join(rp.command), soft_wrap=True, markup=False, highlight=False)


@app.command()
def render(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Output .mp4")] = None,
    config: ConfigOpt = None,
    ffmpeg: FFmpegOpt = None,
    verbose: VerboseOpt = False,
):
    """Export a project to MP4, falling back across encoders."""
    from screencut.render.errors import RenderError
    from screencut.render.service import render_project_to_mp4

    _bootstrap(config, verbose, overrides={"render.ffmpeg_path": ffmpeg})
    _open_or_exit(project_id)

    with make_progress() as progress:
        task = progress.add_task("Rendering", total=1.0)

        def on_progress(p):
            progress.update(task, completed=p.ratio)
            if p.ratio == 0:
                progress.console.print(p.raw_line, style="dim", markup=False)

        try:
            result = render_project_to_mp4(project_id, output, on_progress=on_progress)
        except RenderError as e:
            error(e.message)
            raise typer.Exit(1)
        progress.update(task, completed=1.0)

    success(f"Exported {result.output_path} ({result.encoder.value})")
    for w in result.warnings:
        warn(w)


# ── ENTRY POINT ───────────────────────────────────────────────────────────────

def app_entry():
    app()


if __name__ == "__main__":
    app_entry()
