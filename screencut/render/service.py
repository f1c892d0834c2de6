"""Export a stored project to MP4.

Loads the project, negotiates encoders, resolves paths, then hands the
attempt chain to the executor.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path

from screencut.project.store import LoadedProject, ProjectStore, get_store, sanitize_file_stem
from screencut.render.compiler import (
    RenderOptions,
    RenderPlan,
    build_zoom_viewport,
    create_render_plan,
    resolve_background_image,
)
from screencut.render.encoders import (
    EncoderChoice,
    build_encoder_attempts,
    pick_encoder,
    probe_available_encoders,
)
from screencut.render.executor import ProgressCallback, RenderProgress, render_with_fallback
from screencut.render.media_probe import probe_video
from screencut.utils.config import get_config
from screencut.utils.logging import info, render_log, warn


@dataclass
class RenderResult:
    output_path: str
    encoder: EncoderChoice
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"output_path": self.output_path, "encoder": self.encoder.value,
                "warnings": list(self.warnings)}


def default_output_path(project_name: str) -> Path:
    exports = Path(get_config().paths.exports_dir)
    return exports / f"{sanitize_file_stem(project_name)}-{int(time.time() * 1000)}.mp4"


def ensure_mp4_suffix(path: str | Path) -> Path:
    p = Path(path)
    return p if p.suffix.lower() == ".mp4" else p.with_name(p.name + ".mp4")


def prepare_render_options(loaded: LoadedProject) -> tuple[RenderOptions, list[str]]:
    """Resolve the background image and, when zooms are present, the capture size.

    Both degrade instead of failing: the returned warnings say what was assumed.
    """
    project = loaded.project
    warnings: list[str] = []

    background = resolve_background_image(project.timeline.background, loaded.directory)
    warnings += background.warnings

    source_size = None
    if build_zoom_viewport(project.timeline.zooms) is not None:
        probe = probe_video(loaded.screen_track_path)
        if probe is None:
            warnings.append(
                f"Could not read the capture size; zooming as if it were "
                f"{project.export.width}x{project.export.height}."
            )
        else:
            source_size = probe.size

    return RenderOptions(background_image_path=background.path, source_size=source_size), warnings


def render_project_to_mp4(
    project_id: str,
    output_path: str | Path | None = None,
    on_progress: ProgressCallback | None = None,
    store: ProjectStore | None = None,
) -> RenderResult:
    """Render a project. Raises ExhaustedEncoders or ProcessSpawnFailure on failure."""
    store = store or get_store()
    loaded = store.open(project_id)
    project = loaded.project
    ffmpeg = get_config().ffmpeg_path

    available = probe_available_encoders(ffmpeg)
    preferred = pick_encoder(available, project.export.encoder_hint)
    attempts = build_encoder_attempts(available, preferred)

    out = ensure_mp4_suffix(output_path) if output_path else default_output_path(project.meta.name)
    out.parent.mkdir(parents=True, exist_ok=True)

    options, warnings = prepare_render_options(loaded)
    for msg in warnings:
        warn(msg)
        if on_progress:
            on_progress(RenderProgress(ratio=0.0, raw_line=msg))

    def plan_for(encoder: EncoderChoice) -> RenderPlan:
        return create_render_plan(
            project.timeline, project.export,
            loaded.screen_track_path, out, ffmpeg, encoder, options,
        )

    info(f"[render] {project.meta.name} -> {out} (encoders: {', '.join(a.value for a in attempts)})")
    render_log(f"Render project {project_id}: attempts={[a.value for a in attempts]}")
    outcome = render_with_fallback(attempts, plan_for, on_progress)
    return RenderResult(output_path=outcome.output_path, encoder=outcome.encoder, warnings=warnings)
