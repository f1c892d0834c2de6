"""Render plan compiler: Timeline + export settings -> ffmpeg invocation.

The whole timeline compiles into one ffmpeg run. Zoom segments become
piecewise expressions over time, folded so the first active segment in list
order wins where segments overlap. Graph and plan construction is pure: it
reads the timeline, touches no files, and never raises for a validated
Timeline. ``resolve_background_image`` is the one filesystem check, done by
the caller beforehand.

Graph layout, solid background (``-vf``)::

    [fps,zoompan,]scale(fit inside margin),setsar=1,pad(W:H:color)

Graph layout, image background (``-filter_complex``)::

    [0:v][fps,zoompan,]scale(fit),setsar=1[fg];
    [1:v]scale(cover),crop,setsar=1[bg];
    [bg][fg]overlay(centered)[vout]

Zoom runs on the capture before it is fitted, so the viewport math uses the
capture size and the padding and background stay still.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Sequence
from urllib.parse import unquote, urlparse

from screencut.render.encoders import EncoderChoice
from screencut.render.expression import (
    Const,
    Expr,
    Var,
    clamp,
    escape_commas,
    window,
)
from screencut.timeline.models import (
    BackgroundSettings,
    BackgroundType,
    ExportSettings,
    Timeline,
    ZoomSegment,
)

DEFAULT_CANVAS_COLOR = "#0f172a"
VIDEO_OUTPUT_LABEL = "[vout]"

# zoompan exposes the input timestamp in seconds as ``it``
TIME_VAR = Var("it")
IW = Var("iw")
IH = Var("ih")


def _js_round(x: float) -> int:
    # half-up, matching how the stored padding values were authored
    return math.floor(x + 0.5)


# ── Sizing ────────────────────────────────────────────────────────────────────

def compute_frame_margin(background: BackgroundSettings, export: ExportSettings) -> int:
    """Pixels between the foreground video and the canvas edge.

    Never more than half of either output dimension minus one pixel, so the
    inner box stays at least 2x2.
    """
    requested = max(0, _js_round(background.padding) + _js_round(background.inset))
    max_allowed = max(0, min((export.width - 2) // 2, (export.height - 2) // 2))
    return min(requested, max_allowed)


def inner_size(background: BackgroundSettings, export: ExportSettings) -> tuple[int, int]:
    m = compute_frame_margin(background, export)
    return max(2, export.width - 2 * m), max(2, export.height - 2 * m)


def background_color(background: BackgroundSettings) -> str:
    if background.type == BackgroundType.color:
        return background.color
    if background.type == BackgroundType.gradient:
        return background.gradient_from
    return DEFAULT_CANVAS_COLOR


def _ffmpeg_color(color: str) -> str:
    return color.replace("#", "0x")


# ── Zoom expressions ─────────────────────────────────────────────────────────

def active_zooms(zooms: Sequence[ZoomSegment]) -> list[ZoomSegment]:
    return [z for z in zooms if z.active]


def piecewise(
    segments: Sequence[ZoomSegment],
    pick: Callable[[ZoomSegment], float],
    fallback: float,
    var: Var = TIME_VAR,
) -> Expr:
    """Fold right to left so earlier segments wrap, and so outrank, later ones."""
    expr: Expr = Const(fallback)
    for seg in reversed(segments):
        expr = window(var, seg.start_ms, seg.end_ms, Const(pick(seg)), expr)
    return expr


def _target_x(seg: ZoomSegment) -> float:
    return seg.manual_target.x_norm if seg.manual_target else 0.5


def _target_y(seg: ZoomSegment) -> float:
    return seg.manual_target.y_norm if seg.manual_target else 0.5


@dataclass(frozen=True)
class ZoomViewport:
    """Time-varying viewport over an ``iw`` x ``ih`` frame.

    ``width = iw/Z``, ``x = clamp(iw*X - width/2, 0, iw - width)`` and the
    same for the y axis; identical to ``compute_view_transform``.
    """
    level: Expr
    target_x: Expr
    target_y: Expr

    @property
    def width(self) -> Expr:
        return IW / self.level

    @property
    def height(self) -> Expr:
        return IH / self.level

    @property
    def x(self) -> Expr:
        return clamp(IW * self.target_x - self.width / 2, 0, IW - self.width)

    @property
    def y(self) -> Expr:
        return clamp(IH * self.target_y - self.height / 2, 0, IH - self.height)

    def evaluate(self, t_seconds: float, frame_width: float, frame_height: float) -> dict[str, float]:
        env = {TIME_VAR.name: t_seconds, "iw": frame_width, "ih": frame_height}
        return {
            "zoom": self.level.evaluate(env),
            "w": self.width.evaluate(env),
            "h": self.height.evaluate(env),
            "x": self.x.evaluate(env),
            "y": self.y.evaluate(env),
        }


def build_zoom_viewport(zooms: Sequence[ZoomSegment]) -> ZoomViewport | None:
    """None when no active zoom exists, so the graph can skip zoompan."""
    segs = active_zooms(zooms)
    if not segs:
        return None
    return ZoomViewport(
        level=piecewise(segs, lambda s: max(1.0, s.level), 1),
        target_x=piecewise(segs, _target_x, 0.5),
        target_y=piecewise(segs, _target_y, 0.5),
    )


def zoompan_filter(viewport: ZoomViewport, export: ExportSettings,
                   source_size: tuple[int, int] | None = None) -> str:
    """Zoom on the capture itself; output keeps the capture's pixel size."""
    z = escape_commas(viewport.level.render())
    x = escape_commas(viewport.x.render())
    y = escape_commas(viewport.y.render())
    w, h = source_size or (export.width, export.height)
    return f"fps={export.fps},zoompan=z={z}:x={x}:y={y}:d=1:s={w}x{h}:fps={export.fps}"


# ── Graphs ───────────────────────────────────────────────────────────────────

def foreground_filter(
    timeline: Timeline,
    export: ExportSettings,
    source_size: tuple[int, int] | None = None,
) -> str:
    """Zoom the capture, then fit it inside the margin box.

    Padding and background never zoom, and zoom targets are fractions of
    the recording rather than of the canvas.
    """
    w, h = inner_size(timeline.background, export)
    fit = f"scale={w}:{h}:force_original_aspect_ratio=decrease:flags=lanczos,setsar=1"
    viewport = build_zoom_viewport(timeline.zooms)
    if viewport is None:
        return fit
    return f"{zoompan_filter(viewport, export, source_size)},{fit}"


def create_filter_graph(
    timeline: Timeline,
    export: ExportSettings,
    source_size: tuple[int, int] | None = None,
) -> str:
    """Single-input graph for ``-vf``: zoom, fit, pad onto a solid canvas."""
    color = _ffmpeg_color(background_color(timeline.background))
    pad = f"pad={export.width}:{export.height}:(ow-iw)/2:(oh-ih)/2:color={color}"
    return f"{foreground_filter(timeline, export, source_size)},{pad}"


def create_image_background_graph(
    timeline: Timeline,
    export: ExportSettings,
    source_size: tuple[int, int] | None = None,
) -> str:
    """Two-input graph for ``-filter_complex``; input 1 is the looped image."""
    w, h = export.width, export.height
    bg = f"scale={w}:{h}:force_original_aspect_ratio=increase:flags=lanczos,crop={w}:{h},setsar=1"
    return (
        f"[0:v]{foreground_filter(timeline, export, source_size)}[fg];"
        f"[1:v]{bg}[bg];"
        f"[bg][fg]overlay=(W-w)/2:(H-h)/2:shortest=1{VIDEO_OUTPUT_LABEL}"
    )


# ── Plan ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RenderOptions:
    background_image_path: str | None = None
    # capture width x height; zoompan needs a fixed size, export size is assumed when unknown
    source_size: tuple[int, int] | None = None


@dataclass(frozen=True)
class RenderPlan:
    transcoder_path: str
    args: tuple[str, ...]
    output_path: str
    encoder: EncoderChoice

    @property
    def command(self) -> list[str]:
        return [self.transcoder_path, *self.args]

    def to_dict(self) -> dict:
        return {
            "transcoder_path": self.transcoder_path,
            "args": list(self.args),
            "output_path": self.output_path,
            "encoder": self.encoder.value,
        }


def create_render_plan(
    timeline: Timeline,
    export: ExportSettings,
    input_path: str | Path,
    output_path: str | Path,
    transcoder_path: str,
    encoder: EncoderChoice | str,
    options: RenderOptions | None = None,
) -> RenderPlan:
    encoder = EncoderChoice(encoder)
    options = options or RenderOptions()
    image = (options.background_image_path or "").strip()
    use_image = timeline.background.type == BackgroundType.image and bool(image)

    args = ["-y", "-i", str(input_path)]
    if use_image:
        args += [
            "-loop", "1", "-i", image,
            "-filter_complex", create_image_background_graph(timeline, export, options.source_size),
            "-map", VIDEO_OUTPUT_LABEL, "-shortest",
        ]
    else:
        args += ["-vf", create_filter_graph(timeline, export, options.source_size)]

    args += [
        "-r", str(export.fps),
        "-c:v", encoder.value,
        "-pix_fmt", "yuv420p",
        "-movflags", "+faststart",
        str(output_path),
    ]
    return RenderPlan(
        transcoder_path=transcoder_path,
        args=tuple(args),
        output_path=str(output_path),
        encoder=encoder,
    )


# ── Background image resolution ──────────────────────────────────────────────

@dataclass
class BackgroundImage:
    path: str | None = None
    warnings: list[str] = field(default_factory=list)


def _normalize_image_path(raw: str) -> str | None:
    if raw.startswith("file://"):
        parsed = urlparse(raw)
        if parsed.netloc not in ("", "localhost"):
            return None
        return unquote(parsed.path) or None
    return raw


def resolve_background_image(background: BackgroundSettings, project_dir: str | Path) -> BackgroundImage:
    """Existing local image for an ``image`` background, or a warning.

    A missing file is not an error: the plan falls back to the solid canvas.
    """
    if background.type != BackgroundType.image or not (background.image_path or "").strip():
        return BackgroundImage()

    normalized = _normalize_image_path(background.image_path.strip())
    if not normalized:
        return BackgroundImage()

    p = Path(normalized)
    if not p.is_absolute():
        p = (Path(project_dir) / p).resolve()
    if p.is_file():
        return BackgroundImage(path=str(p))
    return BackgroundImage(warnings=[
        f"Background image not found at {p}. Falling back to color background for export."
    ])
