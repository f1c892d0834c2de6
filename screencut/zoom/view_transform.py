"""Viewport math for a zoom segment applied to a frame."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from screencut.timeline.models import ZoomSegment

MIN_ZOOM = 1.0
MAX_ZOOM = 4.0


def clamp(value: float, lo: float, hi: float) -> float:
    return min(max(value, lo), hi)


@dataclass(frozen=True)
class ViewTransform:
    scale: float
    x_px: float
    y_px: float


IDENTITY = ViewTransform(scale=1.0, x_px=0.0, y_px=0.0)


def compute_view_transform(
    zoom: ZoomSegment | None,
    frame_width: float,
    frame_height: float,
) -> ViewTransform:
    """Top-left corner of the zoomed viewport, in source pixels.

    The viewport is ``frame / scale`` and is centered on the zoom target,
    then clamped so it never leaves the frame. The render compiler emits
    the same arithmetic as an ffmpeg expression.
    """
    if zoom is None:
        return IDENTITY

    scale = clamp(zoom.level, MIN_ZOOM, MAX_ZOOM)
    target_x = zoom.manual_target.x_norm if zoom.manual_target else 0.5
    target_y = zoom.manual_target.y_norm if zoom.manual_target else 0.5

    view_w = frame_width / scale
    view_h = frame_height / scale
    x = clamp(frame_width * target_x - view_w / 2, 0, frame_width - view_w)
    y = clamp(frame_height * target_y - view_h / 2, 0, frame_height - view_h)
    return ViewTransform(scale=scale, x_px=x, y_px=y)


def get_zoom_at_time(zooms: Sequence[ZoomSegment], at_ms: float) -> ZoomSegment | None:
    """First active segment covering ``at_ms``; list order is priority order."""
    for zoom in zooms:
        if zoom.active and zoom.contains(at_ms):
            return zoom
    return None
