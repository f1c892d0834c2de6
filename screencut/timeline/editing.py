"""Timeline edit operations.

Every operation takes a Project and returns a new one; inputs are never
mutated. ``EditSession`` adds undo/redo on top for interactive callers.
"""

from __future__ import annotations

from collections import deque
from enum import Enum
from typing import Any, Callable, Iterable, Literal, Sequence, TypeVar

from screencut.timeline.models import (
    AutoZoomSignal,
    NormPoint,
    Project,
    RecordingEvent,
    SpeedSegment,
    StylePreset,
    Timeline,
    ZoomMode,
    ZoomSegment,
    utc_now_iso,
)
from screencut.zoom.auto_zoom import AutoZoomOptions, build_auto_zooms
from screencut.zoom.view_transform import clamp

MAX_UNDO = 80
MIN_SEGMENT_MS = 100
MANUAL_ZOOM_MS = 1400
MANUAL_ZOOM_MIN_END_MS = 500
INSTANT_ZOOM_MS = 800
SPEED_SEGMENT_MS = 1800
DEFAULT_ZOOM_LEVEL = 1.8
DEFAULT_SPEED_RATE = 1.5

Edge = Literal["start", "end"]
S = TypeVar("S", ZoomSegment, SpeedSegment)


class SegmentNotFound(KeyError):
    pass


# ── Helpers ──────────────────────────────────────────────────────────────────

def normalize_range(start_ms: float, end_ms: float) -> tuple[float, float]:
    return (start_ms, end_ms) if start_ms <= end_ms else (end_ms, start_ms)


def sort_by_start(segments: Iterable[S]) -> list[S]:
    return sorted(segments, key=lambda s: s.start_ms)


def compute_snapped_time(px: float, pixels_per_second: float, snap_ms: float = 100) -> float:
    """Timeline pixel offset to milliseconds, snapped to ``snap_ms``."""
    raw_ms = px / pixels_per_second * 1000
    return round(raw_ms / snap_ms) * snap_ms


def crop_duration_by_cuts(duration_ms: float, cuts: Iterable[Any]) -> float:
    removed = sum(max(0.0, c.end_ms - c.start_ms) for c in cuts if not getattr(c, "disabled", False))
    return max(1.0, duration_ms - removed)


def _with_timeline(project: Project, **changes: Any) -> Project:
    return project.model_copy(update={"timeline": project.timeline.model_copy(update=changes)})


def _revalidate(model: Any, fields: dict[str, Any]) -> Any:
    # model_copy skips validation, so rebuild through the model instead
    return type(model).model_validate({**model.model_dump(), **fields})


def _replace(segments: Sequence[S], seg_id: str, fn: Callable[[S], S]) -> list[S]:
    out, found = [], False
    for s in segments:
        if s.id == seg_id:
            out.append(fn(s))
            found = True
        else:
            out.append(s)
    if not found:
        raise SegmentNotFound(seg_id)
    return out


def _move_edge(seg: S, edge: Edge, ms: float, duration_ms: float) -> S:
    if edge == "start":
        start = max(0.0, min(ms, seg.end_ms - MIN_SEGMENT_MS))
        return seg.model_copy(update={"start_ms": start})
    end = min(duration_ms, max(ms, seg.start_ms + MIN_SEGMENT_MS))
    return seg.model_copy(update={"end_ms": max(end, seg.start_ms)})


def update_project_duration(project: Project, duration_ms: float) -> Project:
    meta = project.meta.model_copy(update={
        "duration_ms": max(1, round(duration_ms)),
        "updated_at": utc_now_iso(),
    })
    return project.model_copy(update={"meta": meta})


# ── Zoom segments ────────────────────────────────────────────────────────────

def add_zoom(project: Project, zoom: ZoomSegment) -> Project:
    return _with_timeline(project, zooms=[*project.timeline.zooms, zoom])


def create_manual_zoom(project: Project, at_ms: float, level: float = DEFAULT_ZOOM_LEVEL) -> Project:
    zoom = ZoomSegment(
        start_ms=max(0.0, at_ms),
        end_ms=max(MANUAL_ZOOM_MIN_END_MS, at_ms + MANUAL_ZOOM_MS),
        level=clamp(level, 1, 4),
        mode=ZoomMode.manual,
        manual_target=NormPoint(x_norm=0.5, y_norm=0.5),
    )
    return add_zoom(project, zoom)


def create_instant_zoom(
    project: Project,
    at_ms: float,
    level: float = DEFAULT_ZOOM_LEVEL,
    x_norm: float = 0.5,
    y_norm: float = 0.5,
) -> Project:
    start = max(0.0, at_ms)
    zoom = ZoomSegment(
        start_ms=start,
        end_ms=start + INSTANT_ZOOM_MS,
        level=clamp(level, 1, 4),
        mode=ZoomMode.manual,
        manual_target=NormPoint(x_norm=clamp(x_norm, 0, 1), y_norm=clamp(y_norm, 0, 1)),
        instant=True,
        source_signal=AutoZoomSignal.click,
    )
    return add_zoom(project, zoom)


def update_zoom(project: Project, zoom_id: str, **fields: Any) -> Project:
    zooms = _replace(project.timeline.zooms, zoom_id, lambda z: _revalidate(z, fields))
    return _with_timeline(project, zooms=zooms)


def remove_zoom(project: Project, zoom_id: str) -> Project:
    zooms = [z for z in project.timeline.zooms if z.id != zoom_id]
    if len(zooms) == len(project.timeline.zooms):
        raise SegmentNotFound(zoom_id)
    return _with_timeline(project, zooms=zooms)


def move_zoom_boundary(project: Project, zoom_id: str, edge: Edge, ms: float) -> Project:
    duration = project.meta.duration_ms
    zooms = _replace(project.timeline.zooms, zoom_id, lambda z: _move_edge(z, edge, ms, duration))
    return _with_timeline(project, zooms=zooms)


def regenerate_auto_zooms(
    project: Project,
    events: Iterable[RecordingEvent],
    options: AutoZoomOptions | None = None,
    keep_manual: bool = False,
) -> Project:
    """Rebuild zooms from events. Manual zooms are dropped unless ``keep_manual``."""
    auto = build_auto_zooms(events, project.meta.duration_ms, options or AutoZoomOptions.from_config())
    manual = [z for z in project.timeline.zooms if z.mode == ZoomMode.manual] if keep_manual else []
    return _with_timeline(project, zooms=[*manual, *auto])


# ── Speed segments ───────────────────────────────────────────────────────────

def create_speed_segment(project: Project, at_ms: float, rate: float = DEFAULT_SPEED_RATE) -> Project:
    start = max(0.0, at_ms)
    seg = SpeedSegment(start_ms=start, end_ms=start + SPEED_SEGMENT_MS, rate=rate)
    return _with_timeline(project, speed=[*project.timeline.speed, seg])


def update_speed(project: Project, segment_id: str, **fields: Any) -> Project:
    speed = _replace(project.timeline.speed, segment_id, lambda s: _revalidate(s, fields))
    return _with_timeline(project, speed=speed)


def remove_speed(project: Project, segment_id: str) -> Project:
    speed = [s for s in project.timeline.speed if s.id != segment_id]
    if len(speed) == len(project.timeline.speed):
        raise SegmentNotFound(segment_id)
    return _with_timeline(project, speed=speed)


def move_speed_boundary(project: Project, segment_id: str, edge: Edge, ms: float) -> Project:
    duration = project.meta.duration_ms
    speed = _replace(project.timeline.speed, segment_id, lambda s: _move_edge(s, edge, ms, duration))
    return _with_timeline(project, speed=speed)


# ── Settings ─────────────────────────────────────────────────────────────────

class CursorFlag(str, Enum):
    always_use_default_system_cursor = "always_use_default_system_cursor"
    hide_when_idle = "hide_when_idle"
    loop_to_start = "loop_to_start"
    rotate_while_moving = "rotate_while_moving"
    stop_at_end = "stop_at_end"
    remove_shakes = "remove_shakes"
    optimize_cursor_type_transitions = "optimize_cursor_type_transitions"
    click_sound = "click_sound"
    hidden = "hidden"


_CURSOR_FLAG_FIELDS: dict[CursorFlag, str] = {
    CursorFlag.always_use_default_system_cursor: "always_use_default_system_cursor",
    CursorFlag.hide_when_idle: "hide_when_idle",
    CursorFlag.loop_to_start: "loop_to_start",
    CursorFlag.rotate_while_moving: "rotate_while_moving",
    CursorFlag.stop_at_end: "stop_at_end",
    CursorFlag.remove_shakes: "remove_shakes",
    CursorFlag.optimize_cursor_type_transitions: "optimize_cursor_type_transitions",
    CursorFlag.click_sound: "click_sound",
    CursorFlag.hidden: "hidden",
}


def set_cursor_flag(project: Project, flag: CursorFlag | str, value: bool) -> Project:
    field_name = _CURSOR_FLAG_FIELDS[CursorFlag(flag)]
    cursor = project.timeline.cursor.model_copy(update={field_name: bool(value)})
    return _with_timeline(project, cursor=cursor)


def update_cursor(project: Project, **fields: Any) -> Project:
    return _with_timeline(project, cursor=_revalidate(project.timeline.cursor, fields))


def update_background(project: Project, **fields: Any) -> Project:
    return _with_timeline(project, background=_revalidate(project.timeline.background, fields))


def update_audio(project: Project, **fields: Any) -> Project:
    return _with_timeline(project, audio=_revalidate(project.timeline.audio, fields))


def update_export(project: Project, **fields: Any) -> Project:
    return project.model_copy(update={"export": _revalidate(project.export, fields)})


def apply_preset(project: Project, preset: StylePreset) -> Project:
    patch = preset.timeline_patch
    changes: dict[str, Any] = {}
    if patch.background is not None:
        changes["background"] = patch.background
    if patch.cursor is not None:
        changes["cursor"] = patch.cursor
    return _with_timeline(project, **changes) if changes else project


# ── Session ──────────────────────────────────────────────────────────────────

class EditSession:
    """Holds the current Project plus bounded undo/redo history."""

    def __init__(self, project: Project, max_undo: int = MAX_UNDO):
        self.project = project
        self._undo: deque[Project] = deque(maxlen=max_undo)
        self._redo: deque[Project] = deque(maxlen=max_undo)

    @property
    def timeline(self) -> Timeline:
        return self.project.timeline

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    def apply(self, op: Callable[..., Project], *args: Any, **kwargs: Any) -> Project:
        """Run an edit operation against the current project and record it."""
        updated = op(self.project, *args, **kwargs)
        if updated is not self.project:
            self._undo.append(self.project)
            self._redo.clear()
            self.project = updated
        return self.project

    def undo(self) -> bool:
        if not self._undo:
            return False
        self._redo.append(self.project)
        self.project = self._undo.pop()
        return True

    def redo(self) -> bool:
        if not self._redo:
            return False
        self._undo.append(self.project)
        self.project = self._redo.pop()
        return True
