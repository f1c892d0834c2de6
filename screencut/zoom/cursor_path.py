"""Cursor path cleanup over normalized cursor samples."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Sequence

from screencut.timeline.models import EventKind, RecordingEvent


@dataclass(frozen=True)
class CursorPathPoint:
    t_ms: float
    x_norm: float
    y_norm: float


def cursor_points(events: Iterable[RecordingEvent]) -> list[CursorPathPoint]:
    """Positioned cursor events as a time-ordered path."""
    pts = [
        CursorPathPoint(e.at_ms, e.x_norm, e.y_norm)
        for e in events
        if e.kind == EventKind.cursor and e.x_norm is not None and e.y_norm is not None
    ]
    pts.sort(key=lambda p: p.t_ms)
    return pts


def smooth_cursor_path(points: Sequence[CursorPathPoint], smoothing: float = 0.22) -> list[CursorPathPoint]:
    """Exponential smoothing. First and last samples are kept as-is."""
    if len(points) < 3:
        return list(points)

    out = [points[0]]
    follow = 1 - smoothing
    for curr in points[1:-1]:
        prev = out[-1]
        out.append(replace(
            curr,
            x_norm=prev.x_norm + (curr.x_norm - prev.x_norm) * follow,
            y_norm=prev.y_norm + (curr.y_norm - prev.y_norm) * follow,
        ))
    out.append(points[-1])
    return out


def remove_cursor_shakes(points: Sequence[CursorPathPoint], threshold: float = 0.002) -> list[CursorPathPoint]:
    """Drop samples that moved less than ``threshold`` on both axes from the last kept one."""
    if len(points) < 2:
        return list(points)

    out = [points[0]]
    for curr in points[1:]:
        prev = out[-1]
        if abs(curr.x_norm - prev.x_norm) >= threshold or abs(curr.y_norm - prev.y_norm) >= threshold:
            out.append(curr)
    return out
