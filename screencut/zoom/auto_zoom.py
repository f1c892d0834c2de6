"""Auto-zoom: cluster interaction events into zoom segments.

Clicks, typing bursts and focus changes each become a short zoom around the
event position. Same-kind zooms that nearly touch are merged so a burst of
clicks produces one sustained zoom instead of a pumping camera.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from screencut.timeline.models import (
    AutoZoomSignal,
    EventKind,
    NormPoint,
    RecordingEvent,
    RecordingProfile,
    ZoomMode,
    ZoomSegment,
)
from screencut.utils.config import AppConfig, get_config
from screencut.utils.logging import debug

_SIGNAL_FOR_KIND = {
    EventKind.click: AutoZoomSignal.click,
    EventKind.typing: AutoZoomSignal.typing,
    EventKind.focus: AutoZoomSignal.focus,
}


@dataclass
class AutoZoomOptions:
    include_clicks: bool = True
    include_typing: bool = True
    include_focus: bool = True
    default_zoom_level: float = 1.8
    segment_ms: float = 1500
    merge_gap_ms: float = 280
    lead_in_ms: float = 120

    @classmethod
    def from_config(cls, cfg: AppConfig | None = None, **overrides) -> AutoZoomOptions:
        az = (cfg or get_config()).auto_zoom
        opts = cls(
            default_zoom_level=az.default_zoom_level,
            segment_ms=az.segment_ms,
            merge_gap_ms=az.merge_gap_ms,
            lead_in_ms=az.lead_in_ms,
        )
        for key, val in overrides.items():
            if val is not None:
                setattr(opts, key, val)
        return opts

    @classmethod
    def from_profile(cls, profile: RecordingProfile, cfg: AppConfig | None = None) -> AutoZoomOptions:
        signals = profile.auto_zoom_signals
        return cls.from_config(
            cfg,
            include_clicks=signals.clicks,
            include_typing=signals.typing,
            include_focus=signals.app_focus,
        )

    def accepts(self, kind: EventKind) -> bool:
        if kind == EventKind.click:
            return self.include_clicks
        if kind == EventKind.typing:
            return self.include_typing
        if kind == EventKind.focus:
            return self.include_focus
        return False


def _candidate(event: RecordingEvent, duration_ms: float, opts: AutoZoomOptions) -> ZoomSegment:
    end = min(duration_ms, event.at_ms + opts.segment_ms)
    # Events past the end of the recording collapse to a zero-length zoom at the end
    start = min(max(0.0, event.at_ms - opts.lead_in_ms), end)
    target = NormPoint(
        x_norm=event.x_norm if event.x_norm is not None else 0.5,
        y_norm=event.y_norm if event.y_norm is not None else 0.5,
    )
    return ZoomSegment(
        id=f"auto-{event.id}",
        start_ms=start,
        end_ms=end,
        level=opts.default_zoom_level,
        mode=ZoomMode.auto,
        manual_target=target,
        instant=False,
        disabled=False,
        source_signal=_SIGNAL_FOR_KIND[event.kind],
    )


def build_auto_zooms(
    events: Iterable[RecordingEvent],
    duration_ms: float,
    options: AutoZoomOptions | None = None,
) -> list[ZoomSegment]:
    """Build auto zoom segments, ascending by start time.

    Events are stably sorted by time, so events at the same instant keep
    their recorded order. Segment ids derive from the triggering event id.
    """
    opts = options or AutoZoomOptions()
    duration_ms = max(0.0, duration_ms)

    selected = sorted(
        (e for e in events if opts.accepts(e.kind)),
        key=lambda e: e.at_ms,
    )

    merged: list[ZoomSegment] = []
    for event in selected:
        seg = _candidate(event, duration_ms, opts)
        if merged:
            last = merged[-1]
            if (last.source_signal == seg.source_signal
                    and seg.start_ms - last.end_ms <= opts.merge_gap_ms):
                merged[-1] = last.model_copy(update={
                    "end_ms": max(last.end_ms, seg.end_ms),
                    "manual_target": seg.manual_target,
                })
                continue
        merged.append(seg)

    debug(f"auto-zoom: {len(selected)} events -> {len(merged)} segments")
    return merged
