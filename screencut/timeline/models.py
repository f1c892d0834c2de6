"""Timeline data model: versioned, validated, immutable project state.

Every model is a frozen pydantic model. Edits never mutate in place; they go
through ``model_copy(update=...)`` (see ``screencut.timeline.editing``), so a
Timeline handed to the render compiler can be shared freely across threads.

Segment lists keep insertion order. For zoom segments that order is a
priority order when segments overlap: the first active segment covering a
point in time wins.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ── Enums ─────────────────────────────────────────────────────────────────────

class ZoomMode(str, Enum):
    auto = "auto"
    manual = "manual"


class AutoZoomSignal(str, Enum):
    click = "click"
    typing = "typing"
    focus = "focus"


class EventKind(str, Enum):
    click = "click"
    typing = "typing"
    focus = "focus"
    cursor = "cursor"


class BackgroundType(str, Enum):
    wallpaper = "wallpaper"
    gradient = "gradient"
    color = "color"
    image = "image"
    none = "none"


class CursorType(str, Enum):
    system = "system"
    touch = "touch"
    minimal = "minimal"
    none = "none"


class EncoderHint(str, Enum):
    auto = "auto"
    nvenc = "nvenc"
    qsv = "qsv"
    amf = "amf"
    mpeg4 = "mpeg4"


class ExportProfile(str, Enum):
    draft = "draft"
    standard = "standard"
    high = "high"


class SourceMode(str, Enum):
    display = "display"
    window = "window"
    area = "area"


# ── Segments ──────────────────────────────────────────────────────────────────

class NormPoint(_Frozen):
    x_norm: float = Field(ge=0, le=1)
    y_norm: float = Field(ge=0, le=1)


class _TimeRange(_Frozen):
    id: str = Field(default_factory=new_id)
    start_ms: float = Field(ge=0)
    end_ms: float = Field(ge=0)

    @model_validator(mode="after")
    def _check_order(self):
        if self.start_ms > self.end_ms:
            raise ValueError(f"start_ms ({self.start_ms}) must not exceed end_ms ({self.end_ms})")
        return self

    def contains(self, at_ms: float) -> bool:
        return self.start_ms <= at_ms <= self.end_ms


class ZoomSegment(_TimeRange):
    level: float = Field(ge=1, le=4)
    mode: ZoomMode = ZoomMode.manual
    manual_target: NormPoint | None = None
    instant: bool = False
    disabled: bool = False
    source_signal: AutoZoomSignal | None = None

    @property
    def active(self) -> bool:
        """Rendered at all. A level-1 segment magnifies nothing, so it never shadows another."""
        return not self.disabled and self.level > 1


class SpeedSegment(_TimeRange):
    """Playback-rate segment. Editable, but not rendered by the compiler yet."""
    rate: float = Field(ge=0.25, le=4)
    disable_smooth_mouse_movement: bool = False


class CutSegment(_TimeRange):
    disabled: bool = False


class RectSegment(_TimeRange):
    """Mask or highlight rectangle in normalized frame coordinates."""
    x_norm: float = Field(ge=0, le=1)
    y_norm: float = Field(ge=0, le=1)
    w_norm: float = Field(ge=0.01, le=1)
    h_norm: float = Field(ge=0.01, le=1)
    opacity: float = Field(default=1.0, ge=0, le=1)


# ── Track settings ────────────────────────────────────────────────────────────

class CursorSettings(_Frozen):
    hidden: bool = False
    size: float = Field(default=1.0, ge=0.5, le=3)
    type: CursorType = CursorType.system
    always_use_default_system_cursor: bool = True
    hide_when_idle: bool = False
    idle_timeout_ms: int = Field(default=1800, ge=500, le=10000)
    loop_to_start: bool = False
    rotate_while_moving: bool = False
    stop_at_end: bool = False
    remove_shakes: bool = True
    optimize_cursor_type_transitions: bool = True
    click_sound: bool = False


class BackgroundSettings(_Frozen):
    type: BackgroundType = BackgroundType.gradient
    wallpaper_id: str | None = None
    gradient_from: str = "#0f172a"
    gradient_to: str = "#0ea5e9"
    color: str = "#111827"
    image_path: str | None = None
    padding: float = Field(default=64, ge=0, le=240)
    rounded_corners: float = Field(default=18, ge=0, le=64)
    inset: float = Field(default=0, ge=0, le=80)
    shadow: float = Field(default=48, ge=0, le=100)


class AudioSettings(_Frozen):
    master_gain_db: float = Field(default=0, ge=-24, le=12)
    mic_gain_db: float = Field(default=0, ge=-24, le=12)
    system_gain_db: float = Field(default=0, ge=-24, le=12)
    mute_mic: bool = False
    mute_system: bool = False


class ExportSettings(_Frozen):
    format: Literal["mp4"] = "mp4"
    profile: ExportProfile = ExportProfile.standard
    width: int = Field(default=1920, gt=0)
    height: int = Field(default=1080, gt=0)
    fps: Literal[30, 60] = 60
    destination: str | None = None
    encoder_hint: EncoderHint = EncoderHint.auto


class Timeline(_Frozen):
    zooms: list[ZoomSegment] = Field(default_factory=list)
    cursor: CursorSettings = CursorSettings()
    cuts: list[CutSegment] = Field(default_factory=list)
    speed: list[SpeedSegment] = Field(default_factory=list)
    masks: list[RectSegment] = Field(default_factory=list)
    highlights: list[RectSegment] = Field(default_factory=list)
    audio: AudioSettings = AudioSettings()
    background: BackgroundSettings = BackgroundSettings()


# ── Recording input ───────────────────────────────────────────────────────────

class RecordingEvent(_Frozen):
    id: str = Field(default_factory=new_id)
    kind: EventKind
    at_ms: float = Field(ge=0)
    x_norm: float | None = Field(default=None, ge=0, le=1)
    y_norm: float | None = Field(default=None, ge=0, le=1)
    payload: dict[str, Any] | None = None


class AutoZoomSignals(_Frozen):
    clicks: bool = True
    typing: bool = True
    app_focus: bool = True


class RecordingProfile(_Frozen):
    source_mode: SourceMode = SourceMode.display
    source_id: str = ""
    fps: Literal[30, 60] = 60
    include_system_audio: bool = True
    include_mic: bool = False
    auto_zoom_signals: AutoZoomSignals = AutoZoomSignals()


# ── Project file ──────────────────────────────────────────────────────────────

class ProjectMeta(_Frozen):
    id: str
    name: str
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)
    duration_ms: float = Field(ge=0)


class ProjectMedia(_Frozen):
    screen_track: str
    mic_track: str | None = None
    system_track: str | None = None
    event_track: str | None = None
    thumbnail: str | None = None


class Project(_Frozen):
    version: Literal[1] = 1
    meta: ProjectMeta
    media: ProjectMedia
    timeline: Timeline = Timeline()
    export: ExportSettings = ExportSettings()
    notes: str | None = None

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)


# ── User settings and presets ─────────────────────────────────────────────────

class TimelinePatch(_Frozen):
    background: BackgroundSettings | None = None
    cursor: CursorSettings | None = None


class StylePreset(_Frozen):
    id: str = Field(default_factory=new_id)
    name: str
    created_at: str = Field(default_factory=utc_now_iso)
    timeline_patch: TimelinePatch = TimelinePatch()


class SettingsDefaults(_Frozen):
    background: BackgroundSettings = BackgroundSettings()
    cursor: CursorSettings = CursorSettings()
    export: ExportSettings = ExportSettings()


class AppSettings(_Frozen):
    create_zooms_automatically: bool = True
    default_recording_profile: RecordingProfile | None = None
    defaults: SettingsDefaults = SettingsDefaults()
    presets: list[StylePreset] = Field(default_factory=list)


def validate_project(data: Any) -> Project:
    return Project.model_validate(data)


def validate_settings(data: Any) -> AppSettings:
    return AppSettings.model_validate(data)
