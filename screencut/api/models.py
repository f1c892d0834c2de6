"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from screencut.render.encoders import EncoderChoice


class RenderJobStatus(str, Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"


class RenderRequest(BaseModel):
    # file name or path under exports_dir; defaults to <project name>-<ms>.mp4 there
    output_path: str | None = None


class AutoZoomRequest(BaseModel):
    include_clicks: bool = True
    include_typing: bool = True
    include_focus: bool = True
    default_zoom_level: float | None = Field(default=None, ge=1, le=4)
    segment_ms: float | None = Field(default=None, ge=0)
    merge_gap_ms: float | None = Field(default=None, ge=0)
    keep_manual: bool = False


class RenderJobInfo(BaseModel):
    job_id: str
    project_id: str
    status: RenderJobStatus = RenderJobStatus.pending
    progress: float = 0.0
    stage: str = "queued"
    last_line: str = ""
    output_path: str | None = None
    encoder: EncoderChoice | None = None
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
