"""Configuration management with YAML support and pydantic models."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, PrivateAttr


class PathsConfig(BaseModel):
    data_dir: str = "data"
    projects_dir: str = "data/projects"
    exports_dir: str = "data/exports"
    log_dir: str = "data/logs"


class AutoZoomConfig(BaseModel):
    default_zoom_level: float = Field(default=1.8, ge=1, le=4)
    segment_ms: int = Field(default=1500, ge=0)
    merge_gap_ms: int = Field(default=280, ge=0)
    lead_in_ms: int = Field(default=120, ge=0)


class RenderConfig(BaseModel):
    ffmpeg_path: str = "ffmpeg"
    # Progress is normalized against a fixed ceiling, not the project duration
    progress_ceiling_s: float = Field(default=3600.0, gt=0)
    stderr_tail_lines: int = Field(default=30, ge=1)
    probe_timeout_s: int = 15
    read_chunk_bytes: int = 4096


class RenderingConfig(BaseModel):
    ffmpeg_threads: int = 0  # 0 = let ffmpeg decide. Env: FFMPEG_THREADS
    nice: int = 10           # Process priority (Linux, 0-19). Env: MEDIA_NICE
    max_concurrent: int = 1  # Max parallel heavy media jobs. Env: MAX_MEDIA_JOBS


class AppConfig(BaseModel):
    paths: PathsConfig = PathsConfig()
    auto_zoom: AutoZoomConfig = AutoZoomConfig()
    render: RenderConfig = RenderConfig()
    rendering: RenderingConfig = RenderingConfig()

    # dotted keys set through merge_cli_overrides; these outrank the environment
    _overridden: set[str] = PrivateAttr(default_factory=set)

    @property
    def ffmpeg_path(self) -> str:
        if "render.ffmpeg_path" in self._overridden:
            return self.render.ffmpeg_path
        return os.environ.get("FFMPEG_PATH") or self.render.ffmpeg_path

    @property
    def ffprobe_path(self) -> str:
        """``FFPROBE_PATH``, else the ffprobe sitting next to the configured ffmpeg."""
        env = os.environ.get("FFPROBE_PATH")
        if env:
            return env
        p = Path(self.ffmpeg_path)
        if "ffmpeg" not in p.name:
            return "ffprobe"
        return str(p.with_name(p.name.replace("ffmpeg", "ffprobe")))


_cached: AppConfig | None = None


def load_config(path: str | Path | None = None) -> AppConfig:
    if path is None:
        candidates = [Path("config.yaml"), Path("config.yml"), Path("screencut.yaml")]
        for c in candidates:
            if c.exists():
                path = c
                break
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p) as f:
                data = yaml.safe_load(f) or {}
            return AppConfig(**data)
    return AppConfig()


def get_config() -> AppConfig:
    """Process-wide config, loaded once from the working directory."""
    global _cached
    if _cached is None:
        _cached = load_config()
    return _cached


def set_config(cfg: AppConfig | None) -> None:
    global _cached
    _cached = cfg


def merge_cli_overrides(cfg: AppConfig, overrides: dict[str, Any]) -> AppConfig:
    """Apply dotted ``section.key`` overrides. ``None`` values are skipped."""
    data = cfg.model_dump()
    applied = set(cfg._overridden)
    for key, val in overrides.items():
        if val is None:
            continue
        parts = key.split(".")
        d = data
        for p in parts[:-1]:
            d = d.setdefault(p, {})
        d[parts[-1]] = val
        applied.add(key)
    merged = AppConfig(**data)
    merged._overridden = applied
    return merged


DEFAULT_CONFIG_YAML = """\
# screencut configuration

paths:
  data_dir: data
  projects_dir: data/projects
  exports_dir: data/exports
  log_dir: data/logs

auto_zoom:
  default_zoom_level: 1.8    # 1.0 - 4.0
  segment_ms: 1500           # how long a zoom lasts past the triggering event
  merge_gap_ms: 280          # same-kind zooms closer than this are merged
  lead_in_ms: 120            # zoom starts this long before the event

render:
  ffmpeg_path: ffmpeg        # Env override: FFMPEG_PATH
  progress_ceiling_s: 3600   # progress ratio = encoded time / ceiling
  stderr_tail_lines: 30      # lines kept for error reports
  probe_timeout_s: 15

rendering:
  ffmpeg_threads: 0          # 0 = ffmpeg default. Env: FFMPEG_THREADS
  nice: 10                   # Process priority 0-19 (Linux only). Env: MEDIA_NICE
  max_concurrent: 1          # Max parallel heavy media jobs. Env: MAX_MEDIA_JOBS
"""
