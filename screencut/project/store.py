"""File-backed project store.

Layout per project::

    <projects_dir>/<id>/project.json
    <projects_dir>/<id>/screen.<ext>
    <projects_dir>/<id>/events.ndjson
"""

from __future__ import annotations

import json
import random
import re
import shutil
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError

from screencut.project.settings import load_settings
from screencut.timeline.models import (
    AudioSettings,
    Project,
    ProjectMedia,
    ProjectMeta,
    RecordingEvent,
    RecordingProfile,
    Timeline,
    utc_now_iso,
    validate_project,
)
from screencut.utils.config import get_config
from screencut.utils.logging import debug, info, warn
from screencut.zoom.auto_zoom import AutoZoomOptions, build_auto_zooms

PROJECT_FILE_NAME = "project.json"
EVENTS_FILE_NAME = "events.ndjson"
DEFAULT_EXPORT_STEM = "screencut-export"


class ProjectNotFound(LookupError):
    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


@dataclass
class LoadedProject:
    project: Project
    project_id: str
    directory: Path
    screen_track_path: Path
    event_track_path: Path | None = None


def sanitize_file_stem(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9\-_. ]", "_", value).strip() or DEFAULT_EXPORT_STEM


def _new_project_id() -> str:
    return f"proj-{int(time.time() * 1000)}-{random.randint(0, 9999)}"


def _write_json(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


class ProjectStore:
    """``load(id) -> Project`` / ``save(Project) -> Project`` over a directory tree."""

    def __init__(self, projects_dir: str | Path):
        self.root = Path(projects_dir)

    def project_dir(self, project_id: str) -> Path:
        if not project_id or "/" in project_id or "\\" in project_id or project_id in (".", ".."):
            raise ProjectNotFound(project_id)
        return self.root / project_id

    def project_file(self, project_id: str) -> Path:
        return self.project_dir(project_id) / PROJECT_FILE_NAME

    # ── Contract ──────────────────────────────────────────────────────────

    def load(self, project_id: str) -> Project:
        path = self.project_file(project_id)
        if not path.is_file():
            raise ProjectNotFound(project_id)
        return validate_project(json.loads(path.read_text(encoding="utf-8")))

    def save(self, project: Project) -> Project:
        updated = project.model_copy(update={
            "meta": project.meta.model_copy(update={"updated_at": utc_now_iso()}),
        })
        _write_json(self.project_file(project.meta.id), updated.to_json())
        debug(f"[store] Project saved: {project.meta.id}")
        return updated

    # ── Queries ───────────────────────────────────────────────────────────

    def open(self, project_id: str) -> LoadedProject:
        project = self.load(project_id)
        directory = self.project_dir(project_id)
        event_track = project.media.event_track
        return LoadedProject(
            project=project,
            project_id=project_id,
            directory=directory,
            screen_track_path=directory / project.media.screen_track,
            event_track_path=directory / event_track if event_track else None,
        )

    def summaries(self) -> list[dict]:
        """Summaries of readable projects, most recently updated first."""
        if not self.root.is_dir():
            return []
        out: list[dict] = []
        for entry in self.root.iterdir():
            path = entry / PROJECT_FILE_NAME
            if not entry.is_dir() or not path.is_file():
                continue
            try:
                project = validate_project(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError, ValidationError) as e:
                warn(f"[store] Skipping unreadable project {entry.name}: {e}")
                continue
            out.append({
                "id": entry.name,
                "name": project.meta.name,
                "updated_at": project.meta.updated_at,
                "duration_ms": project.meta.duration_ms,
            })
        out.sort(key=lambda p: p["updated_at"], reverse=True)
        return out

    def read_events(self, project_id: str) -> list[RecordingEvent]:
        loaded = self.open(project_id)
        path = loaded.event_track_path
        if path is None or not path.is_file():
            return []
        events = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if line.strip():
                events.append(RecordingEvent.model_validate_json(line))
        return events

    # ── Creation ──────────────────────────────────────────────────────────

    def create_from_recording(
        self,
        screen_path: str | Path,
        events: Iterable[RecordingEvent],
        duration_ms: float,
        profile: RecordingProfile | None = None,
        name: str | None = None,
    ) -> LoadedProject:
        """Copy a capture into a new project directory and write its project file.

        Auto zooms are built from the events when the user settings ask for it,
        honoring the signals enabled in the recording profile.
        """
        src = Path(screen_path)
        if not src.is_file():
            raise FileNotFoundError(f"Screen capture not found: {src}")

        settings = load_settings()
        profile = profile or settings.default_recording_profile or RecordingProfile()
        events = list(events)

        project_id = _new_project_id()
        directory = self.project_dir(project_id)
        directory.mkdir(parents=True, exist_ok=True)

        screen_name = f"screen{src.suffix.lower() or '.webm'}"
        shutil.copy2(src, directory / screen_name)
        with open(directory / EVENTS_FILE_NAME, "w", encoding="utf-8") as f:
            for event in events:
                f.write(event.model_dump_json(exclude_none=True) + "\n")

        duration_ms = max(1, round(duration_ms))
        zooms = []
        if settings.create_zooms_automatically:
            zooms = build_auto_zooms(events, duration_ms, AutoZoomOptions.from_profile(profile))

        now = utc_now_iso()
        label = (name or "").strip() or f"Recording {datetime.now():%Y-%m-%d %H:%M:%S}"
        project = Project(
            meta=ProjectMeta(id=project_id, name=label, created_at=now, updated_at=now,
                             duration_ms=duration_ms),
            media=ProjectMedia(screen_track=screen_name, event_track=EVENTS_FILE_NAME),
            timeline=Timeline(
                zooms=zooms,
                cursor=settings.defaults.cursor,
                audio=AudioSettings(),
                background=settings.defaults.background,
            ),
            export=settings.defaults.export,
        )
        _write_json(directory / PROJECT_FILE_NAME, project.to_json())
        info(f"[store] Project created: {project_id} ({label}, {len(zooms)} auto zooms)")
        return self.open(project_id)


def get_store() -> ProjectStore:
    return ProjectStore(get_config().paths.projects_dir)


# ── Module-level helpers over the configured store ───────────────────────────

def open_project(project_id: str) -> LoadedProject:
    return get_store().open(project_id)


def save_project(project: Project) -> Project:
    return get_store().save(project)


def list_projects() -> list[dict]:
    return get_store().summaries()


def read_raw_events(project_id: str) -> list[RecordingEvent]:
    return get_store().read_events(project_id)


def create_project_from_recording(
    screen_path: str | Path,
    events: Iterable[RecordingEvent],
    duration_ms: float,
    profile: RecordingProfile | None = None,
    name: str | None = None,
) -> LoadedProject:
    return get_store().create_from_recording(screen_path, events, duration_ms, profile, name)


def load_events_file(path: str | Path) -> list[RecordingEvent]:
    """Parse an NDJSON (or JSON array) event file from outside the store."""
    text = Path(path).read_text(encoding="utf-8")
    if text.lstrip().startswith("["):
        return [RecordingEvent.model_validate(e) for e in json.loads(text)]
    return [RecordingEvent.model_validate_json(line) for line in text.splitlines() if line.strip()]
