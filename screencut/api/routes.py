"""HTTP API: projects, settings, render plans and render jobs."""

from __future__ import annotations

import threading
import traceback
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from screencut.api.models import AutoZoomRequest, RenderJobInfo, RenderJobStatus, RenderRequest
from screencut.project.settings import load_settings, save_settings
from screencut.project.store import LoadedProject, ProjectNotFound, get_store
from screencut.render.compiler import create_render_plan
from screencut.render.encoders import EncoderChoice, pick_encoder
from screencut.render.errors import RenderError
from screencut.render.executor import RenderProgress
from screencut.render.service import ensure_mp4_suffix, prepare_render_options, render_project_to_mp4
from screencut.timeline.editing import regenerate_auto_zooms
from screencut.timeline.models import validate_project
from screencut.utils.config import get_config
from screencut.utils.logging import error, info, set_job_id
from screencut.utils.media_executor import get_media_queue_status
from screencut.zoom.auto_zoom import AutoZoomOptions

router = APIRouter(prefix="/api", tags=["screencut"])

_render_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="render")
_jobs: dict[str, RenderJobInfo] = {}
_jobs_lock = threading.Lock()


# ── Job table ────────────────────────────────────────────────────────────────

def create_job(project_id: str) -> RenderJobInfo:
    job = RenderJobInfo(
        job_id=uuid.uuid4().hex[:12],
        project_id=project_id,
        created_at=datetime.now(timezone.utc),
    )
    with _jobs_lock:
        _jobs[job.job_id] = job
    return job


def get_job(job_id: str) -> RenderJobInfo | None:
    with _jobs_lock:
        job = _jobs.get(job_id)
        return job.model_copy() if job else None


def update_job(job_id: str, **kwargs: Any) -> None:
    with _jobs_lock:
        job = _jobs.get(job_id)
        if not job:
            return
        for k, v in kwargs.items():
            setattr(job, k, v)


def _run_render_job(job_id: str, project_id: str, output_path: str | None) -> None:
    set_job_id(job_id)
    update_job(job_id, status=RenderJobStatus.running, stage="rendering")

    def on_progress(p: RenderProgress) -> None:
        update_job(job_id, progress=p.ratio, last_line=p.raw_line)

    try:
        result = render_project_to_mp4(project_id, output_path, on_progress=on_progress)
    except RenderError as e:
        error(f"[api] Render job {job_id} failed: {e.message}")
        update_job(job_id, status=RenderJobStatus.failed, stage="failed", error=e.message,
                   completed_at=datetime.now(timezone.utc))
        return
    except Exception as e:
        error(f"[api] Render job {job_id} crashed: {e}\n{traceback.format_exc()}")
        update_job(job_id, status=RenderJobStatus.failed, stage="failed", error=str(e),
                   completed_at=datetime.now(timezone.utc))
        return

    update_job(job_id, status=RenderJobStatus.completed, stage="done", progress=1.0,
               output_path=result.output_path, encoder=result.encoder,
               warnings=result.warnings, completed_at=datetime.now(timezone.utc))


# ── Helpers ──────────────────────────────────────────────────────────────────

def _open_or_404(pid: str) -> LoadedProject:
    try:
        return get_store().open(pid)
    except ProjectNotFound:
        raise HTTPException(404, "Project not found")
    except ValidationError as e:
        raise HTTPException(422, f"Project file is invalid: {e.errors()[:3]}")


def _export_target(requested: str) -> Path:
    """Client-chosen output, relative to or inside ``exports_dir``; anything else is a 400."""
    exports = Path(get_config().paths.exports_dir).resolve()
    p = Path(requested)
    target = (p if p.is_absolute() else exports / p).resolve()
    if target == exports or not target.is_relative_to(exports):
        raise HTTPException(400, "output_path must be inside the exports directory")
    return ensure_mp4_suffix(target)


def _loaded_to_dict(loaded: LoadedProject) -> dict:
    return {
        "project": loaded.project.model_dump(mode="json"),
        "project_id": loaded.project_id,
        "directory": str(loaded.directory),
        "screen_track_path": str(loaded.screen_track_path),
        "event_track_path": str(loaded.event_track_path) if loaded.event_track_path else None,
    }


# ── Projects ─────────────────────────────────────────────────────────────────

@router.get("/projects")
async def api_list_projects():
    return get_store().summaries()


@router.get("/projects/{pid}")
async def api_open_project(pid: str):
    return _loaded_to_dict(_open_or_404(pid))


@router.put("/projects/{pid}")
async def api_save_project(pid: str, data: dict):
    _open_or_404(pid)
    try:
        project = validate_project(data)
    except ValidationError as e:
        raise HTTPException(422, e.errors(include_url=False, include_context=False))
    if project.meta.id != pid:
        raise HTTPException(400, "Project id does not match URL")
    saved = get_store().save(project)
    return saved.model_dump(mode="json")


@router.get("/projects/{pid}/events")
async def api_project_events(pid: str):
    _open_or_404(pid)
    try:
        events = get_store().read_events(pid)
    except ValidationError as e:
        raise HTTPException(422, f"Event track is invalid: {e.errors()[:3]}")
    return [e.model_dump(mode="json", exclude_none=True) for e in events]


@router.post("/projects/{pid}/auto-zooms")
async def api_regenerate_auto_zooms(pid: str, req: AutoZoomRequest | None = None):
    req = req or AutoZoomRequest()
    loaded = _open_or_404(pid)
    store = get_store()
    opts = AutoZoomOptions.from_config(
        include_clicks=req.include_clicks,
        include_typing=req.include_typing,
        include_focus=req.include_focus,
        default_zoom_level=req.default_zoom_level,
        segment_ms=req.segment_ms,
        merge_gap_ms=req.merge_gap_ms,
    )
    project = regenerate_auto_zooms(loaded.project, store.read_events(pid), opts, keep_manual=req.keep_manual)
    saved = store.save(project)
    info(f"[api] Regenerated {len(saved.timeline.zooms)} zooms for {pid}")
    return saved.model_dump(mode="json")


# ── Render ───────────────────────────────────────────────────────────────────

@router.get("/projects/{pid}/plan")
def api_preview_plan(pid: str, encoder: EncoderChoice | None = None):
    """Compiled ffmpeg invocation without running it. Encoders are not probed."""
    loaded = _open_or_404(pid)
    project = loaded.project
    chosen = encoder or pick_encoder([EncoderChoice.libx264], project.export.encoder_hint)
    options, warnings = prepare_render_options(loaded)
    plan = create_render_plan(
        project.timeline, project.export, loaded.screen_track_path,
        Path(get_config().paths.exports_dir) / f"{pid}-preview.mp4",
        get_config().ffmpeg_path, chosen, options,
    )
    return {**plan.to_dict(), "warnings": warnings}


@router.post("/projects/{pid}/render")
async def api_start_render(pid: str, req: RenderRequest | None = None):
    _open_or_404(pid)
    output = _export_target(req.output_path) if req and req.output_path else None
    job = create_job(pid)
    _render_pool.submit(_run_render_job, job.job_id, pid, str(output) if output else None)
    info(f"[api] Render job {job.job_id} queued for {pid}")
    return job.model_dump(mode="json")


@router.get("/render-jobs/{job_id}")
async def api_get_render_job(job_id: str):
    job = get_job(job_id)
    if not job:
        raise HTTPException(404, "Render job not found")
    return job.model_dump(mode="json")


@router.get("/media/queue")
async def api_media_queue():
    return get_media_queue_status()


# ── Settings ─────────────────────────────────────────────────────────────────

@router.get("/settings")
async def api_get_settings():
    return load_settings().model_dump(mode="json")


@router.put("/settings")
async def api_update_settings(patch: dict):
    try:
        settings = save_settings(patch)
    except ValidationError as e:
        raise HTTPException(422, e.errors(include_url=False, include_context=False))
    return settings.model_dump(mode="json")
