"""Single gate for every transcoder spawn: concurrency slots, priority and thread flags.

Encoder probes run ungated (``heavy=False``). Render attempts take a slot so
two exports never fight over one hardware encoder.

Environment (wins over config.yaml):
    MAX_MEDIA_JOBS   concurrent heavy jobs (default 1)
    FFMPEG_THREADS   value for -threads, 0 leaves ffmpeg's default
    MEDIA_NICE       nice level on Linux (default 10)
    MEDIA_IONICE     ionice "class:level" on Linux (default 2:7)
"""

from __future__ import annotations

import errno
import itertools
import os
import platform
import shutil
import subprocess
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

from screencut.utils.logging import debug, render_log

MAX_MEDIA_JOBS: int = int(os.environ.get("MAX_MEDIA_JOBS", "1"))
FFMPEG_THREADS: int = int(os.environ.get("FFMPEG_THREADS", "0"))
MEDIA_NICE: int = int(os.environ.get("MEDIA_NICE", "10"))
MEDIA_IONICE: str = os.environ.get("MEDIA_IONICE", "2:7")

IS_LINUX: bool = platform.system() == "Linux"

_semaphore = threading.Semaphore(MAX_MEDIA_JOBS)
_lock = threading.Lock()
# slot each streaming job took, so a later reconfigure never releases the wrong one
_held: dict[str, threading.Semaphore] = {}
_ids = itertools.count(1)
_KEEP_FINISHED = 50


def configure_media_executor(
    ffmpeg_threads: int | None = None,
    nice: int | None = None,
    max_concurrent: int | None = None,
) -> None:
    """Apply the ``rendering`` config section unless the environment already set a value."""
    global FFMPEG_THREADS, MEDIA_NICE, MAX_MEDIA_JOBS, _semaphore
    if ffmpeg_threads is not None and "FFMPEG_THREADS" not in os.environ:
        FFMPEG_THREADS = ffmpeg_threads
    if nice is not None and "MEDIA_NICE" not in os.environ:
        MEDIA_NICE = nice
    if max_concurrent is not None and "MAX_MEDIA_JOBS" not in os.environ:
        MAX_MEDIA_JOBS = max(1, max_concurrent)
        _semaphore = threading.Semaphore(MAX_MEDIA_JOBS)


# ── Job table ────────────────────────────────────────────────────────────────

class MediaJobStatus(str, Enum):
    queued = "queued"
    running = "running"
    done = "done"
    failed = "failed"


@dataclass
class MediaJobInfo:
    id: str
    tool: str
    description: str
    status: MediaJobStatus = MediaJobStatus.queued
    started_at: float = 0.0
    finished_at: float = 0.0
    pid: int = 0
    error: str = ""

    @property
    def elapsed(self) -> float:
        return max(0.0, self.finished_at - self.started_at)


_active_jobs: dict[str, MediaJobInfo] = {}


def _register(cmd: list[str], tool: str | None, description: str) -> MediaJobInfo:
    tool = tool or Path(cmd[0]).stem.lower()
    job = MediaJobInfo(id=f"media-{tool}-{next(_ids)}", tool=tool,
                       description=description or " ".join(cmd[:4]))
    with _lock:
        _active_jobs[job.id] = job
    return job


def _finish(job: MediaJobInfo, returncode: int, error_msg: str = "") -> None:
    job.finished_at = time.monotonic()
    if returncode == 0:
        job.status = MediaJobStatus.done
        render_log(f"Done: {job.description} ({job.elapsed:.1f}s)")
    else:
        job.status = MediaJobStatus.failed
        job.error = error_msg[-500:]
        render_log(f"Failed: {job.description} (exit={returncode}, {job.elapsed:.1f}s)", level="error")

    with _lock:
        finished = sorted(
            (j for j in _active_jobs.values() if j.status in (MediaJobStatus.done, MediaJobStatus.failed)),
            key=lambda j: j.finished_at,
        )
        for old in finished[:-_KEEP_FINISHED]:
            del _active_jobs[old.id]


def get_media_queue_status() -> dict[str, Any]:
    """Snapshot for ``GET /api/media/queue``."""
    with _lock:
        live = [j for j in _active_jobs.values()
                if j.status in (MediaJobStatus.queued, MediaJobStatus.running)]
    return {
        "max_concurrent": MAX_MEDIA_JOBS,
        "ffmpeg_threads": FFMPEG_THREADS,
        "nice": MEDIA_NICE,
        "queued": sum(j.status == MediaJobStatus.queued for j in live),
        "running": sum(j.status == MediaJobStatus.running for j in live),
        "jobs": [{"id": j.id, "tool": j.tool, "description": j.description,
                  "status": j.status.value, "pid": j.pid} for j in live],
    }


# ── Command shaping ──────────────────────────────────────────────────────────

def _build_nice_prefix() -> list[str]:
    if not IS_LINUX:
        return []
    prefix: list[str] = []
    if MEDIA_NICE > 0 and shutil.which("nice"):
        prefix += ["nice", "-n", str(MEDIA_NICE)]
    if shutil.which("ionice"):
        cls, _, level = MEDIA_IONICE.partition(":")
        prefix += ["ionice", "-c", cls, "-n", level or "7"]
    return prefix


def inject_ffmpeg_thread_flags(cmd: list[str]) -> list[str]:
    """Put ``-threads N`` right after the ffmpeg binary when configured and not already given.

    Commands with ``-filter_complex`` also get ``-filter_complex_threads N``.
    """
    if not cmd or FFMPEG_THREADS <= 0 or Path(cmd[0]).stem.lower() != "ffmpeg" or "-threads" in cmd:
        return cmd
    t = str(FFMPEG_THREADS)
    extra = ["-threads", t]
    if "-filter_complex" in cmd:
        extra += ["-filter_complex_threads", t]
    return [cmd[0], *extra, *cmd[1:]]


def _require_binary(job: MediaJobInfo, cmd: list[str]) -> None:
    """Fail like a missing executable would before ``nice``/``ionice`` gets to wrap it.

    Behind the prefix a missing binary is just exit 127 from ``nice``.
    """
    if cmd and shutil.which(cmd[0]) is not None:
        return
    name = cmd[0] if cmd else ""
    exc = FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), name)
    _finish(job, -1, str(exc))
    raise exc


def _prepare(cmd: list[str], heavy: bool) -> list[str]:
    return (_build_nice_prefix() if heavy else []) + inject_ffmpeg_thread_flags(cmd)


@contextmanager
def _slot(job: MediaJobInfo, heavy: bool) -> Iterator[None]:
    sem = _semaphore
    if heavy:
        debug(f"[media-exec] {job.description}: waiting for a slot (max {MAX_MEDIA_JOBS})")
        sem.acquire()
    try:
        yield
    finally:
        if heavy:
            sem.release()


# ── Runners ──────────────────────────────────────────────────────────────────

def run_media_subprocess(
    cmd: list[str],
    *,
    description: str = "",
    tool: str | None = None,
    timeout: float | None = None,
    heavy: bool = True,
    **subprocess_kwargs: Any,
) -> subprocess.CompletedProcess:
    """Run to completion with text output captured.

    Raises ``subprocess.TimeoutExpired`` and ``OSError`` (binary missing or not
    executable) after recording the failure in the job table.
    """
    job = _register(cmd, tool, description)
    _require_binary(job, cmd)
    full_cmd = _prepare(cmd, heavy)
    subprocess_kwargs.setdefault("capture_output", True)
    subprocess_kwargs.setdefault("text", True)

    with _slot(job, heavy):
        job.status = MediaJobStatus.running
        job.started_at = time.monotonic()
        try:
            result = subprocess.run(full_cmd, timeout=timeout, **subprocess_kwargs)
        except subprocess.TimeoutExpired:
            _finish(job, -1, f"Timeout after {timeout}s")
            raise
        except OSError as e:
            _finish(job, -1, str(e))
            raise
        _finish(job, result.returncode, str(result.stderr or ""))
        return result


def run_media_popen(
    cmd: list[str],
    *,
    description: str = "",
    tool: str | None = None,
    heavy: bool = True,
    **popen_kwargs: Any,
) -> tuple[subprocess.Popen, str, bool]:
    """Spawn for streaming. Returns ``(proc, job_id, slot_acquired)``.

    The caller owns the slot once this returns and must hand it back through
    ``release_media_popen``. A binary that is not on PATH (or not
    executable) raises ``FileNotFoundError`` before any slot is taken; any
    other spawn failure gives the slot back here and re-raises the ``OSError``.
    """
    job = _register(cmd, tool, description)
    _require_binary(job, cmd)
    full_cmd = _prepare(cmd, heavy)
    sem = _semaphore
    if heavy:
        render_log(f"Queued: {job.description}")
        sem.acquire()

    job.status = MediaJobStatus.running
    job.started_at = time.monotonic()
    try:
        proc = subprocess.Popen(full_cmd, **popen_kwargs)
    except OSError as e:
        _finish(job, -1, str(e))
        if heavy:
            sem.release()
        raise

    if heavy:
        with _lock:
            _held[job.id] = sem
    job.pid = proc.pid
    render_log(f"Running: {job.description} (pid={proc.pid})")
    return proc, job.id, heavy


def release_media_popen(job_id: str, acquired: bool, returncode: int = 0, error_msg: str = "") -> None:
    with _lock:
        job = _active_jobs.get(job_id)
        sem = _held.pop(job_id, None)
    if job is not None:
        _finish(job, returncode, error_msg)
    if acquired and sem is not None:
        sem.release()
