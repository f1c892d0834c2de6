"""Render executor: run a plan, stream ffmpeg progress, retry across encoders.

One ffmpeg process per attempt, strictly sequential. stderr is read as raw
bytes and split into lines here, because ffmpeg ends its status lines with a
bare ``\\r`` and a chunk boundary can fall anywhere inside a line.
"""

from __future__ import annotations

import codecs
import re
import subprocess
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Callable, Iterable

from screencut.render.compiler import RenderPlan
from screencut.render.encoders import EncoderChoice
from screencut.render.errors import (
    EncoderAttemptFailure,
    ExhaustedEncoders,
    ProcessSpawnFailure,
)
from screencut.utils.config import get_config
from screencut.utils.logging import debug, info, render_log, warn
from screencut.utils.media_executor import release_media_popen, run_media_popen

_TIME_RE = re.compile(r"time=(\d+):(\d+):(\d+\.\d+)")
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True)
class RenderProgress:
    ratio: float
    raw_line: str


ProgressCallback = Callable[[RenderProgress], None]


def parse_progress_time(line: str) -> float | None:
    """Seconds encoded so far from a ``time=HH:MM:SS.ss`` status line."""
    m = _TIME_RE.search(line)
    if not m:
        return None
    h, mi, s = int(m.group(1)), int(m.group(2)), float(m.group(3))
    return h * 3600 + mi * 60 + s


def progress_ratio(seconds: float, ceiling_s: float) -> float:
    return max(0.0, min(seconds / ceiling_s, 1.0))


class StderrLineSplitter:
    """Incremental bytes -> lines. Keeps the trailing partial line between chunks."""

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> list[str]:
        parts = _LINE_BREAK.split(self._pending + self._decoder.decode(chunk))
        self._pending = parts.pop()
        return [p for p in parts if p]

    def flush(self) -> list[str]:
        text = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return [p for p in _LINE_BREAK.split(text) if p]


def _read_chunks(stream: IO[bytes], size: int) -> Iterable[bytes]:
    read = getattr(stream, "read1", stream.read)
    while True:
        chunk = read(size)
        if not chunk:
            return
        yield chunk


# ── Single attempt ───────────────────────────────────────────────────────────

def run_render(
    plan: RenderPlan,
    on_progress: ProgressCallback | None = None,
    *,
    ceiling_s: float | None = None,
    tail_lines: int | None = None,
) -> None:
    """Run one ffmpeg attempt to completion.

    Returns normally only if ffmpeg exited 0 and the output file exists.

    Raises:
        ProcessSpawnFailure: ffmpeg could not be started.
        EncoderAttemptFailure: nonzero exit or no output file.
    """
    cfg = get_config().render
    ceiling_s = ceiling_s or cfg.progress_ceiling_s
    tail: deque[str] = deque(maxlen=tail_lines or cfg.stderr_tail_lines)

    render_log(f"Attempt [{plan.encoder.value}]: {' '.join(plan.command)}")
    try:
        proc, job_id, acquired = run_media_popen(
            plan.command,
            tool="ffmpeg",
            description=f"render {Path(plan.output_path).name} ({plan.encoder.value})",
            heavy=True,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
    except OSError as e:
        raise ProcessSpawnFailure(plan.transcoder_path, plan.encoder.value, e) from e

    def handle(line: str) -> None:
        tail.append(line)
        seconds = parse_progress_time(line)
        if seconds is not None and on_progress:
            on_progress(RenderProgress(ratio=progress_ratio(seconds, ceiling_s), raw_line=line))

    returncode = -1
    splitter = StderrLineSplitter()
    try:
        for chunk in _read_chunks(proc.stderr, cfg.read_chunk_bytes):
            for line in splitter.feed(chunk):
                handle(line)
        for line in splitter.flush():
            handle(line)
        returncode = proc.wait()
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
        release_media_popen(job_id, acquired, returncode=returncode,
                            error_msg="\n".join(tail) if returncode != 0 else "")

    if returncode != 0:
        raise EncoderAttemptFailure(plan.encoder.value, returncode, tail)
    if not Path(plan.output_path).exists():
        raise EncoderAttemptFailure(plan.encoder.value, returncode, tail,
                                    message="Render completed but output was not created.")


# ── Fallback chain ───────────────────────────────────────────────────────────

class RenderState(str, Enum):
    idle = "idle"
    running = "running"
    retrying = "retrying"
    succeeded = "succeeded"
    exhausted = "exhausted"


@dataclass
class RenderOutcome:
    output_path: str
    encoder: EncoderChoice
    attempted: list[EncoderChoice] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    elapsed_s: float = 0.0


def _remove_stale(path: str) -> None:
    Path(path).unlink(missing_ok=True)


class RenderAttemptChain:
    """Tries each encoder in order until one produces an output file."""

    def __init__(
        self,
        attempts: Iterable[EncoderChoice | str],
        plan_factory: Callable[[EncoderChoice], RenderPlan],
        on_progress: ProgressCallback | None = None,
        runner: Callable[..., None] = run_render,
    ):
        self.attempts = [EncoderChoice(a) for a in attempts]
        self.plan_factory = plan_factory
        self.on_progress = on_progress
        self.runner = runner
        self.state = RenderState.idle
        self.attempted: list[EncoderChoice] = []
        self.errors: list[str] = []

    def _emit(self, ratio: float, line: str) -> None:
        if self.on_progress:
            self.on_progress(RenderProgress(ratio=ratio, raw_line=line))

    def run(self) -> RenderOutcome:
        t0 = time.monotonic()
        for encoder in self.attempts:
            plan = self.plan_factory(encoder)
            _remove_stale(plan.output_path)

            self.state = RenderState.running
            self.attempted.append(encoder)
            debug(f"[render] trying encoder {encoder.value}")
            try:
                self.runner(plan, self.on_progress)
            except ProcessSpawnFailure as e:
                self.errors.append(str(e))
                self.state = RenderState.exhausted
                render_log(f"Spawn FAILED: {e}", level="error")
                raise
            except EncoderAttemptFailure as e:
                self.errors.append(str(e))
                self.state = RenderState.retrying
                render_log(f"Encoder {encoder.value} FAILED (exit={e.returncode}): {e}", level="warning")
                warn(f"Encoder {encoder.value} failed, trying next available encoder...")
                self._emit(0.0, f"Encoder {encoder.value} failed, trying next available encoder...")
                continue

            self.state = RenderState.succeeded
            elapsed = time.monotonic() - t0
            info(f"[render] {Path(plan.output_path).name} encoded with {encoder.value} ({elapsed:.1f}s)")
            render_log(f"Render OK [{encoder.value}]: {plan.output_path} ({elapsed:.1f}s)")
            return RenderOutcome(
                output_path=plan.output_path,
                encoder=encoder,
                attempted=list(self.attempted),
                errors=list(self.errors),
                elapsed_s=elapsed,
            )

        self.state = RenderState.exhausted
        last = self.errors[-1] if self.errors else "No encoder attempts were made."
        render_log(f"All encoders failed: {', '.join(e.value for e in self.attempted)}", level="error")
        raise ExhaustedEncoders([e.value for e in self.attempts], last)


def render_with_fallback(
    attempts: Iterable[EncoderChoice | str],
    plan_factory: Callable[[EncoderChoice], RenderPlan],
    on_progress: ProgressCallback | None = None,
) -> RenderOutcome:
    return RenderAttemptChain(attempts, plan_factory, on_progress).run()
