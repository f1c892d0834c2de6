"""Shared test fixtures.

Provides:
- Isolated storage roots and an AppConfig pointing at them
- A project factory that writes project files without ffmpeg
- A scripted fake ffmpeg process for the render executor
- FastAPI TestClient
"""

from __future__ import annotations

import io
import json
from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient


# ── Storage isolation ────────────────────────────────────────────────────────

@pytest.fixture
def storage_root(tmp_path):
    """Create isolated storage directories matching production layout."""
    for d in ("data", "data/projects", "data/exports", "data/logs"):
        (tmp_path / d).mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture
def app_config(storage_root):
    """Install a process-wide config rooted in tmp_path."""
    from screencut.utils.config import AppConfig, PathsConfig, set_config

    cfg = AppConfig(paths=PathsConfig(
        data_dir=str(storage_root / "data"),
        projects_dir=str(storage_root / "data/projects"),
        exports_dir=str(storage_root / "data/exports"),
        log_dir=str(storage_root / "data/logs"),
    ))
    set_config(cfg)
    yield cfg
    set_config(None)


# ── Projects ─────────────────────────────────────────────────────────────────

def build_project(project_id: str = "proj-test", name: str = "Demo", duration_ms: float = 10_000,
                  timeline: dict | None = None, export: dict | None = None):
    from screencut.timeline.models import Project

    data = {
        "version": 1,
        "meta": {"id": project_id, "name": name, "created_at": "2024-01-01T00:00:00+00:00",
                 "updated_at": "2024-01-01T00:00:00+00:00", "duration_ms": duration_ms},
        "media": {"screen_track": "screen.webm", "event_track": "events.ndjson"},
        "timeline": timeline or {},
        "export": export or {},
    }
    return Project.model_validate(data)


@pytest.fixture
def make_project(app_config):
    """Write a project (and a dummy capture) into the configured store."""
    root = Path(app_config.paths.projects_dir)

    def _make(project_id: str = "proj-test", events: list[dict] | None = None, **kwargs):
        project = build_project(project_id, **kwargs)
        d = root / project_id
        d.mkdir(parents=True, exist_ok=True)
        (d / "screen.webm").write_bytes(b"\x1a\x45\xdf\xa3fake")
        (d / "project.json").write_text(project.to_json(), encoding="utf-8")
        if events is not None:
            (d / "events.ndjson").write_text(
                "".join(json.dumps(e) + "\n" for e in events), encoding="utf-8")
        return project

    return _make


# ── Fake ffmpeg ──────────────────────────────────────────────────────────────

class ChunkedStream:
    """Byte stream that hands out pre-cut chunks through read1."""

    def __init__(self, chunks: list[bytes]):
        self._chunks = list(chunks)

    def read1(self, size: int = -1) -> bytes:
        return self._chunks.pop(0) if self._chunks else b""

    def close(self) -> None:
        pass


class FakeProc:
    def __init__(self, stderr, returncode: int, on_exit=None):
        self.stderr = stderr
        self.pid = 4242
        self.returncode = None
        self._rc = returncode
        self._on_exit = on_exit

    def wait(self, timeout=None):
        if self.returncode is None:
            self.returncode = self._rc
            if self._on_exit:
                self._on_exit()
        return self.returncode

    def poll(self):
        return self.returncode

    def kill(self):
        self.returncode = -9


class FakeFFmpeg:
    """Scripted ffmpeg: each spawn pops the next (returncode, stderr, writes_output)."""

    def __init__(self):
        self.script: list[tuple[int, bytes | list[bytes], bool]] = []
        self.commands: list[list[str]] = []
        self.spawn_error: OSError | None = None

    def add(self, returncode: int, stderr: bytes | list[bytes] = b"", writes_output: bool | None = None):
        self.script.append((returncode, stderr, returncode == 0 if writes_output is None else writes_output))
        return self

    def popen(self, cmd, **kwargs):
        self.commands.append(list(cmd))
        if self.spawn_error is not None:
            raise self.spawn_error
        rc, stderr, writes = self.script.pop(0)
        output = Path(cmd[-1])
        stream = ChunkedStream(stderr) if isinstance(stderr, list) else io.BytesIO(stderr)

        def _exit():
            if writes:
                output.parent.mkdir(parents=True, exist_ok=True)
                output.write_bytes(b"mp4")

        return FakeProc(stream, rc, _exit), f"media-fake-{len(self.commands)}", False

    @property
    def encoders_used(self) -> list[str]:
        return [c[c.index("-c:v") + 1] for c in self.commands]


@pytest.fixture
def fake_ffmpeg():
    fake = FakeFFmpeg()
    with patch("screencut.render.executor.run_media_popen", side_effect=fake.popen):
        yield fake


@pytest.fixture(autouse=True)
def capture_size():
    """Captures read as 1920x1080 unless a test repoints the mock."""
    from screencut.render.media_probe import VideoProbe

    with patch("screencut.render.service.probe_video", return_value=VideoProbe(1920, 1080, 10.0)) as m:
        yield m


# ── TestClient ───────────────────────────────────────────────────────────────

@pytest.fixture
def client(app_config):
    """FastAPI TestClient with storage rooted in tmp_path."""
    from main import app
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
