"""HTTP API tests over the FastAPI TestClient."""

from __future__ import annotations

import time
from pathlib import Path
from unittest.mock import patch

import pytest


EVENTS = [
    {"id": "c1", "kind": "click", "at_ms": 1000, "x_norm": 0.25, "y_norm": 0.75},
    {"id": "c2", "kind": "click", "at_ms": 1300, "x_norm": 0.3, "y_norm": 0.7},
    {"id": "t1", "kind": "typing", "at_ms": 6000},
    {"id": "m1", "kind": "cursor", "at_ms": 6100, "x_norm": 0.5, "y_norm": 0.5},
]


def _wait_for_job(client, job_id, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = client.get(f"/api/render-jobs/{job_id}").json()
        if job["status"] in ("completed", "failed"):
            return job
        time.sleep(0.05)
    pytest.fail(f"render job {job_id} did not finish")


class TestProjectsApi:

    def test_list_projects(self, client, make_project):
        make_project("a", name="Alpha")
        r = client.get("/api/projects")
        assert r.status_code == 200
        assert [p["id"] for p in r.json()] == ["a"]

    def test_open_project(self, client, make_project):
        make_project()
        body = client.get("/api/projects/proj-test").json()
        assert body["project_id"] == "proj-test"
        assert body["project"]["meta"]["name"] == "Demo"
        assert body["screen_track_path"].endswith("screen.webm")
        assert body["event_track_path"].endswith("events.ndjson")

    def test_open_missing(self, client):
        assert client.get("/api/projects/nope").status_code == 404

    def test_request_id_header(self, client):
        r = client.get("/api/projects", headers={"x-request-id": "abc123"})
        assert r.headers["x-request-id"] == "abc123"

    def test_save_project(self, client, make_project):
        project = make_project()
        data = project.model_dump(mode="json")
        data["timeline"]["zooms"] = [{"id": "z1", "start_ms": 0, "end_ms": 900, "level": 2.0}]
        r = client.put("/api/projects/proj-test", json=data)
        assert r.status_code == 200
        assert r.json()["timeline"]["zooms"][0]["id"] == "z1"
        reopened = client.get("/api/projects/proj-test").json()
        assert reopened["project"]["timeline"]["zooms"][0]["level"] == 2.0

    def test_save_invalid_project(self, client, make_project):
        project = make_project()
        data = project.model_dump(mode="json")
        data["timeline"]["zooms"] = [{"start_ms": 500, "end_ms": 100, "level": 2.0}]
        assert client.put("/api/projects/proj-test", json=data).status_code == 422

    def test_save_id_mismatch(self, client, make_project):
        make_project("one")
        other = make_project("two")
        r = client.put("/api/projects/one", json=other.model_dump(mode="json"))
        assert r.status_code == 400

    def test_events(self, client, make_project):
        make_project(events=EVENTS)
        body = client.get("/api/projects/proj-test/events").json()
        assert [e["id"] for e in body] == ["c1", "c2", "t1", "m1"]


class TestAutoZoomApi:

    def test_regenerate(self, client, make_project):
        make_project(events=EVENTS)
        r = client.post("/api/projects/proj-test/auto-zooms", json={})
        assert r.status_code == 200
        zooms = r.json()["timeline"]["zooms"]
        assert [z["id"] for z in zooms] == ["auto-c1", "auto-t1"]
        assert zooms[0]["manual_target"] == {"x_norm": 0.3, "y_norm": 0.7}

    def test_regenerate_with_filters(self, client, make_project):
        make_project(events=EVENTS)
        r = client.post("/api/projects/proj-test/auto-zooms",
                        json={"include_clicks": False, "default_zoom_level": 2.5})
        zooms = r.json()["timeline"]["zooms"]
        assert [z["id"] for z in zooms] == ["auto-t1"]
        assert zooms[0]["level"] == 2.5

    def test_invalid_level(self, client, make_project):
        make_project(events=EVENTS)
        r = client.post("/api/projects/proj-test/auto-zooms", json={"default_zoom_level": 9})
        assert r.status_code == 422


class TestRenderApi:

    def test_plan_preview(self, client, make_project):
        make_project(timeline={"zooms": [{"start_ms": 0, "end_ms": 1000, "level": 2}]})
        body = client.get("/api/projects/proj-test/plan", params={"encoder": "h264_nvenc"}).json()
        assert body["encoder"] == "h264_nvenc"
        assert body["args"][0] == "-y"
        assert body["args"][body["args"].index("-c:v") + 1] == "h264_nvenc"
        assert body["warnings"] == []

    def test_plan_rejects_unknown_encoder(self, client, make_project):
        make_project()
        r = client.get("/api/projects/proj-test/plan", params={"encoder": "libvpx"})
        assert r.status_code == 422

    def test_render_job_completes(self, client, make_project, fake_ffmpeg, app_config):
        make_project()
        fake_ffmpeg.add(1, b"nvenc unavailable\n").add(0, b"frame=1 time=00:00:00.50\r")
        out = (Path(app_config.paths.exports_dir) / "api-out.mp4").resolve()
        with patch("screencut.render.service.probe_available_encoders",
                   return_value=["h264_nvenc", "libx264"]):
            r = client.post("/api/projects/proj-test/render", json={"output_path": "api-out"})
            assert r.status_code == 200
            job = _wait_for_job(client, r.json()["job_id"])
        assert job["status"] == "completed"
        assert job["encoder"] == "libx264"
        assert job["output_path"] == str(out)
        assert job["progress"] == 1.0
        assert out.exists()

    def test_render_job_failure(self, client, make_project, fake_ffmpeg):
        make_project()
        fake_ffmpeg.add(1, b"bad\n").add(1, b"worse\n")
        with patch("screencut.render.service.probe_available_encoders", return_value=["libx264"]):
            r = client.post("/api/projects/proj-test/render", json={"output_path": "x.mp4"})
            job = _wait_for_job(client, r.json()["job_id"])
        assert job["status"] == "failed"
        assert job["error"].startswith("Failed to export MP4 after trying encoders: libx264, mpeg4.")

    @pytest.mark.parametrize("output_path", ["../escape.mp4", "/etc/passwd", "sub/../../../x.mp4", "."])
    def test_render_output_outside_exports_rejected(self, client, make_project, fake_ffmpeg, output_path):
        make_project()
        r = client.post("/api/projects/proj-test/render", json={"output_path": output_path})
        assert r.status_code == 400
        assert fake_ffmpeg.commands == []

    def test_render_output_absolute_inside_exports(self, client, make_project, fake_ffmpeg, app_config):
        make_project()
        fake_ffmpeg.add(0)
        target = Path(app_config.paths.exports_dir).resolve() / "nested" / "final"
        with patch("screencut.render.service.probe_available_encoders", return_value=["libx264"]):
            r = client.post("/api/projects/proj-test/render", json={"output_path": str(target)})
            assert r.status_code == 200
            job = _wait_for_job(client, r.json()["job_id"])
        assert job["status"] == "completed"
        assert job["output_path"] == str(target.with_name("final.mp4"))

    def test_render_missing_project(self, client):
        assert client.post("/api/projects/nope/render").status_code == 404

    def test_unknown_job(self, client):
        assert client.get("/api/render-jobs/nope").status_code == 404

    def test_media_queue(self, client):
        body = client.get("/api/media/queue").json()
        assert "running" in body and "jobs" in body


class TestSettingsApi:

    def test_get_and_update(self, client):
        assert client.get("/api/settings").json()["create_zooms_automatically"] is True
        r = client.put("/api/settings", json={"create_zooms_automatically": False})
        assert r.status_code == 200
        assert client.get("/api/settings").json()["create_zooms_automatically"] is False

    def test_invalid_update(self, client):
        r = client.put("/api/settings", json={"defaults": {"export": {"fps": 25}}})
        assert r.status_code == 422
