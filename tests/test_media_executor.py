"""Tests for media_executor: concurrency, thread flags, nice prefix, queue status."""

from __future__ import annotations

import subprocess
import threading

import pytest


# ── Thread flag injection ─────────────────────────────────────────────────────

class TestFFmpegThreadFlags:
    """Verify -threads injection into ffmpeg commands."""

    @pytest.fixture(autouse=True)
    def _threads(self):
        from screencut.utils import media_executor as me
        old = me.FFMPEG_THREADS
        me.FFMPEG_THREADS = 4
        yield
        me.FFMPEG_THREADS = old

    def test_inject_threads_into_ffmpeg(self):
        from screencut.utils.media_executor import inject_ffmpeg_thread_flags
        result = inject_ffmpeg_thread_flags(["ffmpeg", "-y", "-i", "in.webm", "out.mp4"])
        assert result[:3] == ["ffmpeg", "-threads", "4"]

    def test_full_path_binary(self):
        from screencut.utils.media_executor import inject_ffmpeg_thread_flags
        result = inject_ffmpeg_thread_flags(["/opt/ffmpeg/bin/ffmpeg", "-y", "out.mp4"])
        assert "-threads" in result

    def test_no_duplicate_threads(self):
        from screencut.utils.media_executor import inject_ffmpeg_thread_flags
        cmd = ["ffmpeg", "-threads", "2", "-y", "-i", "in.webm", "out.mp4"]
        result = inject_ffmpeg_thread_flags(cmd)
        assert result.count("-threads") == 1
        assert result[result.index("-threads") + 1] == "2"

    def test_filter_complex_threads(self):
        from screencut.utils.media_executor import inject_ffmpeg_thread_flags
        cmd = ["ffmpeg", "-y", "-i", "in.webm", "-filter_complex", "[0:v]scale=1920:1080[vout]", "out.mp4"]
        result = inject_ffmpeg_thread_flags(cmd)
        assert result[result.index("-filter_complex_threads") + 1] == "4"

    def test_not_injected_when_zero(self):
        from screencut.utils import media_executor as me
        me.FFMPEG_THREADS = 0
        cmd = ["ffmpeg", "-y", "out.mp4"]
        assert me.inject_ffmpeg_thread_flags(cmd) == cmd

    def test_non_ffmpeg_passthrough(self):
        from screencut.utils.media_executor import inject_ffmpeg_thread_flags
        assert inject_ffmpeg_thread_flags(["ffprobe", "-v", "quiet", "x.mp4"]) == ["ffprobe", "-v", "quiet", "x.mp4"]
        assert inject_ffmpeg_thread_flags(["ls", "-la"]) == ["ls", "-la"]


# ── Nice prefix ──────────────────────────────────────────────────────────────

class TestNicePrefix:

    def test_nice_prefix_on_linux(self):
        from screencut.utils import media_executor as me
        old_linux, old_nice = me.IS_LINUX, me.MEDIA_NICE
        try:
            me.IS_LINUX = True
            me.MEDIA_NICE = 10
            prefix = me._build_nice_prefix()
            if prefix:  # nice might not be in PATH in CI
                assert "nice" in prefix or "ionice" in prefix
        finally:
            me.IS_LINUX, me.MEDIA_NICE = old_linux, old_nice

    def test_no_nice_on_non_linux(self):
        from screencut.utils import media_executor as me
        old_linux = me.IS_LINUX
        try:
            me.IS_LINUX = False
            assert me._build_nice_prefix() == []
        finally:
            me.IS_LINUX = old_linux


# ── Queue status ──────────────────────────────────────────────────────────────

class TestQueueStatus:

    def test_status_structure(self):
        from screencut.utils.media_executor import get_media_queue_status
        status = get_media_queue_status()
        for key in ("max_concurrent", "ffmpeg_threads", "nice", "queued", "running", "jobs"):
            assert key in status
        assert isinstance(status["jobs"], list)

    def test_only_active_jobs_listed(self):
        from screencut.utils import media_executor as me
        old_jobs = me._active_jobs.copy()
        try:
            me._active_jobs.clear()
            me._active_jobs["r"] = me.MediaJobInfo(id="r", tool="ffmpeg", description="render",
                                                   status=me.MediaJobStatus.running)
            me._active_jobs["d"] = me.MediaJobInfo(id="d", tool="ffmpeg", description="done",
                                                   status=me.MediaJobStatus.done)
            status = me.get_media_queue_status()
            assert status["running"] == 1
            assert status["queued"] == 0
            assert [j["id"] for j in status["jobs"]] == ["r"]
        finally:
            me._active_jobs.clear()
            me._active_jobs.update(old_jobs)


# ── Subprocess runners ────────────────────────────────────────────────────────

class TestRunMediaSubprocess:

    def test_successful_run(self):
        from screencut.utils.media_executor import run_media_subprocess
        r = run_media_subprocess(["echo", "hello world"], description="echo test", timeout=5, heavy=False)
        assert r.returncode == 0
        assert "hello world" in r.stdout

    def test_failed_run_captured(self):
        from screencut.utils.media_executor import run_media_subprocess
        r = run_media_subprocess(["false"], description="fail test", timeout=5, heavy=False)
        assert r.returncode != 0

    def test_timeout_raises(self):
        from screencut.utils.media_executor import run_media_subprocess
        with pytest.raises(subprocess.TimeoutExpired):
            run_media_subprocess(["sleep", "10"], description="timeout test", timeout=1, heavy=False)

    def test_missing_binary_raises(self):
        from screencut.utils.media_executor import run_media_subprocess
        with pytest.raises(OSError):
            run_media_subprocess(["/nonexistent/ffmpeg", "-version"], heavy=False)

    def test_semaphore_limits_concurrency(self):
        from screencut.utils import media_executor as me
        old_sem = me._semaphore
        me._semaphore = threading.Semaphore(1)
        results = []

        def _job(idx: int):
            r = me.run_media_subprocess(["echo", f"job-{idx}"], description=f"test job {idx}",
                                        timeout=5, heavy=True)
            results.append(r.returncode)

        try:
            threads = [threading.Thread(target=_job, args=(i,)) for i in range(4)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=30)
        finally:
            me._semaphore = old_sem
        assert results == [0, 0, 0, 0]


class TestRunMediaPopen:

    def test_popen_release_cycle(self):
        from screencut.utils import media_executor as me
        proc, job_id, acquired = me.run_media_popen(
            ["echo", "streamed"], description="popen test", heavy=False,
            stdout=subprocess.PIPE, stderr=subprocess.PIPE,
        )
        out, _ = proc.communicate(timeout=5)
        me.release_media_popen(job_id, acquired, returncode=proc.returncode)
        assert b"streamed" in out
        assert acquired is False
        assert me._active_jobs[job_id].status == me.MediaJobStatus.done

    def test_spawn_failure_releases_semaphore(self):
        from screencut.utils import media_executor as me
        old_sem = me._semaphore
        me._semaphore = threading.Semaphore(1)
        try:
            with pytest.raises(OSError):
                me.run_media_popen(["/nonexistent/ffmpeg"], description="missing", heavy=True)
            assert me._semaphore.acquire(blocking=False) is True
            me._semaphore.release()
        finally:
            me._semaphore = old_sem

    def test_missing_binary_fails_before_priority_prefix(self, monkeypatch):
        from unittest.mock import patch

        from screencut.utils import media_executor as me
        monkeypatch.setattr(me, "IS_LINUX", True)
        monkeypatch.setattr(me, "MEDIA_NICE", 10)
        monkeypatch.setattr(me, "_semaphore", threading.Semaphore(1))
        with patch("screencut.utils.media_executor.subprocess.Popen") as popen:
            with pytest.raises(FileNotFoundError) as exc:
                me.run_media_popen(["/nonexistent/ffmpeg", "-version"], description="missing", heavy=True)
        popen.assert_not_called()
        assert exc.value.filename == "/nonexistent/ffmpeg"
        assert me._semaphore.acquire(blocking=False) is True
        failed = [j for j in me._active_jobs.values() if j.description == "missing"]
        assert failed[-1].status == me.MediaJobStatus.failed

    def test_release_returns_the_slot_it_took(self, monkeypatch):
        from unittest.mock import MagicMock, patch

        from screencut.utils import media_executor as me
        monkeypatch.delenv("MAX_MEDIA_JOBS", raising=False)
        monkeypatch.setattr(me, "MAX_MEDIA_JOBS", me.MAX_MEDIA_JOBS)
        monkeypatch.setattr(me, "IS_LINUX", False)
        first = threading.Semaphore(1)
        monkeypatch.setattr(me, "_semaphore", first)
        with patch("screencut.utils.media_executor.subprocess.Popen", return_value=MagicMock(pid=7)):
            _, job_id, acquired = me.run_media_popen(["echo", "x"], description="held", heavy=True)
        assert first.acquire(blocking=False) is False

        me.configure_media_executor(max_concurrent=2)
        second = me._semaphore
        assert second is not first
        me.release_media_popen(job_id, acquired)

        assert first.acquire(blocking=False) is True
        # the new semaphore was never taken, so it must not have grown past its limit
        assert [second.acquire(blocking=False) for _ in range(3)] == [True, True, False]


# ── configure_media_executor ──────────────────────────────────────────────────

class TestConfigureMediaExecutor:

    def test_explicit_values(self, monkeypatch):
        from screencut.utils import media_executor as me
        for k in ("FFMPEG_THREADS", "MEDIA_NICE", "MAX_MEDIA_JOBS"):
            monkeypatch.delenv(k, raising=False)
        monkeypatch.setattr(me, "FFMPEG_THREADS", me.FFMPEG_THREADS)
        monkeypatch.setattr(me, "MEDIA_NICE", me.MEDIA_NICE)
        monkeypatch.setattr(me, "MAX_MEDIA_JOBS", me.MAX_MEDIA_JOBS)
        monkeypatch.setattr(me, "_semaphore", me._semaphore)
        me.configure_media_executor(ffmpeg_threads=3, nice=5, max_concurrent=0)
        assert me.FFMPEG_THREADS == 3
        assert me.MEDIA_NICE == 5
        assert me.MAX_MEDIA_JOBS == 1

    def test_env_override_takes_precedence(self, monkeypatch):
        from screencut.utils import media_executor as me
        monkeypatch.setenv("FFMPEG_THREADS", "5")
        monkeypatch.setattr(me, "FFMPEG_THREADS", 5)
        me.configure_media_executor(ffmpeg_threads=3)
        assert me.FFMPEG_THREADS == 5
