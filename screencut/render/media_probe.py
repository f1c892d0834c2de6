"""Read the capture's frame size with ffprobe."""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from pathlib import Path

from screencut.utils.config import get_config
from screencut.utils.logging import debug, warn
from screencut.utils.media_executor import run_media_subprocess


@dataclass(frozen=True)
class VideoProbe:
    width: int
    height: int
    duration_s: float = 0.0

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height


def probe_video(path: str | Path, ffprobe_path: str | None = None) -> VideoProbe | None:
    """First video stream's size, or None when ffprobe is missing or the file is unreadable."""
    cfg = get_config()
    cmd = [
        ffprobe_path or cfg.ffprobe_path, "-v", "quiet", "-print_format", "json",
        "-select_streams", "v:0", "-show_streams", "-show_format", str(path),
    ]
    try:
        r = run_media_subprocess(cmd, tool="ffprobe", description=f"probe {Path(path).name}",
                                 timeout=cfg.render.probe_timeout_s, heavy=False)
        data = json.loads(r.stdout or "{}") if r.returncode == 0 else {}
    except (OSError, subprocess.TimeoutExpired, ValueError) as e:
        warn(f"ffprobe failed for {path}: {e}")
        return None

    for s in data.get("streams", []):
        width, height = int(s.get("width") or 0), int(s.get("height") or 0)
        if width > 0 and height > 0:
            duration = s.get("duration") or data.get("format", {}).get("duration") or 0
            debug(f"Capture {Path(path).name}: {width}x{height}")
            return VideoProbe(width, height, float(duration))
    return None
