"""Startup and ``doctor`` checks for the transcoder."""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass

from screencut.utils.logging import error, info, warn
from screencut.utils.media_executor import run_media_subprocess


@dataclass
class DepStatus:
    name: str
    available: bool
    version: str = ""
    hint: str = ""


def _ffmpeg_stdout(ffmpeg_path: str, *args: str) -> str | None:
    binary = shutil.which(ffmpeg_path)
    if not binary:
        return None
    try:
        r = run_media_subprocess([binary, "-hide_banner", *args], description=f"ffmpeg {args[0]}",
                                 timeout=5, heavy=False)
    except (OSError, subprocess.TimeoutExpired):
        return None
    return r.stdout or ""


def check_ffmpeg(ffmpeg_path: str = "ffmpeg") -> DepStatus:
    out = _ffmpeg_stdout(ffmpeg_path, "-version")
    if out is None:
        return DepStatus("ffmpeg", False,
                         hint="Install ffmpeg or point FFMPEG_PATH / render.ffmpeg_path at it")
    return DepStatus("ffmpeg", True, version=out.splitlines()[0] if out else "unknown")


def check_zoompan(ffmpeg_path: str = "ffmpeg") -> DepStatus:
    out = _ffmpeg_stdout(ffmpeg_path, "-filters")
    if out is not None and " zoompan " in out:
        return DepStatus("zoompan filter", True)
    return DepStatus("zoompan filter", False,
                     hint="Zoom segments need an ffmpeg build with the zoompan filter")


def check_all(ffmpeg_path: str = "ffmpeg") -> list[DepStatus]:
    return [check_ffmpeg(ffmpeg_path), check_zoompan(ffmpeg_path)]


def print_dep_status(deps: list[DepStatus], strict: bool = False) -> bool:
    """Report each check. Returns False only in strict mode when something is missing."""
    ok = True
    for d in deps:
        if d.available:
            info(f"[green]✓[/green] {d.name}: {d.version or 'OK'}")
        elif strict:
            error(f"{d.name} missing. {d.hint}")
            ok = False
        else:
            warn(f"{d.name} missing. {d.hint}")
    return ok
