"""Encoder negotiation: probe what ffmpeg offers and order the attempt chain."""

from __future__ import annotations

import subprocess
from enum import Enum
from typing import Iterable

from screencut.timeline.models import EncoderHint
from screencut.utils.config import get_config
from screencut.utils.logging import debug, warn
from screencut.utils.media_executor import run_media_subprocess


class EncoderChoice(str, Enum):
    h264_nvenc = "h264_nvenc"
    h264_qsv = "h264_qsv"
    h264_amf = "h264_amf"
    libx264 = "libx264"
    mpeg4 = "mpeg4"


ENCODER_PRIORITY: list[EncoderChoice] = [
    EncoderChoice.h264_nvenc,
    EncoderChoice.h264_qsv,
    EncoderChoice.h264_amf,
    EncoderChoice.libx264,
    EncoderChoice.mpeg4,
]

HARDWARE_ENCODERS: list[EncoderChoice] = ENCODER_PRIORITY[:3]
SOFTWARE_FALLBACK: list[EncoderChoice] = [EncoderChoice.libx264, EncoderChoice.mpeg4]

_HINTED = {
    EncoderHint.nvenc: EncoderChoice.h264_nvenc,
    EncoderHint.qsv: EncoderChoice.h264_qsv,
    EncoderHint.amf: EncoderChoice.h264_amf,
    EncoderHint.mpeg4: EncoderChoice.mpeg4,
}


def _names(available: Iterable[str]) -> set[str]:
    return {EncoderChoice(a).value if isinstance(a, EncoderChoice) else str(a) for a in available}


def pick_encoder(available: Iterable[str], hint: EncoderHint | str = EncoderHint.auto) -> EncoderChoice:
    """Hinted encoder if present, else the first hardware encoder, else libx264, else mpeg4.

    A specific hint that is not available never switches to another vendor's
    hardware encoder; it falls through to the software encoders.
    """
    have = _names(available)
    hinted = _HINTED.get(EncoderHint(hint))
    if hinted is not None and hinted.value in have:
        return hinted
    if hinted is None:
        for enc in HARDWARE_ENCODERS:
            if enc.value in have:
                return enc
    if EncoderChoice.libx264.value in have:
        return EncoderChoice.libx264
    return EncoderChoice.mpeg4


def build_encoder_attempts(available: Iterable[str], preferred: EncoderChoice | str) -> list[EncoderChoice]:
    """Full retry chain: preferred, then available by priority, then software fallbacks."""
    have = _names(available)
    attempts: list[EncoderChoice] = []

    def push(enc: EncoderChoice) -> None:
        if enc not in attempts:
            attempts.append(enc)

    push(EncoderChoice(preferred))
    for enc in ENCODER_PRIORITY:
        if enc.value in have:
            push(enc)
    # Software encoders stay in the chain even when probing didn't list them
    for enc in SOFTWARE_FALLBACK:
        push(enc)
    return attempts


def probe_available_encoders(transcoder_path: str | None = None) -> list[EncoderChoice]:
    """Ask ffmpeg which of the known encoders it was built with."""
    cfg = get_config()
    path = transcoder_path or cfg.ffmpeg_path
    cmd = [path, "-hide_banner", "-encoders"]
    try:
        r = run_media_subprocess(
            cmd,
            description="probe encoders",
            timeout=cfg.render.probe_timeout_s,
            heavy=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        warn(f"Encoder probe failed ({e}); assuming software encoders only")
        return list(SOFTWARE_FALLBACK)

    found = [enc for enc in ENCODER_PRIORITY if enc.value in (r.stdout or "")]
    if not found:
        return list(SOFTWARE_FALLBACK)
    debug(f"Encoders available: {', '.join(e.value for e in found)}")
    return found
