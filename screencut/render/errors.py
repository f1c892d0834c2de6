"""Render errors.

Only ``ExhaustedEncoders`` and ``ProcessSpawnFailure`` reach callers of the
fallback chain. ``EncoderAttemptFailure`` is raised by a single attempt and
recovered by moving on to the next encoder. A missing background image is not
an error at all: it comes back in ``RenderResult.warnings``.
"""

from __future__ import annotations

from typing import Sequence


class RenderError(Exception):
    """Base class for render failures."""

    code: str = "RENDER_FAILED"
    message: str = "Render failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.__class__.message
        super().__init__(self.message)


class EncoderAttemptFailure(RenderError):
    """One encoder attempt exited nonzero or produced no output file."""

    code = "ENCODER_ATTEMPT_FAILED"

    def __init__(
        self,
        encoder: str,
        returncode: int | None,
        stderr_tail: Sequence[str] = (),
        message: str | None = None,
    ):
        self.encoder = encoder
        self.returncode = returncode
        self.stderr_tail = list(stderr_tail)
        if message is None:
            details = ("\n" + "\n".join(self.stderr_tail)) if self.stderr_tail else ""
            message = f"FFmpeg exited with code {returncode}.{details}"
        super().__init__(message)


class ProcessSpawnFailure(RenderError):
    """The transcoder binary could not be started."""

    code = "TRANSCODER_SPAWN_FAILED"

    def __init__(self, transcoder_path: str, encoder: str, cause: OSError):
        self.transcoder_path = transcoder_path
        self.encoder = encoder
        self.cause = cause
        super().__init__(f"Could not start transcoder '{transcoder_path}': {cause}")


class ExhaustedEncoders(RenderError):
    """Every encoder in the attempt chain failed."""

    code = "ENCODERS_EXHAUSTED"

    def __init__(self, attempted: Sequence[str], last_error: str):
        self.attempted = list(attempted)
        self.last_error = last_error
        super().__init__(
            f"Failed to export MP4 after trying encoders: {', '.join(self.attempted)}. {last_error}"
        )
