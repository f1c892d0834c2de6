"""Console output via rich, plus rotating app and render logs on disk."""

from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.theme import Theme

_theme = Theme({
    "info": "cyan",
    "warning": "yellow bold",
    "error": "red bold",
    "success": "green bold",
    "dim": "dim white",
})
console = Console(theme=_theme)
err_console = Console(stderr=True, theme=_theme)


class Verbosity(str, Enum):
    SILENT = "silent"
    NORMAL = "normal"
    VERBOSE = "verbose"


_verbosity = Verbosity.NORMAL
_app_log = logging.getLogger("screencut.app")
_render_log = logging.getLogger("screencut.render")

# ── Correlation ──────────────────────────────────────────────────────────────

_request_id: ContextVar[str] = ContextVar("request_id", default="")
_job_id: ContextVar[str] = ContextVar("job_id", default="")


def set_request_id(rid: str = "") -> str:
    """Tag log lines from this context with a request id. Generates one when empty."""
    rid = rid or uuid.uuid4().hex[:12]
    _request_id.set(rid)
    return rid


def set_job_id(jid: str) -> None:
    _job_id.set(jid)


class _CorrelationFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        tags = [f"{k}={v}" for k, v in (("req", _request_id.get()), ("job", _job_id.get())) if v]
        record.ctx = f"[{' '.join(tags)}] " if tags else ""
        return True


# ── Setup ────────────────────────────────────────────────────────────────────

_LEVELS = {
    Verbosity.SILENT: logging.ERROR,
    Verbosity.NORMAL: logging.INFO,
    Verbosity.VERBOSE: logging.DEBUG,
}


def _attach_file(logger: logging.Logger, path: Path, max_bytes: int = 20 * 1024 * 1024) -> None:
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=5, encoding="utf-8")
    handler.addFilter(_CorrelationFilter())
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-8s %(ctx)s%(message)s",
                                           datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False


def setup_logging(verbosity: Verbosity = Verbosity.NORMAL, log_dir: Path | None = None) -> None:
    """Configure console verbosity and (re)open ``app.log`` and ``render.log``.

    ``LOG_LEVEL`` in the environment overrides the level picked from verbosity
    for the stdlib root logger (uvicorn, fastapi).
    """
    global _verbosity
    _verbosity = verbosity

    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "").upper())
    if not isinstance(level, int):
        level = _LEVELS[verbosity]
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False, markup=True)],
        force=True,
    )

    target = log_dir or Path("data/logs")
    _attach_file(_app_log, target / "app.log")
    _attach_file(_render_log, target / "render.log")


# ── Output helpers ───────────────────────────────────────────────────────────

def _emit(level: int, markup: str, msg: str, min_verbosity: Verbosity | None, **kwargs: Any) -> None:
    if min_verbosity is None:
        err_console.print(markup.format(msg=msg), **kwargs)
    elif _verbosity == Verbosity.VERBOSE or (min_verbosity == Verbosity.NORMAL and _verbosity != Verbosity.SILENT):
        console.print(markup.format(msg=msg), **kwargs)
    _app_log.log(level, msg)


def info(msg: str, **kwargs: Any) -> None:
    _emit(logging.INFO, "[info]ℹ {msg}[/info]", msg, Verbosity.NORMAL, **kwargs)


def success(msg: str, **kwargs: Any) -> None:
    _emit(logging.INFO, "[success]✓ {msg}[/success]", msg, Verbosity.NORMAL, **kwargs)


def warn(msg: str, **kwargs: Any) -> None:
    _emit(logging.WARNING, "[warning]⚠ {msg}[/warning]", msg, Verbosity.NORMAL, **kwargs)


def error(msg: str, **kwargs: Any) -> None:
    _emit(logging.ERROR, "[error]✗ {msg}[/error]", msg, None, **kwargs)


def debug(msg: str, **kwargs: Any) -> None:
    _emit(logging.DEBUG, "[dim]  {msg}[/dim]", msg, Verbosity.VERBOSE, **kwargs)


def render_log(msg: str, level: str = "info") -> None:
    """Write to ``render.log`` only, whatever the console verbosity."""
    _render_log.log(logging.getLevelName(level.upper()), msg)


def make_progress(**kwargs: Any) -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
        **kwargs,
    )
