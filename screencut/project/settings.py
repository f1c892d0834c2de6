"""User settings: defaults for new projects and saved style presets."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from screencut.timeline.models import AppSettings, validate_settings
from screencut.utils.config import get_config
from screencut.utils.logging import debug

SETTINGS_FILE_NAME = "settings.json"


def settings_path() -> Path:
    return Path(get_config().paths.data_dir) / SETTINGS_FILE_NAME


def _write(path: Path, settings: AppSettings) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(settings.model_dump_json(indent=2), encoding="utf-8")


def load_settings(path: Path | None = None) -> AppSettings:
    """Read settings, creating the file with defaults on first use."""
    path = path or settings_path()
    if not path.exists():
        settings = AppSettings()
        _write(path, settings)
        debug(f"[settings] Created defaults at {path}")
        return settings
    return validate_settings(json.loads(path.read_text(encoding="utf-8")))


def save_settings(patch: dict[str, Any], path: Path | None = None) -> AppSettings:
    """Merge ``patch`` into the stored settings.

    ``defaults`` merges one level deep; ``presets`` replaces the list when given.
    """
    path = path or settings_path()
    current = load_settings(path).model_dump(mode="json")

    merged = {**current, **{k: v for k, v in patch.items() if k not in ("defaults", "presets")}}
    merged["defaults"] = {**current["defaults"], **(patch.get("defaults") or {})}
    if patch.get("presets") is not None:
        merged["presets"] = patch["presets"]

    settings = validate_settings(merged)
    _write(path, settings)
    return settings
