# SPDX-License-Identifier: MIT
# Copyright (c) 2024-2025 VueOSD — https://github.com/wkumik/Digital-FPV-OSD-Tool
"""
settings.py  –  Persistent defaults read from settings.json.

The file lives next to the scripts unless DJI_OSD_TOOL_SETTINGS points
elsewhere.  Missing or unreadable files silently give the defaults; command
line options always win over anything stored here.

  {
    "font_dir":   "C:/fonts/wtfos",
    "log_level":  "info",
    "workers":    4,
    "codec":      "vp8",
    "frame_rate": 60
  }
"""

from __future__ import annotations
import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

SETTINGS_ENV   = "DJI_OSD_TOOL_SETTINGS"
FONTS_DIR_ENV  = "FONTS_DIR"
_DEFAULT_FILE  = Path(__file__).parent / "settings.json"


@dataclass
class Settings:
    font_dir:   Optional[str] = None
    log_level:  str           = "info"
    workers:    Optional[int] = None     # None = thread pool default
    codec:      str           = "vp8"
    frame_rate: int           = 60


def settings_path() -> Path:
    env = os.environ.get(SETTINGS_ENV)
    return Path(env) if env else _DEFAULT_FILE


def load_settings(path: Optional[Path] = None) -> Settings:
    path = Path(path) if path else settings_path()
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return Settings()
    except (OSError, ValueError) as e:
        logger.warning("ignoring settings file %s: %s", path, e)
        return Settings()
    if not isinstance(data, dict):
        logger.warning("ignoring settings file %s: not a JSON object", path)
        return Settings()
    known = {f.name for f in fields(Settings)}
    settings = Settings(**{k: v for k, v in data.items() if k in known})
    workers = settings.workers
    if workers is not None and (isinstance(workers, bool) or not isinstance(workers, int)
                                or workers < 1):
        logger.warning("ignoring workers=%r in %s: must be a positive integer", workers, path)
        settings.workers = None
    return settings


def resolve_font_dir(cli_value: Optional[str], settings: Settings) -> Path:
    """--font-dir, then $FONTS_DIR, then settings.json, then ./fonts."""
    for candidate in (cli_value, os.environ.get(FONTS_DIR_ENV), settings.font_dir):
        if candidate:
            return Path(candidate)
    return Path.cwd() / "fonts"
