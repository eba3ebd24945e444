"""Environment driven settings for the High Street Gym application."""

from __future__ import annotations

import logging
import os

# ── Storage ──────────────────────────────────────────────────────────────────
DATABASE_PATH = os.environ.get("GYM_DATABASE_PATH", "highstreetgym.db")

# ── Local timezone ───────────────────────────────────────────────────────────
TIMEZONE = os.environ.get("GYM_TIMEZONE", "Australia/Brisbane")

# ── XML exports ──────────────────────────────────────────────────────────────
# Every export is also written here under its download filename.
BACKUP_DIRECTORY = os.environ.get("GYM_BACKUP_DIRECTORY", "docs")

# ── Web ──────────────────────────────────────────────────────────────────────
SECRET_KEY = os.environ.get("GYM_SECRET_KEY", "highstreetgym-secret")

LOG_LEVEL = os.environ.get("GYM_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def defaults() -> dict:
    """Return the settings as Flask config keys."""

    return {
        "GYM_DATABASE_PATH": DATABASE_PATH,
        "GYM_TIMEZONE": TIMEZONE,
        "GYM_BACKUP_DIRECTORY": BACKUP_DIRECTORY,
        "GYM_LOG_LEVEL": LOG_LEVEL,
        "SECRET_KEY": SECRET_KEY,
    }


def configure_logging(level: str | int = LOG_LEVEL) -> None:
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
