# dsoul/core/storage/paths.py
from __future__ import annotations
from pathlib import Path
import os

# Every file dsoul owns lives under one home directory:
# settings.json, blocklist.json, logs/ and the per-skill records in skills/
HOME_ENV_VAR = "DSOUL_HOME"


def dsoul_home() -> Path:
    """~/.dsoul unless DSOUL_HOME points elsewhere"""
    override = os.environ.get(HOME_ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".dsoul"


def settings_path() -> Path:
    return dsoul_home() / "settings.json"


def blocklist_cache_path() -> Path:
    return dsoul_home() / "blocklist.json"


def logs_dir() -> Path:
    return dsoul_home() / "logs"


def skills_data_dir() -> Path:
    """Directory holding one JSON record and the raw payload per installed skill"""
    return dsoul_home() / "skills"

