import os
from dataclasses import dataclass
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _env_path(name, default):
    value = os.environ.get(name)
    if value:
        return os.path.abspath(value)
    return os.path.abspath(default)


# Base directories for all file access. Override via env for container mounts.
CONFIG_DIR = _env_path("ARTWORK_ARCHIVER_CONFIG_DIR", PROJECT_ROOT / "config")
DATA_DIR = _env_path("ARTWORK_ARCHIVER_DATA_DIR", PROJECT_ROOT)
LOG_DIR = _env_path("ARTWORK_ARCHIVER_LOG_DIR", PROJECT_ROOT / "logs")


@dataclass(frozen=True)
class EnginePaths:
    log_dir: str
    log_file: str
    db_path: str


def ensure_dir(path):
    if path:
        os.makedirs(path, exist_ok=True)


def resolve_config_path(path):
    if not path:
        resolved = os.path.join(CONFIG_DIR, "config.json")
    elif os.path.isabs(path):
        resolved = os.path.abspath(path)
    else:
        resolved = os.path.abspath(os.path.join(CONFIG_DIR, path))
    if not _is_within_base(resolved, CONFIG_DIR):
        raise ValueError(f"Config path must be within CONFIG_DIR: {CONFIG_DIR}")
    return resolved


def _is_within_base(path, base_dir):
    real = os.path.realpath(path)
    base = os.path.realpath(base_dir)
    return os.path.commonpath([real, base]) == base


def build_engine_paths():
    db_path = os.path.join(DATA_DIR, "database", "library.sqlite")
    return EnginePaths(
        log_dir=LOG_DIR,
        log_file=os.path.join(LOG_DIR, "artwork.log"),
        db_path=db_path,
    )
