import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from engine.document_store import DocumentStore
from engine.paths import EnginePaths, ensure_dir

DEFAULT_SCHEDULE_CONFIG = {
    "enabled": False,
    "mode": "interval",
    "interval_hours": 24,
    "run_on_startup": False,
}

DEFAULT_ARTWORK_CONFIG = {
    "base_url": "https://www.discogs.com",
    "user_agent": "artwork-archiver/1.0",
    "request_timeout_seconds": 30,
    "rate_limit_seconds": 1.0,
    "retry_attempts": 1,
    "hq_size": 600,
    "large_size": 300,
    "small_size": 64,
    "face_detection": True,
}

_SIZE_KEYS = ("hq_size", "large_size", "small_size")


@dataclass
class EngineStatus:
    run_successes: list[str] = field(default_factory=list)
    run_failures: list[str] = field(default_factory=list)
    current_phase: str | None = None
    last_error_message: str | None = None
    current_entity_id: str | None = None
    current_entity_name: str | None = None
    progress_current: int | None = None
    progress_total: int | None = None
    progress_percent: int | None = None
    last_completed: str | None = None
    last_completed_at: str | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


def status_append(status, field_name, value):
    if status is None:
        return
    with status.lock:
        getattr(status, field_name).append(value)


def status_set(status, field_name, value):
    if status is None:
        return
    with status.lock:
        setattr(status, field_name, value)


def status_progress(status, current, total):
    if status is None:
        return
    percent = int(current * 100 / total) if total else 100
    with status.lock:
        status.progress_current = current
        status.progress_total = total
        status.progress_percent = percent


def get_status(status):
    with status.lock:
        return {
            "run_successes": list(status.run_successes),
            "run_failures": list(status.run_failures),
            "current_phase": status.current_phase,
            "last_error_message": status.last_error_message,
            "current_entity_id": status.current_entity_id,
            "current_entity_name": status.current_entity_name,
            "progress_current": status.progress_current,
            "progress_total": status.progress_total,
            "progress_percent": status.progress_percent,
            "last_completed": status.last_completed,
            "last_completed_at": status.last_completed_at,
        }


def load_config(path):
    with open(path, "r") as f:
        return json.load(f)


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(config):
    errors = []
    if not isinstance(config, dict):
        return ["config must be a JSON object"]

    artwork = config.get("artwork")
    if artwork is not None and not isinstance(artwork, dict):
        errors.append("artwork must be an object")
        artwork = None
    artwork = artwork or {}

    base_url = artwork.get("base_url")
    if base_url is not None:
        if not isinstance(base_url, str) or not base_url.startswith(("http://", "https://")):
            errors.append("artwork.base_url must be an http(s) URL")
    user_agent = artwork.get("user_agent")
    if user_agent is not None and (not isinstance(user_agent, str) or not user_agent.strip()):
        errors.append("artwork.user_agent must be a non-empty string")
    for key in ("request_timeout_seconds", "rate_limit_seconds"):
        value = artwork.get(key)
        if value is not None and (not _is_number(value) or value < 0):
            errors.append(f"artwork.{key} must be a number >= 0")
    retries = artwork.get("retry_attempts")
    if retries is not None and (not isinstance(retries, int) or isinstance(retries, bool) or retries < 0):
        errors.append("artwork.retry_attempts must be an integer >= 0")
    for key in _SIZE_KEYS:
        value = artwork.get(key)
        if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value <= 0):
            errors.append(f"artwork.{key} must be a positive integer")
    face_detection = artwork.get("face_detection")
    if face_detection is not None and not isinstance(face_detection, bool):
        errors.append("artwork.face_detection must be true/false")

    schedule = config.get("schedule")
    if schedule is not None:
        if not isinstance(schedule, dict):
            errors.append("schedule must be an object")
        else:
            enabled = schedule.get("enabled")
            if enabled is not None and not isinstance(enabled, bool):
                errors.append("schedule.enabled must be true/false")
            mode = schedule.get("mode", "interval")
            if mode != "interval":
                errors.append("schedule.mode must be 'interval'")
            interval_hours = schedule.get("interval_hours")
            if interval_hours is not None:
                if not isinstance(interval_hours, int) or isinstance(interval_hours, bool) or interval_hours < 1:
                    errors.append("schedule.interval_hours must be an integer >= 1")
            run_on_startup = schedule.get("run_on_startup")
            if run_on_startup is not None and not isinstance(run_on_startup, bool):
                errors.append("schedule.run_on_startup must be true/false")
    return errors


def normalize_artwork_config(config):
    normalized = dict(DEFAULT_ARTWORK_CONFIG)
    if isinstance(config, dict):
        raw = config.get("artwork")
        if isinstance(raw, dict):
            for key in DEFAULT_ARTWORK_CONFIG:
                if key in raw:
                    normalized[key] = raw[key]
    for key in ("request_timeout_seconds", "rate_limit_seconds"):
        if not _is_number(normalized.get(key)) or normalized[key] < 0:
            normalized[key] = DEFAULT_ARTWORK_CONFIG[key]
    retries = normalized.get("retry_attempts")
    if not isinstance(retries, int) or isinstance(retries, bool) or retries < 0:
        normalized["retry_attempts"] = DEFAULT_ARTWORK_CONFIG["retry_attempts"]
    for key in _SIZE_KEYS:
        value = normalized.get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            normalized[key] = DEFAULT_ARTWORK_CONFIG[key]
    normalized["base_url"] = str(normalized.get("base_url") or DEFAULT_ARTWORK_CONFIG["base_url"]).rstrip("/")
    normalized["face_detection"] = bool(normalized.get("face_detection"))
    return normalized


def merge_schedule_config(schedule):
    merged = dict(DEFAULT_SCHEDULE_CONFIG)
    if isinstance(schedule, dict):
        merged.update(schedule)
    return merged


def open_library(paths: EnginePaths):
    ensure_dir(paths.log_dir)
    ensure_dir(os.path.dirname(paths.db_path))
    return {
        "artists": DocumentStore(paths.db_path, "artists"),
        "albums": DocumentStore(paths.db_path, "albums"),
        "artworks": DocumentStore(paths.db_path, "artworks"),
    }


def build_artwork_service(config, paths: EnginePaths):
    from artwork.service import ArtworkService

    library = open_library(paths)
    return ArtworkService(
        library["artists"],
        library["albums"],
        library["artworks"],
        config=normalize_artwork_config(config),
    )


def run_artwork_sync(config, *, paths, status=None, stop_event=None, entity_id=None, run_source="manual"):
    from artwork.worker import process_all, process_entity

    status = status or EngineStatus()
    service = build_artwork_service(config, paths)
    settings = service.config
    logging.info("Artwork sync started (source=%s)", run_source)
    status_set(status, "current_phase", "running")
    if entity_id:
        process_entity(
            service,
            entity_id,
            retry_attempts=settings["retry_attempts"],
            status=status,
        )
    else:
        process_all(
            service,
            rate_limit_seconds=settings["rate_limit_seconds"],
            retry_attempts=settings["retry_attempts"],
            stop_event=stop_event,
            status=status,
        )
    status_set(status, "current_phase", None)
    status_set(status, "last_completed_at", datetime.now(timezone.utc).isoformat())
    summary = get_status(status)
    logging.info(
        "Artwork sync finished: %s ok, %s failed",
        len(summary["run_successes"]),
        len(summary["run_failures"]),
    )
    return status
