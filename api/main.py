#!/usr/bin/env python3
import asyncio
import functools
import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from uuid import uuid4

import anyio
from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel

from artwork.entities import artwork_doc_id
from artwork.queue import enqueue_artwork, pending_count
from engine.core import (
    EngineStatus,
    build_artwork_service,
    get_status,
    load_config,
    merge_schedule_config,
    normalize_artwork_config,
    open_library,
    run_artwork_sync,
    validate_config,
)
from engine.document_store import DocumentNotFound
from engine.paths import CONFIG_DIR, DATA_DIR, LOG_DIR, build_engine_paths, ensure_dir, resolve_config_path
from engine.schedule import SyncSchedule

APP_NAME = "Artwork Archiver API"
STATUS_SCHEMA_VERSION = 1
SCHEDULE_SCHEMA_VERSION = 1
RENDITIONS = ("hq", "large", "small")


def _setup_logging(log_file):
    ensure_dir(os.path.dirname(log_file))
    root = logging.getLogger("")
    root.setLevel(logging.INFO)
    has_file = False
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            if os.path.abspath(getattr(handler, "baseFilename", "")) == os.path.abspath(log_file):
                has_file = True
                break
    if not has_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        file_handler.setLevel(logging.INFO)
        root.addHandler(file_handler)


class ScheduleRequest(BaseModel):
    enabled: bool | None = None
    mode: str | None = None
    interval_hours: int | None = None
    run_on_startup: bool | None = None


class ArtworkSourceRequest(BaseModel):
    source: str


app = FastAPI(title=APP_NAME)


@app.on_event("startup")
async def startup():
    app.state.paths = build_engine_paths()
    try:
        app.state.config_path = resolve_config_path(os.environ.get("ARTWORK_ARCHIVER_CONFIG"))
    except ValueError as exc:
        logging.error("Invalid config override: %s", exc)
        app.state.config_path = resolve_config_path(None)
    app.state.running = False
    app.state.state = "idle"
    app.state.run_id = None
    app.state.started_at = None
    app.state.finished_at = None
    app.state.last_error = None
    app.state.status = EngineStatus()
    app.state.run_lock = asyncio.Lock()
    app.state.stop_event = threading.Event()
    app.state.run_task = None
    app.state.loop = asyncio.get_running_loop()
    app.state.schedule = SyncSchedule(_schedule_tick)
    ensure_dir(DATA_DIR)
    ensure_dir(CONFIG_DIR)
    ensure_dir(LOG_DIR)
    _setup_logging(app.state.paths.log_file)
    app.state.library = open_library(app.state.paths)
    config = _read_config_for_scheduler() or {}
    schedule_config = merge_schedule_config(config.get("schedule"))
    app.state.schedule.start(schedule_config)
    if schedule_config.get("enabled") and schedule_config.get("run_on_startup"):
        asyncio.create_task(_handle_scheduled_run())


@app.on_event("shutdown")
async def shutdown():
    if app.state.running:
        app.state.stop_event.set()
        task = app.state.run_task
        if task:
            try:
                await asyncio.wait_for(task, timeout=30)
            except asyncio.TimeoutError:
                logging.warning("Shutdown timeout while waiting for artwork sync to stop")
    app.state.schedule.shutdown()
    logging.shutdown()


def _tail_lines(path, lines, max_bytes=1_000_000):
    if not os.path.exists(path):
        return ""
    with open(path, "rb") as f:
        f.seek(0, os.SEEK_END)
        size = f.tell()
        block = min(size, max_bytes)
        if block <= 0:
            return ""
        f.seek(-block, os.SEEK_END)
        data = f.read().splitlines()
    tail = data[-lines:] if lines else data
    return b"\n".join(tail).decode("utf-8", errors="replace")


def _load_config_file():
    config_path = app.state.config_path
    if not os.path.exists(config_path):
        return {}
    return load_config(config_path)


def _read_config_or_400():
    try:
        config = _load_config_file()
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid JSON in config: {exc}") from exc
    except OSError as exc:
        raise HTTPException(status_code=500, detail=f"Failed to read config: {exc}") from exc
    errors = validate_config(config)
    if errors:
        raise HTTPException(status_code=400, detail={"errors": errors})
    return config


def _read_config_for_scheduler():
    try:
        config = _load_config_file()
    except json.JSONDecodeError as exc:
        logging.error("Schedule skipped: invalid JSON in config: %s", exc)
        return None
    except OSError as exc:
        logging.error("Schedule skipped: failed to read config: %s", exc)
        return None
    errors = validate_config(config)
    if errors:
        logging.error("Schedule skipped: invalid config: %s", errors)
        return None
    return config


def _write_config(config):
    config_path = app.state.config_path
    config_dir = os.path.dirname(config_path) or "."
    os.makedirs(config_dir, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", delete=False, dir=config_dir) as tmp:
        json.dump(config, tmp, indent=4)
        tmp.flush()
        os.fsync(tmp.fileno())
    try:
        os.replace(tmp.name, config_path)
    finally:
        if os.path.exists(tmp.name):
            os.unlink(tmp.name)


async def _start_run_with_config(config, *, run_source="api"):
    async with app.state.run_lock:
        if app.state.running:
            return False

        app.state.running = True
        app.state.state = "running"
        app.state.run_id = str(uuid4())
        app.state.started_at = datetime.now(timezone.utc).isoformat()
        app.state.finished_at = None
        app.state.last_error = None
        status = EngineStatus()
        app.state.status = status
        app.state.stop_event = threading.Event()

        async def _runner():
            try:
                run_callable = functools.partial(
                    run_artwork_sync,
                    config,
                    paths=app.state.paths,
                    status=status,
                    stop_event=app.state.stop_event,
                    run_source=run_source,
                )
                await anyio.to_thread.run_sync(run_callable)
                if app.state.stop_event.is_set():
                    app.state.last_error = "Run stopped"
                    app.state.state = "error"
            except Exception as exc:
                logging.exception("Artwork sync failed: %s", exc)
                app.state.last_error = str(exc)
                app.state.state = "error"
            finally:
                app.state.running = False
                app.state.finished_at = datetime.now(timezone.utc).isoformat()
                if app.state.state == "running":
                    app.state.state = "idle"

        app.state.run_task = asyncio.create_task(_runner())

    return True


def _schedule_tick():
    loop = app.state.loop
    if not loop or loop.is_closed():
        return
    asyncio.run_coroutine_threadsafe(_handle_scheduled_run(), loop)


async def _handle_scheduled_run():
    if app.state.running:
        logging.info("Scheduled artwork sync skipped; run already active")
        return
    config = _read_config_for_scheduler()
    if config is None:
        return
    if await _start_run_with_config(config, run_source="scheduled"):
        app.state.schedule.mark_run()


def _schedule_response():
    return {
        "schema_version": SCHEDULE_SCHEMA_VERSION,
        "server_time": datetime.now(timezone.utc).isoformat(),
        **app.state.schedule.snapshot(),
    }


def _require_entity(entity_id):
    library = app.state.library
    if library["artists"].exists(entity_id) or library["albums"].exists(entity_id):
        return
    raise HTTPException(status_code=404, detail=f"Unknown artist or album: {entity_id}")


@app.get("/api/status")
async def api_status():
    return {
        "schema_version": STATUS_SCHEMA_VERSION,
        "server_time": datetime.now(timezone.utc).isoformat(),
        "state": app.state.state,
        "running": app.state.running,
        "run_id": app.state.run_id,
        "started_at": app.state.started_at,
        "finished_at": app.state.finished_at,
        "error": app.state.last_error,
        "queued_requests": pending_count(),
        "status": get_status(app.state.status),
    }


@app.post("/api/run", status_code=202)
async def api_run():
    config = _read_config_or_400()
    started = await _start_run_with_config(config, run_source="api")
    if not started:
        raise HTTPException(status_code=409, detail="Artwork sync already in progress")
    return {"run_id": app.state.run_id, "status": "started"}


@app.post("/api/stop")
async def api_stop():
    if not app.state.running:
        return {"status": "idle"}
    app.state.stop_event.set()
    return {"status": "stopping"}


@app.get("/api/schedule")
async def api_get_schedule():
    return _schedule_response()


@app.post("/api/schedule")
async def api_update_schedule(payload: ScheduleRequest):
    config = _read_config_or_400()
    current = merge_schedule_config(config.get("schedule"))
    current.update(payload.dict(exclude_unset=True))
    errors = validate_config({"schedule": current})
    if errors:
        raise HTTPException(status_code=400, detail={"errors": errors})
    config["schedule"] = current
    _write_config(config)
    app.state.schedule.apply(current)
    return _schedule_response()


@app.get("/api/logs", response_class=PlainTextResponse)
async def api_logs(lines: int = Query(200, ge=1, le=5000)):
    return _tail_lines(app.state.paths.log_file, lines)


@app.get("/api/artworks/{entity_id}/{rendition}")
async def api_get_artwork(entity_id: str, rendition: str):
    if rendition not in RENDITIONS:
        raise HTTPException(status_code=400, detail=f"rendition must be one of {', '.join(RENDITIONS)}")
    artworks = app.state.library["artworks"]
    try:
        attachment = await anyio.to_thread.run_sync(
            artworks.get_attachment, artwork_doc_id(entity_id), rendition
        )
    except DocumentNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    headers = {"ETag": f'"{attachment.digest}"'} if attachment.digest else None
    return Response(
        content=attachment.data,
        media_type=attachment.content_type or "application/octet-stream",
        headers=headers,
    )


@app.post("/api/artworks/{entity_id}", status_code=202)
async def api_request_artwork(entity_id: str):
    _require_entity(entity_id)
    config = _read_config_or_400()
    enqueue_artwork(entity_id, config, app.state.paths)
    return {"entity_id": entity_id, "status": "queued"}


@app.put("/api/artworks/{entity_id}")
async def api_set_artwork(entity_id: str, request: ArtworkSourceRequest = Body(...)):
    _require_entity(entity_id)
    source = (request.source or "").strip()
    if not source.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="source must be an http(s) URL")
    config = _read_config_or_400()
    service = build_artwork_service(config, app.state.paths)
    try:
        rev = await anyio.to_thread.run_sync(service.save_artwork, entity_id, source)
    except Exception as exc:
        logging.exception("Failed to store artwork for %s from %s", entity_id, source)
        raise HTTPException(status_code=502, detail=f"Failed to store artwork: {exc}") from exc
    return {
        "entity_id": entity_id,
        "doc_id": artwork_doc_id(entity_id),
        "rev": rev,
        "settings": {key: normalize_artwork_config(config)[key] for key in ("hq_size", "large_size", "small_size")},
    }
