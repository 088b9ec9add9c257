import json
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from engine.core import status_append, status_progress, status_set
from engine.document_store import DocumentNotFound

from .entities import Album, Artist


@dataclass(frozen=True)
class ArtworkTask:
    entity: Any
    func: Callable

    def __call__(self):
        return self.func(self.entity)


def _task_log(level, *, entity_id, event, **fields):
    payload = {
        "event": event,
        "entity_id": entity_id,
        **fields,
    }
    getattr(logging, level)(json.dumps(payload, sort_keys=True, default=str))


def build_tasks(service):
    entity_ids = service.artists.all_ids() + service.albums.all_ids()
    tasks = []
    for entity_id in entity_ids:
        try:
            entity = Artist.from_doc(service.artists.get(entity_id))
        except DocumentNotFound:
            entity = Album.from_doc(service.albums.get(entity_id))
        tasks.append(ArtworkTask(entity, service.download_hq_cover))
    return tasks


def run_with_retry(task, *, retry_attempts=1):
    entity_id = task.entity.id
    attempts = 1 + max(0, int(retry_attempts))
    for attempt in range(1, attempts + 1):
        try:
            outcome = task()
        except Exception as exc:
            _task_log(
                "warning",
                entity_id=entity_id,
                event="task_failed",
                attempt=attempt,
                max_attempts=attempts,
                error=f"{type(exc).__name__}: {exc}",
            )
            continue
        _task_log("info", entity_id=entity_id, event="task_completed", attempt=attempt, outcome=outcome)
        return True, outcome
    return False, None


def run_tasks(tasks, *, retry_attempts=1, rate_limit_seconds=0, stop_event=None, status=None):
    total = len(tasks)
    completed = 0
    for index, task in enumerate(tasks, start=1):
        if stop_event is not None and stop_event.is_set():
            logging.warning("Artwork sync stopped after %s of %s entities", index - 1, total)
            break
        entity = task.entity
        status_set(status, "current_entity_id", entity.id)
        status_set(status, "current_entity_name", entity.name)
        ok, outcome = run_with_retry(task, retry_attempts=retry_attempts)
        if ok:
            completed += 1
            status_append(status, "run_successes", entity.id)
            status_set(status, "last_completed", entity.id)
        else:
            status_append(status, "run_failures", entity.id)
            status_set(status, "last_error_message", f"Artwork failed for {entity.id}")
        status_progress(status, index, total)
        if rate_limit_seconds and rate_limit_seconds > 0 and index < total and outcome != "skipped":
            if stop_event is not None:
                stop_event.wait(rate_limit_seconds)
            else:
                time.sleep(rate_limit_seconds)
    status_set(status, "current_entity_id", None)
    status_set(status, "current_entity_name", None)
    return completed


def process_all(service, *, rate_limit_seconds=0, retry_attempts=1, stop_event=None, status=None):
    try:
        tasks = build_tasks(service)
        logging.info("Artwork sync queued %s entities", len(tasks))
        run_tasks(
            tasks,
            retry_attempts=retry_attempts,
            rate_limit_seconds=rate_limit_seconds,
            stop_event=stop_event,
            status=status,
        )
    except Exception as exc:
        logging.exception("Artwork sync failed")
        status_set(status, "last_error_message", str(exc))


def process_entity(service, entity_id, *, retry_attempts=1, status=None):
    try:
        entity = service.load_entity(entity_id)
    except DocumentNotFound:
        logging.warning("Artwork request skipped: unknown entity %s", entity_id)
        status_append(status, "run_failures", entity_id)
        return False
    return run_tasks(
        [ArtworkTask(entity, service.download_hq_cover)],
        retry_attempts=retry_attempts,
        status=status,
    ) == 1


class ArtworkWorker(threading.Thread):
    def __init__(self, work_queue, service_factory):
        super().__init__(daemon=True)
        self._queue = work_queue
        self._service_factory = service_factory
        self.last_processed_at = None

    def run(self):
        while True:
            item = self._queue.get()
            config = item.get("config") or {}
            try:
                service = self._service_factory(config)
                process_entity(
                    service,
                    item.get("entity_id"),
                    retry_attempts=config.get("retry_attempts", 1),
                )
            except Exception:
                logging.exception("Artwork worker failed")
            finally:
                self.last_processed_at = datetime.now(timezone.utc).isoformat()
                self._queue.task_done()
            rate_limit = config.get("rate_limit_seconds", 1.0)
            try:
                rate = float(rate_limit)
            except (TypeError, ValueError):
                rate = 1.0
            if rate > 0:
                time.sleep(rate)
