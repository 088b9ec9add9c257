import functools
import logging
import queue as queue_lib
import threading

from engine.core import build_artwork_service, normalize_artwork_config

from .worker import ArtworkWorker

_QUEUE = queue_lib.Queue()
_WORKER = None
_LOCK = threading.Lock()


def _service_for(paths, config):
    return build_artwork_service({"artwork": config}, paths)


def enqueue_artwork(entity_id, config, paths):
    if not entity_id:
        return False
    item = {
        "entity_id": entity_id,
        "config": normalize_artwork_config(config),
    }
    with _LOCK:
        global _WORKER
        if _WORKER is None or not _WORKER.is_alive():
            _WORKER = ArtworkWorker(_QUEUE, functools.partial(_service_for, paths))
            _WORKER.start()
            logging.info("Artwork worker started")
    _QUEUE.put(item)
    return True


def pending_count():
    return _QUEUE.qsize()
