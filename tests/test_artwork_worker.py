import os
import queue as queue_lib
import tempfile
import threading
import unittest
from unittest import mock

from artwork import queue as artwork_queue
from artwork.entities import Album, Artist
from artwork.worker import ArtworkTask, ArtworkWorker, build_tasks, process_all, process_entity, run_tasks
from engine.core import EngineStatus
from engine.document_store import DocumentNotFound, DocumentStore


class FakeService:
    def __init__(self, artists, albums, failures=None):
        self.artists = artists
        self.albums = albums
        self.failures = dict(failures or {})
        self.calls = []

    def load_entity(self, entity_id):
        try:
            return Artist.from_doc(self.artists.get(entity_id))
        except DocumentNotFound:
            return Album.from_doc(self.albums.get(entity_id))

    def download_hq_cover(self, entity):
        self.calls.append(entity.id)
        remaining = self.failures.get(entity.id, 0)
        if remaining:
            self.failures[entity.id] = remaining - 1
            raise RuntimeError(f"boom {entity.id}")
        return "saved"


class BrokenStore:
    def all_ids(self):
        raise RuntimeError("database unavailable")


class ArtworkWorkerTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "library.sqlite")
        self.artists = DocumentStore(db_path, "artists")
        self.albums = DocumentStore(db_path, "albums")
        self.artists.put({"_id": "ar1", "name": "Boards of Canada"})
        self.artists.put({"_id": "ar2", "name": "Autechre"})
        self.albums.put({"_id": "al1", "name": "Geogaddi", "artist": "ar1"})
        self.albums.put({"_id": "al2", "name": "Tri Repetae", "artist": "ar2"})

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_build_tasks_resolves_artists_then_albums(self):
        service = FakeService(self.artists, self.albums)
        tasks = build_tasks(service)
        self.assertEqual([task.entity.id for task in tasks], ["ar1", "ar2", "al1", "al2"])
        self.assertIsInstance(tasks[0].entity, Artist)
        self.assertIsInstance(tasks[2].entity, Album)
        self.assertEqual(tasks[2].entity.kind, "release")
        self.assertEqual(tasks[0](), "saved")

    def test_failed_task_is_retried_once(self):
        service = FakeService(self.artists, self.albums, failures={"ar2": 1})
        status = EngineStatus()
        completed = run_tasks(build_tasks(service), status=status)
        self.assertEqual(completed, 4)
        self.assertEqual(service.calls, ["ar1", "ar2", "ar2", "al1", "al2"])
        self.assertEqual(status.run_failures, [])
        self.assertEqual(status.progress_percent, 100)

    def test_double_failure_does_not_stop_batch(self):
        service = FakeService(self.artists, self.albums, failures={"ar2": 5})
        status = EngineStatus()
        completed = run_tasks(build_tasks(service), status=status)
        self.assertEqual(completed, 3)
        self.assertEqual(service.calls, ["ar1", "ar2", "ar2", "al1", "al2"])
        self.assertEqual(status.run_failures, ["ar2"])
        self.assertEqual(status.run_successes, ["ar1", "al1", "al2"])

    def test_retry_attempts_zero_runs_once(self):
        service = FakeService(self.artists, self.albums, failures={"ar1": 1})
        run_tasks(build_tasks(service), retry_attempts=0)
        self.assertEqual(service.calls.count("ar1"), 1)

    def test_stop_event_halts_before_next_task(self):
        stop_event = threading.Event()
        service = FakeService(self.artists, self.albums)

        def _stop_after_first(entity):
            service.calls.append(entity.id)
            stop_event.set()

        tasks = [ArtworkTask(task.entity, _stop_after_first) for task in build_tasks(service)]
        run_tasks(tasks, stop_event=stop_event, rate_limit_seconds=5)
        self.assertEqual(service.calls, ["ar1"])

    def test_process_all_swallows_enumeration_failure(self):
        service = FakeService(BrokenStore(), self.albums)
        status = EngineStatus()
        with self.assertLogs(level="ERROR"):
            process_all(service, status=status)
        self.assertEqual(status.last_error_message, "database unavailable")
        self.assertEqual(service.calls, [])

    def test_process_all_runs_every_entity(self):
        service = FakeService(self.artists, self.albums, failures={"al1": 2})
        process_all(service, rate_limit_seconds=0)
        self.assertEqual(service.calls, ["ar1", "ar2", "al1", "al1", "al2"])

    def test_process_entity(self):
        service = FakeService(self.artists, self.albums)
        self.assertTrue(process_entity(service, "al2"))
        self.assertFalse(process_entity(service, "nope"))
        self.assertEqual(service.calls, ["al2"])

    def test_background_worker_processes_queued_entity(self):
        service = FakeService(self.artists, self.albums)
        work_queue = queue_lib.Queue()
        configs = []

        def _factory(config):
            configs.append(config)
            return service

        ArtworkWorker(work_queue, _factory).start()
        work_queue.put({"entity_id": "al1", "config": {"retry_attempts": 1, "rate_limit_seconds": 0}})
        work_queue.put({"entity_id": "missing", "config": {"rate_limit_seconds": 0}})
        work_queue.join()
        self.assertEqual(service.calls, ["al1"])
        self.assertEqual(len(configs), 2)

    def test_enqueue_artwork_runs_entity_in_background(self):
        service = FakeService(self.artists, self.albums, failures={"ar2": 1})
        work_queue = queue_lib.Queue()
        factory = mock.Mock(return_value=service)
        with mock.patch.object(artwork_queue, "_QUEUE", work_queue), \
                mock.patch.object(artwork_queue, "_WORKER", None), \
                mock.patch.object(artwork_queue, "_service_for", factory):
            self.assertFalse(artwork_queue.enqueue_artwork("", {}, "paths"))
            self.assertTrue(
                artwork_queue.enqueue_artwork("ar2", {"artwork": {"rate_limit_seconds": 0}}, "paths")
            )
            work_queue.join()
            self.assertEqual(artwork_queue.pending_count(), 0)
        self.assertEqual(service.calls, ["ar2", "ar2"])
        paths, config = factory.call_args.args
        self.assertEqual(paths, "paths")
        self.assertEqual(config["rate_limit_seconds"], 0)
        self.assertEqual(config["retry_attempts"], 1)


if __name__ == "__main__":
    unittest.main()
