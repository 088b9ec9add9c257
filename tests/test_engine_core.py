import os
import tempfile
import unittest

from engine.core import EngineStatus, get_status, run_artwork_sync
from engine.paths import EnginePaths


class LockedList(list):
    """List whose length may only be read while the owning status lock is held."""

    def __init__(self, lock):
        super().__init__()
        self._lock = lock

    def __len__(self):
        if not self._lock.locked():
            raise AssertionError("status list read without holding status.lock")
        return super().__len__()


class RunArtworkSyncTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        root = self.tmpdir.name
        self.paths = EnginePaths(
            log_dir=os.path.join(root, "logs"),
            log_file=os.path.join(root, "logs", "artwork.log"),
            db_path=os.path.join(root, "database", "library.sqlite"),
        )
        self.config = {"artwork": {"face_detection": False, "rate_limit_seconds": 0}}

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_summary_reads_status_under_lock(self):
        status = EngineStatus()
        status.run_successes = LockedList(status.lock)
        status.run_failures = LockedList(status.lock)
        with self.assertLogs(level="INFO") as logs:
            result = run_artwork_sync(self.config, paths=self.paths, status=status)
        self.assertIs(result, status)
        self.assertTrue(any("Artwork sync finished: 0 ok, 0 failed" in line for line in logs.output))

    def test_empty_library_completes(self):
        status = run_artwork_sync(self.config, paths=self.paths)
        snapshot = get_status(status)
        self.assertIsNone(snapshot["current_phase"])
        self.assertIsNotNone(snapshot["last_completed_at"])
        self.assertEqual(snapshot["run_failures"], [])
        self.assertIsNone(snapshot["last_error_message"])


if __name__ == "__main__":
    unittest.main()
