import os
import tempfile
import unittest

from engine.document_store import DocumentNotFound, DocumentStore, RevisionConflict


class DocumentStoreTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmpdir.name, "library.sqlite")
        self.store = DocumentStore(self.db_path, "artworks")

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_put_and_get_round_trip(self):
        rev = self.store.put({"_id": "artworks/a1", "owner": "a1", "date": 1})
        doc = self.store.get("artworks/a1")
        self.assertEqual(doc["_rev"], rev)
        self.assertTrue(rev.startswith("1-"))
        self.assertEqual(doc["owner"], "a1")
        self.assertEqual(doc["_attachments"], {})

    def test_get_missing_raises_not_found(self):
        with self.assertRaises(DocumentNotFound):
            self.store.get("artworks/missing")

    def test_update_requires_current_revision(self):
        rev = self.store.put({"_id": "doc", "value": 1})
        with self.assertRaises(RevisionConflict):
            self.store.put({"_id": "doc", "value": 2})
        new_rev = self.store.put({"_id": "doc", "_rev": rev, "value": 2})
        self.assertTrue(new_rev.startswith("2-"))
        self.assertEqual(self.store.get("doc")["value"], 2)

    def test_attachment_writes_need_latest_revision(self):
        rev = self.store.put({"_id": "artworks/a1", "owner": "a1"})
        rev2 = self.store.put_attachment("artworks/a1", "hq", rev, b"hq-bytes", "image/jpeg")
        with self.assertRaises(RevisionConflict):
            self.store.put_attachment("artworks/a1", "large", rev, b"large-bytes", "image/jpeg")
        rev3 = self.store.put_attachment("artworks/a1", "large", rev2, b"large-bytes", "image/jpeg")
        self.assertNotEqual(rev2, rev3)

        doc = self.store.get("artworks/a1")
        self.assertEqual(doc["_rev"], rev3)
        self.assertEqual(list(doc["_attachments"]), ["hq", "large"])
        self.assertEqual(doc["_attachments"]["hq"]["length"], len(b"hq-bytes"))
        self.assertTrue(doc["_attachments"]["hq"]["digest"].startswith("md5-"))

        attachment = self.store.get_attachment("artworks/a1", "hq")
        self.assertEqual(attachment.data, b"hq-bytes")
        self.assertEqual(attachment.content_type, "image/jpeg")

    def test_attachment_on_missing_document(self):
        with self.assertRaises(DocumentNotFound):
            self.store.put_attachment("artworks/none", "hq", "1-abc", b"x", "image/png")
        self.store.put({"_id": "artworks/a1"})
        with self.assertRaises(DocumentNotFound):
            self.store.get_attachment("artworks/a1", "small")

    def test_all_ids_keeps_insertion_order_per_collection(self):
        albums = DocumentStore(self.db_path, "albums")
        self.store.put({"_id": "b"})
        self.store.put({"_id": "a"})
        albums.put({"_id": "z"})
        self.assertEqual(self.store.all_ids(), ["b", "a"])
        self.assertEqual(albums.all_ids(), ["z"])
        self.assertFalse(albums.exists("a"))

    def test_remove_deletes_document_and_attachments(self):
        rev = self.store.put({"_id": "artworks/a1"})
        rev = self.store.put_attachment("artworks/a1", "hq", rev, b"x", "image/png")
        self.store.remove("artworks/a1", rev)
        self.assertFalse(self.store.exists("artworks/a1"))
        with self.assertRaises(DocumentNotFound):
            self.store.get_attachment("artworks/a1", "hq")


if __name__ == "__main__":
    unittest.main()
