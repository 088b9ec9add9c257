import base64
import hashlib
import json
import logging
import sqlite3
from dataclasses import dataclass
from uuid import uuid4


class DocumentStoreError(Exception):
    pass


class DocumentNotFound(DocumentStoreError):
    def __init__(self, collection, doc_id, attachment=None):
        self.collection = collection
        self.doc_id = doc_id
        self.attachment = attachment
        target = f"{collection}/{doc_id}"
        if attachment:
            target = f"{target}#{attachment}"
        super().__init__(f"Document not found: {target}")


class RevisionConflict(DocumentStoreError):
    def __init__(self, collection, doc_id, expected, actual):
        self.collection = collection
        self.doc_id = doc_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Revision conflict on {collection}/{doc_id}: expected {actual}, got {expected}"
        )


def ensure_document_tables(conn):
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS documents (
            collection TEXT NOT NULL,
            id TEXT NOT NULL,
            rev TEXT NOT NULL,
            body_json TEXT,
            PRIMARY KEY (collection, id)
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS attachments (
            collection TEXT NOT NULL,
            doc_id TEXT NOT NULL,
            name TEXT NOT NULL,
            content_type TEXT,
            length INTEGER NOT NULL DEFAULT 0,
            digest TEXT,
            data BLOB,
            PRIMARY KEY (collection, doc_id, name)
        )
        """
    )
    existing = {row[1] for row in cur.execute("PRAGMA table_info(attachments)").fetchall()}
    columns = {
        "content_type": "content_type TEXT",
        "length": "length INTEGER DEFAULT 0",
        "digest": "digest TEXT",
    }
    for name, ddl in columns.items():
        if name not in existing:
            cur.execute(f"ALTER TABLE attachments ADD COLUMN {ddl}")
            logging.warning("Migrated attachments: added column %s", name)
    cur.execute("CREATE INDEX IF NOT EXISTS idx_attachments_doc ON attachments (collection, doc_id)")
    conn.commit()


def _next_rev(current):
    generation = 0
    if current:
        try:
            generation = int(str(current).split("-", 1)[0])
        except ValueError:
            generation = 0
    return f"{generation + 1}-{uuid4().hex}"


def _digest(data):
    return "md5-" + base64.b64encode(hashlib.md5(data).digest()).decode("ascii")


def _strip_meta(doc):
    return {key: value for key, value in doc.items() if not str(key).startswith("_")}


@dataclass(frozen=True)
class Attachment:
    name: str
    content_type: str | None
    data: bytes
    digest: str | None

    @classmethod
    def from_row(cls, row):
        return cls(
            name=row["name"],
            content_type=row["content_type"],
            data=bytes(row["data"] or b""),
            digest=row["digest"],
        )


class DocumentStore:
    def __init__(self, db_path, collection):
        if not collection:
            raise ValueError("collection is required")
        self.db_path = db_path
        self.collection = collection

    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _require_rev(self, cur, doc_id):
        row = cur.execute(
            "SELECT rev FROM documents WHERE collection=? AND id=?",
            (self.collection, doc_id),
        ).fetchone()
        if not row:
            raise DocumentNotFound(self.collection, doc_id)
        return row["rev"]

    def get(self, doc_id):
        with self._connect() as conn:
            ensure_document_tables(conn)
            row = conn.execute(
                "SELECT * FROM documents WHERE collection=? AND id=?",
                (self.collection, doc_id),
            ).fetchone()
            if not row:
                raise DocumentNotFound(self.collection, doc_id)
            stubs = conn.execute(
                """
                SELECT name, content_type, length, digest FROM attachments
                WHERE collection=? AND doc_id=?
                ORDER BY rowid ASC
                """,
                (self.collection, doc_id),
            ).fetchall()
        doc = json.loads(row["body_json"]) if row["body_json"] else {}
        doc["_id"] = row["id"]
        doc["_rev"] = row["rev"]
        doc["_attachments"] = {
            stub["name"]: {
                "content_type": stub["content_type"],
                "length": stub["length"],
                "digest": stub["digest"],
            }
            for stub in stubs
        }
        return doc

    def exists(self, doc_id):
        with self._connect() as conn:
            ensure_document_tables(conn)
            row = conn.execute(
                "SELECT 1 FROM documents WHERE collection=? AND id=? LIMIT 1",
                (self.collection, doc_id),
            ).fetchone()
            return row is not None

    def put(self, doc):
        doc_id = doc.get("_id")
        if not doc_id:
            raise ValueError("_id is required")
        expected = doc.get("_rev")
        body = json.dumps(_strip_meta(doc), sort_keys=True, default=str)
        with self._connect() as conn:
            ensure_document_tables(conn)
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            row = cur.execute(
                "SELECT rev FROM documents WHERE collection=? AND id=?",
                (self.collection, doc_id),
            ).fetchone()
            if row is None:
                if expected:
                    conn.rollback()
                    raise DocumentNotFound(self.collection, doc_id)
                new_rev = _next_rev(None)
                cur.execute(
                    "INSERT INTO documents (collection, id, rev, body_json) VALUES (?, ?, ?, ?)",
                    (self.collection, doc_id, new_rev, body),
                )
            else:
                if expected != row["rev"]:
                    conn.rollback()
                    raise RevisionConflict(self.collection, doc_id, expected, row["rev"])
                new_rev = _next_rev(row["rev"])
                cur.execute(
                    "UPDATE documents SET rev=?, body_json=? WHERE collection=? AND id=?",
                    (new_rev, body, self.collection, doc_id),
                )
            conn.commit()
        return new_rev

    def put_attachment(self, doc_id, name, rev, data, content_type):
        if not name:
            raise ValueError("attachment name is required")
        data = bytes(data or b"")
        with self._connect() as conn:
            ensure_document_tables(conn)
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            try:
                current = self._require_rev(cur, doc_id)
            except DocumentNotFound:
                conn.rollback()
                raise
            if rev != current:
                conn.rollback()
                raise RevisionConflict(self.collection, doc_id, rev, current)
            new_rev = _next_rev(current)
            cur.execute(
                """
                INSERT INTO attachments (collection, doc_id, name, content_type, length, digest, data)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (collection, doc_id, name) DO UPDATE SET
                    content_type=excluded.content_type,
                    length=excluded.length,
                    digest=excluded.digest,
                    data=excluded.data
                """,
                (self.collection, doc_id, name, content_type, len(data), _digest(data), sqlite3.Binary(data)),
            )
            cur.execute(
                "UPDATE documents SET rev=? WHERE collection=? AND id=?",
                (new_rev, self.collection, doc_id),
            )
            conn.commit()
        return new_rev

    def get_attachment(self, doc_id, name):
        with self._connect() as conn:
            ensure_document_tables(conn)
            row = conn.execute(
                """
                SELECT name, content_type, digest, data FROM attachments
                WHERE collection=? AND doc_id=? AND name=?
                """,
                (self.collection, doc_id, name),
            ).fetchone()
        if not row:
            raise DocumentNotFound(self.collection, doc_id, attachment=name)
        return Attachment.from_row(row)

    def all_ids(self):
        with self._connect() as conn:
            ensure_document_tables(conn)
            rows = conn.execute(
                "SELECT id FROM documents WHERE collection=? ORDER BY rowid ASC",
                (self.collection,),
            ).fetchall()
            return [row["id"] for row in rows]

    def remove(self, doc_id, rev):
        with self._connect() as conn:
            ensure_document_tables(conn)
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            try:
                current = self._require_rev(cur, doc_id)
            except DocumentNotFound:
                conn.rollback()
                raise
            if rev != current:
                conn.rollback()
                raise RevisionConflict(self.collection, doc_id, rev, current)
            cur.execute(
                "DELETE FROM attachments WHERE collection=? AND doc_id=?",
                (self.collection, doc_id),
            )
            cur.execute(
                "DELETE FROM documents WHERE collection=? AND id=?",
                (self.collection, doc_id),
            )
            conn.commit()
