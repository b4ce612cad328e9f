"""
Local byte storage for the content store.

Two interchangeable backends exist; the content store picks one at
construction time and never branches on the platform afterwards:

- ``FilesystemBackend`` writes ``rag_images/<id>.<ext>`` files under the
  store root
- ``EmbeddedBackend`` keeps the bytes as blobs in the store's SQLite file
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol

from office2md.config import BACKEND_EMBEDDED, BACKEND_FILESYSTEM, ContentStoreConfig
from office2md.storage.records import open_database
from office2md.storage.remote import mime_to_extension

logger = logging.getLogger(__name__)

IMAGES_DIR = "rag_images"
DATABASE_NAME = "office2md.db"

_BLOB_SCHEMA = """\
CREATE TABLE IF NOT EXISTS images (
    content_id TEXT PRIMARY KEY,
    data BLOB NOT NULL
);
"""


class Backend(Protocol):
    """Stores raw bytes by content id. ``mime`` selects the file extension."""

    name: str

    def write(self, content_id: str, data: bytes, mime: str) -> None: ...

    def read(self, content_id: str, mime: str) -> bytes | None:
        """Bytes of ``content_id``; raises ``OSError`` when storage is unreadable."""
        ...

    def delete(self, content_id: str, mime: str | None) -> None: ...

    def close(self) -> None: ...


class FilesystemBackend:
    name = BACKEND_FILESYSTEM

    def __init__(self, root: Path):
        self.directory = Path(root) / IMAGES_DIR

    def path_for(self, content_id: str, mime: str | None) -> Path:
        return self.directory / f"{content_id}.{mime_to_extension(mime)}"

    def write(self, content_id: str, data: bytes, mime: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(content_id, mime)
        # Each writer gets its own temp file; the rename is atomic.
        tmp = tempfile.NamedTemporaryFile(
            dir=self.directory, prefix=f"{path.name}.", suffix=".tmp", delete=False
        )
        try:
            with tmp:
                tmp.write(data)
            os.replace(tmp.name, path)
        except Exception:
            Path(tmp.name).unlink(missing_ok=True)
            raise

    def read(self, content_id: str, mime: str) -> bytes | None:
        return self.path_for(content_id, mime).read_bytes()

    def delete(self, content_id: str, mime: str | None) -> None:
        if not mime:
            return
        try:
            self.path_for(content_id, mime).unlink()
        except OSError as exc:
            logger.debug("Ignoring failed deletion of %s: %s", content_id, exc)

    def close(self) -> None:
        pass


class EmbeddedBackend:
    name = BACKEND_EMBEDDED

    def __init__(self, db_path: Path):
        self._conn = open_database(Path(db_path))
        self._conn.executescript(_BLOB_SCHEMA)
        self._lock = threading.Lock()

    def write(self, content_id: str, data: bytes, mime: str) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO images (content_id, data) VALUES (?, ?)",
                (content_id, data),
            )

    def read(self, content_id: str, mime: str) -> bytes | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM images WHERE content_id = ?", (content_id,)
            ).fetchone()
        return bytes(row[0]) if row else None

    def delete(self, content_id: str, mime: str | None) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM images WHERE content_id = ?", (content_id,))

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def create_backend(config: ContentStoreConfig) -> Backend:
    if config.backend == BACKEND_EMBEDDED:
        return EmbeddedBackend(config.root / DATABASE_NAME)
    return FilesystemBackend(config.root)
