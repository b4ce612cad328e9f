"""ContentRecord index backed by a local SQLite database."""

from __future__ import annotations

import json
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS image_meta (
    content_id TEXT PRIMARY KEY,
    mime TEXT NOT NULL,
    width INTEGER NOT NULL DEFAULT 0,
    height INTEGER NOT NULL DEFAULT 0,
    byte_size INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    uploaded_chats_json TEXT NOT NULL DEFAULT '[]'
);
"""


@dataclass
class ContentRecord:
    content_id: str
    mime: str = "application/octet-stream"
    width: int = 0
    height: int = 0
    byte_size: int = 0
    created_at: datetime | None = None
    uploaded_chats: list[str] = field(default_factory=list)


def open_database(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    # isolation_level=None => autocommit mode, transactions are explicit.
    # Upload workers touch the index too, hence check_same_thread=False.
    conn = sqlite3.connect(
        str(db_path), isolation_level=None, timeout=5, check_same_thread=False
    )
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


class RecordIndex:
    """
    Persistent ContentRecords keyed by content id.

    Writes that touch ``uploaded_chats`` run as read-modify-write inside
    ``BEGIN IMMEDIATE`` so concurrent savers never drop a recorded chat id.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._conn = open_database(self.db_path)
        self._conn.executescript(_SCHEMA)
        self._lock = threading.Lock()

    # -- helpers ---------------------------------------------------------------

    def _now_iso(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def _row_to_record(self, row: tuple) -> ContentRecord:
        content_id, mime, width, height, byte_size, created_at, chats_json = row
        return ContentRecord(
            content_id=content_id,
            mime=mime,
            width=width,
            height=height,
            byte_size=byte_size,
            created_at=datetime.fromisoformat(created_at),
            uploaded_chats=json.loads(chats_json),
        )

    def _select(self, cursor: sqlite3.Cursor, content_id: str) -> tuple | None:
        return cursor.execute(
            "SELECT content_id, mime, width, height, byte_size, created_at, "
            "uploaded_chats_json FROM image_meta WHERE content_id = ?",
            (content_id,),
        ).fetchone()

    # -- index operations ------------------------------------------------------

    def get(self, content_id: str) -> ContentRecord | None:
        with self._lock:
            row = self._select(self._conn.cursor(), content_id)
        return self._row_to_record(row) if row else None

    def exists(self, content_id: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM image_meta WHERE content_id = ?", (content_id,)
            ).fetchone()
        return row is not None

    def upsert(
        self,
        content_id: str,
        *,
        mime: str,
        width: int,
        height: int,
        byte_size: int,
        uploaded_chats: list[str] | None = None,
    ) -> ContentRecord:
        """
        Create or refresh the record of ``content_id``.

        ``created_at`` survives re-saves and ``uploaded_chats`` is merged with
        whatever the stored record already holds.
        """
        with self._lock:
            cursor = self._conn.cursor()
            try:
                cursor.execute("BEGIN IMMEDIATE")
                row = self._select(cursor, content_id)
                if row is None:
                    created_at = self._now_iso()
                    chats: list[str] = []
                else:
                    created_at = row[5]
                    chats = json.loads(row[6])
                for chat_id in uploaded_chats or []:
                    if chat_id not in chats:
                        chats.append(chat_id)
                cursor.execute(
                    "INSERT OR REPLACE INTO image_meta (content_id, mime, width, "
                    "height, byte_size, created_at, uploaded_chats_json) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        content_id,
                        mime,
                        width,
                        height,
                        byte_size,
                        created_at,
                        json.dumps(chats),
                    ),
                )
                cursor.execute("COMMIT")
            except Exception:
                self._conn.rollback()
                raise
        return ContentRecord(
            content_id=content_id,
            mime=mime,
            width=width,
            height=height,
            byte_size=byte_size,
            created_at=datetime.fromisoformat(created_at),
            uploaded_chats=chats,
        )

    def add_uploaded_chat(self, content_id: str, chat_id: str) -> bool:
        """Append ``chat_id``; returns False when no record exists."""
        with self._lock:
            cursor = self._conn.cursor()
            try:
                cursor.execute("BEGIN IMMEDIATE")
                row = cursor.execute(
                    "SELECT uploaded_chats_json FROM image_meta WHERE content_id = ?",
                    (content_id,),
                ).fetchone()
                if row is None:
                    cursor.execute("COMMIT")
                    return False
                chats = json.loads(row[0])
                if chat_id not in chats:
                    chats.append(chat_id)
                    cursor.execute(
                        "UPDATE image_meta SET uploaded_chats_json = ? WHERE content_id = ?",
                        (json.dumps(chats), content_id),
                    )
                cursor.execute("COMMIT")
            except Exception:
                self._conn.rollback()
                raise
        return True

    def delete(self, content_id: str) -> None:
        with self._lock:
            self._conn.execute(
                "DELETE FROM image_meta WHERE content_id = ?", (content_id,)
            )

    def count(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM image_meta").fetchone()[0]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
