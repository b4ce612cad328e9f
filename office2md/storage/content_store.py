"""
Content-addressed persistence for images extracted from documents.

Bytes are stored under the SHA-1 hex digest of their content. The local
backend is the durability guarantee: every ``save`` completes locally before
it returns, while the upload to the remote store runs as a detached task on a
small thread pool. Uploads are never cancelled or joined by ``save``; their
failures are logged and dropped. ``flush`` waits for in-flight uploads, which
is useful before the process exits.

Local failures (unwritable store directory, corrupt SQLite file) propagate to
the caller.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Iterable

from office2md.config import ContentStoreConfig
from office2md.storage.backends import DATABASE_NAME, Backend, create_backend
from office2md.storage.records import ContentRecord, RecordIndex
from office2md.storage.remote import RemoteMediaClient

logger = logging.getLogger(__name__)


def content_id_for(data: bytes) -> str:
    """Stable identifier of ``data``: identical bytes always map to the same id."""
    return hashlib.sha1(data).hexdigest()


class ContentStore:
    def __init__(
        self,
        config: ContentStoreConfig | None = None,
        *,
        backend: Backend | None = None,
        index: RecordIndex | None = None,
        remote: RemoteMediaClient | None = None,
    ):
        self.config = config or ContentStoreConfig.from_env()
        self.backend = backend or create_backend(self.config)
        self.index = index or RecordIndex(self.config.root / DATABASE_NAME)
        self.remote = remote or RemoteMediaClient(
            self.config.remote_url,
            self.config.session_id,
            timeout=self.config.remote_timeout,
        )
        self._executor: ThreadPoolExecutor | None = None
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()
        logger.debug(
            "Content store at %s using the %s backend (remote %s)",
            self.config.root,
            self.backend.name,
            "enabled" if self.remote.enabled else "disabled",
        )

    # -- remote sync -----------------------------------------------------------

    def _upload(self, content_id: str, data: bytes, mime: str, chat_id: str) -> None:
        try:
            if self.remote.upload(content_id, data, mime, chat_id):
                self.index.add_uploaded_chat(content_id, chat_id)
        except Exception as exc:
            logger.warning("Remote image upload failed for %s: %s", content_id, exc)

    def _schedule_upload(
        self, content_id: str, data: bytes, mime: str, chat_id: str | None
    ) -> Future | None:
        if not chat_id or not self.remote.enabled:
            return None
        with self._pending_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=max(1, self.config.upload_workers),
                    thread_name_prefix="office2md-upload",
                )
            future = self._executor.submit(
                self._upload, content_id, data, mime, chat_id
            )
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _fetch_remote(self, content_id: str, chat_id: str | None) -> bytes | None:
        fetched = self.remote.fetch(content_id, chat_id)
        if fetched is None:
            return None
        data, mime = fetched
        previous = self.index.get(content_id)
        self.save(
            content_id,
            data,
            mime=mime,
            width=previous.width if previous else 0,
            height=previous.height if previous else 0,
            skip_remote=True,
        )
        return data

    # -- public API ------------------------------------------------------------

    def save(
        self,
        content_id: str,
        data: bytes,
        *,
        mime: str = "application/octet-stream",
        width: int = 0,
        height: int = 0,
        chat_id: str | None = None,
        skip_remote: bool = False,
        uploaded_chats: list[str] | None = None,
    ) -> ContentRecord:
        """
        Persist ``data`` locally, merge its ContentRecord and schedule the
        remote upload unless ``skip_remote`` is set.
        """
        self.backend.write(content_id, data, mime)
        record = self.index.upsert(
            content_id,
            mime=mime,
            width=width,
            height=height,
            byte_size=len(data),
            uploaded_chats=uploaded_chats,
        )
        if not skip_remote:
            self._schedule_upload(content_id, data, mime, chat_id)
        return record

    def sync_to_chat(self, content_id: str, chat_id: str | None) -> Future | None:
        """Upload already stored content for a chat that has not received it yet."""
        if not chat_id or not self.remote.enabled:
            return None
        record = self.index.get(content_id)
        if record is None or chat_id in record.uploaded_chats:
            return None
        data = self.get(content_id)
        if data is None:
            return None
        return self._schedule_upload(content_id, data, record.mime, chat_id)

    def get(self, content_id: str, chat_id: str | None = None) -> bytes | None:
        """
        Bytes of ``content_id``, looked up locally first and then remotely.

        Remote hits are persisted locally without being uploaded again. Returns
        None when no source has the content.
        """
        record = self.index.get(content_id)
        if record is None:
            return self._fetch_remote(content_id, chat_id)
        try:
            data = self.backend.read(content_id, record.mime)
        except OSError as exc:
            logger.warning("Local read of %s failed: %s", content_id, exc)
            data = None
        if data is None:
            return self._fetch_remote(content_id, chat_id)
        return data

    def get_record(self, content_id: str) -> ContentRecord | None:
        return self.index.get(content_id)

    def has_image(self, content_id: str) -> bool:
        return self.index.exists(content_id)

    def is_uploaded_for_chat(self, content_id: str, chat_id: str | None) -> bool:
        if not content_id or not chat_id:
            return False
        record = self.index.get(content_id)
        return record is not None and chat_id in record.uploaded_chats

    def mark_uploaded_for_chat(self, content_id: str, chat_id: str | None) -> None:
        if not content_id or not chat_id:
            return
        self.index.add_uploaded_chat(content_id, chat_id)

    def delete(self, content_id: str) -> None:
        if not content_id:
            return
        record = self.index.get(content_id)
        self.backend.delete(content_id, record.mime if record else None)
        self.index.delete(content_id)

    def delete_many(self, content_ids: Iterable[str]) -> None:
        for content_id in content_ids:
            self.delete(content_id)

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for in-flight uploads; True when all of them finished."""
        with self._pending_lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self) -> None:
        self.flush()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self.backend.close()
        self.index.close()

    def __enter__(self) -> "ContentStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
