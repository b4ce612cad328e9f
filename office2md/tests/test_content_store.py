import threading
from unittest import TestCase
from unittest.mock import MagicMock

import pytest

from office2md.config import BACKEND_EMBEDDED, ContentStoreConfig
from office2md.exceptions import RemoteStorageError
from office2md.storage.backends import IMAGES_DIR, EmbeddedBackend, FilesystemBackend
from office2md.storage.content_store import ContentStore, content_id_for
from office2md.storage.remote import RemoteMediaClient

tc = TestCase()

DATA = b"\x89PNG" + bytes(range(256))
CONTENT_ID = content_id_for(DATA)


class FakeRemote:
    """Stands in for RemoteMediaClient; records uploads and serves fetches."""

    enabled = True

    def __init__(self, fetch_result=None, fail_upload: bool = False):
        self.fetch_result = fetch_result
        self.fail_upload = fail_upload
        self.uploads: list[tuple[str, str]] = []
        self.fetches: list[tuple[str, str | None]] = []

    def upload(self, content_id, data, mime, chat_id) -> bool:
        if self.fail_upload:
            raise RemoteStorageError("service unavailable", status=503)
        self.uploads.append((content_id, chat_id))
        return True

    def fetch(self, content_id, chat_id):
        self.fetches.append((content_id, chat_id))
        return self.fetch_result


@pytest.fixture
def config(tmp_path):
    return ContentStoreConfig(root=tmp_path / "store")


def _store(config, remote=None) -> ContentStore:
    return ContentStore(config, remote=remote)


def test_content_id_is_stable_sha1():
    tc.assertEqual(40, len(CONTENT_ID))
    tc.assertEqual(CONTENT_ID, content_id_for(bytes(DATA)))
    tc.assertNotEqual(CONTENT_ID, content_id_for(DATA + b"!"))


class TestLocalStore:
    def test_save_is_idempotent(self, store):
        first = store.save(CONTENT_ID, DATA, mime="image/png", width=4, height=2)
        second = store.save(CONTENT_ID, DATA, mime="image/png", width=4, height=2)

        tc.assertEqual(1, store.index.count())
        tc.assertEqual(first.created_at, second.created_at)
        tc.assertEqual(DATA, store.get(CONTENT_ID))
        tc.assertTrue(store.has_image(CONTENT_ID))

    def test_files_are_written_by_content_id(self, store):
        store.save(CONTENT_ID, DATA, mime="image/png")
        path = store.config.root / IMAGES_DIR / f"{CONTENT_ID}.png"
        tc.assertTrue(path.exists())
        tc.assertEqual(DATA, path.read_bytes())

    def test_get_unknown_without_remote_returns_none(self, store):
        tc.assertIsNone(store.get("0" * 40))
        tc.assertIsNone(store.get("0" * 40, chat_id="chat-1"))

    def test_uploaded_chats_are_merged(self, store):
        store.save(CONTENT_ID, DATA, mime="image/png", uploaded_chats=["chat-a"])
        record = store.save(CONTENT_ID, DATA, mime="image/png", uploaded_chats=["chat-b"])

        tc.assertEqual(["chat-a", "chat-b"], record.uploaded_chats)
        tc.assertTrue(store.is_uploaded_for_chat(CONTENT_ID, "chat-a"))
        tc.assertFalse(store.is_uploaded_for_chat(CONTENT_ID, "chat-c"))

        store.mark_uploaded_for_chat(CONTENT_ID, "chat-c")
        tc.assertTrue(store.is_uploaded_for_chat(CONTENT_ID, "chat-c"))

    def test_delete_removes_bytes_and_record(self, store):
        store.save(CONTENT_ID, DATA, mime="image/png")
        store.delete(CONTENT_ID)

        tc.assertFalse(store.has_image(CONTENT_ID))
        tc.assertIsNone(store.get(CONTENT_ID))
        tc.assertFalse((store.config.root / IMAGES_DIR / f"{CONTENT_ID}.png").exists())

    def test_delete_many(self, store):
        other = DATA + b"other"
        other_id = content_id_for(other)
        store.save(CONTENT_ID, DATA, mime="image/png")
        store.save(other_id, other, mime="image/jpeg")

        store.delete_many([CONTENT_ID, other_id, "unknown"])
        tc.assertEqual(0, store.index.count())

    def test_embedded_backend_round_trip(self, tmp_path):
        config = ContentStoreConfig(root=tmp_path / "embedded", backend=BACKEND_EMBEDDED)
        with ContentStore(config) as store:
            tc.assertIsInstance(store.backend, EmbeddedBackend)
            store.save(CONTENT_ID, DATA, mime="image/png")
            tc.assertEqual(DATA, store.get(CONTENT_ID))
            tc.assertFalse((config.root / IMAGES_DIR).exists())


class TestRemoteSync:
    def test_save_with_chat_uploads_and_marks_chat(self, config):
        remote = FakeRemote()
        with _store(config, remote) as store:
            store.save(CONTENT_ID, DATA, mime="image/png", chat_id="chat-1")
            tc.assertTrue(store.flush(timeout=5))

            tc.assertEqual([(CONTENT_ID, "chat-1")], remote.uploads)
            tc.assertTrue(store.is_uploaded_for_chat(CONTENT_ID, "chat-1"))

    def test_save_without_chat_stays_local(self, config):
        remote = FakeRemote()
        with _store(config, remote) as store:
            store.save(CONTENT_ID, DATA, mime="image/png")
            store.flush(timeout=5)
            tc.assertEqual([], remote.uploads)

    def test_upload_failures_are_swallowed(self, config):
        remote = FakeRemote(fail_upload=True)
        with _store(config, remote) as store:
            store.save(CONTENT_ID, DATA, mime="image/png", chat_id="chat-1")
            tc.assertTrue(store.flush(timeout=5))

            tc.assertTrue(store.has_image(CONTENT_ID))
            tc.assertFalse(store.is_uploaded_for_chat(CONTENT_ID, "chat-1"))

    def test_sync_to_chat_only_uploads_for_new_chats(self, config):
        remote = FakeRemote()
        with _store(config, remote) as store:
            store.save(CONTENT_ID, DATA, mime="image/png", uploaded_chats=["chat-1"], skip_remote=True)

            tc.assertIsNone(store.sync_to_chat(CONTENT_ID, "chat-1"))
            tc.assertIsNotNone(store.sync_to_chat(CONTENT_ID, "chat-2"))
            store.flush(timeout=5)
            tc.assertEqual([(CONTENT_ID, "chat-2")], remote.uploads)

    def test_get_falls_back_to_remote_and_caches_locally(self, config):
        remote = FakeRemote(fetch_result=(DATA, "image/png"))
        with _store(config, remote) as store:
            tc.assertEqual(DATA, store.get(CONTENT_ID, chat_id="chat-1"))
            store.flush(timeout=5)

            tc.assertTrue(store.has_image(CONTENT_ID))
            tc.assertEqual([], remote.uploads)
            tc.assertEqual(1, len(remote.fetches))

            # Served locally from now on
            tc.assertEqual(DATA, store.get(CONTENT_ID, chat_id="chat-1"))
            tc.assertEqual(1, len(remote.fetches))

    def test_unreadable_local_file_falls_back_to_remote(self, config):
        remote = FakeRemote(fetch_result=(DATA, "image/png"))
        with _store(config, remote) as store:
            store.save(CONTENT_ID, DATA, mime="image/png", skip_remote=True)
            (config.root / IMAGES_DIR / f"{CONTENT_ID}.png").unlink()

            tc.assertEqual(DATA, store.get(CONTENT_ID, chat_id="chat-1"))
            tc.assertEqual([(CONTENT_ID, "chat-1")], remote.fetches)

    def test_remote_miss_returns_none(self, config):
        remote = FakeRemote(fetch_result=None)
        with _store(config, remote) as store:
            tc.assertIsNone(store.get(CONTENT_ID, chat_id="chat-1"))

    def test_connection_reset_while_fetching_returns_none(self, config):
        def reset_mid_body(request, timeout):
            response = MagicMock()
            response.getcode.return_value = 200
            response.read.side_effect = ConnectionResetError("connection reset mid-body")
            response.__enter__.return_value = response
            response.__exit__.return_value = False
            return response

        remote = RemoteMediaClient(
            "https://media.example.com", "secret", request_func=reset_mid_body
        )
        with _store(config, remote) as store:
            tc.assertIsNone(store.get(CONTENT_ID, chat_id="chat-1"))
            tc.assertFalse(store.has_image(CONTENT_ID))


def test_concurrent_writes_of_the_same_content(tmp_path):
    backend = FilesystemBackend(tmp_path)
    payload = DATA * 4096
    errors: list[Exception] = []

    def writer():
        for _ in range(25):
            try:
                backend.write(CONTENT_ID, payload, "image/png")
            except Exception as exc:
                errors.append(exc)

    threads = [threading.Thread(target=writer) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    tc.assertEqual([], errors)
    tc.assertEqual(payload, backend.read(CONTENT_ID, "image/png"))
    tc.assertEqual(
        [f"{CONTENT_ID}.png"], sorted(p.name for p in backend.directory.iterdir())
    )
