from office2md.storage.backends import EmbeddedBackend, FilesystemBackend
from office2md.storage.content_store import ContentStore, content_id_for
from office2md.storage.records import ContentRecord, RecordIndex
from office2md.storage.remote import RemoteMediaClient

__all__ = [
    "ContentRecord",
    "ContentStore",
    "EmbeddedBackend",
    "FilesystemBackend",
    "RecordIndex",
    "RemoteMediaClient",
    "content_id_for",
]
