"""Shared fixtures: a local-only content store and a conversion session."""

import pytest

from office2md.config import ContentStoreConfig
from office2md.media.session import ConversionSession
from office2md.storage.content_store import ContentStore


@pytest.fixture
def store(tmp_path):
    content_store = ContentStore(ContentStoreConfig(root=tmp_path / "store"))
    yield content_store
    content_store.close()


@pytest.fixture
def session(store):
    return ConversionSession(store=store)
