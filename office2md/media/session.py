from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator

from office2md.config import (
    DEFAULT_LABELS,
    DEFAULT_MEDIA_LIMITS,
    DEFAULT_PDF_LAYOUT,
    ContentStoreConfig,
    MarkdownLabels,
    MediaLimits,
    PdfLayoutOptions,
)
from office2md.media.rendering import (
    VectorRendererRegistry,
    rasterize_pdf_page,
    rasterize_svg,
)
from office2md.storage.content_store import ContentStore

logger = logging.getLogger(__name__)


@dataclass
class ConversionSession:
    """
    State shared by the conversions run with it.

    The media cache is reset for every document and the renderer registry
    lives and dies with the session; the content store may be shared between
    sessions. Without an explicit store, one configured from the environment
    is created on first use. That store belongs to the session and ``close``
    releases it; a store passed in by the caller is never closed here.
    """

    store: ContentStore | None = None
    chat_id: str | None = None
    labels: MarkdownLabels = DEFAULT_LABELS
    limits: MediaLimits = DEFAULT_MEDIA_LIMITS
    pdf_layout: PdfLayoutOptions = DEFAULT_PDF_LAYOUT
    renderers: VectorRendererRegistry = field(default_factory=VectorRendererRegistry)
    svg_rasterizer: Callable = rasterize_svg
    page_rasterizer: Callable = rasterize_pdf_page
    media_cache: dict[str, str] = field(default_factory=dict)
    image_count: int = 0
    _owns_store: bool = field(default=False, init=False, repr=False)

    def get_store(self) -> ContentStore:
        if self.store is None:
            self.store = ContentStore(ContentStoreConfig.from_env())
            self._owns_store = True
        return self.store

    def start_document(self) -> int:
        """
        Reset per-document state and return the running image count.

        Cache keys are package part paths, which repeat between documents.
        """
        self.media_cache.clear()
        return self.image_count

    def next_image_number(self) -> int:
        self.image_count += 1
        return self.image_count

    def close(self) -> None:
        if self._owns_store and self.store is not None:
            logger.debug("Closing the content store created for this session")
            self.store.close()
            self.store = None
        self._owns_store = False

    def __enter__(self) -> "ConversionSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


@contextmanager
def session_scope(session: ConversionSession | None) -> Iterator[ConversionSession]:
    """
    Yield ``session``, or a fresh one that is closed when the block exits.

    Readers convert inside this scope so a store they had to create for a
    one-off call does not outlive the call.
    """
    if session is not None:
        yield session
        return
    with ConversionSession() as owned:
        yield owned
