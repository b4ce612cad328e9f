"""
Runtime configuration for office2md.

All knobs are frozen dataclasses with defaults matching the tuned values of
the converters. Callers override single fields with ``dataclasses.replace``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

BACKEND_FILESYSTEM = "filesystem"
BACKEND_EMBEDDED = "embedded"
BACKENDS = (BACKEND_FILESYSTEM, BACKEND_EMBEDDED)


@dataclass(frozen=True)
class MediaLimits:
    """Sizing and byte budgets applied to embedded images."""

    emu_per_px: int = 9525
    emu_per_pt: int = 12700
    default_px: int = 300
    max_px: int = 512
    # Anything smaller is treated as noise (tracking pixels, spacers)
    min_image_bytes: int = 256
    vector_quality: int = 72
    max_vector_bytes: int = 220 * 1024
    min_vector_px: int = 64


@dataclass(frozen=True)
class PdfLayoutOptions:
    """
    Heuristics used to order and merge positioned PDF text.

    The column detection values were tuned empirically for single versus
    two-column pages; they are not meant to detect three or more columns.
    """

    simple_sort_threshold: int = 50
    bucket_size: int = 10
    gutter_search_fraction: float = 0.15
    gutter_density_ratio: float = 0.01
    same_line_tolerance: float = 3.0
    gap_threshold: float = 10.0
    margin_band: float = 0.08
    min_page_text_chars: int = 50
    page_image_max_width: int = 1200
    page_image_quality: int = 80


@dataclass(frozen=True)
class MarkdownLabels:
    """User-facing strings embedded in the Markdown output or in errors."""

    slide: str = "Slide"
    notes: str = "Notes"
    worksheet: str = "Worksheet"
    page_parse_failed: str = "Failed to parse page {number}"
    scanned_pdf: str = "This PDF may be a scan and cannot be parsed."
    unrecognized_encoding: str = "Unrecognized file encoding"


DEFAULT_MEDIA_LIMITS = MediaLimits()
DEFAULT_PDF_LAYOUT = PdfLayoutOptions()
DEFAULT_LABELS = MarkdownLabels()


def _default_store_dir() -> Path:
    return Path.home() / ".office2md" / "store"


@dataclass(frozen=True)
class ContentStoreConfig:
    """
    Where and how extracted media is persisted.

    ``session_id`` is the opaque credential sent to the remote media service.
    Without it (or without ``remote_url``) the store runs local-only.
    """

    root: Path = _default_store_dir()
    backend: str = BACKEND_FILESYSTEM
    remote_url: str | None = None
    session_id: str | None = None
    remote_timeout: float | None = None
    upload_workers: int = 2

    def __post_init__(self) -> None:
        if self.backend not in BACKENDS:
            raise ValueError(
                f"Unknown content store backend [{self.backend}], expected one of {BACKENDS}"
            )
        object.__setattr__(self, "root", Path(self.root))

    @property
    def remote_enabled(self) -> bool:
        return bool(self.remote_url) and bool(self.session_id)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "ContentStoreConfig":
        env = os.environ if environ is None else environ
        timeout = env.get("OFFICE2MD_REMOTE_TIMEOUT")
        return cls(
            root=Path(env.get("OFFICE2MD_STORE_DIR") or _default_store_dir()),
            backend=env.get("OFFICE2MD_STORE_BACKEND") or BACKEND_FILESYSTEM,
            remote_url=env.get("OFFICE2MD_REMOTE_URL") or None,
            session_id=env.get("OFFICE2MD_SESSION_ID") or None,
            remote_timeout=float(timeout) if timeout else None,
        )
