"""
office2md: Markdown conversion of office documents.

Converts Word, Excel, PowerPoint and PDF files into a single Markdown string
suitable for language-model prompts. Math becomes LaTeX, tables become
Markdown tables and embedded images are stored in a content-addressed store
and referenced as ``cid:<hash>``.
"""

import io
from pathlib import Path
from typing import Any, Generator

from office2md.extractors.data_types import DocumentMetadata, MarkdownContent
from office2md.media.session import ConversionSession
from office2md.router import get_extractor, is_supported_file

__version__ = "0.1.0"


def read_docx(
    file_like: io.BytesIO,
    path: str | None = None,
    *,
    session: ConversionSession | None = None,
) -> Generator[MarkdownContent, Any, None]:
    """Convert a DOCX file to Markdown."""
    from office2md.extractors.docx_extractor import read_docx as _read_docx

    return _read_docx(file_like, path, session=session)


def read_xlsx(
    file_like: io.BytesIO,
    path: str | None = None,
    *,
    session: ConversionSession | None = None,
) -> Generator[MarkdownContent, Any, None]:
    """Convert a spreadsheet (XLSX, XLS or CSV) to Markdown."""
    from office2md.extractors.xlsx_extractor import read_xlsx as _read_xlsx

    return _read_xlsx(file_like, path, session=session)


def read_pptx(
    file_like: io.BytesIO,
    path: str | None = None,
    *,
    session: ConversionSession | None = None,
) -> Generator[MarkdownContent, Any, None]:
    """Convert a PPTX file to Markdown."""
    from office2md.extractors.pptx_extractor import read_pptx as _read_pptx

    return _read_pptx(file_like, path, session=session)


def read_pdf(
    file_like: io.BytesIO,
    path: str | None = None,
    *,
    session: ConversionSession | None = None,
) -> Generator[MarkdownContent, Any, None]:
    """Convert a PDF file to Markdown."""
    from office2md.extractors.pdf_extractor import read_pdf as _read_pdf

    return _read_pdf(file_like, path, session=session)


def read_file(
    path: str | Path,
    *,
    session: ConversionSession | None = None,
) -> Generator[MarkdownContent, Any, None]:
    """
    Convert a file to Markdown.

    Automatically detects the file type based on extension and uses
    the appropriate reader.

    Args:
        path: Path to the file to read.
        session: Conversion session; a fresh one is created when omitted.

    Yields:
        MarkdownContent with the Markdown text, per-unit texts and metadata.

    Raises:
        ExtractionFileFormatNotSupportedError: If the file type is not supported.
        FileNotFoundError: If the file does not exist.

    Example:
        >>> import office2md
        >>> for result in office2md.read_file("report.docx"):
        ...     print(result.get_full_text())
    """
    path = Path(path)
    extractor = get_extractor(str(path))
    with open(path, "rb") as f:
        yield from extractor(io.BytesIO(f.read()), str(path), session=session)


__all__ = [
    # Version
    "__version__",
    # Main functions
    "read_file",
    "is_supported_file",
    "get_extractor",
    "ConversionSession",
    "DocumentMetadata",
    "MarkdownContent",
    # Format-specific readers
    "read_docx",
    "read_xlsx",
    "read_pptx",
    "read_pdf",
]
