import functools
import io
import logging
import math
import re
import sqlite3
from dataclasses import dataclass
from typing import Any, Generator, List

from pypdf import PdfReader

from office2md.config import PdfLayoutOptions
from office2md.exceptions import (
    ExtractionError,
    ExtractionFailedError,
    ExtractionFileEncryptedError,
    ExtractionScannedDocumentError,
)
from office2md.extractors.data_types import DocumentMetadata, MarkdownContent
from office2md.extractors.util.text_cleaner import TextNormalizer
from office2md.media.resolver import process_and_save_image
from office2md.media.session import ConversionSession, session_scope

logger = logging.getLogger(__name__)

# Average glyph advance relative to the font size, used to estimate run widths
GLYPH_WIDTH_RATIO = 0.5

SENTENCE_END = re.compile(r"[。！？.?!]$")
HORIZONTAL_SPACE = re.compile(r"[^\S\n]+")
BROKEN_WORD = re.compile(r"([a-z])- ([a-z])")
INDENTED_LINE = re.compile(r"\n\s+")


@dataclass
class TextItem:
    """A positioned text run; ``x``/``y`` in PDF user space, origin bottom-left."""

    text: str
    x: float
    y: float
    width: float = 0.0
    has_eol: bool = False


def _multiply(m1: List[float], m2: List[float]) -> List[float]:
    return [
        m1[0] * m2[0] + m1[1] * m2[2],
        m1[0] * m2[1] + m1[1] * m2[3],
        m1[2] * m2[0] + m1[3] * m2[2],
        m1[2] * m2[1] + m1[3] * m2[3],
        m1[4] * m2[0] + m1[5] * m2[2] + m2[4],
        m1[4] * m2[1] + m1[5] * m2[3] + m2[5],
    ]


def extract_text_items(page) -> List[TextItem]:
    """Positioned text runs of a pypdf page, in content stream order."""
    items: List[TextItem] = []

    def visitor(text, cm, tm, font_dict, font_size):
        has_eol = text.endswith("\n")
        text = text.replace("\n", "")
        if not text:
            return
        matrix = _multiply(list(tm), list(cm))
        scale = math.hypot(matrix[0], matrix[1]) or 1.0
        width = len(text) * (font_size or 0) * scale * GLYPH_WIDTH_RATIO
        items.append(TextItem(text, matrix[4], matrix[5], width, has_eol))

    page.extract_text(visitor_text=visitor)
    return items


def classify_columns(
    items: List[TextItem], page_width: float, options: PdfLayoutOptions
) -> float | None:
    """
    X coordinate of the gutter of a two-column page, None for single column.

    A histogram of run start positions is searched around the page center
    for its emptiest bucket; the page is two-column when that bucket holds
    less than ``gutter_density_ratio`` of all runs.
    """
    bucket_size = options.bucket_size
    histogram = [0] * max(math.ceil(page_width / bucket_size), 0)
    for item in items:
        idx = math.floor(item.x / bucket_size)
        if 0 <= idx < len(histogram):
            histogram[idx] += 1

    center = len(histogram) // 2
    search = math.floor(len(histogram) * options.gutter_search_fraction)
    min_count = math.inf
    split_index = -1
    for i in range(center - search, center + search):
        if 0 <= i < len(histogram) and histogram[i] < min_count:
            min_count = histogram[i]
            split_index = i

    if min_count < len(items) * options.gutter_density_ratio:
        return split_index * bucket_size
    return None


def sort_items_by_layout(
    items: List[TextItem], page_width: float, options: PdfLayoutOptions
) -> List[TextItem]:
    """Reading order: left column before right, then top to bottom, then left to right."""
    if len(items) < options.simple_sort_threshold:
        return sorted(items, key=lambda item: -item.y)

    split_x = classify_columns(items, page_width, options)

    def compare(a: TextItem, b: TextItem) -> float:
        if split_x is not None:
            a_left = a.x < split_x
            b_left = b.x < split_x
            if a_left != b_left:
                return -1 if a_left else 1
        if abs(a.y - b.y) > options.same_line_tolerance:
            return b.y - a.y
        return a.x - b.x

    return sorted(items, key=functools.cmp_to_key(compare))


def merge_page_text(
    items: List[TextItem], page_height: float, options: PdfLayoutOptions
) -> str:
    """
    Join sorted runs into flowing text.

    Runs in the top and bottom margin bands (headers, footers, page numbers)
    are dropped. A vertical jump starts a new line only after terminal
    punctuation, otherwise the line continues with a space.
    """
    top = page_height * (1 - options.margin_band)
    bottom = page_height * options.margin_band
    text = ""
    last_y = None
    last_x = None
    for item in items:
        if not bottom < item.y < top:
            continue
        if last_y is not None and abs(item.y - last_y) > options.gap_threshold:
            text += "\n" if SENTENCE_END.search(text.strip()) else " "
        elif last_x is not None and item.x - last_x > options.gap_threshold:
            text += " "
        text += item.text
        last_y = item.y
        last_x = item.x + item.width

    text = HORIZONTAL_SPACE.sub(" ", text)
    text = BROKEN_WORD.sub(r"\1\2", text)
    return INDENTED_LINE.sub("\n", text)


def _page_image_markdown(
    pdf_bytes: bytes, index: int, session: ConversionSession
) -> str:
    layout = session.pdf_layout
    data, width, height = session.page_rasterizer(
        pdf_bytes,
        index,
        max_width=layout.page_image_max_width,
        quality=layout.page_image_quality,
    )
    ref = process_and_save_image(data, "image/jpeg", width, height, session)
    if not ref:
        return ""
    number = index + 1
    return f"\n<PageImage: {number}>\n![page-{number}]({ref})\n"


def _read_metadata(reader: PdfReader, metadata: DocumentMetadata) -> None:
    info = reader.metadata
    if info is None:
        return
    metadata.title = info.title or ""
    metadata.author = info.author or ""
    if info.creation_date is not None:
        metadata.created = info.creation_date.isoformat()
    if info.modification_date is not None:
        metadata.modified = info.modification_date.isoformat()


def read_pdf(
    file_like: io.BytesIO,
    path: str | None = None,
    *,
    session: ConversionSession | None = None,
) -> Generator[MarkdownContent, Any, None]:
    """
    Convert a PDF to Markdown, one ``<Page: N>`` block per text page.

    Pages with too little text are rasterized and stored as a page image
    instead. Failing pages are recorded as warnings.

    Limitations:
    Text is ordered by a one-or-two column heuristic, tables and images
    embedded in text pages are not reproduced.
    """
    with session_scope(session) as scoped:
        content = _convert_pdf(file_like, path, scoped)
    yield content


def _convert_pdf(
    file_like: io.BytesIO, path: str | None, session: ConversionSession
) -> MarkdownContent:
    first_image = session.start_document()
    labels = session.labels
    layout = session.pdf_layout
    metadata = DocumentMetadata(source_format="pdf")

    file_like.seek(0)
    pdf_bytes = file_like.read()
    try:
        reader = PdfReader(io.BytesIO(pdf_bytes))
        if reader.is_encrypted and not reader.decrypt(""):
            raise ExtractionFileEncryptedError(
                f"PDF is encrypted or password protected: {path or 'stream'}"
            )
        pages = list(reader.pages)
        _read_metadata(reader, metadata)
    except ExtractionError:
        raise
    except Exception as exc:
        raise ExtractionFailedError(f"Failed to read PDF: {exc}", cause=exc) from exc

    if not pages:
        raise ExtractionFailedError("PDF contains no pages")

    chunks: List[str] = []
    errors: List[str] = []
    parsed = 0
    for index, page in enumerate(pages):
        number = index + 1
        try:
            page_width = float(page.mediabox.width)
            page_height = float(page.mediabox.height)
            items = sort_items_by_layout(extract_text_items(page), page_width, layout)
            page_text = TextNormalizer.process(merge_page_text(items, page_height, layout))
            if len(page_text) > layout.min_page_text_chars:
                chunks.append(f"\n<Page: {number}>\n{page_text}\n")
                parsed += 1
            else:
                logger.debug(f"Page {number} has little text, rendering it as image")
                image_markdown = _page_image_markdown(pdf_bytes, index, session)
                if image_markdown:
                    chunks.append(image_markdown)
        except (sqlite3.Error, OSError):
            raise
        except Exception as exc:
            logger.warning(f"Failed to parse page {number}: {exc}")
            errors.append(labels.page_parse_failed.format(number=number))

    if parsed == 0:
        if len(errors) == len(pages):
            raise ExtractionFailedError("\n".join(errors), errors=errors)
        raise ExtractionScannedDocumentError(labels.scanned_pdf)

    metadata.unit_count = len(pages)
    metadata.image_count = session.image_count - first_image
    metadata.populate_from_path(path)
    logger.info(
        "Extracted PDF: %d pages, %d with text, %d failed",
        len(pages),
        parsed,
        len(errors),
    )
    return MarkdownContent(
        text="".join(chunks),
        units=chunks,
        warnings=errors,
        metadata=metadata,
    )
