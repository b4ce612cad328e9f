"""
DOCX to Markdown Reader
=======================

Converts Microsoft Word .docx files (Office Open XML, Word 2007 and later)
into Markdown by walking ``word/document.xml`` directly.

File Format Background
----------------------
The .docx format is a ZIP archive containing XML parts. The reader uses:

    word/document.xml: Main document body (paragraphs, tables)
    word/styles.xml: Style definitions (display names of heading styles)
    word/_rels/document.xml.rels: Relationships (embedded images)
    word/media/: Embedded images
    docProps/core.xml: Metadata (title, author, dates)

XML Namespaces:
    - w: http://schemas.openxmlformats.org/wordprocessingml/2006/main
    - m: http://schemas.openxmlformats.org/officeDocument/2006/math
    - mc: http://schemas.openxmlformats.org/markup-compatibility/2006

Markdown Mapping
----------------
    - Paragraphs become blocks separated by a blank line
    - Headings come from a ``HeadingN`` style (id or display name), or from a
      bold first run of at least 16pt (level 1) or 14pt (level 2)
    - Paragraphs with numbering properties become ``- `` list items
    - Tables become Markdown tables; the first row is the header, paragraphs
      inside a cell are joined with ``<br>``
    - Math (m:oMath, m:oMathPara) becomes inline ``$...$`` LaTeX
    - Drawings, pictures and OLE objects become ``![alt](cid:...)`` or the
      literal ``[Image]`` when the image cannot be resolved

AlternateContent Handling
-------------------------
Word uses mc:AlternateContent elements to provide fallback representations.
Only mc:Choice content is walked; mc:Fallback is skipped to avoid duplicate
text.

Known Limitations
-----------------
- Headers, footers, footnotes and comments are not part of the output
- Numbering formats are not reproduced, every list item is a bullet
- Tracked deletions are dropped, insertions are kept
"""

import io
import logging
import re
import sqlite3
from typing import Any, Generator
from xml.etree import ElementTree as ET

from office2md.exceptions import ExtractionError, ExtractionFailedError
from office2md.extractors.data_types import DocumentMetadata, MarkdownContent
from office2md.extractors.util.core_properties import read_core_properties
from office2md.extractors.util.markdown import escape_cell, format_markdown_table
from office2md.extractors.util.omml_to_latex import local_name, omml_to_latex
from office2md.extractors.util.package import OoxmlPackage
from office2md.media.resolver import MediaContext, extract_image_markdown
from office2md.media.session import ConversionSession, session_scope

logger = logging.getLogger(__name__)

# XML Namespaces used in DOCX documents
W_NS = "{http://schemas.openxmlformats.org/wordprocessingml/2006/main}"
MC_NS = "{http://schemas.openxmlformats.org/markup-compatibility/2006}"

DOCUMENT_PATH = "word/document.xml"
STYLES_PATH = "word/styles.xml"

HEADING_STYLE_ID = re.compile(r"Heading(\d)")
HEADING_STYLE_NAME = re.compile(r"^heading\s*(\d)$", re.IGNORECASE)

# Font sizes are stored in half-points
HEADING_1_MIN_SIZE = 32
HEADING_2_MIN_SIZE = 28

SKIPPED_TAGS = {"instrText", "delText", "fldChar"}
PROPERTY_TAGS = {"pPr", "rPr", "sectPr", "tblPr", "trPr", "tcPr", "sdtPr"}
IMAGE_TAGS = {"drawing", "pict", "object", "OLEObject", "imagedata"}
FALSE_VALUES = {"0", "false", "off"}


class _DocxContext:
    """Parsed parts and media context shared while walking one document."""

    def __init__(self, package: OoxmlPackage, session: ConversionSession):
        self.package = package
        self.session = session
        if not package.exists(DOCUMENT_PATH):
            raise ExtractionFailedError(f"Missing {DOCUMENT_PATH} in package")
        self.document_root = package.read_xml_root(DOCUMENT_PATH)
        self.styles = self._load_styles()
        self.media = MediaContext.for_part(package, DOCUMENT_PATH, session)

    def _load_styles(self) -> dict[str, str]:
        """Style id -> display name."""
        styles: dict[str, str] = {}
        if not self.package.exists(STYLES_PATH):
            return styles
        root = self.package.read_xml_root(STYLES_PATH)
        for style in root.iter(f"{W_NS}style"):
            style_id = style.get(f"{W_NS}styleId") or ""
            name_elem = style.find(f"{W_NS}name")
            style_name = name_elem.get(f"{W_NS}val") if name_elem is not None else ""
            if style_id:
                styles[style_id] = style_name or style_id
        return styles

    @property
    def body(self) -> ET.Element | None:
        return self.document_root.find(f"{W_NS}body")


def _is_enabled(toggle: ET.Element | None) -> bool:
    if toggle is None:
        return False
    return (toggle.get(f"{W_NS}val") or "").lower() not in FALSE_VALUES


def infer_heading_level(paragraph: ET.Element, styles: dict[str, str]) -> int:
    """
    Heading level of a paragraph, 0 for body text.

    A ``HeadingN`` style wins; otherwise a bold first run of at least 32
    half-points is level 1 and of at least 28 half-points level 2.
    """
    p_pr = paragraph.find(f"{W_NS}pPr")
    p_style = p_pr.find(f"{W_NS}pStyle") if p_pr is not None else None
    style_id = p_style.get(f"{W_NS}val") if p_style is not None else ""
    if style_id:
        match = HEADING_STYLE_ID.search(style_id) or HEADING_STYLE_NAME.match(
            styles.get(style_id, "")
        )
        if match:
            return min(int(match.group(1)), 6)

    first_run = next(paragraph.iter(f"{W_NS}r"), None)
    r_pr = first_run.find(f"{W_NS}rPr") if first_run is not None else None
    if r_pr is None:
        return 0
    size_elem = r_pr.find(f"{W_NS}sz")
    try:
        size = int(size_elem.get(f"{W_NS}val") or 0) if size_elem is not None else 0
    except ValueError:
        size = 0
    if _is_enabled(r_pr.find(f"{W_NS}b")):
        if size >= HEADING_1_MIN_SIZE:
            return 1
        if size >= HEADING_2_MIN_SIZE:
            return 2
    return 0


def _symbol(node: ET.Element) -> str:
    code = node.get(f"{W_NS}char") or node.get("char")
    if not code:
        return ""
    try:
        return chr(int(code, 16))
    except (ValueError, OverflowError):
        return ""


def _inline_fragments(node: ET.Element, ctx: _DocxContext) -> list[str]:
    """Markdown fragments of the inline content below ``node``, in order."""
    name = local_name(node)
    if name in SKIPPED_TAGS or name in PROPERTY_TAGS:
        return []

    # Handle AlternateContent - only use Choice, skip Fallback
    if name == "AlternateContent":
        choice = node.find(f"{MC_NS}Choice")
        if choice is None:
            return []
        return [fragment for child in choice for fragment in _inline_fragments(child, ctx)]
    if name == "Fallback":
        return []

    if name in ("oMath", "oMathPara"):
        latex = omml_to_latex(node)
        return [f" ${latex}$ "] if latex else []
    if name == "tab":
        return [" "]
    if name in ("br", "cr"):
        return ["\n"]
    if name == "sym":
        return [_symbol(node)]
    if name in IMAGE_TAGS:
        return [extract_image_markdown(node, ctx.media) or "[Image]"]
    if name == "t":
        return [node.text or ""]

    return [fragment for child in node for fragment in _inline_fragments(child, ctx)]


def _paragraph_text(paragraph: ET.Element, ctx: _DocxContext) -> str:
    return "".join(_inline_fragments(paragraph, ctx)).strip()


def render_paragraph(paragraph: ET.Element, ctx: _DocxContext) -> str:
    line = _paragraph_text(paragraph, ctx)
    if not line:
        return ""
    level = infer_heading_level(paragraph, ctx.styles)
    if level > 0:
        return "#" * level + " " + line
    if paragraph.find(f"{W_NS}pPr/{W_NS}numPr") is not None:
        return "- " + line
    return line


def _cell_text(cell: ET.Element, ctx: _DocxContext) -> str:
    lines = []
    for paragraph in cell.iter(f"{W_NS}p"):
        line = _paragraph_text(paragraph, ctx)
        if line:
            lines.append(escape_cell(line))
    return "<br>".join(lines)


def render_table(table: ET.Element, ctx: _DocxContext) -> str:
    rows = []
    for row in table.findall(f"{W_NS}tr"):
        rows.append([_cell_text(cell, ctx) for cell in row.findall(f"{W_NS}tc")])
    return format_markdown_table(rows)


def _body_blocks(container: ET.Element, ctx: _DocxContext) -> list[str]:
    blocks = []
    for element in container:
        tag = local_name(element)
        if tag == "p":
            blocks.append(render_paragraph(element, ctx))
        elif tag == "tbl":
            blocks.append(render_table(element, ctx))
        elif tag == "sdt":
            # Content controls wrap regular paragraphs and tables
            content = element.find(f"{W_NS}sdtContent")
            if content is not None:
                blocks.extend(_body_blocks(content, ctx))
        elif tag == "AlternateContent":
            choice = element.find(f"{MC_NS}Choice")
            if choice is not None:
                blocks.extend(_body_blocks(choice, ctx))
    return [block for block in blocks if block]


def read_docx(
    file_like: io.BytesIO,
    path: str | None = None,
    *,
    session: ConversionSession | None = None,
) -> Generator[MarkdownContent, Any, None]:
    """
    Convert a Word .docx file to Markdown.

    This function uses a generator pattern for API consistency with the other
    readers, even though DOCX files contain exactly one document.

    Args:
        file_like: BytesIO object containing the complete DOCX file data.
        path: Optional filesystem path to the source file, used for metadata.
        session: Conversion session holding the content store and media cache.
            A fresh session is created when omitted.

    Yields:
        MarkdownContent: the Markdown text with document metadata.

    Raises:
        ExtractionFileEncryptedError: the file is an encrypted package.
        ExtractionFailedError: the package cannot be read.
    """
    with session_scope(session) as scoped:
        content = _convert_docx(file_like, path, scoped)
    yield content


def _convert_docx(
    file_like: io.BytesIO, path: str | None, session: ConversionSession
) -> MarkdownContent:
    first_image = session.start_document()
    metadata = DocumentMetadata(source_format="docx")
    try:
        with OoxmlPackage(file_like, source=path) as package:
            ctx = _DocxContext(package, session)
            read_core_properties(package, metadata)
            body = ctx.body
            blocks = _body_blocks(body, ctx) if body is not None else []
    except ExtractionError:
        raise
    except (sqlite3.Error, OSError):
        raise
    except Exception as exc:
        raise ExtractionFailedError(f"Failed to read DOCX: {exc}", cause=exc) from exc

    text = "".join(f"{block}\n\n" for block in blocks)
    metadata.unit_count = 1
    metadata.image_count = session.image_count - first_image
    metadata.populate_from_path(path)

    logger.info(
        "Extracted DOCX: %d blocks, %d images", len(blocks), metadata.image_count
    )
    return MarkdownContent(text=text, units=[text], metadata=metadata)
