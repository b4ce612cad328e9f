"""
PPTX to Markdown Reader
=======================

Converts Microsoft PowerPoint .pptx files (Office Open XML, PowerPoint 2007
and later) into Markdown, one ``## Slide N`` section per slide.

File Format Background
----------------------
The .pptx format is a ZIP archive containing XML parts:

    ppt/presentation.xml: Slide ordering (p:sldIdLst)
    ppt/_rels/presentation.xml.rels: Maps slide ids to slide parts
    ppt/slides/slide1.xml, slide2.xml, ...: Individual slide content
    ppt/slides/_rels/slide1.xml.rels: Per-slide relationships (images, notes)
    ppt/notesSlides/notesSlide1.xml, ...: Speaker notes
    ppt/media/: Embedded images

XML Namespaces:
    - p: http://schemas.openxmlformats.org/presentationml/2006/main
    - a: http://schemas.openxmlformats.org/drawingml/2006/main
    - r: http://schemas.openxmlformats.org/officeDocument/2006/relationships

Shape Tree Walk
---------------
Every slide's p:spTree is walked in document order:

    - p:sp: one line per a:p paragraph, honoring bullets and numbering
    - p:graphicFrame: a:tbl tables become Markdown tables
    - p:pic: images resolved to ``![alt](cid:...)``
    - p:grpSp: group shapes are walked recursively

Bullets and Numbering
---------------------
Paragraph indentation comes from the a:pPr ``lvl`` attribute or, without it,
from ``marL`` (one level per 342900 EMU, at most 6). a:buAutoNum paragraphs
are numbered with one counter per level: counters of deeper levels are
dropped when a shallower paragraph appears, a bullet at a level drops that
level's counter, and an unbulleted paragraph (no a:pPr, or a:buNone) resets
them all.

Fallbacks
---------
When walking the shape tree raises, the slide falls back to the plain text
of its a:t runs; when the slide XML cannot even be parsed, tags are stripped
with a regular expression. Both fallbacks run through the TextNormalizer.
A slide that fails completely is recorded as a warning and skipped.

Speaker Notes
-------------
Notes are located through the slide's notesSlide relationship and rendered
as a block quote below a bold "Notes" label. Slide image, slide number, date,
header and footer placeholders of the notes page are ignored.
"""

import html
import io
import logging
import math
import re
import sqlite3
from dataclasses import dataclass
from typing import Any, Generator
from xml.etree import ElementTree as ET

from office2md.exceptions import ExtractionError, ExtractionFailedError
from office2md.extractors.data_types import DocumentMetadata, MarkdownContent
from office2md.extractors.util.core_properties import read_core_properties
from office2md.extractors.util.markdown import escape_cell, format_markdown_table
from office2md.extractors.util.omml_to_latex import local_name, omml_to_latex
from office2md.extractors.util.package import OoxmlPackage
from office2md.extractors.util.text_cleaner import TextNormalizer
from office2md.media.resolver import MediaContext, extract_image_markdown
from office2md.media.session import ConversionSession, session_scope

logger = logging.getLogger(__name__)

# XML Namespaces used in PPTX documents
P_NS = "{http://schemas.openxmlformats.org/presentationml/2006/main}"
A_NS = "{http://schemas.openxmlformats.org/drawingml/2006/main}"
R_NS = "{http://schemas.openxmlformats.org/officeDocument/2006/relationships}"
MC_NS = "{http://schemas.openxmlformats.org/markup-compatibility/2006}"

PRESENTATION_PATH = "ppt/presentation.xml"
SLIDE_NAME = re.compile(r"^ppt/slides/slide(\d+)\.xml$")
NOTES_RELATIONSHIP_SUFFIX = "/notesSlide"

EMU_PER_INDENT_LEVEL = 342900
MAX_INDENT_LEVEL = 6
INDENT_UNIT = "  "

# Placeholders of a notes page that never carry speaker notes
NOTES_SKIPPED_PLACEHOLDERS = frozenset({"sldImg", "sldNum", "dt", "hdr", "ftr"})

_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")
_HORIZONTAL_SPACE = re.compile(r"[ \t\f\v\r]+")


@dataclass(frozen=True)
class BulletInfo:
    kind: str  # "none", "bullet" or "number"
    level: int = 0
    char: str = "-"


NO_BULLET = BulletInfo("none")


def _to_int(value: str | None) -> int | None:
    try:
        return int(value) if value else None
    except ValueError:
        return None


def detect_bullet_info(paragraph: ET.Element) -> BulletInfo:
    p_pr = paragraph.find(f"{A_NS}pPr")
    if p_pr is None or p_pr.find(f"{A_NS}buNone") is not None:
        return NO_BULLET

    level = _to_int(p_pr.get("lvl"))
    if level is None:
        margin = _to_int(p_pr.get("marL"))
        level = 0
        if margin is not None:
            level = min(
                MAX_INDENT_LEVEL,
                max(0, math.floor(margin / EMU_PER_INDENT_LEVEL + 0.5)),
            )

    if p_pr.find(f"{A_NS}buAutoNum") is not None:
        return BulletInfo("number", level)
    bu_char = p_pr.find(f"{A_NS}buChar")
    if bu_char is not None:
        return BulletInfo("bullet", level, bu_char.get("char") or "-")
    return BulletInfo("bullet", level)


def format_paragraph_text(text: str, info: BulletInfo, state: dict[int, int]) -> str:
    """
    Prefix ``text`` with its list marker and indentation.

    ``state`` holds the numbering counter per indentation level of the
    current text body and is updated in place.
    """
    if info.kind == "none":
        state.clear()
        return text

    level = min(max(info.level, 0), MAX_INDENT_LEVEL)
    for deeper in [existing for existing in state if existing > level]:
        del state[deeper]

    if info.kind == "number":
        state[level] = state.get(level, 0) + 1
        marker = f"{state[level]}."
    else:
        state.pop(level, None)
        char = info.char.strip()
        marker = char if len(char) == 1 else "-"

    indent = INDENT_UNIT * level
    lines = text.split("\n")
    first = f"{indent}{marker} {lines[0]}"
    rest = [f"{indent}{INDENT_UNIT}{line}" for line in lines[1:]]
    return "\n".join([first] + rest)


def _paragraph_fragments(node: ET.Element) -> list[str]:
    name = local_name(node)
    if name in ("pPr", "rPr", "endParaRPr", "Fallback"):
        return []
    if name == "AlternateContent":
        choice = node.find(f"{MC_NS}Choice")
        if choice is None:
            return []
        return [fragment for child in choice for fragment in _paragraph_fragments(child)]
    if name == "br":
        return ["\n"]
    if name in ("oMath", "oMathPara"):
        latex = omml_to_latex(node)
        return [f" ${latex}$ "] if latex else []
    if name == "t":
        return [node.text or ""]
    return [fragment for child in node for fragment in _paragraph_fragments(child)]


def paragraph_text(paragraph: ET.Element) -> str:
    """Text of an a:p; a:br line breaks are kept, other whitespace collapses."""
    text = _HORIZONTAL_SPACE.sub(" ", "".join(_paragraph_fragments(paragraph)))
    lines = [line.strip() for line in text.split("\n")]
    return "\n".join(line for line in lines if line)


def _text_body_paragraphs(text_body: ET.Element) -> list[ET.Element]:
    return [child for child in text_body if child.tag == f"{A_NS}p"]


def text_body_markdown(text_body: ET.Element, *, allow_bullets: bool = True) -> list[str]:
    state: dict[int, int] = {}
    lines = []
    for paragraph in _text_body_paragraphs(text_body):
        text = paragraph_text(paragraph)
        if not text:
            continue
        info = detect_bullet_info(paragraph) if allow_bullets else NO_BULLET
        lines.append(format_paragraph_text(text, info, state))
    return lines


def table_markdown(table: ET.Element) -> str:
    rows = []
    for row in table.findall(f"{A_NS}tr"):
        cells = []
        for cell in row.findall(f"{A_NS}tc"):
            text_body = cell.find(f"{A_NS}txBody")
            if text_body is None:
                cells.append("")
                continue
            cell_text = "\n".join(text_body_markdown(text_body, allow_bullets=False))
            cells.append(escape_cell(re.sub(r"\n+", "\n", cell_text)))
        if any(cell.strip() for cell in cells):
            rows.append(cells)
    return format_markdown_table(rows)


def _placeholder_type(shape: ET.Element) -> str:
    placeholder = shape.find(f"{P_NS}nvSpPr/{P_NS}nvPr/{P_NS}ph")
    if placeholder is None:
        return ""
    return placeholder.get("type") or "body"


def _shape_text_body(shape: ET.Element) -> ET.Element | None:
    for child in shape:
        if local_name(child) == "txBody":
            return child
    return None


def _container_sections(
    container: ET.Element,
    media: MediaContext | None,
    skipped_placeholders: frozenset[str],
) -> list[str]:
    sections = []
    for child in container:
        tag = local_name(child)
        if tag == "sp":
            if _placeholder_type(child) in skipped_placeholders:
                continue
            text_body = _shape_text_body(child)
            if text_body is None:
                continue
            lines = text_body_markdown(text_body)
            if lines:
                sections.append("\n".join(lines))
        elif tag == "graphicFrame":
            table = next(child.iter(f"{A_NS}tbl"), None)
            if table is not None:
                markdown = table_markdown(table)
                if markdown:
                    sections.append(markdown)
        elif tag == "pic":
            if media is not None:
                markdown = extract_image_markdown(child, media)
                if markdown:
                    sections.append(markdown)
        elif tag == "grpSp":
            sections.extend(_container_sections(child, media, skipped_placeholders))
        elif tag == "AlternateContent":
            choice = child.find(f"{MC_NS}Choice")
            if choice is not None:
                sections.extend(_container_sections(choice, media, skipped_placeholders))
    return sections


def legacy_slide_text(root: ET.Element) -> str:
    """Flat text of all a:t runs, one paragraph per a:p."""
    paragraphs = []
    for paragraph in root.iter(f"{A_NS}p"):
        text = "".join(node.text or "" for node in paragraph.iter(f"{A_NS}t")).strip()
        if text:
            paragraphs.append(text)
    if paragraphs:
        return "\n\n".join(paragraphs)
    runs = [node.text for node in root.iter(f"{A_NS}t") if node.text]
    return " ".join(runs)


def strip_tags_fallback(xml_text: str) -> str:
    text = html.unescape(_TAG.sub(" ", xml_text))
    return _WHITESPACE.sub(" ", text).strip()


def format_as_block_quote(text: str) -> str:
    return "\n".join(
        f"> {line}" if line.strip() else ">" for line in text.split("\n")
    )


class _PptxContext:
    """Package, slide order and session shared while converting one deck."""

    def __init__(self, package: OoxmlPackage, session: ConversionSession):
        self.package = package
        self.session = session
        self.slide_paths = self._compute_slide_order()

    def _compute_slide_order(self) -> list[str]:
        """Slide parts in presentation order, file-name order as fallback."""
        slide_paths = []
        if self.package.exists(PRESENTATION_PATH):
            root = self.package.read_xml_root(PRESENTATION_PATH)
            sld_id_lst = root.find(f"{P_NS}sldIdLst")
            if sld_id_lst is not None:
                for sld_id in sld_id_lst.findall(f"{P_NS}sldId"):
                    r_id = sld_id.get(f"{R_NS}id")
                    target = self.package.resolve(PRESENTATION_PATH, r_id) if r_id else None
                    if target and self.package.exists(target):
                        slide_paths.append(target)
        if slide_paths:
            return slide_paths

        numbered = []
        for name in self.package.namelist:
            match = SLIDE_NAME.match(name)
            if match:
                numbered.append((int(match.group(1)), name))
        return [name for _, name in sorted(numbered)]

    def notes_path(self, slide_path: str) -> str | None:
        for target, rel_type in self.package.relationship_types(slide_path).items():
            if rel_type.endswith(NOTES_RELATIONSHIP_SUFFIX) and self.package.exists(target):
                return target
        guess = slide_path.replace("slides/slide", "notesSlides/notesSlide")
        return guess if self.package.exists(guess) else None


def part_markdown(
    ctx: _PptxContext,
    part_path: str,
    *,
    with_media: bool = True,
    skipped_placeholders: frozenset[str] = frozenset(),
) -> str:
    """Markdown of one slide (or notes) part."""
    xml_bytes = ctx.package.read_bytes(part_path)
    try:
        root = ET.fromstring(xml_bytes)
    except ET.ParseError as exc:
        logger.warning(f"Unparseable XML in {part_path}, stripping tags: {exc}")
        return TextNormalizer.process(
            strip_tags_fallback(xml_bytes.decode("utf-8", errors="replace"))
        )

    media = MediaContext.for_part(ctx.package, part_path, ctx.session) if with_media else None
    sections: list[str] = []
    sp_tree = next(root.iter(f"{P_NS}spTree"), None)
    try:
        if sp_tree is not None:
            sections = _container_sections(sp_tree, media, skipped_placeholders)
    except (sqlite3.Error, OSError):
        raise
    except Exception as exc:
        logger.warning(f"Shape tree walk of {part_path} failed, using flat text: {exc}")
        sections = []

    if sections:
        return "\n\n".join(sections)
    legacy = legacy_slide_text(root)
    return TextNormalizer.process(legacy) if legacy else ""


def render_slide(ctx: _PptxContext, slide_path: str, number: int) -> str:
    labels = ctx.session.labels
    sections = []
    body = part_markdown(ctx, slide_path)
    if body:
        sections.append(body)

    notes_path = ctx.notes_path(slide_path)
    if notes_path:
        try:
            notes = part_markdown(
                ctx,
                notes_path,
                with_media=False,
                skipped_placeholders=NOTES_SKIPPED_PLACEHOLDERS,
            )
        except (sqlite3.Error, OSError):
            raise
        except Exception as exc:
            logger.warning(f"Failed to read notes of slide {number}: {exc}")
            notes = ""
        if notes:
            sections.append(f"**{labels.notes}**\n{format_as_block_quote(notes)}")

    heading = f"## {labels.slide} {number}"
    if not sections:
        return heading
    return heading + "\n\n" + "\n\n".join(sections)


def read_pptx(
    file_like: io.BytesIO,
    path: str | None = None,
    *,
    session: ConversionSession | None = None,
) -> Generator[MarkdownContent, Any, None]:
    """
    Convert a PowerPoint .pptx file to Markdown.

    Args:
        file_like: BytesIO object containing the complete PPTX file data.
        path: Optional filesystem path to the source file, used for metadata.
        session: Conversion session holding the content store and media cache.

    Yields:
        MarkdownContent: the Markdown text, one unit per slide, with warnings
        for slides that had to be skipped.

    Raises:
        ExtractionFileEncryptedError: the file is an encrypted package.
        ExtractionFailedError: the deck has no slides or no slide converted.
    """
    with session_scope(session) as scoped:
        content = _convert_pptx(file_like, path, scoped)
    yield content


def _convert_pptx(
    file_like: io.BytesIO, path: str | None, session: ConversionSession
) -> MarkdownContent:
    first_image = session.start_document()
    metadata = DocumentMetadata(source_format="pptx")
    slides: list[str] = []
    warnings: list[str] = []
    try:
        with OoxmlPackage(file_like, source=path) as package:
            ctx = _PptxContext(package, session)
            read_core_properties(package, metadata)
            if not ctx.slide_paths:
                raise ExtractionFailedError("Presentation contains no slides")
            for index, slide_path in enumerate(ctx.slide_paths):
                number = index + 1
                try:
                    slides.append(render_slide(ctx, slide_path, number))
                except (sqlite3.Error, OSError):
                    raise
                except Exception as exc:
                    logger.warning(f"Failed to convert slide {number}: {exc}")
                    warnings.append(f"{session.labels.slide} {number}: {exc}")
            if not slides:
                raise ExtractionFailedError(
                    "No slide of the presentation could be converted",
                    errors=warnings,
                )
    except ExtractionError:
        raise
    except (sqlite3.Error, OSError):
        raise
    except Exception as exc:
        raise ExtractionFailedError(f"Failed to read PPTX: {exc}", cause=exc) from exc

    metadata.unit_count = len(slides)
    metadata.image_count = session.image_count - first_image
    metadata.populate_from_path(path)
    logger.info(
        "Extracted PPTX: %d slides, %d skipped", len(slides), len(warnings)
    )
    return MarkdownContent(
        text="\n\n".join(slides).strip(),
        units=slides,
        warnings=warnings,
        metadata=metadata,
    )
