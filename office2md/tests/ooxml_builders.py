"""In-memory OOXML packages for reader tests."""

import io
import zipfile

W_URI = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
A_URI = "http://schemas.openxmlformats.org/drawingml/2006/main"
P_URI = "http://schemas.openxmlformats.org/presentationml/2006/main"
R_URI = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
M_URI = "http://schemas.openxmlformats.org/officeDocument/2006/math"
WP_URI = "http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing"
MC_URI = "http://schemas.openxmlformats.org/markup-compatibility/2006"
PKG_REL_URI = "http://schemas.openxmlformats.org/package/2006/relationships"

REL_TYPE = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
IMAGE_REL = f"{REL_TYPE}/image"
SLIDE_REL = f"{REL_TYPE}/slide"
NOTES_REL = f"{REL_TYPE}/notesSlide"

DOCX_NAMESPACES = (
    f'xmlns:w="{W_URI}" xmlns:r="{R_URI}" xmlns:a="{A_URI}" xmlns:wp="{WP_URI}" '
    f'xmlns:m="{M_URI}" xmlns:mc="{MC_URI}"'
)
PPTX_NAMESPACES = f'xmlns:p="{P_URI}" xmlns:a="{A_URI}" xmlns:r="{R_URI}" xmlns:m="{M_URI}"'

CONTENT_TYPES = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types"/>'
)

# Not a decodable PNG, but large enough to pass the noise threshold
FAKE_PNG = b"\x89PNG\r\n\x1a\n" + bytes(range(256)) * 2


def make_package(files: dict[str, str | bytes]) -> io.BytesIO:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("[Content_Types].xml", CONTENT_TYPES)
        for name, data in files.items():
            zf.writestr(name, data)
    buffer.seek(0)
    return buffer


def make_rels(relationships: list[tuple[str, str, str]]) -> str:
    """``(id, type, target)`` triples as a .rels part."""
    entries = "".join(
        f'<Relationship Id="{rel_id}" Type="{rel_type}" Target="{target}"/>'
        for rel_id, rel_type, target in relationships
    )
    return f'<Relationships xmlns="{PKG_REL_URI}">{entries}</Relationships>'


def docx_package(
    body: str,
    *,
    styles: str | None = None,
    relationships: list[tuple[str, str, str]] | None = None,
    media: dict[str, bytes] | None = None,
) -> io.BytesIO:
    files: dict[str, str | bytes] = {
        "word/document.xml": f"<w:document {DOCX_NAMESPACES}><w:body>{body}</w:body></w:document>",
    }
    if styles is not None:
        files["word/styles.xml"] = f'<w:styles xmlns:w="{W_URI}">{styles}</w:styles>'
    if relationships:
        files["word/_rels/document.xml.rels"] = make_rels(relationships)
    files.update(media or {})
    return make_package(files)


def pptx_shape(paragraphs: str, *, placeholder: str | None = None) -> str:
    ph = f'<p:ph type="{placeholder}"/>' if placeholder else ""
    return (
        '<p:sp><p:nvSpPr><p:cNvPr id="2" name="Text"/><p:cNvSpPr/>'
        f"<p:nvPr>{ph}</p:nvPr></p:nvSpPr><p:spPr/>"
        f"<p:txBody><a:bodyPr/>{paragraphs}</p:txBody></p:sp>"
    )


def pptx_slide(shapes: str) -> str:
    return (
        f"<p:sld {PPTX_NAMESPACES}><p:cSld><p:spTree>"
        '<p:nvGrpSpPr><p:cNvPr id="1" name=""/><p:cNvGrpSpPr/><p:nvPr/></p:nvGrpSpPr>'
        f"<p:grpSpPr/>{shapes}</p:spTree></p:cSld></p:sld>"
    )


def pptx_package(
    slides: list[str],
    *,
    notes: dict[int, str] | None = None,
    slide_relationships: dict[int, list[tuple[str, str, str]]] | None = None,
    media: dict[str, bytes] | None = None,
    order: list[int] | None = None,
) -> io.BytesIO:
    """
    Package ``slides`` (full slide XML) as slide1.xml, slide2.xml, ...

    ``order`` lists 1-based slide numbers in presentation order; ``notes``
    maps slide numbers to notes slide XML.
    """
    notes = notes or {}
    slide_relationships = slide_relationships or {}
    order = order or list(range(1, len(slides) + 1))

    files: dict[str, str | bytes] = {}
    sld_ids = "".join(
        f'<p:sldId id="{255 + number}" r:id="rId{number}"/>' for number in order
    )
    files["ppt/presentation.xml"] = (
        f"<p:presentation {PPTX_NAMESPACES}><p:sldIdLst>{sld_ids}</p:sldIdLst></p:presentation>"
    )
    files["ppt/_rels/presentation.xml.rels"] = make_rels(
        [
            (f"rId{number}", SLIDE_REL, f"slides/slide{number}.xml")
            for number in range(1, len(slides) + 1)
        ]
    )
    for number, slide in enumerate(slides, start=1):
        files[f"ppt/slides/slide{number}.xml"] = slide
        relationships = list(slide_relationships.get(number, []))
        if number in notes:
            files[f"ppt/notesSlides/notesSlide{number}.xml"] = notes[number]
            relationships.append(
                ("rIdNotes", NOTES_REL, f"../notesSlides/notesSlide{number}.xml")
            )
        if relationships:
            files[f"ppt/slides/_rels/slide{number}.xml.rels"] = make_rels(relationships)
    files.update(media or {})
    return make_package(files)
