"""
Image Reference Resolution
==========================

Turns an image embedded in an OOXML part (DrawingML ``a:blip`` or legacy VML
``v:imagedata``) into a ``cid:<sha1>`` reference backed by the content store.

Resolution steps:

    1. read the relationship id (``r:embed`` / ``r:id``) from the node
    2. look the target up in the part's relationship map and resolve it
       against the part's directory
    3. size the image from its EMU extent, clamped to 512px on the longest side
    4. rasterize WMF/EMF payloads, store everything else unchanged
    5. hash the final bytes and save them, unless they are below 256 bytes

Results are memoized per session: raster images by package path, vector
images by path and clamped size since their rendering depends on it. A failed
attempt is memoized as an empty string and never retried.
"""

from __future__ import annotations

import logging
import math
import posixpath
from dataclasses import dataclass
from xml.etree import ElementTree as ET

from office2md.config import MediaLimits
from office2md.extractors.util.package import OoxmlPackage, normalize_target_path
from office2md.media.rendering import VECTOR_MIMES, ImageSize
from office2md.media.session import ConversionSession
from office2md.storage.content_store import content_id_for

logger = logging.getLogger(__name__)

A_NS = "{http://schemas.openxmlformats.org/drawingml/2006/main}"
P_NS = "{http://schemas.openxmlformats.org/presentationml/2006/main}"
R_NS = "{http://schemas.openxmlformats.org/officeDocument/2006/relationships}"
WP_NS = "{http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing}"
V_NS = "{urn:schemas-microsoft-com:vml}"

EXTENSION_TO_MIME = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "wmf": "image/x-wmf",
    "emf": "image/x-emf",
    "tif": "image/tiff",
    "tiff": "image/tiff",
}


@dataclass
class MediaContext:
    """Where image references of one document part are resolved."""

    package: OoxmlPackage
    relationships: dict[str, str]
    base_path: str
    session: ConversionSession

    @classmethod
    def for_part(
        cls, package: OoxmlPackage, part_path: str, session: ConversionSession
    ) -> "MediaContext":
        return cls(
            package=package,
            relationships=package.relationships(part_path),
            base_path=posixpath.dirname(part_path),
            session=session,
        )


def get_image_mime(path: str) -> str:
    extension = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    return EXTENSION_TO_MIME.get(extension, "application/octet-stream")


def _round(value: float) -> int:
    # Half-up rounding keeps sizes stable for .5 EMU conversions
    return int(math.floor(value + 0.5))


def _to_int(value: str | None) -> int:
    try:
        return int(float(value or 0))
    except ValueError:
        return 0


def _default_size(limits: MediaLimits) -> ImageSize:
    default_pt = _round(limits.default_px * 72 / 96)
    return ImageSize(limits.default_px, limits.default_px, default_pt, default_pt)


def get_image_size(node: ET.Element, limits: MediaLimits) -> ImageSize:
    """Size from the first ``wp:extent`` or ``a:ext`` below ``node``."""
    extent = next(node.iter(f"{WP_NS}extent"), None)
    if extent is None:
        # a:ext also appears inside a:extLst without cx/cy
        extent = next((e for e in node.iter(f"{A_NS}ext") if e.get("cx")), None)
    if extent is None:
        return _default_size(limits)
    cx = _to_int(extent.get("cx"))
    cy = _to_int(extent.get("cy"))
    if cx <= 0 or cy <= 0:
        return _default_size(limits)
    return ImageSize(
        px_width=max(1, _round(cx / limits.emu_per_px)),
        px_height=max(1, _round(cy / limits.emu_per_px)),
        pt_width=max(1, _round(cx / limits.emu_per_pt)),
        pt_height=max(1, _round(cy / limits.emu_per_pt)),
    )


def clamp_size(size: ImageSize, limits: MediaLimits) -> ImageSize:
    """Scale down so the longest side fits ``limits.max_px``, keeping the ratio."""
    max_side = max(size.px_width, size.px_height)
    if max_side <= limits.max_px:
        return size
    scale = limits.max_px / max_side
    return ImageSize(
        px_width=max(1, _round(size.px_width * scale)),
        px_height=max(1, _round(size.px_height * scale)),
        pt_width=max(1, _round(size.pt_width * scale)),
        pt_height=max(1, _round(size.pt_height * scale)),
    )


def get_embed_id(node: ET.Element) -> str:
    blip = next(node.iter(f"{A_NS}blip"), None)
    if blip is not None:
        embed_id = blip.get(f"{R_NS}embed") or blip.get("embed")
        if embed_id:
            return embed_id
    imagedata = next(node.iter(f"{V_NS}imagedata"), None)
    if imagedata is not None:
        return imagedata.get(f"{R_NS}id") or imagedata.get("id") or ""
    return ""


def get_alt_text(node: ET.Element) -> str:
    doc_pr = next(node.iter(f"{WP_NS}docPr"), None)
    if doc_pr is not None:
        alt = doc_pr.get("descr") or doc_pr.get("title")
        if alt:
            return alt
    c_nv_pr = next(node.iter(f"{P_NS}cNvPr"), None)
    if c_nv_pr is not None:
        alt = c_nv_pr.get("descr") or c_nv_pr.get("name")
        if alt:
            return alt
    return ""


def process_and_save_image(
    data: bytes, mime: str, width: int, height: int, session: ConversionSession
) -> str:
    """
    Store ``data`` and return its ``cid:`` reference.

    Payloads below the noise threshold (tracking pixels, spacers) are
    dropped and yield an empty string.
    """
    if not data or len(data) < session.limits.min_image_bytes:
        return ""
    content_id = content_id_for(data)
    store = session.get_store()
    if store.has_image(content_id):
        store.sync_to_chat(content_id, session.chat_id)
    else:
        store.save(
            content_id,
            data,
            mime=mime,
            width=width,
            height=height,
            chat_id=session.chat_id,
        )
    session.next_image_number()
    return f"cid:{content_id}"


def _render_vector(
    data: bytes, mime: str, size: ImageSize, session: ConversionSession
) -> str:
    capability = session.renderers.get(mime)
    if not capability.available:
        return ""
    try:
        svg = capability.render(data, size)
        if not svg:
            return ""
        raster, raster_mime = session.svg_rasterizer(
            svg, size.px_width, size.px_height, session.limits
        )
    except Exception as exc:
        logger.warning(f"Failed to render {mime} image: {exc}")
        return ""
    return process_and_save_image(
        raster, raster_mime, size.px_width, size.px_height, session
    )


def resolve_image_reference(node: ET.Element | None, ctx: MediaContext) -> str:
    """``cid:<hash>`` for the image below ``node``, or an empty string."""
    if node is None:
        return ""
    rel_id = get_embed_id(node)
    if not rel_id:
        return ""
    target = ctx.relationships.get(rel_id)
    if not target:
        return ""
    full_path = normalize_target_path(ctx.base_path, target)
    if not full_path or not ctx.package.exists(full_path):
        logger.debug(f"Image target {target} of {rel_id} not found in package")
        return ""

    session = ctx.session
    size = clamp_size(get_image_size(node, session.limits), session.limits)
    mime = get_image_mime(full_path)
    is_vector = mime in VECTOR_MIMES
    cache_key = (
        f"{full_path}|{size.px_width}x{size.px_height}|png" if is_vector else full_path
    )
    if cache_key in session.media_cache:
        return session.media_cache[cache_key]

    data = ctx.package.read_bytes(full_path)
    if is_vector:
        reference = _render_vector(data, mime, size, session)
    else:
        reference = process_and_save_image(
            data, mime, size.px_width, size.px_height, session
        )
    session.media_cache[cache_key] = reference
    return reference


def extract_image_markdown(node: ET.Element | None, ctx: MediaContext) -> str:
    reference = resolve_image_reference(node, ctx)
    if not reference:
        return ""
    alt = get_alt_text(node) or "image"
    return f"![{alt}]({reference})"
