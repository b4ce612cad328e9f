"""
Rendering back-ends for media that cannot be stored as-is.

Legacy vector metafiles (WMF/EMF) are converted to SVG by LibreOffice running
headless, then rasterized with PyMuPDF and encoded with Pillow. Scanned PDF
pages are rasterized the same way. Every back-end is looked up lazily and
described by a ``RendererCapability`` decided once at load time, so callers
never probe a library for methods at render time.
"""

from __future__ import annotations

import io
import logging
import math
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from office2md.config import DEFAULT_MEDIA_LIMITS, MediaLimits
from office2md.exceptions import RendererUnavailableError

logger = logging.getLogger(__name__)

WMF_MIME = "image/x-wmf"
EMF_MIME = "image/x-emf"
VECTOR_MIMES = frozenset({WMF_MIME, EMF_MIME})

_VECTOR_EXTENSIONS = {WMF_MIME: "wmf", EMF_MIME: "emf"}
_SVG_OPEN_TAG = re.compile(r"<svg([^>]*)>", re.IGNORECASE)

# LibreOffice can take a while on its first start (profile creation)
SOFFICE_TIMEOUT_SECONDS = 60


@dataclass(frozen=True)
class ImageSize:
    px_width: int
    px_height: int
    pt_width: int
    pt_height: int


@dataclass(frozen=True)
class RendererCapability:
    """
    Result of loading a rendering back-end.

    ``render`` is only set when ``available`` is True; ``reason`` explains why
    a back-end is missing.
    """

    available: bool
    render: Callable[[bytes, ImageSize], str] | None = None
    reason: str = ""


def _load_fitz():
    try:
        import fitz
    except ImportError as exc:
        raise RendererUnavailableError(
            "PyMuPDF is required to rasterize images", cause=exc
        ) from exc
    return fitz


def _load_pil_image():
    try:
        from PIL import Image
    except ImportError as exc:
        raise RendererUnavailableError(
            "Pillow is required to encode images", cause=exc
        ) from exc
    return Image


def _convert_with_libreoffice(binary: str, extension: str, data: bytes, size: ImageSize) -> str:
    with tempfile.TemporaryDirectory(prefix="office2md-") as tmp:
        source = Path(tmp) / f"image.{extension}"
        source.write_bytes(data)
        subprocess.run(
            [binary, "--headless", "--convert-to", "svg", "--outdir", tmp, str(source)],
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=SOFFICE_TIMEOUT_SECONDS,
        )
        target = Path(tmp) / "image.svg"
        if not target.exists():
            return ""
        return target.read_text(encoding="utf-8", errors="replace")


def load_vector_renderer(mime: str) -> RendererCapability:
    """Capability for converting a WMF/EMF payload into SVG markup."""
    extension = _VECTOR_EXTENSIONS.get(mime)
    if extension is None:
        return RendererCapability(False, reason=f"No vector renderer for {mime}")
    binary = shutil.which("soffice") or shutil.which("libreoffice")
    if not binary:
        return RendererCapability(False, reason="LibreOffice (soffice) not found on PATH")

    def render(data: bytes, size: ImageSize) -> str:
        return _convert_with_libreoffice(binary, extension, data, size)

    return RendererCapability(True, render=render)


class VectorRendererRegistry:
    """Caches one capability per MIME type for the lifetime of a session."""

    def __init__(self, loader: Callable[[str], RendererCapability] = load_vector_renderer):
        self._loader = loader
        self._capabilities: dict[str, RendererCapability] = {}

    def get(self, mime: str) -> RendererCapability:
        if mime not in self._capabilities:
            capability = self._loader(mime)
            if not capability.available:
                logger.info("Vector renderer for %s unavailable: %s", mime, capability.reason)
            self._capabilities[mime] = capability
        return self._capabilities[mime]


def serialize_svg(svg_text: str, width: int, height: int) -> str:
    """
    Make sure the root ``<svg>`` tag declares its namespace and an explicit
    size so the rasterizer renders it at the requested dimensions.
    """
    if not svg_text or not re.search(r"<svg[\s>]", svg_text, re.IGNORECASE):
        return ""
    match = _SVG_OPEN_TAG.search(svg_text)
    attrs = match.group(1)
    self_closing = attrs.endswith("/")
    if self_closing:
        attrs = attrs[:-1]
    width = round(width)
    height = round(height)
    if "xmlns=" not in attrs:
        attrs += ' xmlns="http://www.w3.org/2000/svg"'
    if not re.search(r"\swidth=", attrs, re.IGNORECASE):
        attrs += f' width="{width}"'
    if not re.search(r"\sheight=", attrs, re.IGNORECASE):
        attrs += f' height="{height}"'
    if not re.search(r"\sviewBox=", attrs):
        attrs += f' viewBox="0 0 {width} {height}"'
    tag = f"<svg{attrs}{'/' if self_closing else ''}>"
    return svg_text[: match.start()] + tag + svg_text[match.end() :]


def _encode(pixels, quality: int) -> tuple[bytes, str]:
    """Encode a Pillow image as WEBP, or PNG when WEBP is unsupported."""
    output = io.BytesIO()
    try:
        pixels.save(output, format="WEBP", quality=quality)
        return output.getvalue(), "image/webp"
    except (KeyError, OSError) as exc:
        logger.debug("WEBP encoding unavailable, falling back to PNG: %s", exc)
    output = io.BytesIO()
    pixels.save(output, format="PNG")
    return output.getvalue(), "image/png"


def rasterize_svg(
    svg_text: str,
    width: int,
    height: int,
    limits: MediaLimits = DEFAULT_MEDIA_LIMITS,
) -> tuple[bytes, str]:
    """
    Rasterize SVG markup to ``(bytes, mime)``.

    When the encoded image exceeds the byte budget it is re-rendered smaller,
    scaling each side by the square root of the overshoot (at most halving)
    and never going below ``limits.min_vector_px``.
    """
    svg = serialize_svg(svg_text, width, height)
    if not svg:
        raise ValueError("Vector image did not produce SVG markup")
    fitz = _load_fitz()
    Image = _load_pil_image()

    with fitz.open(stream=svg.encode("utf-8"), filetype="svg") as doc:
        page = doc[0]
        while True:
            target_w = max(1, round(width))
            target_h = max(1, round(height))
            matrix = fitz.Matrix(
                target_w / max(page.rect.width, 1), target_h / max(page.rect.height, 1)
            )
            pixmap = page.get_pixmap(matrix=matrix, alpha=False)
            pixels = Image.open(io.BytesIO(pixmap.tobytes("png")))
            data, mime = _encode(pixels, limits.vector_quality)
            too_large = len(data) > limits.max_vector_bytes
            if not (too_large and width > limits.min_vector_px and height > limits.min_vector_px):
                return data, mime
            scale = max(0.5, math.sqrt(limits.max_vector_bytes / len(data)))
            next_w = max(limits.min_vector_px, round(width * scale))
            next_h = max(limits.min_vector_px, round(height * scale))
            if (next_w, next_h) == (target_w, target_h):
                return data, mime
            width, height = next_w, next_h
            logger.debug("Vector image over budget, re-rendering at %sx%s", width, height)


def rasterize_pdf_page(
    pdf_bytes: bytes,
    page_index: int,
    *,
    max_width: int = 1200,
    quality: int = 80,
) -> tuple[bytes, int, int]:
    """Render one PDF page to JPEG, downscaled to ``max_width``; returns ``(jpeg, w, h)``."""
    fitz = _load_fitz()
    Image = _load_pil_image()
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        page = doc[page_index]
        width = page.rect.width
        height = page.rect.height
        scale = max_width / width if width > max_width else 1.0
        pixmap = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
        pixels = Image.open(io.BytesIO(pixmap.tobytes("png"))).convert("RGB")
    output = io.BytesIO()
    pixels.save(output, format="JPEG", quality=quality)
    return output.getvalue(), round(width), round(height)
