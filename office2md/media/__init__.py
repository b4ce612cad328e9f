from office2md.media.rendering import RendererCapability, VectorRendererRegistry
from office2md.media.resolver import (
    MediaContext,
    extract_image_markdown,
    process_and_save_image,
    resolve_image_reference,
)
from office2md.media.session import ConversionSession

__all__ = [
    "ConversionSession",
    "MediaContext",
    "RendererCapability",
    "VectorRendererRegistry",
    "extract_image_markdown",
    "process_and_save_image",
    "resolve_image_reference",
]
