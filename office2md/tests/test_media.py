import hashlib
from unittest import TestCase
from xml.etree import ElementTree as ET

import pytest

from office2md.config import DEFAULT_MEDIA_LIMITS
from office2md.extractors.util.package import OoxmlPackage
from office2md.media.rendering import (
    ImageSize,
    RendererCapability,
    VectorRendererRegistry,
    load_vector_renderer,
    serialize_svg,
)
from office2md.media.resolver import (
    MediaContext,
    clamp_size,
    extract_image_markdown,
    get_image_size,
    process_and_save_image,
    resolve_image_reference,
)
from office2md.media.session import ConversionSession
from office2md.tests.ooxml_builders import (
    A_URI,
    FAKE_PNG,
    IMAGE_REL,
    R_URI,
    WP_URI,
    make_package,
    make_rels,
)

tc = TestCase()

FAKE_WMF = b"\xd7\xcd\xc6\x9a" + bytes(300)


def _drawing(rel_id: str, cx: int = 1905000, cy: int = 952500) -> ET.Element:
    return ET.fromstring(
        f'<w:drawing xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main" '
        f'xmlns:wp="{WP_URI}" xmlns:a="{A_URI}" xmlns:r="{R_URI}">'
        f'<wp:inline><wp:extent cx="{cx}" cy="{cy}"/><wp:docPr id="1" name="Picture 1" descr="Chart"/>'
        f'<a:graphic><a:graphicData><a:blip r:embed="{rel_id}"/></a:graphicData></a:graphic>'
        "</wp:inline></w:drawing>"
    )


@pytest.fixture
def package():
    buffer = make_package(
        {
            "word/document.xml": "<doc/>",
            "word/_rels/document.xml.rels": make_rels(
                [
                    ("rId1", IMAGE_REL, "media/image1.png"),
                    ("rId2", IMAGE_REL, "media/image2.wmf"),
                    ("rId3", IMAGE_REL, "media/missing.png"),
                ]
            ),
            "word/media/image1.png": FAKE_PNG,
            "word/media/image2.wmf": FAKE_WMF,
        }
    )
    with OoxmlPackage(buffer) as pkg:
        yield pkg


class FakeVectorRenderer:
    def __init__(self):
        self.calls = []

    def load(self, mime: str) -> RendererCapability:
        return RendererCapability(True, render=self.render)

    def render(self, data: bytes, size: ImageSize) -> str:
        self.calls.append(size)
        return f'<svg width="{size.px_width}" height="{size.px_height}"></svg>'


def _fake_rasterizer(svg: str, width: int, height: int, limits) -> tuple[bytes, str]:
    return (f"{width}x{height}".encode() * 100, "image/webp")


class TestImageSizing:
    def test_size_from_extent(self):
        size = get_image_size(_drawing("rId1"), DEFAULT_MEDIA_LIMITS)
        tc.assertEqual(ImageSize(200, 100, 150, 75), size)

    def test_default_size_without_extent(self):
        node = ET.fromstring(f'<a:pic xmlns:a="{A_URI}"/>')
        size = get_image_size(node, DEFAULT_MEDIA_LIMITS)
        tc.assertEqual((300, 300), (size.px_width, size.px_height))

    def test_clamp_keeps_ratio(self):
        size = clamp_size(ImageSize(1024, 512, 768, 384), DEFAULT_MEDIA_LIMITS)
        tc.assertEqual(ImageSize(512, 256, 384, 192), size)

    def test_small_images_are_not_clamped(self):
        size = ImageSize(100, 50, 75, 38)
        tc.assertIs(size, clamp_size(size, DEFAULT_MEDIA_LIMITS))


class TestProcessAndSave:
    def test_tiny_payloads_are_dropped(self, session, store):
        tc.assertEqual("", process_and_save_image(b"x" * 255, "image/png", 1, 1, session))
        tc.assertEqual(0, session.image_count)

    def test_payload_is_stored_by_hash(self, session, store):
        ref = process_and_save_image(FAKE_PNG, "image/png", 10, 20, session)
        content_id = hashlib.sha1(FAKE_PNG).hexdigest()
        tc.assertEqual(f"cid:{content_id}", ref)
        record = store.get_record(content_id)
        tc.assertEqual(("image/png", 10, 20), (record.mime, record.width, record.height))
        tc.assertEqual(FAKE_PNG, store.get(content_id))


class TestResolveImageReference:
    def test_raster_image_is_cached_per_session(self, package, session, store, monkeypatch):
        ctx = MediaContext.for_part(package, "word/document.xml", session)
        saves = []
        original_save = store.save
        monkeypatch.setattr(store, "save", lambda *a, **kw: saves.append(a) or original_save(*a, **kw))

        first = resolve_image_reference(_drawing("rId1"), ctx)
        second = resolve_image_reference(_drawing("rId1"), ctx)

        tc.assertTrue(first.startswith("cid:"))
        tc.assertEqual(first, second)
        tc.assertEqual(1, len(saves))
        tc.assertIn("word/media/image1.png", session.media_cache)

    def test_markdown_uses_alt_text(self, package, session):
        ctx = MediaContext.for_part(package, "word/document.xml", session)
        markdown = extract_image_markdown(_drawing("rId1"), ctx)
        tc.assertRegex(markdown, r"^!\[Chart\]\(cid:[0-9a-f]{40}\)$")

    def test_missing_targets_resolve_to_nothing(self, package, session):
        ctx = MediaContext.for_part(package, "word/document.xml", session)
        tc.assertEqual("", resolve_image_reference(_drawing("rId3"), ctx))
        tc.assertEqual("", resolve_image_reference(_drawing("rId9"), ctx))
        tc.assertEqual("", extract_image_markdown(_drawing("rId9"), ctx))

    def test_vector_image_is_rendered_and_cached_by_size(self, package, store):
        renderer = FakeVectorRenderer()
        session = ConversionSession(
            store=store,
            renderers=VectorRendererRegistry(renderer.load),
            svg_rasterizer=_fake_rasterizer,
        )
        ctx = MediaContext.for_part(package, "word/document.xml", session)

        first = resolve_image_reference(_drawing("rId2"), ctx)
        again = resolve_image_reference(_drawing("rId2"), ctx)
        larger = resolve_image_reference(_drawing("rId2", cx=3810000, cy=1905000), ctx)

        tc.assertTrue(first.startswith("cid:"))
        tc.assertEqual(first, again)
        tc.assertNotEqual(first, larger)
        tc.assertEqual(2, len(renderer.calls))
        tc.assertIn("word/media/image2.wmf|200x100|png", session.media_cache)
        record = store.get_record(first[len("cid:"):])
        tc.assertEqual("image/webp", record.mime)

    def test_unavailable_vector_renderer_resolves_to_nothing(self, package, store):
        session = ConversionSession(
            store=store,
            renderers=VectorRendererRegistry(
                lambda mime: RendererCapability(False, reason="not installed")
            ),
        )
        ctx = MediaContext.for_part(package, "word/document.xml", session)

        tc.assertEqual("", resolve_image_reference(_drawing("rId2"), ctx))
        tc.assertEqual("", session.media_cache["word/media/image2.wmf|200x100|png"])


class TestRendering:
    def test_serialize_svg_adds_namespace_and_size(self):
        svg = serialize_svg('<svg viewBox="0 0 10 5"><rect/></svg>', 200.4, 100)
        tc.assertTrue(svg.startswith('<svg viewBox="0 0 10 5" xmlns="http://www.w3.org/2000/svg" width="200" height="100">'))
        tc.assertTrue(svg.endswith("<rect/></svg>"))

    def test_serialize_svg_keeps_explicit_size(self):
        svg = serialize_svg('<svg xmlns="http://www.w3.org/2000/svg" width="5" height="6"/>', 50, 60)
        tc.assertEqual(
            '<svg xmlns="http://www.w3.org/2000/svg" width="5" height="6" viewBox="0 0 50 60"/>',
            svg,
        )

    def test_serialize_svg_rejects_other_markup(self):
        tc.assertEqual("", serialize_svg("<html></html>", 10, 10))
        tc.assertEqual("", serialize_svg("", 10, 10))

    def test_no_renderer_for_raster_mimes(self):
        capability = load_vector_renderer("image/png")
        tc.assertFalse(capability.available)
        tc.assertIsNone(capability.render)

    def test_registry_loads_each_mime_once(self):
        loads = []

        def loader(mime):
            loads.append(mime)
            return RendererCapability(False, reason="missing")

        registry = VectorRendererRegistry(loader)
        registry.get("image/x-wmf")
        registry.get("image/x-wmf")
        registry.get("image/x-emf")
        tc.assertEqual(["image/x-wmf", "image/x-emf"], loads)
