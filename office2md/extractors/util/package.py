"""
Access to zip-packaged OOXML documents.

``OoxmlPackage`` opens the container once per conversion, rejects probable
ZIP bombs and OLE-wrapped (encrypted) packages, and offers the helpers the
readers need: raw part bytes, parsed XML roots and relationship maps.
"""

from __future__ import annotations

import io
import logging
import posixpath
import zipfile
from dataclasses import dataclass
from xml.etree import ElementTree as ET

import olefile

from office2md.exceptions import (
    ExtractionFailedError,
    ExtractionFileEncryptedError,
    ExtractionZipBombError,
)

logger = logging.getLogger(__name__)

REL_NS = "{http://schemas.openxmlformats.org/package/2006/relationships}"


@dataclass(frozen=True)
class ZipBombLimits:
    """
    Heuristics for rejecting probable ZIP bombs.

    The defaults are deliberately high so that large but legitimate documents
    pass while extreme bombs are still caught.
    """

    max_entries: int = 50_000
    max_total_uncompressed_bytes: int = 4 * 1024 * 1024 * 1024  # 4 GiB
    max_single_uncompressed_bytes: int = 1 * 1024 * 1024 * 1024  # 1 GiB
    max_total_compression_ratio: float = 200.0
    max_entry_compression_ratio: float = 500.0


DEFAULT_ZIP_BOMB_LIMITS = ZipBombLimits()


def validate_zipfile(
    zf: zipfile.ZipFile,
    *,
    limits: ZipBombLimits = DEFAULT_ZIP_BOMB_LIMITS,
    source: str | None = None,
) -> None:
    """Raise ``ExtractionZipBombError`` when the container trips a limit."""
    suffix = f" [{source}]" if source else ""
    infos = zf.infolist()
    if len(infos) > limits.max_entries:
        raise ExtractionZipBombError(
            f"ZIP container has too many entries ({len(infos)} > {limits.max_entries})"
            + suffix
        )

    total_uncompressed = 0
    total_compressed = 0
    for info in infos:
        if info.is_dir():
            continue
        if info.file_size > limits.max_single_uncompressed_bytes:
            raise ExtractionZipBombError(
                f"ZIP entry {info.filename} too large ({info.file_size} bytes)" + suffix
            )
        if info.file_size > 0:
            if info.compress_size <= 0:
                raise ExtractionZipBombError(
                    f"ZIP entry {info.filename} has zero compressed size" + suffix
                )
            ratio = info.file_size / info.compress_size
            if ratio > limits.max_entry_compression_ratio:
                raise ExtractionZipBombError(
                    f"ZIP entry {info.filename} compression ratio too high ({ratio:.1f})"
                    + suffix
                )
        total_uncompressed += info.file_size
        total_compressed += info.compress_size
        if total_uncompressed > limits.max_total_uncompressed_bytes:
            raise ExtractionZipBombError(
                f"ZIP total uncompressed size too large ({total_uncompressed} bytes)"
                + suffix
            )

    if total_uncompressed > 0:
        total_ratio = total_uncompressed / max(total_compressed, 1)
        if total_ratio > limits.max_total_compression_ratio:
            raise ExtractionZipBombError(
                f"ZIP total compression ratio too high ({total_ratio:.1f})" + suffix
            )


def is_ooxml_encrypted(file_like: io.BytesIO) -> bool:
    """Encrypted OOXML files are OLE compound files carrying encryption streams."""
    file_like.seek(0)
    if not olefile.isOleFile(file_like):
        file_like.seek(0)
        return False
    file_like.seek(0)
    with olefile.OleFileIO(file_like) as ole:
        encrypted = any(
            ole.exists(stream)
            for stream in ("EncryptionInfo", "EncryptedPackage", "DataSpaces")
        )
    file_like.seek(0)
    return encrypted


def rels_path_for(part_path: str) -> str:
    """``ppt/slides/slide1.xml`` -> ``ppt/slides/_rels/slide1.xml.rels``"""
    directory, name = posixpath.split(part_path)
    return posixpath.join(directory, "_rels", f"{name}.rels")


def normalize_target_path(base: str, target: str) -> str:
    """
    Resolve a relationship target against the directory of its source part.

    A leading ``/`` addresses the package root, ``../`` climbs one level and
    ``./`` refers to the base directory itself.
    """
    target = target.replace("\\", "/")
    if target.startswith("/"):
        segments: list[str] = []
        target = target.lstrip("/")
    else:
        segments = [segment for segment in base.replace("\\", "/").split("/") if segment]

    for segment in target.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if segments:
                segments.pop()
            continue
        segments.append(segment)
    return "/".join(segments)


def parse_relationships(root: ET.Element | None) -> dict[str, str]:
    """
    Map relationship ids to their targets as written in the part, skipping
    external targets. Resolve them with ``normalize_target_path``.
    """
    relationships: dict[str, str] = {}
    if root is None:
        return relationships
    for rel in root.iter(f"{REL_NS}Relationship"):
        rel_id = rel.get("Id")
        target = rel.get("Target")
        if not rel_id or not target:
            continue
        if rel.get("TargetMode") == "External":
            continue
        relationships[rel_id] = target
    return relationships


def relationship_types(root: ET.Element, base: str) -> dict[str, str]:
    """Map package paths to the relationship type that points at them."""
    types: dict[str, str] = {}
    for rel in root.iter(f"{REL_NS}Relationship"):
        target = rel.get("Target")
        if not target or rel.get("TargetMode") == "External":
            continue
        types[normalize_target_path(base, target)] = rel.get("Type") or ""
    return types


class OoxmlPackage:
    """Reusable ZIP context with convenience helpers for reading OOXML parts."""

    def __init__(
        self,
        file_like: io.BytesIO,
        *,
        limits: ZipBombLimits = DEFAULT_ZIP_BOMB_LIMITS,
        source: str | None = None,
    ):
        self.file_like = file_like
        self.source = source
        if is_ooxml_encrypted(file_like):
            raise ExtractionFileEncryptedError(
                f"Document is encrypted or password protected: {source or 'stream'}"
            )
        file_like.seek(0)
        try:
            self._zip = zipfile.ZipFile(file_like, "r")
        except zipfile.BadZipFile as exc:
            raise ExtractionFailedError(
                f"Document is not a valid OOXML package: {source or 'stream'}",
                cause=exc,
            ) from exc
        try:
            validate_zipfile(self._zip, limits=limits, source=source)
        except Exception:
            self._zip.close()
            raise
        self._namelist = set(self._zip.namelist())
        self._relationships: dict[str, dict[str, str]] = {}

    @property
    def namelist(self) -> set[str]:
        return self._namelist

    def exists(self, path: str) -> bool:
        return path in self._namelist

    def read_bytes(self, path: str) -> bytes:
        return self._zip.read(path)

    def read_xml_root(self, path: str) -> ET.Element:
        with self._zip.open(path) as handle:
            return ET.parse(handle).getroot()

    def relationships(self, part_path: str) -> dict[str, str]:
        """RelationshipMap of ``part_path``; empty when the part has none."""
        if part_path not in self._relationships:
            rels_path = rels_path_for(part_path)
            root = self.read_xml_root(rels_path) if self.exists(rels_path) else None
            self._relationships[part_path] = parse_relationships(root)
        return self._relationships[part_path]

    def resolve(self, part_path: str, rel_id: str) -> str | None:
        """Package path targeted by ``rel_id`` of ``part_path``."""
        target = self.relationships(part_path).get(rel_id)
        if not target:
            return None
        return normalize_target_path(posixpath.dirname(part_path), target)

    def relationship_types(self, part_path: str) -> dict[str, str]:
        rels_path = rels_path_for(part_path)
        if not self.exists(rels_path):
            return {}
        return relationship_types(
            self.read_xml_root(rels_path), posixpath.dirname(part_path)
        )

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> "OoxmlPackage":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
