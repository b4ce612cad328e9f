import typing
from abc import abstractmethod
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import List, Protocol


@dataclass
class FileMetadataInterface:
    filename: str | None = None
    file_extension: str | None = None
    file_path: str | None = None
    folder_path: str | None = None

    def populate_from_path(self, path: str | Path | None) -> None:
        """Populate file metadata fields from a path."""
        if path is None:
            return
        p = Path(path)
        self.filename = p.name
        self.file_extension = p.suffix
        self.file_path = str(p.resolve()) if p.exists() else str(p)
        self.folder_path = (
            str(p.parent.resolve()) if p.parent.exists() else str(p.parent)
        )

    def to_dict(self) -> dict:
        return asdict(self)


class ExtractionInterface(Protocol):
    @abstractmethod
    def iterator(self) -> typing.Iterator[str]:
        """
        Returns an iterator over the Markdown of the structural units of a file.
        A PDF returns one unit per page, presentations one per slide and
        spreadsheets one per worksheet. Word documents have no per-page
        representation in the file, they return a single unit.
        """
        ...

    @abstractmethod
    def get_full_text(self) -> str:
        """The whole Markdown document as one block of text"""
        ...

    @abstractmethod
    def get_metadata(self) -> FileMetadataInterface:
        """Returns the metadata of the extracted file"""
        ...


@dataclass
class DocumentMetadata(FileMetadataInterface):
    # docx, xlsx, xls, csv, pptx or pdf
    source_format: str = ""
    title: str = ""
    author: str = ""
    created: str = ""
    modified: str = ""
    last_modified_by: str = ""
    # pages, slides or worksheets; 1 for word documents
    unit_count: int = 0
    image_count: int = 0


@dataclass
class MarkdownContent(ExtractionInterface):
    text: str = ""
    units: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)

    def iterator(self) -> typing.Iterator[str]:
        if self.units:
            yield from self.units
        else:
            yield self.text

    def get_full_text(self) -> str:
        return self.text

    def get_metadata(self) -> DocumentMetadata:
        return self.metadata

    def to_dict(self) -> dict:
        """The conversion result handed to message composition."""
        return {"text": self.text}
