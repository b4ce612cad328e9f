import logging
import mimetypes
import os
from typing import Any, Callable, Generator

from office2md.exceptions import ExtractionFileFormatNotSupportedError
from office2md.extractors.data_types import MarkdownContent

logger = logging.getLogger(__name__)

mime_type_mapping = {
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.ms-word.document.macroEnabled.12": "docx",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.ms-excel.sheet.macroEnabled.12": "xlsx",
    "application/vnd.ms-excel": "xlsx",
    "text/csv": "xlsx",
    "application/csv": "xlsx",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
    "application/vnd.ms-powerpoint.presentation.macroEnabled.12": "pptx",
    "application/pdf": "pdf",
}

# Macro-enabled variants are unknown to some mimetypes tables
extension_mapping = {
    ".docx": "docx",
    ".docm": "docx",
    ".xlsx": "xlsx",
    ".xlsm": "xlsx",
    ".xls": "xlsx",
    ".csv": "xlsx",
    ".pptx": "pptx",
    ".pptm": "pptx",
    ".pdf": "pdf",
}

Extractor = Callable[..., Generator[MarkdownContent, Any, None]]


def _get_extractor(file_type: str) -> Extractor:
    """Return the reader function for a file type (lazy import)."""
    if file_type == "docx":
        from office2md.extractors.docx_extractor import read_docx

        return read_docx
    elif file_type == "xlsx":
        from office2md.extractors.xlsx_extractor import read_xlsx

        return read_xlsx
    elif file_type == "pptx":
        from office2md.extractors.pptx_extractor import read_pptx

        return read_pptx
    elif file_type == "pdf":
        from office2md.extractors.pdf_extractor import read_pdf

        return read_pdf
    else:
        raise ExtractionFileFormatNotSupportedError(
            file_type, f"No reader for file type: {file_type}"
        )


def _file_type(path: str) -> str | None:
    path = path.lower()
    _, extension = os.path.splitext(path)
    if extension in extension_mapping:
        return extension_mapping[extension]
    mime_type, _ = mimetypes.guess_type(path)
    return mime_type_mapping.get(mime_type) if mime_type else None


def is_supported_file(path: str) -> bool:
    """Checks if the path is a supported file"""
    return _file_type(path) is not None


def get_extractor(path: str) -> Extractor:
    """Analyse the path of a file and return a suited reader.
       The file does not need to exist. The path or filename alone suffices.

    :returns a reader function taking a file-like object, the path and an
        optional keyword-only conversion session
    :raises ExtractionFileFormatNotSupportedError: no reader covers the file
    """
    file_type = _file_type(path)
    if file_type is None:
        logger.debug(f"File [{path}] is not supported")
        raise ExtractionFileFormatNotSupportedError(path)
    logger.debug(f"Detected file type: {file_type} for file: {path}")
    return _get_extractor(file_type)
