"""
Spreadsheet to Markdown Reader
==============================

Converts spreadsheets into Markdown, one ``## Worksheet: <name>`` section per
sheet holding a Markdown table whose first row is the header.

Supported Inputs
----------------
    - .xlsx/.xlsm: Office Open XML workbooks, read with openpyxl
    - .xls: legacy BIFF workbooks inside an OLE container, read with xlrd
    - anything else: decoded as text and parsed as delimited values (CSV)

Dependencies
------------
openpyxl: https://openpyxl.readthedocs.io/
    Opened with read_only=True and data_only=True, so formula cells yield
    their cached values.

xlrd: https://xlrd.readthedocs.io/
    Only used for the legacy binary format.

Table Rules
-----------
    - The header row decides the table width, capped at 100 columns
    - Shorter rows are padded with empty cells, longer rows are cut
    - Empty cells render as empty strings
    - Line breaks inside a cell become ``<br>``, pipes are escaped
    - Integral numbers render without a trailing ``.0``
    - Dates and times render in ISO-8601
    - Trailing empty rows and trailing empty cells of a row are dropped

Text Fallback
-------------
When the bytes are neither a ZIP package nor an OLE workbook (or the
workbook parser fails), the content is decoded as strict UTF-8, then as
GB18030. If neither works the conversion fails with the unrecognized
encoding message. The delimiter of the decoded text is sniffed among comma,
semicolon and tab.

Known Limitations
-----------------
- Charts, images and comments are not extracted
- Merged cells only carry a value in their top-left cell
- Encrypted workbooks are rejected
"""

import csv
import datetime
import io
import logging
import zipfile
from pathlib import Path
from typing import Any, Generator

import olefile
import xlrd
from openpyxl import load_workbook

from office2md.exceptions import (
    ExtractionEncodingError,
    ExtractionError,
    ExtractionFailedError,
    ExtractionFileEncryptedError,
)
from office2md.extractors.data_types import DocumentMetadata, MarkdownContent
from office2md.extractors.util.markdown import escape_cell, format_markdown_table
from office2md.extractors.util.package import is_ooxml_encrypted, validate_zipfile
from office2md.media.session import ConversionSession

logger = logging.getLogger(__name__)

MAX_COLUMNS = 100
CSV_DELIMITERS = ",;\t"
CSV_SNIFF_BYTES = 64 * 1024
DEFAULT_SHEET_NAME = "Sheet1"


def format_cell_value(value: Any) -> str:
    """Display string of a cell value, before Markdown escaping."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    return str(value)


def _trim_row(row: list[str]) -> list[str]:
    end = len(row)
    while end > 0 and not row[end - 1]:
        end -= 1
    return row[:end]


def _trim_rows(rows: list[list[str]]) -> list[list[str]]:
    trimmed = [_trim_row(row) for row in rows]
    while trimmed and not trimmed[-1]:
        trimmed.pop()
    return trimmed


def sheet_markdown(name: str, rows: list[list[Any]], worksheet_label: str) -> str:
    """
    Markdown section of one worksheet.

    ``rows`` holds raw cell values; the first row is the header and decides
    the column count.
    """
    heading = f"## {worksheet_label}: {name}"
    cells = _trim_rows([[format_cell_value(value) for value in row] for row in rows])
    if not cells or not cells[0]:
        return heading

    column_count = min(len(cells[0]), MAX_COLUMNS)
    escaped = [[escape_cell(cell) for cell in row] for row in cells]
    return heading + "\n\n" + format_markdown_table(escaped, width=column_count)


def _xlrd_cell_value(cell: xlrd.sheet.Cell, workbook: xlrd.Book) -> Any:
    if cell.ctype == xlrd.XL_CELL_EMPTY or cell.ctype == xlrd.XL_CELL_BLANK:
        return None
    if cell.ctype == xlrd.XL_CELL_DATE:
        try:
            return xlrd.xldate.xldate_as_datetime(cell.value, workbook.datemode)
        except (ValueError, OverflowError, xlrd.xldate.XLDateError):
            return cell.value
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return bool(cell.value)
    if cell.ctype == xlrd.XL_CELL_ERROR:
        return xlrd.error_text_from_code.get(cell.value, "#ERROR")
    return cell.value


def _read_openpyxl_sheets(
    file_like: io.BytesIO, metadata: DocumentMetadata
) -> list[tuple[str, list[list[Any]]]]:
    file_like.seek(0)
    wb = load_workbook(file_like, read_only=True, data_only=True)
    try:
        props = wb.properties
        metadata.title = props.title or ""
        metadata.author = props.creator or ""
        metadata.last_modified_by = props.lastModifiedBy or ""
        if isinstance(props.created, datetime.datetime):
            metadata.created = props.created.isoformat()
        if isinstance(props.modified, datetime.datetime):
            metadata.modified = props.modified.isoformat()

        sheets = []
        for ws in wb.worksheets:
            logger.debug(f"Reading sheet: [{ws.title}]")
            rows = [list(row) for row in ws.iter_rows(values_only=True)]
            sheets.append((ws.title, rows))
        return sheets
    finally:
        wb.close()


def _read_xlrd_sheets(data: bytes) -> list[tuple[str, list[list[Any]]]]:
    workbook = xlrd.open_workbook(file_contents=data)
    sheets = []
    for sheet in workbook.sheets():
        logger.debug(f"Reading sheet: [{sheet.name}]")
        rows = [
            [_xlrd_cell_value(cell, workbook) for cell in sheet.row(row_idx)]
            for row_idx in range(sheet.nrows)
        ]
        sheets.append((sheet.name, rows))
    return sheets


def _read_workbook_sheets(
    file_like: io.BytesIO, data: bytes, metadata: DocumentMetadata, source: str | None
) -> list[tuple[str, list[list[Any]]]] | None:
    """Sheets of a binary workbook, None when the bytes are not one."""
    file_like.seek(0)
    if zipfile.is_zipfile(file_like):
        file_like.seek(0)
        with zipfile.ZipFile(file_like) as zf:
            validate_zipfile(zf, source=source)
        metadata.source_format = "xlsx"
        return _read_openpyxl_sheets(file_like, metadata)

    file_like.seek(0)
    if olefile.isOleFile(file_like):
        if is_ooxml_encrypted(file_like):
            raise ExtractionFileEncryptedError(
                f"Workbook is encrypted or password protected: {source or 'stream'}"
            )
        metadata.source_format = "xls"
        return _read_xlrd_sheets(data)
    return None


def decode_text(data: bytes, labels_message: str) -> str:
    """Strict UTF-8, then GB18030; anything else is unreadable."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        logger.debug("Content is not UTF-8, trying GB18030")
    try:
        return data.decode("gb18030")
    except UnicodeDecodeError as exc:
        raise ExtractionEncodingError(labels_message, cause=exc) from exc


def parse_delimited_text(text: str) -> list[list[str]]:
    text = text.lstrip("\ufeff")
    sample = text[:CSV_SNIFF_BYTES]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=CSV_DELIMITERS)
    except csv.Error:
        dialect = csv.excel
    return [row for row in csv.reader(io.StringIO(text, newline=""), dialect)]


def read_xlsx(
    file_like: io.BytesIO,
    path: str | None = None,
    *,
    session: ConversionSession | None = None,
) -> Generator[MarkdownContent, Any, None]:
    """
    Convert a spreadsheet (.xlsx, .xls or delimited text) to Markdown.

    Args:
        file_like: BytesIO object containing the complete file data.
        path: Optional filesystem path to the source file, used for metadata
            and as sheet name of delimited text.
        session: Conversion session; only its labels are used.

    Yields:
        MarkdownContent: the Markdown text, one unit per worksheet.

    Raises:
        ExtractionFileEncryptedError: the workbook is encrypted.
        ExtractionZipBombError: the package trips the ZIP-bomb heuristics.
        ExtractionEncodingError: the text fallback cannot decode the bytes.
        ExtractionFailedError: the decoded text cannot be parsed.
    """
    session = session or ConversionSession()
    labels = session.labels
    metadata = DocumentMetadata(source_format="csv")
    file_like.seek(0)
    data = file_like.read()

    sheets = None
    try:
        sheets = _read_workbook_sheets(file_like, data, metadata, path)
    except ExtractionError:
        raise
    except Exception as exc:
        logger.warning(f"Workbook parsing failed, decoding as text: {exc}")
        metadata.source_format = "csv"

    if sheets is None:
        text = decode_text(data, labels.unrecognized_encoding)
        try:
            rows = parse_delimited_text(text)
        except csv.Error as exc:
            raise ExtractionFailedError(
                f"Failed to parse delimited text: {exc}", cause=exc
            ) from exc
        sheet_name = Path(path).stem if path else DEFAULT_SHEET_NAME
        sheets = [(sheet_name, rows)]

    sections = [sheet_markdown(name, rows, labels.worksheet) for name, rows in sheets]
    metadata.unit_count = len(sections)
    metadata.populate_from_path(path)
    logger.info("Extracted spreadsheet: %d worksheets", len(sections))
    yield MarkdownContent(
        text="\n\n".join(sections),
        units=sections,
        metadata=metadata,
    )
