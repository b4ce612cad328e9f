import datetime
import io
from unittest import TestCase

import pytest
import xlrd
from openpyxl import Workbook

from office2md.exceptions import ExtractionEncodingError
from office2md.extractors.xlsx_extractor import (
    _xlrd_cell_value,
    format_cell_value,
    read_xlsx,
    sheet_markdown,
)

tc = TestCase()


def _workbook_bytes(sheets: dict[str, list[list]]) -> io.BytesIO:
    wb = Workbook()
    wb.remove(wb.active)
    for title, rows in sheets.items():
        ws = wb.create_sheet(title)
        for row in rows:
            ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer


class TestCellValues:
    def test_integral_floats_drop_the_fraction(self):
        tc.assertEqual("3", format_cell_value(3.0))
        tc.assertEqual("2.5", format_cell_value(2.5))
        tc.assertEqual("7", format_cell_value(7))

    def test_dates_are_iso(self):
        tc.assertEqual("2024-01-02T03:04:05", format_cell_value(datetime.datetime(2024, 1, 2, 3, 4, 5)))
        tc.assertEqual("2024-01-02", format_cell_value(datetime.date(2024, 1, 2)))

    def test_empty_and_boolean(self):
        tc.assertEqual("", format_cell_value(None))
        tc.assertEqual("True", format_cell_value(True))

    def test_xlrd_cell_types(self):
        class Book:
            datemode = 0

        tc.assertIsNone(_xlrd_cell_value(xlrd.sheet.Cell(xlrd.XL_CELL_EMPTY, ""), Book()))
        tc.assertEqual(
            datetime.datetime(2023, 3, 15),
            _xlrd_cell_value(xlrd.sheet.Cell(xlrd.XL_CELL_DATE, 45000.0), Book()),
        )
        tc.assertIs(True, _xlrd_cell_value(xlrd.sheet.Cell(xlrd.XL_CELL_BOOLEAN, 1), Book()))
        tc.assertEqual("#DIV/0!", _xlrd_cell_value(xlrd.sheet.Cell(xlrd.XL_CELL_ERROR, 0x07), Book()))


class TestSheetMarkdown:
    def test_header_decides_width(self):
        markdown = sheet_markdown(
            "Data",
            [["A", "B", None], ["1", "2", "3", "4"], ["only"], [None, None]],
            "Worksheet",
        )
        tc.assertEqual(
            "## Worksheet: Data\n\n| A | B |\n| --- | --- |\n| 1 | 2 |\n| only |  |",
            markdown,
        )

    def test_width_is_capped(self):
        header = [f"c{i}" for i in range(120)]
        table_header = sheet_markdown("Wide", [header], "Worksheet").split("\n")[2]
        tc.assertIn("| c99 |", table_header)
        tc.assertNotIn("c100", table_header)

    def test_empty_sheet_is_heading_only(self):
        tc.assertEqual("## Sheet: Empty", sheet_markdown("Empty", [[None], []], "Sheet"))


class TestWorkbook:
    def test_cells_are_formatted_and_escaped(self):
        buffer = _workbook_bytes(
            {
                "Data": [
                    ["Name", "Qty", "When"],
                    ["a|b", 3.0, datetime.datetime(2024, 1, 2, 3, 4, 5)],
                    ["line1\nline2"],
                ],
                "Second": [["x"]],
            }
        )
        result = next(read_xlsx(buffer, path="book.xlsx"))

        tc.assertEqual(
            "## Worksheet: Data\n\n"
            "| Name | Qty | When |\n"
            "| --- | --- | --- |\n"
            "| a\\|b | 3 | 2024-01-02T03:04:05 |\n"
            "| line1<br>line2 |  |  |\n\n"
            "## Worksheet: Second\n\n"
            "| x |\n"
            "| --- |",
            result.get_full_text(),
        )
        tc.assertEqual(2, len(result.units))
        metadata = result.get_metadata()
        tc.assertEqual("xlsx", metadata.source_format)
        tc.assertEqual(2, metadata.unit_count)


class TestDelimitedText:
    def test_utf8_csv_with_bom(self):
        data = "\ufeffname,qty\napple,3\npear,4\n".encode("utf-8")
        result = next(read_xlsx(io.BytesIO(data), path="/tmp/fruit.csv"))
        tc.assertEqual(
            "## Worksheet: fruit\n\n| name | qty |\n| --- | --- |\n| apple | 3 |\n| pear | 4 |",
            result.get_full_text(),
        )
        tc.assertEqual("csv", result.get_metadata().source_format)

    def test_semicolon_delimiter(self):
        data = b"name;qty\napple;3\npear;4\n"
        result = next(read_xlsx(io.BytesIO(data)))
        tc.assertTrue(result.get_full_text().startswith("## Worksheet: Sheet1\n\n| name | qty |"))

    def test_gb18030_text(self):
        data = "名称,数量\n苹果,3\n香蕉,5\n".encode("gb18030")
        text = next(read_xlsx(io.BytesIO(data))).get_full_text()
        tc.assertIn("| 名称 | 数量 |", text)
        tc.assertIn("| 香蕉 | 5 |", text)

    def test_undecodable_bytes(self):
        with pytest.raises(ExtractionEncodingError) as excinfo:
            next(read_xlsx(io.BytesIO(b"\xff\xfe\xff")))
        tc.assertEqual("Unrecognized file encoding", str(excinfo.value))
