"""Tests for the workbook reader — uses programmatic openpyxl workbooks."""

import io
from datetime import date, datetime

import openpyxl
import pytest

from mutate.core.workbook_reader import (
    WorkbookReadError,
    is_supported_file,
    read_csv,
    read_workbook,
    read_xlsx,
)
from tests.conftest import workbook_bytes


class TestReadXlsx:
    def test_sheets_in_workbook_order(self):
        data = workbook_bytes({
            "Summary": [["Total"], [3]],
            "Detail": [["Item", "Qty"], ["a", 1], ["b", 2]],
        })
        sheets = read_xlsx(data)
        assert list(sheets) == ["Summary", "Detail"]
        assert sheets["Detail"] == [["Item", "Qty"], ["a", 1], ["b", 2]]

    def test_coercion(self):
        data = workbook_bytes({"S": [["When", "Day", "Flag", "Price"], [datetime(2024, 3, 1, 9, 30), date(2024, 3, 2), True, 2.5]]})
        row = read_xlsx(data)["S"][1]
        assert row[0] == "2024-03-01T09:30:00"
        assert row[1].startswith("2024-03-02")
        assert row[2] == "TRUE"
        assert row[3] == 2.5

    def test_trailing_empties_trimmed(self):
        data = workbook_bytes({"S": [["a", "b", None], ["1", None, None], [None, None, None]]})
        assert read_xlsx(data)["S"] == [["a", "b"], ["1"]]

    def test_merged_cells_keep_anchor_only(self):
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = "Regions"
        ws.append(["Region", "Q1"])
        ws.append(["East", 10])
        ws.append([None, 20])
        ws.merge_cells("A2:A3")
        buffer = io.BytesIO()
        wb.save(buffer)

        rows = read_xlsx(buffer.getvalue())["Regions"]
        assert rows[1] == ["East", 10]
        assert rows[2] == [None, 20]

    def test_formula_text_kept_when_not_evaluating(self):
        data = workbook_bytes({"S": [["a", "b", "sum"], [1, 2, "=A2+B2"]]})
        rows = read_xlsx(data, evaluate_formulas=False)["S"]
        assert rows[1][2] == "=A2+B2"

    def test_corrupt_bytes(self):
        with pytest.raises(WorkbookReadError):
            read_xlsx(b"not a zip file")


class TestReadCsv:
    def test_single_sheet(self):
        sheets = read_csv(b"Name,Age\nAnn,31\n,\n", sheet_name="people")
        assert sheets == {"people": [["Name", "Age"], ["Ann", "31"]]}

    def test_bom_stripped(self):
        sheets = read_csv("\ufeffName\nÅse\n".encode("utf-8"))
        assert sheets["Sheet1"][0] == ["Name"]
        assert sheets["Sheet1"][1] == ["Åse"]


class TestReadWorkbook:
    def test_csv_sheet_named_after_file(self):
        sheets = read_workbook(b"a,b\n1,2\n", "orders.csv")
        assert list(sheets) == ["orders"]

    def test_unsupported_extension(self):
        with pytest.raises(WorkbookReadError) as exc_info:
            read_workbook(b"", "report.pdf")
        assert exc_info.value.code == "INVALID_FILE"

    def test_is_supported_file(self):
        assert is_supported_file("a.XLSX")
        assert is_supported_file("a.csv")
        assert not is_supported_file("a.xls")
        assert not is_supported_file("noext")
