"""Workbook Reader — turns uploaded file bytes into named cell matrices.

Parses .xlsx workbooks with openpyxl (CSV uploads with the csv module) and
owns all coercion before the interpreter sees any data:
- merged ranges keep the value in the anchor cell; every other member is None
- dates and times become ISO-8601 strings, booleans TRUE/FALSE
- trailing empty cells and trailing empty rows are trimmed
"""

import csv
import io
import logging
from datetime import date, datetime, time
from pathlib import Path
from typing import Any

import openpyxl

from mutate.core.errors import MutateError
from mutate.core.models import Cell, CellMatrix

logger = logging.getLogger(__name__)

SPREADSHEET_SUFFIXES = (".xlsx", ".xlsm")
CSV_SUFFIXES = (".csv",)


class WorkbookReadError(MutateError):
    """The uploaded file could not be parsed."""

    code = "INVALID_FILE"


def _coerce_value(value: Any) -> Cell:
    """Convert an openpyxl cell value to a plain scalar."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float, str)):
        return value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


def _trim_row(values: list[Cell]) -> list[Cell]:
    end = len(values)
    while end > 0 and (values[end - 1] is None or values[end - 1] == ""):
        end -= 1
    return values[:end]


def _trim_matrix(rows: CellMatrix) -> CellMatrix:
    end = len(rows)
    while end > 0 and not rows[end - 1]:
        end -= 1
    return rows[:end]


def read_sheet(ws) -> CellMatrix:
    """Extract one worksheet as a ragged matrix."""
    anchors_only: set[tuple[int, int]] = set()
    for merged in ws.merged_cells.ranges:
        for row in range(merged.min_row, merged.max_row + 1):
            for col in range(merged.min_col, merged.max_col + 1):
                if (row, col) != (merged.min_row, merged.min_col):
                    anchors_only.add((row, col))

    rows: CellMatrix = []
    for row_idx, row in enumerate(ws.iter_rows(), start=1):
        values = []
        for col_idx, cell in enumerate(row, start=1):
            if (row_idx, col_idx) in anchors_only:
                values.append(None)
            else:
                values.append(_coerce_value(cell.value))
        rows.append(_trim_row(values))
    return _trim_matrix(rows)


def read_xlsx(data: bytes, evaluate_formulas: bool = True) -> dict[str, CellMatrix]:
    """Read every worksheet of an .xlsx workbook, in workbook order.

    With evaluate_formulas the cached computed values are returned; otherwise
    formula cells keep their formula text.
    """
    try:
        wb = openpyxl.load_workbook(io.BytesIO(data), read_only=False, data_only=evaluate_formulas)
    except Exception as e:
        raise WorkbookReadError(f"Unable to read workbook: {e}") from e

    try:
        sheets = {ws.title: read_sheet(ws) for ws in wb.worksheets}
    finally:
        wb.close()

    logger.info(f"Loaded workbook with {len(sheets)} sheet(s): {', '.join(sheets)}")
    return sheets


def read_csv(data: bytes, sheet_name: str = "Sheet1") -> dict[str, CellMatrix]:
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = data.decode("latin-1")
    reader = csv.reader(io.StringIO(text, newline=""))
    rows: CellMatrix = [_trim_row([v if v != "" else None for v in row]) for row in reader]
    return {sheet_name: _trim_matrix(rows)}


def read_workbook(data: bytes, file_name: str, evaluate_formulas: bool = True) -> dict[str, CellMatrix]:
    """Dispatch on file extension. Raises WorkbookReadError on unsupported input."""
    suffix = Path(file_name).suffix.lower()
    if suffix in SPREADSHEET_SUFFIXES:
        sheets = read_xlsx(data, evaluate_formulas=evaluate_formulas)
    elif suffix in CSV_SUFFIXES:
        sheets = read_csv(data, sheet_name=Path(file_name).stem or "Sheet1")
    else:
        raise WorkbookReadError(f"Unsupported file type '{suffix or file_name}'")

    if not sheets:
        raise WorkbookReadError("Workbook contains no worksheets")
    return sheets


def is_supported_file(file_name: str) -> bool:
    return Path(file_name).suffix.lower() in SPREADSHEET_SUFFIXES + CSV_SUFFIXES
