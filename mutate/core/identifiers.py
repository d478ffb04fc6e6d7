"""Column and row identifier resolution.

Every rule handler resolves identifiers through these functions, so all rules
agree about what "B" or "Status" points at.

A column identifier is tried, in order, as:
1. a non-negative integer -> zero-based index
2. a spreadsheet letter code (A, B, ..., Z, AA, ...) -> zero-based index,
   as long as that column exists
3. a case-insensitive match against the header row text

Short headers such as "ID" or "Qty" are also valid letter codes; they only
resolve by letters when the matrix is wide enough. Words longer than three
letters are never letter codes and always go to the header row. A letter
code past the last column that matches no header still resolves to its
decoded index so callers can report it as out of range.

Anything else resolves to NOT_FOUND (-1).
"""

import re
from typing import Optional, Sequence

from openpyxl.utils import column_index_from_string, get_column_letter

from mutate.core.models import Cell, CellMatrix

NOT_FOUND = -1

_LETTERS_RE = re.compile(r"^[A-Za-z]+$")
_INTEGER_RE = re.compile(r"^\d+$")


def column_letter_to_index(letters: str) -> int:
    """A -> 0, Z -> 25, AA -> 26. Raises ValueError for codes longer than three letters."""
    return column_index_from_string(letters) - 1


def column_index_to_letter(index: int) -> str:
    if index < 0:
        raise ValueError(f"Column index must be non-negative, got {index}")
    return get_column_letter(index + 1)


def cell_text(value: Cell) -> str:
    """String form of a cell as used for matching, replacement and output.

    Floats with an integral value drop the trailing ".0" so that a reader that
    yields 10.0 for an integer cell still matches "10".
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def is_blank(value: Cell) -> bool:
    return value is None or cell_text(value).strip() == ""


def build_header_cache(matrix: CellMatrix) -> dict[str, int]:
    """Map lower-cased, trimmed row-0 header text to column index.

    The first occurrence wins when headers repeat.
    """
    cache: dict[str, int] = {}
    if not matrix:
        return cache
    for i, h in enumerate(matrix[0]):
        if is_blank(h):
            continue
        key = cell_text(h).strip().lower()
        cache.setdefault(key, i)
    return cache


def resolve_column(identifier, header_cache: dict[str, int], width: Optional[int] = None) -> int:
    """Resolve one column identifier to a zero-based index, or NOT_FOUND.

    width is the current matrix width; without it letter codes are never
    bounded and always win over header text.
    """
    if identifier is None:
        return NOT_FOUND
    if isinstance(identifier, int) and not isinstance(identifier, bool):
        return identifier if identifier >= 0 else NOT_FOUND

    text = str(identifier).strip()
    if not text:
        return NOT_FOUND
    if _INTEGER_RE.match(text):
        return int(text)
    if _LETTERS_RE.match(text):
        try:
            index = column_letter_to_index(text)
        except ValueError:
            return header_cache.get(text.lower(), NOT_FOUND)
        if width is None or index < width:
            return index
        return header_cache.get(text.lower(), index)
    return header_cache.get(text.lower(), NOT_FOUND)


def resolve_columns(
    identifiers: Sequence, header_cache: dict[str, int], width: int
) -> tuple[list[int], list[str]]:
    """Resolve identifiers to columns that exist in a matrix of the given width.

    Returns (distinct indices in first-seen order, warnings). An identifier
    that resolves to nothing, or to an index at or past width, produces one
    warning and no index.
    """
    indices: list[int] = []
    warnings: list[str] = []
    for ident in identifiers:
        idx = resolve_column(ident, header_cache, width)
        if idx == NOT_FOUND:
            warnings.append(f'Column "{ident}" not found')
        elif idx >= width:
            warnings.append(f'Column "{ident}" is out of range (matrix has {width} columns)')
        elif idx not in indices:
            indices.append(idx)
    return indices, warnings


def row_numbers_to_indices(rows: Optional[Sequence[int]], row_count: int) -> set[int]:
    """Convert 1-based row numbers to in-range 0-based indices."""
    indices = set()
    for n in rows or []:
        idx = n - 1
        if 0 <= idx < row_count:
            indices.add(idx)
    return indices


def get_cell(row: Sequence[Cell], index: int) -> Cell:
    """Cell at index, or None past the end of a ragged row."""
    if 0 <= index < len(row):
        return row[index]
    return None


def matrix_width(matrix: CellMatrix) -> int:
    return max((len(row) for row in matrix), default=0)


def header_width(matrix: CellMatrix) -> int:
    return len(matrix[0]) if matrix else 0
