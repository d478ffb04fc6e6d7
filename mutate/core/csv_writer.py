"""CSV Serializer — renders a cell matrix as delimiter-separated text.

A field is quoted only when it contains the delimiter, a double quote or a
line break; embedded quotes are doubled. Rows are joined with "\\n" and ragged
rows simply emit fewer fields.
"""

from mutate.core.identifiers import cell_text
from mutate.core.models import Cell, CellMatrix, OutputFormat

ENCODINGS = {
    "UTF-8": "utf-8",
    "UTF-16": "utf-16",
    "ASCII": "ascii",
}


def escape_field(value: Cell, delimiter: str = ",") -> str:
    text = cell_text(value)
    if delimiter in text or '"' in text or "\n" in text or "\r" in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def serialize(matrix: CellMatrix, delimiter: str = ",", include_headers: bool = True) -> str:
    rows = matrix if include_headers else matrix[1:]
    return "\n".join(delimiter.join(escape_field(v, delimiter) for v in row) for row in rows)


def serialize_with_format(matrix: CellMatrix, output_format: OutputFormat) -> str:
    return serialize(matrix, output_format.delimiter, output_format.include_headers)


def encode(text: str, encoding: str = "UTF-8") -> tuple[bytes, bool]:
    """Encode CSV text for storage.

    Returns (bytes, lossy). ASCII output replaces unencodable characters with
    "?" and reports lossy=True when that happened.
    """
    codec = ENCODINGS.get(encoding, "utf-8")
    try:
        return text.encode(codec), False
    except UnicodeEncodeError:
        return text.encode(codec, errors="replace"), True
