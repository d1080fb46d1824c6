"""
Workbook reading with openpyxl.

Workbooks are opened read-only with cached values, copied into plain row
tuples and closed straight away, so nothing downstream holds an open
archive.
"""

import io
import zipfile
from datetime import date, datetime
from typing import Any

from openpyxl import load_workbook
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from partner_etl.core.errors import UnreadableFile

SheetRows = list[tuple[Any, ...]]


def read_workbook(content: bytes, file_name: str | None = None) -> dict[str, SheetRows]:
    """
    Read every worksheet of a workbook into memory.

    Args:
        content: Raw .xlsx bytes
        file_name: For error reporting only

    Returns:
        Worksheet title to its rows (values only), in workbook order

    Raises:
        UnreadableFile: If the bytes are not an Excel workbook
    """
    if not content:
        raise UnreadableFile("File is empty", file_name=file_name, stage="Validating")

    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (zipfile.BadZipFile, InvalidFileException, KeyError, OSError, ValueError) as e:
        raise UnreadableFile(
            f"Cannot open workbook: {e}",
            file_name=file_name,
            stage="Validating",
            details={"error": type(e).__name__},
        ) from e

    try:
        return {ws.title: [tuple(row) for row in ws.iter_rows(values_only=True)] for ws in workbook.worksheets}
    finally:
        workbook.close()


def find_sheet(sheets: dict[str, SheetRows], name: str) -> str | None:
    """Worksheet title matching name; Excel titles are case-insensitive."""
    wanted = name.strip().lower()
    for title in sheets:
        if title.strip().lower() == wanted:
            return title
    return None


def cell_location(sheet_title: str, column_index: int, row_number: int) -> str:
    """Excel-style cell reference, e.g. "Funds!B7" (column_index is 0-based)."""
    return f"{sheet_title}!{get_column_letter(column_index + 1)}{row_number}"


def normalize_cell(value: Any) -> Any:
    """Trim text and turn blank text into None."""
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def is_blank_row(row: tuple[Any, ...]) -> bool:
    return all(normalize_cell(v) is None for v in row)


def to_staged_value(value: Any) -> Any:
    """JSON-safe form of a cell value: dates become ISO strings."""
    if isinstance(value, datetime):
        if value.time() == datetime.min.time():
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value
