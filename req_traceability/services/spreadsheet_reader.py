"""
Spreadsheet Reader — loads workbook rows as lists of typed cells.

The byte-level format is openpyxl's business; this module only picks the
sheet and hands back `values_only` rows for the RowNormalizer.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Any, BinaryIO

from openpyxl import load_workbook

from req_traceability.config import get_settings
from req_traceability.errors import ParseFormatError

logger = logging.getLogger(__name__)


def read_requirement_rows(
    source: str | Path | bytes | BinaryIO,
    sheet_names: list[str] | None = None,
) -> list[list[Any]]:
    """
    Read the requirements sheet of an .xlsx workbook.

    Sheet preference: the configured names in order ("Requirements",
    "Standard Format"), then the first sheet. Trailing fully-empty rows
    are dropped.
    """
    if isinstance(source, bytes):
        source = io.BytesIO(source)

    try:
        workbook = load_workbook(source, read_only=True, data_only=True)
    except Exception as e:
        raise ParseFormatError(f"Could not open workbook: {e}") from e

    try:
        preferred = sheet_names if sheet_names is not None else get_settings().preferred_sheet_names
        name = next((n for n in preferred if n in workbook.sheetnames), None)
        if name is None:
            if not workbook.sheetnames:
                raise ParseFormatError("No worksheet found in workbook")
            name = workbook.sheetnames[0]
        worksheet = workbook[name]

        rows = [list(row) for row in worksheet.iter_rows(values_only=True)]
    finally:
        workbook.close()

    while rows and all(cell is None for cell in rows[-1]):
        rows.pop()

    logger.info(f"Read {len(rows)} rows from sheet '{name}'")
    return rows
