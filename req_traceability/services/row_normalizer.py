"""
Row Normalizer — turns raw spreadsheet rows into canonical RequirementRows.

Two layouts are understood:
  • Hierarchical outline: SN | Main Module | Level | Item | Description |
    Estimate (Hours) | Dependencies | Status | Comments
  • Flat list: Requirement ID | Title | Description | Type | Status |
    Priority | Owner | Source | Estimated Effort | Actual Effort |
    Acceptance Criteria | Tags

Cells are extracted with explicit types.  Anything that cannot be read as
the expected type raises ParseFormatError instead of being coerced.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Sequence

from req_traceability.errors import ParseFormatError
from req_traceability.models.enums import RequirementStatus, RequirementType, Priority, RowLayout
from req_traceability.models.schemas import RequirementRow

logger = logging.getLogger(__name__)

Cell = Any  # str | int | float | bool | datetime | date | None
_CELL_TYPES = (str, int, float, bool, datetime, date)

# ── Status lookup ────────────────────────────────────────

_STATUS_MAP: dict[str, RequirementStatus] = {
    "DRAFT": RequirementStatus.DRAFT,
    "REVIEW": RequirementStatus.REVIEW,
    "IN REVIEW": RequirementStatus.REVIEW,
    "APPROVED": RequirementStatus.APPROVED,
    "IMPLEMENTED": RequirementStatus.IMPLEMENTED,
    "VERIFIED": RequirementStatus.VERIFIED,
    "CLOSED": RequirementStatus.CLOSED,
    "DONE": RequirementStatus.CLOSED,
    "COMPLETE": RequirementStatus.CLOSED,
    "COMPLETED": RequirementStatus.CLOSED,
    "IN PROGRESS": RequirementStatus.REVIEW,
    "PENDING": RequirementStatus.DRAFT,
    "NOT STARTED": RequirementStatus.DRAFT,
}

# First-cell text of the grey helper row the import templates carry
_INSTRUCTION_MARKERS = {"unique id", "auto-generated", "auto-generated (leave empty)"}

# ── Column positions ─────────────────────────────────────

_H_SN, _H_MODULE, _H_LEVEL, _H_ITEM, _H_DESC = 0, 1, 2, 3, 4
_H_ESTIMATE, _H_DEPS, _H_STATUS, _H_COMMENTS = 5, 6, 7, 8

_F_TITLE, _F_DESC, _F_TYPE, _F_STATUS, _F_PRIORITY = 1, 2, 3, 4, 5
_F_SOURCE, _F_EST, _F_ACTUAL, _F_CRITERIA, _F_TAGS = 7, 8, 9, 10, 11


def normalize_status(text: Cell) -> RequirementStatus:
    """Map free-form status text to a RequirementStatus. Unknown → DRAFT."""
    if text is None:
        return RequirementStatus.DRAFT
    return _STATUS_MAP.get(str(text).strip().upper(), RequirementStatus.DRAFT)


class RowNormalizer:
    """
    Detect the sheet layout and extract canonical rows.

    Usage:
        rows = RowNormalizer().normalize(raw_rows)
        rows = RowNormalizer().normalize(raw_rows, expected_layout=RowLayout.FLAT)
    """

    # ── Layout detection ─────────────────────────────────

    @staticmethod
    def detect_layout(header: Sequence[Cell]) -> RowLayout:
        h1 = _text(_cell(header, 0)).upper()
        h2 = _text(_cell(header, 1)).lower()
        if h1 == "SN" and "main module" in h2:
            return RowLayout.HIERARCHICAL
        return RowLayout.FLAT

    # ── Entry point ──────────────────────────────────────

    def normalize(
        self,
        rows: Sequence[Sequence[Cell]],
        expected_layout: RowLayout | None = None,
    ) -> list[RequirementRow]:
        """
        Normalize rows (header first). Row numbers are 1-based sheet rows.
        Raises ParseFormatError on an empty sheet, a layout mismatch, or an
        unreadable cell.
        """
        if not rows:
            raise ParseFormatError("Sheet is empty: no header row found")

        layout = self.detect_layout(rows[0])
        if expected_layout is not None and layout != expected_layout:
            raise ParseFormatError(
                f"Detected {layout.value.lower()} layout where a "
                f"{expected_layout.value.lower()} layout was expected"
            )

        parse_row = self._parse_hierarchical if layout == RowLayout.HIERARCHICAL else self._parse_flat
        normalized: list[RequirementRow] = []
        skipped = 0

        for row_number, raw in enumerate(rows[1:], start=2):
            _check_cell_types(raw, row_number)
            if _is_instruction_row(raw):
                skipped += 1
                continue
            parsed = parse_row(raw, row_number)
            if parsed is None:
                skipped += 1
                continue
            normalized.append(parsed)

        logger.info(
            f"Normalized {len(normalized)} rows ({layout.value}), skipped {skipped}"
        )
        return normalized

    # ── Layout parsers ───────────────────────────────────

    @staticmethod
    def _parse_hierarchical(raw: Sequence[Cell], row_number: int) -> RequirementRow | None:
        item = _text(_cell(raw, _H_ITEM))
        description = _text(_cell(raw, _H_DESC))
        if not item and not description:
            return None

        sn = _text(_cell(raw, _H_SN))
        module = _text(_cell(raw, _H_MODULE))
        comments = _text(_cell(raw, _H_COMMENTS))
        deps_raw = _text(_cell(raw, _H_DEPS))

        if comments:
            description = f"{description}\n\nComments: {comments}"

        return RequirementRow(
            row_number=row_number,
            sequence_id=sn or None,
            group_key=module,
            level=_int(_cell(raw, _H_LEVEL), row_number, "Level", default=0),
            title=item,
            description=description,
            type=RequirementType.FUNCTIONAL.value,
            status=normalize_status(_cell(raw, _H_STATUS)).value,
            priority=Priority.MEDIUM.value,
            estimated_effort=_number(_cell(raw, _H_ESTIMATE), row_number, "Estimate (Hours)"),
            epic=module or None,
            tags=[f"Dependencies: {deps_raw}"] if deps_raw else [],
            dependencies=_split(deps_raw, ","),
        )

    @staticmethod
    def _parse_flat(raw: Sequence[Cell], row_number: int) -> RequirementRow | None:
        title = _text(_cell(raw, _F_TITLE))
        description = _text(_cell(raw, _F_DESC))
        if not title and not description:
            return None

        return RequirementRow(
            row_number=row_number,
            title=title,
            description=description,
            type=_upper_or_none(_cell(raw, _F_TYPE)),
            status=_upper_or_none(_cell(raw, _F_STATUS)),
            priority=_upper_or_none(_cell(raw, _F_PRIORITY)),
            source=_text(_cell(raw, _F_SOURCE)) or None,
            estimated_effort=_number(_cell(raw, _F_EST), row_number, "Estimated Effort"),
            actual_effort=_number(_cell(raw, _F_ACTUAL), row_number, "Actual Effort"),
            acceptance_criteria=_split(_text(_cell(raw, _F_CRITERIA)), ";"),
            tags=_split(_text(_cell(raw, _F_TAGS)), ","),
        )


# ── Cell helpers ─────────────────────────────────────────


def _cell(row: Sequence[Cell], index: int) -> Cell:
    return row[index] if index < len(row) else None


def _check_cell_types(row: Sequence[Cell], row_number: int) -> None:
    for value in row:
        if value is not None and not isinstance(value, _CELL_TYPES):
            raise ParseFormatError(
                f"Unsupported cell value of type {type(value).__name__}", row_number
            )


def _text(value: Cell) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value).strip()


def _upper_or_none(value: Cell) -> str | None:
    text = _text(value)
    return text.upper() if text else None


def _split(text: str, sep: str) -> list[str]:
    return [part.strip() for part in text.split(sep) if part.strip()] if text else []


def _int(value: Cell, row_number: int, column: str, default: int) -> int:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, bool):
        raise ParseFormatError(f"{column} must be a whole number", row_number)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ParseFormatError(f"{column} must be a whole number, got '{value}'", row_number)


def _number(value: Cell, row_number: int, column: str) -> float | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool) or isinstance(value, (datetime, date)):
        raise ParseFormatError(f"{column} must be a number", row_number)
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(value.strip())
    except ValueError:
        raise ParseFormatError(f"{column} must be a number, got '{value}'", row_number)


def _is_instruction_row(row: Sequence[Cell]) -> bool:
    return _text(_cell(row, 0)).lower() in _INSTRUCTION_MARKERS
