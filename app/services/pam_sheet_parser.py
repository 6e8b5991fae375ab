"""Parsing of the weekly task sheet CSV export."""
from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from app.config import settings
from app.core.exceptions import MalformedDocumentError
from app.utils.text import normalize_label


class SheetColumn(str, Enum):
    """Logical columns of the task sheet."""

    WEEK_NUMBER = "week_number"
    WEEK_YEAR = "week_year"
    END_DATE = "end_date"
    DATE = "date"
    ASSIGNEE = "assignee"
    DESCRIPTION = "description"
    TITLE = "title"
    LOCATION = "location"
    CATEGORY = "category"
    CONTRACTOR = "contractor"


# Logical column -> (primary synonyms, fallback synonyms), in resolution order.
# End date and year come first so "fecha fin" and "week year" are not claimed
# by the generic date and week columns through substring matches.
HEADER_SYNONYMS: Tuple[Tuple[SheetColumn, Tuple[str, ...], Tuple[str, ...]], ...] = (
    (SheetColumn.END_DATE, ("fecha fin", "fecha termino", "fecha_fin", "end date", "end_date"), ()),
    (SheetColumn.WEEK_YEAR, ("año", "ano", "year"), ()),
    (SheetColumn.WEEK_NUMBER, ("semana", "week"), ()),
    (SheetColumn.DATE, ("fecha", "date"), ()),
    (SheetColumn.ASSIGNEE, ("email", "mail"), ("responsable", "asignado")),
    (SheetColumn.DESCRIPTION, ("descripcion", "description", "tarea"), ()),
    (SheetColumn.TITLE, ("titulo", "actividad"), ()),
    (SheetColumn.LOCATION, ("ubicacion", "location", "lugar"), ()),
    (SheetColumn.CATEGORY, ("riesgo", "risk", "tipo"), ()),
    (SheetColumn.CONTRACTOR, ("contratista", "contrato", "contractor", "proceso"), ()),
)


@dataclass(frozen=True)
class ParsedSheet:
    """Header, data rows and resolved column positions of a sheet."""

    header: List[str]
    rows: List[List[str]]
    columns: Dict[SheetColumn, int] = field(default_factory=dict)

    def cell(self, row: Sequence[str], column: SheetColumn) -> str:
        """Trimmed cell value, or an empty string when the column is absent."""
        index = self.columns.get(column)
        if index is None or index >= len(row):
            return ""
        return row[index]


def read_rows(text: str, delimiter: Optional[str] = None) -> List[List[str]]:
    """Split delimited text into trimmed rows, dropping fully blank ones."""
    if text.startswith("\ufeff"):
        text = text[1:]
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter or settings.PAM_CSV_DELIMITER)
    rows: List[List[str]] = []
    for raw_row in reader:
        row = [cell.strip() for cell in raw_row]
        if any(row):
            rows.append(row)
    return rows


def _find_header(normalized: List[str], synonyms: Sequence[str], claimed: set) -> Optional[int]:
    candidates = [normalize_label(s) for s in synonyms]
    for candidate in candidates:
        for index, header in enumerate(normalized):
            if index not in claimed and header == candidate:
                return index
    for candidate in candidates:
        for index, header in enumerate(normalized):
            if index not in claimed and header and candidate in header:
                return index
    return None


def resolve_columns(header: Sequence[str]) -> Dict[SheetColumn, int]:
    """Map logical columns to header positions using HEADER_SYNONYMS."""
    normalized = [normalize_label(h) for h in header]
    claimed: set = set()
    columns: Dict[SheetColumn, int] = {}
    for column, primary, fallback in HEADER_SYNONYMS:
        index = _find_header(normalized, primary, claimed)
        if index is None and fallback:
            index = _find_header(normalized, fallback, claimed)
        if index is not None:
            claimed.add(index)
            columns[column] = index
    return columns


def parse_sheet(text: str, delimiter: Optional[str] = None) -> ParsedSheet:
    """Parse a raw CSV document into a ParsedSheet.

    Missing columns are not an error here: rows lacking a required value are
    reported individually by the row validator.
    """
    rows = read_rows(text or "", delimiter)
    if len(rows) < 2:
        raise MalformedDocumentError("The document is empty or has no data rows")
    header = rows[0]
    return ParsedSheet(header=header, rows=rows[1:], columns=resolve_columns(header))
