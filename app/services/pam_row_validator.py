"""Validation of parsed task sheet rows into typed import records."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable, List, Optional

from app.config import settings
from app.services.pam_sheet_parser import ParsedSheet, SheetColumn

_DIGITS_RE = re.compile(r"^\d+$", flags=re.ASCII)
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$", flags=re.ASCII)
_DMY_DATE_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$", flags=re.ASCII)

MIN_WEEK_YEAR = 2020
MAX_WEEK_YEAR = 2100

# Header is row 1, so the first data row is row 2.
FIRST_DATA_ROW = 2


class RowErrorCode(str, Enum):
    """Row-level validation failures."""

    INVALID_WEEK_NUMBER = "INVALID_WEEK_NUMBER"
    INVALID_YEAR = "INVALID_YEAR"
    INVALID_DATE = "INVALID_DATE"
    INVALID_IDENTITY = "INVALID_IDENTITY"
    MISSING_DESCRIPTION = "MISSING_DESCRIPTION"


@dataclass(frozen=True)
class RowError:
    """Validation error tied to a source row."""

    row: int
    code: RowErrorCode
    message: str

    def __str__(self) -> str:
        return f"Row {self.row}: {self.message}"


@dataclass(frozen=True)
class PamTaskImportRow:
    """A validated task row ready for reconciliation."""

    row: int
    week_year: int
    week_number: int
    date: date
    assignee_email: str
    description: str
    end_date: Optional[date] = None
    location: Optional[str] = None
    contractor: Optional[str] = None
    risk_type: Optional[str] = None

    @property
    def period(self):
        return self.week_year, self.week_number


@dataclass
class ValidationOutcome:
    """Valid rows and collected errors of one document."""

    rows: List[PamTaskImportRow] = field(default_factory=list)
    errors: List[RowError] = field(default_factory=list)

    @property
    def messages(self) -> List[str]:
        return [str(error) for error in self.errors]


def parse_week_number(value: Optional[str]) -> Optional[int]:
    """Parse "10" or "W10" into a week number in [1, 53]."""
    cleaned = (value or "").strip()
    if cleaned[:1] in ("W", "w"):
        cleaned = cleaned[1:].strip()
    if not _DIGITS_RE.match(cleaned):
        return None
    number = int(cleaned)
    return number if 1 <= number <= 53 else None


def parse_week_year(value: Optional[str]) -> Optional[int]:
    """Parse a year in [2020, 2100]."""
    cleaned = (value or "").strip()
    if not _DIGITS_RE.match(cleaned):
        return None
    year = int(cleaned)
    return year if MIN_WEEK_YEAR <= year <= MAX_WEEK_YEAR else None


def parse_sheet_date(value: Optional[str]) -> Optional[date]:
    """Parse YYYY-MM-DD, DD/MM/YYYY or DD-MM-YYYY into a real calendar date."""
    cleaned = (value or "").strip()
    match = _ISO_DATE_RE.match(cleaned)
    if match:
        year, month, day = match.groups()
    else:
        match = _DMY_DATE_RE.match(cleaned)
        if not match:
            return None
        day, month, year = match.groups()
    try:
        return date(int(year), int(month), int(day))
    except ValueError:
        return None


def email_domain_allowed(email: str, allowed_domains: Iterable[str]) -> bool:
    """Check the email's domain against an allow-list of domains (subdomains included)."""
    domains = [d.strip().lower().lstrip("@.") for d in allowed_domains if d and d.strip()]
    if not domains:
        return True
    domain = email.rpartition("@")[2].lower()
    return any(domain == allowed or domain.endswith("." + allowed) for allowed in domains)


def normalize_identity(value: Optional[str], allowed_domains: Iterable[str]) -> Optional[str]:
    """Return the lowercased email when it is usable as an assignee reference."""
    email = (value or "").strip().lower()
    local, at, domain = email.rpartition("@")
    if not at or not local or not domain:
        return None
    if not email_domain_allowed(email, allowed_domains):
        return None
    return email


def validate_row(
    sheet: ParsedSheet,
    row: List[str],
    row_number: int,
    allowed_domains: Iterable[str],
):
    """Validate one data row, returning either a PamTaskImportRow or a RowError."""
    raw_week = sheet.cell(row, SheetColumn.WEEK_NUMBER)
    week_number = parse_week_number(raw_week)
    if week_number is None:
        return RowError(row_number, RowErrorCode.INVALID_WEEK_NUMBER, f"invalid week number '{raw_week}'")

    raw_year = sheet.cell(row, SheetColumn.WEEK_YEAR)
    week_year = parse_week_year(raw_year)
    if week_year is None:
        return RowError(row_number, RowErrorCode.INVALID_YEAR, f"invalid year '{raw_year}'")

    raw_date = sheet.cell(row, SheetColumn.DATE)
    task_date = parse_sheet_date(raw_date)
    if task_date is None:
        return RowError(row_number, RowErrorCode.INVALID_DATE, f"invalid date '{raw_date}'")

    raw_email = sheet.cell(row, SheetColumn.ASSIGNEE)
    email = normalize_identity(raw_email, allowed_domains)
    if email is None:
        return RowError(row_number, RowErrorCode.INVALID_IDENTITY, f"invalid assignee email '{raw_email}'")

    description = sheet.cell(row, SheetColumn.DESCRIPTION) or sheet.cell(row, SheetColumn.TITLE)
    if not description:
        return RowError(row_number, RowErrorCode.MISSING_DESCRIPTION, "missing description")

    raw_end = sheet.cell(row, SheetColumn.END_DATE)
    end_date = None
    if raw_end:
        end_date = parse_sheet_date(raw_end)
        if end_date is None or end_date < task_date:
            return RowError(row_number, RowErrorCode.INVALID_DATE, f"invalid end date '{raw_end}'")

    return PamTaskImportRow(
        row=row_number,
        week_year=week_year,
        week_number=week_number,
        date=task_date,
        assignee_email=email,
        description=description,
        end_date=end_date,
        location=sheet.cell(row, SheetColumn.LOCATION) or None,
        contractor=sheet.cell(row, SheetColumn.CONTRACTOR) or None,
        risk_type=sheet.cell(row, SheetColumn.CATEGORY) or None,
    )


def validate_sheet(sheet: ParsedSheet, allowed_domains: Optional[Iterable[str]] = None) -> ValidationOutcome:
    """Validate every data row; invalid rows are excluded and their errors collected."""
    if allowed_domains is None:
        allowed_domains = settings.PAM_ALLOWED_EMAIL_DOMAINS
    allowed_domains = list(allowed_domains)

    outcome = ValidationOutcome()
    for index, row in enumerate(sheet.rows):
        result = validate_row(sheet, row, index + FIRST_DATA_ROW, allowed_domains)
        if isinstance(result, RowError):
            outcome.errors.append(result)
        else:
            outcome.rows.append(result)
    return outcome
