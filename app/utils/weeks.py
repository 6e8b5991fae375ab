"""ISO week helpers."""
from datetime import date, datetime, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from app.config import settings


def current_iso_week(today: Optional[date] = None) -> Tuple[int, int]:
    """Return the (iso_year, iso_week) pair of today."""
    iso = (today or local_today()).isocalendar()
    return iso[0], iso[1]


def week_start(week_year: int, week_number: int) -> date:
    """Monday of the given ISO week."""
    return date.fromisocalendar(week_year, week_number, 1)


def shift_week(week_year: int, week_number: int, offset: int) -> Tuple[int, int]:
    """Move offset weeks forward (or backward when negative), crossing years as needed."""
    iso = (week_start(week_year, week_number) + timedelta(weeks=offset)).isocalendar()
    return iso[0], iso[1]


def week_label(week_year: int, week_number: int) -> str:
    """Display label such as "W10 · 2025"."""
    return f"W{week_number} · {week_year}"


def local_today() -> date:
    """Today's date in the configured TIMEZONE."""
    return datetime.now(ZoneInfo(settings.TIMEZONE)).date()
