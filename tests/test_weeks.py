"""Tests for ISO week helpers."""
from datetime import date

from app.utils.weeks import current_iso_week, shift_week, week_label, week_start


def test_current_iso_week():
    assert current_iso_week(date(2025, 3, 12)) == (2025, 11)
    assert current_iso_week(date(2021, 1, 1)) == (2020, 53)


def test_week_start_is_monday():
    assert week_start(2025, 10) == date(2025, 3, 3)


def test_shift_week_crosses_years():
    assert shift_week(2020, 53, 1) == (2021, 1)
    assert shift_week(2025, 1, -1) == (2024, 52)
    assert shift_week(2025, 10, 0) == (2025, 10)


def test_week_label():
    assert week_label(2025, 10) == "W10 · 2025"
