from datetime import datetime, timezone

import pytest

from app.core.timezones import (
    format_date_in_zone,
    shift_civil_date,
    to_utc_naive,
    today_in_zone,
    utc_range_for_date,
)


@pytest.mark.parametrize(
    "civil_date,zone",
    [
        ("2026-03-29", "Europe/Istanbul"),
        ("2026-03-29", "Europe/Berlin"),
        ("2026-11-01", "America/New_York"),
        ("2026-01-01", "Asia/Kolkata"),
        ("2026-12-31", "Pacific/Auckland"),
        ("2026-06-15", "UTC"),
    ],
)
def test_range_start_formats_back_to_same_date(civil_date: str, zone: str) -> None:
    start, end = utc_range_for_date(civil_date, zone)
    assert format_date_in_zone(start, zone) == civil_date
    assert (end - start).total_seconds() == 24 * 3600


def test_istanbul_day_starts_previous_evening_in_utc() -> None:
    start, _ = utc_range_for_date("2026-10-18", "Europe/Istanbul")
    assert start == datetime(2026, 10, 17, 21, 0, tzinfo=timezone.utc)


def test_unknown_zone_falls_back_to_utc() -> None:
    start, _ = utc_range_for_date("2026-10-18", "Mars/Olympus")
    assert start == datetime(2026, 10, 18, tzinfo=timezone.utc)


def test_naive_instants_are_treated_as_utc() -> None:
    assert format_date_in_zone(datetime(2026, 10, 17, 22, 30), "Europe/Istanbul") == "2026-10-18"


def test_today_in_zone_uses_reference_instant() -> None:
    now = datetime(2026, 10, 18, 23, 30, tzinfo=timezone.utc)
    assert today_in_zone("Asia/Tokyo", now=now) == "2026-10-19"
    assert today_in_zone("America/Los_Angeles", now=now) == "2026-10-18"


def test_shift_civil_date_crosses_month_boundary() -> None:
    assert shift_civil_date("2026-03-02", -6) == "2026-02-24"


def test_to_utc_naive_converts_aware_values() -> None:
    aware = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc).astimezone()
    assert to_utc_naive(aware) == datetime(2026, 10, 18, 9, 0)
