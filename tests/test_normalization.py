from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

from gp51sync._normalize import parse_provider_timestamp, safe_float, safe_int, safe_str


def test_safe_float_handles_sentinels() -> None:
    assert safe_float("12.5") == 12.5
    assert safe_float("--") is None
    assert safe_float("") is None
    assert safe_float("abc") is None
    assert safe_float(float("nan")) is None


def test_safe_int_and_str() -> None:
    assert safe_int("7.9") == 7
    assert safe_int(None) is None
    assert safe_str("  a  ") == "a"
    assert safe_str("   ") is None
    assert safe_str(860001) == "860001"


def test_timestamp_accepts_seconds_and_milliseconds() -> None:
    expected = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
    assert parse_provider_timestamp(1767268800) == expected
    assert parse_provider_timestamp(1767268800000) == expected
    assert parse_provider_timestamp("1767268800000") == expected


def test_timestamp_accepts_iso_strings_and_datetimes() -> None:
    expected = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
    assert parse_provider_timestamp("2026-01-01T12:00:00+00:00") == expected
    assert parse_provider_timestamp("2026-01-01T12:00:00") == expected
    assert parse_provider_timestamp(datetime(2026, 1, 1, 12, 0)) == expected

    offset = datetime(2026, 1, 1, 20, 0, tzinfo=timezone(timedelta(hours=8)))
    assert parse_provider_timestamp(offset) == expected


def test_timestamp_rejects_garbage() -> None:
    assert parse_provider_timestamp(None) is None
    assert parse_provider_timestamp(0) is None
    assert parse_provider_timestamp("not a date") is None
