from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from monitoring.time_range import (
    MAX_RANGE_HOURS,
    build_time_range,
    parse_range_hours,
    parse_time_range,
    to_granularity,
    to_hours,
    to_log_duration,
    to_sql_interval,
)


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _derived(raw: str):
    tr = parse_time_range(raw, now=NOW)
    return (tr.hours, tr.log_duration, tr.sql_interval, tr.granularity, tr.iso_duration, tr.log_bin)


def test_seven_days_resolves_every_representation() -> None:
    tr = parse_time_range("7d", now=NOW)

    assert tr.raw == "7d"
    assert tr.hours == 168
    assert tr.log_duration == "7d"
    assert tr.sql_interval == "7 days"
    assert tr.iso_duration == "P7D"
    assert tr.granularity == "PT6H"
    assert tr.log_bin == "6h"
    assert tr.end == NOW
    assert tr.start == NOW - timedelta(days=7)


@pytest.mark.parametrize(
    "a,b",
    [
        ("24h", "1d"),
        ("48h", "2d"),
        ("60m", "1h"),
        ("168h", "7d"),
    ],
)
def test_equivalent_tokens_share_derived_forms(a: str, b: str) -> None:
    assert _derived(a) == _derived(b)


@pytest.mark.parametrize(
    "raw,log_duration,sql_interval,iso_duration",
    [
        ("30m", "30m", "30 minutes", "PT30M"),
        ("6h", "6h", "6 hours", "PT6H"),
        ("36h", "36h", "36 hours", "PT36H"),
        ("3d", "3d", "3 days", "P3D"),
        ("90m", "90m", "90 minutes", "PT90M"),
    ],
)
def test_duration_rendering(raw: str, log_duration: str, sql_interval: str, iso_duration: str) -> None:
    tr = parse_time_range(raw, now=NOW)
    assert tr.log_duration == log_duration
    assert tr.sql_interval == sql_interval
    assert tr.iso_duration == iso_duration


@pytest.mark.parametrize(
    "raw,granularity",
    [
        ("5m", "PT5M"),
        ("1h", "PT5M"),
        ("2h", "PT15M"),
        ("6h", "PT15M"),
        ("12h", "PT1H"),
        ("24h", "PT1H"),
        ("3d", "PT6H"),
        ("4d", "PT6H"),
        ("7d", "PT6H"),
        ("8d", "P1D"),
        ("30d", "P1D"),
    ],
)
def test_granularity_buckets(raw: str, granularity: str) -> None:
    assert parse_time_range(raw, now=NOW).granularity == granularity


def test_seven_days_is_the_last_six_hour_bucket_boundary_for_log_bins() -> None:
    assert parse_time_range("7d", now=NOW).log_bin == "6h"
    assert parse_time_range("8d", now=NOW).log_bin == "1d"
    assert parse_time_range("1h", now=NOW).log_bin == "5m"
    assert parse_time_range("6h", now=NOW).log_bin == "15m"
    assert parse_time_range("24h", now=NOW).log_bin == "1h"


@pytest.mark.parametrize("raw", [None, "", "abc", "24", "h", "0h", "0d", "-5h", "1.5h", "10w", " 7 d "])
def test_malformed_tokens_fall_back_to_a_day(raw) -> None:
    tr = parse_time_range(raw, now=NOW)
    assert tr.raw == "24h"
    assert tr.hours == 24
    assert tr.log_duration == "1d"
    assert tr.iso_duration == "P1D"


def test_surrounding_whitespace_is_tolerated() -> None:
    tr = parse_time_range("  6h ", now=NOW)
    assert tr.raw == "6h"
    assert tr.hours == 6


def test_parse_range_hours_units() -> None:
    assert parse_range_hours("30m") == 0.5
    assert parse_range_hours("6h") == 6
    assert parse_range_hours("2d") == 48
    assert parse_range_hours("nope") is None
    assert parse_range_hours("0m") is None


def test_build_time_range_rejects_non_positive_hours() -> None:
    with pytest.raises(ValueError):
        build_time_range(0)
    with pytest.raises(ValueError):
        build_time_range(-1)


def test_build_time_range_naive_now_is_treated_as_utc() -> None:
    tr = build_time_range(1, now=datetime(2024, 1, 1, 0, 0))
    assert tr.end.tzinfo is not None
    assert tr.start == datetime(2023, 12, 31, 23, 0, tzinfo=timezone.utc)


def test_single_value_helpers() -> None:
    assert to_log_duration("2d") == "2d"
    assert to_sql_interval("2d") == "2 days"
    assert to_granularity("2d") == "PT6H"
    assert to_hours("2d") == 48
    assert to_hours("garbage") == 24


@pytest.mark.parametrize("raw", ["366d", "1000000d", "30000000h", "99999999999999d", "9" * 5000 + "m"])
def test_oversized_tokens_fall_back_to_a_day(raw: str) -> None:
    tr = parse_time_range(raw, now=NOW)
    assert tr.raw == "24h"
    assert tr.hours == 24
    assert parse_range_hours(raw) is None


def test_a_year_is_the_longest_range() -> None:
    tr = parse_time_range("365d", now=NOW)
    assert tr.hours == MAX_RANGE_HOURS
    assert tr.start == NOW - timedelta(days=365)
    assert tr.granularity == "P1D"

    with pytest.raises(ValueError):
        build_time_range(MAX_RANGE_HOURS + 1)
