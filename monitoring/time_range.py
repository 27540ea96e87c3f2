from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence, Tuple


DEFAULT_RANGE_HOURS = 24.0

# Longest accepted range; longer tokens resolve to the default.
MAX_RANGE_HOURS = 365 * 24

_RANGE_RE = re.compile(r"^(\d{1,12})([mhd])$")
_UNIT_MINUTES = {"m": 1, "h": 60, "d": 24 * 60}

# Azure Monitor only accepts a fixed set of metric intervals; these are the ones used here,
# keyed by the largest range (in hours) each one serves.
METRIC_GRANULARITIES: Sequence[Tuple[float, str]] = (
    (1.0, "PT5M"),
    (6.0, "PT15M"),
    (24.0, "PT1H"),
    (168.0, "PT6H"),
)
MAX_METRIC_GRANULARITY = "P1D"

LOG_BIN_SIZES: Sequence[Tuple[float, str]] = (
    (1.0, "5m"),
    (6.0, "15m"),
    (24.0, "1h"),
    (168.0, "6h"),
)
MAX_LOG_BIN_SIZE = "1d"


def _utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _is_whole_days(hours: float) -> bool:
    return hours >= 24 and float(hours).is_integer() and int(hours) % 24 == 0


def _is_whole_hours(hours: float) -> bool:
    return hours >= 1 and float(hours).is_integer()


def _minutes(hours: float) -> int:
    return int(round(hours * 60))


def _pick(hours: float, table: Sequence[Tuple[float, str]], fallback: str) -> str:
    for max_hours, token in table:
        if hours <= max_hours:
            return token
    return fallback


@dataclass(frozen=True)
class TimeRange:
    """
    A relative time range resolved into every query dialect the backends need.

    - `log_duration`: KQL `ago()` argument, e.g. `7d`, `6h`, `30m`
    - `sql_interval`: Postgres INTERVAL literal body, e.g. `7 days`
    - `granularity`: Azure Monitor metrics interval, e.g. `PT6H`
    - `iso_duration`: ISO-8601 duration for the Log Analytics `timespan`, e.g. `P7D`
    """

    raw: str
    hours: float
    log_duration: str
    sql_interval: str
    granularity: str
    iso_duration: str
    log_bin: str
    start: datetime
    end: datetime


def build_time_range(hours: float, *, raw: Optional[str] = None, now: Optional[datetime] = None) -> TimeRange:
    if hours <= 0:
        raise ValueError("hours must be > 0")
    if hours > MAX_RANGE_HOURS:
        raise ValueError(f"hours must be <= {MAX_RANGE_HOURS:g}")

    end = _utc(now or datetime.now(timezone.utc))
    start = end - timedelta(hours=hours)

    if _is_whole_days(hours):
        days = int(hours) // 24
        log_duration = f"{days}d"
        sql_interval = f"{days} days"
        iso_duration = f"P{days}D"
    elif _is_whole_hours(hours):
        whole = int(hours)
        log_duration = f"{whole}h"
        sql_interval = f"{whole} hours"
        iso_duration = f"PT{whole}H"
    else:
        minutes = _minutes(hours)
        log_duration = f"{minutes}m"
        sql_interval = f"{minutes} minutes"
        iso_duration = f"PT{minutes}M"

    return TimeRange(
        raw=raw if raw is not None else log_duration,
        hours=float(hours),
        log_duration=log_duration,
        sql_interval=sql_interval,
        granularity=_pick(hours, METRIC_GRANULARITIES, MAX_METRIC_GRANULARITY),
        iso_duration=iso_duration,
        log_bin=_pick(hours, LOG_BIN_SIZES, MAX_LOG_BIN_SIZE),
        start=start,
        end=end,
    )


def parse_range_hours(raw: Optional[str]) -> Optional[float]:
    match = _RANGE_RE.match((raw or "").strip())
    if not match:
        return None
    value = int(match.group(1))
    if value <= 0:
        return None
    minutes = value * _UNIT_MINUTES[match.group(2)]
    if minutes > MAX_RANGE_HOURS * 60:
        return None
    if minutes % 60 == 0:
        return float(minutes // 60)
    return minutes / 60.0


def parse_time_range(raw: Optional[str], *, now: Optional[datetime] = None) -> TimeRange:
    """
    Parse a compact range token (`30m`, `6h`, `7d`).

    Anything that does not match `<positive integer><m|h|d>`, or is longer than a year,
    resolves to the 24h default.
    """
    hours = parse_range_hours(raw)
    if hours is None:
        return build_time_range(DEFAULT_RANGE_HOURS, raw="24h", now=now)
    return build_time_range(hours, raw=(raw or "").strip(), now=now)


def to_log_duration(raw: Optional[str]) -> str:
    return parse_time_range(raw).log_duration


def to_sql_interval(raw: Optional[str]) -> str:
    return parse_time_range(raw).sql_interval


def to_granularity(raw: Optional[str]) -> str:
    return parse_time_range(raw).granularity


def to_hours(raw: Optional[str]) -> float:
    return parse_time_range(raw).hours
