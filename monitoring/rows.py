from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence


def to_float(value: Any, default: float = 0.0) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(parsed) or math.isinf(parsed):
        return default
    return parsed


def to_int(value: Any, default: int = 0) -> int:
    """Postgres returns COUNT()/bigint aggregates as strings or Decimals; truncate like parseInt."""
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return default
        try:
            return int(text)
        except ValueError:
            pass
    parsed = to_float(value, default=float("nan"))
    if math.isnan(parsed):
        return default
    return int(parsed)


def to_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    text = str(value)
    return text if text else default


def cell(row: Any, index: int) -> Any:
    if not isinstance(row, (list, tuple)) or index >= len(row):
        return None
    return row[index]


def field(row: Optional[Mapping[str, Any]], name: str) -> Any:
    if not isinstance(row, Mapping):
        return None
    return row.get(name)


def first_row(rows: Sequence[Any]) -> Any:
    return rows[0] if rows else None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (with or without `Z`) into an aware UTC datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
