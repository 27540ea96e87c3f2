from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from monitoring.config import LlmPricing
from monitoring.orchestrator import DEFAULT_QUERY_TIMEOUT_SECONDS
from monitoring.service import CachePolicy, cache_policies_from_env


DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]


def _parse_bool(value: str) -> bool:
    text = value.strip().lower()
    if text in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if text in {"0", "false", "f", "no", "n", "off"}:
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def _get_optional_str(name: str) -> Optional[str]:
    raw = os.environ.get(name)
    value = raw.strip() if raw else ""
    return value or None


def _get_float(name: str, default: float, *, min_value: float = 0.1, max_value: float = 600.0) -> float:
    raw = _get_optional_str(name)
    if raw is None:
        return default
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid float for {name}={raw!r}") from exc
    if parsed < min_value or parsed > max_value:
        raise ValueError(f"{name} must be in [{min_value}, {max_value}] (got {parsed}).")
    return parsed


def _parse_env_list(value: Optional[str]) -> List[str]:
    raw = (value or "").strip()
    if not raw:
        return []

    # Accept either JSON array syntax or a comma-separated list.
    if raw.startswith("["):
        try:
            decoded = json.loads(raw)
        except ValueError:
            decoded = None
        if isinstance(decoded, list):
            return [str(item).strip() for item in decoded if str(item).strip()]

    return [item.strip() for item in raw.split(",") if item.strip()]


def parse_refresh_flag(value: Optional[str]) -> bool:
    if value is None or not value.strip():
        return False
    try:
        return _parse_bool(value)
    except ValueError:
        return False


@dataclass(frozen=True)
class ServiceSettings:
    query_timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS
    cache_policies: Dict[str, CachePolicy] = field(default_factory=dict)
    pricing: LlmPricing = field(default_factory=LlmPricing)
    cors_allow_origins: List[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))

    @staticmethod
    def from_env() -> "ServiceSettings":
        origins = _parse_env_list(os.environ.get("API_CORS_ALLOW_ORIGINS")) or list(DEFAULT_CORS_ORIGINS)
        # CORSMiddleware does not allow credentials with wildcard origins.
        origins = [origin for origin in origins if origin != "*"]

        return ServiceSettings(
            query_timeout_seconds=_get_float("METRICS_QUERY_TIMEOUT_SECONDS", DEFAULT_QUERY_TIMEOUT_SECONDS),
            cache_policies=cache_policies_from_env(),
            pricing=LlmPricing.from_env(),
            cors_allow_origins=list(dict.fromkeys(origins)),
        )
