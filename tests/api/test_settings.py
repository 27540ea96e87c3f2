from __future__ import annotations

import pytest

from api.service.settings import DEFAULT_CORS_ORIGINS, ServiceSettings, parse_refresh_flag
from monitoring.config import LlmPricing
from monitoring.errors import ConfigurationError
from monitoring.orchestrator import DEFAULT_QUERY_TIMEOUT_SECONDS


def test_defaults() -> None:
    settings = ServiceSettings.from_env()

    assert settings.query_timeout_seconds == DEFAULT_QUERY_TIMEOUT_SECONDS
    assert settings.cors_allow_origins == DEFAULT_CORS_ORIGINS
    assert settings.pricing == LlmPricing()
    assert settings.cache_policies["errors"].ttl_seconds == 60


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_QUERY_TIMEOUT_SECONDS", "12.5")
    monkeypatch.setenv("API_CORS_ALLOW_ORIGINS", '["https://ops.example.com", "*", "https://ops.example.com"]')
    monkeypatch.setenv("LLM_INPUT_PRICE", "0.4")
    monkeypatch.setenv("CACHE_TTL_LLM_SECONDS", "30")

    settings = ServiceSettings.from_env()

    assert settings.query_timeout_seconds == 12.5
    assert settings.cors_allow_origins == ["https://ops.example.com"]
    assert settings.pricing.input_per_million == 0.4
    assert settings.cache_policies["llm"].ttl_seconds == 30


def test_comma_separated_origins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("API_CORS_ALLOW_ORIGINS", "https://a.example.com, https://b.example.com,")
    assert ServiceSettings.from_env().cors_allow_origins == ["https://a.example.com", "https://b.example.com"]


@pytest.mark.parametrize("raw", ["soon", "0", "601"])
def test_invalid_timeout(monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
    monkeypatch.setenv("METRICS_QUERY_TIMEOUT_SECONDS", raw)
    with pytest.raises(ValueError, match="METRICS_QUERY_TIMEOUT_SECONDS"):
        ServiceSettings.from_env()


def test_invalid_price(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LLM_OUTPUT_PRICE", "cheap")
    with pytest.raises(ConfigurationError, match="LLM_OUTPUT_PRICE"):
        ServiceSettings.from_env()


@pytest.mark.parametrize(
    "raw,expected",
    [(None, False), ("", False), ("true", True), ("1", True), ("YES", True), ("false", False), ("maybe", False)],
)
def test_parse_refresh_flag(raw, expected: bool) -> None:
    assert parse_refresh_flag(raw) is expected
