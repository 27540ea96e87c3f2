from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Literal, Optional, Tuple
from urllib.parse import quote

from monitoring.errors import ConfigurationError


logger = logging.getLogger("ops_metrics.config")

Environment = Literal["prod", "test"]
ENVIRONMENTS: Tuple[Environment, ...] = ("prod", "test")

DEFAULT_DB_NAME = "symmetry_main"
DEFAULT_DB_PORT = "5432"
DEFAULT_OPENAI_DEPLOYMENT = "gpt-4.1-mini"


def normalize_environment(value: Optional[str]) -> Environment:
    text = (value or "").strip().lower()
    if text == "prod":
        return "prod"
    if text == "test":
        return "test"
    raise ConfigurationError(f"Invalid environment {value!r} (expected prod|test).")


def _prefix(env: Environment) -> str:
    return "PROD" if env == "prod" else "TEST"


def _get_optional_str(name: str) -> Optional[str]:
    raw = os.environ.get(name)
    value = raw.strip() if raw else ""
    return value or None


def _require_env(name: str, description: str) -> str:
    value = _get_optional_str(name)
    if value is None:
        raise ConfigurationError(f"Missing required environment variable: {name} ({description})")
    return value


def _get_float(name: str, default: float) -> float:
    raw = _get_optional_str(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid float for {name}={raw!r}") from exc


@dataclass(frozen=True)
class AzureConfig:
    subscription_id: str
    resource_group: str
    app_insights_name: str
    service_bus_namespace: str

    @property
    def app_insights_resource_id(self) -> str:
        return (
            f"/subscriptions/{self.subscription_id}/resourceGroups/{self.resource_group}"
            f"/providers/microsoft.insights/components/{self.app_insights_name}"
        )


def get_azure_config(env: Environment) -> AzureConfig:
    prefix = _prefix(env)
    return AzureConfig(
        subscription_id=_require_env("AZURE_SUBSCRIPTION_ID", "Azure subscription ID"),
        resource_group=_require_env(f"{prefix}_RESOURCE_GROUP", f"{env} resource group"),
        app_insights_name=_require_env(f"{prefix}_APP_INSIGHTS", f"{env} App Insights name"),
        service_bus_namespace=_require_env(f"{prefix}_SERVICE_BUS", f"{env} Service Bus namespace"),
    )


@dataclass(frozen=True)
class DatabaseConfig:
    connection_string: str


def get_database_config(env: Environment) -> DatabaseConfig:
    """
    Prefer `<ENV>_DATABASE_URL`; otherwise build a URL from `<ENV>_DB_HOST/_DB_USER/_DB_PASSWORD`.
    """
    prefix = _prefix(env)
    full_url = _get_optional_str(f"{prefix}_DATABASE_URL")
    if full_url:
        return DatabaseConfig(connection_string=full_url)

    host = _get_optional_str(f"{prefix}_DB_HOST")
    user = _get_optional_str(f"{prefix}_DB_USER")
    password = _get_optional_str(f"{prefix}_DB_PASSWORD")
    db_name = _get_optional_str(f"{prefix}_DB_NAME") or DEFAULT_DB_NAME
    port = _get_optional_str(f"{prefix}_DB_PORT") or DEFAULT_DB_PORT

    if host and user and password:
        return DatabaseConfig(
            connection_string=(
                f"postgresql://{quote(user, safe='')}:{quote(password, safe='')}@{host}:{port}/{db_name}"
                "?sslmode=require"
            )
        )

    logger.warning("No database configuration found: env=%s", env)
    raise ConfigurationError(
        f"Database connection string not configured for {env} environment "
        f"(set {prefix}_DATABASE_URL or {prefix}_DB_HOST/{prefix}_DB_USER/{prefix}_DB_PASSWORD)."
    )


@dataclass(frozen=True)
class OpenAIConfig:
    subscription_id: str
    resource_name: str
    resource_group: str
    deployment: str

    @property
    def resource_id(self) -> str:
        return (
            f"/subscriptions/{self.subscription_id}/resourceGroups/{self.resource_group}"
            f"/providers/Microsoft.CognitiveServices/accounts/{self.resource_name}"
        )


def get_openai_config() -> OpenAIConfig:
    return OpenAIConfig(
        subscription_id=_require_env("AZURE_SUBSCRIPTION_ID", "Azure subscription ID"),
        resource_name=_require_env("AZURE_OPENAI_RESOURCE", "Azure OpenAI resource name"),
        resource_group=_require_env("AZURE_OPENAI_RG", "Azure OpenAI resource group"),
        deployment=_get_optional_str("AZURE_OPENAI_DEPLOYMENT") or DEFAULT_OPENAI_DEPLOYMENT,
    )


@dataclass(frozen=True)
class LlmPricing:
    """USD per one million tokens."""

    input_per_million: float = 0.15
    output_per_million: float = 0.60

    @staticmethod
    def from_env() -> "LlmPricing":
        return LlmPricing(
            input_per_million=_get_float("LLM_INPUT_PRICE", 0.15),
            output_per_million=_get_float("LLM_OUTPUT_PRICE", 0.60),
        )

    def cost(self, *, input_tokens: float, output_tokens: float) -> float:
        return (input_tokens / 1_000_000) * self.input_per_million + (
            output_tokens / 1_000_000
        ) * self.output_per_million

    @property
    def blended_per_million(self) -> float:
        return (self.input_per_million + self.output_per_million) / 2
