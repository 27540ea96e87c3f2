from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar

from monitoring.backends import TelemetryBackends
from monitoring.config import LlmPricing, normalize_environment
from monitoring.database import DatabaseMetrics, collect_database_metrics
from monitoring.deployments import DeploymentMetrics, collect_deployment_metrics
from monitoring.error_metrics import ErrorMetrics, collect_error_metrics
from monitoring.errors import ConfigurationError
from monitoring.infrastructure import InfrastructureMetrics, collect_infrastructure_metrics
from monitoring.llm import LlmMetrics, collect_llm_metrics
from monitoring.orchestrator import DEFAULT_QUERY_TIMEOUT_SECONDS
from monitoring.time_range import TimeRange, parse_time_range
from monitoring.ttl_cache import TtlCache, cache_key


logger = logging.getLogger("ops_metrics.service")

T = TypeVar("T")

DEFAULT_RANGE = "24h"
DEFAULT_ERRORS_RANGE = "1h"


@dataclass(frozen=True)
class CachePolicy:
    ttl_seconds: float
    max_entries: int = 50


DEFAULT_CACHE_POLICIES: Mapping[str, CachePolicy] = {
    "infrastructure": CachePolicy(ttl_seconds=300),
    "database": CachePolicy(ttl_seconds=120),
    "llm": CachePolicy(ttl_seconds=300),
    "errors": CachePolicy(ttl_seconds=60),
    "deployments": CachePolicy(ttl_seconds=120, max_entries=20),
}


def cache_policies_from_env(
    defaults: Mapping[str, CachePolicy] = DEFAULT_CACHE_POLICIES,
) -> Dict[str, CachePolicy]:
    """Apply `CACHE_TTL_<ENDPOINT>_SECONDS` overrides on top of the default policies."""
    policies: Dict[str, CachePolicy] = {}
    for endpoint, policy in defaults.items():
        name = f"CACHE_TTL_{endpoint.upper()}_SECONDS"
        raw = (os.environ.get(name) or "").strip()
        if not raw:
            policies[endpoint] = policy
            continue
        try:
            ttl = float(raw)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid float for {name}={raw!r}") from exc
        if ttl <= 0:
            raise ConfigurationError(f"{name} must be > 0 (got {raw!r})")
        policies[endpoint] = CachePolicy(ttl_seconds=ttl, max_entries=policy.max_entries)
    return policies


class MetricsService:
    """
    The five metrics entry points, each backed by its own TTL cache.

    Every call resolves `(environment, range)`, answers from the cache unless `bypass_cache`
    is set, and otherwise runs the endpoint's query batch against `backends`.
    """

    def __init__(
        self,
        backends: TelemetryBackends,
        *,
        cache_policies: Optional[Mapping[str, CachePolicy]] = None,
        timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
        pricing: Optional[LlmPricing] = None,
        time_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        policies = dict(DEFAULT_CACHE_POLICIES)
        policies.update(cache_policies or {})
        self._backends = backends
        self._timeout_seconds = float(timeout_seconds)
        self._pricing = pricing

        def make(endpoint: str) -> TtlCache[Any]:
            policy = policies[endpoint]
            return TtlCache(policy.ttl_seconds, max_entries=policy.max_entries, time_fn=time_fn)

        self.infrastructure_cache: TtlCache[InfrastructureMetrics] = make("infrastructure")
        self.database_cache: TtlCache[DatabaseMetrics] = make("database")
        self.llm_cache: TtlCache[LlmMetrics] = make("llm")
        self.errors_cache: TtlCache[ErrorMetrics] = make("errors")
        self.deployments_cache: TtlCache[DeploymentMetrics] = make("deployments")

    def _serve(
        self,
        endpoint: str,
        cache: TtlCache[T],
        collect: Callable[..., T],
        environment: Optional[str],
        range_raw: Optional[str],
        bypass_cache: bool,
        default_range: str = DEFAULT_RANGE,
    ) -> T:
        env = normalize_environment(environment or "prod")
        time_range: TimeRange = parse_time_range(range_raw or default_range)
        key = cache_key(env, time_range.raw)

        def refresh() -> T:
            return collect(
                self._backends,
                environment=env,
                time_range=time_range,
                timeout_seconds=self._timeout_seconds,
            )

        result = cache.get(key, refresh, force_refresh=bypass_cache)
        logger.info(
            "Metrics served: endpoint=%s key=%s cache_hit=%s bypass=%s",
            endpoint,
            key,
            result.cache_hit,
            bypass_cache,
        )
        return result.value

    def get_infrastructure_metrics(
        self, environment: Optional[str] = None, range: Optional[str] = None, bypass_cache: bool = False
    ) -> InfrastructureMetrics:
        return self._serve(
            "infrastructure",
            self.infrastructure_cache,
            collect_infrastructure_metrics,
            environment,
            range,
            bypass_cache,
        )

    def get_database_metrics(
        self, environment: Optional[str] = None, range: Optional[str] = None, bypass_cache: bool = False
    ) -> DatabaseMetrics:
        return self._serve("database", self.database_cache, collect_database_metrics, environment, range, bypass_cache)

    def get_llm_metrics(
        self, environment: Optional[str] = None, range: Optional[str] = None, bypass_cache: bool = False
    ) -> LlmMetrics:
        def collect(backends: TelemetryBackends, **kwargs: Any) -> LlmMetrics:
            return collect_llm_metrics(backends, pricing=self._pricing, **kwargs)

        return self._serve("llm", self.llm_cache, collect, environment, range, bypass_cache)

    def get_error_metrics(
        self, environment: Optional[str] = None, range: Optional[str] = None, bypass_cache: bool = False
    ) -> ErrorMetrics:
        return self._serve(
            "errors",
            self.errors_cache,
            collect_error_metrics,
            environment,
            range,
            bypass_cache,
            default_range=DEFAULT_ERRORS_RANGE,
        )

    def get_deployment_metrics(
        self, environment: Optional[str] = None, range: Optional[str] = None, bypass_cache: bool = False
    ) -> DeploymentMetrics:
        return self._serve(
            "deployments",
            self.deployments_cache,
            collect_deployment_metrics,
            environment,
            range,
            bypass_cache,
        )

    def close(self) -> None:
        for cache in (
            self.infrastructure_cache,
            self.database_cache,
            self.llm_cache,
            self.errors_cache,
            self.deployments_cache,
        ):
            cache.invalidate()
