from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from monitoring.control_plane import QueueInfo, SiteInfo
from monitoring.monitor_metrics import MetricSeries
from monitoring.time_range import TimeRange, parse_time_range


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

Route = Tuple[str, Any]


class FakeBackends:
    """
    In-memory TelemetryBackends.

    Log and SQL routes are `(needle, result)` pairs; the first needle contained in the query text
    wins and unmatched queries return no rows. A result that is an exception instance is raised.
    """

    def __init__(
        self,
        *,
        logs: Sequence[Route] = (),
        sql: Sequence[Route] = (),
        metrics: Optional[Dict[str, MetricSeries]] = None,
        metrics_error: Optional[Exception] = None,
        queues: Any = (),
        sites: Any = (),
    ) -> None:
        self.logs = list(logs)
        self.sql = list(sql)
        self.metrics = dict(metrics or {})
        self.metrics_error = metrics_error
        self.queues = queues
        self.sites = sites
        self.calls: List[Tuple[str, Any]] = []
        self._lock = threading.Lock()

    def _record(self, kind: str, detail: Any) -> None:
        with self._lock:
            self.calls.append((kind, detail))

    @staticmethod
    def _route(routes: Sequence[Route], text: str) -> Any:
        for needle, result in routes:
            if needle in text:
                if isinstance(result, Exception):
                    raise result
                return result
        return []

    def calls_of(self, kind: str) -> List[Any]:
        return [detail for k, detail in self.calls if k == kind]

    def query_database(self, sql: str, environment: str) -> List[Dict[str, Any]]:
        self._record("sql", (sql, environment))
        return self._route(self.sql, sql)

    def query_logs(self, query: str, environment: str, duration_iso: str) -> List[List[Any]]:
        self._record("logs", (query, environment, duration_iso))
        return self._route(self.logs, query)

    def query_metrics(self, resource_id, metric_names, granularity, start, end) -> Dict[str, MetricSeries]:
        self._record("metrics", (resource_id, tuple(metric_names), granularity, start, end))
        if self.metrics_error is not None:
            raise self.metrics_error
        return {name: self.metrics[name] for name in metric_names if name in self.metrics}

    def list_queues(self, environment: str) -> List[QueueInfo]:
        self._record("queues", environment)
        if isinstance(self.queues, Exception):
            raise self.queues
        return list(self.queues)

    def list_sites(self, environment: str, *, include_settings: bool = False) -> List[SiteInfo]:
        self._record("sites", (environment, include_settings))
        if isinstance(self.sites, Exception):
            raise self.sites
        return list(self.sites)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def range_24h() -> TimeRange:
    return parse_time_range("24h", now=NOW)


@pytest.fixture(autouse=True)
def _clear_metrics_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "LLM_INPUT_PRICE",
        "LLM_OUTPUT_PRICE",
        "METRICS_QUERY_TIMEOUT_SECONDS",
        "API_CORS_ALLOW_ORIGINS",
        "CACHE_TTL_INFRASTRUCTURE_SECONDS",
        "CACHE_TTL_DATABASE_SECONDS",
        "CACHE_TTL_LLM_SECONDS",
        "CACHE_TTL_ERRORS_SECONDS",
        "CACHE_TTL_DEPLOYMENTS_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_backends():
    return FakeBackends
