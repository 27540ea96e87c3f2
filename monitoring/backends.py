from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx
from azure.identity import DefaultAzureCredential

from core.postgres import PostgresPools
from monitoring import control_plane
from monitoring.arm_client import ArmConfig, AzureArmClient
from monitoring.config import Environment, get_azure_config, get_database_config
from monitoring.control_plane import QueueInfo, SiteInfo
from monitoring.errors import ConfigurationError
from monitoring.log_analytics import AzureLogAnalyticsClient
from monitoring.monitor_metrics import MetricSeries, query_metrics


logger = logging.getLogger("ops_metrics.backends")


class TelemetryBackends(Protocol):
    """The narrow query functions the metrics flows consume; swap in fakes for tests."""

    def query_database(self, sql: str, environment: Environment) -> List[Dict[str, Any]]: ...

    def query_logs(self, query: str, environment: Environment, duration_iso: str) -> List[List[Any]]: ...

    def query_metrics(
        self,
        resource_id: str,
        metric_names: Sequence[str],
        granularity: str,
        start: datetime,
        end: datetime,
    ) -> Dict[str, MetricSeries]: ...

    def list_queues(self, environment: Environment) -> List[QueueInfo]: ...

    def list_sites(self, environment: Environment, *, include_settings: bool = False) -> List[SiteInfo]: ...


def _database_dsn(environment: str) -> str:
    if environment not in ("prod", "test"):
        raise ConfigurationError(f"Invalid environment {environment!r} (expected prod|test).")
    return get_database_config(environment).connection_string  # type: ignore[arg-type]


class AzureTelemetryBackends:
    """
    Process-wide Azure + Postgres clients.

    The credential, the Log Analytics client and the ARM client are built on first use and
    reused for the life of the process; Postgres pools are one per environment.
    """

    def __init__(
        self,
        *,
        credential: Optional[Any] = None,
        http_client: Optional[httpx.Client] = None,
        timeout_seconds: float = 30.0,
        pools: Optional[PostgresPools] = None,
    ) -> None:
        self._credential = credential
        self._http = http_client
        self._timeout_seconds = float(timeout_seconds)
        self._pools = pools or PostgresPools(
            _database_dsn,
            statement_timeout_ms=int(self._timeout_seconds * 1000),
        )
        self._logs: Optional[AzureLogAnalyticsClient] = None
        self._arm: Dict[str, AzureArmClient] = {}
        self._lock = threading.Lock()

    def _get_credential(self) -> Any:
        # Caller holds the lock.
        if self._credential is None:
            self._credential = DefaultAzureCredential(exclude_interactive_browser_credential=True)
        return self._credential

    def _logs_client(self) -> AzureLogAnalyticsClient:
        with self._lock:
            if self._logs is None:
                self._logs = AzureLogAnalyticsClient(
                    credential=self._get_credential(),
                    http_client=self._http,
                    timeout_seconds=self._timeout_seconds,
                )
            return self._logs

    def _arm_client(self, subscription_id: str) -> AzureArmClient:
        with self._lock:
            client = self._arm.get(subscription_id)
            if client is None:
                client = AzureArmClient(
                    ArmConfig(subscription_id=subscription_id, timeout_seconds=self._timeout_seconds),
                    credential=self._get_credential(),
                    http_client=self._http,
                )
                self._arm[subscription_id] = client
            return client

    def query_database(self, sql: str, environment: Environment) -> List[Dict[str, Any]]:
        return self._pools.query(sql, environment)

    def query_logs(self, query: str, environment: Environment, duration_iso: str) -> List[List[Any]]:
        cfg = get_azure_config(environment)
        return self._logs_client().query_rows(
            resource_id=cfg.app_insights_resource_id,
            query=query,
            timespan=duration_iso,
        )

    def query_metrics(
        self,
        resource_id: str,
        metric_names: Sequence[str],
        granularity: str,
        start: datetime,
        end: datetime,
    ) -> Dict[str, MetricSeries]:
        subscription_id = resource_id.strip().split("/")[2] if resource_id.startswith("/subscriptions/") else ""
        if not subscription_id:
            raise ValueError(f"resource_id must be an ARM resource ID (got {resource_id!r})")
        return query_metrics(
            self._arm_client(subscription_id),
            resource_id=resource_id,
            metric_names=metric_names,
            granularity=granularity,
            start=start,
            end=end,
        )

    def list_queues(self, environment: Environment) -> List[QueueInfo]:
        cfg = get_azure_config(environment)
        return control_plane.list_queues(
            self._arm_client(cfg.subscription_id),
            resource_group=cfg.resource_group,
            namespace=cfg.service_bus_namespace,
        )

    def list_sites(self, environment: Environment, *, include_settings: bool = False) -> List[SiteInfo]:
        cfg = get_azure_config(environment)
        return control_plane.list_sites(
            self._arm_client(cfg.subscription_id),
            resource_group=cfg.resource_group,
            include_settings=include_settings,
        )

    def close(self) -> None:
        self._pools.close()
        with self._lock:
            logs, self._logs = self._logs, None
            arms = list(self._arm.values())
            self._arm.clear()
        if logs is not None:
            logs.close()
        for arm in arms:
            arm.close()
        logger.info("Telemetry backends closed.")
