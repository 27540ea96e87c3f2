from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Sequence

from monitoring.backends import TelemetryBackends
from monitoring.config import Environment
from monitoring.control_plane import SiteInfo
from monitoring.orchestrator import DEFAULT_QUERY_TIMEOUT_SECONDS, SubQuery, run_queries
from monitoring.rows import parse_timestamp
from monitoring.service_names import UNKNOWN_SERVICE, canonicalize
from monitoring.time_range import TimeRange


NOT_REPORTED = "unknown"
GIT_COMMIT_CHARS = 7

ServiceType = Literal["App Service", "Function App"]


@dataclass(frozen=True)
class ServiceDeployment:
    name: str
    display_name: str
    type: ServiceType
    status: str
    state: str
    runtime: str
    version: str
    git_commit: str
    build_number: str
    deployed_at: str
    host_name: Optional[str] = None

    @property
    def has_version(self) -> bool:
        return self.version != NOT_REPORTED

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "displayName": self.display_name,
            "type": self.type,
            "resource": self.name,
            "status": self.status,
            "state": self.state,
            "runtime": self.runtime,
            "version": self.version,
            "gitCommit": self.git_commit,
            "buildNumber": self.build_number,
            "deployedAt": self.deployed_at,
        }
        if self.host_name:
            payload["hostName"] = self.host_name
        return payload


@dataclass(frozen=True)
class DeploymentMetrics:
    timestamp: str
    environment: str
    time_range: str
    services: List[ServiceDeployment] = field(default_factory=list)

    def last_deployment(self) -> str:
        """The most recent parseable `DEPLOYED_AT`, as reported by the service."""
        latest: Optional[datetime] = None
        latest_raw = NOT_REPORTED
        for svc in self.services:
            stamp = parse_timestamp(svc.deployed_at) if svc.deployed_at != NOT_REPORTED else None
            if stamp is not None and (latest is None or stamp > latest):
                latest, latest_raw = stamp, svc.deployed_at
        return latest_raw

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "environment": self.environment,
            "timeRange": self.time_range,
            "services": [s.to_dict() for s in self.services],
            "summary": {
                "totalServices": len(self.services),
                "withVersionInfo": sum(1 for s in self.services if s.has_version),
                "lastDeployment": self.last_deployment(),
            },
        }


def to_deployment(site: SiteInfo) -> ServiceDeployment:
    settings = site.app_settings
    return ServiceDeployment(
        name=site.name or UNKNOWN_SERVICE,
        display_name=canonicalize(site.name),
        type="Function App" if site.is_function_app else "App Service",
        status="healthy" if site.is_running else "unhealthy",
        state=site.state or UNKNOWN_SERVICE,
        runtime=site.runtime or NOT_REPORTED,
        version=settings.get("APP_VERSION") or NOT_REPORTED,
        git_commit=(settings.get("GIT_COMMIT") or NOT_REPORTED)[:GIT_COMMIT_CHARS],
        build_number=settings.get("BUILD_NUMBER") or NOT_REPORTED,
        deployed_at=settings.get("DEPLOYED_AT") or NOT_REPORTED,
        host_name=site.host_name,
    )


def parse_deployments(sites: Sequence[SiteInfo]) -> List[ServiceDeployment]:
    services = [to_deployment(site) for site in sites if site.name and not site.is_staging_slot]
    services.sort(key=lambda s: (s.display_name.lower(), s.name))
    return services


def collect_deployment_metrics(
    backends: TelemetryBackends,
    *,
    environment: Environment,
    time_range: TimeRange,
    timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
    now: Optional[datetime] = None,
) -> DeploymentMetrics:
    batch = run_queries(
        "deployments",
        [
            SubQuery(
                "sites",
                lambda: backends.list_sites(environment, include_settings=True),
                parse_deployments,
                list,
            )
        ],
        timeout_seconds=timeout_seconds,
    )
    generated = now or datetime.now(timezone.utc)
    return DeploymentMetrics(
        timestamp=generated.isoformat(),
        environment=environment,
        time_range=time_range.raw,
        services=batch["sites"],
    )
