from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from monitoring import kql_queries
from monitoring.backends import TelemetryBackends
from monitoring.config import Environment
from monitoring.control_plane import QueueInfo, SiteInfo
from monitoring.orchestrator import DEFAULT_QUERY_TIMEOUT_SECONDS, SubQuery, prefer_primary, run_queries
from monitoring.rows import cell, first_row, to_float, to_int, to_str
from monitoring.service_names import UNKNOWN_SERVICE, ServiceRecord, aggregate, canonicalize, service_record
from monitoring.time_range import TimeRange


RECENT_ERRORS_DURATION = "PT1H"
RECENT_ERROR_MESSAGE_CHARS = 100


@dataclass(frozen=True)
class LlmModelUsage:
    model: str
    calls: int
    tokens: int
    cost: float

    def to_dict(self) -> Dict[str, Any]:
        return {"model": self.model, "calls": self.calls, "tokens": self.tokens, "cost": self.cost}


@dataclass(frozen=True)
class EndpointPerformance:
    endpoint: str
    avg_ms: int
    p95_ms: int
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"endpoint": self.endpoint, "avgMs": self.avg_ms, "p95Ms": self.p95_ms, "count": self.count}


@dataclass(frozen=True)
class ServiceStatus:
    name: str
    display_name: str
    status: str
    state: str
    host_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.display_name,
            "resource": self.name,
            "status": self.status,
            "state": self.state,
        }
        if self.host_name:
            payload["hostName"] = self.host_name
        return payload


@dataclass(frozen=True)
class RecentError:
    timestamp: str
    message: str
    service: str
    path: str

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "message": self.message, "service": self.service, "path": self.path}


@dataclass(frozen=True)
class Overview:
    total_requests: int
    total_errors: int
    llm_cost: float
    llm_tokens: int
    llm_calls: int
    queue_depth: int
    dead_letters: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRequests": self.total_requests,
            "totalErrors": self.total_errors,
            "llmCost": self.llm_cost,
            "llmTokens": self.llm_tokens,
            "llmCalls": self.llm_calls,
            "queueDepth": self.queue_depth,
            "deadLetters": self.dead_letters,
        }


@dataclass(frozen=True)
class InfrastructureMetrics:
    timestamp: str
    environment: str
    time_range: str
    overview: Overview
    requests_by_service: List[ServiceRecord] = field(default_factory=list)
    llm_by_model: List[LlmModelUsage] = field(default_factory=list)
    queues: List[QueueInfo] = field(default_factory=list)
    services: List[ServiceStatus] = field(default_factory=list)
    recent_errors: List[RecentError] = field(default_factory=list)
    performance: List[EndpointPerformance] = field(default_factory=list)
    degraded: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "environment": self.environment,
            "timeRange": self.time_range,
            "overview": self.overview.to_dict(),
            "requestsByService": [r.to_dict() for r in self.requests_by_service],
            "llmByModel": [m.to_dict() for m in self.llm_by_model],
            "queues": [q.to_dict() for q in self.queues],
            "services": [s.to_dict() for s in self.services],
            "recentErrors": [e.to_dict() for e in self.recent_errors],
            "performance": [p.to_dict() for p in self.performance],
            "degradedSections": list(self.degraded),
        }


def parse_service_counts(
    rows: Sequence[Any], *, drop_empty: bool = False, drop_unknown: bool = False
) -> List[ServiceRecord]:
    """Empty names count as `Unknown` unless the caller drops them."""
    records: List[ServiceRecord] = []
    for row in rows:
        raw = to_str(cell(row, 0))
        if not raw and (drop_empty or drop_unknown):
            continue
        if drop_unknown and raw == UNKNOWN_SERVICE:
            continue
        records.append(service_record(raw, to_int(cell(row, 1))))
    return aggregate(records)


def parse_error_total(rows: Sequence[Any]) -> int:
    return to_int(cell(first_row(rows), 0))


def parse_llm_usage(rows: Sequence[Any]) -> List[LlmModelUsage]:
    return [
        LlmModelUsage(
            model=to_str(cell(row, 0), UNKNOWN_SERVICE),
            calls=to_int(cell(row, 1)),
            tokens=to_int(cell(row, 2)),
            cost=to_float(cell(row, 3)),
        )
        for row in rows
    ]


def parse_performance(rows: Sequence[Any]) -> List[EndpointPerformance]:
    return [
        EndpointPerformance(
            endpoint=to_str(cell(row, 0)),
            avg_ms=int(round(to_float(cell(row, 1)))),
            p95_ms=int(round(to_float(cell(row, 2)))),
            count=to_int(cell(row, 3)),
        )
        for row in rows
    ]


def parse_recent_errors(rows: Sequence[Any]) -> List[RecentError]:
    return [
        RecentError(
            timestamp=to_str(cell(row, 0)),
            message=to_str(cell(row, 1))[:RECENT_ERROR_MESSAGE_CHARS],
            service=canonicalize(to_str(cell(row, 2))),
            path=to_str(cell(row, 3)),
        )
        for row in rows
    ]


def parse_services(sites: Sequence[SiteInfo]) -> List[ServiceStatus]:
    out: List[ServiceStatus] = []
    seen = set()
    for site in sites:
        if not site.name or site.is_staging_slot or site.name in seen:
            continue
        seen.add(site.name)
        out.append(
            ServiceStatus(
                name=site.name,
                display_name=canonicalize(site.name),
                status="healthy" if site.is_running else "unhealthy",
                state=site.state or UNKNOWN_SERVICE,
                host_name=site.host_name,
            )
        )
    return out


def build_overview(
    *,
    requests: Sequence[ServiceRecord],
    total_errors: int,
    llm: Sequence[LlmModelUsage],
    queues: Sequence[QueueInfo],
) -> Overview:
    return Overview(
        total_requests=sum(r.count for r in requests),
        total_errors=total_errors,
        llm_cost=sum(m.cost for m in llm),
        llm_tokens=sum(m.tokens for m in llm),
        llm_calls=sum(m.calls for m in llm),
        queue_depth=sum(q.active_count for q in queues),
        dead_letters=sum(q.dead_letter_count for q in queues),
    )


def collect_infrastructure_metrics(
    backends: TelemetryBackends,
    *,
    environment: Environment,
    time_range: TimeRange,
    timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
    now: Optional[datetime] = None,
) -> InfrastructureMetrics:
    tr = time_range
    duration = tr.iso_duration

    def logs(query: str, window: str = duration):
        return lambda: backends.query_logs(query, environment, window)

    batch = run_queries(
        "infrastructure",
        [
            SubQuery(
                "requests",
                logs(kql_queries.requests_by_service(tr)),
                lambda rows: parse_service_counts(rows, drop_empty=True),
                list,
            ),
            SubQuery(
                "traces",
                logs(kql_queries.traces_by_service(tr)),
                lambda rows: parse_service_counts(rows, drop_unknown=True),
                list,
            ),
            SubQuery("errorCount", logs(kql_queries.error_count(tr)), parse_error_total, int),
            SubQuery("llm", logs(kql_queries.llm_usage_by_model(tr)), parse_llm_usage, list),
            SubQuery("queues", lambda: backends.list_queues(environment), list, list),
            SubQuery("services", lambda: backends.list_sites(environment), parse_services, list),
            SubQuery(
                "recentErrors",
                logs(kql_queries.recent_errors(10), RECENT_ERRORS_DURATION),
                parse_recent_errors,
                list,
            ),
            SubQuery("performance", logs(kql_queries.performance_by_endpoint(tr)), parse_performance, list),
            SubQuery(
                "performanceRequests",
                logs(kql_queries.performance_from_requests(tr)),
                parse_performance,
                list,
            ),
        ],
        timeout_seconds=timeout_seconds,
    )

    requests = prefer_primary(batch["requests"], batch["traces"])
    performance = prefer_primary(batch["performance"], batch["performanceRequests"])
    generated = now or datetime.now(timezone.utc)

    return InfrastructureMetrics(
        timestamp=generated.isoformat(),
        environment=environment,
        time_range=tr.raw,
        overview=build_overview(
            requests=requests,
            total_errors=batch["errorCount"],
            llm=batch["llm"],
            queues=batch["queues"],
        ),
        requests_by_service=list(requests),
        llm_by_model=batch["llm"],
        queues=batch["queues"],
        services=batch["services"],
        recent_errors=batch["recentErrors"],
        performance=list(performance),
        degraded=list(batch.failed),
    )
