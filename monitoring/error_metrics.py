from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from monitoring import kql_queries
from monitoring.backends import TelemetryBackends
from monitoring.config import Environment
from monitoring.infrastructure import parse_service_counts
from monitoring.orchestrator import DEFAULT_QUERY_TIMEOUT_SECONDS, SubQuery, run_queries
from monitoring.rows import cell, parse_timestamp, to_int, to_str
from monitoring.service_names import UNKNOWN_SERVICE, ServiceRecord, canonicalize
from monitoring.time_range import TimeRange


TrendDirection = Literal["up", "down", "stable"]

RECENT_MESSAGE_CHARS = 200
DEFAULT_SEVERITY = 3


@dataclass(frozen=True)
class ErrorTrend:
    current: int
    previous: int

    @property
    def percent(self) -> float:
        # A quiet previous hour counts as one error so the ratio stays finite.
        baseline = self.previous or 1
        return (self.current - baseline) / baseline * 100.0

    @property
    def direction(self) -> TrendDirection:
        pct = self.percent
        if pct > 0:
            return "up"
        if pct < 0:
            return "down"
        return "stable"


@dataclass(frozen=True)
class ErrorType:
    type: str
    service: str
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "service": self.service, "count": self.count}


@dataclass(frozen=True)
class ErrorEvent:
    timestamp: str
    message: str
    service: str
    path: str
    user_id: str
    correlation_id: str
    severity: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "message": self.message,
            "service": self.service,
            "path": self.path,
            "userId": self.user_id,
            "correlationId": self.correlation_id,
            "severity": self.severity,
        }


@dataclass(frozen=True)
class ErrorMetrics:
    timestamp: str
    environment: str
    time_range: str
    by_service: List[ServiceRecord]
    by_type: List[ErrorType]
    over_time: List[Dict[str, Any]]
    recent: List[ErrorEvent]
    top_endpoints: List[Dict[str, Any]]
    trend: ErrorTrend
    degraded: List[str] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        return {
            "totalErrors": sum(r.count for r in self.by_service),
            "servicesAffected": sum(1 for r in self.by_service if r.count > 0),
            "errorTypes": len({t.type for t in self.by_type}),
            "trend": round(self.trend.percent, 1),
            "trendDirection": self.trend.direction,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "environment": self.environment,
            "timeRange": self.time_range,
            "summary": self.summary(),
            "byService": [r.to_dict() for r in self.by_service],
            "byType": [t.to_dict() for t in self.by_type],
            "overTime": list(self.over_time),
            "recent": [e.to_dict() for e in self.recent],
            "topEndpoints": list(self.top_endpoints),
            "degradedSections": list(self.degraded),
        }


def parse_error_types(rows: Sequence[Any]) -> List[ErrorType]:
    """Exception counts per (type, service); rows that canonicalize to the same pair are merged."""
    totals: Dict[Tuple[str, str], int] = {}
    for row in rows:
        key = (to_str(cell(row, 0), UNKNOWN_SERVICE), canonicalize(to_str(cell(row, 1))))
        totals[key] = totals.get(key, 0) + to_int(cell(row, 2))
    ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return [ErrorType(type=t, service=s, count=count) for (t, s), count in ordered]


def parse_over_time(rows: Sequence[Any]) -> List[Dict[str, Any]]:
    out = []
    for row in rows:
        stamp = parse_timestamp(cell(row, 0))
        out.append(
            {
                "timestamp": stamp.isoformat() if stamp else to_str(cell(row, 0)),
                "time": stamp.strftime("%H:%M") if stamp else "",
                "count": to_int(cell(row, 1)),
            }
        )
    return out


def parse_error_events(rows: Sequence[Any]) -> List[ErrorEvent]:
    return [
        ErrorEvent(
            timestamp=to_str(cell(row, 0)),
            message=to_str(cell(row, 1))[:RECENT_MESSAGE_CHARS],
            service=canonicalize(to_str(cell(row, 2))),
            path=to_str(cell(row, 3)),
            user_id=to_str(cell(row, 4)),
            correlation_id=to_str(cell(row, 5)),
            severity=to_int(cell(row, 6)) or DEFAULT_SEVERITY,
        )
        for row in rows
    ]


def parse_top_endpoints(rows: Sequence[Any]) -> List[Dict[str, Any]]:
    return [{"path": to_str(cell(row, 0), UNKNOWN_SERVICE), "count": to_int(cell(row, 1))} for row in rows]


def parse_trend(rows: Sequence[Any]) -> ErrorTrend:
    counts = {to_str(cell(row, 0)): to_int(cell(row, 1)) for row in rows}
    return ErrorTrend(current=counts.get("current", 0), previous=counts.get("previous", 0))


def collect_error_metrics(
    backends: TelemetryBackends,
    *,
    environment: Environment,
    time_range: TimeRange,
    timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
    now: Optional[datetime] = None,
) -> ErrorMetrics:
    tr = time_range

    def logs(query: str, window: str = tr.iso_duration):
        return lambda: backends.query_logs(query, environment, window)

    batch = run_queries(
        "errors",
        [
            SubQuery("byService", logs(kql_queries.errors_by_service(tr)), parse_service_counts, list),
            SubQuery("byType", logs(kql_queries.exceptions_by_type(tr)), parse_error_types, list),
            SubQuery("overTime", logs(kql_queries.errors_over_time(tr)), parse_over_time, list),
            SubQuery("recent", logs(kql_queries.detailed_recent_errors(tr)), parse_error_events, list),
            SubQuery("topEndpoints", logs(kql_queries.top_error_endpoints(tr)), parse_top_endpoints, list),
            SubQuery(
                "trend",
                logs(kql_queries.error_trend(), kql_queries.ERROR_TREND_DURATION),
                parse_trend,
                lambda: ErrorTrend(current=0, previous=0),
            ),
        ],
        timeout_seconds=timeout_seconds,
    )
    generated = now or datetime.now(timezone.utc)

    return ErrorMetrics(
        timestamp=generated.isoformat(),
        environment=environment,
        time_range=tr.raw,
        by_service=batch["byService"],
        by_type=batch["byType"],
        over_time=batch["overTime"],
        recent=batch["recent"],
        top_endpoints=batch["topEndpoints"],
        trend=batch["trend"],
        degraded=list(batch.failed),
    )
