from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from monitoring import sql_queries
from monitoring.backends import TelemetryBackends
from monitoring.config import Environment
from monitoring.health_score import HealthScore, cache_status, derive_health
from monitoring.orchestrator import DEFAULT_QUERY_TIMEOUT_SECONDS, SubQuery, run_queries
from monitoring.rows import first_row, to_float, to_int, to_str
from monitoring.rows import field as row_field
from monitoring.time_range import TimeRange


Row = Mapping[str, Any]

JOB_STATUSES = ("completed", "failed", "processing", "pending")


@dataclass(frozen=True)
class EntityCounts:
    users: int = 0
    organizations: int = 0
    workspaces: int = 0
    knowledge_units: int = 0
    conversations: int = 0
    messages: int = 0
    total_jobs: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "users": self.users,
            "organizations": self.organizations,
            "workspaces": self.workspaces,
            "knowledgeUnits": self.knowledge_units,
            "conversations": self.conversations,
            "messages": self.messages,
            "totalJobs": self.total_jobs,
        }


@dataclass(frozen=True)
class HealthIndicators:
    db_size_mb: int = 0
    active_queries: int = 0
    total_connections: int = 0
    idle_connections: int = 0
    waiting_queries: int = 0
    uptime_hours: int = 0


@dataclass(frozen=True)
class CacheStats:
    hit_ratio: float = 0.0
    hits: int = 0
    disk_reads: int = 0
    rows_returned: int = 0
    rows_fetched: int = 0
    rows_inserted: int = 0
    rows_updated: int = 0
    rows_deleted: int = 0


@dataclass(frozen=True)
class QueryStats:
    total_query_types: int = 0
    total_calls: int = 0
    total_exec_minutes: float = 0.0
    avg_query_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalQueryTypes": self.total_query_types,
            "totalCalls": self.total_calls,
            "totalExecMinutes": self.total_exec_minutes,
            "avgQueryTimeMs": self.avg_query_time_ms,
        }


@dataclass(frozen=True)
class StatusCount:
    status: str
    count: int


@dataclass(frozen=True)
class DatabaseMetrics:
    timestamp: str
    environment: str
    time_range: str
    counts: EntityCounts
    activity: Dict[str, int]
    job_status: List[StatusCount]
    jobs_in_range: List[StatusCount]
    users_trend: List[Dict[str, Any]]
    indicators: HealthIndicators
    health: HealthScore
    connections: List[Dict[str, Any]]
    cache: CacheStats
    tables: List[Dict[str, Any]]
    query_stats: QueryStats
    slow_queries: List[Dict[str, Any]]
    indexes: List[Dict[str, Any]]
    locks: List[Dict[str, Any]]
    degraded: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        by_status = {s.status: s.count for s in self.job_status}
        in_range = {s.status: s.count for s in self.jobs_in_range}
        ind = self.indicators
        jobs: Dict[str, Any] = {"total": self.counts.total_jobs}
        jobs.update({status: by_status.get(status, 0) for status in JOB_STATUSES})
        jobs["byStatus"] = [{"status": s.status, "count": s.count} for s in self.job_status]
        return {
            "timestamp": self.timestamp,
            "environment": self.environment,
            "timeRange": self.time_range,
            "counts": self.counts.to_dict(),
            "activity": dict(self.activity),
            "jobs": jobs,
            "jobsInRange": {"byStatus": in_range, "total": sum(in_range.values())},
            "trends": {"usersLast7Days": list(self.users_trend)},
            "health": {
                **self.health.to_dict(),
                "dbSizeMb": ind.db_size_mb,
                "uptimeHours": ind.uptime_hours,
                "activeQueries": ind.active_queries,
                "totalConnections": ind.total_connections,
                "idleConnections": ind.idle_connections,
                "waitingQueries": ind.waiting_queries,
            },
            "connections": {"total": ind.total_connections, "byState": list(self.connections)},
            "cache": {
                "hitRatio": self.cache.hit_ratio,
                "hits": self.cache.hits,
                "diskReads": self.cache.disk_reads,
                "status": cache_status(self.cache.hit_ratio),
            },
            "operations": {
                "returned": self.cache.rows_returned,
                "fetched": self.cache.rows_fetched,
                "inserted": self.cache.rows_inserted,
                "updated": self.cache.rows_updated,
                "deleted": self.cache.rows_deleted,
            },
            "tables": list(self.tables),
            "queryStats": self.query_stats.to_dict(),
            "slowQueries": list(self.slow_queries),
            "indexes": list(self.indexes),
            "locks": {"total": sum(l["count"] for l in self.locks), "byMode": list(self.locks)},
            "degradedSections": list(self.degraded),
        }


def _int(row: Optional[Row], name: str) -> int:
    return to_int(row_field(row, name))


def _float(row: Optional[Row], name: str) -> float:
    return to_float(row_field(row, name))


def parse_entity_counts(rows: Sequence[Row]) -> EntityCounts:
    row = first_row(rows)
    return EntityCounts(
        users=_int(row, "total_users"),
        organizations=_int(row, "total_orgs"),
        workspaces=_int(row, "total_workspaces"),
        knowledge_units=_int(row, "total_kus"),
        conversations=_int(row, "total_conversations"),
        messages=_int(row, "total_messages"),
        total_jobs=_int(row, "total_jobs"),
    )


def parse_status_counts(rows: Sequence[Row]) -> List[StatusCount]:
    return [StatusCount(status=to_str(row_field(r, "status"), "unknown"), count=_int(r, "count")) for r in rows]


def parse_users_trend(rows: Sequence[Row]) -> List[Dict[str, Any]]:
    return [{"date": to_str(row_field(r, "date")), "count": _int(r, "count")} for r in rows]


def parse_health_indicators(rows: Sequence[Row]) -> HealthIndicators:
    row = first_row(rows)
    return HealthIndicators(
        db_size_mb=_int(row, "db_size_mb"),
        active_queries=_int(row, "active_queries"),
        total_connections=_int(row, "total_connections"),
        idle_connections=_int(row, "idle_connections"),
        waiting_queries=_int(row, "waiting_queries"),
        uptime_hours=_int(row, "uptime_hours"),
    )


def parse_connections(rows: Sequence[Row]) -> List[Dict[str, Any]]:
    return [
        {
            "state": to_str(row_field(r, "state"), "unknown"),
            "count": _int(r, "count"),
            "maxDurationSec": _int(r, "max_duration_sec"),
        }
        for r in rows
    ]


def parse_cache_stats(rows: Sequence[Row]) -> CacheStats:
    row = first_row(rows)
    return CacheStats(
        hit_ratio=_float(row, "cache_hit_ratio"),
        hits=_int(row, "cache_hits"),
        disk_reads=_int(row, "disk_reads"),
        rows_returned=_int(row, "rows_returned"),
        rows_fetched=_int(row, "rows_fetched"),
        rows_inserted=_int(row, "rows_inserted"),
        rows_updated=_int(row, "rows_updated"),
        rows_deleted=_int(row, "rows_deleted"),
    )


def parse_tables(rows: Sequence[Row]) -> List[Dict[str, Any]]:
    return [
        {
            "name": to_str(row_field(r, "table_name")),
            "size": to_str(row_field(r, "total_size")),
            "sizeMb": _int(r, "size_mb"),
            "rowCount": _int(r, "row_count"),
            "deadTuples": _int(r, "dead_tuples"),
            "deadTupleRatio": _float(r, "dead_tuple_ratio"),
        }
        for r in rows
    ]


def parse_slow_queries(rows: Sequence[Row]) -> List[Dict[str, Any]]:
    return [
        {
            "query": to_str(row_field(r, "query_snippet")),
            "calls": _int(r, "calls"),
            "totalTimeMs": _float(r, "total_time_ms"),
            "avgTimeMs": _float(r, "avg_time_ms"),
            "maxTimeMs": _float(r, "max_time_ms"),
            "rows": _int(r, "rows"),
        }
        for r in rows
    ]


def parse_query_stats(rows: Sequence[Row]) -> QueryStats:
    row = first_row(rows)
    return QueryStats(
        total_query_types=_int(row, "total_query_types"),
        total_calls=_int(row, "total_calls"),
        total_exec_minutes=_float(row, "total_exec_minutes"),
        avg_query_time_ms=_float(row, "avg_query_time_ms"),
    )


def parse_indexes(rows: Sequence[Row]) -> List[Dict[str, Any]]:
    return [
        {
            "table": to_str(row_field(r, "table_name")),
            "index": to_str(row_field(r, "index_name")),
            "scans": _int(r, "scans"),
            "tuplesRead": _int(r, "tuples_read"),
            "tuplesFetched": _int(r, "tuples_fetched"),
            "size": to_str(row_field(r, "index_size")),
        }
        for r in rows
    ]


def parse_locks(rows: Sequence[Row]) -> List[Dict[str, Any]]:
    return [{"mode": to_str(row_field(r, "mode"), "unknown"), "count": _int(r, "count")} for r in rows]


def parse_single_count(rows: Sequence[Row]) -> int:
    return _int(first_row(rows), "count")


def collect_database_metrics(
    backends: TelemetryBackends,
    *,
    environment: Environment,
    time_range: TimeRange,
    timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
    now: Optional[datetime] = None,
) -> DatabaseMetrics:
    """
    Application and engine statistics from one Postgres environment.

    `slowQueries` and `queryStats` need the pg_stat_statements extension; without it they come back
    empty and are listed in `degradedSections`.
    """

    def sql(statement: str):
        return lambda: backends.query_database(statement, environment)

    activity_sql = sql_queries.activity_in_range(time_range)
    queries: List[SubQuery[Any]] = [
        SubQuery("counts", sql(sql_queries.ENTITY_COUNTS), parse_entity_counts, EntityCounts),
        SubQuery("jobs", sql(sql_queries.JOB_STATS_BY_STATUS), parse_status_counts, list),
        SubQuery("usersTrend", sql(sql_queries.RECENT_USERS_TREND), parse_users_trend, list),
        SubQuery("jobsInRange", sql(sql_queries.jobs_in_range(time_range)), parse_status_counts, list),
        SubQuery("health", sql(sql_queries.DATABASE_HEALTH), parse_health_indicators, HealthIndicators),
        SubQuery("connections", sql(sql_queries.CONNECTION_STATS), parse_connections, list),
        SubQuery("cache", sql(sql_queries.CACHE_STATS), parse_cache_stats, CacheStats),
        SubQuery("tables", sql(sql_queries.table_sizes(15)), parse_tables, list),
        SubQuery("slowQueries", sql(sql_queries.slow_queries(10)), parse_slow_queries, list),
        SubQuery("queryStats", sql(sql_queries.QUERY_STATS), parse_query_stats, QueryStats),
        SubQuery("indexes", sql(sql_queries.index_usage(10)), parse_indexes, list),
        SubQuery("locks", sql(sql_queries.LOCK_STATS), parse_locks, list),
    ]
    queries.extend(SubQuery(key, sql(statement), parse_single_count, int) for key, statement in activity_sql.items())

    batch = run_queries("database", queries, timeout_seconds=timeout_seconds)

    indicators: HealthIndicators = batch["health"]
    cache: CacheStats = batch["cache"]
    health = derive_health(
        {
            "cache_hit_ratio": cache.hit_ratio,
            "active_queries": indicators.active_queries,
            "waiting_queries": indicators.waiting_queries,
            "total_connections": indicators.total_connections,
        }
    )
    generated = now or datetime.now(timezone.utc)

    return DatabaseMetrics(
        timestamp=generated.isoformat(),
        environment=environment,
        time_range=time_range.raw,
        counts=batch["counts"],
        activity={key: batch[key] for key in activity_sql},
        job_status=batch["jobs"],
        jobs_in_range=batch["jobsInRange"],
        users_trend=batch["usersTrend"],
        indicators=indicators,
        health=health,
        connections=batch["connections"],
        cache=cache,
        tables=batch["tables"],
        query_stats=batch["queryStats"],
        slow_queries=batch["slowQueries"],
        indexes=batch["indexes"],
        locks=batch["locks"],
        degraded=list(batch.failed),
    )
