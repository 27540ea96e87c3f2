"""Postgres statements for the application database and its pg_stat views."""

from __future__ import annotations

import re
from typing import Dict

from monitoring.time_range import TimeRange


_INTERVAL_RE = re.compile(r"^\d+ (days|hours|minutes)$")

_CURRENT_DB_OID = "(SELECT oid FROM pg_database WHERE datname = current_database())"


def _interval(tr: TimeRange) -> str:
    # The interval is interpolated into SQL, so only accept the forms TimeRange produces.
    if not _INTERVAL_RE.match(tr.sql_interval):
        raise ValueError(f"Unexpected SQL interval: {tr.sql_interval!r}")
    return tr.sql_interval


ENTITY_COUNTS = """
SELECT
  (SELECT COUNT(*) FROM users) AS total_users,
  (SELECT COUNT(*) FROM organizations) AS total_orgs,
  (SELECT COUNT(*) FROM workspaces) AS total_workspaces,
  (SELECT COUNT(*) FROM knowledge_units) AS total_kus,
  (SELECT COUNT(*) FROM chat_conversations) AS total_conversations,
  (SELECT COUNT(*) FROM chat_messages) AS total_messages,
  (SELECT COUNT(*) FROM processing_jobs) AS total_jobs
"""

JOB_STATS_BY_STATUS = """
SELECT status, COUNT(*) AS count
FROM processing_jobs
GROUP BY status
ORDER BY count DESC
"""

RECENT_USERS_TREND = """
SELECT DATE(created_at)::text AS date, COUNT(*) AS count
FROM users
WHERE created_at > NOW() - INTERVAL '7 days'
GROUP BY DATE(created_at)
ORDER BY DATE(created_at) DESC
"""

DATABASE_HEALTH = """
SELECT
  pg_database_size(current_database()) / 1024 / 1024 AS db_size_mb,
  (SELECT count(*) FROM pg_stat_activity WHERE datname = current_database() AND state = 'active') AS active_queries,
  (SELECT count(*) FROM pg_stat_activity WHERE datname = current_database()) AS total_connections,
  (SELECT count(*) FROM pg_stat_activity WHERE datname = current_database() AND state = 'idle') AS idle_connections,
  (SELECT count(*) FROM pg_stat_activity
     WHERE datname = current_database() AND state = 'active'
       AND wait_event_type IS NOT NULL AND wait_event_type != 'Client') AS waiting_queries,
  (SELECT EXTRACT(EPOCH FROM (now() - pg_postmaster_start_time()))::int / 3600) AS uptime_hours
"""

CONNECTION_STATS = """
SELECT
  state,
  COUNT(*) AS count,
  COALESCE(MAX(EXTRACT(EPOCH FROM (now() - state_change)))::int, 0) AS max_duration_sec
FROM pg_stat_activity
WHERE datname = current_database()
GROUP BY state
ORDER BY count DESC
"""

CACHE_STATS = """
SELECT
  ROUND(100.0 * sum(blks_hit) / NULLIF(sum(blks_hit + blks_read), 0), 2) AS cache_hit_ratio,
  sum(blks_hit) AS cache_hits,
  sum(blks_read) AS disk_reads,
  sum(tup_returned) AS rows_returned,
  sum(tup_fetched) AS rows_fetched,
  sum(tup_inserted) AS rows_inserted,
  sum(tup_updated) AS rows_updated,
  sum(tup_deleted) AS rows_deleted
FROM pg_stat_database
WHERE datname = current_database()
"""

QUERY_STATS = f"""
SELECT
  (SELECT count(*) FROM pg_stat_statements WHERE dbid = {_CURRENT_DB_OID}) AS total_query_types,
  (SELECT ROUND(sum(calls)::numeric) FROM pg_stat_statements WHERE dbid = {_CURRENT_DB_OID}) AS total_calls,
  (SELECT ROUND(sum(total_exec_time)::numeric / 1000 / 60, 2)
     FROM pg_stat_statements WHERE dbid = {_CURRENT_DB_OID}) AS total_exec_minutes,
  (SELECT ROUND(avg(mean_exec_time)::numeric, 2)
     FROM pg_stat_statements WHERE dbid = {_CURRENT_DB_OID}) AS avg_query_time_ms
"""

LOCK_STATS = f"""
SELECT mode, COUNT(*) AS count
FROM pg_locks
WHERE database = {_CURRENT_DB_OID}
GROUP BY mode
ORDER BY count DESC
"""


def jobs_in_range(tr: TimeRange) -> str:
    return f"""
SELECT status, COUNT(*) AS count
FROM processing_jobs
WHERE created_at > NOW() - INTERVAL '{_interval(tr)}'
GROUP BY status
"""


def table_sizes(limit: int = 15) -> str:
    return f"""
SELECT
  relname AS table_name,
  pg_size_pretty(pg_total_relation_size(relid)) AS total_size,
  pg_total_relation_size(relid) / 1024 / 1024 AS size_mb,
  n_live_tup AS row_count,
  n_dead_tup AS dead_tuples,
  CASE WHEN (n_live_tup + n_dead_tup) > 0
    THEN ROUND(100.0 * n_dead_tup / (n_live_tup + n_dead_tup), 2)
    ELSE 0
  END AS dead_tuple_ratio
FROM pg_stat_user_tables
ORDER BY pg_total_relation_size(relid) DESC
LIMIT {int(limit)}
"""


def slow_queries(limit: int = 10) -> str:
    # Requires the pg_stat_statements extension.
    return f"""
SELECT
  LEFT(query, 100) AS query_snippet,
  calls,
  ROUND(total_exec_time::numeric, 2) AS total_time_ms,
  ROUND(mean_exec_time::numeric, 2) AS avg_time_ms,
  ROUND(max_exec_time::numeric, 2) AS max_time_ms,
  rows
FROM pg_stat_statements
WHERE dbid = {_CURRENT_DB_OID}
  AND query NOT LIKE '%pg_stat%'
ORDER BY mean_exec_time DESC
LIMIT {int(limit)}
"""


def index_usage(limit: int = 10) -> str:
    return f"""
SELECT
  relname AS table_name,
  indexrelname AS index_name,
  idx_scan AS scans,
  idx_tup_read AS tuples_read,
  idx_tup_fetch AS tuples_fetched,
  pg_size_pretty(pg_relation_size(indexrelid)) AS index_size
FROM pg_stat_user_indexes
ORDER BY idx_scan DESC
LIMIT {int(limit)}
"""


ACTIVITY_TABLES: Dict[str, str] = {
    "newUsers": "users",
    "newJobs": "processing_jobs",
    "newConversations": "chat_conversations",
    "newMessages": "chat_messages",
    "newKUs": "knowledge_units",
}


def activity_in_range(tr: TimeRange) -> Dict[str, str]:
    interval = _interval(tr)
    return {
        key: f"SELECT COUNT(*) AS count FROM {table} WHERE created_at > NOW() - INTERVAL '{interval}'"
        for key, table in ACTIVITY_TABLES.items()
    }
