from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool


logger = logging.getLogger("ops_metrics.postgres")

POOL_MAX_SIZE = 5
POOL_MAX_IDLE_SECONDS = 30.0
POOL_CONNECT_TIMEOUT_SECONDS = 10.0


class PostgresPools:
    """
    One bounded connection pool per key (environment), opened lazily on first use.

    `dsn_fn` resolves the connection string for a key and may raise if it is not configured;
    nothing is cached for a key until a pool was built successfully.
    """

    def __init__(
        self,
        dsn_fn: Callable[[str], str],
        *,
        max_size: int = POOL_MAX_SIZE,
        max_idle_seconds: float = POOL_MAX_IDLE_SECONDS,
        connect_timeout_seconds: float = POOL_CONNECT_TIMEOUT_SECONDS,
        statement_timeout_ms: Optional[int] = None,
    ) -> None:
        self._dsn_fn = dsn_fn
        self._max_size = int(max_size)
        self._max_idle_seconds = float(max_idle_seconds)
        self._connect_timeout_seconds = float(connect_timeout_seconds)
        self._statement_timeout_ms = statement_timeout_ms
        self._pools: Dict[str, ConnectionPool] = {}
        self._lock = threading.Lock()

    def _build(self, key: str) -> ConnectionPool:
        kwargs: Dict[str, Any] = {"row_factory": dict_row, "autocommit": True}
        if self._statement_timeout_ms:
            kwargs["options"] = f"-c statement_timeout={int(self._statement_timeout_ms)}"
        pool = ConnectionPool(
            self._dsn_fn(key),
            min_size=0,
            max_size=self._max_size,
            max_idle=self._max_idle_seconds,
            timeout=self._connect_timeout_seconds,
            kwargs=kwargs,
            name=f"metrics-{key}",
            open=False,
        )
        pool.open(wait=False)
        logger.info("Postgres pool opened: key=%s max_size=%s", key, self._max_size)
        return pool

    def pool(self, key: str) -> ConnectionPool:
        with self._lock:
            existing = self._pools.get(key)
            if existing is not None:
                return existing
            created = self._build(key)
            self._pools[key] = created
            return created

    def query(self, sql: str, key: str) -> List[Dict[str, Any]]:
        with self.pool(key).connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql)
                if cur.description is None:
                    return []
                return [dict(row) for row in cur.fetchall()]

    def close(self) -> None:
        with self._lock:
            pools = list(self._pools.items())
            self._pools.clear()
        for key, pool in pools:
            try:
                pool.close()
            except Exception as exc:
                logger.warning("Postgres pool close failed: key=%s error=%s", key, exc)
