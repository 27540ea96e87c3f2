from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, Sized, TypeVar

from monitoring.errors import BackendUnavailableError, ConfigurationError


logger = logging.getLogger("ops_metrics.orchestrator")

DEFAULT_QUERY_TIMEOUT_SECONDS = 30.0

T = TypeVar("T")


@dataclass(frozen=True)
class SubQuery(Generic[T]):
    """
    One backend query plus the parser that turns its raw rows into typed records.

    `default` builds the degraded result used when the fetch or the parse fails.
    """

    name: str
    fetch: Callable[[], Any]
    parse: Callable[[Any], T]
    default: Callable[[], T]


@dataclass
class BatchResult:
    endpoint: str
    values: Dict[str, Any] = field(default_factory=dict)
    failed: List[str] = field(default_factory=list)

    def __getitem__(self, name: str) -> Any:
        return self.values[name]

    @property
    def degraded(self) -> bool:
        return bool(self.failed)


def _run_one(query: SubQuery[Any]) -> Any:
    rows = query.fetch()
    return query.parse(rows)


def run_queries(
    endpoint: str,
    queries: Sequence[SubQuery[Any]],
    *,
    timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
    max_workers: Optional[int] = None,
) -> BatchResult:
    """
    Run every sub-query concurrently and wait for all of them (or the batch deadline).

    A failing or timed-out sub-query degrades to its default. Configuration errors propagate,
    and a batch where every sub-query failed raises `BackendUnavailableError`.
    """
    result = BatchResult(endpoint=endpoint)
    if not queries:
        return result

    names = [q.name for q in queries]
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate sub-query names for {endpoint}: {names}")

    started = time.monotonic()
    deadline = started + max(float(timeout_seconds), 0.001)
    workers = max_workers or len(queries)
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"metrics-{endpoint}")
    errors: Dict[str, BaseException] = {}
    try:
        future_to_query: Dict[Future, SubQuery[Any]] = {
            executor.submit(_run_one, query): query for query in queries
        }
        pending = set(future_to_query)
        while pending:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            done, pending = wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)
            for future in done:
                query = future_to_query[future]
                try:
                    result.values[query.name] = future.result()
                except ConfigurationError:
                    raise
                except Exception as exc:
                    errors[query.name] = exc
                    logger.warning(
                        "Sub-query failed: endpoint=%s query=%s error=%s: %s",
                        endpoint,
                        query.name,
                        type(exc).__name__,
                        exc,
                        exc_info=True,
                    )

        for future in pending:
            query = future_to_query[future]
            future.cancel()
            errors[query.name] = TimeoutError(f"{query.name} exceeded {timeout_seconds}s")
            logger.warning(
                "Sub-query timed out: endpoint=%s query=%s timeout_seconds=%s",
                endpoint,
                query.name,
                timeout_seconds,
            )
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    if len(errors) == len(queries):
        first = next(iter(errors.values()))
        raise BackendUnavailableError(
            f"All {len(queries)} {endpoint} queries failed (first error: {type(first).__name__}: {first})"
        ) from first

    for query in queries:
        if query.name in errors:
            result.failed.append(query.name)
            result.values[query.name] = query.default()

    logger.info(
        "Query batch complete: endpoint=%s queries=%s failed=%s elapsed_ms=%.0f",
        endpoint,
        len(queries),
        len(result.failed),
        (time.monotonic() - started) * 1000.0,
    )
    return result


def prefer_primary(primary: Sized, fallback: Any) -> Any:
    """Use the fallback only when the primary parsed to nothing; all-zero primaries still win."""
    return primary if len(primary) > 0 else fallback
