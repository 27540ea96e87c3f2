from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, List, Optional

import httpx
from azure.identity import DefaultAzureCredential


logger = logging.getLogger("ops_metrics.log_analytics")

LOG_ANALYTICS_SCOPE = "https://api.loganalytics.io/.default"
LOG_ANALYTICS_BASE_URL = "https://api.loganalytics.io/v1"


def extract_rows(payload: Dict[str, Any]) -> List[List[Any]]:
    """
    Return the first table's rows from a Log Analytics query response.

    Partial failures still carry tables alongside an `error` object; those rows are kept.
    """
    tables = payload.get("tables") if isinstance(payload.get("tables"), list) else []
    if not tables:
        return []
    table = tables[0] if isinstance(tables[0], dict) else {}
    rows = table.get("rows") if isinstance(table.get("rows"), list) else []
    return [row for row in rows if isinstance(row, list)]


class AzureLogAnalyticsClient:
    def __init__(
        self,
        *,
        credential: Optional[Any] = None,
        http_client: Optional[httpx.Client] = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._credential = credential or DefaultAzureCredential(exclude_interactive_browser_credential=True)
        self._http = http_client or httpx.Client(timeout=httpx.Timeout(timeout_seconds))
        self._owns_http = http_client is None
        self._token: Optional[str] = None
        self._token_expires_at: float = 0.0
        self._token_lock = threading.Lock()

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "AzureLogAnalyticsClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    def _get_bearer(self) -> str:
        with self._token_lock:
            now = time.time()
            if self._token and now < (self._token_expires_at - 60):
                return self._token
            token = self._credential.get_token(LOG_ANALYTICS_SCOPE)
            self._token = token.token
            self._token_expires_at = float(getattr(token, "expires_on", 0) or 0)
            return self._token

    def _post(self, url: str, *, query: str, timespan: Optional[str]) -> Dict[str, Any]:
        body: Dict[str, Any] = {"query": query}
        if timespan:
            body["timespan"] = timespan
        resp = self._http.post(url, headers={"Authorization": f"Bearer {self._get_bearer()}"}, json=body)
        resp.raise_for_status()
        payload = resp.json()
        if not isinstance(payload, dict):
            raise ValueError("Log Analytics response was not a JSON object.")
        error = payload.get("error")
        if isinstance(error, dict):
            logger.warning(
                "Log Analytics partial failure: code=%s message=%s",
                error.get("code"),
                error.get("message"),
            )
        return payload

    def query_resource(self, *, resource_id: str, query: str, timespan: Optional[str] = None) -> Dict[str, Any]:
        """
        Resource-centric query: the App Insights tables (requests, traces, exceptions) are only
        addressable through the component's resource ID, not its backing workspace.
        """
        rid = (resource_id or "").strip()
        if not rid.startswith("/subscriptions/"):
            raise ValueError(f"resource_id must be an ARM resource ID (got {resource_id!r})")
        return self._post(f"{LOG_ANALYTICS_BASE_URL}{rid}/query", query=query, timespan=timespan)

    def query_rows(self, *, resource_id: str, query: str, timespan: Optional[str] = None) -> List[List[Any]]:
        return extract_rows(self.query_resource(resource_id=resource_id, query=query, timespan=timespan))
