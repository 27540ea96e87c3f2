from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

import httpx
from azure.identity import DefaultAzureCredential


ARM_SCOPE = "https://management.azure.com/.default"
ARM_BASE_URL = "https://management.azure.com"


@dataclass(frozen=True)
class ArmConfig:
    subscription_id: str
    api_version: str = "2023-01-01"
    timeout_seconds: float = 30.0


class AzureArmClient:
    def __init__(
        self,
        cfg: ArmConfig,
        *,
        credential: Optional[Any] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._cfg = cfg
        self._credential = credential or DefaultAzureCredential(exclude_interactive_browser_credential=True)
        self._http = http_client or httpx.Client(timeout=httpx.Timeout(cfg.timeout_seconds))
        self._owns_http = http_client is None
        self._token: Optional[str] = None
        self._token_expires_at: float = 0.0
        self._token_lock = threading.Lock()

    @property
    def subscription_id(self) -> str:
        return self._cfg.subscription_id

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "AzureArmClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    def _get_bearer(self) -> str:
        with self._token_lock:
            now = time.time()
            if self._token and now < (self._token_expires_at - 60):
                return self._token

            token = self._credential.get_token(ARM_SCOPE)
            self._token = token.token
            self._token_expires_at = float(getattr(token, "expires_on", 0) or 0)
            return self._token

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._get_bearer()}"}

    def _params(self, params: Optional[Dict[str, Any]], api_version: Optional[str]) -> Dict[str, str]:
        query = {"api-version": api_version or self._cfg.api_version}
        if params:
            query.update({k: str(v) for k, v in params.items() if v is not None})
        return query

    def get_json(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        api_version: Optional[str] = None,
    ) -> Dict[str, Any]:
        resp = self._http.get(url, headers=self._headers(), params=self._params(params, api_version))
        resp.raise_for_status()
        payload = resp.json()
        if not isinstance(payload, dict):
            raise ValueError("ARM response was not a JSON object.")
        return payload

    def post_json(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        api_version: Optional[str] = None,
    ) -> Dict[str, Any]:
        resp = self._http.post(url, headers=self._headers(), params=self._params(params, api_version))
        resp.raise_for_status()
        payload = resp.json() if resp.content else {}
        if not isinstance(payload, dict):
            raise ValueError("ARM response was not a JSON object.")
        return payload

    def list_values(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        api_version: Optional[str] = None,
    ) -> Iterator[Dict[str, Any]]:
        """Iterate a paged ARM collection, following `nextLink` (which already carries the api-version)."""
        payload = self.get_json(url, params=params, api_version=api_version)
        while True:
            for item in payload.get("value") or []:
                if isinstance(item, dict):
                    yield item
            next_link = payload.get("nextLink")
            if not next_link:
                return
            resp = self._http.get(str(next_link), headers=self._headers())
            resp.raise_for_status()
            payload = resp.json()
            if not isinstance(payload, dict):
                raise ValueError("ARM response was not a JSON object.")

    def resource_url(self, *, resource_group: str, provider: str, resource_type: str, name: str) -> str:
        sub = self._cfg.subscription_id
        provider = provider.strip().lstrip("/").rstrip("/")
        resource_type = resource_type.strip().lstrip("/").rstrip("/")
        name = name.strip()
        return (
            f"{ARM_BASE_URL}/subscriptions/{sub}"
            f"/resourceGroups/{resource_group.strip()}"
            f"/providers/{provider}/{resource_type}/{name}"
        )

    def collection_url(self, *, resource_group: str, provider: str, resource_type: str) -> str:
        sub = self._cfg.subscription_id
        provider = provider.strip().lstrip("/").rstrip("/")
        resource_type = resource_type.strip().lstrip("/").rstrip("/")
        return (
            f"{ARM_BASE_URL}/subscriptions/{sub}"
            f"/resourceGroups/{resource_group.strip()}"
            f"/providers/{provider}/{resource_type}"
        )

    @staticmethod
    def resource_id_url(resource_id: str) -> str:
        rid = (resource_id or "").strip()
        if not rid.startswith("/subscriptions/"):
            raise ValueError(f"resource_id must be an ARM resource ID (got {resource_id!r})")
        return f"{ARM_BASE_URL}{rid.rstrip('/')}"
