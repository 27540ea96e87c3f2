from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from monitoring.arm_client import AzureArmClient
from monitoring.rows import to_int


logger = logging.getLogger("ops_metrics.control_plane")

SERVICE_BUS_API_VERSION = "2021-11-01"
APP_SERVICE_API_VERSION = "2023-01-01"


@dataclass(frozen=True)
class QueueInfo:
    name: str
    active_count: int
    dead_letter_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "active": self.active_count, "deadLetter": self.dead_letter_count}


@dataclass(frozen=True)
class SiteInfo:
    name: str
    state: str
    kind: str = ""
    host_name: Optional[str] = None
    runtime: str = ""
    app_settings: Dict[str, str] = field(default_factory=dict)

    @property
    def is_running(self) -> bool:
        return self.state == "Running"

    @property
    def is_function_app(self) -> bool:
        return "functionapp" in self.kind.lower() or "func" in self.name.lower()

    @property
    def is_staging_slot(self) -> bool:
        return "staging" in self.name or "/" in self.name


def _props(payload: Dict[str, Any]) -> Dict[str, Any]:
    props = payload.get("properties")
    return props if isinstance(props, dict) else {}


def parse_queue(payload: Dict[str, Any]) -> QueueInfo:
    props = _props(payload)
    counts = props.get("countDetails") if isinstance(props.get("countDetails"), dict) else {}
    return QueueInfo(
        name=str(payload.get("name") or ""),
        active_count=to_int(counts.get("activeMessageCount")),
        dead_letter_count=to_int(counts.get("deadLetterMessageCount")),
    )


def list_queues(arm: AzureArmClient, *, resource_group: str, namespace: str) -> List[QueueInfo]:
    url = arm.resource_url(
        resource_group=resource_group,
        provider="Microsoft.ServiceBus",
        resource_type="namespaces",
        name=namespace,
    )
    return [
        parse_queue(item)
        for item in arm.list_values(f"{url}/queues", api_version=SERVICE_BUS_API_VERSION)
    ]


def parse_site(payload: Dict[str, Any], *, app_settings: Optional[Dict[str, str]] = None) -> SiteInfo:
    props = _props(payload)
    site_config = props.get("siteConfig") if isinstance(props.get("siteConfig"), dict) else {}
    runtime = str(site_config.get("linuxFxVersion") or site_config.get("windowsFxVersion") or "")
    return SiteInfo(
        name=str(payload.get("name") or ""),
        state=str(props.get("state") or ""),
        kind=str(payload.get("kind") or ""),
        host_name=str(props.get("defaultHostName") or "") or None,
        runtime=runtime,
        app_settings=dict(app_settings or {}),
    )


def get_app_settings(arm: AzureArmClient, *, resource_group: str, site_name: str) -> Dict[str, str]:
    url = arm.resource_url(
        resource_group=resource_group,
        provider="Microsoft.Web",
        resource_type="sites",
        name=site_name,
    )
    payload = arm.post_json(f"{url}/config/appsettings/list", api_version=APP_SERVICE_API_VERSION)
    return {str(k): str(v) for k, v in _props(payload).items() if v is not None}


def list_sites(
    arm: AzureArmClient,
    *,
    resource_group: str,
    include_settings: bool = False,
) -> List[SiteInfo]:
    """
    List App Service and Function App sites in a resource group.

    With `include_settings`, each non-staging site's app settings are read as well; a site whose
    settings cannot be read is still returned, with empty settings.
    """
    url = arm.collection_url(resource_group=resource_group, provider="Microsoft.Web", resource_type="sites")
    sites: List[SiteInfo] = []
    for item in arm.list_values(url, api_version=APP_SERVICE_API_VERSION):
        settings: Dict[str, str] = {}
        name = str(item.get("name") or "")
        if include_settings and name and "staging" not in name:
            try:
                settings = get_app_settings(arm, resource_group=resource_group, site_name=name)
            except Exception as exc:
                logger.warning("App settings unavailable: site=%s error=%s", name, exc)
        sites.append(parse_site(item, app_settings=settings))
    return sites
