from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional

from monitoring.control_plane import list_queues, list_sites, parse_site


class FakeArmClient:
    def __init__(
        self,
        *,
        collections: Dict[str, List[Dict[str, Any]]],
        settings: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._collections = collections
        self._settings = settings or {}
        self.posted: List[str] = []

    def resource_url(self, *, resource_group: str, provider: str, resource_type: str, name: str) -> str:
        return f"https://example.test/{resource_group}/{provider}/{resource_type}/{name}"

    def collection_url(self, *, resource_group: str, provider: str, resource_type: str) -> str:
        return f"https://example.test/{resource_group}/{provider}/{resource_type}"

    def list_values(self, url: str, *, api_version: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        yield from self._collections[url]

    def post_json(self, url: str, *, api_version: Optional[str] = None) -> Dict[str, Any]:
        self.posted.append(url)
        result = self._settings[url]
        if isinstance(result, Exception):
            raise result
        return result


SITES_URL = "https://example.test/rg-prod/Microsoft.Web/sites"


def _site(name: str, state: str = "Running", **props: Any) -> Dict[str, Any]:
    return {"name": name, "kind": props.pop("kind", "app,linux"), "properties": {"state": state, **props}}


def test_list_queues_reads_count_details() -> None:
    arm = FakeArmClient(
        collections={
            "https://example.test/rg-prod/Microsoft.ServiceBus/namespaces/sb-sym-prod/queues": [
                {
                    "name": "convo-jobs",
                    "properties": {"countDetails": {"activeMessageCount": 12, "deadLetterMessageCount": 2}},
                },
                {"name": "ku-jobs", "properties": {}},
            ]
        }
    )

    queues = list_queues(arm, resource_group="rg-prod", namespace="sb-sym-prod")  # type: ignore[arg-type]

    assert [q.to_dict() for q in queues] == [
        {"name": "convo-jobs", "active": 12, "deadLetter": 2},
        {"name": "ku-jobs", "active": 0, "deadLetter": 0},
    ]


def test_list_sites_without_settings_does_not_post() -> None:
    arm = FakeArmClient(collections={SITES_URL: [_site("app-sym-backend-prod", defaultHostName="b.example.net")]})

    sites = list_sites(arm, resource_group="rg-prod")  # type: ignore[arg-type]

    assert sites[0].host_name == "b.example.net"
    assert sites[0].is_running
    assert sites[0].app_settings == {}
    assert arm.posted == []


def test_list_sites_reads_settings_and_tolerates_failures(caplog) -> None:
    base = "https://example.test/rg-prod/Microsoft.Web/sites"
    arm = FakeArmClient(
        collections={
            SITES_URL: [
                _site("app-sym-backend-prod"),
                _site("func-sym-processor-prod", state="Stopped", kind="functionapp,linux"),
                _site("app-sym-backend-prod-staging"),
            ]
        },
        settings={
            f"{base}/app-sym-backend-prod/config/appsettings/list": {
                "properties": {"APP_VERSION": "1.2.0", "GIT_COMMIT": "abc", "EMPTY": None}
            },
            f"{base}/func-sym-processor-prod/config/appsettings/list": PermissionError("AuthorizationFailed"),
        },
    )

    with caplog.at_level("WARNING", logger="ops_metrics.control_plane"):
        sites = list_sites(arm, resource_group="rg-prod", include_settings=True)  # type: ignore[arg-type]

    assert [s.name for s in sites] == [
        "app-sym-backend-prod",
        "func-sym-processor-prod",
        "app-sym-backend-prod-staging",
    ]
    assert sites[0].app_settings == {"APP_VERSION": "1.2.0", "GIT_COMMIT": "abc"}
    assert sites[1].app_settings == {}
    assert sites[1].is_function_app
    assert sites[2].is_staging_slot
    # Staging slots are never asked for settings.
    assert len(arm.posted) == 2
    assert "site=func-sym-processor-prod" in caplog.text


def test_parse_site_runtime_prefers_linux_fx_version() -> None:
    site = parse_site(
        {
            "name": "app-sym-ai-features-prod",
            "properties": {
                "state": "Running",
                "siteConfig": {"linuxFxVersion": "PYTHON|3.11", "windowsFxVersion": "DOTNET|8"},
            },
        }
    )
    assert site.runtime == "PYTHON|3.11"
    assert site.host_name is None
    assert not site.is_function_app
