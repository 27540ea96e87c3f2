from __future__ import annotations

import pytest

from api.service.app import create_app
from api.service.settings import ServiceSettings
from monitoring.control_plane import SiteInfo
from tests.api._client import get_test_client


SITES = [SiteInfo(name="app-sym-backend-prod", state="Running", app_settings={"APP_VERSION": "2.0.1"})]


def _app(backends):
    return create_app(settings=ServiceSettings(), backends_factory=lambda _settings: backends)


@pytest.mark.asyncio
async def test_deployments_endpoint(fake_backends) -> None:
    backends = fake_backends(sites=SITES)

    async with get_test_client(_app(backends)) as client:
        resp = await client.get("/api/deployments", params={"env": "test"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["environment"] == "test"
    assert body["timeRange"] == "24h"
    assert body["services"][0]["version"] == "2.0.1"
    assert resp.headers["cache-control"] == "no-store"


@pytest.mark.asyncio
async def test_infrastructure_endpoint_echoes_range(fake_backends) -> None:
    backends = fake_backends(logs=[("summarize count() by cloud_RoleName", [["uvicorn", 3]])], sites=SITES)

    async with get_test_client(_app(backends)) as client:
        resp = await client.get("/api/metrics", params={"range": "6h"})

    assert resp.status_code == 200
    body = resp.json()
    assert (body["environment"], body["timeRange"]) == ("prod", "6h")
    assert body["overview"]["totalRequests"] == 3
    assert {window for _q, _env, window in backends.calls_of("logs")} == {"PT6H", "PT1H"}


@pytest.mark.asyncio
async def test_database_endpoint_with_empty_tables(fake_backends) -> None:
    async with get_test_client(_app(fake_backends())) as client:
        resp = await client.get("/api/database", params={"range": "7d"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["counts"]["users"] == 0
    assert body["timeRange"] == "7d"
    assert body["degradedSections"] == []


@pytest.mark.asyncio
async def test_errors_endpoint_defaults_to_one_hour(fake_backends) -> None:
    async with get_test_client(_app(fake_backends())) as client:
        resp = await client.get("/api/errors")

    assert resp.status_code == 200
    assert resp.json()["timeRange"] == "1h"
    assert resp.json()["summary"]["trendDirection"] == "down"


@pytest.mark.asyncio
async def test_refresh_bypasses_the_cache(fake_backends) -> None:
    backends = fake_backends(sites=SITES)

    async with get_test_client(_app(backends)) as client:
        await client.get("/api/deployments")
        await client.get("/api/deployments")
        await client.get("/api/deployments", params={"refresh": "true"})

    assert len(backends.calls_of("sites")) == 2


@pytest.mark.asyncio
async def test_backend_outage_maps_to_503(fake_backends) -> None:
    backends = fake_backends(sites=ConnectionError("management.azure.com unreachable"))

    async with get_test_client(_app(backends)) as client:
        resp = await client.get("/api/deployments")

    assert resp.status_code == 503
    body = resp.json()
    assert body["kind"] == "backend_unavailable"
    assert body["detail"] == "Failed to fetch deployment metrics"
    assert "error" in body


@pytest.mark.asyncio
async def test_missing_configuration_maps_to_500(monkeypatch, fake_backends) -> None:
    for name in ("AZURE_SUBSCRIPTION_ID", "AZURE_OPENAI_RESOURCE", "AZURE_OPENAI_RG"):
        monkeypatch.delenv(name, raising=False)

    async with get_test_client(_app(fake_backends())) as client:
        resp = await client.get("/api/llm")

    assert resp.status_code == 500
    body = resp.json()
    assert body["kind"] == "configuration"
    assert "AZURE_SUBSCRIPTION_ID" in body["error"]
    assert body["detail"] == "Failed to fetch llm metrics"


@pytest.mark.asyncio
async def test_unknown_environment_is_rejected(fake_backends) -> None:
    backends = fake_backends(sites=SITES)

    async with get_test_client(_app(backends)) as client:
        resp = await client.get("/api/deployments", params={"env": "dev"})

    assert resp.status_code == 500
    assert resp.json()["kind"] == "configuration"
    assert backends.calls == []


@pytest.mark.asyncio
async def test_healthz_and_backend_shutdown(fake_backends) -> None:
    class ClosingBackends(fake_backends):
        closed = False

        def close(self) -> None:
            self.closed = True

    backends = ClosingBackends()

    async with get_test_client(_app(backends)) as client:
        resp = await client.get("/healthz")
        assert not backends.closed

    assert resp.json() == {"status": "ok"}
    assert backends.closed


@pytest.mark.asyncio
async def test_openapi_documents_the_error_shape(fake_backends) -> None:
    async with get_test_client(_app(fake_backends())) as client:
        resp = await client.get("/openapi.json")

    schema = resp.json()
    for path in ("/api/metrics", "/api/database", "/api/llm", "/api/errors", "/api/deployments"):
        assert set(schema["paths"][path]["get"]["responses"]) >= {"200", "500", "503"}
    assert "MetricsErrorResponse" in schema["components"]["schemas"]
