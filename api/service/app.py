import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.endpoints import metrics
from api.service.settings import ServiceSettings
from core.logging_config import configure_logging
from monitoring.backends import AzureTelemetryBackends, TelemetryBackends
from monitoring.service import MetricsService

logger = logging.getLogger("ops_metrics.api")


def _default_backends(settings: ServiceSettings) -> TelemetryBackends:
    return AzureTelemetryBackends(timeout_seconds=settings.query_timeout_seconds)


def _maybe_load_dotenv() -> None:
    raw = os.environ.get("DISABLE_DOTENV")
    if raw is not None and raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}:
        return

    from dotenv import load_dotenv

    load_dotenv(override=False)


def create_app(
    *,
    settings: Optional[ServiceSettings] = None,
    backends_factory: Optional[Callable[[ServiceSettings], TelemetryBackends]] = None,
) -> FastAPI:
    settings = settings or ServiceSettings.from_env()
    make_backends = backends_factory or _default_backends

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        backends = make_backends(settings)

        app.state.settings = settings
        app.state.backends = backends
        app.state.metrics = MetricsService(
            backends,
            cache_policies=settings.cache_policies,
            timeout_seconds=settings.query_timeout_seconds,
            pricing=settings.pricing,
        )
        logger.info(
            "Metrics service ready: query_timeout_seconds=%s ttls=%s",
            settings.query_timeout_seconds,
            {name: policy.ttl_seconds for name, policy in settings.cache_policies.items()},
        )

        yield

        app.state.metrics.close()
        close = getattr(backends, "close", None)
        if callable(close):
            try:
                close()
            except Exception as exc:
                logger.warning("Backend shutdown failed: %s", exc)

    app = FastAPI(
        title="Operations Metrics API",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def _http_middleware(request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        elapsed_ms = (time.monotonic() - start) * 1000.0
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Cache-Control", "no-store")
        if request.url.path.startswith("/api/"):
            logger.info(
                "HTTP %s %s status=%s elapsed_ms=%.0f",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
            )
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.include_router(metrics.router, prefix="/api", tags=["Metrics"])

    @app.get("/healthz")
    def healthz() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    return app


def build_asgi_app() -> FastAPI:
    """Entry point for `uvicorn --factory api.service.app:build_asgi_app`."""
    _maybe_load_dotenv()
    configure_logging()
    return create_app()
