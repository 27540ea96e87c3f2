import logging
from typing import Any, Callable, Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from api.service.dependencies import get_metrics_service
from api.service.settings import parse_refresh_flag
from monitoring.errors import MetricsError
from monitoring.service import DEFAULT_ERRORS_RANGE, DEFAULT_RANGE

logger = logging.getLogger("ops_metrics.api")

router = APIRouter()


class MetricsErrorResponse(BaseModel):
    error: str
    kind: str = Field(description="configuration | backend_unavailable | metrics_error")
    detail: str


ERROR_RESPONSES = {
    500: {"model": MetricsErrorResponse, "description": "Missing configuration or unexpected failure"},
    503: {"model": MetricsErrorResponse, "description": "Every backend query for the endpoint failed"},
}


def _respond(endpoint: str, fetch: Callable[[], Any]) -> JSONResponse:
    try:
        payload = fetch()
    except MetricsError as exc:
        logger.error("Metrics request failed: endpoint=%s kind=%s error=%s", endpoint, exc.kind, exc)
        body = MetricsErrorResponse(detail=f"Failed to fetch {endpoint} metrics", **exc.to_dict())
        return JSONResponse(body.model_dump(), status_code=exc.status_code)
    return JSONResponse(payload.to_dict())


@router.get("/metrics", responses=ERROR_RESPONSES)
def get_infrastructure_metrics(
    request: Request,
    env: str = Query(default="prod"),
    range: str = Query(default=DEFAULT_RANGE),
    refresh: Optional[str] = Query(default=None),
) -> JSONResponse:
    """
    Overview of request volume, errors, LLM spend, queues, App Service state and endpoint latency.
    """
    service = get_metrics_service(request)
    return _respond(
        "infrastructure",
        lambda: service.get_infrastructure_metrics(env, range, parse_refresh_flag(refresh)),
    )


@router.get("/database", responses=ERROR_RESPONSES)
def get_database_metrics(
    request: Request,
    env: str = Query(default="prod"),
    range: str = Query(default=DEFAULT_RANGE),
    refresh: Optional[str] = Query(default=None),
) -> JSONResponse:
    service = get_metrics_service(request)
    return _respond("database", lambda: service.get_database_metrics(env, range, parse_refresh_flag(refresh)))


@router.get("/llm", responses=ERROR_RESPONSES)
def get_llm_metrics(
    request: Request,
    env: str = Query(default="prod"),
    range: str = Query(default=DEFAULT_RANGE),
    refresh: Optional[str] = Query(default=None),
) -> JSONResponse:
    service = get_metrics_service(request)
    return _respond("llm", lambda: service.get_llm_metrics(env, range, parse_refresh_flag(refresh)))


@router.get("/errors", responses=ERROR_RESPONSES)
def get_error_metrics(
    request: Request,
    env: str = Query(default="prod"),
    range: str = Query(default=DEFAULT_ERRORS_RANGE),
    refresh: Optional[str] = Query(default=None),
) -> JSONResponse:
    service = get_metrics_service(request)
    return _respond("error", lambda: service.get_error_metrics(env, range, parse_refresh_flag(refresh)))


@router.get("/deployments", responses=ERROR_RESPONSES)
def get_deployment_metrics(
    request: Request,
    env: str = Query(default="prod"),
    range: str = Query(default=DEFAULT_RANGE),
    refresh: Optional[str] = Query(default=None),
) -> JSONResponse:
    service = get_metrics_service(request)
    return _respond("deployment", lambda: service.get_deployment_metrics(env, range, parse_refresh_flag(refresh)))
