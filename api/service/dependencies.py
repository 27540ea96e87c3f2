from fastapi import Request

from monitoring.service import MetricsService


def get_metrics_service(request: Request) -> MetricsService:
    return request.app.state.metrics
