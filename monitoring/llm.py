from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from monitoring import kql_queries
from monitoring.backends import TelemetryBackends
from monitoring.config import Environment, LlmPricing, get_openai_config
from monitoring.infrastructure import LlmModelUsage, parse_llm_usage
from monitoring.monitor_metrics import MetricSeries
from monitoring.orchestrator import DEFAULT_QUERY_TIMEOUT_SECONDS, SubQuery, prefer_primary, run_queries
from monitoring.time_range import TimeRange


USAGE_METRICS = (
    "AzureOpenAIRequests",
    "TokenTransaction",
    "ProcessedPromptTokens",
    "GeneratedTokens",
    "AzureOpenAITimeToResponse",
)
RELIABILITY_METRICS = ("Ratelimit", "ClientErrors", "ServerErrors")

ERROR_TYPES = (("ClientErrors", "Client Error"), ("ServerErrors", "Server Error"))

SOURCE = "Azure OpenAI"


def _total(series: Mapping[str, MetricSeries], name: str) -> float:
    metric = series.get(name)
    return metric.total if metric is not None else 0.0


def _average(series: Mapping[str, MetricSeries], name: str) -> float:
    metric = series.get(name)
    if metric is None or not metric.points:
        return 0.0
    return sum(p.value for p in metric.points) / len(metric.points)


@dataclass(frozen=True)
class LlmTotals:
    calls: int
    total_tokens: int
    prompt_tokens: int
    completion_tokens: int
    input_cost: float
    output_cost: float
    rate_limit_events: int
    client_errors: int
    server_errors: int
    avg_latency_ms: float

    @property
    def total_cost(self) -> float:
        return self.input_cost + self.output_cost

    @property
    def total_errors(self) -> int:
        return self.client_errors + self.server_errors

    @property
    def success_rate(self) -> float:
        if self.calls <= 0:
            return 100.0
        return round(100.0 * max(self.calls - self.total_errors, 0) / self.calls, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalCalls": self.calls,
            "totalTokens": self.total_tokens,
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalCost": round(self.total_cost, 4),
            "inputCost": round(self.input_cost, 4),
            "outputCost": round(self.output_cost, 4),
            "rateLimitEvents": self.rate_limit_events,
            "clientErrors": self.client_errors,
            "serverErrors": self.server_errors,
            "totalErrors": self.total_errors,
            "successRate": self.success_rate,
            "avgLatencyMs": round(self.avg_latency_ms, 1),
        }


@dataclass(frozen=True)
class LlmMetrics:
    timestamp: str
    environment: str
    time_range: str
    deployment: str
    totals: LlmTotals
    by_model: List[LlmModelUsage] = field(default_factory=list)
    over_time: List[Dict[str, Any]] = field(default_factory=list)
    rate_limit: Optional[MetricSeries] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)
    degraded: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "environment": self.environment,
            "timeRange": self.time_range,
            "source": SOURCE,
            "deployment": self.deployment,
            "totals": self.totals.to_dict(),
            "byModel": [m.to_dict() for m in self.by_model],
            "overTime": list(self.over_time),
            "rateLimit": {
                "events": self.totals.rate_limit_events,
                "timeseries": [p.to_dict() for p in self.rate_limit.points] if self.rate_limit else [],
            },
            "errors": list(self.errors),
            "degradedSections": list(self.degraded),
        }


def build_totals(
    usage: Mapping[str, MetricSeries],
    reliability: Mapping[str, MetricSeries],
    pricing: LlmPricing,
) -> LlmTotals:
    prompt = int(_total(usage, "ProcessedPromptTokens"))
    completion = int(_total(usage, "GeneratedTokens"))
    return LlmTotals(
        calls=int(_total(usage, "AzureOpenAIRequests")),
        total_tokens=int(_total(usage, "TokenTransaction")),
        prompt_tokens=prompt,
        completion_tokens=completion,
        input_cost=pricing.cost(input_tokens=prompt, output_tokens=0),
        output_cost=pricing.cost(input_tokens=0, output_tokens=completion),
        rate_limit_events=int(_total(reliability, "Ratelimit")),
        client_errors=int(_total(reliability, "ClientErrors")),
        server_errors=int(_total(reliability, "ServerErrors")),
        avg_latency_ms=_average(usage, "AzureOpenAITimeToResponse"),
    )


def build_over_time(usage: Mapping[str, MetricSeries], pricing: LlmPricing) -> List[Dict[str, Any]]:
    """Token buckets joined with request buckets on their timestamp; cost uses the blended rate."""
    tokens = usage.get("TokenTransaction")
    if tokens is None:
        return []
    requests = usage.get("AzureOpenAIRequests")
    requests_at = {p.timestamp: p.value for p in requests.points} if requests is not None else {}
    return [
        {
            "timestamp": point.timestamp,
            "time": point.time,
            "tokens": int(point.value),
            "requests": int(requests_at.get(point.timestamp, 0)),
            "cost": round(point.value / 1_000_000 * pricing.blended_per_million, 4),
        }
        for point in tokens.points
    ]


def build_errors(reliability: Mapping[str, MetricSeries], deployment: str) -> List[Dict[str, Any]]:
    out = []
    for metric, label in ERROR_TYPES:
        count = int(_total(reliability, metric))
        if count > 0:
            out.append({"model": deployment, "errorType": label, "count": count})
    return out


def collect_llm_metrics(
    backends: TelemetryBackends,
    *,
    environment: Environment,
    time_range: TimeRange,
    timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
    pricing: Optional[LlmPricing] = None,
    now: Optional[datetime] = None,
) -> LlmMetrics:
    openai = get_openai_config()
    pricing = pricing or LlmPricing.from_env()
    tr = time_range

    def metrics(names):
        return lambda: backends.query_metrics(openai.resource_id, names, tr.granularity, tr.start, tr.end)

    batch = run_queries(
        "llm",
        [
            SubQuery("usage", metrics(USAGE_METRICS), dict, dict),
            SubQuery("reliability", metrics(RELIABILITY_METRICS), dict, dict),
            SubQuery(
                "byModel",
                lambda: backends.query_logs(kql_queries.llm_usage_by_model(tr), environment, tr.iso_duration),
                parse_llm_usage,
                list,
            ),
        ],
        timeout_seconds=timeout_seconds,
    )

    usage: Dict[str, MetricSeries] = batch["usage"]
    reliability: Dict[str, MetricSeries] = batch["reliability"]
    totals = build_totals(usage, reliability, pricing)
    deployment_row = LlmModelUsage(
        model=openai.deployment,
        calls=totals.calls,
        tokens=totals.total_tokens,
        cost=round(totals.total_cost, 4),
    )
    generated = now or datetime.now(timezone.utc)

    return LlmMetrics(
        timestamp=generated.isoformat(),
        environment=environment,
        time_range=tr.raw,
        deployment=openai.deployment,
        totals=totals,
        by_model=list(prefer_primary(batch["byModel"], [deployment_row])),
        over_time=build_over_time(usage, pricing),
        rate_limit=reliability.get("Ratelimit"),
        errors=build_errors(reliability, openai.deployment),
        degraded=list(batch.failed),
    )
