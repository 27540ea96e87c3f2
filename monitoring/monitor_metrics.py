from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Sequence, Tuple

from monitoring.arm_client import AzureArmClient
from monitoring.rows import parse_timestamp, to_float


DEFAULT_MONITOR_METRICS_API_VERSION = "2018-01-01"

# Duration metrics (latencies) are read from `average`; a per-bucket `total` would be a sum of latencies.
AVERAGED_UNITS = frozenset({"MilliSeconds", "Seconds"})


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


@dataclass(frozen=True)
class MetricPoint:
    timestamp: str
    time: str
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "time": self.time, "value": self.value}


@dataclass(frozen=True)
class MetricSeries:
    name: str
    unit: str
    total: float
    points: Tuple[MetricPoint, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "unit": self.unit,
            "total": self.total,
            "timeseries": [p.to_dict() for p in self.points],
        }


def parse_metric_series(payload: Dict[str, Any]) -> Dict[str, MetricSeries]:
    """
    Flatten an Azure Monitor metrics response into one series per metric name.

    A datapoint's value is its `total`, falling back to `average`, except for duration metrics which
    always read `average`. Empty buckets are dropped.
    """
    out: Dict[str, MetricSeries] = {}
    for metric in payload.get("value") or []:
        if not isinstance(metric, dict):
            continue
        name_obj = metric.get("name") if isinstance(metric.get("name"), dict) else {}
        name = str(name_obj.get("value") or "").strip()
        if not name:
            continue

        unit = str(metric.get("unit") or "")
        averaged = unit in AVERAGED_UNITS
        points: List[MetricPoint] = []
        total = 0.0
        for series in metric.get("timeseries") or []:
            if not isinstance(series, dict):
                continue
            for datapoint in series.get("data") or []:
                if not isinstance(datapoint, dict):
                    continue
                if averaged:
                    value = to_float(datapoint.get("average"))
                else:
                    value = to_float(datapoint.get("total")) or to_float(datapoint.get("average"))
                if value <= 0:
                    continue
                stamp = parse_timestamp(datapoint.get("timeStamp"))
                points.append(
                    MetricPoint(
                        timestamp=_iso(stamp) if stamp else str(datapoint.get("timeStamp") or ""),
                        time=stamp.strftime("%H:%M") if stamp else "",
                        value=value,
                    )
                )
                total += value

        out[name] = MetricSeries(
            name=name,
            unit=unit,
            total=total,
            points=tuple(points),
        )
    return out


def query_metrics(
    arm: AzureArmClient,
    *,
    resource_id: str,
    metric_names: Sequence[str],
    granularity: str,
    start: datetime,
    end: datetime,
    api_version: str = DEFAULT_MONITOR_METRICS_API_VERSION,
) -> Dict[str, MetricSeries]:
    names = [n.strip() for n in metric_names if n and n.strip()]
    if not names:
        return {}
    url = f"{arm.resource_id_url(resource_id)}/providers/microsoft.insights/metrics"
    payload = arm.get_json(
        url,
        params={
            "metricnames": ",".join(names),
            "interval": granularity,
            "timespan": f"{_iso(start)}/{_iso(end)}",
            "aggregation": "Total,Average",
        },
        api_version=api_version,
    )
    return parse_metric_series(payload)
