from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import pytest

from monitoring.arm_client import AzureArmClient
from monitoring.monitor_metrics import parse_metric_series, query_metrics


class FakeArmClient:
    def __init__(self, *, payload: Dict[str, Any]) -> None:
        self._payload = payload
        self.last_url: Optional[str] = None
        self.last_params: Optional[Dict[str, Any]] = None
        self.last_api_version: Optional[str] = None

    resource_id_url = staticmethod(AzureArmClient.resource_id_url)

    def get_json(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        api_version: Optional[str] = None,
    ) -> Dict[str, Any]:
        self.last_url = url
        self.last_params = params
        self.last_api_version = api_version
        return self._payload


RESOURCE_ID = "/subscriptions/sub/resourceGroups/rg/providers/Microsoft.CognitiveServices/accounts/oai"

PAYLOAD = {
    "value": [
        {
            "name": {"value": "TokenTransaction"},
            "unit": "Count",
            "timeseries": [
                {
                    "data": [
                        {"timeStamp": "2024-06-01T10:00:00Z", "total": 1200.0},
                        {"timeStamp": "2024-06-01T11:00:00Z", "total": 0.0},
                        {"timeStamp": "2024-06-01T12:00:00Z"},
                        {"timeStamp": "2024-06-01T13:00:00Z", "total": 300.0},
                    ]
                }
            ],
        },
        {
            "name": {"value": "AzureOpenAITimeToResponse"},
            "unit": "MilliSeconds",
            "timeseries": [{"data": [{"timeStamp": "2024-06-01T10:00:00Z", "average": 850.5}]}],
        },
        {"name": {"value": "Ratelimit"}, "unit": "Count", "timeseries": []},
        {"name": {}, "timeseries": []},
    ]
}


def test_parse_metric_series_drops_empty_buckets() -> None:
    series = parse_metric_series(PAYLOAD)

    tokens = series["TokenTransaction"]
    assert tokens.total == 1500.0
    assert [(p.timestamp, p.time, p.value) for p in tokens.points] == [
        ("2024-06-01T10:00:00+00:00", "10:00", 1200.0),
        ("2024-06-01T13:00:00+00:00", "13:00", 300.0),
    ]
    assert series["AzureOpenAITimeToResponse"].points[0].value == 850.5
    assert series["Ratelimit"].total == 0.0
    assert series["Ratelimit"].to_dict()["timeseries"] == []
    assert set(series) == {"TokenTransaction", "AzureOpenAITimeToResponse", "Ratelimit"}


def test_query_metrics_builds_the_request() -> None:
    arm = FakeArmClient(payload=PAYLOAD)

    series = query_metrics(
        arm,  # type: ignore[arg-type]
        resource_id=RESOURCE_ID,
        metric_names=["TokenTransaction", " ", "Ratelimit"],
        granularity="PT1H",
        start=datetime(2024, 5, 31, 12, tzinfo=timezone.utc),
        end=datetime(2024, 6, 1, 12),
    )

    assert "TokenTransaction" in series
    assert arm.last_url == f"https://management.azure.com{RESOURCE_ID}/providers/microsoft.insights/metrics"
    assert arm.last_params == {
        "metricnames": "TokenTransaction,Ratelimit",
        "interval": "PT1H",
        "timespan": "2024-05-31T12:00:00+00:00/2024-06-01T12:00:00+00:00",
        "aggregation": "Total,Average",
    }
    assert arm.last_api_version == "2018-01-01"


def test_query_metrics_without_names_skips_the_call() -> None:
    arm = FakeArmClient(payload=PAYLOAD)
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)

    assert query_metrics(arm, resource_id=RESOURCE_ID, metric_names=[], granularity="PT1H", start=now, end=now) == {}  # type: ignore[arg-type]
    assert arm.last_url is None


def test_query_metrics_rejects_non_arm_ids() -> None:
    arm = FakeArmClient(payload=PAYLOAD)
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)

    with pytest.raises(ValueError):
        query_metrics(arm, resource_id="oai", metric_names=["Ratelimit"], granularity="PT1H", start=now, end=now)  # type: ignore[arg-type]


def test_latency_reads_the_average_even_when_a_total_is_present() -> None:
    payload = {
        "value": [
            {
                "name": {"value": "AzureOpenAITimeToResponse"},
                "unit": "MilliSeconds",
                "timeseries": [
                    {
                        "data": [
                            {"timeStamp": "2024-06-01T10:00:00Z", "total": 9000.0, "average": 300.0},
                            {"timeStamp": "2024-06-01T11:00:00Z", "total": 5000.0, "average": 500.0},
                        ]
                    }
                ],
            },
            {
                "name": {"value": "AzureOpenAIRequests"},
                "unit": "Count",
                "timeseries": [{"data": [{"timeStamp": "2024-06-01T10:00:00Z", "total": 30.0, "average": 1.0}]}],
            },
        ]
    }

    series = parse_metric_series(payload)

    assert [p.value for p in series["AzureOpenAITimeToResponse"].points] == [300.0, 500.0]
    assert series["AzureOpenAIRequests"].total == 30.0
