from __future__ import annotations

import operator

import pytest

from monitoring.health_score import IndicatorRule, cache_status, derive_health, status_for_score


BEST = {"cache_hit_ratio": 99.5, "active_queries": 2, "waiting_queries": 0, "total_connections": 10}
WORST = {"cache_hit_ratio": 50, "active_queries": 500, "waiting_queries": 100, "total_connections": 500}


def test_best_case_scores_exactly_100() -> None:
    health = derive_health(BEST)
    assert health.score == 100
    assert health.status == "healthy"
    assert health.to_dict() == {"score": 100, "status": "healthy"}


def test_worst_case_is_critical() -> None:
    health = derive_health(WORST)
    assert health.score == 20
    assert health.score < 60
    assert health.status == "critical"


@pytest.mark.parametrize(
    "indicators,expected",
    [
        # Strict ">" for the hit ratio: exactly 95 earns the middle step.
        ({**BEST, "cache_hit_ratio": 95}, 90),
        ({**BEST, "cache_hit_ratio": 90}, 80),
        # Strict "<" for counts: exactly 10 active queries earns the middle step.
        ({**BEST, "active_queries": 10}, 90),
        ({**BEST, "active_queries": 50}, 80),
        ({**BEST, "waiting_queries": 5}, 90),
        ({**BEST, "waiting_queries": 20}, 80),
        ({**BEST, "total_connections": 50}, 90),
        ({**BEST, "total_connections": 100}, 80),
    ],
)
def test_threshold_boundaries(indicators, expected: int) -> None:
    assert derive_health(indicators).score == expected


def test_components_are_reported_per_indicator() -> None:
    components = dict(derive_health({**BEST, "waiting_queries": 7}).components)
    assert components == {
        "cache_hit_ratio": 30,
        "active_queries": 30,
        "waiting_queries": 10,
        "total_connections": 20,
    }


def test_missing_indicators_score_as_zero_readings() -> None:
    # A zero hit ratio is the worst step; zero counts are the best steps.
    assert derive_health({}).score == 80


def test_score_is_clamped() -> None:
    rules = [IndicatorRule("x", ((operator.gt, 0, 80),), otherwise=0), IndicatorRule("y", (), otherwise=70)]
    health = derive_health({"x": 1}, rules=rules)
    assert health.score == 100


@pytest.mark.parametrize("score,status", [(100, "healthy"), (80, "healthy"), (79, "warning"), (60, "warning"), (59, "critical")])
def test_status_buckets(score: int, status: str) -> None:
    assert status_for_score(score) == status


@pytest.mark.parametrize(
    "ratio,status",
    [(99.5, "excellent"), (99, "excellent"), (98, "good"), (95, "good"), (92, "fair"), (90, "fair"), (89.9, "poor")],
)
def test_cache_status(ratio: float, status: str) -> None:
    assert cache_status(ratio) == status
