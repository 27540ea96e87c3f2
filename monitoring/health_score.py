from __future__ import annotations

import operator
from dataclasses import dataclass
from typing import Callable, Dict, Literal, Mapping, Optional, Sequence, Tuple


HealthStatus = Literal["healthy", "warning", "critical"]
CacheStatus = Literal["excellent", "good", "fair", "poor"]

MAX_SCORE = 100
HEALTHY_MIN_SCORE = 80
WARNING_MIN_SCORE = 60


@dataclass(frozen=True)
class IndicatorRule:
    """Ordered `(comparison, threshold, points)` steps; the first matching step wins."""

    name: str
    steps: Sequence[Tuple[Callable[[float, float], bool], float, int]]
    otherwise: int

    def points(self, value: float) -> int:
        for compare, threshold, points in self.steps:
            if compare(value, threshold):
                return points
        return self.otherwise


DATABASE_HEALTH_RULES: Sequence[IndicatorRule] = (
    IndicatorRule("cache_hit_ratio", ((operator.gt, 95, 30), (operator.gt, 90, 20)), otherwise=10),
    IndicatorRule("active_queries", ((operator.lt, 10, 30), (operator.lt, 50, 20)), otherwise=10),
    IndicatorRule("waiting_queries", ((operator.lt, 5, 20), (operator.lt, 20, 10)), otherwise=0),
    IndicatorRule("total_connections", ((operator.lt, 50, 20), (operator.lt, 100, 10)), otherwise=0),
)


@dataclass(frozen=True)
class HealthScore:
    score: int
    status: HealthStatus
    components: Tuple[Tuple[str, int], ...] = ()

    def to_dict(self) -> Dict[str, object]:
        return {"score": self.score, "status": self.status}


def status_for_score(score: float) -> HealthStatus:
    if score >= HEALTHY_MIN_SCORE:
        return "healthy"
    if score >= WARNING_MIN_SCORE:
        return "warning"
    return "critical"


def derive_health(
    indicators: Mapping[str, float],
    *,
    rules: Optional[Sequence[IndicatorRule]] = None,
) -> HealthScore:
    """
    Fold independent indicators into a clamped 0-100 score.

    Missing indicators are scored as 0, which lands them in whichever step a zero reading earns.
    """
    components = []
    for rule in rules if rules is not None else DATABASE_HEALTH_RULES:
        value = float(indicators.get(rule.name) or 0)
        components.append((rule.name, rule.points(value)))

    score = max(0, min(MAX_SCORE, sum(points for _, points in components)))
    return HealthScore(score=score, status=status_for_score(score), components=tuple(components))


def cache_status(hit_ratio: float) -> CacheStatus:
    if hit_ratio >= 99:
        return "excellent"
    if hit_ratio >= 95:
        return "good"
    if hit_ratio >= 90:
        return "fair"
    return "poor"
