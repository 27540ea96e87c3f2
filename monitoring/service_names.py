from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple


UNKNOWN_SERVICE = "Unknown"

SYMMETRY_BACKEND = "Symmetry Backend"
AI_FEATURES_API = "AI Features API"
CONVO_PROCESSOR = "Convo Processor"


# Lower-cased raw names seen in App Insights cloud_RoleName / app_name and in App Service site names.
EXACT_SERVICE_NAMES: Dict[str, str] = {
    "uvicorn": SYMMETRY_BACKEND,
    "symmetry-backend": SYMMETRY_BACKEND,
    "asp-sym-backend-prod": SYMMETRY_BACKEND,
    "asp-sym-backend-test": SYMMETRY_BACKEND,
    "app-sym-backend-prod": SYMMETRY_BACKEND,
    "app-sym-backend-test": SYMMETRY_BACKEND,
    "app-sym-backend": SYMMETRY_BACKEND,
    "ai-features-api": AI_FEATURES_API,
    "asp-ai-features-prod": AI_FEATURES_API,
    "asp-ai-features-test": AI_FEATURES_API,
    "app-sym-ai-features-prod": AI_FEATURES_API,
    "app-sym-ai-features-test": AI_FEATURES_API,
    "app-sym-ai-features": AI_FEATURES_API,
    "ai_features_api": AI_FEATURES_API,
    "aifeatures": AI_FEATURES_API,
    "ai-convo-processor": CONVO_PROCESSOR,
    "func-sym-processor-prod": CONVO_PROCESSOR,
    "func-sym-processor-test": CONVO_PROCESSOR,
    "func-sym-processor": CONVO_PROCESSOR,
    "ai_convo_processor": CONVO_PROCESSOR,
    # Python Azure Functions report the entry module as the role name.
    "__main__.py": CONVO_PROCESSOR,
    "__main__": CONVO_PROCESSOR,
    "function_app": CONVO_PROCESSOR,
    "function_app.py": CONVO_PROCESSOR,
    # Display names map to themselves.
    SYMMETRY_BACKEND.lower(): SYMMETRY_BACKEND,
    AI_FEATURES_API.lower(): AI_FEATURES_API,
    CONVO_PROCESSOR.lower(): CONVO_PROCESSOR,
}

# Order matters: "ai-features-backend" must resolve to the AI Features API, not the backend.
SUBSTRING_SERVICE_RULES: Sequence[Tuple[str, str]] = (
    ("ai-features", AI_FEATURES_API),
    ("ai_features", AI_FEATURES_API),
    ("aifeatures", AI_FEATURES_API),
    ("processor", CONVO_PROCESSOR),
    ("func-sym", CONVO_PROCESSOR),
    ("__main__", CONVO_PROCESSOR),
    ("function_app", CONVO_PROCESSOR),
    ("backend", SYMMETRY_BACKEND),
    ("uvicorn", SYMMETRY_BACKEND),
)


def match_service_name(
    raw_name: Optional[str],
    *,
    exact: Dict[str, str],
    rules: Sequence[Tuple[str, str]],
) -> str:
    if raw_name is None:
        return UNKNOWN_SERVICE
    text = str(raw_name).strip()
    if not text:
        return UNKNOWN_SERVICE

    lowered = text.lower()
    hit = exact.get(lowered)
    if hit:
        return hit

    for pattern, name in rules:
        if pattern in lowered:
            return name

    return text


def canonicalize(raw_name: Optional[str]) -> str:
    """Map a raw role/site name to its dashboard display name (unknown names pass through)."""
    return match_service_name(raw_name, exact=EXACT_SERVICE_NAMES, rules=SUBSTRING_SERVICE_RULES)


@dataclass(frozen=True)
class ServiceRecord:
    raw_name: str
    canonical_name: str
    count: int

    def to_dict(self) -> Dict[str, object]:
        return {"service": self.canonical_name, "count": self.count}


def service_record(raw_name: Optional[str], count: int) -> ServiceRecord:
    return ServiceRecord(
        raw_name=str(raw_name or "").strip(),
        canonical_name=canonicalize(raw_name),
        count=int(count),
    )


def aggregate(records: Iterable[ServiceRecord]) -> List[ServiceRecord]:
    totals: Dict[str, int] = {}
    for record in records:
        name = record.canonical_name or UNKNOWN_SERVICE
        totals[name] = totals.get(name, 0) + int(record.count)

    merged = [ServiceRecord(raw_name=name, canonical_name=name, count=count) for name, count in totals.items()]
    merged.sort(key=lambda r: (-r.count, r.canonical_name))
    return merged
