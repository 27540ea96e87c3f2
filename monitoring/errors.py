from __future__ import annotations

from typing import Any, Dict


class MetricsError(RuntimeError):
    """Base class for errors surfaced to callers of the metrics entry points."""

    kind = "metrics_error"
    status_code = 500

    def to_dict(self) -> Dict[str, Any]:
        return {"error": str(self), "kind": self.kind}


class ConfigurationError(MetricsError):
    """A required backend identifier or connection setting is missing."""

    kind = "configuration"
    status_code = 500


class BackendUnavailableError(MetricsError):
    """Every sub-query of a batch failed, so no meaningful payload can be built."""

    kind = "backend_unavailable"
    status_code = 503
