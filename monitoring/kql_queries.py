"""
KQL for the Application Insights tables (requests, traces, exceptions).

Every trace query drops staging-slot and export-job noise and every request query drops
health probes, so the numbers match what users actually did.
"""

from __future__ import annotations

from monitoring.time_range import TimeRange


_TRACE_NOISE = """
| where message !contains 'export-jobs'
| where message !contains 'staging'"""

_UUID_RE = "[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"


def _errors_since(duration: str) -> str:
    return f"""traces
| where timestamp > ago({duration})
| where severityLevel >= 3{_TRACE_NOISE}"""


def requests_by_service(tr: TimeRange) -> str:
    return f"""requests
| where timestamp > ago({tr.log_duration})
| where name !contains '/health'
| where name != 'GET /'
| where name != 'GET'
| summarize count() by cloud_RoleName
| order by count_ desc"""


def traces_by_service(tr: TimeRange) -> str:
    return f"""traces
| where timestamp > ago({tr.log_duration}){_TRACE_NOISE}
| extend app = case(
    customDimensions.app_name != '', tostring(customDimensions.app_name),
    cloud_RoleName != '', cloud_RoleName,
    'Unknown')
| where app != 'Unknown' or severityLevel >= 2
| summarize count() by app
| where count_ > 10
| order by count_ desc"""


def error_count(tr: TimeRange) -> str:
    return f"""{_errors_since(tr.log_duration)}
| summarize total=count()"""


def llm_usage_by_model(tr: TimeRange) -> str:
    return f"""traces
| where timestamp > ago({tr.log_duration})
| where customDimensions.event_type == "llm_request_complete"
| extend
    tokens = toint(customDimensions.total_tokens),
    cost = todouble(customDimensions.estimated_cost_usd),
    model = tostring(customDimensions.model)
| summarize TotalCalls = count(), TotalTokens = sum(tokens), TotalCost = sum(cost) by model"""


def recent_errors(limit: int = 10) -> str:
    return f"""{_errors_since("1h")}
| extend
    app = coalesce(tostring(customDimensions.app_name), cloud_RoleName, 'Unknown'),
    path = tostring(customDimensions.path)
| project timestamp, message, app, path
| order by timestamp desc
| take {int(limit)}"""


def performance_by_endpoint(tr: TimeRange, limit: int = 10) -> str:
    return f"""traces
| where timestamp > ago({tr.log_duration})
| where message contains 'Response:'
| extend
    path = tostring(customDimensions.path),
    method = tostring(customDimensions.method),
    duration = todouble(customDimensions.process_time) * 1000
| where path != '/' and path != '/health' and isnotempty(path) and method != 'OPTIONS'
| extend normalized_path = replace_regex(path, '{_UUID_RE}', '{{id}}')
| summarize AvgMs = avg(duration), P95Ms = percentile(duration, 95), Count = count()
    by strcat(method, ' ', normalized_path)
| order by AvgMs desc
| take {int(limit)}"""


def performance_from_requests(tr: TimeRange, limit: int = 10) -> str:
    return f"""requests
| where timestamp > ago({tr.log_duration})
| summarize AvgMs = avg(duration), P95Ms = percentile(duration, 95), Count = count() by name
| order by Count desc
| take {int(limit)}"""


def errors_by_service(tr: TimeRange) -> str:
    return f"""{_errors_since(tr.log_duration)}
| extend app = coalesce(tostring(customDimensions.app_name), cloud_RoleName, 'Unknown')
| summarize Count = count() by app
| order by Count desc"""


def exceptions_by_type(tr: TimeRange, limit: int = 20) -> str:
    return f"""exceptions
| where timestamp > ago({tr.log_duration})
| where outerMessage !contains 'export-jobs'
| where outerMessage !contains 'staging'
| extend type = tostring(type), app = coalesce(tostring(customDimensions.app_name), cloud_RoleName, 'Unknown')
| summarize Count = count() by type, app
| order by Count desc
| take {int(limit)}"""


def errors_over_time(tr: TimeRange) -> str:
    return f"""{_errors_since(tr.log_duration)}
| summarize Count = count() by bin(timestamp, {tr.log_bin})
| order by timestamp asc"""


def detailed_recent_errors(tr: TimeRange, limit: int = 50) -> str:
    return f"""{_errors_since(tr.log_duration)}
| extend
    app = coalesce(tostring(customDimensions.app_name), cloud_RoleName, 'Unknown'),
    path = tostring(customDimensions.path),
    user_id = tostring(customDimensions.user_id),
    correlation_id = tostring(customDimensions.correlation_id)
| project timestamp, message, app, path, user_id, correlation_id, severityLevel
| order by timestamp desc
| take {int(limit)}"""


def top_error_endpoints(tr: TimeRange, limit: int = 10) -> str:
    return f"""{_errors_since(tr.log_duration)}
| extend path = tostring(customDimensions.path)
| where isnotempty(path)
| summarize Count = count() by path
| order by Count desc
| take {int(limit)}"""


# Compares the last hour with the hour before it; always queried over PT2H.
ERROR_TREND_DURATION = "PT2H"


def error_trend() -> str:
    return f"""{_errors_since("2h")}
| extend hour = iff(timestamp > ago(1h), "current", "previous")
| summarize Count = count() by hour"""
