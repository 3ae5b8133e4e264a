from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

tenant_list_loads_total = Counter(
    "tenant_list_loads_total",
    "Tenant list loads by source and outcome",
    ["source", "outcome"],
)

tenant_switches_total = Counter(
    "tenant_switches_total",
    "Tenant switch attempts by outcome",
    ["outcome"],
)

access_validation_total = Counter(
    "access_validation_total",
    "Access validation tier outcomes",
    ["tier", "outcome"],
)

mutex_acquisitions_total = Counter(
    "mutex_acquisitions_total",
    "Cross-context lease acquisitions by outcome",
    ["lock_name", "outcome"],
)

permission_resolutions_total = Counter(
    "permission_resolutions_total",
    "Effective permission resolutions by source",
    ["source"],
)

preference_sync_failures_total = Counter(
    "preference_sync_failures_total",
    "Current-tenant preference writes that exhausted their retries",
)

session_load_timeouts_total = Counter(
    "session_load_timeouts_total",
    "Session loads cut off by the hard load timeout",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _PATH_PARAM_RE.sub("{id}", route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_tenant_list_load(source: str, outcome: str) -> None:
    tenant_list_loads_total.labels(source=source, outcome=outcome).inc()


def observe_tenant_switch(outcome: str) -> None:
    tenant_switches_total.labels(outcome=outcome).inc()


def observe_access_tier(tier: str, outcome: str) -> None:
    access_validation_total.labels(tier=tier, outcome=outcome).inc()


def observe_mutex_acquisition(lock_name: str, outcome: str) -> None:
    mutex_acquisitions_total.labels(lock_name=lock_name, outcome=outcome).inc()


def observe_permission_resolution(source: str) -> None:
    permission_resolutions_total.labels(source=source).inc()


def observe_preference_sync_failure() -> None:
    preference_sync_failures_total.inc()


def observe_session_load_timeout() -> None:
    session_load_timeouts_total.inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
