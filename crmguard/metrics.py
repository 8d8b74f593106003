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

authz_denied_total = Counter(
    "authz_denied_total",
    "Row policy denials by resource and operation",
    ["resource", "operation"],
)

authz_resolution_failures_total = Counter(
    "authz_resolution_failures_total",
    "Principal resolutions that failed and were treated as deny",
)

invariant_violations_total = Counter(
    "invariant_violations_total",
    "Mutations rejected by invariant guards",
    ["invariant"],
)

provenance_entries_total = Counter(
    "provenance_entries_total",
    "Audit and history entries recorded",
    ["kind"],
)

provenance_failures_total = Counter(
    "provenance_failures_total",
    "Audit and history entries that could not be recorded",
    ["kind"],
)

automation_entries_total = Counter(
    "automation_entries_total",
    "Automation log entries by outcome status",
    ["status"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    return _UUID_RE.sub("{id}", path)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_authz_denied(resource: str, operation: str) -> None:
    authz_denied_total.labels(resource=resource, operation=operation).inc()


def observe_resolution_failure() -> None:
    authz_resolution_failures_total.inc()


def observe_invariant_violation(invariant: str) -> None:
    invariant_violations_total.labels(invariant=invariant).inc()


def observe_provenance_entry(kind: str) -> None:
    provenance_entries_total.labels(kind=kind).inc()


def observe_provenance_failure(kind: str) -> None:
    provenance_failures_total.labels(kind=kind).inc()


def observe_automation_entry(status: str) -> None:
    automation_entries_total.labels(status=status).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
