from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from crmguard.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("crmguard.request")

# Refusals by the access layer are raised to WARNING so they stand out from ordinary traffic.
_REFUSAL_CODES = frozenset({"permission_denied", "invariant_violation"})


def _request_fields(request: Request, method: str, path: str, status_code: int, duration_ms: float) -> dict[str, object]:
    # principal and error_code are filled in by get_current_context and error_response.
    return {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": duration_ms,
        "principal": getattr(request.state, "principal", None),
        "error_code": getattr(request.state, "error_code", None),
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        method = request.method
        path = resolve_http_path_label(request)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            observe_http_request(method=method, path=path, status=500, duration=duration_ms / 1000)
            logger.error("http.error", exc_info=True, extra=_request_fields(request, method, path, 500, duration_ms))
            raise

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        observe_http_request(method=method, path=path, status=response.status_code, duration=duration_ms / 1000)
        fields = _request_fields(request, method, path, response.status_code, duration_ms)
        level = logging.WARNING if fields["error_code"] in _REFUSAL_CODES else logging.INFO
        logger.log(level, "http.request", extra=fields)
        return response
