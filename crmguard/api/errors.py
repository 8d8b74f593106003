from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI, status
from fastapi.responses import JSONResponse
from starlette.requests import Request

from crmguard.context import get_correlation_id
from crmguard.platform.security.errors import (
    InvariantViolation,
    PermissionDenied,
    RecordingFailure,
    RecordNotFoundError,
)


logger = logging.getLogger("crmguard.request")


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    request.state.error_code = code
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


async def _permission_denied(request: Request, exc: PermissionDenied) -> JSONResponse:
    return error_response(
        request,
        status_code=status.HTTP_403_FORBIDDEN,
        code="permission_denied",
        message=str(exc),
        details={"resource": str(exc.resource), "operation": str(exc.operation)},
    )


async def _invariant_violation(request: Request, exc: InvariantViolation) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="invariant_violation",
        message=exc.message,
        details={"invariant": exc.invariant},
    )


async def _record_not_found(request: Request, exc: RecordNotFoundError) -> JSONResponse:
    return error_response(
        request,
        status_code=status.HTTP_404_NOT_FOUND,
        code="not_found",
        message=str(exc),
        details={"resource": str(exc.resource)},
    )


async def _recording_failure(request: Request, exc: RecordingFailure) -> JSONResponse:
    logger.error("provenance.request_failed", extra={"kind": exc.kind, "entity_type": exc.entity_type, "error": exc.reason})
    return error_response(
        request,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="recording_failed",
        message="The change could not be recorded and was rolled back.",
        details={"kind": exc.kind, "entity_type": exc.entity_type},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PermissionDenied, _permission_denied)  # type: ignore[arg-type]
    app.add_exception_handler(InvariantViolation, _invariant_violation)  # type: ignore[arg-type]
    app.add_exception_handler(RecordNotFoundError, _record_not_found)  # type: ignore[arg-type]
    app.add_exception_handler(RecordingFailure, _recording_failure)  # type: ignore[arg-type]
