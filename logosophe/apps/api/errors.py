from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from logosophe.apps.api.response import error_response
from logosophe.core.errors import RangeNotSatisfiableError
from logosophe.persistence.guards import TenantPredicateError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
    416: "RANGE_NOT_SATISFIABLE",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _http_error(request, exc)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # Routing errors (unknown path, wrong method) get the same envelope.
    return _http_error(request, exc)


def _field_name(error: dict[str, Any]) -> str:
    # Drop the body/query/path prefix so messages name the client-facing field.
    loc = [str(part) for part in error.get("loc", ()) if part not in {"body", "query", "path", "header"}]
    return ".".join(loc) or "request"


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Report invalid input as 400 and name the first offending field.
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = _field_name(first)
    reason = first.get("msg", "invalid value")
    payload = error_response(
        request=request,
        code="VALIDATION_ERROR",
        message=f"Invalid field '{field}': {reason}",
        details={"field": field, "errors": [
            {"field": _field_name(error), "message": error.get("msg")} for error in errors
        ]},
    )
    return JSONResponse(content=payload, status_code=400)


async def range_not_satisfiable_handler(
    request: Request, exc: RangeNotSatisfiableError
) -> JSONResponse:
    payload = error_response(request=request, code="RANGE_NOT_SATISFIABLE", message=str(exc))
    return JSONResponse(
        content=payload,
        status_code=416,
        headers={"Content-Range": f"bytes */{exc.size}", "Accept-Ranges": "bytes"},
    )


async def tenant_predicate_exception_handler(
    request: Request, exc: TenantPredicateError
) -> JSONResponse:
    # A missing tenant scope is a server bug; never run the query unscoped.
    logger.error("tenant_predicate_missing path=%s", request.url.path)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.error("unhandled_exception path=%s", request.url.path, exc_info=exc)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
