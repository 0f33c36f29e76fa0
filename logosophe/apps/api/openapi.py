from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from logosophe.apps.api.response import API_VERSION, ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _response(
        "Bad request",
        "VALIDATION_ERROR",
        "Invalid field 'subject': Field required",
        details={"field": "subject"},
    ),
    401: _response("Unauthorized", "AUTH_UNAUTHORIZED", "Missing or invalid bearer token"),
    403: _response("Forbidden", "AUTH_FORBIDDEN", "Tenant admin access required"),
    404: _response("Not found", "NOT_FOUND", "Resource not found"),
    500: _response("Internal error", "INTERNAL_ERROR", "Internal server error"),
}

RANGE_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    416: _response("Range not satisfiable", "RANGE_NOT_SATISFIABLE", "Range start beyond end of file"),
}

# Reachable without a session; every other operation advertises bearer auth.
PUBLIC_PATHS = frozenset({"/v1/health", "/v1/share/{token}", "/v1/share/{token}/download"})


def build_schema(app: FastAPI, *, title: str, server_url: str) -> dict[str, Any]:
    if app.openapi_schema:
        return app.openapi_schema
    schema = get_openapi(title=title, version=API_VERSION, routes=app.routes)
    schema["servers"] = [{"url": server_url}]
    schema.setdefault("components", {}).setdefault("securitySchemes", {})["BearerAuth"] = {
        "type": "http",
        "scheme": "bearer",
    }
    for path, operations in schema.get("paths", {}).items():
        if path not in PUBLIC_PATHS:
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
    app.openapi_schema = schema
    return schema


def install_docs(app: FastAPI, *, title: str, server_url: str) -> None:
    """Serve the schema and Swagger UI under the version prefix."""
    prefix = f"/{API_VERSION}"
    app.openapi = lambda: build_schema(app, title=title, server_url=server_url)

    async def schema_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    async def swagger_ui() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url=f"{prefix}/openapi.json", title=f"{title} {API_VERSION}")

    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url=f"{prefix}/docs")

    app.add_api_route(f"{prefix}/openapi.json", schema_json, include_in_schema=False)
    app.add_api_route(f"{prefix}/docs", swagger_ui, include_in_schema=False)
    app.add_api_route("/docs", docs_redirect, include_in_schema=False)
