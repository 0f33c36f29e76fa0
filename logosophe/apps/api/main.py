from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from logosophe.apps.api import errors
from logosophe.apps.api.openapi import install_docs
from logosophe.apps.api.response import API_VERSION, REQUEST_ID_HEADER
from logosophe.apps.api.routes.health import router as health_router
from logosophe.apps.api.routes.logs import router as logs_router
from logosophe.apps.api.routes.media import router as media_router
from logosophe.apps.api.routes.messages import router as messages_router
from logosophe.apps.api.routes.sessions import router as sessions_router
from logosophe.apps.api.routes.shares import router as shares_router
from logosophe.apps.api.routes.subscribers import router as subscribers_router
from logosophe.apps.api.routes.tenants import router as tenants_router
from logosophe.apps.api.routes.workflows import router as workflows_router
from logosophe.core.config import get_settings
from logosophe.core.errors import RangeNotSatisfiableError
from logosophe.core.logging import configure_logging
from logosophe.persistence.guards import TenantPredicateError


logger = logging.getLogger(__name__)

_EXCEPTION_HANDLERS = (
    (StarletteHTTPException, errors.starlette_http_exception_handler),
    (HTTPException, errors.http_exception_handler),
    (RequestValidationError, errors.validation_exception_handler),
    (RangeNotSatisfiableError, errors.range_not_satisfiable_handler),
    (TenantPredicateError, errors.tenant_predicate_exception_handler),
    (Exception, errors.unhandled_exception_handler),
)

# Share routes resolve without a session; logs and subscribers are admin only.
_ROUTERS = (
    health_router,
    sessions_router,
    tenants_router,
    subscribers_router,
    media_router,
    shares_router,
    messages_router,
    workflows_router,
    logs_router,
)


async def _request_context(request: Request, call_next):
    # Echo the caller's request id (or mint one) so envelopes and audit rows correlate.
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
    request.state.request_id = request_id
    started = time.monotonic()
    response = await call_next(request)
    logger.debug(
        "request path=%s method=%s status=%s latency_ms=%.1f",
        request.url.path,
        request.method,
        response.status_code,
        (time.monotonic() - started) * 1000.0,
    )
    response.headers.setdefault(REQUEST_ID_HEADER, request_id)
    return response


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title=settings.app_name, docs_url=None, redoc_url=None, openapi_url=None)
    app.middleware("http")(_request_context)
    for exc_class, handler in _EXCEPTION_HANDLERS:
        app.add_exception_handler(exc_class, handler)
    for router in _ROUTERS:
        app.include_router(router, prefix=f"/{API_VERSION}")
    install_docs(app, title=settings.app_name, server_url=settings.public_base_url)
    return app


app = create_app()
