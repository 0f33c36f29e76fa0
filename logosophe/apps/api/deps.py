from __future__ import annotations

import logging
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.core.config import get_settings
from logosophe.persistence.db import SessionLocal, get_session
from logosophe.services.access import AccessContext, Anonymous, Forbidden, forbidden, resolve_access
from logosophe.services.audit import (
    LOG_TYPE_AUTH,
    SystemLogWriter,
    get_default_writer,
    record_activity,
)
from logosophe.services.auth.sessions import resolve_session, touch_session
from logosophe.services.storage import ObjectStore, get_object_store


logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_log_writer() -> SystemLogWriter:
    return get_default_writer()


def get_store() -> ObjectStore:
    return get_object_store()


def _auth_error(message: str) -> HTTPException:
    # Normalize auth errors for clients without leaking internal details.
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _request_metadata(request: Request) -> dict[str, str]:
    return {"path": request.url.path, "method": request.method}


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


async def _touch_last_seen(session_id: str) -> None:
    # Update last_seen_at outside the request transaction.
    async with SessionLocal() as session:
        try:
            await touch_session(session, session_id)
            await session.commit()
        except SQLAlchemyError:
            logger.warning("session_touch_failed session_id=%s", session_id, exc_info=True)
            await session.rollback()


async def _identify(request: Request, db: AsyncSession) -> tuple[str | None, str | None, str]:
    # Return (email, session_id, auth_method); raise 401 only for malformed credentials.
    settings = get_settings()
    bearer_token = _parse_bearer_token(request.headers.get(settings.auth_session_header))
    if bearer_token and settings.auth_enabled:
        try:
            user_session = await resolve_session(db, bearer_token)
        except SQLAlchemyError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail={"code": "AUTH_UNAVAILABLE", "message": "Authentication unavailable"},
            ) from exc
        if user_session is None:
            raise _auth_error("Invalid or expired session")
        await _touch_last_seen(user_session.id)
        return user_session.email, user_session.id, "session"
    if settings.auth_dev_bypass:
        dev_email = request.headers.get("X-User-Email")
        if dev_email:
            return dev_email, None, "dev_bypass"
    return None, None, "anonymous"


async def _resolve(request: Request, db: AsyncSession) -> AccessContext | Anonymous | Forbidden:
    email, session_id, auth_method = await _identify(request, db)
    return await resolve_access(db, email, session_id=session_id, auth_method=auth_method)


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> AccessContext:
    # Emit auth failure logs without blocking request flow on audit failures.
    try:
        outcome = await _resolve(request, db)
    except HTTPException as exc:
        await record_activity(
            writer,
            request=request,
            log_type=LOG_TYPE_AUTH,
            activity_type="auth_failure",
            metadata={**_request_metadata(request), "status": exc.status_code},
        )
        raise
    if isinstance(outcome, Anonymous):
        await record_activity(
            writer,
            request=request,
            log_type=LOG_TYPE_AUTH,
            activity_type="auth_failure",
            metadata={**_request_metadata(request), "status": 401},
        )
        raise _auth_error("Authentication required")
    if isinstance(outcome, Forbidden):
        await record_activity(
            writer,
            request=request,
            log_type=LOG_TYPE_AUTH,
            activity_type="access_denied",
            user_email=outcome.email,
            metadata={**_request_metadata(request), "reason": outcome.reason},
        )
        raise forbidden("Account is not permitted to access this resource")
    return outcome


async def get_optional_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AccessContext | None:
    # Public endpoints accept an identity when present but never require one.
    try:
        outcome = await _resolve(request, db)
    except HTTPException:
        return None
    return outcome if isinstance(outcome, AccessContext) else None


async def require_system_admin(
    request: Request,
    user: AccessContext = Depends(get_current_user),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> AccessContext:
    if not user.is_system_admin:
        await record_activity(
            writer,
            request=request,
            log_type=LOG_TYPE_AUTH,
            activity_type="access_denied",
            user_email=user.email,
            metadata={**_request_metadata(request), "required": "system_admin"},
        )
        raise forbidden("System admin access required")
    return user
