from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.apps.api.deps import get_db, get_log_writer, require_system_admin
from logosophe.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from logosophe.apps.api.response import SuccessEnvelope, success_response
from logosophe.services import tenants as tenants_service
from logosophe.services.access import AccessContext
from logosophe.services.audit import LOG_TYPE_ACTIVITY, SystemLogWriter, record_activity


router = APIRouter(prefix="/subscribers", tags=["subscribers"], responses=DEFAULT_ERROR_RESPONSES)


class SubscriberResponse(BaseModel):
    email: str
    name: str | None
    active: bool
    banned: bool
    joined_at: str
    left_at: str | None


def _to_response(subscriber) -> SubscriberResponse:
    return SubscriberResponse(
        email=subscriber.email,
        name=subscriber.name,
        active=subscriber.active,
        banned=subscriber.banned,
        joined_at=subscriber.joined_at.isoformat(),
        left_at=subscriber.left_at.isoformat() if subscriber.left_at else None,
    )


@router.get("", response_model=SuccessEnvelope[list[SubscriberResponse]])
async def list_subscribers(
    request: Request,
    include_inactive: bool = False,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    admin: AccessContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
) -> list[SubscriberResponse]:
    try:
        subscribers = await tenants_service.list_subscribers(
            db, admin, include_inactive=include_inactive, offset=offset, limit=limit
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing subscribers") from exc
    return success_response(request=request, data=[_to_response(subscriber) for subscriber in subscribers])


async def _set_banned(
    email: str,
    banned: bool,
    request: Request,
    admin: AccessContext,
    db: AsyncSession,
    writer: SystemLogWriter,
) -> SubscriberResponse:
    try:
        subscriber = await tenants_service.set_banned(db, admin, email, banned=banned)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while updating subscriber") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_ACTIVITY,
        activity_type="subscriber_banned" if banned else "subscriber_unbanned",
        user_email=admin.email,
        target_id=subscriber.email,
    )
    return success_response(request=request, data=_to_response(subscriber))


@router.post("/{email}/ban", response_model=SuccessEnvelope[SubscriberResponse])
async def ban_subscriber(
    email: str,
    request: Request,
    admin: AccessContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> SubscriberResponse:
    return await _set_banned(email, True, request, admin, db, writer)


@router.post("/{email}/unban", response_model=SuccessEnvelope[SubscriberResponse])
async def unban_subscriber(
    email: str,
    request: Request,
    admin: AccessContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> SubscriberResponse:
    return await _set_banned(email, False, request, admin, db, writer)


@router.delete("/{email}", response_model=SuccessEnvelope[SubscriberResponse])
async def deactivate_subscriber(
    email: str,
    request: Request,
    admin: AccessContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> SubscriberResponse:
    try:
        subscriber = await tenants_service.deactivate_subscriber(db, admin, email)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while deactivating subscriber") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_ACTIVITY,
        activity_type="subscriber_deactivated",
        user_email=admin.email,
        target_id=subscriber.email,
    )
    return success_response(request=request, data=_to_response(subscriber))
