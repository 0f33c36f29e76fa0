from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.apps.api.deps import get_current_user, get_db, get_log_writer
from logosophe.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from logosophe.apps.api.response import SuccessEnvelope, success_response
from logosophe.services import tenants as tenants_service
from logosophe.services.access import AccessContext
from logosophe.services.audit import LOG_TYPE_ACTIVITY, SystemLogWriter, record_activity


router = APIRouter(prefix="/tenants", tags=["tenants"], responses=DEFAULT_ERROR_RESPONSES)


class TenantCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    tenant_id: str | None = Field(default=None, pattern="^[a-z0-9][a-z0-9_-]{1,63}$")

    model_config = {"extra": "forbid"}


class MemberUpsertRequest(BaseModel):
    role_id: str = Field(min_length=1)

    model_config = {"extra": "forbid"}


class TenantResponse(BaseModel):
    id: str
    name: str
    description: str | None
    created_at: str
    role: str | None = None


class MemberResponse(BaseModel):
    tenant_id: str
    email: str
    role_id: str
    created_at: str


class DeletedResponse(BaseModel):
    email: str
    deleted: bool


def _to_response(tenant, role: str | None = None) -> TenantResponse:
    return TenantResponse(
        id=tenant.id,
        name=tenant.name,
        description=tenant.description,
        created_at=tenant.created_at.isoformat(),
        role=role,
    )


def _member_response(member) -> MemberResponse:
    return MemberResponse(
        tenant_id=member.tenant_id,
        email=member.email,
        role_id=member.role_id,
        created_at=member.created_at.isoformat(),
    )


@router.get("", response_model=SuccessEnvelope[list[TenantResponse]])
async def list_tenants(
    request: Request,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[TenantResponse]:
    try:
        tenants = await tenants_service.list_tenants_for_user(db, user)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing tenants") from exc
    payload = [_to_response(tenant, user.tenant_roles.get(tenant.id)) for tenant in tenants]
    return success_response(request=request, data=payload)


@router.post("", status_code=201, response_model=SuccessEnvelope[TenantResponse])
async def create_tenant(
    request: Request,
    payload: TenantCreateRequest,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> TenantResponse:
    try:
        tenant = await tenants_service.create_tenant(
            db, user, name=payload.name, description=payload.description, tenant_id=payload.tenant_id
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while creating tenant") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_ACTIVITY,
        activity_type="tenant_created",
        user_email=user.email,
        tenant_id=tenant.id,
        target_id=tenant.id,
        target_name=tenant.name,
    )
    return success_response(request=request, data=_to_response(tenant))


@router.get(
    "/{tenant_id}/members",
    response_model=SuccessEnvelope[list[MemberResponse]],
)
async def list_members(
    request: Request,
    tenant_id: str,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[MemberResponse]:
    try:
        members = await tenants_service.list_members(db, user, tenant_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing members") from exc
    return success_response(request=request, data=[_member_response(member) for member in members])


@router.put(
    "/{tenant_id}/members/{email}",
    response_model=SuccessEnvelope[MemberResponse],
)
async def upsert_member(
    tenant_id: str,
    email: str,
    request: Request,
    payload: MemberUpsertRequest,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> MemberResponse:
    try:
        member = await tenants_service.upsert_member(db, user, tenant_id, email=email, role_id=payload.role_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while saving member") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_ACTIVITY,
        activity_type="tenant_member_upserted",
        user_email=user.email,
        tenant_id=tenant_id,
        target_id=member.email,
        metadata={"role_id": member.role_id},
    )
    return success_response(request=request, data=_member_response(member))


@router.delete(
    "/{tenant_id}/members/{email}",
    response_model=SuccessEnvelope[DeletedResponse],
)
async def remove_member(
    tenant_id: str,
    email: str,
    request: Request,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> DeletedResponse:
    try:
        await tenants_service.remove_member(db, user, tenant_id, email=email)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while removing member") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_ACTIVITY,
        activity_type="tenant_member_removed",
        user_email=user.email,
        tenant_id=tenant_id,
        target_id=email.strip().lower(),
    )
    return success_response(request=request, data=DeletedResponse(email=email.strip().lower(), deleted=True))
