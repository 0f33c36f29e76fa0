from __future__ import annotations

from datetime import datetime, timezone
import re
from uuid import uuid4

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.domain.models import Subscriber, Tenant, TenantUser
from logosophe.persistence.db import unit_of_work
from logosophe.persistence.repos import tenants as tenants_repo
from logosophe.services.access import AccessContext, forbidden, normalize_tenant_role


_SLUG_RE = re.compile(r"[^a-z0-9]+")


def _not_found(message: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": message})


def _tenant_id_for(name: str) -> str:
    slug = _SLUG_RE.sub("-", name.lower()).strip("-")[:32]
    return f"{slug or 'tenant'}-{uuid4().hex[:8]}"


async def list_tenants_for_user(db: AsyncSession, ctx: AccessContext) -> list[Tenant]:
    return await tenants_repo.list_tenants(db, tenant_ids=None if ctx.is_system_admin else ctx.tenant_ids)


async def create_tenant(
    db: AsyncSession,
    ctx: AccessContext,
    *,
    name: str,
    description: str | None = None,
    tenant_id: str | None = None,
) -> Tenant:
    if not ctx.is_system_admin:
        raise forbidden("System admin access required")
    resolved_id = tenant_id or _tenant_id_for(name)
    if await tenants_repo.get_tenant(db, resolved_id) is not None:
        raise HTTPException(
            status_code=400,
            detail={"code": "TENANT_EXISTS", "message": f"Tenant {resolved_id} already exists"},
        )
    tenant = Tenant(id=resolved_id, name=name, description=description)
    async with unit_of_work(db):
        db.add(tenant)
    return tenant


async def _require_tenant_admin(db: AsyncSession, ctx: AccessContext, tenant_id: str) -> Tenant:
    tenant = await tenants_repo.get_tenant(db, tenant_id)
    # Non-members cannot tell a missing tenant from one they do not belong to.
    if tenant is None or not (ctx.is_system_admin or ctx.is_member(tenant_id)):
        raise forbidden("Tenant admin access required")
    if not ctx.is_tenant_admin_for(tenant_id):
        raise forbidden("Tenant admin access required")
    return tenant


async def list_members(db: AsyncSession, ctx: AccessContext, tenant_id: str) -> list[TenantUser]:
    await _require_tenant_admin(db, ctx, tenant_id)
    return await tenants_repo.list_members(db, tenant_id)


async def upsert_member(
    db: AsyncSession,
    ctx: AccessContext,
    tenant_id: str,
    *,
    email: str,
    role_id: str,
) -> TenantUser:
    await _require_tenant_admin(db, ctx, tenant_id)
    try:
        role = normalize_tenant_role(role_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "VALIDATION_ERROR", "message": f"Invalid field 'role_id': {exc}"},
        ) from exc
    async with unit_of_work(db):
        membership = await tenants_repo.upsert_member(
            db, tenant_id=tenant_id, email=email.strip().lower(), role_id=role
        )
    return membership


async def remove_member(db: AsyncSession, ctx: AccessContext, tenant_id: str, *, email: str) -> None:
    await _require_tenant_admin(db, ctx, tenant_id)
    async with unit_of_work(db):
        removed = await tenants_repo.remove_member(db, tenant_id=tenant_id, email=email.strip().lower())
    if not removed:
        raise _not_found("Member not found")


async def list_subscribers(
    db: AsyncSession,
    ctx: AccessContext,
    *,
    include_inactive: bool = False,
    offset: int = 0,
    limit: int = 100,
) -> list[Subscriber]:
    if not ctx.is_system_admin:
        raise forbidden("System admin access required")
    return await tenants_repo.list_subscribers(db, include_inactive=include_inactive, offset=offset, limit=limit)


async def _load_subscriber(db: AsyncSession, ctx: AccessContext, email: str) -> Subscriber:
    if not ctx.is_system_admin:
        raise forbidden("System admin access required")
    subscriber = await tenants_repo.get_subscriber(db, email.strip().lower())
    if subscriber is None:
        raise _not_found("Subscriber not found")
    return subscriber


async def set_banned(db: AsyncSession, ctx: AccessContext, email: str, *, banned: bool) -> Subscriber:
    subscriber = await _load_subscriber(db, ctx, email)
    async with unit_of_work(db):
        subscriber.banned = banned
        subscriber.updated_at = datetime.now(timezone.utc)
    return subscriber


async def deactivate_subscriber(db: AsyncSession, ctx: AccessContext, email: str) -> Subscriber:
    # Users are soft-deleted; the row stays for audit history.
    subscriber = await _load_subscriber(db, ctx, email)
    now = datetime.now(timezone.utc)
    async with unit_of_work(db):
        subscriber.active = False
        subscriber.left_at = now
        subscriber.updated_at = now
    return subscriber
