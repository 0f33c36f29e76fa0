from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.domain.models import Credential, Subscriber, Tenant, TenantUser
from logosophe.persistence.guards import tenant_predicate


async def get_credential(session: AsyncSession, email: str) -> Credential | None:
    return await session.get(Credential, email)


async def get_subscriber(session: AsyncSession, email: str) -> Subscriber | None:
    return await session.get(Subscriber, email)


async def get_tenant(session: AsyncSession, tenant_id: str) -> Tenant | None:
    return await session.get(Tenant, tenant_id)


async def list_tenants(session: AsyncSession, *, tenant_ids: list[str] | None = None) -> list[Tenant]:
    # None means unrestricted (system admin); an empty list means no visibility.
    stmt = select(Tenant)
    if tenant_ids is not None:
        if not tenant_ids:
            return []
        stmt = stmt.where(Tenant.id.in_(tenant_ids))
    stmt = stmt.order_by(Tenant.name.asc(), Tenant.id.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_memberships(session: AsyncSession, email: str) -> list[TenantUser]:
    result = await session.execute(
        select(TenantUser)
        .where(TenantUser.email == email)
        .order_by(TenantUser.tenant_id.asc())
    )
    return list(result.scalars().all())


async def get_membership(session: AsyncSession, *, tenant_id: str, email: str) -> TenantUser | None:
    return await session.get(TenantUser, (tenant_id, email))


async def list_members(session: AsyncSession, tenant_id: str) -> list[TenantUser]:
    result = await session.execute(
        select(TenantUser)
        .where(tenant_predicate(TenantUser, tenant_id))
        .order_by(TenantUser.email.asc())
    )
    return list(result.scalars().all())


async def member_emails(session: AsyncSession, tenant_id: str) -> set[str]:
    result = await session.execute(select(TenantUser.email).where(tenant_predicate(TenantUser, tenant_id)))
    return set(result.scalars().all())


async def upsert_member(session: AsyncSession, *, tenant_id: str, email: str, role_id: str) -> TenantUser:
    membership = await get_membership(session, tenant_id=tenant_id, email=email)
    if membership is None:
        membership = TenantUser(tenant_id=tenant_id, email=email, role_id=role_id)
        session.add(membership)
    else:
        membership.role_id = role_id
    await session.flush()
    return membership


async def remove_member(session: AsyncSession, *, tenant_id: str, email: str) -> int:
    result = await session.execute(
        delete(TenantUser).where(tenant_predicate(TenantUser, tenant_id), TenantUser.email == email)
    )
    return result.rowcount or 0


async def list_subscribers(
    session: AsyncSession,
    *,
    include_inactive: bool = False,
    offset: int = 0,
    limit: int = 100,
) -> list[Subscriber]:
    stmt = select(Subscriber)
    if not include_inactive:
        stmt = stmt.where(Subscriber.active.is_(True))
    stmt = stmt.order_by(Subscriber.email.asc()).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())
