from __future__ import annotations

from uuid import uuid4

from logosophe.domain.models import Credential, Subscriber, Tenant, TenantUser
from logosophe.persistence.db import SessionLocal
from logosophe.services.auth.sessions import issue_session


def unique_tenant_id(prefix: str = "t") -> str:
    # Unique ids keep assertions independent of whatever else a test seeded.
    return f"{prefix}-{uuid4().hex[:12]}"


async def create_test_tenant(tenant_id: str | None = None, *, name: str = "Test Tenant") -> str:
    resolved = tenant_id or unique_tenant_id()
    async with SessionLocal() as session:
        session.add(Tenant(id=resolved, name=name))
        await session.commit()
    return resolved


async def create_test_user(
    email: str,
    *,
    tenants: dict[str, str] | None = None,
    credential_role: str | None = None,
    banned: bool = False,
    ttl_hours: int | None = None,
) -> dict[str, str]:
    """Provision a user with memberships and a bearer session.

    ``tenants`` maps tenant id to tenant role. Returns request headers
    carrying the session token.
    """
    async with SessionLocal() as session:
        session.add(Subscriber(email=email, name=email.split("@")[0], banned=banned))
        if credential_role is not None:
            session.add(Credential(email=email, role=credential_role))
        for tenant_id, role_id in (tenants or {}).items():
            session.add(TenantUser(tenant_id=tenant_id, email=email, role_id=role_id))
        _row, raw_token = await issue_session(session, email=email, provider="test", ttl_hours=ttl_hours)
        await session.commit()
    return {"Authorization": f"Bearer {raw_token}"}
