from __future__ import annotations

from logosophe.domain.models import Credential, Subscriber, Tenant, TenantUser
from logosophe.persistence.db import SessionLocal
from logosophe.services.access import (
    AccessContext,
    Anonymous,
    Forbidden,
    authorize,
    resolve_access,
)


def _ctx(email: str = "user@example.com", **kwargs) -> AccessContext:
    return AccessContext(email=email, role_hint=kwargs.pop("role_hint", "user"), **kwargs)


def test_system_admin_wins_over_every_other_strategy() -> None:
    # System admins pass even for tenants they do not belong to.
    decision = authorize(_ctx(is_system_admin=True), tenant_id="t-other", owner_email="else@example.com")
    assert decision.allowed is True
    assert decision.reason == "system_admin"


def test_tenant_admin_scope_is_limited_to_their_tenants() -> None:
    # The tenant credential only applies where the user is a member.
    ctx = _ctx(has_tenant_credential=True, tenant_roles={"t-a": "user"})
    assert authorize(ctx, tenant_id="t-a").reason == "tenant_admin"
    assert authorize(ctx, tenant_id="t-b").allowed is False


def test_tenant_role_grants_admin_without_credential() -> None:
    ctx = _ctx(tenant_roles={"t-a": "tenant", "t-b": "author"})
    assert ctx.is_tenant_admin_for("t-a") is True
    assert ctx.is_tenant_admin_for("t-b") is False
    assert ctx.admin_tenant_ids() == ["t-a"]


def test_owner_access_is_case_insensitive() -> None:
    ctx = _ctx(email="author@example.com", tenant_roles={"t-a": "author"})
    decision = authorize(ctx, tenant_id="t-a", owner_email="Author@Example.com")
    assert decision.allowed is True
    assert decision.reason == "owner"


def test_membership_only_counts_when_requested() -> None:
    # Plain members are denied unless the operation opts into member access.
    ctx = _ctx(tenant_roles={"t-a": "subscriber"})
    assert authorize(ctx, tenant_id="t-a", owner_email="other@example.com").allowed is False
    assert authorize(ctx, tenant_id="t-a", allow_members=True).reason == "member"
    assert authorize(ctx, tenant_id="t-b", allow_members=True).allowed is False


async def test_resolve_access_reports_anonymous_and_banned() -> None:
    # Missing identity is anonymous; banned subscribers resolve to forbidden.
    async with SessionLocal() as session:
        session.add(Subscriber(email="banned@example.com", banned=True))
        await session.commit()
        assert isinstance(await resolve_access(session, None), Anonymous)
        outcome = await resolve_access(session, "Banned@Example.com")
    assert isinstance(outcome, Forbidden)
    assert outcome.email == "banned@example.com"


async def test_resolve_access_role_hint_order() -> None:
    # Credential roles outrank tenant membership roles.
    async with SessionLocal() as session:
        session.add(Tenant(id="t-hint", name="Hint"))
        await session.flush()
        session.add(Credential(email="boss@example.com", role="admin"))
        session.add(Credential(email="lead@example.com", role="tenant"))
        session.add(TenantUser(tenant_id="t-hint", email="lead@example.com", role_id="author"))
        session.add(TenantUser(tenant_id="t-hint", email="writer@example.com", role_id="author"))
        session.add(Subscriber(email="reader@example.com"))
        await session.commit()

        boss = await resolve_access(session, "boss@example.com")
        lead = await resolve_access(session, "lead@example.com")
        writer = await resolve_access(session, "writer@example.com")
        reader = await resolve_access(session, "reader@example.com")
        stranger = await resolve_access(session, "stranger@example.com")

    assert boss.role_hint == "admin" and boss.is_system_admin is True
    assert lead.role_hint == "tenant" and lead.is_tenant_admin_for("t-hint") is True
    assert writer.role_hint == "author" and writer.is_tenant_admin_for("t-hint") is False
    assert reader.role_hint == "subscriber"
    assert stranger.role_hint == "user"
