from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.core.config import get_settings
from logosophe.persistence.repos import tenants as tenants_repo


ROLE_SYSTEM_ADMIN = "admin"
ROLE_TENANT_ADMIN = "tenant"
ROLE_SUBSCRIBER = "subscriber"
ROLE_USER = "user"

TENANT_ROLES = ("user", "subscriber", "tenant", "editor", "author", "agent", "reviewer")


@dataclass(frozen=True)
class Anonymous:
    reason: str = "no identity"


@dataclass(frozen=True)
class Forbidden:
    email: str
    reason: str


@dataclass(frozen=True)
class AccessContext:
    """Resolved identity for one request.

    ``role_hint`` is informational; every authorization decision goes through
    ``authorize`` with the resource's stored tenant and owner.
    """

    email: str
    role_hint: str
    is_system_admin: bool = False
    # Credentials role "tenant": admin for every tenant the user belongs to.
    has_tenant_credential: bool = False
    tenant_roles: dict[str, str] = field(default_factory=dict)
    session_id: str | None = None
    auth_method: str = "session"

    @property
    def tenant_ids(self) -> list[str]:
        return sorted(self.tenant_roles)

    def is_member(self, tenant_id: str | None) -> bool:
        return bool(tenant_id) and tenant_id in self.tenant_roles

    def is_tenant_admin_for(self, tenant_id: str | None) -> bool:
        if self.is_system_admin:
            return True
        if not tenant_id or tenant_id not in self.tenant_roles:
            return False
        return self.has_tenant_credential or self.tenant_roles[tenant_id] == ROLE_TENANT_ADMIN

    def admin_tenant_ids(self) -> list[str]:
        return [tenant_id for tenant_id in self.tenant_ids if self.is_tenant_admin_for(tenant_id)]


AccessOutcome = Anonymous | AccessContext | Forbidden


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str


def normalize_tenant_role(role: str) -> str:
    normalized = role.strip().lower()
    if normalized not in TENANT_ROLES:
        raise ValueError(f"Unsupported tenant role: {role}")
    return normalized


async def resolve_access(
    db: AsyncSession,
    email: str | None,
    *,
    session_id: str | None = None,
    auth_method: str = "session",
) -> AccessOutcome:
    # Role hint order: system admin, tenant credential, tenant role, subscriber, plain user.
    if not email:
        return Anonymous()
    email = email.strip().lower()
    settings = get_settings()
    credential = await tenants_repo.get_credential(db, email)
    is_system_admin = email in settings.system_admin_email_set() or (
        credential is not None and credential.role == ROLE_SYSTEM_ADMIN
    )
    has_tenant_credential = credential is not None and credential.role == ROLE_TENANT_ADMIN
    memberships = await tenants_repo.list_memberships(db, email)
    tenant_roles = {membership.tenant_id: membership.role_id for membership in memberships}
    subscriber = await tenants_repo.get_subscriber(db, email)

    # Banned users keep their identity but lose every right; admins are never locked out here.
    if subscriber is not None and subscriber.banned and not is_system_admin:
        return Forbidden(email=email, reason="account banned")

    if is_system_admin:
        role_hint = ROLE_SYSTEM_ADMIN
    elif has_tenant_credential:
        role_hint = ROLE_TENANT_ADMIN
    elif memberships:
        role_hint = memberships[0].role_id
    elif subscriber is not None and subscriber.active:
        role_hint = ROLE_SUBSCRIBER
    else:
        role_hint = ROLE_USER

    return AccessContext(
        email=email,
        role_hint=role_hint,
        is_system_admin=is_system_admin,
        has_tenant_credential=has_tenant_credential,
        tenant_roles=tenant_roles,
        session_id=session_id,
        auth_method=auth_method,
    )


def authorize(
    ctx: AccessContext,
    *,
    tenant_id: str | None = None,
    owner_email: str | None = None,
    allow_members: bool = False,
) -> AccessDecision:
    """Apply the access strategies in precedence order.

    The tenant and owner must come from storage, never from the request.
    """
    if ctx.is_system_admin:
        return AccessDecision(True, "system_admin")
    if tenant_id and ctx.is_tenant_admin_for(tenant_id):
        return AccessDecision(True, "tenant_admin")
    if owner_email and owner_email.lower() == ctx.email:
        return AccessDecision(True, "owner")
    if allow_members and ctx.is_member(tenant_id):
        return AccessDecision(True, "member")
    return AccessDecision(False, "denied")


def forbidden(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def ensure_allowed(decision: AccessDecision, message: str = "Access denied") -> None:
    if not decision.allowed:
        raise forbidden(message)
