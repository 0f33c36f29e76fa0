from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import false


class TenantPredicateError(RuntimeError):
    """Raised instead of running a tenant-scoped query without a tenant id."""


def require_tenant_id(tenant_id: str | None) -> None:
    if not tenant_id:
        raise TenantPredicateError("Tenant predicate required but tenant_id is missing")


def tenant_predicate(model, tenant_id: str) -> object:
    # Build tenant predicates through a single helper to guarantee guard coverage.
    require_tenant_id(tenant_id)
    return model.tenant_id == tenant_id


def tenant_in(model, tenant_ids: Iterable[str]) -> object:
    # Size the IN list to the caller's memberships; no memberships matches nothing.
    ids = sorted({tenant_id for tenant_id in tenant_ids if tenant_id})
    if not ids:
        return false()
    return model.tenant_id.in_(ids)
