from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass

from logosophe.domain.models import Credential, Subscriber, Tenant, TenantUser
from logosophe.persistence.db import SessionLocal
from logosophe.services.auth.sessions import issue_session


DEMO_TENANT_ID = "demo"
DEMO_TENANT_NAME = "Demo Press"
DEMO_ADMIN_EMAIL = "admin@example.com"


@dataclass(frozen=True)
class DemoMember:
    email: str
    name: str
    role_id: str


def build_demo_members() -> tuple[DemoMember, ...]:
    # One of each tenant role the API distinguishes.
    return (
        DemoMember(email="editor@example.com", name="Demo Editor", role_id="tenant"),
        DemoMember(email="author@example.com", name="Demo Author", role_id="author"),
        DemoMember(email="reader@example.com", name="Demo Reader", role_id="subscriber"),
    )


async def seed_demo() -> int:
    async with SessionLocal() as session:
        if await session.get(Tenant, DEMO_TENANT_ID) is not None:
            print("Demo tenant already seeded; skipping.")
            return 0
        session.add(
            Tenant(
                id=DEMO_TENANT_ID,
                name=DEMO_TENANT_NAME,
                description="Sample tenant for local development",
            )
        )
        if await session.get(Credential, DEMO_ADMIN_EMAIL) is None:
            session.add(Credential(email=DEMO_ADMIN_EMAIL, role="admin"))
        await session.flush()
        for member in build_demo_members():
            if await session.get(Subscriber, member.email) is None:
                session.add(Subscriber(email=member.email, name=member.name))
            session.add(TenantUser(tenant_id=DEMO_TENANT_ID, email=member.email, role_id=member.role_id))
        tokens = {}
        for email in [DEMO_ADMIN_EMAIL, *(member.email for member in build_demo_members())]:
            _row, raw_token = await issue_session(session, email=email, provider="seed")
            tokens[email] = raw_token
        await session.commit()
    print(f"Seeded tenant {DEMO_TENANT_ID} with {len(build_demo_members())} members.")
    for email, token in tokens.items():
        print(f"{email} token={token}")
    return 0


def main() -> int:
    try:
        return asyncio.run(seed_demo())
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
