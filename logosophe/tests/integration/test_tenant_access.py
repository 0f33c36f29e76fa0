from __future__ import annotations

from httpx import ASGITransport, AsyncClient

from logosophe.apps.api.main import create_app
from logosophe.tests.utils.auth import create_test_tenant, create_test_user


async def test_tenant_listing_is_scoped_to_memberships() -> None:
    tenant_a = await create_test_tenant(name="Alpha Press")
    tenant_b = await create_test_tenant(name="Beta Books")
    member = await create_test_user("writer@example.com", tenants={tenant_a: "author"})
    admin = await create_test_user("root@example.com", credential_role="admin")

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        mine = await client.get("/v1/tenants", headers=member)
        assert mine.status_code == 200
        assert [(row["id"], row["role"]) for row in mine.json()["data"]] == [(tenant_a, "author")]

        everything = await client.get("/v1/tenants", headers=admin)
        assert {row["id"] for row in everything.json()["data"]} == {tenant_a, tenant_b}


async def test_only_system_admins_create_tenants() -> None:
    member = await create_test_user("writer@example.com")
    admin = await create_test_user("root@example.com", credential_role="admin")

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        refused = await client.post("/v1/tenants", headers=member, json={"name": "Gamma"})
        assert refused.status_code == 403

        created = await client.post(
            "/v1/tenants", headers=admin, json={"name": "Gamma House", "tenant_id": "gamma-house"}
        )
        assert created.status_code == 201
        assert created.json()["data"]["id"] == "gamma-house"

        duplicate = await client.post(
            "/v1/tenants", headers=admin, json={"name": "Gamma House", "tenant_id": "gamma-house"}
        )
        assert duplicate.status_code == 400
        assert duplicate.json()["error"]["code"] == "TENANT_EXISTS"

        invalid = await client.post("/v1/tenants", headers=admin, json={"name": "X", "tenant_id": "Bad Id"})
        assert invalid.status_code == 400
        assert invalid.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_tenant_admin_manages_members_of_own_tenant_only() -> None:
    tenant_a = await create_test_tenant()
    tenant_b = await create_test_tenant()
    lead = await create_test_user("lead@example.com", tenants={tenant_a: "tenant"})
    author = await create_test_user("writer@example.com", tenants={tenant_a: "author"})

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        added = await client.put(
            f"/v1/tenants/{tenant_a}/members/New@Example.com", headers=lead, json={"role_id": "Editor"}
        )
        assert added.status_code == 200
        assert added.json()["data"]["email"] == "new@example.com"
        assert added.json()["data"]["role_id"] == "editor"

        bad_role = await client.put(
            f"/v1/tenants/{tenant_a}/members/new@example.com", headers=lead, json={"role_id": "overlord"}
        )
        assert bad_role.status_code == 400

        members = await client.get(f"/v1/tenants/{tenant_a}/members", headers=lead)
        assert {row["email"] for row in members.json()["data"]} == {
            "lead@example.com",
            "writer@example.com",
            "new@example.com",
        }

        # Authors cannot manage membership; other tenants are off limits to the lead.
        assert (await client.get(f"/v1/tenants/{tenant_a}/members", headers=author)).status_code == 403
        assert (await client.get(f"/v1/tenants/{tenant_b}/members", headers=lead)).status_code == 403

        removed = await client.delete(f"/v1/tenants/{tenant_a}/members/new@example.com", headers=lead)
        assert removed.status_code == 200
        missing = await client.delete(f"/v1/tenants/{tenant_a}/members/new@example.com", headers=lead)
        assert missing.status_code == 404


async def test_system_admin_bans_and_unbans_subscribers() -> None:
    admin = await create_test_user("root@example.com", credential_role="admin")
    target = await create_test_user("target@example.com")

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        banned = await client.post("/v1/subscribers/target@example.com/ban", headers=admin)
        assert banned.status_code == 200
        assert banned.json()["data"]["banned"] is True
        assert (await client.get("/v1/tenants", headers=target)).status_code == 403

        unbanned = await client.post("/v1/subscribers/target@example.com/unban", headers=admin)
        assert unbanned.json()["data"]["banned"] is False
        assert (await client.get("/v1/tenants", headers=target)).status_code == 200

        deactivated = await client.delete("/v1/subscribers/target@example.com", headers=admin)
        assert deactivated.status_code == 200
        assert deactivated.json()["data"]["active"] is False

        active_only = await client.get("/v1/subscribers", headers=admin)
        assert "target@example.com" not in {row["email"] for row in active_only.json()["data"]}
        everyone = await client.get("/v1/subscribers?include_inactive=true", headers=admin)
        assert "target@example.com" in {row["email"] for row in everyone.json()["data"]}

        assert (await client.post("/v1/subscribers/ghost@example.com/ban", headers=admin)).status_code == 404
