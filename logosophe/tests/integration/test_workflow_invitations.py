from __future__ import annotations

from datetime import datetime, timedelta, timezone

from httpx import ASGITransport, AsyncClient
from sqlalchemy import update

from logosophe.apps.api.main import create_app
from logosophe.domain.models import WorkflowInvitation
from logosophe.persistence.db import SessionLocal
from logosophe.tests.utils.auth import create_test_tenant, create_test_user


async def _create_workflow(client: AsyncClient, headers: dict[str, str], tenant_id: str, **extra) -> dict:
    response = await client.post(
        "/v1/workflows",
        headers=headers,
        json={"tenant_id": tenant_id, "title": extra.pop("title", "Copy edit: chapter one"), **extra},
    )
    assert response.status_code == 201
    return response.json()["data"]


async def test_accepting_an_invitation_adds_a_participant() -> None:
    tenant_id = await create_test_tenant()
    author = await create_test_user("author@example.com", tenants={tenant_id: "author"})
    reviewer = await create_test_user("reviewer@example.com", tenants={tenant_id: "reviewer"})

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        workflow = await _create_workflow(client, author, tenant_id)
        assert workflow["status"] == "active"
        assert [row["role"] for row in workflow["participants"]] == ["initiator"]

        # Non-participants cannot even see the workflow.
        assert (await client.get(f"/v1/workflows/{workflow['id']}", headers=reviewer)).status_code == 404

        invited = await client.post(
            f"/v1/workflows/{workflow['id']}/invitations",
            headers=author,
            json={"invitee_email": "Reviewer@Example.com", "role": "reviewer", "message": "Take a look?"},
        )
        assert invited.status_code == 201
        invitation = invited.json()["data"]
        assert invitation["status"] == "pending"
        assert invitation["invitee_email"] == "reviewer@example.com"

        again = await client.post(
            f"/v1/workflows/{workflow['id']}/invitations",
            headers=author,
            json={"invitee_email": "reviewer@example.com"},
        )
        assert again.status_code == 400
        assert again.json()["error"]["code"] == "INVITATION_PENDING"

        pending = await client.get("/v1/workflows/invitations?status=pending", headers=reviewer)
        assert [row["id"] for row in pending.json()["data"]] == [invitation["id"]]

        # Only the invitee answers.
        hijack = await client.put(
            f"/v1/workflows/invitations/{invitation['id']}", headers=author, json={"action": "accept"}
        )
        assert hijack.status_code == 403

        accepted = await client.put(
            f"/v1/workflows/invitations/{invitation['id']}", headers=reviewer, json={"action": "accept"}
        )
        assert accepted.status_code == 200
        assert accepted.json()["data"]["status"] == "accepted"

        detail = await client.get(f"/v1/workflows/{workflow['id']}", headers=reviewer)
        assert detail.status_code == 200
        roles = {row["email"]: row["role"] for row in detail.json()["data"]["participants"]}
        assert roles == {"author@example.com": "initiator", "reviewer@example.com": "reviewer"}

        # A decided invitation cannot be answered twice.
        repeat = await client.put(
            f"/v1/workflows/invitations/{invitation['id']}", headers=reviewer, json={"action": "decline"}
        )
        assert repeat.status_code == 400
        assert repeat.json()["error"]["code"] == "INVITATION_NOT_PENDING"


async def test_expired_invitation_reads_as_not_found() -> None:
    tenant_id = await create_test_tenant()
    author = await create_test_user("author@example.com", tenants={tenant_id: "author"})
    reviewer = await create_test_user("reviewer@example.com", tenants={tenant_id: "reviewer"})

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        workflow = await _create_workflow(client, author, tenant_id)
        invited = await client.post(
            f"/v1/workflows/{workflow['id']}/invitations",
            headers=author,
            json={"invitee_email": "reviewer@example.com"},
        )
        invitation_id = invited.json()["data"]["id"]
        async with SessionLocal() as session:
            await session.execute(
                update(WorkflowInvitation)
                .where(WorkflowInvitation.id == invitation_id)
                .values(expires_at=datetime.now(timezone.utc) - timedelta(hours=1))
            )
            await session.commit()

        response = await client.put(
            f"/v1/workflows/invitations/{invitation_id}", headers=reviewer, json={"action": "accept"}
        )
        assert response.status_code == 404

        # The lapsed invitation is now recorded as expired.
        expired = await client.get("/v1/workflows/invitations?status=expired", headers=reviewer)
        assert [row["id"] for row in expired.json()["data"]] == [invitation_id]

        # A fresh invitation can be issued once the old one lapsed.
        reissued = await client.post(
            f"/v1/workflows/{workflow['id']}/invitations",
            headers=author,
            json={"invitee_email": "reviewer@example.com"},
        )
        assert reissued.status_code == 201


async def test_unknown_action_is_rejected() -> None:
    tenant_id = await create_test_tenant()
    author = await create_test_user("author@example.com", tenants={tenant_id: "author"})
    reviewer = await create_test_user("reviewer@example.com", tenants={tenant_id: "reviewer"})

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        workflow = await _create_workflow(client, author, tenant_id)
        invited = await client.post(
            f"/v1/workflows/{workflow['id']}/invitations",
            headers=author,
            json={"invitee_email": "reviewer@example.com"},
        )
        response = await client.put(
            f"/v1/workflows/invitations/{invited.json()['data']['id']}",
            headers=reviewer,
            json={"action": "maybe"},
        )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_workflow_status_changes_and_visibility() -> None:
    tenant_id = await create_test_tenant()
    author = await create_test_user("author@example.com", tenants={tenant_id: "author"})
    editor = await create_test_user("editor@example.com", tenants={tenant_id: "editor"})
    lead = await create_test_user("lead@example.com", tenants={tenant_id: "tenant"})

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        workflow = await _create_workflow(client, author, tenant_id, participants=["editor@example.com"])
        assert len(workflow["participants"]) == 2

        outsider = await _create_workflow(client, author, tenant_id, title="Other")
        refused = await client.post(
            "/v1/workflows",
            headers=author,
            json={"tenant_id": tenant_id, "title": "Bad", "participants": ["ghost@example.com"]},
        )
        assert refused.status_code == 400
        assert refused.json()["error"]["code"] == "INVALID_PARTICIPANTS"

        # Participants see only their workflows; tenant admins see every workflow in the tenant.
        editor_view = await client.get("/v1/workflows", headers=editor)
        assert [row["id"] for row in editor_view.json()["data"]] == [workflow["id"]]
        lead_view = await client.get("/v1/workflows", headers=lead)
        assert {row["id"] for row in lead_view.json()["data"]} == {workflow["id"], outsider["id"]}

        # A plain participant cannot close the workflow; the initiator can.
        assert (await client.post(f"/v1/workflows/{workflow['id']}/complete", headers=editor)).status_code == 403
        completed = await client.post(f"/v1/workflows/{workflow['id']}/complete", headers=author)
        assert completed.json()["data"]["status"] == "completed"
        assert completed.json()["data"]["completed_by"] == "author@example.com"

        closed = await client.post(f"/v1/workflows/{workflow['id']}/terminate", headers=lead)
        assert closed.status_code == 400
        assert closed.json()["error"]["code"] == "WORKFLOW_NOT_ACTIVE"

        active = await client.get("/v1/workflows?status=active", headers=lead)
        assert [row["id"] for row in active.json()["data"]] == [outsider["id"]]

        deleted = await client.delete(f"/v1/workflows/{outsider['id']}", headers=lead)
        assert deleted.json()["data"] == {"id": outsider["id"], "deleted": True}
        assert (await client.get(f"/v1/workflows/{outsider['id']}", headers=author)).status_code == 404
