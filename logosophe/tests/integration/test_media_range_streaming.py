from __future__ import annotations

from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from logosophe.apps.api.main import create_app
from logosophe.domain.models import SystemLog
from logosophe.persistence.db import SessionLocal
from logosophe.tests.utils.auth import create_test_tenant, create_test_user


VIDEO_BYTES = bytes(range(256)) * 40


async def _upload(client: AsyncClient, headers: dict[str, str], tenant_id: str) -> dict:
    response = await client.post(
        "/v1/media",
        headers=headers,
        data={"tenant_id": tenant_id, "description": "Launch teaser"},
        files={"file": ("teaser.mp4", VIDEO_BYTES, "video/mp4")},
    )
    assert response.status_code == 201
    return response.json()["data"]


async def test_media_upload_and_full_download() -> None:
    tenant_id = await create_test_tenant()
    headers = await create_test_user("author@example.com", tenants={tenant_id: "author"})

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await _upload(client, headers, tenant_id)
        assert created["media_type"] == "video"
        assert created["file_size"] == len(VIDEO_BYTES)
        assert created["tenant_ids"] == [tenant_id]

        full = await client.get(f"/v1/media/{created['id']}/download", headers=headers)
        assert full.status_code == 200
        assert full.headers["content-length"] == str(len(VIDEO_BYTES))
        assert full.headers["accept-ranges"] == "bytes"
        assert full.headers["content-disposition"].startswith("inline")
        assert full.content == VIDEO_BYTES

        attachment = await client.get(
            f"/v1/media/{created['id']}/download?download=true", headers=headers
        )
        assert attachment.headers["content-disposition"].startswith("attachment")


async def test_media_range_requests_return_partial_content() -> None:
    # Players seek with Range headers; 206 carries exact Content-Range/Length.
    tenant_id = await create_test_tenant()
    headers = await create_test_user("author@example.com", tenants={tenant_id: "author"})

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await _upload(client, headers, tenant_id)
        url = f"/v1/media/{created['id']}/download"

        first = await client.get(url, headers={**headers, "Range": "bytes=0-99"})
        assert first.status_code == 206
        assert first.headers["content-range"] == f"bytes 0-99/{len(VIDEO_BYTES)}"
        assert first.headers["content-length"] == "100"
        assert first.content == VIDEO_BYTES[:100]

        tail = await client.get(url, headers={**headers, "Range": "bytes=-10"})
        assert tail.status_code == 206
        assert tail.content == VIDEO_BYTES[-10:]

        beyond = await client.get(url, headers={**headers, "Range": f"bytes={len(VIDEO_BYTES)}-"})
        assert beyond.status_code == 416
        assert beyond.headers["content-range"] == f"bytes */{len(VIDEO_BYTES)}"
        assert beyond.json()["error"]["code"] == "RANGE_NOT_SATISFIABLE"

        # A latin-1 superscript digit is malformed, not a server error.
        superscript = await client.get(url, headers={**headers, "Range": b"bytes=\xb2-5"})
        assert superscript.status_code == 416
        assert superscript.headers["content-range"] == f"bytes */{len(VIDEO_BYTES)}"

    # Only the first chunk of a ranged stream is audited.
    async with SessionLocal() as session:
        rows = (
            await session.execute(
                select(SystemLog).where(SystemLog.activity_type == "view", SystemLog.target_id == created["id"])
            )
        ).scalars().all()
    assert len(rows) == 1
    assert rows[0].metadata_json["range"] == "bytes=0-99"


async def test_media_is_hidden_from_other_tenants() -> None:
    # Cross-tenant lookups answer 404 so ids cannot be probed.
    tenant_a = await create_test_tenant()
    tenant_b = await create_test_tenant()
    owner = await create_test_user("owner@example.com", tenants={tenant_a: "author"})
    outsider = await create_test_user("outsider@example.com", tenants={tenant_b: "author"})
    admin = await create_test_user("root@example.com", credential_role="admin")

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await _upload(client, owner, tenant_a)
        hidden = await client.get(f"/v1/media/{created['id']}", headers=outsider)
        assert hidden.status_code == 404
        assert hidden.json()["error"]["code"] == "NOT_FOUND"

        listed = await client.get("/v1/media", headers=outsider)
        assert listed.status_code == 200
        assert all(item["id"] != created["id"] for item in listed.json()["data"])

        # Filtering by a tenant the caller does not belong to is refused outright.
        filtered = await client.get(f"/v1/media?tenant_id={tenant_a}", headers=outsider)
        assert filtered.status_code == 403

        visible = await client.get(f"/v1/media/{created['id']}", headers=admin)
        assert visible.status_code == 200

        denied_upload = await client.post(
            "/v1/media",
            headers=outsider,
            data={"tenant_id": tenant_a},
            files={"file": ("x.txt", b"x", "text/plain")},
        )
        assert denied_upload.status_code == 403


async def test_media_soft_delete_and_restore() -> None:
    tenant_id = await create_test_tenant()
    owner = await create_test_user("owner@example.com", tenants={tenant_id: "author"})
    reader = await create_test_user("reader@example.com", tenants={tenant_id: "subscriber"})
    tenant_admin = await create_test_user("lead@example.com", tenants={tenant_id: "tenant"})
    system_admin = await create_test_user("root@example.com", credential_role="admin")

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await _upload(client, owner, tenant_id)
        media_id = created["id"]

        forbidden = await client.delete(f"/v1/media/{media_id}", headers=reader)
        assert forbidden.status_code == 403

        deleted = await client.delete(f"/v1/media/{media_id}", headers=owner)
        assert deleted.status_code == 200
        assert deleted.json()["data"]["is_deleted"] is True

        gone = await client.get(f"/v1/media/{media_id}/download", headers=owner)
        assert gone.status_code == 404

        restored = await client.post(f"/v1/media/{media_id}/restore", headers=tenant_admin)
        assert restored.status_code == 200
        assert restored.json()["data"]["is_deleted"] is False

        # Purging is reserved for system admins.
        refused = await client.delete(f"/v1/media/{media_id}/hard", headers=tenant_admin)
        assert refused.status_code == 403

        purged = await client.delete(f"/v1/media/{media_id}/hard", headers=system_admin)
        assert purged.status_code == 200
        assert purged.json()["data"] == {"id": media_id, "deleted": True}
        assert (await client.get(f"/v1/media/{media_id}", headers=system_admin)).status_code == 404
