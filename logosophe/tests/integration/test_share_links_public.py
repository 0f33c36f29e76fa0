from __future__ import annotations

from datetime import datetime, timedelta, timezone

from httpx import ASGITransport, AsyncClient
from sqlalchemy import select, update

from logosophe.apps.api.main import create_app
from logosophe.domain.models import MediaShareLink, SystemLog
from logosophe.persistence.db import SessionLocal
from logosophe.tests.utils.auth import create_test_tenant, create_test_user


PDF_BYTES = b"%PDF-1.7\n" + b"0" * 2048


async def _shared_media(client: AsyncClient, headers: dict[str, str], tenant_id: str, **share_options) -> dict:
    uploaded = await client.post(
        "/v1/media",
        headers=headers,
        data={"tenant_id": tenant_id},
        files={"file": ("chapter-one.pdf", PDF_BYTES, "application/pdf")},
    )
    assert uploaded.status_code == 201
    created = await client.post(
        f"/v1/media/{uploaded.json()['data']['id']}/shares", headers=headers, json=share_options
    )
    assert created.status_code == 201
    return created.json()["data"]


async def test_share_link_is_consumed_by_downloads_only() -> None:
    # Metadata lookups are free; each download spends one access.
    tenant_id = await create_test_tenant()
    headers = await create_test_user("author@example.com", tenants={tenant_id: "author"})

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        link = await _shared_media(client, headers, tenant_id, max_accesses=2)
        assert link["share_url"].endswith(f"/v1/share/{link['share_token']}")
        assert link["password_protected"] is False
        token = link["share_token"]

        meta = await client.get(f"/v1/share/{token}")
        assert meta.status_code == 200
        assert meta.headers["cache-control"] == "no-store"
        assert meta.json()["data"]["file_name"] == "chapter-one.pdf"
        assert meta.json()["data"]["access_count"] == 0

        for _ in range(2):
            download = await client.get(f"/v1/share/{token}/download")
            assert download.status_code == 200
            assert download.headers["cache-control"] == "no-store"
            assert download.content == PDF_BYTES

        exhausted = await client.get(f"/v1/share/{token}/download")
        assert exhausted.status_code == 404
        assert exhausted.headers["cache-control"] == "no-store"
        assert exhausted.json()["error"]["code"] == "NOT_FOUND"
        assert (await client.get(f"/v1/share/{token}")).status_code == 404

    async with SessionLocal() as session:
        rows = (
            await session.execute(select(SystemLog).where(SystemLog.activity_type == "shared_view"))
        ).scalars().all()
    assert len(rows) == 2
    assert {row.user_email for row in rows} == {"shared_access"}
    assert sorted(row.metadata_json["access_count"] for row in rows) == [1, 2]


async def test_expired_and_unknown_tokens_look_identical() -> None:
    tenant_id = await create_test_tenant()
    headers = await create_test_user("author@example.com", tenants={tenant_id: "author"})

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        link = await _shared_media(client, headers, tenant_id, expires_in_days=1)
        async with SessionLocal() as session:
            await session.execute(
                update(MediaShareLink)
                .where(MediaShareLink.id == link["id"])
                .values(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
            )
            await session.commit()

        expired = await client.get(f"/v1/share/{link['share_token']}/download")
        unknown = await client.get("/v1/share/00000000-0000-0000-0000-000000000000/download")
        assert expired.status_code == unknown.status_code == 404
        assert expired.json()["error"] == unknown.json()["error"]
        assert unknown.headers["cache-control"] == "no-store"


async def test_unsatisfiable_range_does_not_spend_an_access() -> None:
    tenant_id = await create_test_tenant()
    headers = await create_test_user("author@example.com", tenants={tenant_id: "author"})

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        link = await _shared_media(client, headers, tenant_id, max_accesses=1)
        token = link["share_token"]

        rejected = await client.get(f"/v1/share/{token}/download", headers={"Range": "bytes=999999-"})
        assert rejected.status_code == 416
        assert rejected.headers["content-range"] == f"bytes */{len(PDF_BYTES)}"

        partial = await client.get(f"/v1/share/{token}/download", headers={"Range": "bytes=0-7"})
        assert partial.status_code == 206
        assert partial.content == PDF_BYTES[:8]

        assert (await client.get(f"/v1/share/{token}/download")).status_code == 404


async def test_password_protected_share_link() -> None:
    tenant_id = await create_test_tenant()
    headers = await create_test_user("author@example.com", tenants={tenant_id: "author"})

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        link = await _shared_media(client, headers, tenant_id, password="open sesame")
        assert link["password_protected"] is True
        token = link["share_token"]

        missing = await client.get(f"/v1/share/{token}/download")
        assert missing.status_code == 401
        assert missing.json()["error"]["code"] == "SHARE_PASSWORD_REQUIRED"

        wrong = await client.get(f"/v1/share/{token}/download", headers={"X-Share-Password": "nope"})
        assert wrong.status_code == 401

        granted = await client.get(f"/v1/share/{token}/download", headers={"X-Share-Password": "open sesame"})
        assert granted.status_code == 200
        assert granted.content == PDF_BYTES


async def test_revoked_share_link_stops_resolving() -> None:
    tenant_id = await create_test_tenant()
    author = await create_test_user("author@example.com", tenants={tenant_id: "author"})
    reader = await create_test_user("reader@example.com", tenants={tenant_id: "subscriber"})

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        link = await _shared_media(client, author, tenant_id)

        listed = await client.get(f"/v1/media/{link['media_id']}/shares", headers=author)
        assert [row["id"] for row in listed.json()["data"]] == [link["id"]]

        refused = await client.delete(f"/v1/media/shares/{link['id']}", headers=reader)
        assert refused.status_code == 403

        revoked = await client.delete(f"/v1/media/shares/{link['id']}", headers=author)
        assert revoked.status_code == 200
        assert (await client.get(f"/v1/share/{link['share_token']}")).status_code == 404


async def test_signed_in_viewers_are_named_in_share_logs() -> None:
    tenant_id = await create_test_tenant()
    author = await create_test_user("author@example.com", tenants={tenant_id: "author"})
    outsider = await create_test_user("reader@example.com")

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        link = await _shared_media(client, author, tenant_id)
        token = link["share_token"]
        assert (await client.get(f"/v1/share/{token}/download", headers=outsider)).status_code == 200
        # A broken bearer header never blocks a public link.
        broken = await client.get(f"/v1/share/{token}/download", headers={"Authorization": "Bearer nope"})
        assert broken.status_code == 200

    async with SessionLocal() as session:
        rows = (
            await session.execute(
                select(SystemLog)
                .where(SystemLog.activity_type == "shared_view")
                .order_by(SystemLog.timestamp.asc(), SystemLog.id.asc())
            )
        ).scalars().all()
    assert sorted(row.user_email for row in rows) == ["reader@example.com", "shared_access"]
