from __future__ import annotations

import csv
from datetime import datetime, timedelta, timezone
import gzip
import io

from httpx import ASGITransport, AsyncClient

from logosophe.apps.api.main import create_app
from logosophe.domain.models import SystemLog
from logosophe.persistence.db import SessionLocal
from logosophe.tests.utils.auth import create_test_user


async def _seed_logs(*rows: tuple[str, int]) -> None:
    # (activity_type, age in days)
    now = datetime.now(timezone.utc)
    async with SessionLocal() as session:
        for activity_type, age_days in rows:
            session.add(
                SystemLog(
                    log_type="activity",
                    activity_type=activity_type,
                    user_email="writer@example.com",
                    timestamp=now - timedelta(days=age_days),
                    metadata_json={"seeded": True},
                    is_deleted=False,
                )
            )
        await session.commit()


async def test_log_listing_filters_and_paginates() -> None:
    admin = await create_test_user("root@example.com", credential_role="admin")
    await _seed_logs(("upload", 1), ("upload", 2), ("view", 3))

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        page = await client.get("/v1/logs?activity_type=upload&limit=1", headers=admin)
        assert page.status_code == 200
        body = page.json()["data"]
        assert body["total"] == 2
        assert body["has_more"] is True
        assert len(body["items"]) == 1

        ascending = await client.get(
            "/v1/logs?user_email=writer@example.com&sort_by=timestamp&sort_order=asc", headers=admin
        )
        assert [row["activity_type"] for row in ascending.json()["data"]["items"]] == ["view", "upload", "upload"]

        searched = await client.get("/v1/logs?search=vie", headers=admin)
        assert [row["activity_type"] for row in searched.json()["data"]["items"]] == ["view"]

        bad_sort = await client.get("/v1/logs?sort_by=password", headers=admin)
        assert bad_sort.status_code == 400
        assert bad_sort.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_settings_round_trip_and_validation() -> None:
    admin = await create_test_user("root@example.com", credential_role="admin")

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        defaults = await client.get("/v1/logs/settings", headers=admin)
        assert defaults.json()["data"] == {
            "retention_days": 90,
            "archive_enabled": True,
            "hard_delete_delay_days": 7,
            "cron_schedule": "0 2 * * *",
        }

        updated = await client.put("/v1/logs/settings", headers=admin, json={"retention_days": 30})
        assert updated.status_code == 200
        assert updated.json()["data"]["retention_days"] == 30

        invalid = await client.put("/v1/logs/settings", headers=admin, json={"retention_days": 0})
        assert invalid.status_code == 400
        error = invalid.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["field"] == "retention_days"

        unknown = await client.put("/v1/logs/settings", headers=admin, json={"retention": 5})
        assert unknown.status_code == 400

        assert (await client.get("/v1/logs/settings", headers=admin)).json()["data"]["retention_days"] == 30


async def test_archive_now_then_export() -> None:
    admin = await create_test_user("root@example.com", credential_role="admin")
    await _seed_logs(("ancient", 200), ("recent", 1))

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        empty_export = await client.post("/v1/logs/archived/export", headers=admin)
        assert empty_export.status_code == 404

        archived = await client.post("/v1/logs/archive-now", headers=admin)
        assert archived.status_code == 200
        summary = archived.json()["data"]
        assert summary["success"] is True
        assert summary["archive"]["count"] == 1
        assert summary["processed"] == 1

        archived_page = await client.get("/v1/logs/archived", headers=admin)
        assert [row["activity_type"] for row in archived_page.json()["data"]["items"]] == ["ancient"]
        active_page = await client.get("/v1/logs?activity_type=ancient", headers=admin)
        assert active_page.json()["data"]["total"] == 0

        stats = await client.get("/v1/logs/stats", headers=admin)
        assert stats.json()["data"]["archived"] == 1

        export = await client.post("/v1/logs/archived/export", headers=admin)
        assert export.status_code == 200
        assert export.headers["content-type"] == "application/gzip"
        assert ".csv.gz" in export.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(gzip.decompress(export.content).decode("utf-8"))))
        assert rows[0][:3] == ["Id", "LogType", "Timestamp"]
        assert [row[6] for row in rows[1:]] == ["ancient"]


async def test_archive_now_respects_disabled_setting() -> None:
    admin = await create_test_user("root@example.com", credential_role="admin")
    await _seed_logs(("ancient", 200))

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.put("/v1/logs/settings", headers=admin, json={"archive_enabled": False})
        response = await client.post("/v1/logs/archive-now", headers=admin)
    assert response.status_code == 200
    assert response.json()["data"]["success"] is False
    assert response.json()["data"]["processed"] == 0
