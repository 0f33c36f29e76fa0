from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from logosophe.core.errors import SettingsValidationError
from logosophe.domain.models import SystemLog
from logosophe.persistence.db import SessionLocal
from logosophe.persistence.repos import settings as settings_repo
from logosophe.services.audit import AuditResult, SystemLogEntry
from logosophe.services.retention import (
    RetentionConfig,
    archive_sweep,
    hard_delete_sweep,
    load_retention_config,
    run_retention,
    run_scheduled_retention,
    validate_log_settings,
)


NOW = datetime(2026, 6, 1, 2, 0, tzinfo=timezone.utc)


def _config(**overrides) -> RetentionConfig:
    values = {
        "retention_days": 90,
        "archive_enabled": True,
        "hard_delete_delay_days": 7,
        "cron_schedule": "0 2 * * *",
    }
    values.update(overrides)
    return RetentionConfig(**values)


async def _seed_log(
    activity_type: str,
    *,
    age_days: float,
    archived_days_ago: float | None = None,
) -> int:
    # Timestamps are explicit so sweeps run against a fixed clock.
    row = SystemLog(
        log_type="activity",
        activity_type=activity_type,
        timestamp=NOW - timedelta(days=age_days),
        is_deleted=archived_days_ago is not None,
        deleted_at=None if archived_days_ago is None else NOW - timedelta(days=archived_days_ago),
        metadata_json={},
    )
    async with SessionLocal() as session:
        session.add(row)
        await session.commit()
        return row.id


async def _row(log_id: int) -> SystemLog | None:
    async with SessionLocal() as session:
        return (await session.execute(select(SystemLog).where(SystemLog.id == log_id))).scalar_one_or_none()


class _RecordingWriter:
    def __init__(self) -> None:
        self.entries: list[SystemLogEntry] = []

    async def write(self, entry: SystemLogEntry) -> AuditResult:
        self.entries.append(entry)
        return AuditResult(ok=True, log_id=len(self.entries))


async def test_archive_sweep_marks_only_rows_past_retention() -> None:
    # A 91-day-old row is archived; an 89-day-old row stays active.
    old_id = await _seed_log("old", age_days=91)
    recent_id = await _seed_log("recent", age_days=89)
    async with SessionLocal() as session:
        result = await archive_sweep(session, _config(), now=NOW)
    assert result.count == 1
    assert result.errors == []

    old_row = await _row(old_id)
    recent_row = await _row(recent_id)
    assert old_row.is_deleted is True
    assert old_row.deleted_at == NOW
    assert recent_row.is_deleted is False
    assert recent_row.deleted_at is None


async def test_archive_sweep_is_idempotent() -> None:
    # Already archived rows keep their original archive timestamp.
    await _seed_log("old", age_days=120)
    async with SessionLocal() as session:
        first = await archive_sweep(session, _config(), now=NOW)
        second = await archive_sweep(session, _config(), now=NOW + timedelta(hours=1))
    assert first.count == 1
    assert second.count == 0


async def test_archive_sweep_disabled_is_a_no_op() -> None:
    log_id = await _seed_log("old", age_days=365)
    async with SessionLocal() as session:
        result = await archive_sweep(session, _config(archive_enabled=False), now=NOW)
    assert result.count == 0
    assert (await _row(log_id)).is_deleted is False


async def test_hard_delete_waits_for_the_grace_delay() -> None:
    # Archived 8 days ago is removed; archived 6 days ago survives.
    expired_id = await _seed_log("expired", age_days=120, archived_days_ago=8)
    grace_id = await _seed_log("grace", age_days=120, archived_days_ago=6)
    active_id = await _seed_log("active", age_days=1)
    async with SessionLocal() as session:
        result = await hard_delete_sweep(session, _config(), now=NOW)
    assert result.count == 1
    assert await _row(expired_id) is None
    assert await _row(grace_id) is not None
    assert await _row(active_id) is not None


async def test_run_retention_summarises_both_phases() -> None:
    await _seed_log("to-archive", age_days=100)
    await _seed_log("to-purge", age_days=200, archived_days_ago=30)
    async with SessionLocal() as session:
        summary = await run_retention(session, _config(), now=NOW)
    assert summary["archive"]["count"] == 1
    assert summary["hard_delete"]["count"] == 1
    assert summary["processed"] == 2
    assert summary["config"]["retention_days"] == 90


async def test_stored_settings_override_static_defaults() -> None:
    # Settings rows win; unparseable values fall back to defaults.
    async with SessionLocal() as session:
        await settings_repo.upsert_value(session, key="log_retention_days", value="30", updated_by="test")
        await settings_repo.upsert_value(session, key="log_archive_enabled", value="false", updated_by="test")
        await settings_repo.upsert_value(session, key="log_hard_delete_delay", value="soon", updated_by="test")
        await session.commit()
        config = await load_retention_config(session)
    assert config.retention_days == 30
    assert config.archive_enabled is False
    assert config.hard_delete_delay_days == 7


async def test_scheduled_retention_writes_a_system_log() -> None:
    await _seed_log("old", age_days=100)
    writer = _RecordingWriter()
    summary = await run_scheduled_retention(now=NOW, writer=writer)
    assert summary["archive"]["count"] == 1
    assert len(writer.entries) == 1
    entry = writer.entries[0]
    assert entry.activity_type == "log_retention"
    assert entry.log_type == "system"
    assert entry.metadata["archived"] == 1


def test_validate_log_settings_normalises_values() -> None:
    normalized = validate_log_settings(
        {"retention_days": 30, "archive_enabled": False, "cron_schedule": " 0 3 * * 1 "}
    )
    assert normalized == {
        "log_retention_days": "30",
        "log_archive_enabled": "false",
        "log_archive_cron_schedule": "0 3 * * 1",
    }


@pytest.mark.parametrize(
    ("payload", "key"),
    [
        ({"retention_days": 0}, "retention_days"),
        ({"retention_days": 3651}, "retention_days"),
        ({"hard_delete_delay_days": 366}, "hard_delete_delay_days"),
        ({"cron_schedule": "daily"}, "cron_schedule"),
    ],
)
def test_validate_log_settings_rejects_out_of_range(payload: dict, key: str) -> None:
    with pytest.raises(SettingsValidationError) as exc_info:
        validate_log_settings(payload)
    assert exc_info.value.key == key
