from __future__ import annotations

import csv
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
import gzip
import io
import json
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.core.config import get_settings
from logosophe.core.errors import SettingsValidationError
from logosophe.domain.models import SystemLog
from logosophe.persistence.db import SessionLocal
from logosophe.persistence.repos import settings as settings_repo
from logosophe.persistence.repos import system_logs as logs_repo
from logosophe.services.audit import (
    LOG_TYPE_SYSTEM,
    SystemLogEntry,
    SystemLogWriter,
    get_default_writer,
)


logger = logging.getLogger(__name__)

SETTING_RETENTION_DAYS = "log_retention_days"
SETTING_ARCHIVE_ENABLED = "log_archive_enabled"
SETTING_HARD_DELETE_DELAY = "log_hard_delete_delay"
SETTING_CRON_SCHEDULE = "log_archive_cron_schedule"
LOG_SETTING_KEYS = [
    SETTING_RETENTION_DAYS,
    SETTING_ARCHIVE_ENABLED,
    SETTING_HARD_DELETE_DELAY,
    SETTING_CRON_SCHEDULE,
]

EXPORT_COLUMNS = [
    "Id",
    "LogType",
    "Timestamp",
    "UserEmail",
    "Provider",
    "TenantId",
    "ActivityType",
    "AccessType",
    "TargetId",
    "TargetName",
    "IpAddress",
    "UserAgent",
    "Metadata",
    "IsDeleted",
    "DeletedAt",
]


@dataclass(frozen=True)
class RetentionConfig:
    retention_days: int = 90
    archive_enabled: bool = True
    hard_delete_delay_days: int = 7
    cron_schedule: str = "0 2 * * *"


@dataclass
class SweepResult:
    count: int = 0
    errors: list[str] = field(default_factory=list)


def _parse_int(value: str | None, default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() == "true"


async def load_retention_config(db: AsyncSession) -> RetentionConfig:
    # Settings rows win; absent or unparseable keys fall back to static defaults.
    settings = get_settings()
    values = await settings_repo.get_values(db, LOG_SETTING_KEYS)
    return RetentionConfig(
        retention_days=_parse_int(values.get(SETTING_RETENTION_DAYS), settings.log_retention_days),
        archive_enabled=_parse_bool(values.get(SETTING_ARCHIVE_ENABLED), settings.log_archive_enabled),
        hard_delete_delay_days=_parse_int(
            values.get(SETTING_HARD_DELETE_DELAY), settings.log_hard_delete_delay_days
        ),
        cron_schedule=values.get(SETTING_CRON_SCHEDULE) or settings.log_archive_cron_schedule,
    )


def validate_log_settings(payload: dict[str, Any]) -> dict[str, str]:
    """Validate a partial settings update and return stringified values."""
    normalized: dict[str, str] = {}
    if payload.get("retention_days") is not None:
        days = int(payload["retention_days"])
        if not 1 <= days <= 3650:
            raise SettingsValidationError("retention_days", "retention_days must be between 1 and 3650")
        normalized[SETTING_RETENTION_DAYS] = str(days)
    if payload.get("hard_delete_delay_days") is not None:
        delay = int(payload["hard_delete_delay_days"])
        if not 1 <= delay <= 365:
            raise SettingsValidationError(
                "hard_delete_delay_days", "hard_delete_delay_days must be between 1 and 365"
            )
        normalized[SETTING_HARD_DELETE_DELAY] = str(delay)
    if payload.get("archive_enabled") is not None:
        normalized[SETTING_ARCHIVE_ENABLED] = "true" if payload["archive_enabled"] else "false"
    if payload.get("cron_schedule") is not None:
        schedule = str(payload["cron_schedule"]).strip()
        if len(schedule.split()) != 5:
            raise SettingsValidationError("cron_schedule", "cron_schedule must have five fields")
        normalized[SETTING_CRON_SCHEDULE] = schedule
    return normalized


async def update_log_settings(db: AsyncSession, values: dict[str, str], *, updated_by: str) -> RetentionConfig:
    for key, value in values.items():
        await settings_repo.upsert_value(db, key=key, value=value, updated_by=updated_by)
    await db.commit()
    return await load_retention_config(db)


async def archive_sweep(db: AsyncSession, config: RetentionConfig, *, now: datetime | None = None) -> SweepResult:
    # Soft-delete rows older than the retention window; disabled config is a no-op.
    if not config.archive_enabled:
        return SweepResult()
    resolved_now = now or datetime.now(timezone.utc)
    cutoff = resolved_now - timedelta(days=config.retention_days)
    try:
        count = await logs_repo.archive_before(db, cutoff=cutoff, now=resolved_now)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("log_archive_sweep_failed retention_days=%s", config.retention_days, exc_info=exc)
        return SweepResult(errors=[f"archive sweep failed: {exc.__class__.__name__}"])
    return SweepResult(count=count)


async def hard_delete_sweep(db: AsyncSession, config: RetentionConfig, *, now: datetime | None = None) -> SweepResult:
    # Physically remove rows whose archive mark is older than the grace delay.
    resolved_now = now or datetime.now(timezone.utc)
    cutoff = resolved_now - timedelta(days=config.hard_delete_delay_days)
    try:
        count = await logs_repo.hard_delete_marked_before(db, cutoff=cutoff)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error(
            "log_hard_delete_sweep_failed delay_days=%s", config.hard_delete_delay_days, exc_info=exc
        )
        return SweepResult(errors=[f"hard delete sweep failed: {exc.__class__.__name__}"])
    return SweepResult(count=count)


async def run_retention(db: AsyncSession, config: RetentionConfig, *, now: datetime | None = None) -> dict[str, Any]:
    archived = await archive_sweep(db, config, now=now)
    hard_deleted = await hard_delete_sweep(db, config, now=now)
    return {
        "config": asdict(config),
        "archive": asdict(archived),
        "hard_delete": asdict(hard_deleted),
        "processed": archived.count + hard_deleted.count,
    }


async def run_scheduled_retention(
    *,
    now: datetime | None = None,
    session_factory=SessionLocal,
    writer: SystemLogWriter | None = None,
) -> dict[str, Any]:
    """Entry point for the external scheduler; returns a summary dict."""
    async with session_factory() as db:
        config = await load_retention_config(db)
        summary = await run_retention(db, config, now=now)
    await (writer or get_default_writer()).write(
        SystemLogEntry(
            log_type=LOG_TYPE_SYSTEM,
            activity_type="log_retention",
            user_email="system",
            metadata={
                "archived": summary["archive"]["count"],
                "hard_deleted": summary["hard_delete"]["count"],
                "errors": summary["archive"]["errors"] + summary["hard_delete"]["errors"],
            },
        )
    )
    logger.info(
        "log_retention_completed archived=%s hard_deleted=%s",
        summary["archive"]["count"],
        summary["hard_delete"]["count"],
    )
    return summary


async def export_archived_csv(db: AsyncSession) -> bytes | None:
    # Gzip-compressed CSV of every archived row; None when there is nothing to export.
    rows = await logs_repo.list_all_archived(db)
    if not rows:
        return None
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    for row in rows:
        writer.writerow(_export_row(row))
    return gzip.compress(buffer.getvalue().encode("utf-8"))


def _export_row(row: SystemLog) -> list[Any]:
    return [
        row.id,
        row.log_type,
        row.timestamp.isoformat() if row.timestamp else "",
        row.user_email or "",
        row.provider or "",
        row.tenant_id or "",
        row.activity_type or "",
        row.access_type or "",
        row.target_id or "",
        row.target_name or "",
        row.ip_address or "",
        row.user_agent or "",
        json.dumps(row.metadata_json or {}, sort_keys=True),
        1 if row.is_deleted else 0,
        row.deleted_at.isoformat() if row.deleted_at else "",
    ]
