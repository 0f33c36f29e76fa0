from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.apps.api.deps import get_db, get_log_writer, require_system_admin
from logosophe.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from logosophe.apps.api.response import Page, SuccessEnvelope, success_response
from logosophe.core.errors import SettingsValidationError
from logosophe.persistence.repos import system_logs as logs_repo
from logosophe.persistence.repos.system_logs import LogQuery
from logosophe.services.access import AccessContext
from logosophe.services.audit import LOG_TYPE_SYSTEM, SystemLogWriter, record_activity
from logosophe.services.retention import (
    RetentionConfig,
    export_archived_csv,
    load_retention_config,
    run_retention,
    update_log_settings,
    validate_log_settings,
)


router = APIRouter(prefix="/logs", tags=["logs"], responses=DEFAULT_ERROR_RESPONSES)


class SystemLogResponse(BaseModel):
    id: int
    log_type: str
    timestamp: str
    user_email: str | None
    provider: str | None
    tenant_id: str | None
    activity_type: str | None
    access_type: str | None
    target_id: str | None
    target_name: str | None
    ip_address: str | None
    user_agent: str | None
    metadata: dict[str, Any] | None
    is_deleted: bool
    deleted_at: str | None


SystemLogPage = Page[SystemLogResponse]


class LogStatsResponse(BaseModel):
    total: int
    active: int
    archived: int
    oldest: str | None
    newest: str | None


class LogSettingsResponse(BaseModel):
    retention_days: int
    archive_enabled: bool
    hard_delete_delay_days: int
    cron_schedule: str


class LogSettingsUpdate(BaseModel):
    retention_days: int | None = Field(default=None)
    archive_enabled: bool | None = Field(default=None)
    hard_delete_delay_days: int | None = Field(default=None)
    cron_schedule: str | None = Field(default=None)

    model_config = {"extra": "forbid"}


class SweepResponse(BaseModel):
    count: int
    errors: list[str]


class ArchiveNowResponse(BaseModel):
    success: bool
    message: str
    retention_days: int
    archive: SweepResponse | None = None
    hard_delete: SweepResponse | None = None
    processed: int


def _to_response(row) -> SystemLogResponse:
    return SystemLogResponse(
        id=row.id,
        log_type=row.log_type,
        timestamp=row.timestamp.isoformat(),
        user_email=row.user_email,
        provider=row.provider,
        tenant_id=row.tenant_id,
        activity_type=row.activity_type,
        access_type=row.access_type,
        target_id=row.target_id,
        target_name=row.target_name,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        metadata=row.metadata_json,
        is_deleted=row.is_deleted,
        deleted_at=row.deleted_at.isoformat() if row.deleted_at else None,
    )


def _settings_response(config: RetentionConfig) -> LogSettingsResponse:
    return LogSettingsResponse(
        retention_days=config.retention_days,
        archive_enabled=config.archive_enabled,
        hard_delete_delay_days=config.hard_delete_delay_days,
        cron_schedule=config.cron_schedule,
    )


def _log_query(
    log_type: str | None = None,
    activity_type: str | None = None,
    start: datetime | None = Query(default=None, alias="start_date"),
    end: datetime | None = Query(default=None, alias="end_date"),
    user_email: str | None = None,
    tenant_id: str | None = None,
    target_id: str | None = None,
    ip_address: str | None = None,
    search: str | None = Query(default=None, max_length=200),
    sort_by: str = Query(
        default="timestamp",
        pattern="^(timestamp|log_type|user_email|activity_type|tenant_id|target_id|ip_address)$",
    ),
    sort_order: str = Query(default="desc", pattern="^(asc|desc)$"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
) -> LogQuery:
    return LogQuery(
        log_type=log_type,
        activity_type=activity_type,
        start=start,
        end=end,
        user_email=user_email,
        tenant_id=tenant_id,
        target_id=target_id,
        ip_address=ip_address,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        offset=offset,
        limit=limit,
    )


async def _page(db: AsyncSession, query: LogQuery, *, archived: bool) -> SystemLogPage:
    try:
        rows, total = await logs_repo.query_logs(db, query, archived=archived)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while querying logs") from exc
    return SystemLogPage.build(
        [_to_response(row) for row in rows], total=total, offset=query.offset, limit=query.limit
    )


@router.get("", response_model=SuccessEnvelope[SystemLogPage])
async def list_logs(
    request: Request,
    query: LogQuery = Depends(_log_query),
    _admin: AccessContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
) -> SystemLogPage:
    return success_response(request=request, data=await _page(db, query, archived=False))


@router.get("/archived", response_model=SuccessEnvelope[SystemLogPage])
async def list_archived_logs(
    request: Request,
    query: LogQuery = Depends(_log_query),
    _admin: AccessContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
) -> SystemLogPage:
    return success_response(request=request, data=await _page(db, query, archived=True))


@router.get("/stats", response_model=SuccessEnvelope[LogStatsResponse])
async def log_stats(
    request: Request,
    _admin: AccessContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
) -> LogStatsResponse:
    try:
        stats = await logs_repo.stats(db)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while computing log stats") from exc
    oldest: datetime | None = stats["oldest"]
    newest: datetime | None = stats["newest"]
    payload = LogStatsResponse(
        total=stats["total"],
        active=stats["active"],
        archived=stats["archived"],
        oldest=oldest.isoformat() if oldest else None,
        newest=newest.isoformat() if newest else None,
    )
    return success_response(request=request, data=payload)


@router.post("/archived/export", response_class=Response, response_model=None)
async def export_archived_logs(
    request: Request,
    admin: AccessContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> Response:
    try:
        payload = await export_archived_csv(db)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while exporting logs") from exc
    if payload is None:
        raise HTTPException(
            status_code=404, detail={"code": "NOT_FOUND", "message": "No archived logs to export"}
        )
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_SYSTEM,
        activity_type="export_archived_logs",
        user_email=admin.email,
        metadata={"bytes": len(payload)},
    )
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    return Response(
        content=payload,
        media_type="application/gzip",
        headers={"Content-Disposition": f'attachment; filename="archived-logs-{stamp}.csv.gz"'},
    )


@router.get("/settings", response_model=SuccessEnvelope[LogSettingsResponse])
async def get_log_settings(
    request: Request,
    _admin: AccessContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
) -> LogSettingsResponse:
    try:
        config = await load_retention_config(db)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while loading log settings") from exc
    return success_response(request=request, data=_settings_response(config))


@router.put("/settings", response_model=SuccessEnvelope[LogSettingsResponse])
async def put_log_settings(
    request: Request,
    payload: LogSettingsUpdate,
    admin: AccessContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> LogSettingsResponse:
    try:
        values = validate_log_settings(payload.model_dump())
    except SettingsValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "VALIDATION_ERROR", "message": str(exc), "field": exc.key},
        ) from exc
    try:
        config = await update_log_settings(db, values, updated_by=admin.email)
    except SQLAlchemyError as exc:
        await db.rollback()
        raise HTTPException(status_code=500, detail="Database error while saving log settings") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_SYSTEM,
        activity_type="update_log_settings",
        user_email=admin.email,
        metadata={"updated": values},
    )
    return success_response(request=request, data=_settings_response(config))


@router.post("/archive-now", response_model=SuccessEnvelope[ArchiveNowResponse])
async def archive_now(
    request: Request,
    admin: AccessContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> ArchiveNowResponse:
    try:
        config = await load_retention_config(db)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while loading log settings") from exc
    if not config.archive_enabled:
        payload = ArchiveNowResponse(
            success=False,
            message="Log archiving is disabled",
            retention_days=config.retention_days,
            processed=0,
        )
        return success_response(request=request, data=payload)
    summary = await run_retention(db, config)
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_SYSTEM,
        activity_type="manual_log_archive",
        user_email=admin.email,
        metadata={
            "retention_days": config.retention_days,
            "archived": summary["archive"]["count"],
            "hard_deleted": summary["hard_delete"]["count"],
        },
    )
    errors = summary["archive"]["errors"] + summary["hard_delete"]["errors"]
    payload = ArchiveNowResponse(
        success=not errors,
        message="Archive completed" if not errors else "Archive completed with errors",
        retention_days=config.retention_days,
        archive=SweepResponse(**summary["archive"]),
        hard_delete=SweepResponse(**summary["hard_delete"]),
        processed=summary["processed"],
    )
    return success_response(request=request, data=payload)
