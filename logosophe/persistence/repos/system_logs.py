from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.domain.models import SystemLog


SORT_FIELDS = {
    "timestamp": SystemLog.timestamp,
    "log_type": SystemLog.log_type,
    "user_email": SystemLog.user_email,
    "activity_type": SystemLog.activity_type,
    "tenant_id": SystemLog.tenant_id,
    "target_id": SystemLog.target_id,
    "ip_address": SystemLog.ip_address,
}


@dataclass(frozen=True)
class LogQuery:
    log_type: str | None = None
    activity_type: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    user_email: str | None = None
    tenant_id: str | None = None
    target_id: str | None = None
    ip_address: str | None = None
    search: str | None = None
    sort_by: str = "timestamp"
    sort_order: str = "desc"
    offset: int = 0
    limit: int = 100


def _filters(query: LogQuery, *, archived: bool) -> list:
    predicates = [SystemLog.is_deleted.is_(archived)]
    if query.log_type:
        predicates.append(SystemLog.log_type == query.log_type)
    if query.activity_type:
        predicates.append(SystemLog.activity_type == query.activity_type)
    if query.start:
        predicates.append(SystemLog.timestamp >= query.start)
    if query.end:
        predicates.append(SystemLog.timestamp <= query.end)
    if query.user_email:
        predicates.append(SystemLog.user_email == query.user_email)
    if query.tenant_id:
        predicates.append(SystemLog.tenant_id == query.tenant_id)
    if query.target_id:
        predicates.append(SystemLog.target_id == query.target_id)
    if query.ip_address:
        predicates.append(SystemLog.ip_address == query.ip_address)
    if query.search:
        pattern = f"%{query.search}%"
        predicates.append(
            or_(
                SystemLog.target_name.ilike(pattern),
                SystemLog.user_email.ilike(pattern),
                SystemLog.activity_type.ilike(pattern),
                SystemLog.target_id.ilike(pattern),
            )
        )
    return predicates


async def query_logs(session: AsyncSession, query: LogQuery, *, archived: bool = False) -> tuple[list[SystemLog], int]:
    predicates = _filters(query, archived=archived)
    total = await session.execute(select(func.count()).select_from(SystemLog).where(*predicates))
    column = SORT_FIELDS.get(query.sort_by, SystemLog.timestamp)
    ordering = column.asc() if query.sort_order.lower() == "asc" else column.desc()
    stmt = (
        select(SystemLog)
        .where(*predicates)
        .order_by(ordering, SystemLog.id.desc())
        .offset(query.offset)
        .limit(query.limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all()), int(total.scalar() or 0)


async def stats(session: AsyncSession) -> dict[str, object]:
    result = await session.execute(
        select(
            func.count(SystemLog.id),
            func.count(SystemLog.id).filter(SystemLog.is_deleted.is_(False)),
            func.count(SystemLog.id).filter(SystemLog.is_deleted.is_(True)),
            func.min(SystemLog.timestamp),
            func.max(SystemLog.timestamp),
        )
    )
    total, active, archived, oldest, newest = result.one()
    return {
        "total": int(total or 0),
        "active": int(active or 0),
        "archived": int(archived or 0),
        "oldest": oldest,
        "newest": newest,
    }


async def list_all_archived(session: AsyncSession) -> list[SystemLog]:
    result = await session.execute(
        select(SystemLog).where(SystemLog.is_deleted.is_(True)).order_by(SystemLog.timestamp.asc(), SystemLog.id.asc())
    )
    return list(result.scalars().all())


async def archive_before(session: AsyncSession, *, cutoff: datetime, now: datetime) -> int:
    # Idempotent: rows already marked are excluded by is_deleted.
    result = await session.execute(
        update(SystemLog)
        .where(SystemLog.is_deleted.is_(False), SystemLog.timestamp < cutoff)
        .values(is_deleted=True, deleted_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def hard_delete_marked_before(session: AsyncSession, *, cutoff: datetime) -> int:
    result = await session.execute(
        delete(SystemLog)
        .where(SystemLog.is_deleted.is_(True), SystemLog.deleted_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
