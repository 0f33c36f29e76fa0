from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.domain.models import SystemSetting


async def get_values(session: AsyncSession, keys: list[str]) -> dict[str, str]:
    if not keys:
        return {}
    result = await session.execute(select(SystemSetting).where(SystemSetting.key.in_(keys)))
    return {row.key: row.value for row in result.scalars().all()}


async def upsert_value(session: AsyncSession, *, key: str, value: str, updated_by: str | None) -> SystemSetting:
    row = await session.get(SystemSetting, key)
    now = datetime.now(timezone.utc)
    if row is None:
        row = SystemSetting(key=key, value=value, updated_at=now, updated_by=updated_by)
        session.add(row)
    else:
        row.value = value
        row.updated_at = now
        row.updated_by = updated_by
    await session.flush()
    return row
