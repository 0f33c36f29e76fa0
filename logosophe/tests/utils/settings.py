from __future__ import annotations

from logosophe.persistence.db import SessionLocal
from logosophe.persistence.repos import settings as settings_repo


async def set_system_setting(key: str, value: str) -> None:
    # Runtime-tunable settings live in the system_settings table.
    async with SessionLocal() as session:
        await settings_repo.upsert_value(session, key=key, value=value, updated_by="test")
        await session.commit()
