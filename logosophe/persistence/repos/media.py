from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.domain.models import MediaAccess, MediaFile, MediaShareLink
from logosophe.persistence.guards import tenant_in


async def list_media(
    session: AsyncSession,
    *,
    tenant_ids: list[str] | None,
    include_deleted: bool = False,
    media_type: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[tuple[MediaFile, str]]:
    # tenant_ids=None is the unrestricted admin view; otherwise an IN list over memberships.
    stmt = select(MediaFile, MediaAccess.tenant_id).join(MediaAccess, MediaAccess.media_id == MediaFile.id)
    if tenant_ids is not None:
        stmt = stmt.where(tenant_in(MediaAccess, tenant_ids))
    if not include_deleted:
        stmt = stmt.where(MediaFile.is_deleted.is_(False))
    if media_type:
        stmt = stmt.where(MediaFile.media_type == media_type)
    stmt = stmt.order_by(MediaFile.created_at.desc(), MediaFile.id.asc(), MediaAccess.tenant_id.asc())
    stmt = stmt.offset(offset).limit(limit)
    result = await session.execute(stmt)
    return [(media, tenant_id) for media, tenant_id in result.all()]


async def get_media(session: AsyncSession, media_id: str) -> MediaFile | None:
    return await session.get(MediaFile, media_id)


async def list_media_tenants(session: AsyncSession, media_id: str) -> list[str]:
    result = await session.execute(
        select(MediaAccess.tenant_id)
        .where(MediaAccess.media_id == media_id)
        .order_by(MediaAccess.tenant_id.asc())
    )
    return list(result.scalars().all())


async def set_deleted(
    session: AsyncSession,
    *,
    media_id: str,
    deleted: bool,
    actor_email: str | None,
    at: datetime,
) -> int:
    result = await session.execute(
        update(MediaFile)
        .where(MediaFile.id == media_id, MediaFile.is_deleted.is_(not deleted))
        .values(
            is_deleted=deleted,
            deleted_at=at if deleted else None,
            deleted_by=actor_email if deleted else None,
            updated_at=at,
        )
    )
    return result.rowcount or 0


async def hard_delete(session: AsyncSession, media_id: str) -> None:
    # Caller wraps this in a unit of work; children go first.
    await session.execute(delete(MediaShareLink).where(MediaShareLink.media_id == media_id))
    await session.execute(delete(MediaAccess).where(MediaAccess.media_id == media_id))
    await session.execute(delete(MediaFile).where(MediaFile.id == media_id))


async def list_share_links(session: AsyncSession, media_id: str) -> list[MediaShareLink]:
    result = await session.execute(
        select(MediaShareLink)
        .where(MediaShareLink.media_id == media_id)
        .order_by(MediaShareLink.created_at.desc(), MediaShareLink.id.asc())
    )
    return list(result.scalars().all())


async def get_share_link(session: AsyncSession, link_id: str) -> MediaShareLink | None:
    return await session.get(MediaShareLink, link_id)


def _link_is_live(now: datetime):
    return (
        or_(MediaShareLink.expires_at.is_(None), MediaShareLink.expires_at > now),
        or_(
            MediaShareLink.max_accesses.is_(None),
            MediaShareLink.access_count < MediaShareLink.max_accesses,
        ),
    )


async def get_live_share_link(session: AsyncSession, token: str, *, now: datetime) -> MediaShareLink | None:
    result = await session.execute(
        select(MediaShareLink).where(MediaShareLink.share_token == token, *_link_is_live(now))
    )
    return result.scalar_one_or_none()


async def consume_share_link(session: AsyncSession, token: str, *, now: datetime) -> bool:
    # Check and increment in one statement so concurrent requests cannot exceed the limit.
    result = await session.execute(
        update(MediaShareLink)
        .where(MediaShareLink.share_token == token, *_link_is_live(now))
        .values(access_count=MediaShareLink.access_count + 1)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1


async def delete_share_link(session: AsyncSession, link_id: str) -> int:
    result = await session.execute(delete(MediaShareLink).where(MediaShareLink.id == link_id))
    return result.rowcount or 0
