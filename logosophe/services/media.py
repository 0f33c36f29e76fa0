from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import hmac
import logging
import secrets
from pathlib import PurePath
from uuid import uuid4

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.core.errors import StorageError
from logosophe.domain.models import MediaAccess, MediaFile, MediaShareLink
from logosophe.persistence.db import unit_of_work
from logosophe.persistence.repos import media as media_repo
from logosophe.persistence.repos import tenants as tenants_repo
from logosophe.services.access import AccessContext, authorize, ensure_allowed, forbidden
from logosophe.services.storage import ObjectStore


logger = logging.getLogger(__name__)

_PASSWORD_ITERATIONS = 200_000


@dataclass(frozen=True)
class MediaView:
    media: MediaFile
    tenant_ids: list[str]


def _not_found(message: str = "Media not found") -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": message})


def media_type_for(content_type: str) -> str:
    major = (content_type or "").split("/", 1)[0].lower()
    if major in {"image", "video", "audio"}:
        return major
    return "document"


def _safe_file_name(file_name: str | None) -> str:
    # Keep only the final path component; clients sometimes send full paths.
    name = PurePath((file_name or "").replace("\\", "/")).name.strip()
    return name or "upload.bin"


def hash_share_password(password: str, *, salt: str | None = None) -> str:
    resolved_salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), resolved_salt.encode("utf-8"), _PASSWORD_ITERATIONS
    ).hex()
    return f"pbkdf2_sha256${_PASSWORD_ITERATIONS}${resolved_salt}${digest}"


def verify_share_password(password: str | None, password_hash: str | None) -> bool:
    if password_hash is None:
        return True
    if not password:
        return False
    try:
        _scheme, iterations, salt, expected = password_hash.split("$")
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), int(iterations)
    ).hex()
    return hmac.compare_digest(digest, expected)


def _can_see(ctx: AccessContext, media: MediaFile, tenant_ids: list[str]) -> bool:
    if ctx.is_system_admin or media.uploaded_by == ctx.email:
        return True
    return any(ctx.is_member(tenant_id) for tenant_id in tenant_ids)


def _is_admin_for_any(ctx: AccessContext, tenant_ids: list[str]) -> bool:
    return any(ctx.is_tenant_admin_for(tenant_id) for tenant_id in tenant_ids)


async def upload_media(
    db: AsyncSession,
    store: ObjectStore,
    ctx: AccessContext,
    *,
    tenant_id: str,
    file_name: str | None,
    content_type: str | None,
    data: bytes,
    description: str | None = None,
) -> MediaView:
    if await tenants_repo.get_tenant(db, tenant_id) is None:
        # A tenant the caller cannot see is reported the same as one they cannot use.
        raise forbidden("Not a member of this tenant")
    ensure_allowed(authorize(ctx, tenant_id=tenant_id, allow_members=True), "Not a member of this tenant")
    media_id = uuid4().hex
    name = _safe_file_name(file_name)
    resolved_type = content_type or "application/octet-stream"
    storage_key = f"{tenant_id}/{media_id}/{name}"
    store.put(storage_key, data, resolved_type)
    media = MediaFile(
        id=media_id,
        file_name=name,
        content_type=resolved_type,
        media_type=media_type_for(resolved_type),
        file_size=len(data),
        storage_key=storage_key,
        uploaded_by=ctx.email,
        description=description,
        is_deleted=False,
    )
    try:
        async with unit_of_work(db):
            db.add(media)
            await db.flush()
            db.add(
                MediaAccess(
                    id=uuid4().hex,
                    media_id=media_id,
                    tenant_id=tenant_id,
                    access_type="owner",
                    granted_by=ctx.email,
                )
            )
    except Exception:
        # Do not leave an orphaned object when the metadata insert fails.
        store.delete(storage_key)
        raise
    return MediaView(media=media, tenant_ids=[tenant_id])


async def list_media_for_user(
    db: AsyncSession,
    ctx: AccessContext,
    *,
    tenant_id: str | None = None,
    include_deleted: bool = False,
    media_type: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[tuple[MediaFile, str]]:
    # The client tenant is a filter hint; visibility always comes from memberships.
    if tenant_id is not None and not ctx.is_system_admin and not ctx.is_member(tenant_id):
        raise forbidden("Not a member of this tenant")
    if ctx.is_system_admin:
        scope = None if tenant_id is None else [tenant_id]
    elif include_deleted:
        admin_ids = ctx.admin_tenant_ids()
        scope = [t for t in admin_ids if tenant_id is None or t == tenant_id]
    else:
        scope = [tenant_id] if tenant_id is not None else ctx.tenant_ids
    return await media_repo.list_media(
        db,
        tenant_ids=scope,
        include_deleted=include_deleted,
        media_type=media_type,
        offset=offset,
        limit=limit,
    )


async def get_media_for_user(
    db: AsyncSession,
    ctx: AccessContext,
    media_id: str,
    *,
    include_deleted: bool = False,
) -> MediaView:
    media = await media_repo.get_media(db, media_id)
    if media is None:
        raise _not_found()
    tenant_ids = await media_repo.list_media_tenants(db, media_id)
    if not _can_see(ctx, media, tenant_ids):
        raise _not_found()
    if media.is_deleted and not (include_deleted and _is_admin_for_any(ctx, tenant_ids)):
        raise _not_found()
    return MediaView(media=media, tenant_ids=tenant_ids)


async def soft_delete_media(db: AsyncSession, ctx: AccessContext, media_id: str) -> MediaView:
    view = await get_media_for_user(db, ctx, media_id)
    if not (view.media.uploaded_by == ctx.email or _is_admin_for_any(ctx, view.tenant_ids)):
        raise forbidden("Only the uploader or a tenant admin can delete this file")
    now = datetime.now(timezone.utc)
    async with unit_of_work(db):
        await media_repo.set_deleted(db, media_id=media_id, deleted=True, actor_email=ctx.email, at=now)
    await db.refresh(view.media)
    return view


async def restore_media(db: AsyncSession, ctx: AccessContext, media_id: str) -> MediaView:
    view = await get_media_for_user(db, ctx, media_id, include_deleted=True)
    if not _is_admin_for_any(ctx, view.tenant_ids):
        raise forbidden("Tenant admin access required")
    if not view.media.is_deleted:
        raise HTTPException(
            status_code=400,
            detail={"code": "MEDIA_NOT_DELETED", "message": "Media is not deleted"},
        )
    now = datetime.now(timezone.utc)
    async with unit_of_work(db):
        await media_repo.set_deleted(db, media_id=media_id, deleted=False, actor_email=None, at=now)
    await db.refresh(view.media)
    return view


async def hard_delete_media(
    db: AsyncSession,
    store: ObjectStore,
    ctx: AccessContext,
    media_id: str,
) -> MediaFile:
    if not ctx.is_system_admin:
        raise forbidden("System admin access required")
    media = await media_repo.get_media(db, media_id)
    if media is None:
        raise _not_found()
    async with unit_of_work(db):
        await media_repo.hard_delete(db, media_id)
    try:
        store.delete(media.storage_key)
    except StorageError as exc:
        # Metadata is gone; an orphaned object only costs space.
        logger.warning("media_object_delete_failed media_id=%s key=%s", media_id, media.storage_key, exc_info=exc)
    return media


async def create_share_link(
    db: AsyncSession,
    ctx: AccessContext,
    media_id: str,
    *,
    expires_in_days: int | None,
    max_accesses: int | None,
    password: str | None,
) -> MediaShareLink:
    view = await get_media_for_user(db, ctx, media_id)
    owning = [tenant_id for tenant_id in view.tenant_ids if ctx.is_member(tenant_id)]
    if not owning and not ctx.is_system_admin:
        raise forbidden("Only members of the owning tenant can share this file")
    if not owning and not view.tenant_ids:
        raise _not_found()
    link_tenant = owning[0] if owning else view.tenant_ids[0]
    expires_at = None
    if expires_in_days is not None:
        expires_at = datetime.now(timezone.utc) + timedelta(days=expires_in_days)
    link = MediaShareLink(
        id=uuid4().hex,
        media_id=media_id,
        share_token=str(uuid4()),
        created_by=ctx.email,
        tenant_id=link_tenant,
        expires_at=expires_at,
        max_accesses=max_accesses,
        access_count=0,
        password_hash=hash_share_password(password) if password else None,
    )
    async with unit_of_work(db):
        db.add(link)
    return link


async def list_share_links(db: AsyncSession, ctx: AccessContext, media_id: str) -> list[MediaShareLink]:
    await get_media_for_user(db, ctx, media_id)
    return await media_repo.list_share_links(db, media_id)


async def revoke_share_link(db: AsyncSession, ctx: AccessContext, link_id: str) -> MediaShareLink:
    link = await media_repo.get_share_link(db, link_id)
    if link is None:
        raise _not_found("Share link not found")
    if not (link.created_by == ctx.email or ctx.is_member(link.tenant_id) or ctx.is_system_admin):
        raise _not_found("Share link not found")
    ensure_allowed(
        authorize(ctx, tenant_id=link.tenant_id, owner_email=link.created_by),
        "Only the creator or a tenant admin can revoke this link",
    )
    async with unit_of_work(db):
        await media_repo.delete_share_link(db, link_id)
    return link


def _share_not_found() -> HTTPException:
    # Expired, exhausted, and unknown tokens are indistinguishable.
    return HTTPException(
        status_code=404,
        detail={"code": "NOT_FOUND", "message": "Share link not found or expired"},
        headers={"Cache-Control": "no-store"},
    )


async def resolve_share_link(
    db: AsyncSession,
    token: str,
    *,
    password: str | None,
) -> tuple[MediaShareLink, MediaFile]:
    now = datetime.now(timezone.utc)
    link = await media_repo.get_live_share_link(db, token, now=now)
    if link is None:
        raise _share_not_found()
    media = await media_repo.get_media(db, link.media_id)
    if media is None or media.is_deleted:
        raise _share_not_found()
    if not verify_share_password(password, link.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "SHARE_PASSWORD_REQUIRED", "message": "A valid share password is required"},
            headers={"Cache-Control": "no-store"},
        )
    return link, media


async def consume_share_link(
    db: AsyncSession,
    token: str,
    *,
    password: str | None,
) -> tuple[MediaShareLink, MediaFile]:
    # Gate and password first, then spend one access with the conditional update.
    link, media = await resolve_share_link(db, token, password=password)
    async with unit_of_work(db):
        consumed = await media_repo.consume_share_link(db, token, now=datetime.now(timezone.utc))
    if not consumed:
        raise _share_not_found()
    await db.refresh(link)
    return link, media
