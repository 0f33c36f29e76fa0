from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, Response, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.apps.api.deps import get_current_user, get_db, get_log_writer, get_store
from logosophe.apps.api.openapi import DEFAULT_ERROR_RESPONSES, RANGE_ERROR_RESPONSES
from logosophe.apps.api.response import SuccessEnvelope, success_response
from logosophe.apps.api.streaming import build_object_response
from logosophe.core.config import get_settings
from logosophe.core.errors import StorageError
from logosophe.services import media as media_service
from logosophe.services.access import AccessContext
from logosophe.services.audit import LOG_TYPE_MEDIA_ACCESS, SystemLogWriter, record_activity
from logosophe.services.storage import ObjectStore


router = APIRouter(prefix="/media", tags=["media"], responses=DEFAULT_ERROR_RESPONSES)


class MediaResponse(BaseModel):
    id: str
    file_name: str
    content_type: str
    media_type: str
    file_size: int
    uploaded_by: str
    description: str | None
    tenant_ids: list[str]
    is_deleted: bool
    deleted_at: str | None
    created_at: str


class MediaListItem(BaseModel):
    id: str
    tenant_id: str
    file_name: str
    content_type: str
    media_type: str
    file_size: int
    uploaded_by: str
    is_deleted: bool
    created_at: str


class ShareLinkCreateRequest(BaseModel):
    expires_in_days: int | None = Field(default=None, ge=1, le=365)
    max_accesses: int | None = Field(default=None, ge=1)
    password: str | None = Field(default=None, min_length=1, max_length=200)

    model_config = {"extra": "forbid"}


class ShareLinkResponse(BaseModel):
    id: str
    media_id: str
    share_token: str
    share_url: str
    created_by: str
    tenant_id: str
    expires_at: str | None
    max_accesses: int | None
    access_count: int
    password_protected: bool
    created_at: str


class DeletedResponse(BaseModel):
    id: str
    deleted: bool


def _to_response(view: media_service.MediaView) -> MediaResponse:
    media = view.media
    return MediaResponse(
        id=media.id,
        file_name=media.file_name,
        content_type=media.content_type,
        media_type=media.media_type,
        file_size=media.file_size,
        uploaded_by=media.uploaded_by,
        description=media.description,
        tenant_ids=view.tenant_ids,
        is_deleted=media.is_deleted,
        deleted_at=media.deleted_at.isoformat() if media.deleted_at else None,
        created_at=media.created_at.isoformat(),
    )


def share_link_response(link) -> ShareLinkResponse:
    base_url = get_settings().public_base_url.rstrip("/")
    return ShareLinkResponse(
        id=link.id,
        media_id=link.media_id,
        share_token=link.share_token,
        share_url=f"{base_url}/v1/share/{link.share_token}",
        created_by=link.created_by,
        tenant_id=link.tenant_id,
        expires_at=link.expires_at.isoformat() if link.expires_at else None,
        max_accesses=link.max_accesses,
        access_count=link.access_count,
        password_protected=link.password_hash is not None,
        created_at=link.created_at.isoformat(),
    )


async def _read_upload(file: UploadFile) -> bytes:
    limit = get_settings().media_max_upload_bytes
    data = await file.read(limit + 1)
    if len(data) > limit:
        raise HTTPException(
            status_code=413,
            detail={"code": "PAYLOAD_TOO_LARGE", "message": f"File exceeds {limit} bytes"},
        )
    return data


@router.post("", status_code=201, response_model=SuccessEnvelope[MediaResponse])
async def upload_media(
    request: Request,
    tenant_id: str = Form(..., min_length=1),
    description: str | None = Form(default=None),
    file: UploadFile = File(...),
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: ObjectStore = Depends(get_store),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> MediaResponse:
    data = await _read_upload(file)
    try:
        view = await media_service.upload_media(
            db,
            store,
            user,
            tenant_id=tenant_id,
            file_name=file.filename,
            content_type=file.content_type,
            data=data,
            description=description,
        )
    except StorageError as exc:
        raise HTTPException(status_code=500, detail="Storage error while uploading media") from exc
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while uploading media") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_MEDIA_ACCESS,
        activity_type="upload",
        access_type="write",
        user_email=user.email,
        tenant_id=tenant_id,
        target_id=view.media.id,
        target_name=view.media.file_name,
        metadata={"file_size": view.media.file_size, "content_type": view.media.content_type},
    )
    return success_response(request=request, data=_to_response(view))


@router.get("", response_model=SuccessEnvelope[list[MediaListItem]])
async def list_media(
    request: Request,
    tenant_id: str | None = None,
    media_type: str | None = Query(default=None, pattern="^(image|video|audio|document)$"),
    include_deleted: bool = False,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[MediaListItem]:
    try:
        rows = await media_service.list_media_for_user(
            db,
            user,
            tenant_id=tenant_id,
            include_deleted=include_deleted,
            media_type=media_type,
            offset=offset,
            limit=limit,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing media") from exc
    payload = [
        MediaListItem(
            id=media.id,
            tenant_id=row_tenant,
            file_name=media.file_name,
            content_type=media.content_type,
            media_type=media.media_type,
            file_size=media.file_size,
            uploaded_by=media.uploaded_by,
            is_deleted=media.is_deleted,
            created_at=media.created_at.isoformat(),
        )
        for media, row_tenant in rows
    ]
    return success_response(request=request, data=payload)


@router.delete("/shares/{link_id}", response_model=SuccessEnvelope[DeletedResponse])
async def revoke_share_link(
    link_id: str,
    request: Request,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> DeletedResponse:
    try:
        link = await media_service.revoke_share_link(db, user, link_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while revoking share link") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_MEDIA_ACCESS,
        activity_type="share_link_revoked",
        user_email=user.email,
        tenant_id=link.tenant_id,
        target_id=link.media_id,
        metadata={"share_link_id": link.id},
    )
    return success_response(request=request, data=DeletedResponse(id=link.id, deleted=True))


@router.get("/{media_id}", response_model=SuccessEnvelope[MediaResponse])
async def get_media(
    request: Request,
    media_id: str,
    include_deleted: bool = False,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MediaResponse:
    try:
        view = await media_service.get_media_for_user(db, user, media_id, include_deleted=include_deleted)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching media") from exc
    return success_response(request=request, data=_to_response(view))


@router.get(
    "/{media_id}/download",
    response_class=Response,
    response_model=None,
    responses=RANGE_ERROR_RESPONSES,
)
async def download_media(
    media_id: str,
    request: Request,
    download: bool = False,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: ObjectStore = Depends(get_store),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> Response:
    try:
        view = await media_service.get_media_for_user(db, user, media_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching media") from exc
    range_header = request.headers.get("range")
    response = build_object_response(
        store=store,
        storage_key=view.media.storage_key,
        file_name=view.media.file_name,
        content_type=view.media.content_type,
        range_header=range_header,
        attachment=download,
    )
    # Only log the first chunk of a ranged stream to keep players from flooding the log.
    if range_header is None or range_header.replace(" ", "").startswith("bytes=0-"):
        await record_activity(
            writer,
            request=request,
            log_type=LOG_TYPE_MEDIA_ACCESS,
            activity_type="download" if download else "view",
            access_type="read",
            user_email=user.email,
            tenant_id=view.tenant_ids[0] if view.tenant_ids else None,
            target_id=view.media.id,
            target_name=view.media.file_name,
            metadata={"range": range_header},
        )
    return response


@router.delete("/{media_id}", response_model=SuccessEnvelope[MediaResponse])
async def delete_media(
    media_id: str,
    request: Request,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> MediaResponse:
    try:
        view = await media_service.soft_delete_media(db, user, media_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while deleting media") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_MEDIA_ACCESS,
        activity_type="soft_delete",
        access_type="delete",
        user_email=user.email,
        tenant_id=view.tenant_ids[0] if view.tenant_ids else None,
        target_id=view.media.id,
        target_name=view.media.file_name,
    )
    return success_response(request=request, data=_to_response(view))


@router.post("/{media_id}/restore", response_model=SuccessEnvelope[MediaResponse])
async def restore_media(
    media_id: str,
    request: Request,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> MediaResponse:
    try:
        view = await media_service.restore_media(db, user, media_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while restoring media") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_MEDIA_ACCESS,
        activity_type="restore",
        user_email=user.email,
        tenant_id=view.tenant_ids[0] if view.tenant_ids else None,
        target_id=view.media.id,
        target_name=view.media.file_name,
    )
    return success_response(request=request, data=_to_response(view))


@router.delete("/{media_id}/hard", response_model=SuccessEnvelope[DeletedResponse])
async def hard_delete_media(
    media_id: str,
    request: Request,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: ObjectStore = Depends(get_store),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> DeletedResponse:
    try:
        media = await media_service.hard_delete_media(db, store, user, media_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while deleting media") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_MEDIA_ACCESS,
        activity_type="hard_delete",
        access_type="delete",
        user_email=user.email,
        target_id=media.id,
        target_name=media.file_name,
    )
    return success_response(request=request, data=DeletedResponse(id=media.id, deleted=True))


@router.post(
    "/{media_id}/shares",
    status_code=201,
    response_model=SuccessEnvelope[ShareLinkResponse],
)
async def create_share_link(
    media_id: str,
    request: Request,
    payload: ShareLinkCreateRequest,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> ShareLinkResponse:
    try:
        link = await media_service.create_share_link(
            db,
            user,
            media_id,
            expires_in_days=payload.expires_in_days,
            max_accesses=payload.max_accesses,
            password=payload.password,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while creating share link") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_MEDIA_ACCESS,
        activity_type="share_link_created",
        user_email=user.email,
        tenant_id=link.tenant_id,
        target_id=media_id,
        metadata={
            "share_link_id": link.id,
            "expires_in_days": payload.expires_in_days,
            "max_accesses": payload.max_accesses,
            "password_protected": payload.password is not None,
        },
    )
    return success_response(request=request, data=share_link_response(link))


@router.get(
    "/{media_id}/shares",
    response_model=SuccessEnvelope[list[ShareLinkResponse]],
)
async def list_share_links(
    request: Request,
    media_id: str,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[ShareLinkResponse]:
    try:
        links = await media_service.list_share_links(db, user, media_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing share links") from exc
    return success_response(request=request, data=[share_link_response(link) for link in links])
