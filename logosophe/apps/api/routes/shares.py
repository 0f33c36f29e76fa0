from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.apps.api.deps import get_db, get_log_writer, get_optional_user, get_store
from logosophe.apps.api.openapi import DEFAULT_ERROR_RESPONSES, RANGE_ERROR_RESPONSES
from logosophe.apps.api.response import SuccessEnvelope, success_response
from logosophe.apps.api.streaming import build_object_response
from logosophe.services import media as media_service
from logosophe.services.access import AccessContext
from logosophe.services.audit import LOG_TYPE_MEDIA_ACCESS, SystemLogWriter, record_activity
from logosophe.services.storage import ObjectStore


router = APIRouter(prefix="/share", tags=["share"], responses=DEFAULT_ERROR_RESPONSES)

SHARED_ACCESS_EMAIL = "shared_access"
_NO_STORE = {"Cache-Control": "no-store"}


class SharedMediaResponse(BaseModel):
    file_name: str
    content_type: str
    media_type: str
    file_size: int
    description: str | None
    expires_at: str | None
    max_accesses: int | None
    access_count: int
    password_protected: bool


@router.get("/{token}", response_model=SuccessEnvelope[SharedMediaResponse])
async def get_shared_media(
    request: Request,
    token: str,
    response: Response,
    x_share_password: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> SharedMediaResponse:
    # Metadata lookups never spend an access.
    try:
        link, media = await media_service.resolve_share_link(db, token, password=x_share_password)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while resolving share link") from exc
    response.headers.update(_NO_STORE)
    payload = SharedMediaResponse(
        file_name=media.file_name,
        content_type=media.content_type,
        media_type=media.media_type,
        file_size=media.file_size,
        description=media.description,
        expires_at=link.expires_at.isoformat() if link.expires_at else None,
        max_accesses=link.max_accesses,
        access_count=link.access_count,
        password_protected=link.password_hash is not None,
    )
    return success_response(request=request, data=payload)


@router.get(
    "/{token}/download",
    response_class=Response,
    response_model=None,
    responses=RANGE_ERROR_RESPONSES,
)
async def download_shared_media(
    token: str,
    request: Request,
    download: bool = False,
    x_share_password: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
    store: ObjectStore = Depends(get_store),
    writer: SystemLogWriter = Depends(get_log_writer),
    viewer: AccessContext | None = Depends(get_optional_user),
) -> Response:
    range_header = request.headers.get("range")
    try:
        _link, media = await media_service.resolve_share_link(db, token, password=x_share_password)
        # Unsatisfiable ranges and missing content fail here, before an access is spent.
        response = build_object_response(
            store=store,
            storage_key=media.storage_key,
            file_name=media.file_name,
            content_type=media.content_type,
            range_header=range_header,
            attachment=download,
            extra_headers=_NO_STORE,
        )
        link, media = await media_service.consume_share_link(db, token, password=x_share_password)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while resolving share link") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_MEDIA_ACCESS,
        activity_type="shared_download" if download else "shared_view",
        access_type="read",
        # Anonymous fetches are attributed to the shared-access pseudo user.
        user_email=viewer.email if viewer is not None else SHARED_ACCESS_EMAIL,
        tenant_id=link.tenant_id,
        target_id=media.id,
        target_name=media.file_name,
        metadata={
            "share_link_id": link.id,
            "access_count": link.access_count,
            "max_accesses": link.max_accesses,
            "range": range_header,
        },
    )
    return response
