from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.apps.api.deps import get_current_user, get_db, get_log_writer
from logosophe.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from logosophe.apps.api.response import SuccessEnvelope, success_response
from logosophe.core.errors import RateLimitedError
from logosophe.persistence.repos import messages as messages_repo
from logosophe.services import messaging as messaging_service
from logosophe.services.access import AccessContext
from logosophe.services.audit import LOG_TYPE_MESSAGING, SystemLogWriter, record_activity


router = APIRouter(prefix="/messages", tags=["messages"], responses=DEFAULT_ERROR_RESPONSES)


class MessageSendRequest(BaseModel):
    tenant_id: str = Field(min_length=1)
    subject: str = Field(min_length=1, max_length=200)
    body: str = Field(min_length=1, max_length=20000)
    recipients: list[str] = Field(default_factory=list)
    message_type: str = Field(default="direct")

    model_config = {"extra": "forbid"}


class MessageIdsRequest(BaseModel):
    message_ids: list[str] = Field(min_length=1, max_length=500)

    model_config = {"extra": "forbid"}


class BlockCreateRequest(BaseModel):
    blocked_email: str = Field(min_length=3)
    tenant_id: str = Field(min_length=1)
    reason: str | None = Field(default=None, max_length=500)

    model_config = {"extra": "forbid"}


class RecipientResponse(BaseModel):
    email: str
    is_read: bool
    read_at: str | None
    is_archived: bool
    is_deleted: bool


class MessageResponse(BaseModel):
    id: str
    tenant_id: str
    sender_email: str
    subject: str
    body: str
    message_type: str
    created_at: str
    is_sender: bool
    is_read: bool
    is_archived: bool
    recipients: list[RecipientResponse] | None = None


class SendResponse(BaseModel):
    message: MessageResponse
    delivered_to: list[str]
    blocked_recipients: list[str]


class ArchiveResponse(BaseModel):
    id: str
    is_archived: bool
    is_sender: bool


class DeleteResponse(BaseModel):
    id: str
    deleted: bool
    is_sender: bool


class CountResponse(BaseModel):
    count: int


class UnreadPreview(BaseModel):
    id: str
    sender_email: str
    subject: str
    created_at: str


class UnreadResponse(BaseModel):
    count: int
    recent: list[UnreadPreview]
    tenant_id: str | None
    tenant_name: str | None
    checked_at: str


class BlockResponse(BaseModel):
    id: str
    blocker_email: str
    blocked_email: str
    tenant_id: str
    reason: str | None
    is_active: bool
    created_at: str


def _to_response(message, recipient=None, *, viewer: str, recipients=None) -> MessageResponse:
    is_sender = message.sender_email == viewer
    return MessageResponse(
        id=message.id,
        tenant_id=message.tenant_id,
        sender_email=message.sender_email,
        subject=message.subject,
        body=message.body,
        message_type=message.message_type,
        created_at=message.created_at.isoformat(),
        is_sender=is_sender,
        is_read=True if is_sender else bool(recipient and recipient.is_read),
        is_archived=message.is_archived if is_sender else bool(recipient and recipient.is_archived),
        recipients=(
            [
                RecipientResponse(
                    email=row.recipient_email,
                    is_read=row.is_read,
                    read_at=row.read_at.isoformat() if row.read_at else None,
                    is_archived=row.is_archived,
                    is_deleted=row.is_deleted,
                )
                for row in recipients
            ]
            if recipients is not None
            else None
        ),
    )


def _block_response(block) -> BlockResponse:
    return BlockResponse(
        id=block.id,
        blocker_email=block.blocker_email,
        blocked_email=block.blocked_email,
        tenant_id=block.tenant_id,
        reason=block.reason,
        is_active=block.is_active,
        created_at=block.created_at.isoformat(),
    )


@router.get("", response_model=SuccessEnvelope[list[MessageResponse]])
async def list_inbox(
    request: Request,
    tenant_id: str | None = None,
    archived: bool = False,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[MessageResponse]:
    try:
        rows = await messages_repo.list_inbox(
            db, email=user.email, archived=archived, tenant_id=tenant_id, offset=offset, limit=limit
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing messages") from exc
    payload = [_to_response(message, recipient, viewer=user.email) for message, recipient in rows]
    return success_response(request=request, data=payload)


@router.post("", status_code=201, response_model=SuccessEnvelope[SendResponse])
async def send_message(
    request: Request,
    payload: MessageSendRequest,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> SendResponse:
    try:
        result = await messaging_service.send_message(
            db,
            user,
            tenant_id=payload.tenant_id,
            subject=payload.subject,
            body=payload.body,
            recipients=payload.recipients,
            message_type=payload.message_type,
        )
    except RateLimitedError as exc:
        raise HTTPException(
            status_code=429,
            detail={
                "code": "RATE_LIMITED",
                "message": f"Please wait {exc.retry_after_s} seconds before sending another message",
                "retry_after": exc.retry_after_s,
            },
            headers={"Retry-After": str(exc.retry_after_s)},
        ) from exc
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while sending message") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_MESSAGING,
        activity_type="message_sent",
        user_email=user.email,
        tenant_id=payload.tenant_id,
        target_id=result.message.id,
        target_name=result.message.subject,
        metadata={
            "messageId": result.message.id,
            "messageType": result.message.message_type,
            "recipientCount": len(result.delivered_to),
            "blockedCount": len(result.blocked_recipients),
        },
    )
    response_payload = SendResponse(
        message=_to_response(result.message, viewer=user.email),
        delivered_to=result.delivered_to,
        blocked_recipients=result.blocked_recipients,
    )
    return success_response(request=request, data=response_payload)


@router.get("/sent", response_model=SuccessEnvelope[list[MessageResponse]])
async def list_sent(
    request: Request,
    archived: bool = False,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[MessageResponse]:
    try:
        messages = await messages_repo.list_sent(
            db, email=user.email, archived=archived, offset=offset, limit=limit
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing messages") from exc
    payload = [_to_response(message, viewer=user.email) for message in messages]
    return success_response(request=request, data=payload)


@router.get("/unread-count", response_model=SuccessEnvelope[UnreadResponse])
async def unread_count(
    request: Request,
    tenant_id: str | None = None,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UnreadResponse:
    try:
        summary = await messaging_service.unread_summary(db, user, tenant_id=tenant_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while counting messages") from exc
    payload = UnreadResponse(
        count=summary.count,
        recent=[
            UnreadPreview(
                id=message.id,
                sender_email=message.sender_email,
                subject=message.subject,
                created_at=message.created_at.isoformat(),
            )
            for message in summary.recent
        ],
        tenant_id=summary.tenant_id,
        tenant_name=summary.tenant_name,
        checked_at=summary.checked_at.isoformat(),
    )
    return success_response(request=request, data=payload)


@router.post("/bulk-hard-delete", response_model=SuccessEnvelope[CountResponse])
async def bulk_hard_delete(
    request: Request,
    payload: MessageIdsRequest,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> CountResponse:
    try:
        deleted = await messaging_service.bulk_hard_delete(db, user, payload.message_ids)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while deleting messages") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_MESSAGING,
        activity_type="message_hard_deleted",
        user_email=user.email,
        metadata={"messageIds": sorted(set(payload.message_ids)), "deleted": deleted},
    )
    return success_response(request=request, data=CountResponse(count=deleted))


@router.get("/blocks", response_model=SuccessEnvelope[list[BlockResponse]])
async def list_blocks(
    request: Request,
    scope: str = Query(default="mine", pattern="^(mine|tenant)$"),
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[BlockResponse]:
    try:
        blocks = await messaging_service.list_blocks(db, user, scope=scope)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing blocks") from exc
    return success_response(request=request, data=[_block_response(block) for block in blocks])


@router.post("/blocks", status_code=201, response_model=SuccessEnvelope[BlockResponse])
async def block_user(
    request: Request,
    payload: BlockCreateRequest,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> BlockResponse:
    try:
        block = await messaging_service.block_user(
            db, user, blocked_email=payload.blocked_email, tenant_id=payload.tenant_id, reason=payload.reason
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while blocking user") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_MESSAGING,
        activity_type="user_blocked",
        user_email=user.email,
        tenant_id=block.tenant_id,
        target_id=block.blocked_email,
        metadata={"blockId": block.id},
    )
    return success_response(request=request, data=_block_response(block))


@router.delete("/blocks/{block_id}", response_model=SuccessEnvelope[BlockResponse])
async def unblock_user(
    block_id: str,
    request: Request,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> BlockResponse:
    try:
        block = await messaging_service.unblock_user(db, user, block_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while removing block") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_MESSAGING,
        activity_type="user_unblocked",
        user_email=user.email,
        tenant_id=block.tenant_id,
        target_id=block.blocked_email,
        metadata={"blockId": block.id},
    )
    return success_response(request=request, data=_block_response(block))


@router.get("/{message_id}", response_model=SuccessEnvelope[MessageResponse])
async def get_message(
    request: Request,
    message_id: str,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    try:
        message, recipient = await messaging_service.load_message(db, user, message_id)
        # Recipients only see themselves; the sender sees delivery state for everyone.
        recipients = None
        if message.sender_email == user.email:
            recipients = await messages_repo.list_recipients(db, message_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching message") from exc
    payload = _to_response(message, recipient, viewer=user.email, recipients=recipients)
    return success_response(request=request, data=payload)


@router.post("/{message_id}/read", response_model=SuccessEnvelope[CountResponse])
async def mark_read(
    request: Request,
    message_id: str,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> CountResponse:
    try:
        await messaging_service.load_message(db, user, message_id)
        updated = await messaging_service.mark_read(db, user, [message_id])
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while updating message") from exc
    return success_response(request=request, data=CountResponse(count=updated))


@router.post("/{message_id}/archive", response_model=SuccessEnvelope[ArchiveResponse])
async def toggle_archive(
    message_id: str,
    request: Request,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> ArchiveResponse:
    try:
        archived, is_sender = await messaging_service.toggle_archive(db, user, message_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while archiving message") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_MESSAGING,
        activity_type="message_archived" if archived else "message_unarchived",
        user_email=user.email,
        target_id=message_id,
        metadata={"messageId": message_id, "isSender": is_sender},
    )
    payload = ArchiveResponse(id=message_id, is_archived=archived, is_sender=is_sender)
    return success_response(request=request, data=payload)


@router.delete("/{message_id}", response_model=SuccessEnvelope[DeleteResponse])
async def delete_message(
    message_id: str,
    request: Request,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> DeleteResponse:
    try:
        is_sender = await messaging_service.delete_message(db, user, message_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while deleting message") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_MESSAGING,
        activity_type="message_deleted",
        user_email=user.email,
        target_id=message_id,
        metadata={"messageId": message_id, "isSender": is_sender},
    )
    payload = DeleteResponse(id=message_id, deleted=True, is_sender=is_sender)
    return success_response(request=request, data=payload)
