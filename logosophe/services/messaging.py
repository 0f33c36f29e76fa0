from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from uuid import uuid4

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.core.config import get_settings
from logosophe.core.errors import RateLimitedError
from logosophe.domain.models import Message, MessageRecipient, UserBlock
from logosophe.persistence.db import unit_of_work
from logosophe.persistence.repos import messages as messages_repo
from logosophe.persistence.repos import settings as settings_repo
from logosophe.persistence.repos import tenants as tenants_repo
from logosophe.services.access import AccessContext, forbidden


logger = logging.getLogger(__name__)

MESSAGE_TYPES = ("direct", "broadcast", "announcement")
SETTING_MESSAGING_ENABLED = "messaging_enabled"
SETTING_MESSAGING_RATE_LIMIT = "messaging_rate_limit"


@dataclass
class SendResult:
    message: Message
    delivered_to: list[str]
    blocked_recipients: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class UnreadSummary:
    count: int
    recent: list[Message]
    tenant_id: str | None
    tenant_name: str | None
    checked_at: datetime


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "Message not found"})


def _bad_request(code: str, message: str, **details) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": code, "message": message, **details})


async def messaging_policy(db: AsyncSession) -> tuple[bool, int]:
    # Settings rows override static config; unparseable values fall back.
    settings = get_settings()
    values = await settings_repo.get_values(db, [SETTING_MESSAGING_ENABLED, SETTING_MESSAGING_RATE_LIMIT])
    enabled = values.get(SETTING_MESSAGING_ENABLED, "true").strip().lower() != "false"
    try:
        limit_s = max(0, int(values.get(SETTING_MESSAGING_RATE_LIMIT, settings.messaging_rate_limit_seconds)))
    except ValueError:
        limit_s = settings.messaging_rate_limit_seconds
    return enabled, limit_s


async def _take_rate_slot(db: AsyncSession, sender_email: str, limit_s: int, now: datetime) -> None:
    if limit_s <= 0:
        return
    window_start = now - timedelta(seconds=limit_s)
    try:
        allowed = await messages_repo.try_take_rate_slot(
            db, sender_email=sender_email, now=now, window_start=window_start
        )
    except IntegrityError as exc:
        # A concurrent first message created the row. The failed flush leaves the
        # session unusable until rollback, so report a full window without re-reading.
        raise RateLimitedError(limit_s) from exc
    if not allowed:
        existing = await messages_repo.get_rate_limit(db, sender_email)
        wait = limit_s
        if existing is not None:
            elapsed = (now - existing.last_message_at).total_seconds()
            wait = max(1, int(limit_s - elapsed))
        raise RateLimitedError(wait)


async def send_message(
    db: AsyncSession,
    ctx: AccessContext,
    *,
    tenant_id: str,
    subject: str,
    body: str,
    recipients: list[str],
    message_type: str = "direct",
) -> SendResult:
    if message_type not in MESSAGE_TYPES:
        raise _bad_request("VALIDATION_ERROR", f"Invalid field 'message_type': must be one of {', '.join(MESSAGE_TYPES)}")
    enabled, limit_s = await messaging_policy(db)
    if not enabled:
        raise forbidden("Messaging is disabled")
    if not (ctx.is_system_admin or ctx.is_member(tenant_id)):
        raise forbidden("Not a member of this tenant")
    if await tenants_repo.get_tenant(db, tenant_id) is None:
        raise forbidden("Not a member of this tenant")
    if not ctx.is_system_admin and await messages_repo.is_blocked_in_tenant(db, ctx.email, tenant_id):
        raise forbidden("You are blocked from sending messages in this tenant")
    if message_type != "direct" and not ctx.is_tenant_admin_for(tenant_id):
        raise forbidden("Only tenant admins can send broadcast or announcement messages")

    members = await tenants_repo.member_emails(db, tenant_id)
    requested = sorted({email.strip().lower() for email in recipients if email and email.strip()})
    requested = [email for email in requested if email != ctx.email]
    if message_type != "direct" and not requested:
        requested = sorted(members - {ctx.email})
    if not requested:
        raise _bad_request("VALIDATION_ERROR", "Invalid field 'recipients': at least one recipient is required")
    invalid = []
    for email in requested:
        if email in members:
            continue
        credential = await tenants_repo.get_credential(db, email)
        if credential is None or credential.role not in messages_repo.ADMIN_CREDENTIAL_ROLES:
            invalid.append(email)
    if invalid:
        raise _bad_request("INVALID_RECIPIENTS", f"Invalid recipients: {', '.join(invalid)}", recipients=invalid)

    blocked = [
        email for email in requested
        if await messages_repo.is_blocked_between(db, ctx.email, email, tenant_id)
    ]
    deliverable = [email for email in requested if email not in blocked]
    if not deliverable:
        raise _bad_request(
            "RECIPIENTS_BLOCKED",
            "All recipients are blocked",
            recipients=blocked,
        )

    now = datetime.now(timezone.utc)
    message = Message(
        id=uuid4().hex,
        tenant_id=tenant_id,
        sender_email=ctx.email,
        subject=subject,
        body=body,
        message_type=message_type,
        created_at=now,
    )
    async with unit_of_work(db):
        await _take_rate_slot(db, ctx.email, limit_s, now)
        db.add(message)
        await db.flush()
        for email in deliverable:
            db.add(MessageRecipient(message_id=message.id, recipient_email=email))
    return SendResult(message=message, delivered_to=deliverable, blocked_recipients=blocked)


async def load_message(db: AsyncSession, ctx: AccessContext, message_id: str) -> tuple[Message, MessageRecipient | None]:
    # Only the sender or a recipient may see a message; everyone else gets 404.
    message = await messages_repo.get_message(db, message_id)
    if message is None or message.is_deleted:
        raise _not_found()
    recipient = await messages_repo.get_recipient(db, message_id, ctx.email)
    if message.sender_email != ctx.email and (recipient is None or recipient.is_deleted):
        raise _not_found()
    return message, recipient


async def mark_read(db: AsyncSession, ctx: AccessContext, message_ids: list[str]) -> int:
    async with unit_of_work(db):
        return await messages_repo.mark_read(
            db, message_ids=message_ids, email=ctx.email, at=datetime.now(timezone.utc)
        )


async def toggle_archive(db: AsyncSession, ctx: AccessContext, message_id: str) -> tuple[bool, bool]:
    """Flip the archived flag for the caller's view of a message.

    Returns (is_archived, is_sender). The sender's toggle applies to every
    recipient copy; a recipient only flips its own copy.
    """
    message, recipient = await load_message(db, ctx, message_id)
    now = datetime.now(timezone.utc)
    is_sender = message.sender_email == ctx.email
    async with unit_of_work(db):
        if is_sender:
            archived = not message.is_archived
            await messages_repo.set_sender_archived(db, message_id=message_id, archived=archived, at=now)
        else:
            archived = not recipient.is_archived
            await messages_repo.set_recipient_archived(
                db, message_id=message_id, email=ctx.email, archived=archived, at=now
            )
    return archived, is_sender


async def delete_message(db: AsyncSession, ctx: AccessContext, message_id: str) -> bool:
    # Sender deletes cascade to every recipient row in one transaction.
    message, _recipient = await load_message(db, ctx, message_id)
    now = datetime.now(timezone.utc)
    is_sender = message.sender_email == ctx.email
    async with unit_of_work(db):
        if is_sender:
            await messages_repo.soft_delete_for_sender(db, message_id=message_id, at=now)
        else:
            await messages_repo.soft_delete_for_recipient(db, message_id=message_id, email=ctx.email, at=now)
    return is_sender


async def bulk_hard_delete(db: AsyncSession, ctx: AccessContext, message_ids: list[str]) -> int:
    ids = sorted(set(message_ids))
    if not ids:
        raise _bad_request("VALIDATION_ERROR", "Invalid field 'message_ids': at least one id is required")
    messages = [await messages_repo.get_message(db, message_id) for message_id in ids]
    if any(message is None for message in messages):
        raise _not_found()
    for message in messages:
        if not ctx.is_tenant_admin_for(message.tenant_id):
            raise forbidden("Tenant admin access required for every message")
    async with unit_of_work(db):
        return await messages_repo.hard_delete_messages(db, ids)


async def unread_summary(db: AsyncSession, ctx: AccessContext, *, tenant_id: str | None = None) -> UnreadSummary:
    # The tenant name is echoed back, so only members may name a tenant here.
    if tenant_id and not ctx.is_system_admin and not ctx.is_member(tenant_id):
        raise forbidden("Not a member of this tenant")
    settings = get_settings()
    scope = [tenant_id] if tenant_id else None
    count = await messages_repo.count_unread(db, email=ctx.email, tenant_ids=scope)
    recent = await messages_repo.recent_unread(
        db, email=ctx.email, tenant_ids=scope, limit=settings.unread_preview_limit
    )
    resolved_tenant = tenant_id or (ctx.tenant_ids[0] if ctx.tenant_ids else None)
    tenant_name = None
    if resolved_tenant:
        tenant = await tenants_repo.get_tenant(db, resolved_tenant)
        tenant_name = tenant.name if tenant is not None else None
    return UnreadSummary(
        count=count,
        recent=recent,
        tenant_id=resolved_tenant,
        tenant_name=tenant_name,
        checked_at=datetime.now(timezone.utc),
    )


async def block_user(
    db: AsyncSession,
    ctx: AccessContext,
    *,
    blocked_email: str,
    tenant_id: str,
    reason: str | None = None,
) -> UserBlock:
    blocked_email = blocked_email.strip().lower()
    if blocked_email == ctx.email:
        raise _bad_request("VALIDATION_ERROR", "Cannot block yourself")
    if not (ctx.is_system_admin or ctx.is_member(tenant_id)):
        raise forbidden("Not a member of this tenant")
    if await tenants_repo.get_membership(db, tenant_id=tenant_id, email=blocked_email) is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "NOT_FOUND", "message": "User not found in this tenant"},
        )
    existing = await messages_repo.find_block(
        db, blocker_email=ctx.email, blocked_email=blocked_email, tenant_id=tenant_id
    )
    if existing is not None and existing.is_active:
        raise _bad_request("ALREADY_BLOCKED", "User is already blocked")
    async with unit_of_work(db):
        if existing is not None:
            existing.is_active = True
            existing.reason = reason
            existing.created_at = datetime.now(timezone.utc)
            block = existing
        else:
            block = UserBlock(
                id=uuid4().hex,
                blocker_email=ctx.email,
                blocked_email=blocked_email,
                tenant_id=tenant_id,
                reason=reason,
                is_active=True,
            )
            db.add(block)
    return block


async def list_blocks(db: AsyncSession, ctx: AccessContext, *, scope: str = "mine") -> list[UserBlock]:
    # "tenant" scope lists every block in the tenants the caller administers.
    if scope == "tenant":
        tenant_ids = None if ctx.is_system_admin else ctx.admin_tenant_ids()
        return await messages_repo.list_blocks(db, tenant_ids=tenant_ids)
    return await messages_repo.list_blocks(db, blocker_email=ctx.email)


async def unblock_user(db: AsyncSession, ctx: AccessContext, block_id: str) -> UserBlock:
    block = await messages_repo.get_block(db, block_id)
    if block is None or not block.is_active:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "Block not found"})
    if block.blocker_email != ctx.email and not ctx.is_tenant_admin_for(block.tenant_id):
        if not ctx.is_member(block.tenant_id):
            raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "Block not found"})
        raise forbidden("Only the blocker or a tenant admin can lift this block")
    async with unit_of_work(db):
        block.is_active = False
    return block
