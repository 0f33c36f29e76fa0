from __future__ import annotations

from datetime import datetime

from sqlalchemy import and_, delete, exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from logosophe.domain.models import (
    Credential,
    Message,
    MessageRateLimit,
    MessageRecipient,
    UserBlock,
)


ADMIN_CREDENTIAL_ROLES = ("admin", "tenant")


def _admin_blockers():
    # Blocks placed by admin or tenant credential holders apply in every tenant.
    return select(Credential.email).where(Credential.role.in_(ADMIN_CREDENTIAL_ROLES))


def blocked_between(email_a, email_b, tenant_id):
    """Predicate: an active block exists between two parties.

    Personal blocks count in either direction within the tenant; admin-placed
    blocks against either party count everywhere. Arguments may be literals or
    column expressions so the predicate can correlate inside larger queries.
    """
    block = aliased(UserBlock)
    personal = and_(
        block.tenant_id == tenant_id,
        or_(
            and_(block.blocker_email == email_a, block.blocked_email == email_b),
            and_(block.blocker_email == email_b, block.blocked_email == email_a),
        ),
    )
    system_wide = and_(
        block.blocker_email.in_(_admin_blockers()),
        or_(block.blocked_email == email_a, block.blocked_email == email_b),
    )
    return exists().where(block.is_active.is_(True), or_(personal, system_wide))


async def is_blocked_between(session: AsyncSession, email_a: str, email_b: str, tenant_id: str) -> bool:
    result = await session.execute(select(blocked_between(email_a, email_b, tenant_id)))
    return bool(result.scalar())


async def is_blocked_in_tenant(session: AsyncSession, email: str, tenant_id: str) -> bool:
    # Blocked by an admin anywhere, or by anyone inside this tenant.
    stmt = select(
        exists().where(
            UserBlock.is_active.is_(True),
            UserBlock.blocked_email == email,
            or_(
                UserBlock.blocker_email.in_(_admin_blockers()),
                UserBlock.tenant_id == tenant_id,
            ),
        )
    )
    result = await session.execute(stmt)
    return bool(result.scalar())


async def get_message(session: AsyncSession, message_id: str) -> Message | None:
    return await session.get(Message, message_id)


async def get_recipient(session: AsyncSession, message_id: str, email: str) -> MessageRecipient | None:
    return await session.get(MessageRecipient, (message_id, email))


async def list_recipients(session: AsyncSession, message_id: str) -> list[MessageRecipient]:
    result = await session.execute(
        select(MessageRecipient)
        .where(MessageRecipient.message_id == message_id)
        .order_by(MessageRecipient.recipient_email.asc())
    )
    return list(result.scalars().all())


async def list_inbox(
    session: AsyncSession,
    *,
    email: str,
    archived: bool = False,
    tenant_id: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[tuple[Message, MessageRecipient]]:
    stmt = (
        select(Message, MessageRecipient)
        .join(MessageRecipient, MessageRecipient.message_id == Message.id)
        .where(
            MessageRecipient.recipient_email == email,
            MessageRecipient.is_deleted.is_(False),
            MessageRecipient.is_archived.is_(archived),
            Message.is_deleted.is_(False),
        )
    )
    if tenant_id:
        stmt = stmt.where(Message.tenant_id == tenant_id)
    stmt = stmt.order_by(Message.created_at.desc(), Message.id.asc()).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return [(message, recipient) for message, recipient in result.all()]


async def list_sent(
    session: AsyncSession,
    *,
    email: str,
    archived: bool = False,
    offset: int = 0,
    limit: int = 50,
) -> list[Message]:
    stmt = (
        select(Message)
        .where(
            Message.sender_email == email,
            Message.is_deleted.is_(False),
            Message.is_archived.is_(archived),
        )
        .order_by(Message.created_at.desc(), Message.id.asc())
        .offset(offset)
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def mark_read(session: AsyncSession, *, message_ids: list[str], email: str, at: datetime) -> int:
    if not message_ids:
        return 0
    result = await session.execute(
        update(MessageRecipient)
        .where(
            MessageRecipient.message_id.in_(message_ids),
            MessageRecipient.recipient_email == email,
            MessageRecipient.is_read.is_(False),
        )
        .values(is_read=True, read_at=at)
    )
    return result.rowcount or 0


async def set_sender_archived(session: AsyncSession, *, message_id: str, archived: bool, at: datetime) -> None:
    # Sender archive applies to the message and every recipient copy.
    archived_at = at if archived else None
    await session.execute(
        update(Message).where(Message.id == message_id).values(is_archived=archived, archived_at=archived_at)
    )
    await session.execute(
        update(MessageRecipient)
        .where(MessageRecipient.message_id == message_id)
        .values(is_archived=archived, archived_at=archived_at)
    )


async def set_recipient_archived(
    session: AsyncSession, *, message_id: str, email: str, archived: bool, at: datetime
) -> None:
    await session.execute(
        update(MessageRecipient)
        .where(MessageRecipient.message_id == message_id, MessageRecipient.recipient_email == email)
        .values(is_archived=archived, archived_at=at if archived else None)
    )


async def soft_delete_for_sender(session: AsyncSession, *, message_id: str, at: datetime) -> None:
    await session.execute(
        update(Message).where(Message.id == message_id).values(is_deleted=True, deleted_at=at)
    )
    await session.execute(
        update(MessageRecipient)
        .where(MessageRecipient.message_id == message_id)
        .values(is_deleted=True, deleted_at=at)
    )


async def soft_delete_for_recipient(session: AsyncSession, *, message_id: str, email: str, at: datetime) -> None:
    await session.execute(
        update(MessageRecipient)
        .where(MessageRecipient.message_id == message_id, MessageRecipient.recipient_email == email)
        .values(is_deleted=True, deleted_at=at)
    )


async def hard_delete_messages(session: AsyncSession, message_ids: list[str]) -> int:
    if not message_ids:
        return 0
    await session.execute(delete(MessageRecipient).where(MessageRecipient.message_id.in_(message_ids)))
    result = await session.execute(delete(Message).where(Message.id.in_(message_ids)))
    return result.rowcount or 0


def _unread_filters(email: str, tenant_ids: list[str] | None):
    filters = [
        MessageRecipient.recipient_email == email,
        MessageRecipient.is_read.is_(False),
        MessageRecipient.is_deleted.is_(False),
        MessageRecipient.is_archived.is_(False),
        Message.is_deleted.is_(False),
        ~blocked_between(email, Message.sender_email, Message.tenant_id),
    ]
    if tenant_ids is not None:
        filters.append(Message.tenant_id.in_(tenant_ids) if tenant_ids else Message.id.is_(None))
    return filters


async def count_unread(session: AsyncSession, *, email: str, tenant_ids: list[str] | None = None) -> int:
    stmt = (
        select(func.count())
        .select_from(MessageRecipient)
        .join(Message, Message.id == MessageRecipient.message_id)
        .where(*_unread_filters(email, tenant_ids))
    )
    result = await session.execute(stmt)
    return int(result.scalar() or 0)


async def recent_unread(
    session: AsyncSession, *, email: str, tenant_ids: list[str] | None = None, limit: int = 3
) -> list[Message]:
    stmt = (
        select(Message)
        .join(MessageRecipient, Message.id == MessageRecipient.message_id)
        .where(*_unread_filters(email, tenant_ids))
        .order_by(Message.created_at.desc(), Message.id.asc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def try_take_rate_slot(
    session: AsyncSession, *, sender_email: str, now: datetime, window_start: datetime
) -> bool:
    # Claim the slot only if the previous message is older than the window.
    result = await session.execute(
        update(MessageRateLimit)
        .where(
            MessageRateLimit.sender_email == sender_email,
            MessageRateLimit.last_message_at <= window_start,
        )
        .values(last_message_at=now, message_count=MessageRateLimit.message_count + 1)
    )
    if (result.rowcount or 0) == 1:
        return True
    existing = await session.get(MessageRateLimit, sender_email)
    if existing is not None:
        return False
    session.add(MessageRateLimit(sender_email=sender_email, last_message_at=now, message_count=1))
    await session.flush()
    return True


async def get_rate_limit(session: AsyncSession, sender_email: str) -> MessageRateLimit | None:
    return await session.get(MessageRateLimit, sender_email)


async def list_blocks(
    session: AsyncSession,
    *,
    blocker_email: str | None = None,
    tenant_ids: list[str] | None = None,
) -> list[UserBlock]:
    stmt = select(UserBlock).where(UserBlock.is_active.is_(True))
    if blocker_email is not None:
        stmt = stmt.where(UserBlock.blocker_email == blocker_email)
    if tenant_ids is not None:
        stmt = stmt.where(UserBlock.tenant_id.in_(tenant_ids) if tenant_ids else UserBlock.id.is_(None))
    stmt = stmt.order_by(UserBlock.created_at.desc(), UserBlock.id.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_block(session: AsyncSession, block_id: str) -> UserBlock | None:
    return await session.get(UserBlock, block_id)


async def find_block(
    session: AsyncSession, *, blocker_email: str, blocked_email: str, tenant_id: str
) -> UserBlock | None:
    result = await session.execute(
        select(UserBlock).where(
            UserBlock.blocker_email == blocker_email,
            UserBlock.blocked_email == blocked_email,
            UserBlock.tenant_id == tenant_id,
        )
    )
    return result.scalar_one_or_none()
