from __future__ import annotations

from datetime import datetime, timedelta, timezone
import hashlib
import secrets
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.core.config import get_settings
from logosophe.domain.models import UserSession


SESSION_TOKEN_PREFIX = "lgs_"


def hash_session_token(raw_token: str) -> str:
    # Use SHA-256 for deterministic, non-reversible token storage.
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_session_token(*, session_id: str | None = None) -> tuple[str, str, str]:
    # Embed the session id in the token so operators can trace sessions safely.
    resolved_id = session_id or uuid4().hex
    secret = secrets.token_urlsafe(32)
    raw_token = f"{SESSION_TOKEN_PREFIX}{resolved_id}_{secret}"
    return resolved_id, raw_token, hash_session_token(raw_token)


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def issue_session(
    session: AsyncSession,
    *,
    email: str,
    provider: str | None = None,
    ttl_hours: int | None = None,
) -> tuple[UserSession, str]:
    settings = get_settings()
    session_id, raw_token, token_hash = generate_session_token()
    hours = ttl_hours if ttl_hours is not None else settings.session_ttl_hours
    row = UserSession(
        id=session_id,
        email=normalize_email(email),
        token_hash=token_hash,
        provider=provider,
        expires_at=datetime.now(timezone.utc) + timedelta(hours=hours),
    )
    session.add(row)
    await session.flush()
    return row, raw_token


async def resolve_session(session: AsyncSession, raw_token: str) -> UserSession | None:
    # Unknown, revoked, and expired tokens all resolve to no identity.
    result = await session.execute(
        select(UserSession).where(UserSession.token_hash == hash_session_token(raw_token))
    )
    row = result.scalar_one_or_none()
    if row is None or row.revoked_at is not None:
        return None
    if row.expires_at <= datetime.now(timezone.utc):
        return None
    return row


async def touch_session(session: AsyncSession, session_id: str) -> None:
    await session.execute(
        update(UserSession)
        .where(UserSession.id == session_id)
        .values(last_seen_at=datetime.now(timezone.utc))
    )


async def revoke_session(session: AsyncSession, session_id: str) -> bool:
    result = await session.execute(
        update(UserSession)
        .where(UserSession.id == session_id, UserSession.revoked_at.is_(None))
        .values(revoked_at=datetime.now(timezone.utc))
    )
    return bool(result.rowcount)
