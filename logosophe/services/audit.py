from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from starlette.requests import Request

from logosophe.domain.models import SystemLog
from logosophe.persistence.db import SessionLocal


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PARTS = ("authorization", "token", "secret", "password", "cookie")
_REDACTED = "[REDACTED]"

LOG_TYPE_ACTIVITY = "activity"
LOG_TYPE_AUTH = "auth"
LOG_TYPE_MEDIA_ACCESS = "media_access"
LOG_TYPE_MESSAGING = "messaging"
LOG_TYPE_WORKFLOW = "workflow"
LOG_TYPE_SYSTEM = "system"


@dataclass
class SystemLogEntry:
    activity_type: str
    log_type: str = LOG_TYPE_ACTIVITY
    user_email: str | None = None
    tenant_id: str | None = None
    access_type: str | None = None
    target_id: str | None = None
    target_name: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    provider: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime | None = None


@dataclass(frozen=True)
class AuditResult:
    ok: bool
    log_id: int | None = None
    error: str | None = None


class SystemLogWriter(Protocol):
    async def write(self, entry: SystemLogEntry) -> AuditResult: ...


def sanitize_metadata(value: Any) -> Any:
    """Make audit metadata safe to persist.

    Keys that look like credentials are masked at any depth, tuples become
    lists and datetimes become ISO strings so the row stays JSON-serialisable.
    """
    if isinstance(value, dict):
        return {
            str(key): _REDACTED
            if any(part in str(key).lower() for part in _SENSITIVE_KEY_PARTS)
            else sanitize_metadata(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return list(map(sanitize_metadata, value))
    return value.isoformat() if isinstance(value, datetime) else value


def client_ip(request: Request | None) -> str | None:
    # Prefer proxy headers; the first X-Forwarded-For hop is the original client.
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def request_origin(request: Request | None) -> tuple[str | None, str | None]:
    """Return (ip_address, user_agent) for an audit row."""
    if request is None:
        return None, None
    return client_ip(request), request.headers.get("user-agent")


class DatabaseSystemLogWriter:
    """Append system log rows using a dedicated short-lived session.

    The caller's session is never touched, so a failed audit insert cannot
    roll back or poison the business transaction that triggered it.
    """

    def __init__(self, session_factory=SessionLocal) -> None:
        self._session_factory = session_factory

    async def write(self, entry: SystemLogEntry) -> AuditResult:
        row = SystemLog(
            log_type=entry.log_type,
            timestamp=entry.timestamp or datetime.now(timezone.utc),
            user_email=entry.user_email,
            provider=entry.provider,
            tenant_id=entry.tenant_id,
            activity_type=entry.activity_type,
            access_type=entry.access_type,
            target_id=entry.target_id,
            target_name=entry.target_name,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            metadata_json=sanitize_metadata(entry.metadata or {}),
            is_deleted=False,
        )
        async with self._session_factory() as session:
            try:
                session.add(row)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.warning(
                    "system_log_write_failed activity_type=%s target_id=%s",
                    entry.activity_type,
                    entry.target_id,
                    exc_info=exc,
                )
                return AuditResult(ok=False, error=exc.__class__.__name__)
        return AuditResult(ok=True, log_id=row.id)


_default_writer = DatabaseSystemLogWriter()


def get_default_writer() -> SystemLogWriter:
    return _default_writer


async def record_activity(
    writer: SystemLogWriter,
    *,
    request: Request | None,
    activity_type: str,
    log_type: str = LOG_TYPE_ACTIVITY,
    user_email: str | None = None,
    tenant_id: str | None = None,
    access_type: str | None = None,
    target_id: str | None = None,
    target_name: str | None = None,
    provider: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditResult:
    # Never let audit problems escape into the request; the result reports them.
    ip_address, user_agent = request_origin(request)
    merged_metadata = dict(metadata or {})
    request_id = getattr(request.state, "request_id", None) if request is not None else None
    if request_id:
        merged_metadata.setdefault("request_id", request_id)
    entry = SystemLogEntry(
        activity_type=activity_type,
        log_type=log_type,
        user_email=user_email,
        tenant_id=tenant_id,
        access_type=access_type,
        target_id=target_id,
        target_name=target_name,
        ip_address=ip_address,
        user_agent=user_agent,
        provider=provider,
        metadata=merged_metadata,
    )
    try:
        return await writer.write(entry)
    except Exception as exc:  # noqa: BLE001 - custom writers must not break callers
        logger.warning("system_log_writer_error activity_type=%s", activity_type, exc_info=exc)
        return AuditResult(ok=False, error=exc.__class__.__name__)
