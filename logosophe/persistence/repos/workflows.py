from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.domain.models import Workflow, WorkflowInvitation, WorkflowParticipant
from logosophe.persistence.guards import tenant_in


async def get_workflow(session: AsyncSession, workflow_id: str) -> Workflow | None:
    return await session.get(Workflow, workflow_id)


async def list_workflows(
    session: AsyncSession,
    *,
    participant_email: str | None,
    admin_tenant_ids: list[str] | None,
    status: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[Workflow]:
    # participant_email=None and admin_tenant_ids=None is the unrestricted view.
    stmt = select(Workflow)
    if participant_email is not None or admin_tenant_ids is not None:
        participating = select(WorkflowParticipant.workflow_id).where(
            WorkflowParticipant.participant_email == participant_email
        )
        stmt = stmt.where(
            or_(Workflow.id.in_(participating), tenant_in(Workflow, admin_tenant_ids or []))
        )
    if status:
        stmt = stmt.where(Workflow.status == status)
    stmt = stmt.order_by(Workflow.created_at.desc(), Workflow.id.asc()).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_participant(session: AsyncSession, workflow_id: str, email: str) -> WorkflowParticipant | None:
    return await session.get(WorkflowParticipant, (workflow_id, email))


async def list_participants(session: AsyncSession, workflow_id: str) -> list[WorkflowParticipant]:
    result = await session.execute(
        select(WorkflowParticipant)
        .where(WorkflowParticipant.workflow_id == workflow_id)
        .order_by(WorkflowParticipant.joined_at.asc(), WorkflowParticipant.participant_email.asc())
    )
    return list(result.scalars().all())


async def get_invitation(session: AsyncSession, invitation_id: str) -> WorkflowInvitation | None:
    return await session.get(WorkflowInvitation, invitation_id)


async def find_pending_invitation(
    session: AsyncSession, *, workflow_id: str, invitee_email: str, now: datetime
) -> WorkflowInvitation | None:
    result = await session.execute(
        select(WorkflowInvitation).where(
            WorkflowInvitation.workflow_id == workflow_id,
            WorkflowInvitation.invitee_email == invitee_email,
            WorkflowInvitation.status == "pending",
            WorkflowInvitation.expires_at > now,
        )
    )
    return result.scalars().first()


async def list_invitations_for_invitee(
    session: AsyncSession,
    *,
    invitee_email: str,
    status: str | None = None,
) -> list[WorkflowInvitation]:
    stmt = select(WorkflowInvitation).where(WorkflowInvitation.invitee_email == invitee_email)
    if status:
        stmt = stmt.where(WorkflowInvitation.status == status)
    stmt = stmt.order_by(WorkflowInvitation.created_at.desc(), WorkflowInvitation.id.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def expire_stale_invitations(session: AsyncSession, *, now: datetime, invitee_email: str | None = None) -> int:
    stmt = update(WorkflowInvitation).where(
        WorkflowInvitation.status == "pending",
        WorkflowInvitation.expires_at <= now,
    )
    if invitee_email is not None:
        stmt = stmt.where(WorkflowInvitation.invitee_email == invitee_email)
    result = await session.execute(stmt.values(status="expired", updated_at=now))
    return result.rowcount or 0


async def transition_invitation(
    session: AsyncSession, *, invitation_id: str, status: str, now: datetime
) -> bool:
    # Only a pending, unexpired invitation can move; a racing responder loses.
    result = await session.execute(
        update(WorkflowInvitation)
        .where(
            WorkflowInvitation.id == invitation_id,
            WorkflowInvitation.status == "pending",
            WorkflowInvitation.expires_at > now,
        )
        .values(status=status, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1


async def delete_invitation(session: AsyncSession, invitation_id: str) -> int:
    result = await session.execute(delete(WorkflowInvitation).where(WorkflowInvitation.id == invitation_id))
    return result.rowcount or 0


async def delete_workflow_cascade(session: AsyncSession, workflow_id: str) -> None:
    # Caller wraps this in a unit of work; children go first.
    await session.execute(delete(WorkflowInvitation).where(WorkflowInvitation.workflow_id == workflow_id))
    await session.execute(delete(WorkflowParticipant).where(WorkflowParticipant.workflow_id == workflow_id))
    await session.execute(delete(Workflow).where(Workflow.id == workflow_id))
