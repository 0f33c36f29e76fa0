from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.core.config import get_settings
from logosophe.domain.models import Workflow, WorkflowInvitation, WorkflowParticipant
from logosophe.persistence.db import unit_of_work
from logosophe.persistence.repos import tenants as tenants_repo
from logosophe.persistence.repos import workflows as workflows_repo
from logosophe.services.access import AccessContext, authorize, ensure_allowed, forbidden


WORKFLOW_STATUSES = ("active", "completed", "terminated")
INVITATION_ACTIONS = {"accept": "accepted", "decline": "declined"}


@dataclass(frozen=True)
class WorkflowView:
    workflow: Workflow
    participants: list[WorkflowParticipant]


def _not_found(message: str = "Workflow not found") -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": message})


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": code, "message": message})


async def _load(db: AsyncSession, ctx: AccessContext, workflow_id: str) -> tuple[Workflow, bool]:
    # Non-participants outside the tenant's admin set see 404, never 403.
    workflow = await workflows_repo.get_workflow(db, workflow_id)
    if workflow is None:
        raise _not_found()
    participant = await workflows_repo.get_participant(db, workflow_id, ctx.email)
    is_participant = participant is not None
    if not (is_participant or ctx.is_tenant_admin_for(workflow.tenant_id)):
        raise _not_found()
    return workflow, is_participant


async def create_workflow(
    db: AsyncSession,
    ctx: AccessContext,
    *,
    tenant_id: str,
    title: str,
    participants: list[str] | None = None,
) -> WorkflowView:
    if await tenants_repo.get_tenant(db, tenant_id) is None:
        raise forbidden("Not a member of this tenant")
    ensure_allowed(authorize(ctx, tenant_id=tenant_id, allow_members=True), "Not a member of this tenant")
    members = await tenants_repo.member_emails(db, tenant_id)
    extra = sorted({email.strip().lower() for email in participants or [] if email.strip()} - {ctx.email})
    outsiders = [email for email in extra if email not in members]
    if outsiders:
        raise _bad_request("INVALID_PARTICIPANTS", f"Not tenant members: {', '.join(outsiders)}")
    workflow = Workflow(
        id=uuid4().hex,
        tenant_id=tenant_id,
        initiator_email=ctx.email,
        title=title,
        status="active",
    )
    rows = [WorkflowParticipant(workflow_id=workflow.id, participant_email=ctx.email, role="initiator")]
    rows.extend(
        WorkflowParticipant(workflow_id=workflow.id, participant_email=email, role="participant")
        for email in extra
    )
    async with unit_of_work(db):
        db.add(workflow)
        await db.flush()
        db.add_all(rows)
    return WorkflowView(workflow=workflow, participants=rows)


async def list_workflows(
    db: AsyncSession,
    ctx: AccessContext,
    *,
    status: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[Workflow]:
    if ctx.is_system_admin:
        return await workflows_repo.list_workflows(
            db, participant_email=None, admin_tenant_ids=None, status=status, offset=offset, limit=limit
        )
    return await workflows_repo.list_workflows(
        db,
        participant_email=ctx.email,
        admin_tenant_ids=ctx.admin_tenant_ids(),
        status=status,
        offset=offset,
        limit=limit,
    )


async def get_workflow(db: AsyncSession, ctx: AccessContext, workflow_id: str) -> WorkflowView:
    workflow, _ = await _load(db, ctx, workflow_id)
    participants = await workflows_repo.list_participants(db, workflow_id)
    return WorkflowView(workflow=workflow, participants=participants)


async def set_workflow_status(
    db: AsyncSession,
    ctx: AccessContext,
    workflow_id: str,
    *,
    status: str,
) -> Workflow:
    workflow, _ = await _load(db, ctx, workflow_id)
    ensure_allowed(
        authorize(ctx, tenant_id=workflow.tenant_id, owner_email=workflow.initiator_email),
        "Only the initiator or a tenant admin can change workflow status",
    )
    if workflow.status != "active":
        raise _bad_request("WORKFLOW_NOT_ACTIVE", f"Workflow is already {workflow.status}")
    now = datetime.now(timezone.utc)
    async with unit_of_work(db):
        workflow.status = status
        workflow.completed_at = now
        workflow.completed_by = ctx.email
        workflow.updated_at = now
    return workflow


async def delete_workflow(db: AsyncSession, ctx: AccessContext, workflow_id: str) -> Workflow:
    workflow, _ = await _load(db, ctx, workflow_id)
    ensure_allowed(
        authorize(ctx, tenant_id=workflow.tenant_id, owner_email=workflow.initiator_email),
        "Only the initiator or a tenant admin can delete this workflow",
    )
    async with unit_of_work(db):
        await workflows_repo.delete_workflow_cascade(db, workflow_id)
    return workflow


async def invite_participant(
    db: AsyncSession,
    ctx: AccessContext,
    workflow_id: str,
    *,
    invitee_email: str,
    role: str = "participant",
    message: str | None = None,
) -> WorkflowInvitation:
    workflow, is_participant = await _load(db, ctx, workflow_id)
    if not (is_participant or ctx.is_system_admin):
        raise forbidden("Only participants can invite to this workflow")
    if workflow.status != "active":
        raise _bad_request("WORKFLOW_NOT_ACTIVE", f"Workflow is {workflow.status}")
    invitee_email = invitee_email.strip().lower()
    if await workflows_repo.get_participant(db, workflow_id, invitee_email) is not None:
        raise _bad_request("ALREADY_PARTICIPANT", "User is already a participant")
    now = datetime.now(timezone.utc)
    if await workflows_repo.find_pending_invitation(
        db, workflow_id=workflow_id, invitee_email=invitee_email, now=now
    ):
        raise _bad_request("INVITATION_PENDING", "User already has a pending invitation")
    invitation = WorkflowInvitation(
        id=uuid4().hex,
        workflow_id=workflow_id,
        inviter_email=ctx.email,
        invitee_email=invitee_email,
        role=role,
        status="pending",
        message=message,
        expires_at=now + timedelta(days=get_settings().invitation_ttl_days),
        created_at=now,
        updated_at=now,
    )
    async with unit_of_work(db):
        db.add(invitation)
    return invitation


async def list_my_invitations(
    db: AsyncSession,
    ctx: AccessContext,
    *,
    status: str | None = None,
) -> list[WorkflowInvitation]:
    # Lazily mark lapsed invitations so status filters reflect reality.
    async with unit_of_work(db):
        await workflows_repo.expire_stale_invitations(
            db, now=datetime.now(timezone.utc), invitee_email=ctx.email
        )
    return await workflows_repo.list_invitations_for_invitee(db, invitee_email=ctx.email, status=status)


async def _load_invitation(db: AsyncSession, ctx: AccessContext, invitation_id: str) -> WorkflowInvitation:
    invitation = await workflows_repo.get_invitation(db, invitation_id)
    if invitation is None:
        raise _not_found("Invitation not found")
    if ctx.email in {invitation.invitee_email, invitation.inviter_email} or ctx.is_system_admin:
        return invitation
    workflow = await workflows_repo.get_workflow(db, invitation.workflow_id)
    if workflow is not None and ctx.is_tenant_admin_for(workflow.tenant_id):
        return invitation
    raise _not_found("Invitation not found")


async def get_invitation(db: AsyncSession, ctx: AccessContext, invitation_id: str) -> WorkflowInvitation:
    return await _load_invitation(db, ctx, invitation_id)


async def respond_to_invitation(
    db: AsyncSession,
    ctx: AccessContext,
    invitation_id: str,
    *,
    action: str,
) -> WorkflowInvitation:
    """Accept or decline a pending invitation as its invitee.

    Expired invitations are reported exactly like missing ones and are
    marked ``expired`` on the way out.
    """
    new_status = INVITATION_ACTIONS.get(action)
    if new_status is None:
        raise _bad_request("VALIDATION_ERROR", "Invalid field 'action': must be accept or decline")
    invitation = await _load_invitation(db, ctx, invitation_id)
    if invitation.invitee_email != ctx.email:
        raise forbidden("Only the invitee can respond to this invitation")
    now = datetime.now(timezone.utc)
    if invitation.status == "pending" and invitation.expires_at <= now:
        async with unit_of_work(db):
            invitation.status = "expired"
            invitation.updated_at = now
        raise _not_found("Invitation not found")
    if invitation.status == "expired":
        raise _not_found("Invitation not found")
    if invitation.status != "pending":
        raise _bad_request("INVITATION_NOT_PENDING", f"Invitation is already {invitation.status}")
    async with unit_of_work(db):
        moved = await workflows_repo.transition_invitation(
            db, invitation_id=invitation_id, status=new_status, now=now
        )
        if moved and new_status == "accepted":
            existing = await workflows_repo.get_participant(db, invitation.workflow_id, ctx.email)
            if existing is None:
                db.add(
                    WorkflowParticipant(
                        workflow_id=invitation.workflow_id,
                        participant_email=ctx.email,
                        role=invitation.role,
                        joined_at=now,
                    )
                )
    if not moved:
        raise _not_found("Invitation not found")
    await db.refresh(invitation)
    return invitation


async def delete_invitation(db: AsyncSession, ctx: AccessContext, invitation_id: str) -> WorkflowInvitation:
    invitation = await _load_invitation(db, ctx, invitation_id)
    if invitation.inviter_email != ctx.email and not ctx.is_system_admin:
        participant = await workflows_repo.get_participant(db, invitation.workflow_id, ctx.email)
        if participant is None:
            raise forbidden("Only the inviter or a participant can withdraw this invitation")
    async with unit_of_work(db):
        await workflows_repo.delete_invitation(db, invitation_id)
    return invitation
