from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.apps.api.deps import get_current_user, get_db, get_log_writer
from logosophe.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from logosophe.apps.api.response import SuccessEnvelope, success_response
from logosophe.services import workflows as workflows_service
from logosophe.services.access import AccessContext
from logosophe.services.audit import LOG_TYPE_WORKFLOW, SystemLogWriter, record_activity


router = APIRouter(prefix="/workflows", tags=["workflows"], responses=DEFAULT_ERROR_RESPONSES)


class WorkflowCreateRequest(BaseModel):
    tenant_id: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=200)
    participants: list[str] = Field(default_factory=list)

    model_config = {"extra": "forbid"}


class InvitationCreateRequest(BaseModel):
    invitee_email: str = Field(min_length=3)
    role: str = Field(default="participant", pattern="^(participant|reviewer|editor|observer)$")
    message: str | None = Field(default=None, max_length=2000)

    model_config = {"extra": "forbid"}


class InvitationRespondRequest(BaseModel):
    action: str

    model_config = {"extra": "forbid"}


class ParticipantResponse(BaseModel):
    email: str
    role: str
    joined_at: str


class WorkflowResponse(BaseModel):
    id: str
    tenant_id: str
    initiator_email: str
    title: str
    status: str
    created_at: str
    updated_at: str
    completed_at: str | None
    completed_by: str | None
    participants: list[ParticipantResponse] | None = None


class InvitationResponse(BaseModel):
    id: str
    workflow_id: str
    inviter_email: str
    invitee_email: str
    role: str
    status: str
    message: str | None
    expires_at: str
    created_at: str
    updated_at: str


class DeletedResponse(BaseModel):
    id: str
    deleted: bool


def _to_response(workflow, participants=None) -> WorkflowResponse:
    return WorkflowResponse(
        id=workflow.id,
        tenant_id=workflow.tenant_id,
        initiator_email=workflow.initiator_email,
        title=workflow.title,
        status=workflow.status,
        created_at=workflow.created_at.isoformat(),
        updated_at=workflow.updated_at.isoformat(),
        completed_at=workflow.completed_at.isoformat() if workflow.completed_at else None,
        completed_by=workflow.completed_by,
        participants=(
            [
                ParticipantResponse(
                    email=row.participant_email,
                    role=row.role,
                    joined_at=row.joined_at.isoformat(),
                )
                for row in participants
            ]
            if participants is not None
            else None
        ),
    )


def _invitation_response(invitation) -> InvitationResponse:
    return InvitationResponse(
        id=invitation.id,
        workflow_id=invitation.workflow_id,
        inviter_email=invitation.inviter_email,
        invitee_email=invitation.invitee_email,
        role=invitation.role,
        status=invitation.status,
        message=invitation.message,
        expires_at=invitation.expires_at.isoformat(),
        created_at=invitation.created_at.isoformat(),
        updated_at=invitation.updated_at.isoformat(),
    )


@router.get("", response_model=SuccessEnvelope[list[WorkflowResponse]])
async def list_workflows(
    request: Request,
    status: str | None = Query(default=None, pattern="^(active|completed|terminated)$"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[WorkflowResponse]:
    try:
        workflows = await workflows_service.list_workflows(db, user, status=status, offset=offset, limit=limit)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing workflows") from exc
    return success_response(request=request, data=[_to_response(workflow) for workflow in workflows])


@router.post("", status_code=201, response_model=SuccessEnvelope[WorkflowResponse])
async def create_workflow(
    request: Request,
    payload: WorkflowCreateRequest,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> WorkflowResponse:
    try:
        view = await workflows_service.create_workflow(
            db, user, tenant_id=payload.tenant_id, title=payload.title, participants=payload.participants
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while creating workflow") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_WORKFLOW,
        activity_type="workflow_created",
        user_email=user.email,
        tenant_id=view.workflow.tenant_id,
        target_id=view.workflow.id,
        target_name=view.workflow.title,
        metadata={"participantCount": len(view.participants)},
    )
    return success_response(request=request, data=_to_response(view.workflow, view.participants))


@router.get(
    "/invitations",
    response_model=SuccessEnvelope[list[InvitationResponse]],
)
async def list_my_invitations(
    request: Request,
    status: str | None = Query(default=None, pattern="^(pending|accepted|declined|expired)$"),
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[InvitationResponse]:
    try:
        invitations = await workflows_service.list_my_invitations(db, user, status=status)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing invitations") from exc
    payload = [_invitation_response(invitation) for invitation in invitations]
    return success_response(request=request, data=payload)


@router.get(
    "/invitations/{invitation_id}",
    response_model=SuccessEnvelope[InvitationResponse],
)
async def get_invitation(
    request: Request,
    invitation_id: str,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> InvitationResponse:
    try:
        invitation = await workflows_service.get_invitation(db, user, invitation_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching invitation") from exc
    return success_response(request=request, data=_invitation_response(invitation))


@router.put(
    "/invitations/{invitation_id}",
    response_model=SuccessEnvelope[InvitationResponse],
)
async def respond_to_invitation(
    invitation_id: str,
    request: Request,
    payload: InvitationRespondRequest,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> InvitationResponse:
    try:
        invitation = await workflows_service.respond_to_invitation(
            db, user, invitation_id, action=payload.action
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while updating invitation") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_WORKFLOW,
        activity_type=f"invitation_{invitation.status}",
        user_email=user.email,
        target_id=invitation.workflow_id,
        metadata={"invitationId": invitation.id, "role": invitation.role},
    )
    return success_response(request=request, data=_invitation_response(invitation))


@router.delete(
    "/invitations/{invitation_id}",
    response_model=SuccessEnvelope[DeletedResponse],
)
async def delete_invitation(
    invitation_id: str,
    request: Request,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> DeletedResponse:
    try:
        invitation = await workflows_service.delete_invitation(db, user, invitation_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while deleting invitation") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_WORKFLOW,
        activity_type="invitation_withdrawn",
        user_email=user.email,
        target_id=invitation.workflow_id,
        metadata={"invitationId": invitation.id, "invitee": invitation.invitee_email},
    )
    return success_response(request=request, data=DeletedResponse(id=invitation.id, deleted=True))


@router.get("/{workflow_id}", response_model=SuccessEnvelope[WorkflowResponse])
async def get_workflow(
    request: Request,
    workflow_id: str,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    try:
        view = await workflows_service.get_workflow(db, user, workflow_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching workflow") from exc
    return success_response(request=request, data=_to_response(view.workflow, view.participants))


@router.delete("/{workflow_id}", response_model=SuccessEnvelope[DeletedResponse])
async def delete_workflow(
    workflow_id: str,
    request: Request,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> DeletedResponse:
    try:
        workflow = await workflows_service.delete_workflow(db, user, workflow_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while deleting workflow") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_WORKFLOW,
        activity_type="workflow_deleted",
        user_email=user.email,
        tenant_id=workflow.tenant_id,
        target_id=workflow.id,
        target_name=workflow.title,
    )
    return success_response(request=request, data=DeletedResponse(id=workflow.id, deleted=True))


@router.post(
    "/{workflow_id}/invitations",
    status_code=201,
    response_model=SuccessEnvelope[InvitationResponse],
)
async def invite_participant(
    workflow_id: str,
    request: Request,
    payload: InvitationCreateRequest,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> InvitationResponse:
    try:
        invitation = await workflows_service.invite_participant(
            db,
            user,
            workflow_id,
            invitee_email=payload.invitee_email,
            role=payload.role,
            message=payload.message,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while creating invitation") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_WORKFLOW,
        activity_type="WORKFLOW_INVITE",
        user_email=user.email,
        target_id=workflow_id,
        target_name=invitation.invitee_email,
        metadata={"invitationId": invitation.id, "role": invitation.role},
    )
    return success_response(request=request, data=_invitation_response(invitation))


async def _set_status(
    workflow_id: str,
    status: str,
    request: Request,
    user: AccessContext,
    db: AsyncSession,
    writer: SystemLogWriter,
) -> WorkflowResponse:
    try:
        workflow = await workflows_service.set_workflow_status(db, user, workflow_id, status=status)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while updating workflow") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_WORKFLOW,
        activity_type=f"workflow_{status}",
        user_email=user.email,
        tenant_id=workflow.tenant_id,
        target_id=workflow.id,
        target_name=workflow.title,
    )
    return success_response(request=request, data=_to_response(workflow))


@router.post("/{workflow_id}/complete", response_model=SuccessEnvelope[WorkflowResponse])
async def complete_workflow(
    workflow_id: str,
    request: Request,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> WorkflowResponse:
    return await _set_status(workflow_id, "completed", request, user, db, writer)


@router.post("/{workflow_id}/terminate", response_model=SuccessEnvelope[WorkflowResponse])
async def terminate_workflow(
    workflow_id: str,
    request: Request,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> WorkflowResponse:
    return await _set_status(workflow_id, "terminated", request, user, db, writer)
