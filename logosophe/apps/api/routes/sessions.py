from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from logosophe.apps.api.deps import get_current_user, get_db, get_log_writer
from logosophe.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from logosophe.services.access import AccessContext
from logosophe.services.audit import LOG_TYPE_AUTH, SystemLogWriter, record_activity
from logosophe.services.auth.sessions import revoke_session


router = APIRouter(prefix="/sessions", tags=["sessions"], responses=DEFAULT_ERROR_RESPONSES)


@router.delete("/current", status_code=204, response_class=Response)
async def sign_out(
    request: Request,
    user: AccessContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: SystemLogWriter = Depends(get_log_writer),
) -> Response:
    # Dev-bypass identities have no session row; signing out is still logged.
    if user.session_id:
        try:
            await revoke_session(db, user.session_id)
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            raise HTTPException(status_code=500, detail="Database error while signing out") from exc
    await record_activity(
        writer,
        request=request,
        log_type=LOG_TYPE_AUTH,
        activity_type="sign_out",
        user_email=user.email,
        provider=user.auth_method,
        target_id=user.session_id,
    )
    return Response(status_code=204)
