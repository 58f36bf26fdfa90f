"""User admin routes (owner/admin): list, create, update, delete."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from beammeup.audit.models import AuditAction
from beammeup.audit.service import client_ip, record_audit
from beammeup.auth.csrf import verify_csrf
from beammeup.auth.dependencies import require_roles
from beammeup.auth.roles import MANAGERS
from beammeup.db.session import get_db
from beammeup.users.models import User, UserCreate, UserResponse, UserSummary, UserUpdate
from beammeup.users.service import create_user, delete_user, list_users, update_user

router = APIRouter(prefix="/api/users", tags=["users"])
log = logging.getLogger(__name__)


@router.get("/list", response_model=list[UserResponse])
async def admin_list_users(
    current_user: Annotated[User, Depends(require_roles(*MANAGERS))],
    session: Annotated[AsyncSession, Depends(get_db)],
) -> list[UserResponse]:
    users = await list_users(session)
    log.info("User %s listed users count=%d", current_user.username, len(users))
    return [UserResponse.model_validate(u) for u in users]


@router.post("/create", response_model=UserSummary, status_code=201, dependencies=[Depends(verify_csrf)])
async def admin_create_user(
    request: Request,
    payload: UserCreate,
    current_user: Annotated[User, Depends(require_roles(*MANAGERS))],
    session: Annotated[AsyncSession, Depends(get_db)],
) -> UserSummary:
    user = await create_user(session, payload)
    await record_audit(
        session,
        current_user,
        AuditAction.USER_CREATE,
        "user",
        user.id,
        {"username": user.username, "role": user.role},
        client_ip(request),
    )
    log.info("User %s created user username=%s role=%s", current_user.username, user.username, user.role)
    return UserSummary.model_validate(user)


@router.put("/{user_id}", response_model=UserSummary, dependencies=[Depends(verify_csrf)])
async def admin_update_user(
    user_id: str,
    request: Request,
    payload: UserUpdate,
    current_user: Annotated[User, Depends(require_roles(*MANAGERS))],
    session: Annotated[AsyncSession, Depends(get_db)],
) -> UserSummary:
    user = await update_user(session, user_id, payload)
    await record_audit(
        session,
        current_user,
        AuditAction.USER_UPDATE,
        "user",
        user_id,
        {"role": payload.role.value if payload.role else None, "isActive": payload.is_active},
        client_ip(request),
    )
    log.info("User %s updated user id=%s", current_user.username, user_id)
    return UserSummary.model_validate(user)


@router.delete("/{user_id}", dependencies=[Depends(verify_csrf)])
async def admin_delete_user(
    user_id: str,
    request: Request,
    current_user: Annotated[User, Depends(require_roles(*MANAGERS))],
    session: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    """Delete a user. Cannot delete yourself or the last owner."""
    deleted = await delete_user(session, current_user, user_id)
    await record_audit(
        session,
        current_user,
        AuditAction.USER_DELETE,
        "user",
        user_id,
        {"username": deleted.username, "role": deleted.role},
        client_ip(request),
    )
    log.info("User %s deleted user username=%s", current_user.username, deleted.username)
    return {"message": "User deleted"}
