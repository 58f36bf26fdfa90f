"""FastAPI dependencies for auth."""

import logging
from datetime import datetime, timezone
from typing import Annotated, Callable, Optional

from fastapi import Cookie, Depends, HTTPException, status
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from beammeup.auth.roles import has_capability
from beammeup.auth.tokens import get_subject_from_session
from beammeup.db.session import get_db
from beammeup.users.models import Role, User, UserSession

log = logging.getLogger(__name__)

SESSION_COOKIE = "session_token"


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def get_current_user(
    session: Annotated[AsyncSession, Depends(get_db)],
    session_token: Annotated[Optional[str], Cookie()] = None,
) -> User:
    """Resolve the session cookie to the current user; raise 401 if invalid or missing."""
    if not session_token:
        log.debug("Request missing session cookie")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    user_id = get_subject_from_session(session_token)
    if not user_id:
        log.debug("Invalid or expired session token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    row = await session.get(UserSession, session_token)
    if not row or row.user_id != user_id:
        log.debug("Session token not found in store")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if _as_utc(row.expires_at) < datetime.now(timezone.utc):
        await session.execute(delete(UserSession).where(UserSession.token == session_token))
        await session.commit()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired")
    user = await session.get(User, user_id)
    if not user or not user.is_active:
        log.warning("Session valid but user missing or inactive: id=%s", user_id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user


def require_roles(*roles: Role) -> Callable:
    """Dependency factory: current user must hold one of roles, else 403."""

    async def _check(current_user: Annotated[User, Depends(get_current_user)]) -> User:
        if not has_capability(current_user.role, roles):
            log.warning(
                "Forbidden: user=%s role=%s required=%s",
                current_user.username,
                current_user.role,
                ",".join(r.value for r in roles),
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return _check
