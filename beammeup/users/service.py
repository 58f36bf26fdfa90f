"""User service: lookup, create, update, delete, sessions, bootstrap owner."""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from beammeup.auth.tokens import create_session_token, hash_password, session_expiry
from beammeup.config import get_settings
from beammeup.errors import Forbidden, NotFound, ValidationError
from beammeup.users.models import Role, User, UserCreate, UserSession, UserUpdate

log = logging.getLogger(__name__)


async def get_user_by_username(session: AsyncSession, username: str) -> Optional[User]:
    """Return user by username or None."""
    result = await session.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def get_user_by_id(session: AsyncSession, user_id: str) -> Optional[User]:
    return await session.get(User, user_id)


async def count_users(session: AsyncSession, role: Optional[Role] = None) -> int:
    stmt = select(func.count()).select_from(User)
    if role is not None:
        stmt = stmt.where(User.role == role.value)
    result = await session.execute(stmt)
    return int(result.scalar_one())


async def list_users(session: AsyncSession) -> list[User]:
    result = await session.execute(select(User).order_by(User.username))
    return list(result.scalars().all())


async def create_user(session: AsyncSession, payload: UserCreate) -> User:
    """
    Create a new user. Raises ValidationError if the username is taken.
    Caller must commit session.
    """
    existing = await get_user_by_username(session, payload.username)
    if existing:
        raise ValidationError("Username already exists")
    user = User(
        username=payload.username,
        email=payload.email,
        password_hash=hash_password(payload.password),
        role=payload.role.value,
        is_active=True,
    )
    session.add(user)
    await session.flush()
    return user


async def update_user(session: AsyncSession, user_id: str, payload: UserUpdate) -> User:
    """Apply a partial update. Raises NotFound for an unknown id."""
    user = await get_user_by_id(session, user_id)
    if not user:
        raise NotFound("User not found")
    if payload.role is not None:
        user.role = payload.role.value
    if payload.is_active is not None:
        user.is_active = payload.is_active
    if payload.password:
        user.password_hash = hash_password(payload.password)
        # A password reset ends existing sessions
        await session.execute(delete(UserSession).where(UserSession.user_id == user.id))
    await session.flush()
    return user


async def delete_user(session: AsyncSession, actor: User, user_id: str) -> User:
    """
    Delete a user. Refuses to delete the actor themselves or the last OWNER.
    Returns the deleted user.
    """
    if user_id == actor.id:
        raise ValidationError("Cannot delete yourself")
    user = await get_user_by_id(session, user_id)
    if not user:
        raise NotFound("User not found")
    if user.role == Role.OWNER.value and await count_users(session, Role.OWNER) <= 1:
        raise Forbidden("Cannot delete the last Owner")
    await session.execute(delete(UserSession).where(UserSession.user_id == user.id))
    await session.delete(user)
    await session.flush()
    return user


async def open_session(session: AsyncSession, user: User, ip_address: Optional[str]) -> UserSession:
    """Record a new session for user and stamp last_login. Caller must commit."""
    now = datetime.now(timezone.utc)
    expires_at = session_expiry(now)
    row = UserSession(
        token=create_session_token(user.id, expires_at),
        user_id=user.id,
        expires_at=expires_at,
        ip_address=ip_address,
    )
    user.last_login = now
    session.add(row)
    await session.flush()
    return row


async def close_sessions(session: AsyncSession, user_id: str) -> None:
    """Remove every session of the user (logout everywhere)."""
    await session.execute(delete(UserSession).where(UserSession.user_id == user_id))


async def ensure_owner_exists(session: AsyncSession) -> None:
    """
    If BEAMMEUP_OWNER_USERNAME and BEAMMEUP_OWNER_INITIAL_PASSWORD are set
    and no user exists yet, create the first owner.
    """
    settings = get_settings()
    if not settings.owner_username or not settings.owner_initial_password:
        return
    if await count_users(session) > 0:
        return
    log.info("Creating bootstrap owner username=%s", settings.owner_username)
    session.add(
        User(
            username=settings.owner_username,
            password_hash=hash_password(settings.owner_initial_password),
            role=Role.OWNER.value,
            is_active=True,
        )
    )
    await session.flush()
