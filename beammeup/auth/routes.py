"""Auth routes: CSRF token, login, logout, me, and first-run owner setup."""

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from beammeup.audit.models import AuditAction
from beammeup.audit.service import client_ip, record_audit
from beammeup.auth.csrf import generate_csrf_token, set_csrf_cookie, verify_csrf
from beammeup.auth.dependencies import SESSION_COOKIE, get_current_user
from beammeup.auth.tokens import verify_password
from beammeup.db.session import get_db
from beammeup.errors import Forbidden, ValidationError
from beammeup.limiter import limiter
from beammeup.users.models import (
    LoginResponse,
    MeResponse,
    OwnerCreate,
    Role,
    User,
    UserCreate,
    UserSummary,
    UserLogin,
)
from beammeup.users.service import (
    close_sessions,
    count_users,
    create_user,
    get_user_by_username,
    open_session,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])
setup_router = APIRouter(prefix="/api/setup", tags=["setup"])
log = logging.getLogger(__name__)


def _is_https(request: Request) -> bool:
    return request.url.scheme == "https" or request.headers.get("x-forwarded-proto") == "https"


def set_session_cookie(response: Response, request: Request, token: str, expires_at: datetime) -> None:
    """httpOnly session cookie; secure only when the client connection is HTTPS."""
    response.set_cookie(
        SESSION_COOKIE,
        token,
        expires=expires_at,
        httponly=True,
        secure=_is_https(request),
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response, request: Request) -> None:
    response.delete_cookie(
        SESSION_COOKIE, path="/", httponly=True, secure=_is_https(request), samesite="lax"
    )


@router.get("/csrf")
async def issue_csrf(response: Response) -> dict:
    """Issue a CSRF token as a readable cookie and in the body."""
    token = generate_csrf_token()
    set_csrf_cookie(response, token)
    return {"csrf_token": token}


@router.post("/login", response_model=LoginResponse, dependencies=[Depends(verify_csrf)])
@limiter.limit("5/15 minutes")
async def login(
    request: Request,
    response: Response,
    body: UserLogin,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> LoginResponse:
    """Login with username and password; sets the session cookie."""
    user = await get_user_by_username(session, body.username)
    if not user or not verify_password(body.password, user.password_hash):
        log.warning("Login failed for username=%s", body.username)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if not user.is_active:
        log.warning("Login refused for inactive username=%s", user.username)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is inactive")
    row = await open_session(session, user, client_ip(request))
    set_session_cookie(response, request, row.token, row.expires_at)
    await record_audit(session, user, AuditAction.USER_LOGIN, "user", user.id, ip_address=client_ip(request))
    log.info("Login successful for username=%s", user.username)
    return LoginResponse(user=UserSummary.model_validate(user))


@router.post("/logout", dependencies=[Depends(verify_csrf)])
async def logout(
    request: Request,
    response: Response,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    """End every session of the current user and clear the cookie."""
    await close_sessions(session, current_user.id)
    await record_audit(
        session, current_user, AuditAction.USER_LOGOUT, "user", current_user.id, ip_address=client_ip(request)
    )
    clear_session_cookie(response, request)
    log.info("Logout for username=%s", current_user.username)
    return {"message": "Logged out"}


@router.get("/me", response_model=MeResponse)
async def me(current_user: Annotated[User, Depends(get_current_user)]) -> MeResponse:
    """Return current authenticated user."""
    return MeResponse.model_validate(current_user, from_attributes=True)


@setup_router.get("/status")
async def setup_status(session: Annotated[AsyncSession, Depends(get_db)]) -> dict:
    return {"needsSetup": await count_users(session) == 0}


@setup_router.post("/create-owner", status_code=201, dependencies=[Depends(verify_csrf)])
@limiter.limit("5/15 minutes")
async def create_owner(
    request: Request,
    response: Response,
    body: OwnerCreate,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    """Create the first user as OWNER and log them in. Only allowed while no users exist."""
    if await count_users(session) > 0:
        raise Forbidden("Setup already complete")
    if body.password != body.confirm_password:
        raise ValidationError(
            "Validation failed",
            errors=[{"field": "confirmPassword", "message": "Passwords do not match"}],
        )
    user = await create_user(
        session,
        UserCreate(username=body.username, password=body.password, email=body.email, role=Role.OWNER),
    )
    row = await open_session(session, user, client_ip(request))
    set_session_cookie(response, request, row.token, row.expires_at)
    log.info("Setup complete: owner username=%s", user.username)
    return {"user": UserSummary.model_validate(user).model_dump()}
