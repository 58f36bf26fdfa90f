"""Game server control routes: status, restart, logs."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from beammeup.audit.models import AuditAction
from beammeup.audit.service import client_ip, record_audit
from beammeup.auth.csrf import verify_csrf
from beammeup.auth.dependencies import get_current_user, require_roles
from beammeup.auth.roles import OPERATORS
from beammeup.db.session import get_db
from beammeup.server.docker import (
    MAX_LOG_LINES,
    get_container_logs,
    get_container_status,
    restart_container,
    uptime_seconds,
)
from beammeup.users.models import User

router = APIRouter(prefix="/api/server", tags=["server"])
log = logging.getLogger(__name__)


@router.get("/status")
async def server_status(current_user: Annotated[User, Depends(get_current_user)]) -> dict:
    status = await get_container_status()
    return {"running": status.running, "state": status.state, "uptime": uptime_seconds(status)}


@router.post("/restart", dependencies=[Depends(verify_csrf)])
async def server_restart(
    request: Request,
    current_user: Annotated[User, Depends(require_roles(*OPERATORS))],
    session: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    await restart_container()
    await record_audit(session, current_user, AuditAction.SERVER_RESTART, "server", ip_address=client_ip(request))
    log.info("Server restarted by %s", current_user.username)
    return {"message": "Server restarted successfully"}


@router.get("/logs")
async def server_logs(
    request: Request,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)],
    lines: Annotated[int, Query(ge=1)] = 200,
) -> dict:
    """Last lines of the container log; lines is capped at MAX_LOG_LINES."""
    lines = min(lines, MAX_LOG_LINES)
    output = await get_container_logs(lines)
    await record_audit(
        session, current_user, AuditAction.LOGS_VIEW, "server", details={"lines": lines},
        ip_address=client_ip(request),
    )
    return {"logs": output.splitlines()}
