"""Audit routes: paged listing and CSV export (owner/admin)."""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from beammeup.audit.models import AuditLogPage, AuditLogResponse
from beammeup.audit.service import export_audit_csv, list_audit_logs
from beammeup.auth.dependencies import require_roles
from beammeup.auth.roles import MANAGERS
from beammeup.db.session import get_db
from beammeup.users.models import User

router = APIRouter(prefix="/api/audit", tags=["audit"])
log = logging.getLogger(__name__)


@router.get("/logs", response_model=AuditLogPage)
async def get_logs(
    current_user: Annotated[User, Depends(require_roles(*MANAGERS))],
    session: Annotated[AsyncSession, Depends(get_db)],
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
    offset: Annotated[int, Query(ge=0, le=1_000_000)] = 0,
    action: Optional[str] = None,
    resource: Optional[str] = None,
) -> AuditLogPage:
    """Audit entries newest first, optionally filtered by action and resource."""
    rows, total = await list_audit_logs(session, limit, offset, action, resource)
    return AuditLogPage(
        logs=[AuditLogResponse.model_validate(r) for r in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/export")
async def export_logs(
    current_user: Annotated[User, Depends(require_roles(*MANAGERS))],
    session: Annotated[AsyncSession, Depends(get_db)],
) -> Response:
    content = await export_audit_csv(session)
    log.info("Audit export by user=%s", current_user.username)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="audit-log.csv"'},
    )
