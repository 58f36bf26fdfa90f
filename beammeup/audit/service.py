"""Audit recording, listing and CSV export."""

import csv
import io
import json
import logging
from typing import Any, Optional

from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from beammeup.audit.models import AuditAction, AuditLog
from beammeup.sanitize import sanitize_for_logging
from beammeup.users.models import User

log = logging.getLogger(__name__)

CSV_HEADER = ["ID", "Timestamp", "User", "Action", "Resource", "ResourceID", "IPAddress", "Details"]


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def record_audit(
    session: AsyncSession,
    user: Optional[User],
    action: AuditAction,
    resource: str,
    resource_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> None:
    """
    Add an audit row to the request's session (committed with it). Never raises:
    a failed audit entry is logged and must not fail the action being audited.
    """
    try:
        session.add(
            AuditLog(
                user_id=user.id if user else None,
                username=user.username if user else None,
                action=action.value,
                resource=resource,
                resource_id=resource_id,
                details=json.dumps(sanitize_for_logging(details), default=str) if details else None,
                ip_address=ip_address,
            )
        )
    except Exception as e:
        log.warning("Failed to record audit action %s: %s", action.value, e)


def _filtered(stmt, action: Optional[str], resource: Optional[str]):
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource:
        stmt = stmt.where(AuditLog.resource == resource)
    return stmt


async def list_audit_logs(
    session: AsyncSession,
    limit: int = 100,
    offset: int = 0,
    action: Optional[str] = None,
    resource: Optional[str] = None,
) -> tuple[list[AuditLog], int]:
    """Return (page newest first, total matching)."""
    stmt = _filtered(select(AuditLog), action, resource)
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).offset(offset)
    rows = list((await session.execute(stmt)).scalars().all())
    total_stmt = _filtered(select(func.count()).select_from(AuditLog), action, resource)
    total = int((await session.execute(total_stmt)).scalar_one())
    return rows, total


async def count_by_action(session: AsyncSession) -> dict[str, int]:
    result = await session.execute(
        select(AuditLog.action, func.count(AuditLog.id)).group_by(AuditLog.action)
    )
    return {action: int(n) for action, n in result.all()}


async def export_audit_csv(session: AsyncSession) -> str:
    """All audit rows as CSV, newest first."""
    result = await session.execute(
        select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    )
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for row in result.scalars().all():
        writer.writerow([
            row.id,
            row.created_at.isoformat() if row.created_at else "",
            row.username or "",
            row.action,
            row.resource,
            row.resource_id or "",
            row.ip_address or "",
            row.details or "",
        ])
    return buf.getvalue()
