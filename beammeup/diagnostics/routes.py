"""Health and diagnostics export routes."""

import csv
import io
import logging
import platform
import time
from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError, version
from typing import Annotated, Any, Dict, Literal

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from beammeup.audit.models import AuditAction
from beammeup.audit.service import client_ip, count_by_action, list_audit_logs, record_audit
from beammeup.auth.dependencies import require_roles
from beammeup.auth.roles import OPERATORS, OWNERS
from beammeup.beammp.config_store import ConfigStore, get_config_store
from beammeup.beammp.validation import auth_key_status
from beammeup.config import get_settings
from beammeup.db.session import get_db, ping_db
from beammeup.errors import ConfigUnavailable
from beammeup.mods.service import ModStore
from beammeup.sanitize import sanitize_for_logging
from beammeup.users.models import Role, User, UserSession
from beammeup.users.service import count_users

router = APIRouter(prefix="/api/diagnostics", tags=["diagnostics"])
log = logging.getLogger(__name__)

_STARTED = time.monotonic()
RECENT_AUDIT_LIMIT = 100


def app_version() -> str:
    try:
        return version("beammeup")
    except PackageNotFoundError:
        return "unknown"


def format_uptime(seconds: float) -> str:
    """Human form like '1d 2h 3m 4s'; units that are zero are left out."""
    seconds = int(seconds)
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    parts = [f"{n}{unit}" for n, unit in ((days, "d"), (hours, "h"), (minutes, "m"), (secs, "s")) if n > 0]
    return " ".join(parts) or "0s"


def _config_checks(store: ConfigStore) -> Dict[str, bool]:
    try:
        status = auth_key_status(store.read())
        auth_key_ok = status["isSet"] and not status["isDefault"]
    except ConfigUnavailable:
        auth_key_ok = False
    try:
        backups_exist = bool(store.list_backups())
    except OSError:
        backups_exist = False
    return {"authKeyConfigured": auth_key_ok, "backupsExist": backups_exist}


async def collect_diagnostics(session: AsyncSession, store: ConfigStore) -> Dict[str, Any]:
    """Counts, audit summary and health checks. Secrets are never included."""
    uptime = time.monotonic() - _STARTED
    users = await count_users(session)
    sessions = int((await session.execute(select(func.count()).select_from(UserSession))).scalar_one())
    recent, audit_total = await list_audit_logs(session, limit=RECENT_AUDIT_LIMIT)
    mods = await ModStore(session, store).count()
    db_ok = await ping_db()
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "system": {
            "pythonVersion": platform.python_version(),
            "version": app_version(),
            "uptime": {"seconds": int(uptime), "human": format_uptime(uptime)},
            "environment": get_settings().environment,
        },
        "database": {
            "users": users,
            "sessions": sessions,
            "auditLogs": audit_total,
            "mods": mods,
            "isHealthy": db_ok and users > 0,
        },
        "audit": {
            "totalLogs": audit_total,
            "actionBreakdown": await count_by_action(session),
            "recentLogs": [
                sanitize_for_logging({
                    "timestamp": row.created_at.isoformat() if row.created_at else None,
                    "action": row.action,
                    "resource": row.resource,
                    "user": row.username,
                })
                for row in recent
            ],
        },
        "checks": {
            "hasOwner": await count_users(session, role=Role.OWNER) > 0,
            "databaseHealthy": db_ok,
            **_config_checks(store),
        },
    }


def diagnostics_to_csv(data: Dict[str, Any]) -> str:
    """Sectioned two-column CSV of the diagnostics report."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    system, database, checks = data["system"], data["database"], data["checks"]
    writer.writerow(["=== SYSTEM INFO ==="])
    writer.writerow(["Timestamp", data["timestamp"]])
    writer.writerow(["Python Version", system["pythonVersion"]])
    writer.writerow(["Version", system["version"]])
    writer.writerow(["Uptime", system["uptime"]["human"]])
    writer.writerow(["Environment", system["environment"]])
    writer.writerow([])
    writer.writerow(["=== DATABASE ==="])
    writer.writerow(["Users", database["users"]])
    writer.writerow(["Sessions", database["sessions"]])
    writer.writerow(["Audit Logs", database["auditLogs"]])
    writer.writerow(["Mods", database["mods"]])
    writer.writerow(["Health", "OK" if database["isHealthy"] else "ERROR"])
    writer.writerow([])
    writer.writerow(["=== AUDIT SUMMARY ==="])
    writer.writerow(["Action", "Count"])
    for action, count in sorted(data["audit"]["actionBreakdown"].items()):
        writer.writerow([action, count])
    writer.writerow([])
    writer.writerow(["=== HEALTH CHECKS ==="])
    for label, key in (
        ("Has Owner", "hasOwner"),
        ("Auth Key Configured", "authKeyConfigured"),
        ("Backups Exist", "backupsExist"),
        ("Database Healthy", "databaseHealthy"),
    ):
        writer.writerow([label, "PASS" if checks[key] else "FAIL"])
    return buf.getvalue()


@router.get("/health")
async def diagnostics_health(current_user: Annotated[User, Depends(require_roles(*OPERATORS))]) -> dict:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": int(time.monotonic() - _STARTED),
        "database": {"connected": await ping_db()},
        "version": app_version(),
    }


@router.get("/export")
async def diagnostics_export(
    request: Request,
    current_user: Annotated[User, Depends(require_roles(*OWNERS))],
    session: Annotated[AsyncSession, Depends(get_db)],
    store: Annotated[ConfigStore, Depends(get_config_store)],
    format: Annotated[Literal["json", "csv"], Query()] = "json",
):
    """Diagnostics report as JSON (default) or CSV attachment. Owner only."""
    data = await collect_diagnostics(session, store)
    await record_audit(
        session, current_user, AuditAction.DIAGNOSTICS_EXPORT, "system", details={"format": format},
        ip_address=client_ip(request),
    )
    log.info("Diagnostics exported by %s format=%s", current_user.username, format)
    if format == "csv":
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%SZ")
        return Response(
            content=diagnostics_to_csv(data),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="beammeup-diagnostics-{stamp}.csv"'},
        )
    return data
