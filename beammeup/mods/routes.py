"""Mod API routes: list, upload, delete."""

import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, File, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from beammeup.audit.models import AuditAction
from beammeup.audit.service import client_ip, record_audit
from beammeup.auth.csrf import verify_csrf
from beammeup.auth.dependencies import get_current_user, require_roles
from beammeup.auth.roles import MANAGERS
from beammeup.beammp.config_store import ConfigStore, get_config_store
from beammeup.config import get_settings
from beammeup.db.session import get_db
from beammeup.errors import NotFound, SizeLimitExceeded, ValidationError
from beammeup.limiter import limiter
from beammeup.mods.models import ModResponse, StoredModResponse
from beammeup.mods.service import ModStore
from beammeup.users.models import User

router = APIRouter(prefix="/api/mods", tags=["mods"])
log = logging.getLogger(__name__)


def get_mod_store(
    session: Annotated[AsyncSession, Depends(get_db)],
    config_store: Annotated[ConfigStore, Depends(get_config_store)],
) -> ModStore:
    return ModStore(session, config_store)


@router.get("/list", response_model=List[ModResponse])
async def list_mods(
    current_user: Annotated[User, Depends(get_current_user)],
    store: Annotated[ModStore, Depends(get_mod_store)],
) -> List[ModResponse]:
    mods = await store.list_mods()
    log.debug("list_mods user=%s count=%d", current_user.username, len(mods))
    return mods


@router.post(
    "/upload",
    response_model=StoredModResponse,
    status_code=201,
    dependencies=[Depends(verify_csrf)],
)
@limiter.limit("10/hour")
async def upload_mod(
    request: Request,
    current_user: Annotated[User, Depends(require_roles(*MANAGERS))],
    session: Annotated[AsyncSession, Depends(get_db)],
    store: Annotated[ModStore, Depends(get_mod_store)],
    file: Optional[UploadFile] = File(None),
) -> StoredModResponse:
    """
    Upload a mod archive (multipart field "file"). The body is read up to one byte
    past the limit so oversized uploads are rejected without buffering them whole.
    """
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")
    settings = get_settings()
    data = await file.read(settings.max_mod_size_bytes + 1)
    if len(data) > settings.max_mod_size_bytes:
        log.warning("upload_mod rejected %r: larger than %dMB", file.filename, settings.max_mod_size_mb)
        raise SizeLimitExceeded(f"File too large (max {settings.max_mod_size_mb}MB)")
    stored = await store.store(data, file.filename, current_user.id)
    await record_audit(
        session,
        current_user,
        AuditAction.MOD_UPLOAD,
        "mod",
        stored.id,
        {"filename": stored.filename, "originalName": stored.original_name, "size": len(data), "sha256": stored.sha256},
        client_ip(request),
    )
    log.info("upload_mod user=%s filename=%s size=%d", current_user.username, stored.filename, len(data))
    return stored


@router.delete("/{mod_id}", dependencies=[Depends(verify_csrf)])
async def delete_mod(
    mod_id: str,
    request: Request,
    current_user: Annotated[User, Depends(require_roles(*MANAGERS))],
    session: Annotated[AsyncSession, Depends(get_db)],
    store: Annotated[ModStore, Depends(get_mod_store)],
) -> dict:
    filename = await store.delete(mod_id)
    if filename is None:
        raise NotFound("Mod not found")
    await record_audit(
        session, current_user, AuditAction.MOD_DELETE, "mod", mod_id, {"filename": filename}, client_ip(request)
    )
    log.info("delete_mod user=%s filename=%s", current_user.username, filename)
    return {"message": "Mod deleted"}
