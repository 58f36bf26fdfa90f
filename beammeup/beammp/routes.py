"""Server config routes: view, update, AuthKey, backups, map listing and labels."""

import logging
from typing import Annotated, Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from beammeup.audit.models import AuditAction
from beammeup.audit.service import client_ip, record_audit
from beammeup.auth.csrf import verify_csrf
from beammeup.auth.dependencies import get_current_user, require_roles
from beammeup.auth.roles import MANAGERS, OPERATORS
from beammeup.auth.tokens import verify_password
from beammeup.beammp.config_store import ConfigStore, get_config_store
from beammeup.beammp.validation import (
    auth_key_status,
    carry_forward_auth_key,
    compute_config_diff,
    redact_auth_key,
    validate_config,
    validate_new_auth_key,
    with_auth_key,
)
from beammeup.db.session import get_db
from beammeup.errors import ValidationError
from beammeup.limiter import limiter
from beammeup.mods.map_index import list_maps, set_map_label
from beammeup.mods.models import MapLabelResponse, MapLabelUpdate, MapListResponse
from beammeup.mods.storage import resolve_mods_dir
from beammeup.users.models import User

router = APIRouter(prefix="/api/config", tags=["config"])
log = logging.getLogger(__name__)


class AuthKeyReplace(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    new_auth_key: str = Field(alias="newAuthKey")
    password: str = Field(min_length=1, max_length=256)


class BackupResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: str
    created_at: Any = Field(alias="createdAt")
    size: int


@router.get("/current")
async def get_current_config(
    request: Request,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)],
    store: Annotated[ConfigStore, Depends(get_config_store)],
) -> Dict[str, Any]:
    """Current ServerConfig without the AuthKey."""
    config = store.read()
    await record_audit(session, current_user, AuditAction.CONFIG_VIEW, "config", ip_address=client_ip(request))
    return redact_auth_key(config)


@router.get("/authkey-status")
async def get_authkey_status(
    current_user: Annotated[User, Depends(get_current_user)],
    store: Annotated[ConfigStore, Depends(get_config_store)],
) -> Dict[str, bool]:
    return auth_key_status(store.read())


@router.put("/update", dependencies=[Depends(verify_csrf)])
async def update_config(
    request: Request,
    payload: Annotated[Dict[str, Any], Body()],
    current_user: Annotated[User, Depends(require_roles(*OPERATORS))],
    session: Annotated[AsyncSession, Depends(get_db)],
    store: Annotated[ConfigStore, Depends(get_config_store)],
) -> dict:
    """Validate, back up the previous version and write. The stored AuthKey is kept."""
    issues = validate_config(payload)
    if issues:
        log.warning("Config update by %s rejected: %d issues", current_user.username, len(issues))
        raise ValidationError("Validation failed", errors=[i.to_dict() for i in issues])
    old_config = store.read()
    new_config = carry_forward_auth_key(old_config, payload)
    diff = compute_config_diff(old_config, new_config)
    store.backup(old_config)
    store.write(new_config)
    await record_audit(
        session, current_user, AuditAction.CONFIG_UPDATE, "config", details=diff, ip_address=client_ip(request)
    )
    log.info("Config updated by %s (%d sections changed)", current_user.username, len(diff))
    return {"message": "Config updated successfully"}


@router.post("/authkey-replace", dependencies=[Depends(verify_csrf)])
@limiter.limit("3/hour")
async def replace_authkey(
    request: Request,
    body: AuthKeyReplace,
    current_user: Annotated[User, Depends(require_roles(*MANAGERS))],
    session: Annotated[AsyncSession, Depends(get_db)],
    store: Annotated[ConfigStore, Depends(get_config_store)],
) -> dict:
    """Replace the AuthKey. Requires the caller's password again."""
    if not verify_password(body.password, current_user.password_hash):
        log.warning("AuthKey replace by %s refused: wrong password", current_user.username)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid password")
    issues = validate_new_auth_key(body.new_auth_key)
    if issues:
        raise ValidationError("Invalid AuthKey format", errors=[i.to_dict() for i in issues])
    config = store.read()
    store.backup(config)
    store.write(with_auth_key(config, body.new_auth_key))
    await record_audit(
        session, current_user, AuditAction.AUTHKEY_REPLACE, "config", details={"changed": True},
        ip_address=client_ip(request),
    )
    log.info("AuthKey replaced by %s", current_user.username)
    return {"message": "AuthKey updated successfully"}


@router.get("/backups", response_model=list[BackupResponse])
async def get_backups(
    current_user: Annotated[User, Depends(require_roles(*MANAGERS))],
    store: Annotated[ConfigStore, Depends(get_config_store)],
) -> list[BackupResponse]:
    """Config backups newest first."""
    return [
        BackupResponse(filename=b.filename, created_at=b.created_at, size=b.size)
        for b in store.list_backups()
    ]


@router.get("/maps", response_model=MapListResponse)
async def get_maps(
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)],
    store: Annotated[ConfigStore, Depends(get_config_store)],
) -> MapListResponse:
    """Maps found in uploaded mods. timedOut/skippedLarge mark partial results."""
    listing = await list_maps(session, resolve_mods_dir(store))
    return MapListResponse(
        maps=listing.maps,
        timed_out=listing.timed_out,
        scanned_files=listing.scanned_files,
        skipped_large=listing.skipped_large,
    )


@router.put("/maps/label", response_model=MapLabelResponse, dependencies=[Depends(verify_csrf)])
async def put_map_label(
    request: Request,
    body: MapLabelUpdate,
    current_user: Annotated[User, Depends(require_roles(*OPERATORS))],
    session: Annotated[AsyncSession, Depends(get_db)],
) -> MapLabelResponse:
    row = await set_map_label(session, body.map_path, body.label)
    await record_audit(
        session, current_user, AuditAction.MAP_LABEL_UPDATE, "map", body.map_path,
        {"label": row.label}, client_ip(request),
    )
    return MapLabelResponse(map_path=row.map_path, label=row.label)
