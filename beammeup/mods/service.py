"""Mod store: validate, hash, persist and delete uploaded mod archives."""

import asyncio
import hashlib
import io
import logging
import zipfile
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from beammeup.beammp.config_store import ConfigStore
from beammeup.config import get_settings
from beammeup.errors import SizeLimitExceeded
from beammeup.mods.archive import map_paths_in_names, validate_archive
from beammeup.mods.map_index import remove_index_entries, replace_index_entries
from beammeup.mods.models import ModFile, ModResponse, StoredModResponse, UploaderRef
from beammeup.mods.storage import (
    delete_mod_file,
    identity_of,
    resolve_mods_dir,
    stored_filename_for,
    write_mod,
)
from beammeup.users.models import User

log = logging.getLogger(__name__)


def compute_hash(body: bytes) -> str:
    """SHA-256 hex digest of the archive bytes."""
    return hashlib.sha256(body).hexdigest()


def _inspect(data: bytes, max_entries: int) -> set:
    """Validate structure and collect map paths from the central directory."""
    validate_archive(data)
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return map_paths_in_names(zf.namelist(), max_entries)


class ModStore:
    """Uploaded archives on disk plus their metadata rows."""

    def __init__(self, session: AsyncSession, config_store: ConfigStore) -> None:
        self.session = session
        self.config_store = config_store

    async def store(self, data: bytes, original_filename: str, uploader_id: Optional[str]) -> StoredModResponse:
        """
        Validate and persist an upload, record it, and seed the map index so the
        first listing does not have to open the new archive. Archives larger than
        the map scan cutoff are not seeded.
        Raises SizeLimitExceeded or InvalidArchive.
        """
        settings = get_settings()
        max_bytes = settings.max_mod_size_bytes
        if len(data) > max_bytes:
            raise SizeLimitExceeded(f"File too large (max {settings.max_mod_size_mb}MB)")
        map_paths = await asyncio.to_thread(_inspect, data, settings.map_scan_max_entries)
        sha256 = compute_hash(data)
        stored_filename = stored_filename_for(original_filename)
        mods_dir = resolve_mods_dir(self.config_store)
        target = await asyncio.to_thread(write_mod, mods_dir, stored_filename, data)
        mod = ModFile(
            stored_filename=stored_filename,
            original_name=original_filename,
            size_bytes=len(data),
            sha256=sha256,
            uploaded_by_user_id=uploader_id,
        )
        try:
            self.session.add(mod)
            await self.session.flush()
            # Archives over the scan cutoff stay uncached, as in list_maps
            if len(data) <= settings.map_scan_max_archive_bytes:
                await replace_index_entries(self.session, identity_of(target), map_paths)
        except Exception:
            target.unlink(missing_ok=True)
            raise
        log.info(
            "Stored mod %s (%d bytes, sha256=%s, maps=%d) in %s",
            stored_filename, len(data), sha256, len(map_paths), mods_dir,
        )
        return StoredModResponse(
            id=mod.id,
            filename=mod.stored_filename,
            original_name=mod.original_name,
            sha256=mod.sha256,
        )

    async def delete(self, mod_id: str) -> Optional[str]:
        """
        Remove the DB record and try to remove the file. Returns the stored filename,
        or None for an unknown id. Disk failures are logged, not raised.
        """
        mod = await self.session.get(ModFile, mod_id)
        if not mod:
            return None
        filename = mod.stored_filename
        mods_dir = resolve_mods_dir(self.config_store)
        try:
            await asyncio.to_thread(delete_mod_file, mods_dir, filename)
        except FileNotFoundError:
            log.warning("Mod file already missing on disk: %s", filename)
        except (OSError, ValueError) as e:
            log.error("Failed to delete mod file %s: %s", filename, e)
        await self.session.delete(mod)
        await remove_index_entries(self.session, filename)
        await self.session.flush()
        log.info("Deleted mod id=%s filename=%s", mod_id, filename)
        return filename

    async def list_mods(self) -> List[ModResponse]:
        """Uploaded mods newest first with their uploader."""
        result = await self.session.execute(
            select(ModFile, User.id, User.username)
            .outerjoin(User, ModFile.uploaded_by_user_id == User.id)
            .order_by(ModFile.uploaded_at.desc(), ModFile.stored_filename.desc())
        )
        mods: List[ModResponse] = []
        for mod, user_id, username in result.all():
            mods.append(
                ModResponse(
                    id=mod.id,
                    original_name=mod.original_name,
                    size=mod.size_bytes,
                    sha256=mod.sha256,
                    uploaded_at=mod.uploaded_at,
                    uploaded_by=UploaderRef(id=user_id, username=username) if user_id else None,
                )
            )
        return mods

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(ModFile))
        return int(result.scalar_one())
