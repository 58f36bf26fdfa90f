"""
Map index cache: which map manifests (levels/<name>/info.json) the mod archives hold.

Opening an archive is the expensive step, so scan results are cached per archive
keyed by its (filename, size, mtime) identity. A listing reconciles the cache with
the mod directory:

1. enumerate archives with their identity,
2. purge cached entries for filenames no longer present,
3. reuse entries whose identity matches exactly (no archive is opened),
4. otherwise skip archives above the scan size cutoff (skippedLarge) or scan
   them, caching the found paths or NO_MAPS_SENTINEL,
5. stop starting new scans once the wall-clock budget is spent (timedOut);
   results already collected are still returned.

Replacing a file changes its size or mtime, which invalidates its entries without
an explicit invalidation call. Equal size and mtime truncated to the millisecond is
treated as unchanged content.
"""

import asyncio
import logging
import time
import zipfile
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from beammeup.config import get_settings
from beammeup.mods.archive import scan_archive_for_maps
from beammeup.mods.models import NO_MAPS_SENTINEL, MapLabel, MapOption, ModMapIndexEntry
from beammeup.mods.storage import ArchiveIdentity, list_archives

log = logging.getLogger(__name__)

# Stay under the SQLite bound-parameter limit
_SQL_CHUNK = 500


@dataclass
class MapListing:
    maps: List[MapOption] = field(default_factory=list)
    timed_out: bool = False
    scanned_files: int = 0
    skipped_large: int = 0


@dataclass
class _CachedScan:
    size_bytes: int
    mtime_ms: int
    paths: Set[str]
    consistent: bool = True

    def matches(self, identity: ArchiveIdentity) -> bool:
        return (
            self.consistent
            and self.size_bytes == identity.size_bytes
            and self.mtime_ms == identity.mtime_ms
        )


async def _load_cache(session: AsyncSession) -> Dict[str, _CachedScan]:
    result = await session.execute(select(ModMapIndexEntry))
    cache: Dict[str, _CachedScan] = {}
    for row in result.scalars().all():
        cached = cache.get(row.mod_filename)
        if cached is None:
            cached = cache[row.mod_filename] = _CachedScan(row.mod_size_bytes, row.mod_mtime, set())
        elif cached.size_bytes != row.mod_size_bytes or cached.mtime_ms != row.mod_mtime:
            # Mixed identities for one filename: rescan rather than trust either
            cached.consistent = False
        if row.map_path != NO_MAPS_SENTINEL:
            cached.paths.add(row.map_path)
    return cache


async def replace_index_entries(session: AsyncSession, identity: ArchiveIdentity, paths: Iterable[str]) -> None:
    """Replace every cached entry for identity.filename with paths (or the no-maps sentinel)."""
    await session.execute(delete(ModMapIndexEntry).where(ModMapIndexEntry.mod_filename == identity.filename))
    unique = sorted(set(paths)) or [NO_MAPS_SENTINEL]
    session.add_all(
        ModMapIndexEntry(
            mod_filename=identity.filename,
            mod_size_bytes=identity.size_bytes,
            mod_mtime=identity.mtime_ms,
            map_path=p,
        )
        for p in unique
    )
    await session.flush()


async def remove_index_entries(session: AsyncSession, filename: str) -> None:
    await session.execute(delete(ModMapIndexEntry).where(ModMapIndexEntry.mod_filename == filename))


async def purge_missing(session: AsyncSession, present: Iterable[str]) -> None:
    """Drop cached entries for filenames not in present (all of them when present is empty)."""
    keep = set(present)
    result = await session.execute(select(ModMapIndexEntry.mod_filename).distinct())
    stale = [name for name in result.scalars() if name not in keep]
    for i in range(0, len(stale), _SQL_CHUNK):
        await session.execute(
            delete(ModMapIndexEntry).where(ModMapIndexEntry.mod_filename.in_(stale[i : i + _SQL_CHUNK]))
        )


async def labels_for(session: AsyncSession, paths: Iterable[str]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    wanted = list(paths)
    for i in range(0, len(wanted), _SQL_CHUNK):
        part = wanted[i : i + _SQL_CHUNK]
        result = await session.execute(
            select(MapLabel.map_path, MapLabel.label).where(MapLabel.map_path.in_(part))
        )
        for map_path, label in result.all():
            out[map_path] = label
    return out


async def set_map_label(session: AsyncSession, map_path: str, label: str) -> MapLabel:
    """Create or update the label for map_path. Caller must commit."""
    row = await session.get(MapLabel, map_path)
    if row:
        row.label = label
    else:
        row = MapLabel(map_path=map_path, label=label)
        session.add(row)
    await session.flush()
    return row


async def list_maps(session: AsyncSession, mods_dir: Path) -> MapListing:
    """Reconcile the cache with mods_dir and return every known map, sorted by path."""
    settings = get_settings()
    deadline = time.monotonic() + settings.map_scan_timeout_seconds
    listing = MapListing()

    try:
        archives = await asyncio.wait_for(
            asyncio.to_thread(list_archives, mods_dir),
            timeout=settings.map_scan_fs_timeout_seconds,
        )
    except asyncio.TimeoutError:
        log.warning("Listing mods dir %s timed out", mods_dir)
        listing.timed_out = True
        return listing
    except OSError as e:
        log.warning("Could not list mods dir %s: %s", mods_dir, e)
        return listing

    await purge_missing(session, (a.filename for a in archives))
    cache = await _load_cache(session)

    found: Set[str] = set()
    for identity in archives:
        cached = cache.get(identity.filename)
        if cached is not None and cached.matches(identity):
            found |= cached.paths
            continue
        if time.monotonic() >= deadline:
            if not listing.timed_out:
                log.warning("Map scan budget of %.1fs exhausted; returning partial results",
                            settings.map_scan_timeout_seconds)
            listing.timed_out = True
            continue
        if identity.size_bytes > settings.map_scan_max_archive_bytes:
            log.debug("Skipping large archive %s (%d bytes)", identity.filename, identity.size_bytes)
            listing.skipped_large += 1
            continue
        try:
            paths = await asyncio.to_thread(
                scan_archive_for_maps, mods_dir / identity.filename, settings.map_scan_max_entries
            )
        except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, ValueError, EOFError) as e:
            log.warning("Failed to scan %s for maps: %s", identity.filename, e)
            continue
        listing.scanned_files += 1
        await replace_index_entries(session, identity, paths)
        found |= paths

    labels = await labels_for(session, found)
    listing.maps = [MapOption(value=p, label=labels.get(p), source="mod") for p in sorted(found)]
    log.info(
        "Map listing: maps=%d archives=%d scanned=%d skipped_large=%d timed_out=%s",
        len(listing.maps), len(archives), listing.scanned_files, listing.skipped_large, listing.timed_out,
    )
    return listing
