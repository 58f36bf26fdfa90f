"""Mod directory resolution and disk operations (no directory traversal)."""

import logging
import os
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from beammeup.beammp.config_store import ConfigStore
from beammeup.config import get_settings
from beammeup.errors import ConfigUnavailable
from beammeup.mods.archive import sanitize_filename

log = logging.getLogger(__name__)

DEFAULT_RESOURCE_FOLDER = "Resources"
ARCHIVE_SUFFIX = ".zip"

# ResourceFolder is used as one path segment under beammp_root
_SAFE_SEGMENT = re.compile(r"^[A-Za-z0-9_\-]+$")


@dataclass(frozen=True)
class ArchiveIdentity:
    """(name, size, mtime) stand-in for a content fingerprint."""

    filename: str
    size_bytes: int
    mtime_ms: int


def _sanitize_segment(segment: str) -> Optional[str]:
    """Return segment if it is a single safe folder name, else None."""
    segment = segment.strip()
    if not segment or not _SAFE_SEGMENT.match(segment):
        return None
    return segment


def resolve_mods_dir(store: ConfigStore) -> Path:
    """
    <beammp_root>/<General.ResourceFolder>/Client from the current server config.
    Falls back to settings.mods_dir when the config cannot be read.
    """
    settings = get_settings()
    try:
        config = store.read()
    except ConfigUnavailable:
        log.debug("Config unreadable; using fallback mods dir %s", settings.mods_dir)
        return settings.mods_dir
    general = config.get("General") or {}
    folder = general.get("ResourceFolder") if isinstance(general, dict) else None
    safe = _sanitize_segment(folder) if isinstance(folder, str) else None
    if folder and not safe:
        log.warning("Ignoring unsafe ResourceFolder %r", folder)
    return settings.beammp_root / (safe or DEFAULT_RESOURCE_FOLDER) / "Client"


def stored_filename_for(original_name: str, now_ms: Optional[int] = None) -> str:
    """'<epoch ms>-<sanitized original>'."""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{stamp}-{sanitize_filename(original_name)}"


def mod_path(mods_dir: Path, stored_filename: str) -> Path:
    """Resolve a stored filename under mods_dir. Rejects anything but a plain file name."""
    if not stored_filename or Path(stored_filename).name != stored_filename or stored_filename in (".", ".."):
        raise ValueError(f"Unsafe mod filename: {stored_filename!r}")
    return mods_dir / stored_filename


def write_mod(mods_dir: Path, stored_filename: str, data: bytes) -> Path:
    """Write archive bytes; never overwrites an existing file."""
    target = mod_path(mods_dir, stored_filename)
    mods_dir.mkdir(parents=True, exist_ok=True)
    with target.open("xb") as f:
        f.write(data)
    return target


def delete_mod_file(mods_dir: Path, stored_filename: str) -> None:
    """Remove a stored archive. Raises FileNotFoundError / OSError."""
    mod_path(mods_dir, stored_filename).unlink()


def identity_of(path: Path) -> ArchiveIdentity:
    st = path.stat()
    return ArchiveIdentity(
        filename=path.name,
        size_bytes=st.st_size,
        mtime_ms=int(round(st.st_mtime * 1000)),
    )


def list_archives(mods_dir: Path) -> List[ArchiveIdentity]:
    """
    Identities of *.zip files directly under mods_dir, sorted by name.
    A missing directory lists as empty; files that vanish mid-listing are skipped.
    """
    result: List[ArchiveIdentity] = []
    try:
        entries = list(os.scandir(mods_dir))
    except FileNotFoundError:
        return result
    for entry in entries:
        if not entry.name.lower().endswith(ARCHIVE_SUFFIX):
            continue
        try:
            if not entry.is_file():
                continue
            st = entry.stat()
        except OSError:
            continue
        result.append(
            ArchiveIdentity(
                filename=entry.name,
                size_bytes=st.st_size,
                mtime_ms=int(round(st.st_mtime * 1000)),
            )
        )
    result.sort(key=lambda a: a.filename)
    return result
