"""ZIP archive checks: zip-slip rejection and map manifest discovery."""

import io
import re
import zipfile
from pathlib import Path
from typing import BinaryIO, Iterable, Set, Union

from beammeup.errors import InvalidArchive

# levels/<name>/info.json, case-insensitive
_MAP_MANIFEST = re.compile(r"^levels/([^/]+)/info\.json$", re.IGNORECASE)
# Stored filenames keep only these characters
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def _normalize_entry_name(name: str) -> str:
    return name.replace("\\", "/")


def is_safe_entry_name(name: str) -> bool:
    """False for absolute entry paths or any '..' segment (zip-slip)."""
    normalized = _normalize_entry_name(name)
    if normalized.startswith("/") or re.match(r"^[A-Za-z]:", normalized):
        return False
    return ".." not in normalized.split("/")


def validate_archive(data: bytes) -> int:
    """
    Parse data as a ZIP archive and reject unsafe entry paths.
    Returns the number of entries. Raises InvalidArchive.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            names = zf.namelist()
    except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError, EOFError) as e:
        raise InvalidArchive("Invalid ZIP file") from e
    for name in names:
        if not is_safe_entry_name(name):
            raise InvalidArchive("Invalid zip file structure")
    return len(names)


def map_path_for_entry(name: str) -> Union[str, None]:
    """'/levels/<name>/info.json' if the entry is a map manifest, else None."""
    m = _MAP_MANIFEST.match(_normalize_entry_name(name))
    if not m:
        return None
    level = m.group(1)
    if level in (".", "..") or ".." in level:
        return None
    return f"/levels/{level}/info.json"


def map_paths_in_names(names: Iterable[str], max_entries: int) -> Set[str]:
    """Deduplicated map paths among the first max_entries names."""
    found: Set[str] = set()
    for i, name in enumerate(names):
        if i >= max_entries:
            break
        path = map_path_for_entry(name)
        if path:
            found.add(path)
    return found


def scan_archive_for_maps(source: Union[Path, BinaryIO, bytes], max_entries: int) -> Set[str]:
    """
    Open an archive (path, file object or bytes) and return its map manifest paths.
    Blocking; run it in a worker thread. Raises zipfile.BadZipFile or OSError.
    """
    if isinstance(source, bytes):
        source = io.BytesIO(source)
    with zipfile.ZipFile(source) as zf:
        return map_paths_in_names((info.filename for info in zf.infolist()), max_entries)


def sanitize_filename(original: str) -> str:
    """Keep only [A-Za-z0-9._-]; an empty result becomes 'mod.zip'."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("", Path(original.replace("\\", "/")).name)
    cleaned = cleaned.lstrip(".")
    return cleaned or "mod.zip"
