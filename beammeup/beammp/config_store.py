"""
BeamMP ServerConfig.toml store: read, atomic write, timestamped backups.

The store persists whatever document it is given. Validation and AuthKey
carry-forward are the caller's job (see beammeup.beammp.validation).
"""

import logging
import os
import re
import secrets
import tomllib
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import tomli_w

from beammeup.config import get_settings
from beammeup.errors import ConfigUnavailable

log = logging.getLogger(__name__)

BeamMPConfig = Dict[str, Any]

BACKUP_PREFIX = "backup-"
BACKUP_SUFFIX = ".toml"
# backup-2026-10-19T04-49-00-123Z.toml (ISO 8601 with ':' and '.' replaced by '-')
_BACKUP_STAMP_FORMAT = "%Y-%m-%dT%H-%M-%S"
_BACKUP_NAME = re.compile(
    r"^backup-(\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2})-(\d{3})Z(?:-(\d+))?\.toml$"
)


@dataclass(frozen=True)
class BackupInfo:
    filename: str
    created_at: datetime
    size: int


def backup_filename(now: Optional[datetime] = None) -> str:
    """Timestamped backup name for now (UTC, millisecond precision)."""
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return f"{BACKUP_PREFIX}{now.strftime(_BACKUP_STAMP_FORMAT)}-{now.microsecond // 1000:03d}Z{BACKUP_SUFFIX}"


def parse_backup_timestamp(filename: str) -> Optional[datetime]:
    """Creation time encoded in a backup filename, or None if it is not one."""
    m = _BACKUP_NAME.match(filename)
    if not m:
        return None
    stamp = datetime.strptime(m.group(1), _BACKUP_STAMP_FORMAT)
    return stamp.replace(microsecond=int(m.group(2)) * 1000, tzinfo=timezone.utc)


def _backup_sequence(filename: str) -> int:
    m = _BACKUP_NAME.match(filename)
    return int(m.group(3)) if m and m.group(3) else 0


class ConfigStore:
    """Single logical ServerConfig.toml backed by one file on disk."""

    def __init__(self, config_path: Path, backups_dir: Path) -> None:
        self.config_path = Path(config_path)
        self.backups_dir = Path(backups_dir)

    def read(self) -> BeamMPConfig:
        """Parse the config file. Raises ConfigUnavailable on access or parse failure."""
        try:
            with self.config_path.open("rb") as f:
                return tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            log.error("Failed to read config %s: %s", self.config_path, e)
            raise ConfigUnavailable("Failed to read server config") from e

    def write(self, config: BeamMPConfig) -> None:
        """
        Serialize and atomically replace the config file: write a temp file in the
        same directory, then rename over the target. Readers never see a partial file.
        """
        try:
            content = tomli_w.dumps(config)
        except (TypeError, ValueError) as e:
            log.error("Config is not serializable as TOML: %s", e)
            raise ConfigUnavailable("Failed to write server config") from e
        directory = self.config_path.parent
        tmp_path = directory / f".{self.config_path.name}.{secrets.token_hex(8)}.tmp"
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.config_path)
        except OSError as e:
            log.error("Failed to write config %s: %s", self.config_path, e)
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                pass
            raise ConfigUnavailable("Failed to write server config") from e
        log.info("Config written: %s", self.config_path)

    def backup(self, config: BeamMPConfig) -> str:
        """Serialize snapshot to a new timestamped file in the backup dir; return its name."""
        try:
            content = tomli_w.dumps(config)
            self.backups_dir.mkdir(parents=True, exist_ok=True)
            name = backup_filename()
            target = self.backups_dir / name
            n = 0
            while True:
                try:
                    # Exclusive create: two backups in the same millisecond get a suffix
                    with target.open("x", encoding="utf-8") as f:
                        f.write(content)
                    break
                except FileExistsError:
                    n += 1
                    name = f"{name.removesuffix(BACKUP_SUFFIX).rsplit('Z', 1)[0]}Z-{n}{BACKUP_SUFFIX}"
                    target = self.backups_dir / name
        except (OSError, TypeError, ValueError) as e:
            log.error("Failed to back up config to %s: %s", self.backups_dir, e)
            raise ConfigUnavailable("Failed to backup config") from e
        log.info("Config backup written: %s", name)
        return name

    def list_backups(self) -> List[BackupInfo]:
        """Backups newest first. Missing or unreadable backup dir lists as empty."""
        result: List[BackupInfo] = []
        try:
            entries = list(self.backups_dir.iterdir())
        except OSError:
            return result
        for entry in entries:
            created_at = parse_backup_timestamp(entry.name)
            if created_at is None:
                continue
            try:
                size = entry.stat().st_size
            except OSError:
                continue
            result.append(BackupInfo(filename=entry.name, created_at=created_at, size=size))
        result.sort(key=lambda b: (b.created_at, _backup_sequence(b.filename)), reverse=True)
        return result


def get_config_store() -> ConfigStore:
    """FastAPI dependency; override in tests to inject a store."""
    settings = get_settings()
    return ConfigStore(settings.beammp_config_path, settings.config_backups_dir)
