"""Configuration from environment (no hardcoded secrets)."""

from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Backend settings from env."""

    model_config = SettingsConfigDict(env_prefix="BEAMMEUP_", extra="ignore")

    environment: str = "production"

    # Database
    db_path: Path = Path("/app/data/beammeup.db")

    # Sessions. Empty or short secret = generate and persist one in session_secret_file
    session_secret: str = ""
    session_secret_file: Path = Path("/app/data/.session_secret")
    session_algorithm: str = "HS256"
    session_expire_hours: int = 24

    # BeamMP server install
    beammp_root: Path = Path("/beammp")
    beammp_config_path: Path = Path("/beammp/ServerConfig.toml")
    config_backups_dir: Path = Path("/app/data/config-backups")

    # Mods. mods_dir is used when ServerConfig.toml cannot be read
    mods_dir: Path = Path("/beammp/Resources/Client")
    max_mod_size_mb: int = 500

    # Map index
    map_scan_max_archive_mb: int = 500
    map_scan_max_entries: int = 10000
    map_scan_timeout_seconds: float = 10.0
    map_scan_fs_timeout_seconds: float = 5.0

    # Container control
    container_name: str = "beammp"
    docker_host: str = ""

    # First owner (bootstrap without the setup page)
    owner_username: str = ""
    owner_initial_password: str = ""

    # CORS: comma-separated string so pydantic-settings does not try to JSON-decode it
    cors_origins: str = "http://localhost:8200"

    @property
    def cors_origins_list(self) -> List[str]:
        """CORS origins as a list (split on comma)."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def is_development(self) -> bool:
        return self.environment.strip().lower() == "development"

    @property
    def max_mod_size_bytes(self) -> int:
        return self.max_mod_size_mb * 1024 * 1024

    @property
    def map_scan_max_archive_bytes(self) -> int:
        return self.map_scan_max_archive_mb * 1024 * 1024

    # Server
    port: int = 3000
    rate_limit_enabled: bool = True

    # Logging (empty log_file = stderr only; level DEBUG|INFO|WARNING|ERROR)
    log_level: str = "INFO"
    log_file: str = ""


def get_settings() -> Settings:
    """Return application settings."""
    return Settings()
