"""Password hashing and signed session tokens."""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from beammeup.config import get_settings

log = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Bcrypt limits input to 72 bytes; truncate to avoid ValueError
_BCRYPT_MAX_BYTES = 72
_MIN_SECRET_LENGTH = 32


def _truncate_for_bcrypt(s: str) -> str:
    """Truncate string to 72 bytes (UTF-8) for bcrypt."""
    b = s.encode("utf-8")[: _BCRYPT_MAX_BYTES]
    return b.decode("utf-8", errors="ignore")


def hash_password(password: str) -> str:
    """Hash a password for storage. Passwords longer than 72 bytes are truncated."""
    return pwd_context.hash(_truncate_for_bcrypt(password))


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a plain password against a hash. Malformed hashes never verify."""
    try:
        return pwd_context.verify(_truncate_for_bcrypt(plain), hashed)
    except ValueError:
        return False


def get_session_secret() -> str:
    """
    Return the signing secret. Uses BEAMMEUP_SESSION_SECRET when it is long enough,
    else a secret persisted in session_secret_file (generated on first use).
    """
    settings = get_settings()
    if len(settings.session_secret) >= _MIN_SECRET_LENGTH:
        return settings.session_secret
    path = settings.session_secret_file
    try:
        if path.exists():
            existing = path.read_text(encoding="utf-8").strip()
            if len(existing) >= _MIN_SECRET_LENGTH:
                return existing
    except OSError as e:
        log.warning("Could not read session secret file %s: %s", path, e)
    new_secret = secrets.token_urlsafe(32)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(new_secret, encoding="utf-8")
        path.chmod(0o600)
        log.info("Generated new session secret in %s", path)
    except OSError as e:
        log.warning("Could not persist session secret to %s: %s", path, e)
    return new_secret


def session_expiry(now: Optional[datetime] = None) -> datetime:
    """Expiry timestamp for a session created now."""
    settings = get_settings()
    return (now or datetime.now(timezone.utc)) + timedelta(hours=settings.session_expire_hours)


def create_session_token(user_id: str, expires_at: datetime) -> str:
    """Create a signed session token. Subject is the user id."""
    settings = get_settings()
    to_encode: dict[str, Any] = {
        "sub": user_id,
        "exp": expires_at,
        "jti": secrets.token_hex(8),
        "type": "session",
    }
    return jwt.encode(to_encode, get_session_secret(), algorithm=settings.session_algorithm)


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """Decode and validate a token; return payload or None."""
    settings = get_settings()
    try:
        return jwt.decode(token, get_session_secret(), algorithms=[settings.session_algorithm])
    except JWTError:
        return None


def get_subject_from_session(token: str) -> Optional[str]:
    """Return subject (user id) if token is a valid session token."""
    payload = decode_token(token)
    if not payload or payload.get("type") != "session":
        return None
    return payload.get("sub")
