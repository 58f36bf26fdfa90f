"""Rate limiter for auth and sensitive endpoints."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from beammeup.config import get_settings

_settings = get_settings()

# Global ceiling per client address; routes add tighter limits with @limiter.limit
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000/15 minutes"],
    enabled=_settings.rate_limit_enabled,
)
