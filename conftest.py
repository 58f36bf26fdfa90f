"""Pytest configuration: set test env before any beammeup imports so DB and sessions use test values."""

import asyncio
import os
import tempfile

import pytest

# Set before beammeup.db.session or beammeup.limiter are imported so engine and limiter use test values
_tmp = tempfile.mkdtemp(prefix="beammeup_test_")
os.environ.setdefault("BEAMMEUP_DB_PATH", os.path.join(_tmp, "test.db"))
os.environ.setdefault("BEAMMEUP_SESSION_SECRET", "test-session-secret-at-least-32-characters")
os.environ.setdefault("BEAMMEUP_SESSION_SECRET_FILE", os.path.join(_tmp, ".session_secret"))
os.environ.setdefault("BEAMMEUP_ENVIRONMENT", "test")
os.environ.setdefault("BEAMMEUP_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("BEAMMEUP_BEAMMP_ROOT", os.path.join(_tmp, "beammp"))
os.environ.setdefault("BEAMMEUP_BEAMMP_CONFIG_PATH", os.path.join(_tmp, "beammp", "ServerConfig.toml"))
os.environ.setdefault("BEAMMEUP_CONFIG_BACKUPS_DIR", os.path.join(_tmp, "config-backups"))
os.environ.setdefault("BEAMMEUP_MODS_DIR", os.path.join(_tmp, "beammp", "Resources", "Client"))
# Bootstrap owner for API tests (login as owner / ownerpass123)
os.environ.setdefault("BEAMMEUP_OWNER_USERNAME", "owner")
os.environ.setdefault("BEAMMEUP_OWNER_INITIAL_PASSWORD", "ownerpass123")


@pytest.fixture(scope="session")
def init_test_db():
    """Create tables once per test session."""
    from beammeup.db.session import init_db

    asyncio.run(init_db())


@pytest.fixture
def session_factory(init_test_db):
    """Yield get_session so tests can use async with session_factory() as session."""
    from beammeup.db.session import get_session
    return get_session
