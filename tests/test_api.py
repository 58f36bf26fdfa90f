"""API tests with TestClient: auth, CSRF, roles, config, maps, mods, server, diagnostics."""

import asyncio
import io
import tomllib
import uuid
import zipfile
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from beammeup.main import app
from beammeup.server.docker import ContainerStatus

OWNER = ("owner", "ownerpass123")


def make_zip(*names: str) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name in names:
            zf.writestr(name, "{}")
    return buf.getvalue()


SERVER_CONFIG = """\
[General]
Port = 30814
AuthKey = "stored-auth-key-123"
AllowGuests = true
LogChat = true
Debug = false
IP = "::"
Private = true
Name = "BeamMP Server"
Tags = "Freeroam"
MaxCars = 1
MaxPlayers = 8
Map = "/levels/gridmap_v2/info.json"
Description = "BeamMP Default Description"
ResourceFolder = "Resources"

[Misc]
UpdateReminderTime = "30s"
"""


@pytest.fixture
def beammp_dir(tmp_path, monkeypatch):
    """Isolated BeamMP install: ServerConfig.toml, backups and mods dir under tmp_path."""
    root = tmp_path / "beammp"
    root.mkdir()
    (root / "ServerConfig.toml").write_text(SERVER_CONFIG, encoding="utf-8")
    monkeypatch.setenv("BEAMMEUP_BEAMMP_ROOT", str(root))
    monkeypatch.setenv("BEAMMEUP_BEAMMP_CONFIG_PATH", str(root / "ServerConfig.toml"))
    monkeypatch.setenv("BEAMMEUP_CONFIG_BACKUPS_DIR", str(tmp_path / "backups"))
    monkeypatch.setenv("BEAMMEUP_MODS_DIR", str(tmp_path / "fallback-mods"))
    return root


async def _ensure_owner() -> None:
    """Bootstrap only runs on an empty DB; other test modules may have added users first."""
    from beammeup.db.session import get_session, init_db
    from beammeup.users.models import Role, UserCreate
    from beammeup.users.service import create_user, get_user_by_username

    await init_db()
    async with get_session() as session:
        if await get_user_by_username(session, OWNER[0]) is None:
            await create_user(session, UserCreate(username=OWNER[0], password=OWNER[1], role=Role.OWNER))


@pytest.fixture
def client(beammp_dir):
    """TestClient for the app. Use as context manager so lifespan runs (init_db, owner bootstrap)."""
    asyncio.run(_ensure_owner())
    with TestClient(app) as c:
        yield c


def csrf(c: TestClient) -> dict:
    """Fetch a CSRF token (sets the cookie) and return the matching header."""
    r = c.get("/api/auth/csrf")
    assert r.status_code == 200
    return {"X-CSRF-Token": r.json()["csrf_token"]}


def login(c: TestClient, username: str = OWNER[0], password: str = OWNER[1]) -> dict:
    headers = csrf(c)
    r = c.post("/api/auth/login", json={"username": username, "password": password}, headers=headers)
    assert r.status_code == 200, r.text
    return headers


def create_user(c: TestClient, headers: dict, role: str) -> tuple:
    username = f"{role.lower()}_{uuid.uuid4().hex[:8]}"
    r = c.post(
        "/api/users/create",
        json={"username": username, "password": "password123", "role": role},
        headers=headers,
    )
    assert r.status_code == 201, r.text
    return username, "password123", r.json()["id"]


def test_health(client: TestClient) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"


def test_setup_status_after_bootstrap(client: TestClient) -> None:
    r = client.get("/api/setup/status")
    assert r.status_code == 200
    assert r.json() == {"needsSetup": False}


def test_create_owner_refused_once_users_exist(client: TestClient) -> None:
    headers = csrf(client)
    r = client.post(
        "/api/setup/create-owner",
        json={"username": "second_owner", "password": "password123", "confirmPassword": "password123"},
        headers=headers,
    )
    assert r.status_code == 403


def test_login_requires_csrf(client: TestClient) -> None:
    r = client.post("/api/auth/login", json={"username": OWNER[0], "password": OWNER[1]})
    assert r.status_code == 403
    assert r.json()["detail"] == "CSRF token validation failed"


def test_login_success_and_me(client: TestClient) -> None:
    headers = csrf(client)
    r = client.post("/api/auth/login", json={"username": OWNER[0], "password": OWNER[1]}, headers=headers)
    assert r.status_code == 200
    assert r.json()["user"]["username"] == "owner"
    assert r.json()["user"]["role"] == "OWNER"
    assert "session_token" in client.cookies
    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["username"] == "owner"
    assert "password_hash" not in me.json()


def test_login_invalid_password(client: TestClient) -> None:
    headers = csrf(client)
    r = client.post("/api/auth/login", json={"username": OWNER[0], "password": "wrong-password"}, headers=headers)
    assert r.status_code == 401
    assert "Invalid" in r.json()["detail"]


def test_me_requires_session(client: TestClient) -> None:
    assert client.get("/api/auth/me").status_code == 401


def test_logout_ends_session(client: TestClient) -> None:
    headers = login(client)
    r = client.post("/api/auth/logout", headers=headers)
    assert r.status_code == 200
    assert client.get("/api/auth/me").status_code == 401


def test_get_current_config_hides_auth_key(client: TestClient) -> None:
    login(client)
    r = client.get("/api/config/current")
    assert r.status_code == 200
    general = r.json()["General"]
    assert general["Name"] == "BeamMP Server"
    assert "AuthKey" not in general
    status = client.get("/api/config/authkey-status").json()
    assert status == {"isSet": True, "isDefault": False}


def test_update_config_preserves_auth_key(client: TestClient, beammp_dir) -> None:
    headers = login(client)
    config = client.get("/api/config/current").json()
    config["General"]["Name"] = "Renamed Server"
    config["General"]["AuthKey"] = "should-be-ignored"
    r = client.put("/api/config/update", json=config, headers=headers)
    assert r.status_code == 200, r.text

    with (beammp_dir / "ServerConfig.toml").open("rb") as f:
        on_disk = tomllib.load(f)
    assert on_disk["General"]["Name"] == "Renamed Server"
    assert on_disk["General"]["AuthKey"] == "stored-auth-key-123"

    backups = client.get("/api/config/backups").json()
    assert len(backups) == 1
    assert backups[0]["filename"].startswith("backup-")

    logs = client.get("/api/audit/logs", params={"action": "CONFIG_UPDATE", "limit": 1}).json()
    assert "stored-auth-key-123" not in str(logs)
    assert "should-be-ignored" not in str(logs)


def test_update_config_validation_errors(client: TestClient, beammp_dir) -> None:
    headers = login(client)
    config = client.get("/api/config/current").json()
    config["General"]["Port"] = 80
    config["Misc"]["UpdateReminderTime"] = "soon"
    r = client.put("/api/config/update", json=config, headers=headers)
    assert r.status_code == 400
    body = r.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert {e["field"] for e in body["errors"]} == {"General.Port", "Misc.UpdateReminderTime"}
    assert client.get("/api/config/backups").json() == []


def test_replace_auth_key(client: TestClient, beammp_dir) -> None:
    headers = login(client)
    r = client.post(
        "/api/config/authkey-replace",
        json={"newAuthKey": "brand-new-key-456", "password": "wrong-password"},
        headers=headers,
    )
    assert r.status_code == 401
    r = client.post(
        "/api/config/authkey-replace",
        json={"newAuthKey": "short", "password": OWNER[1]},
        headers=headers,
    )
    assert r.status_code == 400
    r = client.post(
        "/api/config/authkey-replace",
        json={"newAuthKey": "brand-new-key-456", "password": OWNER[1]},
        headers=headers,
    )
    assert r.status_code == 200
    with (beammp_dir / "ServerConfig.toml").open("rb") as f:
        assert tomllib.load(f)["General"]["AuthKey"] == "brand-new-key-456"


def test_config_unavailable_is_500(client: TestClient, beammp_dir) -> None:
    login(client)
    (beammp_dir / "ServerConfig.toml").write_text("[General\n", encoding="utf-8")
    r = client.get("/api/config/current")
    assert r.status_code == 500
    assert r.json()["code"] == "CONFIG_UNAVAILABLE"


def test_upload_lists_maps_and_delete(client: TestClient, beammp_dir) -> None:
    headers = login(client)
    level = f"utah_{uuid.uuid4().hex[:8]}"
    data = make_zip(f"levels/{level}/info.json", f"levels/{level}/main.decals.json")
    r = client.post(
        "/api/mods/upload",
        files={"file": ("track1.zip", data, "application/zip")},
        headers=headers,
    )
    assert r.status_code == 201, r.text
    stored = r.json()
    assert set(stored) == {"id", "filename", "originalName", "sha256"}
    assert stored["originalName"] == "track1.zip"
    assert (beammp_dir / "Resources" / "Client" / stored["filename"]).exists()

    maps = client.get("/api/config/maps").json()
    assert maps["timedOut"] is False
    assert maps["skippedLarge"] == 0
    assert {"value": f"/levels/{level}/info.json", "label": None, "source": "mod"} in maps["maps"]

    mods = client.get("/api/mods/list").json()
    assert any(m["id"] == stored["id"] and m["uploadedBy"]["username"] == "owner" for m in mods)

    r = client.delete(f"/api/mods/{stored['id']}", headers=headers)
    assert r.status_code == 200
    assert r.json() == {"message": "Mod deleted"}
    maps = client.get("/api/config/maps").json()
    assert f"/levels/{level}/info.json" not in [m["value"] for m in maps["maps"]]


def test_upload_over_scan_cutoff_is_skipped_in_listing(client: TestClient, monkeypatch) -> None:
    headers = login(client)
    monkeypatch.setenv("BEAMMEUP_MAP_SCAN_MAX_ARCHIVE_MB", "0")
    level = f"big_{uuid.uuid4().hex[:8]}"
    r = client.post(
        "/api/mods/upload",
        files={"file": ("big_map.zip", make_zip(f"levels/{level}/info.json"), "application/zip")},
        headers=headers,
    )
    assert r.status_code == 201, r.text

    maps = client.get("/api/config/maps").json()
    assert maps["skippedLarge"] == 1
    assert f"/levels/{level}/info.json" not in [m["value"] for m in maps["maps"]]

    monkeypatch.delenv("BEAMMEUP_MAP_SCAN_MAX_ARCHIVE_MB")
    maps = client.get("/api/config/maps").json()
    assert maps["skippedLarge"] == 0
    assert f"/levels/{level}/info.json" in [m["value"] for m in maps["maps"]]


def test_upload_rejects_zip_slip(client: TestClient, beammp_dir) -> None:
    headers = login(client)
    r = client.post(
        "/api/mods/upload",
        files={"file": ("evil.zip", make_zip("../../evil.sh"), "application/zip")},
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_ARCHIVE"
    assert not (beammp_dir / "Resources" / "Client").exists()


def test_upload_rejects_oversized(client: TestClient, monkeypatch) -> None:
    headers = login(client)
    monkeypatch.setenv("BEAMMEUP_MAX_MOD_SIZE_MB", "0")
    r = client.post(
        "/api/mods/upload",
        files={"file": ("big.zip", make_zip("a.txt"), "application/zip")},
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json()["code"] == "SIZE_LIMIT_EXCEEDED"


def test_upload_without_file(client: TestClient) -> None:
    headers = login(client)
    r = client.post("/api/mods/upload", headers=headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "No file uploaded"


def test_delete_unknown_mod_is_404(client: TestClient) -> None:
    headers = login(client)
    r = client.delete("/api/mods/does-not-exist", headers=headers)
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"


def test_map_label_upsert(client: TestClient) -> None:
    headers = login(client)
    path = f"/levels/label_{uuid.uuid4().hex[:8]}/info.json"
    r = client.put("/api/config/maps/label", json={"mapPath": path, "label": "  Utah  "}, headers=headers)
    assert r.status_code == 200
    assert r.json() == {"mapPath": path, "label": "Utah"}
    r = client.put("/api/config/maps/label", json={"mapPath": path, "label": "Utah USA"}, headers=headers)
    assert r.json()["label"] == "Utah USA"


@pytest.mark.parametrize(
    "payload",
    [
        {"mapPath": "levels/utah/info.json", "label": "Utah"},
        {"mapPath": "/levels/utah/info.json", "label": "   "},
        {"mapPath": "/levels/utah/info.json", "label": "x" * 81},
    ],
)
def test_map_label_invalid_input(client: TestClient, payload) -> None:
    headers = login(client)
    r = client.put("/api/config/maps/label", json=payload, headers=headers)
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"


def test_viewer_cannot_mutate(client: TestClient) -> None:
    headers = login(client)
    username, password, _ = create_user(client, headers, "VIEWER")
    with TestClient(app) as viewer:
        vheaders = login(viewer, username, password)
        assert viewer.get("/api/config/maps").status_code == 200
        r = viewer.put(
            "/api/config/maps/label",
            json={"mapPath": "/levels/utah/info.json", "label": "Utah"},
            headers=vheaders,
        )
        assert r.status_code == 403
        r = viewer.post(
            "/api/mods/upload",
            files={"file": ("a.zip", make_zip("a.txt"), "application/zip")},
            headers=vheaders,
        )
        assert r.status_code == 403
        assert viewer.get("/api/users/list").status_code == 403


def test_operator_can_label_but_not_upload(client: TestClient) -> None:
    headers = login(client)
    username, password, _ = create_user(client, headers, "OPERATOR")
    with TestClient(app) as op:
        oheaders = login(op, username, password)
        r = op.put(
            "/api/config/maps/label",
            json={"mapPath": f"/levels/op_{uuid.uuid4().hex[:8]}/info.json", "label": "Op"},
            headers=oheaders,
        )
        assert r.status_code == 200
        r = op.post(
            "/api/mods/upload",
            files={"file": ("a.zip", make_zip("a.txt"), "application/zip")},
            headers=oheaders,
        )
        assert r.status_code == 403


def test_user_admin_flow(client: TestClient) -> None:
    headers = login(client)
    username, _, user_id = create_user(client, headers, "VIEWER")
    users = client.get("/api/users/list").json()
    assert any(u["username"] == username and u["isActive"] is True for u in users)

    r = client.put(f"/api/users/{user_id}", json={"role": "OPERATOR", "isActive": False}, headers=headers)
    assert r.status_code == 200
    assert r.json()["role"] == "OPERATOR"

    r = client.post(
        "/api/users/create",
        json={"username": username, "password": "password123", "role": "VIEWER"},
        headers=headers,
    )
    assert r.status_code == 400

    assert client.delete(f"/api/users/{user_id}", headers=headers).status_code == 200
    assert client.delete(f"/api/users/{user_id}", headers=headers).status_code == 404

    me = client.get("/api/auth/me").json()
    assert client.delete(f"/api/users/{me['id']}", headers=headers).status_code == 400


def test_inactive_user_cannot_login(client: TestClient) -> None:
    headers = login(client)
    username, password, user_id = create_user(client, headers, "VIEWER")
    client.put(f"/api/users/{user_id}", json={"isActive": False}, headers=headers)
    with TestClient(app) as other:
        oheaders = csrf(other)
        r = other.post("/api/auth/login", json={"username": username, "password": password}, headers=oheaders)
        assert r.status_code == 403


def test_audit_logs_and_export(client: TestClient) -> None:
    login(client)
    r = client.get("/api/audit/logs", params={"action": "USER_LOGIN"})
    assert r.status_code == 200
    body = r.json()
    assert body["total"] >= 1
    assert body["logs"][0]["action"] == "USER_LOGIN"
    r = client.get("/api/audit/export")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert r.text.startswith('"ID","Timestamp","User"')
    assert client.get("/api/audit/logs", params={"limit": 0}).status_code == 400


def test_server_status_and_restart(client: TestClient, monkeypatch) -> None:
    from beammeup.server import routes as server_routes

    headers = login(client)
    monkeypatch.setattr(
        server_routes,
        "get_container_status",
        AsyncMock(return_value=ContainerStatus(False, "exited")),
    )
    restart = AsyncMock()
    monkeypatch.setattr(server_routes, "restart_container", restart)
    monkeypatch.setattr(server_routes, "get_container_logs", AsyncMock(return_value="a\nb\n"))

    assert client.get("/api/server/status").json() == {"running": False, "state": "exited", "uptime": 0}
    assert client.post("/api/server/restart", headers=headers).status_code == 200
    restart.assert_awaited_once()
    assert client.get("/api/server/logs", params={"lines": 5}).json() == {"logs": ["a", "b"]}


def test_diagnostics(client: TestClient) -> None:
    login(client)
    health = client.get("/api/diagnostics/health").json()
    assert health["database"] == {"connected": True}
    data = client.get("/api/diagnostics/export").json()
    assert data["database"]["users"] >= 1
    assert data["checks"]["hasOwner"] is True
    assert data["checks"]["authKeyConfigured"] is True
    r = client.get("/api/diagnostics/export", params={"format": "csv"})
    assert r.status_code == 200
    assert "=== DATABASE ===" in r.text
    assert "stored-auth-key-123" not in r.text
