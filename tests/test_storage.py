"""Tests for mod directory resolution and disk operations."""

import os
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from beammeup.beammp.config_store import ConfigStore
from beammeup.mods.storage import (
    delete_mod_file,
    identity_of,
    list_archives,
    mod_path,
    resolve_mods_dir,
    stored_filename_for,
    write_mod,
)


@pytest.fixture
def mock_settings(monkeypatch, tmp_path):
    from beammeup.mods import storage

    mock = MagicMock()
    mock.beammp_root = tmp_path / "beammp"
    mock.mods_dir = tmp_path / "fallback"
    monkeypatch.setattr(storage, "get_settings", lambda: mock)
    return mock


def test_resolve_mods_dir_from_resource_folder(mock_settings, tmp_path):
    store = ConfigStore(tmp_path / "ServerConfig.toml", tmp_path / "backups")
    store.write({"General": {"Name": "s", "ResourceFolder": "MyResources"}})
    assert resolve_mods_dir(store) == tmp_path / "beammp" / "MyResources" / "Client"


def test_resolve_mods_dir_unreadable_config_uses_fallback(mock_settings, tmp_path):
    store = ConfigStore(tmp_path / "missing.toml", tmp_path / "backups")
    assert resolve_mods_dir(store) == tmp_path / "fallback"


def test_resolve_mods_dir_ignores_unsafe_folder(mock_settings, tmp_path):
    store = ConfigStore(tmp_path / "ServerConfig.toml", tmp_path / "backups")
    store.write({"General": {"Name": "s", "ResourceFolder": "../../etc"}})
    assert resolve_mods_dir(store) == tmp_path / "beammp" / "Resources" / "Client"


def test_stored_filename_for():
    assert stored_filename_for("My Track.zip", now_ms=1700000000000) == "1700000000000-MyTrack.zip"


def test_mod_path_rejects_traversal(tmp_path):
    with pytest.raises(ValueError):
        mod_path(tmp_path, "../escape.zip")
    with pytest.raises(ValueError):
        mod_path(tmp_path, "")
    assert mod_path(tmp_path, "a.zip") == tmp_path / "a.zip"


def test_write_mod_never_overwrites(tmp_path):
    target = write_mod(tmp_path / "mods", "a.zip", b"one")
    assert target.read_bytes() == b"one"
    with pytest.raises(FileExistsError):
        write_mod(tmp_path / "mods", "a.zip", b"two")
    assert target.read_bytes() == b"one"


def test_delete_mod_file(tmp_path):
    write_mod(tmp_path, "a.zip", b"x")
    delete_mod_file(tmp_path, "a.zip")
    assert not (tmp_path / "a.zip").exists()
    with pytest.raises(FileNotFoundError):
        delete_mod_file(tmp_path, "a.zip")


def test_list_archives_missing_dir(tmp_path):
    assert list_archives(tmp_path / "nope") == []


def test_list_archives_only_zip_files_sorted(tmp_path):
    (tmp_path / "b.zip").write_bytes(b"bb")
    (tmp_path / "A.ZIP").write_bytes(b"a")
    (tmp_path / "readme.txt").write_text("x")
    (tmp_path / "dir.zip").mkdir()
    os.utime(tmp_path / "b.zip", ns=(1_700_000_000_123_400_000, 1_700_000_000_123_400_000))
    result = list_archives(tmp_path)
    assert [a.filename for a in result] == ["A.ZIP", "b.zip"]
    assert result[1].size_bytes == 2
    assert result[1].mtime_ms == 1_700_000_000_123
    assert identity_of(Path(tmp_path / "b.zip")) == result[1]
