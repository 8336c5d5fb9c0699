"""
Tests for CredentialStore: directory naming, discovery, lock cleanup and clearing.
"""

import pytest

from wagate.session.storage import CredentialStore


def test_paths_follow_local_auth_layout(tmp_path):
    store = CredentialStore(tmp_path)

    assert store.client_id(7) == "user-7"
    assert store.session_path(7) == tmp_path / "session-user-7"


def test_discover_normalises_ids_and_skips_noise(tmp_path):
    store = CredentialStore(tmp_path / "sessions")
    store.session_path(12).mkdir(parents=True)
    store.session_path("alice").mkdir(parents=True)
    (store.root / "session-other").mkdir()
    (store.root / "session-user-file").write_text("not a directory")

    assert store.discover() == [12, "alice"]


def test_cleanup_locks_is_recursive(tmp_path):
    store = CredentialStore(tmp_path)
    root = store.session_path(7)
    nested = root / "Default" / "IndexedDB"
    nested.mkdir(parents=True)
    (root / "SingletonLock").symlink_to("old-host-4242")
    (root / "SingletonSocket").write_text("")
    (root / "SingletonCookie").write_text("")
    (root / "Default" / "lockfile").write_text("")
    (nested / "LOCK").write_text("")
    (nested / "leveldb.lock").write_text("")
    (nested / "000003.log").write_text("data")

    assert store.cleanup_locks(7) == 6
    assert [p.name for p in root.rglob("*") if p.is_file()] == ["000003.log"]
    assert not (root / "SingletonLock").is_symlink()


def test_cleanup_locks_without_directory(tmp_path):
    assert CredentialStore(tmp_path).cleanup_locks(7) == 0


def test_clear_removes_directory(tmp_path):
    store = CredentialStore(tmp_path)
    (store.session_path(7) / "Default").mkdir(parents=True)

    assert store.clear(7) is True
    assert not store.exists(7)
    assert store.clear(7) is False


def test_session_path_rejects_ids_outside_root(tmp_path):
    store = CredentialStore(tmp_path / "sessions")

    for bad in ("a/../../victim", "..", "x/y"):
        with pytest.raises(ValueError):
            store.session_path(bad)


def test_discover_keeps_leading_zeros(tmp_path):
    store = CredentialStore(tmp_path / "sessions")
    (store.root / "session-user-007").mkdir(parents=True)
    (store.root / "session-user-bad.id").mkdir()

    assert store.discover() == ["007"]
    assert store.session_path("007") == store.root / "session-user-007"
