"""SQLite store specifics: persistence, cascades, failure surfacing."""
import sqlite3

import pytest

from nowplaying.errors import StoreError
from nowplaying.models import Device, Session
from nowplaying.store import SqliteStore

T0 = 1_700_000_000_000


def _session(sid="a" * 32, code="ABC123", expires=T0 + 1000):
    return Session(id=sid, code=code, created_at=T0, expires_at=expires)


def test_survives_reopen(tmp_path):
    path = tmp_path / "data" / "sessions.db"
    store = SqliteStore(path)
    assert store.insert_session(_session(), T0)
    store.upsert_device(Device(id="device_1", session_id="a" * 32, name="Phone", joined_at=T0))
    store.close()

    reopened = SqliteStore(path)
    assert reopened.get_session_by_code("ABC123").id == "a" * 32
    assert [d.name for d in reopened.list_devices("a" * 32)] == ["Phone"]
    reopened.close()


def test_delete_session_cascades_to_devices(tmp_path):
    store = SqliteStore(tmp_path / "s.db")
    store.insert_session(_session(), T0)
    store.upsert_device(Device(id="device_1", session_id="a" * 32, name="A", joined_at=T0))
    store.upsert_device(Device(id="device_2", session_id="a" * 32, name="B", joined_at=T0))

    assert store.delete_session("a" * 32)
    rows = store._conn.execute("SELECT COUNT(*) FROM devices").fetchone()[0]
    assert rows == 0
    store.close()


def test_update_progress_is_all_or_nothing(tmp_path):
    store = SqliteStore(tmp_path / "s.db")
    store.insert_session(_session(), T0)
    assert not store.update_progress("a" * 32, "device_missing", 5000, T0)
    assert store.get_session("a" * 32).current_progress_ms == 0
    store.close()


def test_device_for_unknown_session_is_a_store_error(tmp_path):
    store = SqliteStore(tmp_path / "s.db")
    with pytest.raises(StoreError):
        store.upsert_device(Device(id="device_1", session_id="nope", name="A", joined_at=T0))
    store.close()


def test_sqlite_failure_becomes_store_error(tmp_path):
    store = SqliteStore(tmp_path / "s.db")
    store.close()
    with pytest.raises(StoreError):
        store.get_session("a" * 32)


def test_unopenable_path(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    with pytest.raises((StoreError, OSError)):
        SqliteStore(blocker / "s.db")


def test_in_memory_database():
    store = SqliteStore(":memory:")
    assert store.insert_session(_session(), T0)
    assert store.count_live(T0) == 1
    assert store.count_live(T0 + 1000) == 0
    assert isinstance(store._conn, sqlite3.Connection)
    store.close()
