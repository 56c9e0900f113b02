"""Session store: the registry's backing storage.

Two interchangeable backends with the same method set:

- MemoryStore: dicts behind a lock. Used by tests and `SESSION_STORE=memory`.
- SqliteStore: one SQLite file (WAL), schema with ON DELETE CASCADE from
  sessions to devices. Every multi-row write runs in a single transaction.

The store knows nothing about TTLs or clocks; callers pass `now` in.
Devices are keyed by id across all sessions (a re-join elsewhere moves the
device) and list in first-join order.
"""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Iterator, Optional

from .errors import StoreError
from .models import Device, Session

logger = logging.getLogger(__name__)


class MemoryStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}
        self._devices: dict[str, Device] = {}

    def insert_session(self, session: Session, now: int) -> bool:
        """Insert unless a live session already holds the code. Returns False on a code clash."""
        with self._lock:
            for other in list(self._sessions.values()):
                if other.code != session.code:
                    continue
                if not other.is_expired(now):
                    return False
                self._drop_session(other.id)
            if session.id in self._sessions:
                return False
            self._sessions[session.id] = session
            return True

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def get_session_by_code(self, code: str) -> Optional[Session]:
        with self._lock:
            for session in self._sessions.values():
                if session.code == code:
                    return session
            return None

    def upsert_device(self, device: Device):
        with self._lock:
            self._devices[device.id] = device

    def update_progress(
        self,
        session_id: str,
        device_id: str,
        progress_ms: int,
        now: int,
        is_playing: Optional[bool] = None,
    ) -> bool:
        with self._lock:
            device = self._devices.get(device_id)
            session = self._sessions.get(session_id)
            if device is None or session is None or device.session_id != session_id:
                return False
            self._devices[device_id] = replace(device, progress_ms=progress_ms, last_updated=now)
            changes = {"current_progress_ms": progress_ms}
            if is_playing is not None:
                changes["is_playing"] = is_playing
            self._sessions[session_id] = replace(session, **changes)
            return True

    def list_devices(self, session_id: str) -> list[Device]:
        with self._lock:
            return [d for d in self._devices.values() if d.session_id == session_id]

    def delete_device(self, session_id: str, device_id: str) -> bool:
        with self._lock:
            device = self._devices.get(device_id)
            if device is None or device.session_id != session_id:
                return False
            del self._devices[device_id]
            return True

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            return self._drop_session(session_id)

    def delete_expired(self, now: int) -> int:
        with self._lock:
            expired = [s.id for s in self._sessions.values() if s.is_expired(now)]
            for sid in expired:
                self._drop_session(sid)
            return len(expired)

    def count_live(self, now: int) -> int:
        with self._lock:
            return sum(1 for s in self._sessions.values() if not s.is_expired(now))

    def close(self):
        pass

    def _drop_session(self, session_id: str) -> bool:
        # Caller holds the lock
        if self._sessions.pop(session_id, None) is None:
            return False
        for did in [d.id for d in self._devices.values() if d.session_id == session_id]:
            del self._devices[did]
        return True


_SCHEMA = """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        code TEXT UNIQUE NOT NULL,
        created_at INTEGER NOT NULL,
        expires_at INTEGER NOT NULL,
        current_progress_ms INTEGER DEFAULT 0,
        is_playing INTEGER DEFAULT 0
    );
    CREATE TABLE IF NOT EXISTS devices (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL,
        name TEXT NOT NULL,
        joined_at INTEGER NOT NULL,
        progress_ms INTEGER DEFAULT 0,
        last_updated INTEGER,
        FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
    );
    CREATE INDEX IF NOT EXISTS idx_sessions_code ON sessions(code);
    CREATE INDEX IF NOT EXISTS idx_devices_session ON devices(session_id);
"""


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        id=row["id"],
        code=row["code"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
        current_progress_ms=row["current_progress_ms"] or 0,
        is_playing=bool(row["is_playing"]),
    )


def _row_to_device(row: sqlite3.Row) -> Device:
    return Device(
        id=row["id"],
        session_id=row["session_id"],
        name=row["name"],
        joined_at=row["joined_at"],
        progress_ms=row["progress_ms"] or 0,
        last_updated=row["last_updated"],
    )


class SqliteStore:
    """SQLite-backed store. Pass ":memory:" for a throwaway database."""

    def __init__(self, db_path: "Path | str"):
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open session store {db_path}: {e}") from e
        logger.info("Session store opened at %s", db_path)

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        """One transaction under the store lock; sqlite errors become StoreError."""
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    def insert_session(self, session: Session, now: int) -> bool:
        with self._tx() as conn:
            # An expired, not yet swept row may still hold the code
            conn.execute(
                "DELETE FROM sessions WHERE code = ? AND expires_at <= ?",
                (session.code, now),
            )
            try:
                conn.execute(
                    """
                    INSERT INTO sessions (id, code, created_at, expires_at, current_progress_ms, is_playing)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (session.id, session.code, session.created_at, session.expires_at,
                     session.current_progress_ms, int(session.is_playing)),
                )
            except sqlite3.IntegrityError:
                return False
            return True

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._tx() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return _row_to_session(row) if row else None

    def get_session_by_code(self, code: str) -> Optional[Session]:
        with self._tx() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE code = ?", (code,)).fetchone()
        return _row_to_session(row) if row else None

    def upsert_device(self, device: Device):
        with self._tx() as conn:
            conn.execute(
                """
                INSERT INTO devices (id, session_id, name, joined_at, progress_ms, last_updated)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    session_id = excluded.session_id,
                    name = excluded.name,
                    joined_at = excluded.joined_at,
                    progress_ms = excluded.progress_ms,
                    last_updated = excluded.last_updated
                """,
                (device.id, device.session_id, device.name, device.joined_at,
                 device.progress_ms, device.last_updated),
            )

    def update_progress(
        self,
        session_id: str,
        device_id: str,
        progress_ms: int,
        now: int,
        is_playing: Optional[bool] = None,
    ) -> bool:
        with self._tx() as conn:
            cur = conn.execute(
                "UPDATE devices SET progress_ms = ?, last_updated = ? WHERE id = ? AND session_id = ?",
                (progress_ms, now, device_id, session_id),
            )
            if cur.rowcount == 0:
                return False
            if is_playing is None:
                conn.execute(
                    "UPDATE sessions SET current_progress_ms = ? WHERE id = ?",
                    (progress_ms, session_id),
                )
            else:
                conn.execute(
                    "UPDATE sessions SET current_progress_ms = ?, is_playing = ? WHERE id = ?",
                    (progress_ms, int(is_playing), session_id),
                )
            return True

    def list_devices(self, session_id: str) -> list[Device]:
        with self._tx() as conn:
            rows = conn.execute(
                "SELECT * FROM devices WHERE session_id = ? ORDER BY rowid",
                (session_id,),
            ).fetchall()
        return [_row_to_device(r) for r in rows]

    def delete_device(self, session_id: str, device_id: str) -> bool:
        with self._tx() as conn:
            cur = conn.execute(
                "DELETE FROM devices WHERE id = ? AND session_id = ?",
                (device_id, session_id),
            )
            return cur.rowcount > 0

    def delete_session(self, session_id: str) -> bool:
        with self._tx() as conn:
            cur = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            return cur.rowcount > 0

    def delete_expired(self, now: int) -> int:
        with self._tx() as conn:
            cur = conn.execute("DELETE FROM sessions WHERE expires_at <= ?", (now,))
            return cur.rowcount

    def count_live(self, now: int) -> int:
        with self._tx() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM sessions WHERE expires_at > ?", (now,)
            ).fetchone()
        return row["n"]

    def close(self):
        with self._lock:
            self._conn.close()
