"""Session registry: sessions, their devices, TTL expiry.

All state lives in the injected store; the registry adds ids, codes, TTLs
and the membership rules on top of it:

- create() hands out a 32-hex id and a 6-char code, redrawing the code
  while a live session holds it.
- resolve() takes a LookupKey (ById / ByCode) and treats expired sessions
  as missing, swept or not.
- add_device() is an upsert and never fails on repeats; update_progress()
  requires the device to have joined first.
"""
import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

from .config import CODE_LENGTH, SESSION_TTL_MS, SWEEP_INTERVAL
from .errors import DeviceNotInSession, SessionNotFound, StoreError, format_error
from .models import Device, Session

logger = logging.getLogger(__name__)

_MAX_CODE_ATTEMPTS = 16


@dataclass(frozen=True)
class ById:
    value: str


@dataclass(frozen=True)
class ByCode:
    value: str

    def __post_init__(self):
        # Codes are generated upper-case; accept whatever case gets typed in
        object.__setattr__(self, "value", self.value.upper())


LookupKey = Union[ById, ByCode]


def parse_lookup_key(raw: str) -> LookupKey:
    """Exactly CODE_LENGTH characters means a short code, anything else a full id."""
    if len(raw) == CODE_LENGTH:
        return ByCode(raw)
    return ById(raw)


def _now_ms() -> int:
    return int(time.time() * 1000)


def new_session_id() -> str:
    return secrets.token_hex(16)


def new_code() -> str:
    return secrets.token_hex(CODE_LENGTH // 2).upper()


class SessionRegistry:
    def __init__(self, store, ttl_ms: int = SESSION_TTL_MS, clock: Optional[Callable[[], int]] = None):
        """store: MemoryStore or SqliteStore. clock: epoch-ms callable, injectable for tests."""
        self.store = store
        self.ttl_ms = ttl_ms
        self._clock = clock or _now_ms

    def now(self) -> int:
        return self._clock()

    # ── Sessions ─────────────────────────────────────────────────────────────

    def create(self) -> tuple[str, str]:
        now = self.now()
        for _ in range(_MAX_CODE_ATTEMPTS):
            session = Session(
                id=new_session_id(),
                code=new_code(),
                created_at=now,
                expires_at=now + self.ttl_ms,
            )
            if self.store.insert_session(session, now):
                logger.info("Session %s created (code %s)", session.id, session.code)
                return session.id, session.code
            logger.warning("Session code %s already live, redrawing", session.code)
        raise StoreError("Could not allocate a unique session code")

    def resolve(self, key: LookupKey) -> Session:
        if isinstance(key, ByCode):
            session = self.store.get_session_by_code(key.value)
            missing = "Invalid session code"
        else:
            session = self.store.get_session(key.value)
            missing = "Session not found"
        if session is None or session.is_expired(self.now()):
            raise SessionNotFound(missing)
        return session

    def teardown(self, session_id: str):
        if not self.store.delete_session(session_id):
            raise SessionNotFound()
        logger.info("Session %s torn down", session_id)

    def expire_sweep(self) -> int:
        """Delete every session whose TTL has elapsed (devices cascade). Returns the count."""
        removed = self.store.delete_expired(self.now())
        if removed:
            logger.info("Expired %d session(s)", removed)
        return removed

    def live_count(self) -> int:
        return self.store.count_live(self.now())

    async def run_sweeper(self, interval: float = SWEEP_INTERVAL):
        """Sweep on a fixed interval until cancelled. Store failures are logged, not fatal."""
        while True:
            await asyncio.sleep(interval)
            try:
                self.expire_sweep()
            except StoreError as e:
                format_error("store", raw=f"expire sweep failed: {e}")

    # ── Devices ──────────────────────────────────────────────────────────────
    # session_id arguments are expected to come from resolve()

    def add_device(
        self,
        session_id: str,
        device_id: str,
        device_name: Optional[str] = None,
        initial_progress_ms: int = 0,
    ) -> Device:
        now = self.now()
        device = Device(
            id=device_id,
            session_id=session_id,
            name=device_name or f"Device {device_id[-4:]}",
            joined_at=now,
            progress_ms=initial_progress_ms,
            last_updated=now,
        )
        self.store.upsert_device(device)
        logger.debug("Device %s joined session %s", device_id, session_id)
        return device

    def update_progress(
        self,
        session_id: str,
        device_id: str,
        progress_ms: int,
        is_playing: Optional[bool] = None,
    ):
        if not self.store.update_progress(session_id, device_id, progress_ms, self.now(), is_playing):
            raise DeviceNotInSession()

    def remove_device(self, session_id: str, device_id: str):
        if not self.store.delete_device(session_id, device_id):
            raise DeviceNotInSession()
        logger.debug("Device %s left session %s", device_id, session_id)

    def list_devices(self, session_id: str) -> list[Device]:
        return self.store.list_devices(session_id)

    def describe(self, session: Session) -> dict:
        """Wire form of a session with its current roster."""
        return session.to_dict(self.list_devices(session.id))
