"""Session coordinator: one device's side of the sync protocol.

A device joins a session as either host or follower:

- host: every HOST_PUSH_INTERVAL pushes its interpolated position with
  `update`. Fire-and-forget; a failed push is logged and the next one
  supersedes it.
- follower: every FOLLOWER_POLL_INTERVAL calls `get` and re-anchors its
  interpolator on the session's `currentProgressMs`.

Both roles refresh the device roster from the same `get`. Loops are asyncio
tasks owned by the coordinator and cancelled on leave()/stop(). A join bumps
a generation counter; responses from an older generation are dropped.
"""
import asyncio
import contextlib
import enum
import logging
import secrets
import string
from typing import Optional

import httpx

from .clock import ClockInterpolator
from .config import FOLLOWER_POLL_INTERVAL, HOST_PUSH_INTERVAL, REGISTRY_URL, REQUEST_TIMEOUT
from .errors import DeviceNotInSession, InvalidAction, SessionNotFound, SyncError, UpstreamError

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


class Role(str, enum.Enum):
    HOST = "host"
    FOLLOWER = "follower"


def new_device_id() -> str:
    return "device_" + "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))


class SyncCoordinator:
    def __init__(
        self,
        interpolator: ClockInterpolator,
        registry_url: str = REGISTRY_URL,
        device_id: Optional[str] = None,
        device_name: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        push_interval: float = HOST_PUSH_INTERVAL,
        poll_interval: float = FOLLOWER_POLL_INTERVAL,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.interpolator = interpolator
        self.endpoint = f"{registry_url.rstrip('/')}/api/sync/session"
        self.device_id = device_id or new_device_id()
        self.device_name = device_name or f"Device {self.device_id[-4:]}"
        self.push_interval = push_interval
        self.poll_interval = poll_interval

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

        self.session_id: Optional[str] = None
        self.code: Optional[str] = None
        self.role: Optional[Role] = None
        self.devices: list[dict] = []
        self.status = "idle"    # idle | creating | joining | synced | ended | error
        self.last_error: Optional[str] = None

        self._tasks: list[asyncio.Task] = []
        self._generation = 0

    @property
    def is_host(self) -> bool:
        return self.role is Role.HOST

    @property
    def active(self) -> bool:
        return self.session_id is not None

    # ── Transport ────────────────────────────────────────────────────────────

    async def _post(self, payload: dict) -> dict:
        try:
            r = await self._client.post(self.endpoint, json=payload)
        except httpx.HTTPError as e:
            raise UpstreamError(f"registry unreachable: {e!r}") from e
        try:
            data = r.json()
        except ValueError as e:
            raise UpstreamError(f"registry HTTP {r.status_code}: invalid JSON") from e

        if r.status_code == 200:
            return data
        message = data.get("error", "") if isinstance(data, dict) else ""
        if r.status_code == 404:
            if message == DeviceNotInSession.default_message:
                raise DeviceNotInSession(message)
            raise SessionNotFound(message or None)
        if r.status_code == 400:
            raise InvalidAction(message or None)
        raise UpstreamError(f"registry HTTP {r.status_code}: {message}")

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def create(self) -> tuple[str, str]:
        self.status = "creating"
        try:
            data = await self._post({"action": "create"})
        except SyncError as e:
            self._fail(e)
            raise
        self.status = "idle"
        return data["sessionId"], data["code"]

    async def host_new_session(self) -> str:
        """Create a session and join it as host. Returns the share code."""
        session_id, code = await self.create()
        await self.join(session_id, host=True)
        return code

    async def join(self, session_key: str, host: bool = False, progress_ms: Optional[int] = None) -> dict:
        """Join by full id or short code and start the loops for the role."""
        await self.stop()
        self.status = "joining"
        if progress_ms is None:
            position = self.interpolator.position()
            progress_ms = int(position) if position is not None else 0
        try:
            data = await self._post({
                "action": "join",
                "sessionId": session_key,
                "deviceId": self.device_id,
                "deviceName": self.device_name,
                "progressMs": progress_ms,
            })
        except SyncError as e:
            self._reset()
            self._fail(e)
            raise

        session = data["session"]
        self._generation += 1
        gen = self._generation
        self.session_id = session["id"]
        self.code = session["code"]
        self.devices = session.get("devices", [])
        self.role = Role.HOST if host else Role.FOLLOWER
        self.status = "synced"
        self.last_error = None
        logger.info(
            "Joined session %s (%s) as %s", self.code, self.session_id, self.role.value,
        )
        if not host:
            self.interpolator.correct(
                session.get("currentProgressMs") or 0,
                playing=bool(session.get("isPlaying")),
            )

        self._tasks.append(asyncio.create_task(self._poll_loop(gen)))
        if host:
            self._tasks.append(asyncio.create_task(self._push_loop(gen)))
        return session

    async def stop(self):
        """Cancel the loops. In-flight responses are discarded by generation check."""
        self._generation += 1
        tasks, self._tasks = self._tasks, []
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()
        for task in tasks:
            if task is current:
                continue
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def leave(self, notify: bool = True):
        """Stop syncing. With notify, also drop this device from the server roster (best effort)."""
        session_id = self.session_id
        await self.stop()
        if notify and session_id:
            try:
                await self._post({
                    "action": "leave",
                    "sessionId": session_id,
                    "deviceId": self.device_id,
                })
            except SyncError as e:
                logger.warning("Leave notification failed: %s", e.message)
        self._reset()
        self.status = "idle"

    async def aclose(self):
        await self.leave()
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    # ── Loops ────────────────────────────────────────────────────────────────

    async def _poll_loop(self, gen: int):
        while True:
            await asyncio.sleep(self.poll_interval)
            if gen != self._generation or not await self.poll_once(gen):
                return

    async def _push_loop(self, gen: int):
        while True:
            await asyncio.sleep(self.push_interval)
            if gen != self._generation:
                return
            await self.push_once(gen)

    async def poll_once(self, gen: Optional[int] = None) -> bool:
        """One `get`. Returns False once the session is gone (loop should end)."""
        gen = self._generation if gen is None else gen
        session_id = self.session_id
        if session_id is None:
            return False
        try:
            data = await self._post({"action": "get", "sessionId": session_id})
        except SessionNotFound:
            if gen == self._generation:
                logger.warning("Session %s is gone (expired or ended)", self.code)
                await self._abandon("ended")
            return False
        except SyncError as e:
            logger.warning("Sync poll failed: %s", e.message)
            self.last_error = e.message
            return True

        if gen != self._generation:
            logger.debug("Discarding stale poll response for %s", session_id)
            return False

        self.devices = data.get("devices", [])
        if self.role is Role.FOLLOWER and data.get("currentProgressMs") is not None:
            self.interpolator.correct(
                data["currentProgressMs"],
                playing=bool(data.get("isPlaying")),
            )
        self.last_error = None
        return True

    async def push_once(self, gen: Optional[int] = None):
        gen = self._generation if gen is None else gen
        snapshot = self.interpolator.snapshot
        position = self.interpolator.position()
        if self.role is not Role.HOST or self.session_id is None or gen != self._generation:
            return
        if position is None:
            return
        try:
            await self._post({
                "action": "update",
                "sessionId": self.session_id,
                "deviceId": self.device_id,
                "progressMs": int(position),
                "isPlaying": snapshot.playing,
            })
        except SyncError as e:
            logger.warning("Progress push failed: %s", e.message)
            self.last_error = e.message

    # ── Internals ────────────────────────────────────────────────────────────

    async def _abandon(self, status: str):
        await self.stop()
        self._reset()
        self.status = status

    def _reset(self):
        self.session_id = None
        self.code = None
        self.role = None
        self.devices = []

    def _fail(self, e: SyncError):
        self.status = "error"
        self.last_error = e.message
        logger.warning("Sync request failed: %s", e.message)
