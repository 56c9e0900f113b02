"""Starlette app: sync session endpoint + health."""
import asyncio
import contextlib
import logging
import math
from typing import Optional

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..config import APP_VERSION, DB_PATH, SESSION_STORE, SWEEP_INTERVAL
from ..errors import InvalidAction, SyncError, format_error
from ..registry import SessionRegistry, parse_lookup_key
from ..store import MemoryStore, SqliteStore

logger = logging.getLogger(__name__)

_MAX_PROGRESS_MS = 2 ** 63 - 1     # SQLite INTEGER range


# ── Request parsing ──────────────────────────────────────────────────────────

def _lookup_key(body: dict):
    """`sessionId` carries either the full id or the short code (`code` also accepted)."""
    raw = body.get("sessionId") or body.get("code")
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidAction("Missing sessionId")
    return parse_lookup_key(raw.strip())


def _device_id(body: dict) -> str:
    device_id = body.get("deviceId")
    if not isinstance(device_id, str) or not device_id.strip():
        raise InvalidAction("Missing deviceId")
    return device_id.strip()


def _device_name(body: dict) -> Optional[str]:
    name = body.get("deviceName")
    if name is None:
        return None
    if not isinstance(name, str):
        raise InvalidAction("deviceName must be a string")
    return name.strip() or None


def _progress(body: dict, required: bool) -> int:
    value = body.get("progressMs")
    if value is None:
        if required:
            raise InvalidAction("Missing progressMs")
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidAction("progressMs must be a number")
    if not math.isfinite(value) or abs(value) > _MAX_PROGRESS_MS:
        raise InvalidAction("progressMs must be a number")
    return max(0, int(value))


def _playing(body: dict) -> Optional[bool]:
    value = body.get("isPlaying")
    return None if value is None else bool(value)


# ── Actions ──────────────────────────────────────────────────────────────────

def _dispatch(registry: SessionRegistry, action, body: dict) -> dict:
    if action == "create":
        session_id, code = registry.create()
        return {"sessionId": session_id, "code": code}

    elif action == "join":
        session = registry.resolve(_lookup_key(body))
        registry.add_device(
            session.id,
            _device_id(body),
            _device_name(body),
            _progress(body, required=False),
        )
        return {"success": True, "session": registry.describe(session)}

    elif action == "update":
        session = registry.resolve(_lookup_key(body))
        registry.update_progress(
            session.id,
            _device_id(body),
            _progress(body, required=True),
            _playing(body),
        )
        return {"success": True}

    elif action == "get":
        session = registry.resolve(_lookup_key(body))
        return registry.describe(session)

    elif action == "leave":
        session = registry.resolve(_lookup_key(body))
        registry.remove_device(session.id, _device_id(body))
        return {"success": True}

    elif action == "end":
        session = registry.resolve(_lookup_key(body))
        registry.teardown(session.id)
        return {"success": True}

    raise InvalidAction()


async def sync_session(request: Request):
    registry: SessionRegistry = request.app.state.registry
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"error": "Invalid request"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse({"error": "Invalid request"}, status_code=400)

    action = body.get("action")
    try:
        return JSONResponse(_dispatch(registry, action, body))
    except SyncError as e:
        if e.status >= 500:
            format_error("store", body, e.message)
        else:
            logger.debug("Sync %s rejected: %s", action, e.message)
        return JSONResponse({"error": e.message}, status_code=e.status)
    except Exception as e:
        format_error("sync_session", body, repr(e))
        return JSONResponse({"error": str(e) or "Internal error"}, status_code=500)


# ── Health ───────────────────────────────────────────────────────────────────

async def health(request: Request):
    registry: SessionRegistry = request.app.state.registry
    try:
        sessions = registry.live_count()
        store = {"ok": True, "sessions": sessions}
    except SyncError as e:
        store = {"ok": False, "error": e.message}
    return JSONResponse({
        "status": "ok" if store["ok"] else "degraded",
        "version": APP_VERSION,
        "store": store,
    })


# ── App factory ──────────────────────────────────────────────────────────────

def default_registry() -> SessionRegistry:
    if SESSION_STORE == "memory":
        return SessionRegistry(MemoryStore())
    return SessionRegistry(SqliteStore(DB_PATH))


def create_app(registry: Optional[SessionRegistry] = None, sweep_interval: float = SWEEP_INTERVAL) -> Starlette:
    """Build the app around a registry (a SQLite-backed one from config when omitted)."""
    if registry is None:
        registry = default_registry()

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        sweeper = asyncio.create_task(registry.run_sweeper(sweep_interval))
        logger.info("Session sweeper started (every %ss)", sweep_interval)
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            registry.store.close()
            logger.info("Session sweeper stopped")

    routes = [
        Route("/api/health", health),
        Route("/api/sync/session", sync_session, methods=["POST"]),
    ]

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.registry = registry
    return app
