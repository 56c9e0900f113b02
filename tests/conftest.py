"""Pytest fixtures for the sync registry, server and clients."""
import httpx
import pytest
from starlette.testclient import TestClient

from nowplaying.registry import SessionRegistry
from nowplaying.store import MemoryStore, SqliteStore
from nowplaying.web.server import create_app

T0 = 1_700_000_000_000      # epoch ms


class FakeClock:
    """Settable clock; call it for the current time, advance() to move it."""

    def __init__(self, start: float = 0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, delta):
        self.now += delta


@pytest.fixture(autouse=True)
def _errors_log(tmp_path, monkeypatch):
    """Keep format_error() from writing into the repo's output/ directory."""
    monkeypatch.setattr("nowplaying.errors.OUTPUT_DIR", tmp_path / "output")
    monkeypatch.setattr("nowplaying.errors.ERRORS_LOG", tmp_path / "output" / "errors.log")


@pytest.fixture
def wall_clock():
    return FakeClock(T0)


@pytest.fixture
def mono_clock():
    return FakeClock(50_000.0)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        s = MemoryStore()
    else:
        s = SqliteStore(tmp_path / "sessions.db")
    yield s
    s.close()


@pytest.fixture
def registry(store, wall_clock):
    return SessionRegistry(store, clock=wall_clock)


@pytest.fixture
def app(registry):
    return create_app(registry)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
async def registry_http(app):
    """AsyncClient wired straight into the ASGI app, for coordinator tests."""
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://registry",
    ) as http:
        yield http
