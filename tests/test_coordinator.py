"""Host / follower reconciliation against the in-process registry app."""
import asyncio

import httpx
import pytest

from nowplaying.clock import ClockInterpolator
from nowplaying.coordinator import Role, SyncCoordinator, new_device_id
from nowplaying.errors import SessionNotFound, UpstreamError
from nowplaying.registry import ById

SLOW = 60.0     # loops never fire within a test


def _coordinator(http, clock, name, **kwargs):
    kwargs.setdefault("push_interval", SLOW)
    kwargs.setdefault("poll_interval", SLOW)
    return SyncCoordinator(
        ClockInterpolator(clock=clock),
        registry_url="http://registry",
        device_name=name,
        client=http,
        **kwargs,
    )


def test_new_device_id_shape():
    device_id = new_device_id()
    assert device_id.startswith("device_")
    assert len(device_id) == len("device_") + 9
    assert new_device_id() != device_id


async def test_host_and_follower_converge(registry_http, registry, mono_clock):
    host = _coordinator(registry_http, mono_clock, "Device A")
    host.interpolator.correct(5000, playing=True, duration_ms=200_000)
    code = await host.host_new_session()
    assert host.role is Role.HOST
    assert host.code == code
    assert [d["name"] for d in host.devices] == ["Device A"]

    follower = _coordinator(registry_http, mono_clock, "Device B")
    await follower.join(code)
    assert follower.role is Role.FOLLOWER
    assert follower.session_id == host.session_id

    await host.push_once()
    await follower.poll_once()
    assert follower.interpolator.position() == 5000
    assert follower.interpolator.snapshot.playing is True

    mono_clock.advance(25_000)
    await host.push_once()
    assert registry.resolve(ById(host.session_id)).current_progress_ms == 30_000

    await follower.poll_once()
    assert follower.interpolator.position() == 30_000
    # Follower keeps extrapolating between polls
    mono_clock.advance(400)
    assert follower.interpolator.position() == 30_400
    assert [d["name"] for d in follower.devices] == ["Device A", "Device B"]

    await host.aclose()
    await follower.aclose()


async def test_follower_never_pushes(registry_http, registry, mono_clock):
    host = _coordinator(registry_http, mono_clock, "Host")
    code = await host.host_new_session()
    follower = _coordinator(registry_http, mono_clock, "Follower")
    await follower.join(code, progress_ms=0)
    assert len(follower._tasks) == 1

    follower.interpolator.correct(99_000, playing=True)
    await follower.push_once()
    assert registry.resolve(ById(host.session_id)).current_progress_ms == 0
    assert [d.progress_ms for d in registry.list_devices(host.session_id)] == [0, 0]

    await host.aclose()
    await follower.aclose()


async def test_host_without_position_skips_push(registry_http, registry, mono_clock):
    host = _coordinator(registry_http, mono_clock, "Host")
    await host.host_new_session()
    await host.push_once()
    assert host.last_error is None
    devices = registry.list_devices(host.session_id)
    assert devices[0].progress_ms == 0
    await host.aclose()


async def test_stale_poll_after_stop_is_discarded(registry_http, mono_clock):
    host = _coordinator(registry_http, mono_clock, "Host")
    host.interpolator.correct(10_000, playing=True)
    code = await host.host_new_session()
    await host.push_once()

    follower = _coordinator(registry_http, mono_clock, "Follower")
    await follower.join(code)
    follower.interpolator.reset()
    stale_gen = follower._generation
    await follower.stop()

    assert await follower.poll_once(stale_gen) is False
    assert follower.interpolator.position() is None

    await host.aclose()
    await follower.aclose()


async def test_leave_cancels_loops_and_drops_device(registry_http, registry, mono_clock):
    host = _coordinator(registry_http, mono_clock, "Host")
    code = await host.host_new_session()
    follower = _coordinator(registry_http, mono_clock, "Follower")
    await follower.join(code)
    session_id = follower.session_id
    tasks = list(follower._tasks)

    await follower.leave()
    assert all(t.done() for t in tasks)
    assert follower._tasks == []
    assert follower.active is False
    assert follower.status == "idle"
    assert [d.name for d in registry.list_devices(session_id)] == ["Host"]

    await host.aclose()


async def test_session_gone_ends_follower(registry_http, registry, mono_clock):
    host = _coordinator(registry_http, mono_clock, "Host")
    code = await host.host_new_session()
    follower = _coordinator(registry_http, mono_clock, "Follower")
    await follower.join(code)

    registry.teardown(host.session_id)
    assert await follower.poll_once() is False
    assert follower.status == "ended"
    assert follower.active is False
    assert follower._tasks == []

    await host.leave(notify=False)
    await follower.aclose()


async def test_join_unknown_code(registry_http, mono_clock):
    coord = _coordinator(registry_http, mono_clock, "Lost")
    with pytest.raises(SessionNotFound):
        await coord.join("NOPE00")
    assert coord.status == "error"
    assert coord.last_error == "Invalid session code"
    assert coord._tasks == []


async def test_loops_run_on_their_own(registry_http, registry, mono_clock):
    host = _coordinator(registry_http, mono_clock, "Host", push_interval=0.01, poll_interval=0.01)
    host.interpolator.correct(1000, playing=False)
    code = await host.host_new_session()
    follower = _coordinator(registry_http, mono_clock, "Follower", poll_interval=0.01)
    await follower.join(code)

    host.interpolator.correct(42_000, playing=False)
    for _ in range(50):
        await asyncio.sleep(0.01)
        if follower.interpolator.position() == 42_000:
            break
    assert follower.interpolator.position() == 42_000
    assert follower.interpolator.snapshot.playing is False

    await host.aclose()
    await follower.aclose()
    assert all(not t for t in (host._tasks, follower._tasks))


async def test_push_failure_is_logged_not_raised(mono_clock, caplog):
    def handler(request):
        return httpx.Response(500, json={"error": "disk I/O error"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        coord = _coordinator(http, mono_clock, "Host")
        coord.interpolator.correct(1000, playing=True)
        coord.session_id = "a" * 32
        coord.role = Role.HOST
        await coord.push_once()
        assert "disk I/O error" in coord.last_error
        assert "Progress push failed" in caplog.text


async def test_poll_failure_keeps_polling(mono_clock):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        coord = _coordinator(http, mono_clock, "Follower")
        coord.session_id = "a" * 32
        coord.role = Role.FOLLOWER
        assert await coord.poll_once() is True
        assert "registry unreachable" in coord.last_error
        assert coord.interpolator.position() is None


async def test_create_when_registry_down(mono_clock):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        coord = _coordinator(http, mono_clock, "Host")
        with pytest.raises(UpstreamError):
            await coord.create()
        assert coord.status == "error"


async def test_owned_client_is_closed():
    coord = SyncCoordinator(ClockInterpolator(), registry_url="http://registry")
    async with coord:
        assert not coord._client.is_closed
    assert coord._client.is_closed


async def test_follower_starts_from_session_progress(registry_http, mono_clock):
    host = _coordinator(registry_http, mono_clock, "Host")
    host.interpolator.correct(12_000, playing=True, duration_ms=200_000)
    code = await host.host_new_session()
    await host.push_once()

    follower = _coordinator(registry_http, mono_clock, "Follower")
    await follower.join(code)
    assert follower.interpolator.position() == 12_000
    assert follower.interpolator.snapshot.playing is True

    await host.aclose()
    await follower.aclose()


async def test_failed_rejoin_clears_session(registry_http, mono_clock):
    host = _coordinator(registry_http, mono_clock, "Host")
    await host.host_new_session()
    assert host.active

    with pytest.raises(SessionNotFound):
        await host.join("NOPE00", host=True)
    assert host.active is False
    assert host.code is None
    assert host.role is None
    assert host._tasks == []
    assert host.status == "error"
    await host.aclose()
