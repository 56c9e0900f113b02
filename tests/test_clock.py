"""Clock interpolation between snapshots."""
import pytest

from nowplaying.clock import ClockInterpolator, Snapshot, interpolate, percentage


def test_playing_advances_and_caps(mono_clock):
    clock = ClockInterpolator(clock=mono_clock)
    t = mono_clock.now
    clock.correct(5000, playing=True, duration_ms=10000)

    mono_clock.advance(2000)
    assert clock.position() == 7000
    assert clock.percentage() == pytest.approx(70)

    mono_clock.now = t + 6000
    assert clock.position() == 10000
    assert clock.percentage() == 100
    assert clock.finished()


def test_paused_holds_position(mono_clock):
    clock = ClockInterpolator(clock=mono_clock)
    clock.correct(4000, playing=False, duration_ms=10000)
    mono_clock.advance(3000)
    assert clock.position() == 4000
    assert clock.percentage() == pytest.approx(40)
    assert not clock.finished()


def test_correction_resets_base(mono_clock):
    clock = ClockInterpolator(clock=mono_clock)
    clock.correct(1000, playing=True, duration_ms=60000)
    mono_clock.advance(5000)
    assert clock.position() == 6000

    # Ground truth says we drifted ahead
    clock.correct(5500)
    assert clock.position() == 5500
    mono_clock.advance(500)
    assert clock.position() == 6000
    # playing/duration carried over from the previous snapshot
    assert clock.snapshot.playing is True
    assert clock.snapshot.duration_ms == 60000


def test_no_snapshot():
    clock = ClockInterpolator()
    assert clock.position() is None
    assert clock.percentage() == 0.0
    assert not clock.finished()


def test_unknown_duration_is_uncapped(mono_clock):
    clock = ClockInterpolator(clock=mono_clock)
    clock.correct(1000, playing=True)
    mono_clock.advance(1_000_000)
    assert clock.position() == 1_001_000
    assert clock.percentage() == 0.0


def test_explicit_tick_time():
    snap = Snapshot(base_progress_ms=5000, captured_at=100.0, playing=True, duration_ms=10000)
    assert interpolate(snap, 2100.0) == 7000
    assert interpolate(snap, 6100.0) == 10000
    assert percentage(7000, 10000) == pytest.approx(70)
    assert percentage(12000, 10000) == 100
    assert percentage(100, 0) == 0.0


def test_set_duration_reanchors(mono_clock):
    clock = ClockInterpolator(clock=mono_clock)
    clock.correct(0, playing=True)
    mono_clock.advance(3000)
    clock.set_duration(4000)
    assert clock.snapshot.base_progress_ms == 3000
    mono_clock.advance(5000)
    assert clock.position() == 4000


def test_reset(mono_clock):
    clock = ClockInterpolator(clock=mono_clock)
    clock.correct(10, playing=True)
    clock.reset()
    assert clock.position() is None
