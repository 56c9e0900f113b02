"""Clock interpolator: smooth playback position between ground-truth snapshots.

Each snapshot is (base_progress_ms, captured_at, playing, duration_ms), with
captured_at on the monotonic clock. Between snapshots the position advances
with elapsed monotonic time and is capped at the track duration; every new
snapshot replaces the old one wholesale, which is what bounds drift.
"""
import time
from dataclasses import dataclass
from typing import Callable, Optional

_FINISHED_PCT = 99.99


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass(frozen=True)
class Snapshot:
    base_progress_ms: float
    captured_at: float          # monotonic ms
    playing: bool
    duration_ms: Optional[int] = None


def interpolate(snapshot: Snapshot, now_ms: float) -> float:
    if not snapshot.playing:
        return snapshot.base_progress_ms
    position = snapshot.base_progress_ms + (now_ms - snapshot.captured_at)
    if snapshot.duration_ms:
        position = min(position, snapshot.duration_ms)
    return position


def percentage(position_ms: float, duration_ms: Optional[int]) -> float:
    if not duration_ms:
        return 0.0
    return min(position_ms / duration_ms, 1.0) * 100


class ClockInterpolator:
    """Holds the latest snapshot. One writer calls correct(); any number of readers tick."""

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or _monotonic_ms
        self._snapshot: Optional[Snapshot] = None

    @property
    def snapshot(self) -> Optional[Snapshot]:
        return self._snapshot

    def correct(
        self,
        progress_ms: float,
        playing: Optional[bool] = None,
        duration_ms: Optional[int] = None,
        captured_at: Optional[float] = None,
    ):
        """Reset the base to a fresh ground-truth value.

        playing / duration_ms default to the previous snapshot's values, so a
        follower that only learns the progress keeps the known duration.
        """
        prev = self._snapshot
        if playing is None:
            playing = prev.playing if prev else True
        if duration_ms is None and prev is not None:
            duration_ms = prev.duration_ms
        self._snapshot = Snapshot(
            base_progress_ms=progress_ms,
            captured_at=self._clock() if captured_at is None else captured_at,
            playing=playing,
            duration_ms=duration_ms,
        )

    def set_duration(self, duration_ms: Optional[int]):
        """Track metadata changed without a new progress value."""
        prev = self._snapshot
        if prev is None or prev.duration_ms == duration_ms:
            return
        # Re-anchor at the current position so the new cap applies from now on
        now = self._clock()
        self._snapshot = Snapshot(
            base_progress_ms=interpolate(prev, now),
            captured_at=now,
            playing=prev.playing,
            duration_ms=duration_ms,
        )

    def reset(self):
        self._snapshot = None

    def position(self, now_ms: Optional[float] = None) -> Optional[float]:
        """Interpolated position in ms, or None before the first snapshot."""
        snap = self._snapshot
        if snap is None:
            return None
        return interpolate(snap, self._clock() if now_ms is None else now_ms)

    def percentage(self, now_ms: Optional[float] = None) -> float:
        snap = self._snapshot
        if snap is None:
            return 0.0
        return percentage(interpolate(snap, self._clock() if now_ms is None else now_ms), snap.duration_ms)

    def finished(self, now_ms: Optional[float] = None) -> bool:
        return self.percentage(now_ms) >= _FINISHED_PCT
