"""Dashboard: ties polling, interpolation and lyrics into render frames.

Three independent loops while running:

- now-playing poll (NOW_PLAYING_POLL_INTERVAL, or sooner when the track
  runs out): track metadata, and ground-truth progress unless a sync
  session as follower owns the progress.
- lyrics load: one task per track change.
- render tick (TICK_INTERVAL): builds a Frame and hands it to on_frame.

The interpolator has exactly one writer at a time: this poller locally or as
host, the coordinator's poll loop as follower.
"""
import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from .clock import ClockInterpolator
from .config import NOW_PLAYING_POLL_INTERVAL, TICK_INTERVAL
from .coordinator import Role, SyncCoordinator
from .errors import UpstreamError
from .lyrics import active_index, build_lines
from .models import LyricLine, Track
from .providers import LyricsClient, NowPlayingClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Frame:
    track: Optional[Track]
    position_ms: Optional[float]
    percentage: float
    lines: list[LyricLine] = field(default_factory=list)
    active: Optional[int] = None
    lyrics_state: str = "none"      # none | loading | synced | estimated
    sync: Optional[dict] = None     # {code, role, status, devices}


class Dashboard:
    def __init__(
        self,
        now_playing: NowPlayingClient,
        lyrics: LyricsClient,
        interpolator: Optional[ClockInterpolator] = None,
        coordinator: Optional[SyncCoordinator] = None,
        poll_interval: float = NOW_PLAYING_POLL_INTERVAL,
        tick_interval: float = TICK_INTERVAL,
    ):
        self.now_playing = now_playing
        self.lyrics = lyrics
        self.interpolator = interpolator or (coordinator.interpolator if coordinator else ClockInterpolator())
        self.coordinator = coordinator
        self.poll_interval = poll_interval
        self.tick_interval = tick_interval

        self.track: Optional[Track] = None
        self.lines: list[LyricLine] = []
        self.lyrics_state = "none"

        self._refresh_now = asyncio.Event()
        self._lyrics_task: Optional[asyncio.Task] = None
        self._tasks: list[asyncio.Task] = []

    @property
    def owns_progress(self) -> bool:
        """False while following a sync session; the coordinator corrects the clock then."""
        return not (self.coordinator and self.coordinator.role is Role.FOLLOWER)

    # ── Now playing ──────────────────────────────────────────────────────────

    async def refresh(self):
        """One now-playing poll. Failures leave the last known state in place."""
        try:
            track = await self.now_playing.fetch()
        except UpstreamError as e:
            logger.warning("Now-playing poll failed: %s", e.message)
            return
        self.apply_track(track)

    def apply_track(self, track: Optional[Track]):
        previous = self.track
        self.track = track
        if track is None:
            if self.owns_progress and previous is not None:
                self.interpolator.correct(self.interpolator.position() or 0, playing=False)
            return

        if previous is None or previous.key != track.key:
            logger.info("Now playing: %s - %s", track.artist, track.title)
            self._start_lyrics(track)

        if self.owns_progress:
            self.interpolator.correct(track.progress_ms, playing=track.playing, duration_ms=track.duration_ms)
        else:
            self.interpolator.set_duration(track.duration_ms)

    # ── Lyrics ───────────────────────────────────────────────────────────────

    def _start_lyrics(self, track: Track):
        if self._lyrics_task and not self._lyrics_task.done():
            self._lyrics_task.cancel()
        self.lines = []
        self.lyrics_state = "loading"
        self._lyrics_task = asyncio.create_task(self.load_lyrics(track))

    async def load_lyrics(self, track: Track):
        try:
            payload = await self.lyrics.fetch(track.title, track.artist)
        except UpstreamError as e:
            logger.warning("Lyrics lookup failed for %s: %s", track.key, e.message)
            payload = None
        except Exception as e:
            logger.error("Lyrics lookup crashed for %s: %r", track.key, e)
            payload = None
        if self.track is None or self.track.key != track.key:
            return      # track moved on while we waited
        self.lines = build_lines(payload, track.duration_ms)
        if not self.lines:
            self.lyrics_state = "none"
        elif self.lines[0].synthesized:
            self.lyrics_state = "estimated"
        else:
            self.lyrics_state = "synced"

    # ── Frames ───────────────────────────────────────────────────────────────

    def frame(self, now_ms: Optional[float] = None) -> Frame:
        position = self.interpolator.position(now_ms)
        sync = None
        if self.coordinator is not None and self.coordinator.active:
            sync = {
                "code": self.coordinator.code,
                "role": self.coordinator.role.value,
                "status": self.coordinator.status,
                "devices": list(self.coordinator.devices),
                "device_id": self.coordinator.device_id,
            }
        return Frame(
            track=self.track,
            position_ms=position,
            percentage=self.interpolator.percentage(now_ms),
            lines=self.lines,
            active=active_index(self.lines, position),
            lyrics_state=self.lyrics_state,
            sync=sync,
        )

    # ── Loops ────────────────────────────────────────────────────────────────

    async def _poll_loop(self):
        while True:
            self._refresh_now.clear()
            await self.refresh()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._refresh_now.wait(), timeout=self.poll_interval)

    async def _tick_loop(self, on_frame: Callable[[Frame], None]):
        ended = False
        while True:
            frame = self.frame()
            try:
                on_frame(frame)
            except Exception as e:
                logger.error("Render failed: %s", e)
            # Track ran out locally: ask for the next one instead of waiting a full poll
            finished = self.interpolator.finished()
            if finished and not ended:
                self._refresh_now.set()
            ended = finished
            await asyncio.sleep(self.tick_interval)

    async def run(self, on_frame: Callable[[Frame], None]):
        """Run until cancelled or stop() is called."""
        self._tasks = [
            asyncio.create_task(self._poll_loop()),
            asyncio.create_task(self._tick_loop(on_frame)),
        ]
        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def stop(self):
        tasks = list(self._tasks)
        if self._lyrics_task:
            tasks.append(self._lyrics_task)
        self._tasks = []
        self._lyrics_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
