"""Collaborator clients: now-playing snapshot and LRCLIB lyrics lookup.

Both services are opaque: we only rely on the JSON they hand back. Failures
raise UpstreamError; callers decide whether that skips a poll or a track.
"""
import logging
from typing import Optional

import httpx

from .config import LRCLIB_HOST, NOW_PLAYING_URL, REQUEST_TIMEOUT, APP_VERSION
from .errors import UpstreamError
from .models import Track

logger = logging.getLogger(__name__)

_HEADERS = {"User-Agent": f"nowplaying-sync/{APP_VERSION}"}


def _text(value) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


class _HttpSource:
    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = REQUEST_TIMEOUT):
        """client: shared AsyncClient (tests pass one with a mock transport)."""
        self._client = client
        self.timeout = timeout

    async def _get(self, url: str, params: Optional[dict] = None) -> httpx.Response:
        try:
            if self._client is not None:
                return await self._client.get(url, params=params, headers=_HEADERS, timeout=self.timeout)
            async with httpx.AsyncClient(timeout=self.timeout, headers=_HEADERS) as client:
                return await client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise UpstreamError(f"{url} timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"{url} HTTP error: {e}") from e


class NowPlayingClient(_HttpSource):
    """GET the now-playing proxy: `{title, artist, album, progressMs, durationMs, playing, ...}`."""

    def __init__(self, url: str = NOW_PLAYING_URL, **kwargs):
        super().__init__(**kwargs)
        self.url = url

    async def fetch(self) -> Optional[Track]:
        """Current track, or None when nothing is playing (or requests are time-blocked)."""
        r = await self._get(self.url)
        if r.status_code == 204:
            return None
        if r.status_code != 200:
            raise UpstreamError(f"now-playing HTTP {r.status_code}: {r.text[:200]}")
        try:
            data = r.json()
        except ValueError as e:
            raise UpstreamError(f"now-playing returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise UpstreamError(f"now-playing returned {type(data).__name__}, expected an object")
        if data.get("blockedByTimeRestriction"):
            logger.info("now-playing: %s", data.get("message", "requests blocked"))
            return None
        try:
            return Track.from_payload(data)
        except (TypeError, ValueError, OverflowError) as e:
            raise UpstreamError(f"now-playing returned a malformed track: {e}") from e


class LyricsClient(_HttpSource):
    """LRCLIB search, reduced to the `{synced, plainLines}` shape the aligner takes."""

    def __init__(self, host: str = LRCLIB_HOST, **kwargs):
        super().__init__(**kwargs)
        self.host = host.rstrip("/")

    async def fetch(self, title: str, artist: str) -> Optional[dict]:
        """First search hit's lyrics, or None when LRCLIB has nothing for the pair."""
        r = await self._get(
            f"{self.host}/api/search",
            params={"track_name": title, "artist_name": artist},
        )
        if r.status_code == 404:
            return None
        if r.status_code != 200:
            raise UpstreamError(f"lyrics HTTP {r.status_code}: {r.text[:200]}")
        try:
            items = r.json()
        except ValueError as e:
            raise UpstreamError(f"lyrics returned invalid JSON: {e}") from e
        if not isinstance(items, list) or not items:
            return None

        best = items[0]
        if not isinstance(best, dict):
            raise UpstreamError(f"lyrics search hit is {type(best).__name__}, expected an object")
        synced = _text(best.get("syncedLyrics"))
        plain = _text(best.get("plainLyrics"))
        if not synced and not plain:
            return None
        return {"synced": synced, "plainLines": plain}
