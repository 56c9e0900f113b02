"""Plain data records shared by the registry, stores, clients and UI."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Session:
    id: str
    code: str
    created_at: int             # epoch ms
    expires_at: int             # epoch ms
    current_progress_ms: int = 0
    is_playing: bool = False

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at <= now_ms

    def to_dict(self, devices: list[Device]) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "currentProgressMs": self.current_progress_ms,
            "isPlaying": self.is_playing,
            "devices": [d.to_dict() for d in devices],
        }


@dataclass(frozen=True)
class Device:
    id: str
    session_id: str
    name: str
    joined_at: int              # epoch ms
    progress_ms: int = 0
    last_updated: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "joinedAt": self.joined_at,
            "progressMs": self.progress_ms,
            "lastUpdated": self.last_updated,
        }


@dataclass(frozen=True)
class Track:
    """One answer from the now-playing service."""
    title: str
    artist: str
    album: str = ""
    progress_ms: int = 0
    duration_ms: Optional[int] = None
    playing: bool = False
    uri: str = ""
    cover: Optional[str] = None
    url: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.title}_{self.artist}"

    @classmethod
    def from_payload(cls, data: dict) -> Optional[Track]:
        """Parse `{title, artist, album, progressMs, durationMs, playing, ...}`.

        Returns None for the bare `{playing: false}` answer (nothing loaded).
        """
        if not data.get("title"):
            return None
        duration = data.get("durationMs")
        return cls(
            title=str(data["title"]),
            artist=str(data.get("artist") or ""),
            album=str(data.get("album") or ""),
            progress_ms=int(data.get("progressMs") or 0),
            duration_ms=int(duration) if duration else None,
            playing=bool(data.get("playing", False)),
            uri=data.get("uri") or "",
            cover=data.get("cover"),
            url=data.get("url"),
        )


@dataclass(frozen=True)
class LyricLine:
    time_ms: int
    text: str
    synthesized: bool = False   # timing estimated from text length, not measured
