"""Lyric alignment: parse synced LRC, pick the active line, estimate timing.

Provider payloads come in two shapes: synced LRC text (`[mm:ss.ff]line`)
or plain lines. Plain lines get *synthesized* timing: a fixed lead-in, a
fixed tail, and the rest of the track shared out by line length. That is a
guess (longer lines take longer to sing), not a measurement, and every such
line carries `synthesized=True` so the UI can say so.
"""
import bisect
import logging
import re
from typing import Optional

from .config import LYRIC_LEAD_IN_MS, LYRIC_PLACEHOLDER, LYRIC_TAIL_MS
from .models import LyricLine

logger = logging.getLogger(__name__)

_LRC_LINE = re.compile(r"\[(\d+):(\d+\.\d+)\](.*)")


def parse_lrc(lrc: Optional[str]) -> list[LyricLine]:
    """Parse synced lyrics. Lines without a `[mm:ss.ff]` stamp are dropped; input order is kept."""
    if not lrc:
        return []
    lines = []
    for raw in lrc.split("\n"):
        match = _LRC_LINE.search(raw)
        if not match:
            continue
        minutes, seconds, text = match.groups()
        time_ms = int((int(minutes) * 60 + float(seconds)) * 1000)
        lines.append(LyricLine(time_ms=time_ms, text=text.strip()))
    return lines


def active_index(lines: list[LyricLine], position_ms: Optional[float]) -> Optional[int]:
    """Index of the line being sung at position_ms.

    None before the first line (or with no lines / no position). Past the
    last timestamp the last line stays active.
    """
    if not lines or position_ms is None:
        return None
    times = [line.time_ms for line in lines]
    idx = bisect.bisect_right(times, position_ms) - 1
    return idx if idx >= 0 else None


def active_line(lines: list[LyricLine], position_ms: Optional[float]) -> Optional[LyricLine]:
    idx = active_index(lines, position_ms)
    return None if idx is None else lines[idx]


def synthesize_timing(
    texts: list[str],
    duration_ms: Optional[int],
    lead_in_ms: int = LYRIC_LEAD_IN_MS,
    tail_ms: int = LYRIC_TAIL_MS,
) -> list[LyricLine]:
    """Spread plain lines over the track, proportionally to their length.

    The first line starts at lead_in_ms; the last one ends tail_ms before the
    end. An empty line weighs as one character.
    """
    if not texts or not duration_ms:
        return []
    available = max(duration_ms - lead_in_ms - tail_ms, 0)
    weights = [len(t) or 1 for t in texts]
    total = sum(weights)

    result = []
    consumed = 0
    for text, weight in zip(texts, weights):
        start = lead_in_ms + consumed * available // total
        result.append(LyricLine(time_ms=start, text=text.strip(), synthesized=True))
        consumed += weight
    return result


def _plain_lines(plain: str) -> list[str]:
    return [line.strip() or LYRIC_PLACEHOLDER for line in plain.split("\n")]


def build_lines(payload: Optional[dict], duration_ms: Optional[int]) -> list[LyricLine]:
    """Turn a lyrics-provider answer `{synced, plainLines}` into display lines.

    Synced lyrics win. Plain lyrics get synthesized timing when the duration
    is known, otherwise they all sit at 0 (shown, never highlighted past the
    first). Nothing usable gives [].
    """
    if not payload:
        return []
    synced = payload.get("synced")
    if synced:
        lines = parse_lrc(synced)
        if lines:
            return [
                LyricLine(time_ms=l.time_ms, text=l.text or LYRIC_PLACEHOLDER)
                for l in lines
            ]
        logger.warning("Synced lyrics had no timestamped lines, trying plain text")

    plain = payload.get("plainLines")
    if not plain:
        return []
    texts = _plain_lines(plain)
    if duration_ms:
        return synthesize_timing(texts, duration_ms)
    return [LyricLine(time_ms=0, text=t, synthesized=True) for t in texts]


def window(
    lines: list[LyricLine],
    index: Optional[int],
    before: int = 2,
    after: int = 4,
) -> tuple[int, list[LyricLine]]:
    """Visible slice around the active line. Returns (offset of slice, slice)."""
    if not lines:
        return 0, []
    centre = index if index is not None else 0
    start = max(0, centre - before)
    return start, lines[start:centre + after + 1]
