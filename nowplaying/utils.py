"""Formatting helpers shared by the terminal UI."""


def fmt_ms(ms) -> str:
    """Short duration: '07s', '3m 05s', or '01:02:03' past an hour. None gives '--'."""
    if ms is None:
        return "--"
    s = int(ms // 1000)
    h, rem = divmod(s, 3600)
    m, sec = divmod(rem, 60)
    if not h and not m:
        return f"{sec:02d}s"
    if not h:
        return f"{m}m {sec:02d}s"
    return f"{h:02d}:{m:02d}:{sec:02d}"


def fmt_time(ms) -> str:
    """Player-style clock, m:ss."""
    if ms is None:
        return "-:--"
    m, s = divmod(int(ms // 1000), 60)
    return f"{m}:{s:02d}"


def progress_bar(pct: float, bar_len: int = 24) -> str:
    filled = max(0, min(bar_len, int(pct / 100 * bar_len)))
    return "[green]" + "━" * filled + "[/green][dim]" + "·" * (bar_len - filled) + "[/dim]"
