"""UI display helpers: header, session panels, the live now-playing frame."""
from typing import Optional

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .config import APP_VERSION
from .dashboard import Frame
from .lyrics import window
from .utils import fmt_ms, fmt_time, progress_bar

console = Console()


def print_header():
    console.print(
        f"\n  [bold cyan]♪  Now Playing[/bold cyan]"
        f"  [dim]v{APP_VERSION}[/dim]"
    )


def print_session_created(session_id: str, code: str):
    console.print(Panel(
        f"  Code: [bold]{code}[/bold]\n  [dim]{session_id}[/dim]\n"
        f"  [dim]Share this code with others to sync playback[/dim]",
        title="[bold green]✓[/bold green] Sync session created",
        border_style="green",
        expand=False,
        padding=(0, 1),
    ))


def _lyrics_block(frame: Frame, before: int = 2, after: int = 4) -> Text:
    if frame.lyrics_state == "loading":
        return Text.from_markup("  [dim]Looking for lyrics...[/dim]")
    if not frame.lines:
        return Text.from_markup("  [dim]No lyrics[/dim]")

    start, visible = window(frame.lines, frame.active, before, after)
    text = Text()
    for i, line in enumerate(visible, start):
        if i == frame.active:
            text.append(f"  {line.text}\n", style="bold white")
        else:
            text.append(f"  {line.text}\n", style="dim")
    if frame.lyrics_state == "estimated":
        text.append("  (timing estimated from line length)", style="italic dim")
    return text


def _devices_table(sync: dict) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 1))
    for device in sync.get("devices", []):
        me = " [cyan](you)[/cyan]" if device.get("id") == sync.get("device_id") else ""
        table.add_row(
            f"  {escape(str(device.get('name') or device.get('id', '?')))}{me}",
            f"[dim]{fmt_ms(device.get('progressMs'))}[/dim]",
        )
    return table


def render_frame(frame: Frame) -> Panel:
    """One renderable for rich.live.Live."""
    track = frame.track
    parts = []
    if track is None:
        parts.append(Text.from_markup("  [dim]Nothing playing[/dim]"))
        title = "[dim]♫[/dim] Now playing"
    else:
        icon = "[green]▶[/green]" if track.playing else "[yellow]⏸[/yellow]"
        parts.append(Text.from_markup(f"  [bold]{escape(track.title)}[/bold]"))
        parts.append(Text.from_markup(f"  {escape(track.artist)}  [dim]· {escape(track.album)}[/dim]"))
        parts.append(Text.from_markup(
            f"  {icon} {fmt_time(frame.position_ms)}/{fmt_time(track.duration_ms)} "
            f"{progress_bar(frame.percentage)}"
        ))
        parts.append(Text(""))
        parts.append(_lyrics_block(frame))
        title = "[bold green]♫[/bold green] Now playing"

    subtitle: Optional[str] = None
    if frame.sync:
        sync = frame.sync
        parts.append(Text(""))
        parts.append(Text.from_markup(
            f"  [bold]Sync[/bold] {sync['code']} · {sync['role']} · [dim]{sync['status']}[/dim]"
        ))
        parts.append(_devices_table(sync))
        subtitle = f"[dim]{len(sync.get('devices', []))} device(s)[/dim]"

    return Panel(
        Group(*parts),
        title=title,
        subtitle=subtitle,
        border_style="green" if track and track.playing else "dim",
        expand=False,
        padding=(0, 1),
    )
