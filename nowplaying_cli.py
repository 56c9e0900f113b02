"""Now Playing: entry point.

  python nowplaying_cli.py serve              run the sync registry
  python nowplaying_cli.py create             create a sync session, print its code
  python nowplaying_cli.py host [CODE]        dashboard + push progress (new session if no CODE)
  python nowplaying_cli.py follow CODE        dashboard following a session's progress
  python nowplaying_cli.py watch              dashboard only, no sync
  python nowplaying_cli.py check              preflight
"""
import argparse
import asyncio
import logging
import sys

from rich.live import Live
from rich.logging import RichHandler

from nowplaying.clock import ClockInterpolator
from nowplaying.config import DEV_MODE, REGISTRY_URL, WEB_HOST, WEB_PORT
from nowplaying.coordinator import SyncCoordinator
from nowplaying.dashboard import Dashboard
from nowplaying.errors import SyncError, format_error
from nowplaying.preflight import run_preflight
from nowplaying.providers import LyricsClient, NowPlayingClient
from nowplaying.ui import console, print_header, print_session_created, render_frame

logger = logging.getLogger("nowplaying")


def _setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def serve():
    import uvicorn
    from nowplaying.web.server import create_app

    uvicorn.run(create_app(), host=WEB_HOST, port=WEB_PORT, log_level="debug" if DEV_MODE else "info")


async def create_session(args) -> int:
    async with SyncCoordinator(ClockInterpolator(), registry_url=args.registry) as coord:
        try:
            session_id, code = await coord.create()
        except SyncError as e:
            console.print(f"[red]{format_error('sync_session', {'action': 'create'}, e.message)}[/red]")
            return 1
    print_session_created(session_id, code)
    return 0


async def run_dashboard(args) -> int:
    print_header()
    mode = args.command
    if not await run_preflight(need_registry=mode != "watch", registry_url=args.registry):
        return 1

    interpolator = ClockInterpolator()
    coordinator = None
    if mode != "watch":
        coordinator = SyncCoordinator(interpolator, registry_url=args.registry, device_name=args.name)

    dashboard = Dashboard(NowPlayingClient(), LyricsClient(), interpolator, coordinator)
    try:
        if mode == "host":
            # Ground truth first, so the host joins with a real position
            await dashboard.refresh()
            if args.code:
                await coordinator.join(args.code, host=True)
            else:
                code = await coordinator.host_new_session()
                print_session_created(coordinator.session_id, code)
        elif mode == "follow":
            await coordinator.join(args.code, host=False)
    except SyncError as e:
        console.print(f"[red]{format_error('sync_session', {'action': 'join'}, e.message)}[/red]")
        if coordinator:
            await coordinator.aclose()
        return 1

    try:
        with Live(console=console, refresh_per_second=10, transient=False) as live:
            await dashboard.run(lambda frame: live.update(render_frame(frame)))
    finally:
        await dashboard.stop()
        if coordinator:
            await coordinator.aclose()
    return 0


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="nowplaying", description="Spotify now-playing dashboard with cross-device sync")
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    p.add_argument("--registry", default=REGISTRY_URL, help=f"sync registry URL (default {REGISTRY_URL})")
    p.add_argument("--name", default=None, help="device name shown to other devices")
    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("serve", help="run the sync registry server")
    sub.add_parser("create", help="create a sync session and print its code")
    host = sub.add_parser("host", help="dashboard that pushes its progress to a session")
    host.add_argument("code", nargs="?", default=None, help="join this session instead of creating one")
    follow = sub.add_parser("follow", help="dashboard that follows a session's progress")
    follow.add_argument("code", help="session code or id")
    sub.add_parser("watch", help="dashboard only, no sync")
    sub.add_parser("check", help="run the preflight checks")
    return p


def main(argv=None) -> int:
    args = _parser().parse_args(argv)
    _setup_logging(args.verbose)

    if args.command == "serve":
        serve()
        return 0
    try:
        if args.command == "create":
            return asyncio.run(create_session(args))
        if args.command == "check":
            return 0 if asyncio.run(run_preflight(registry_url=args.registry)) else 1
        return asyncio.run(run_dashboard(args))
    except KeyboardInterrupt:
        console.print("\n  [dim]Bye.[/dim]")
        return 0


if __name__ == "__main__":
    sys.exit(main())
