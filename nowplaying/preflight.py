"""Startup preflight: is everything we talk to reachable?"""
import functools

import httpx
from rich.console import Console

from .config import APP_VERSION, LRCLIB_HOST, NOW_PLAYING_URL, REGISTRY_URL, REQUEST_TIMEOUT

console = Console()


async def run_preflight(need_registry: bool = True, registry_url: str = REGISTRY_URL) -> bool:
    """
    Run startup checks. Print results. Return True only if all required checks pass.
    The lyrics check is advisory: the dashboard works without lyrics.
    """
    console.print(f"\n  [bold]♪  Now Playing v{APP_VERSION}[/bold] — preflight check\n")

    checks = [
        ("Python deps", _check_python_deps, True),
        ("Now-playing service", _check_now_playing, True),
        ("Lyrics (LRCLIB)", _check_lyrics, False),
    ]
    if need_registry:
        checks.insert(1, ("Sync registry", functools.partial(_check_registry, registry_url), True))

    results = []
    for i, (label, fn, required) in enumerate(checks, 1):
        ok, msg, fix = await fn()
        results.append((ok, required, label, msg, fix))
        icon = "[green]✓[/green]" if ok else ("[red]✗[/red]" if required else "[yellow]![/yellow]")
        dots = "." * max(30 - len(label), 3)
        colour = "green" if ok else ("red" if required else "yellow")
        console.print(f"  [{i}/{len(checks)}] {label} {dots} {icon} [{colour}]{msg}[/{colour}]")

    failures = [(label, fix) for ok, required, label, _, fix in results if not ok and required and fix]
    if failures:
        console.print("")
        for label, fix in failures:
            console.print(f"  [yellow]Fix for {label}:[/yellow]")
            for line in fix.strip().splitlines():
                console.print(f"    {line}")
            console.print("")
        return False

    console.print("")
    return all(ok for ok, required, *_ in results if required)


async def _check_python_deps() -> tuple[bool, str, str]:
    missing = []
    versions = []
    try:
        import httpx as hx
        versions.append(f"httpx {hx.__version__}")
    except ImportError:
        missing.append("httpx")

    try:
        import starlette
        versions.append(f"starlette {starlette.__version__}")
    except ImportError:
        missing.append("starlette")

    try:
        import dotenv
        versions.append("python-dotenv")
    except ImportError:
        missing.append("python-dotenv")

    if missing:
        return False, f"missing: {', '.join(missing)}", "Run: pip install -e ."
    return True, ", ".join(versions), ""


async def _check_registry(registry_url: str = REGISTRY_URL) -> tuple[bool, str, str]:
    try:
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
            r = await client.get(f"{registry_url.rstrip('/')}/api/health")
            if r.status_code == 200:
                data = r.json()
                if data.get("status") == "ok":
                    return True, f"running at {registry_url.replace('http://', '')}", ""
                return False, "store degraded", "Check the server log and output/errors.log"
    except (httpx.HTTPError, ValueError):
        pass
    fix = (
        "The sync registry is not running. Start it with:\n"
        "  python nowplaying_cli.py serve\n"
        "Or point REGISTRY_URL in .env at a running one."
    )
    return False, "not responding", fix


async def _check_now_playing() -> tuple[bool, str, str]:
    try:
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
            r = await client.get(NOW_PLAYING_URL)
            if r.status_code in (200, 204):
                return True, "responding", ""
            return False, f"HTTP {r.status_code}", "Check NOW_PLAYING_URL and the Spotify credentials behind it"
    except httpx.HTTPError:
        pass
    return False, "not responding", f"Nothing answering at {NOW_PLAYING_URL}. Set NOW_PLAYING_URL in .env"


async def _check_lyrics() -> tuple[bool, str, str]:
    try:
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
            r = await client.get(f"{LRCLIB_HOST}/api/search", params={"q": "test"})
            if r.status_code < 500:
                return True, "reachable", ""
    except httpx.HTTPError:
        pass
    return False, "unreachable (lyrics disabled)", ""
