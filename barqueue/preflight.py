"""Startup preflight check — printed once before the server starts."""
from urllib.parse import urlparse

import httpx
from rich.console import Console

from .config import (
    APP_VERSION,
    PORT,
    SPOTIFY_ACCOUNTS_URL,
    SPOTIFY_CLIENT_ID,
    SPOTIFY_CLIENT_SECRET,
    SPOTIFY_REDIRECT_URI,
)

console = Console()


async def run_preflight() -> bool:
    """
    Run all startup checks. Print results. Return False only if a required one fails.
    """
    console.print(f"\n  [bold]♪  Bar Queue v{APP_VERSION}[/bold] — preflight check\n")

    checks = [
        ("Python deps", _check_python_deps, True),
        ("Spotify credentials", _check_credentials, False),
        ("Spotify accounts", _check_accounts, False),
        ("OAuth redirect URI", _check_redirect_uri, False),
    ]

    results = []
    for i, (label, fn, required) in enumerate(checks, 1):
        ok, msg, fix = await fn()
        results.append((ok, label, fix, required))
        if ok:
            icon, status = "[green]✓[/green]", f"[green]{msg}[/green]"
        elif required:
            icon, status = "[red]✗[/red]", f"[red]{msg}[/red]"
        else:
            icon, status = "[yellow]![/yellow]", f"[yellow]{msg}[/yellow]"
        dots = "." * max(30 - len(label), 3)
        console.print(f"  [{i}/{len(checks)}] {label} {dots} {icon} {status}")

    # Print fix instructions for any failures
    failures = [(label, fix) for ok, label, fix, _ in results if not ok and fix]
    if failures:
        console.print("")
        for label, fix in failures:
            console.print(f"  [yellow]Fix for {label}:[/yellow]")
            for line in fix.strip().splitlines():
                console.print(f"    {line}")
            console.print("")

    console.print("")
    return all(ok for ok, _, _, required in results if required)


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
        import uvicorn
        versions.append(f"uvicorn {uvicorn.__version__}")
    except ImportError:
        missing.append("uvicorn")

    try:
        import dotenv  # noqa: F401
        versions.append("python-dotenv")
    except ImportError:
        missing.append("python-dotenv")

    if missing:
        return False, f"missing: {', '.join(missing)}", "Run: pip install -e ."
    return True, ", ".join(versions), ""


async def _check_credentials() -> tuple[bool, str, str]:
    if SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET:
        return True, f"client {SPOTIFY_CLIENT_ID[:6]}…", ""
    return False, "missing — search disabled", (
        "Set SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET in .env\n"
        "Create an app at https://developer.spotify.com/dashboard"
    )


async def _check_accounts() -> tuple[bool, str, str]:
    try:
        async with httpx.AsyncClient(timeout=5) as client:
            r = await client.get(SPOTIFY_ACCOUNTS_URL)
            if r.status_code < 500:
                return True, "reachable", ""
            return False, f"HTTP {r.status_code}", ""
    except httpx.HTTPError:
        return False, "not reachable", "Check the network connection — playlist sync will retry."


async def _check_redirect_uri() -> tuple[bool, str, str]:
    parsed = urlparse(SPOTIFY_REDIRECT_URI)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False, "invalid", f"SPOTIFY_REDIRECT_URI must be an absolute URL, got {SPOTIFY_REDIRECT_URI!r}"
    if parsed.port and parsed.port != PORT:
        return False, f"port {parsed.port} ≠ {PORT}", (
            f"The callback must reach this server: use port {PORT} in SPOTIFY_REDIRECT_URI\n"
            "and register the same URI in the Spotify dashboard."
        )
    return True, SPOTIFY_REDIRECT_URI, ""
