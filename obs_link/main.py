"""
main.py — obs-link command line entrypoint.

CLI:
  python run.py check                       test connectivity, print versions
  python run.py request GetSceneList        send one request, print responseData
  python run.py batch GetVersion GetStats   send a RequestBatch
  python run.py events --subscriptions all  print events as they arrive
  python run.py init-config                 create a default config.yaml
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from obs_link import __version__
from obs_link.config import Settings, reload_settings
from obs_link.core import (
    EventSubscription,
    OBSError,
    close_session,
    open_session,
)

console = Console()
app = typer.Typer(name="obs-link", help="obs-websocket v5 session client")


def setup_logging(level: str = "info") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def _load(config: Optional[Path], host: Optional[str], port: Optional[int], password: Optional[str]) -> Settings:
    settings = reload_settings(config)
    if host:
        settings.obs.host = host
    if port:
        settings.obs.port = port
    if password:
        settings.obs.password = password
    setup_logging(settings.log.level)
    return settings


def _run(coro) -> None:
    """Run a command coroutine, turning obs-link errors into a red message + exit 1."""
    try:
        asyncio.run(coro)
    except OBSError as e:
        console.print(f"[red]✗ {type(e).__name__}: {e}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        pass


ConfigOpt = typer.Option(None, "--config", "-c", help="Path to config.yaml")
HostOpt = typer.Option(None, "--host", help="OBS WebSocket host")
PortOpt = typer.Option(None, "--port", "-p", help="OBS WebSocket port")
PasswordOpt = typer.Option(None, "--password", help="OBS WebSocket password")


# ──────────────────────────────────────────────────────────────────────────────
# CLI commands
# ──────────────────────────────────────────────────────────────────────────────

@app.command("check")
def check_obs(
    config: Optional[Path] = ConfigOpt,
    host: Optional[str] = HostOpt,
    port: Optional[int] = PortOpt,
    password: Optional[str] = PasswordOpt,
):
    """Test OBS WebSocket connectivity."""
    settings = _load(config, host, port, password)

    async def _check():
        session = await open_session(settings.obs)
        try:
            version = await session.send_request("GetVersion")
            console.print("[green]✓ Connected to OBS[/green]")
            console.print(f"  OBS version:       {version.get('obsVersion')}")
            console.print(f"  WebSocket version: {version.get('obsWebSocketVersion')}")
            console.print(f"  RPC version:       {session.rpc_version}")
            console.print(f"  Platform:          {version.get('platformDescription') or version.get('platform')}")
        finally:
            await close_session()

    _run(_check())


@app.command("request")
def request_cmd(
    request_type: str = typer.Argument(..., help="obs-websocket request type, e.g. GetSceneList"),
    data: Optional[str] = typer.Option(None, "--data", "-d", help="requestData as a JSON object"),
    config: Optional[Path] = ConfigOpt,
    host: Optional[str] = HostOpt,
    port: Optional[int] = PortOpt,
    password: Optional[str] = PasswordOpt,
):
    """Send one request and print its responseData."""
    settings = _load(config, host, port, password)
    try:
        request_data = json.loads(data) if data else None
    except ValueError as e:
        console.print(f"[red]✗ --data is not valid JSON: {e}[/red]")
        sys.exit(2)

    async def _request():
        session = await open_session(settings.obs)
        try:
            response = await session.send_request(request_type, request_data)
            console.print_json(data=response)
        finally:
            await close_session()

    _run(_request())


@app.command("batch")
def batch_cmd(
    request_types: list[str] = typer.Argument(..., help="Request types to run in order"),
    halt: bool = typer.Option(False, "--halt/--no-halt", help="Stop at the first failing request"),
    config: Optional[Path] = ConfigOpt,
    host: Optional[str] = HostOpt,
    port: Optional[int] = PortOpt,
    password: Optional[str] = PasswordOpt,
):
    """Send several data-less requests as one RequestBatch."""
    settings = _load(config, host, port, password)

    async def _batch():
        session = await open_session(settings.obs)
        try:
            results = await session.send_batch(request_types, halt_on_failure=halt)
        finally:
            await close_session()

        table = Table(title="Batch results", show_header=True)
        table.add_column("#", style="dim")
        table.add_column("Request", style="cyan")
        table.add_column("Status")
        table.add_column("Response")
        for index, result in enumerate(results):
            if result.ok:
                status = "[green]ok[/green]"
            elif result.executed:
                status = f"[red]{result.error}[/red]"
            else:
                status = "[yellow]skipped[/yellow]"
            table.add_row(str(index), result.request_type, status, json.dumps(result.data) if result.data else "-")
        console.print(table)
        if not all(r.ok for r in results):
            sys.exit(1)

    _run(_batch())


@app.command("events")
def events_cmd(
    subscriptions: Optional[str] = typer.Option(
        None, "--subscriptions", "-s", help="Event categories, e.g. 'scenes,inputs' (default from config)"
    ),
    event_type: Optional[list[str]] = typer.Option(None, "--type", "-t", help="Only print these event types"),
    count: int = typer.Option(0, "--count", "-n", help="Stop after N events (0 = until disconnected)"),
    config: Optional[Path] = ConfigOpt,
    host: Optional[str] = HostOpt,
    port: Optional[int] = PortOpt,
    password: Optional[str] = PasswordOpt,
):
    """Print events as they arrive."""
    settings = _load(config, host, port, password)
    if subscriptions:
        try:
            settings.obs.event_subscriptions = int(EventSubscription.parse(subscriptions))
        except ValueError as e:
            console.print(f"[red]✗ {e}[/red]")
            sys.exit(2)
    wanted = set(event_type or [])

    async def _events():
        session = await open_session(settings.obs)
        console.rule(f"[bold blue]obs-link v{__version__}[/bold blue] events")
        seen = 0
        try:
            async with session.events() as events:
                async for event in events:
                    if wanted and event.event_type not in wanted:
                        continue
                    console.print(f"[cyan]{event.event_type}[/cyan] {json.dumps(event.event_data)}")
                    seen += 1
                    if count and seen >= count:
                        break
            if not session.is_active():
                console.print(f"[yellow]⚠ Session ended: {session.close_reason}[/yellow]")
        finally:
            await close_session()

    _run(_events())


@app.command("init-config")
def init_config(
    output: Path = typer.Option(Path("config.yaml"), "--output", "-o"),
):
    """Generate a default config.yaml."""
    s = Settings.load()
    s.to_yaml(output)
    console.print(f"[green]✓[/green] Config written to [bold]{output}[/bold]")


if __name__ == "__main__":
    app()
