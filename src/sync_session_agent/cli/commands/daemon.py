"""Daemon lifecycle CLI commands."""

from __future__ import annotations

from typing import Any

import httpx
import typer

from sync_session_agent.cli.daemon_client import DaemonClient, DaemonController, format_json

app = typer.Typer(help="Daemon lifecycle commands")


def _fetch_health(auto_start: bool) -> dict[str, Any] | None:
    client = DaemonClient(auto_start=auto_start)
    try:
        return dict(client.request("GET", "/health").json())
    except (httpx.HTTPError, ValueError):
        return None
    finally:
        client.close()


def _render_session(health: dict[str, Any]) -> None:
    session = health.get("session") or {}
    typer.echo(f"Sync state: {session.get('state') or 'not started'}")
    error = session.get("error")
    if error:
        typer.echo(f"Error: {error.get('code')}: {error.get('message')}")
        if error.get("remediation"):
            typer.echo(f"Hint: {error['remediation']}")


@app.command("start")
def daemon_start() -> None:
    """Start the daemon and wait until it answers."""
    controller = DaemonController()
    pid = controller.status()["pid"]
    if controller.health():
        typer.echo(f"Daemon already running (pid {pid or 'unknown'})")
        return
    try:
        health = _fetch_health(auto_start=True)
    except RuntimeError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1) from None
    typer.echo(f"Daemon started (pid {controller.status()['pid'] or 'unknown'})")
    if health is not None:
        _render_session(health)


@app.command("stop")
def daemon_stop() -> None:
    """Stop the daemon; the session is closed, not wiped."""
    if DaemonController().stop():
        typer.echo("Daemon stopped")
    else:
        typer.echo("Daemon not running")


@app.command("status")
def daemon_status(json_output: bool = typer.Option(False, "--json", help="Output JSON")) -> None:
    """Show daemon process and session health."""
    status = DaemonController().status()
    health = _fetch_health(auto_start=False)
    status["health"] = health
    if json_output or health is None:
        typer.echo(format_json(status))
        return

    typer.echo(f"Daemon: {health.get('status')} (pid {status['pid']})")
    _render_session(health)
