"""Session lifecycle CLI commands."""

from __future__ import annotations

import typer

from sync_session_agent.cli.daemon_client import DaemonClient, format_json
from sync_session_agent.cli.utils import handle_response, render_transitions

app = typer.Typer(help="Session lifecycle commands")


@app.command("status")
def session_status(json_output: bool = typer.Option(False, "--json", help="Output JSON")) -> None:
    """Show sync state and whether subsystems are initialized."""
    client = DaemonClient()
    resp = client.request("GET", "/session")
    client.close()

    data = resp.json()
    if json_output or data.get("error"):
        handle_response(resp, json_output=json_output)
        return

    previous = data.get("previous") or "-"
    typer.echo(f"{data.get('state')} (previous: {previous})")
    typer.echo(f"initialized: {'yes' if data.get('initialized') else 'no'}")


@app.command("transitions")
def session_transitions(
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """List recent sync state notifications."""
    client = DaemonClient()
    resp = client.request("GET", "/session/transitions")
    client.close()

    data = resp.json()
    if json_output:
        typer.echo(format_json(data))
        return
    typer.echo(render_transitions(data))


def _post_teardown(path: str, *, wait: bool, json_output: bool) -> None:
    client = DaemonClient(auto_start=False)
    try:
        resp = client.request("POST", path)
        handle_response(resp, json_output=json_output)
        if wait:
            client.wait_for_restart()
            if not json_output:
                typer.echo("✓ Daemon restarted")
    finally:
        client.close()


@app.command("logout")
def session_logout(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    wait: bool = typer.Option(False, "--wait", help="Wait for the daemon to restart"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Log out and delete all local session data, including keys."""
    if not yes:
        typer.confirm("This deletes local keys and cached data. Continue?", abort=True)
    _post_teardown("/session/logout", wait=wait, json_output=json_output)


@app.command("clear-cache")
def session_clear_cache(
    wait: bool = typer.Option(False, "--wait", help="Wait for the daemon to restart"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Discard the local cache and resync. Keys and credentials are kept."""
    _post_teardown("/session/clear-cache", wait=wait, json_output=json_output)
