"""Shared CLI helpers."""

from __future__ import annotations

from typing import Any, cast

import typer

from sync_session_agent.cli.daemon_client import format_json


def _parse_response_json(resp: Any) -> dict[str, Any]:
    try:
        return cast(dict[str, Any], resp.json())
    except Exception as exc:  # pragma: no cover - depends on daemon output
        typer.echo("Failed to parse response")
        raise typer.Exit(code=1) from exc


def _maybe_render_error(data: dict[str, Any]) -> None:
    if not (isinstance(data, dict) and data.get("error")):
        return
    error = data["error"]
    message = f"{error.get('code')}: {error.get('message')}"
    remediation = error.get("remediation")
    typer.echo(message)
    if remediation:
        typer.echo(f"Hint: {remediation}")
    raise typer.Exit(code=1)


def _maybe_render_accepted(data: dict[str, Any]) -> bool:
    if not (isinstance(data, dict) and data.get("status") == "accepted"):
        return False
    typer.echo(f"✓ Accepted: {data.get('operation')} (daemon will restart)")
    return True


def handle_response(resp: Any, json_output: bool = False) -> None:
    data = _parse_response_json(resp)
    if json_output:
        typer.echo(format_json(data))
        return

    _maybe_render_error(data)
    if _maybe_render_accepted(data):
        return
    typer.echo(format_json(data))


def render_transitions(data: dict[str, Any]) -> str:
    """One line per transition: time, previous -> state."""
    lines = []
    for item in data.get("transitions", []):
        previous = item.get("previous") or "-"
        lines.append(f"{item.get('at')}\t{previous} -> {item.get('state')}")
    return "\n".join(lines) if lines else "No transitions recorded."
