"""CLI entry point using Typer."""

from __future__ import annotations

import typer

from sync_session_agent.cli.commands import daemon, session

app = typer.Typer(
    name="sync-session-agent",
    help="Session lifecycle daemon for an encrypted sync client",
    no_args_is_help=True,
)


@app.command()
def version() -> None:
    """Show version information."""
    from sync_session_agent import __version__

    typer.echo(f"sync-session-agent v{__version__}")


app.add_typer(daemon.app, name="daemon")
app.add_typer(session.app, name="session")


if __name__ == "__main__":
    app()
