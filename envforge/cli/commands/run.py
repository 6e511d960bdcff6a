"""``envforge run MANIFEST -- COMMAND...`` — run a command in the environment.

The child's exit code becomes envforge's exit code (128 + N when signal N
killed it).  Ctrl+C tears the child down before exiting.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from envforge.cli.commands._common import open_session, resolve_or_exit
from envforge.core.activator import Activator
from envforge.errors import ActivationError
from envforge.models.activation import ActivationMode

console = Console(stderr=True)


def run_cmd(
    manifest: Path = typer.Argument(
        ...,
        help="Path to the environment descriptor.",
    ),
    command: list[str] = typer.Argument(
        ...,
        help="Command to run (put it after --).",
    ),
    catalog: Path = typer.Option(
        Path("catalog.toml"),
        "--catalog",
        "-c",
        help="Package catalog (TOML or JSON) to resolve inputs against.",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Seconds to wait for lookups.",
    ),
) -> None:
    """Run COMMAND with the composed environment."""
    session = open_session(manifest, catalog, console)
    resolve_or_exit(session, console, timeout)
    session.compose()

    try:
        handle = session.activate(Activator(ActivationMode.PROCESS, command=command))
    except ActivationError as exc:
        console.print(f"[bold red]Activation failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    with handle:
        try:
            code = handle.wait()
        except KeyboardInterrupt:
            console.print("[yellow]Interrupted; stopping child process.[/yellow]")
            code = 130
    if code < 0:
        # Killed by a signal: report it the way a shell does.
        code = 128 - code
    raise typer.Exit(code=code)
