"""``envforge print-env MANIFEST`` — emit an activation script.

The script assigns every variable the environment adds or changes, in
merge order, in the chosen dialect.  Source it from a shell::

    eval "$(envforge print-env shell.toml)"
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from envforge.cli.commands._common import open_session, resolve_or_exit
from envforge.core.activator import Activator
from envforge.errors import ActivationError
from envforge.models.activation import ActivationMode, ScriptDialect

console = Console(stderr=True)


def print_env_cmd(
    manifest: Path = typer.Argument(
        ...,
        help="Path to the environment descriptor.",
    ),
    catalog: Path = typer.Option(
        Path("catalog.toml"),
        "--catalog",
        "-c",
        help="Package catalog (TOML or JSON) to resolve inputs against.",
    ),
    dialect: ScriptDialect = typer.Option(
        ScriptDialect.POSIX,
        "--dialect",
        "-d",
        help="Script syntax to emit.",
    ),
    output: Path = typer.Option(
        None,
        "--output",
        "-o",
        help="Write the script to this file instead of stdout.",
    ),
    full: bool = typer.Option(
        False,
        "--full",
        help="Emit every variable, not only those that differ from the current environment.",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Seconds to wait for lookups.",
    ),
) -> None:
    """Print (or write) a script that activates the environment."""
    session = open_session(manifest, catalog, console)
    resolve_or_exit(session, console, timeout)
    session.compose()

    activator = Activator(
        ActivationMode.SCRIPT,
        dialect=dialect,
        script_path=output,
        keep_script=True,
        base_env=None if full else session.base_env,
    )
    try:
        handle = session.activate(activator)
    except ActivationError as exc:
        console.print(f"[bold red]Activation failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    if output is None:
        typer.echo(handle.script, nl=False)
    else:
        console.print(f"[green]Wrote activation script to[/green] {output}")
