"""``envforge lock MANIFEST`` — pin resolved content ids, or check for drift."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from envforge.cli.commands._common import open_session, resolve_or_exit
from envforge.config import settings
from envforge.core.lockfile import LockManager
from envforge.errors import ParseError

console = Console()


def lock_cmd(
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
    lockfile: Path = typer.Option(
        None,
        "--lockfile",
        "-l",
        help="Lockfile path (defaults to ENVFORGE_LOCKFILE_NAME next to the descriptor).",
    ),
    check: bool = typer.Option(
        False,
        "--check",
        help="Verify the existing lockfile instead of writing a new one.",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Seconds to wait for lookups.",
    ),
) -> None:
    """Write a lockfile for MANIFEST, or check an existing one for drift."""
    lock_path = lockfile or manifest.parent / settings.lockfile_name
    session = open_session(manifest, catalog, console)
    result = resolve_or_exit(session, console, timeout)

    manager = LockManager()
    if not check:
        manager.write(manager.lock(result), lock_path)
        console.print(
            f"[green]Locked {len(result.artifacts)} inputs to[/green] {lock_path}"
        )
        return

    try:
        recorded = manager.read(lock_path)
    except ParseError as exc:
        console.print(f"[bold red]Cannot check lock:[/bold red] {exc}")
        raise typer.Exit(code=2)

    drifts = manager.check_drift(recorded, result, strict=False)
    if drifts:
        console.print("[bold red]Lock drift detected:[/bold red]")
        for drift in drifts:
            console.print(f"  [yellow]{drift}[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]{lock_path} is up to date.[/green]")
