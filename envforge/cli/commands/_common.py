"""Shared helpers for CLI commands: loading inputs and rendering errors."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from envforge.config import EnvforgeSettings
from envforge.core import manifest_parser
from envforge.core.builders import CatalogBuilder
from envforge.core.resolver import ResolutionResult
from envforge.core.session import EnvironmentSession, build_resolver
from envforge.errors import ConflictError, ParseError, ResolutionError


def open_session(
    manifest_path: Path,
    catalog_path: Path,
    console: Console,
    settings: EnvforgeSettings | None = None,
) -> EnvironmentSession:
    """Parse the descriptor and catalog, exiting with code 2 on bad input."""
    try:
        manifest = manifest_parser.load(manifest_path)
        builder = CatalogBuilder.from_path(catalog_path)
    except ConflictError as exc:
        console.print(f"[bold red]Conflicting declarations:[/bold red] {exc}")
        raise typer.Exit(code=2)
    except ParseError as exc:
        console.print(f"[bold red]Invalid input:[/bold red] {exc}")
        raise typer.Exit(code=2)
    return EnvironmentSession(manifest, build_resolver(builder, settings))


def resolve_or_exit(
    session: EnvironmentSession, console: Console, timeout: float | None
) -> ResolutionResult:
    """Resolve the session, printing structured diagnostics on failure."""
    try:
        return session.resolve(timeout=timeout)
    except ResolutionError as exc:
        print_resolution_error(exc, console)
        raise typer.Exit(code=1)


def print_resolution_error(error: ResolutionError, console: Console) -> None:
    """Render a ResolutionError as a table of actionable problems."""
    details = error.to_dict()
    timed_out = set(details["timed_out"])

    table = Table(title="[bold red]Resolution failed[/bold red]")
    table.add_column("Input", style="cyan")
    table.add_column("Problem")

    for name in details["missing"]:
        problem = (
            "[yellow]timed out[/yellow]"
            if name in timed_out
            else "[red]no matching artifact[/red]"
        )
        table.add_row(name, problem)
    for first, second in details["conflicting"]:
        table.add_row(f"{first} / {second}", "[red]conflicting constraints[/red]")

    console.print(table)
