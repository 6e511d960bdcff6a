"""``envforge resolve MANIFEST`` — resolve every declared input.

Prints one row per input with its content id and install path, or a
table of every missing and conflicting input when resolution fails.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from envforge.cli.commands._common import open_session, resolve_or_exit

console = Console()


def resolve_cmd(
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
    timeout: float = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Seconds to wait for lookups.",
    ),
) -> None:
    """Resolve a descriptor's inputs and show the artifacts they map to."""
    session = open_session(manifest, catalog, console)
    result = resolve_or_exit(session, console, timeout)

    table = Table(title=f"[bold]{result.manifest.name}[/bold]")
    table.add_column("Input", style="cyan")
    table.add_column("Kind")
    table.add_column("Version", style="green")
    table.add_column("Content ID", style="dim")
    table.add_column("Install Path")

    for name, artifact in result.artifacts.items():
        table.add_row(
            name,
            result.kinds[name].value,
            artifact.version or "-",
            artifact.content_id.removeprefix("sha256:")[:16],
            str(artifact.install_path),
        )

    console.print(table)
