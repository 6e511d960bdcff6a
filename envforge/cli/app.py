"""Main Typer application — imports and registers all CLI commands.

Entry point: ``envforge`` (configured via pyproject.toml project.scripts).

Commands: resolve, print-env, run, lock.
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from envforge.cli.commands.lock import lock_cmd
from envforge.cli.commands.print_env import print_env_cmd
from envforge.cli.commands.resolve import resolve_cmd
from envforge.cli.commands.run import run_cmd
from envforge.config import settings

app = typer.Typer(
    name="envforge",
    help="envforge: declarative, reproducible development environments.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="resolve", help="Resolve a descriptor's inputs to artifacts.")(resolve_cmd)
app.command(name="print-env", help="Emit a script that activates the environment.")(print_env_cmd)
app.command(name="run", help="Run a command inside the environment.")(run_cmd)
app.command(name="lock", help="Write or check a lockfile of resolved artifacts.")(lock_cmd)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Log resolution and activation details."
    ),
) -> None:
    """Configure logging once for every command."""
    level = logging.DEBUG if verbose else settings.log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
