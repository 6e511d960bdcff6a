"""envforge CLI — Typer-based command-line interface.

Provides the ``envforge`` command with subcommands for resolving a
descriptor, printing an activation script, running a command inside the
environment, and writing or checking lockfiles.

All output uses Rich for formatted terminal display.
"""
