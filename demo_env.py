"""Smoke test — resolves and activates the rust-env sample end to end.

Usage:
    python demo_env.py
"""

from __future__ import annotations

from pathlib import Path

from envforge.config import settings
from envforge.core import manifest_parser
from envforge.core.activator import Activator
from envforge.core.builders import CatalogBuilder
from envforge.core.session import EnvironmentSession, build_resolver
from envforge.models.activation import ActivationMode

SAMPLE = Path(__file__).parent / "samples" / "rust-env"


def main() -> None:
    """Resolve the sample descriptor and print its activation script."""
    print(f"envforge smoke test | workers: {settings.max_workers}")
    print()

    manifest = manifest_parser.load(SAMPLE / "shell.toml")
    builder = CatalogBuilder.from_path(SAMPLE / "catalog.toml")
    session = EnvironmentSession(manifest, build_resolver(builder, settings))

    result = session.resolve()
    for name, artifact in result.artifacts.items():
        print(f"  [OK] {name} {artifact.version}: {artifact.content_id[:23]}")
    print()

    session.compose()
    with session.activate(Activator(ActivationMode.SCRIPT, base_env=session.base_env)) as handle:
        print(handle.script)

    for transition in session.machine.history:
        print(f"  {transition.from_state.value} -> {transition.to_state.value}")


if __name__ == "__main__":
    main()
