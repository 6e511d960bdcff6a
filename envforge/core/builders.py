"""Package-build collaborator protocol and shipped backends.

The resolver never builds anything itself.  It asks a ``PackageBuilder``
for an artifact matching ``(name, version constraint)``.  Any object with a
``lookup`` method of the right shape satisfies the protocol.

Backends:
1. **Custom builders** — user-provided Protocol implementations.
2. **CatalogBuilder** — reads a TOML/JSON catalog of prebuilt packages.
3. **StaticBuilder** — in-memory mapping, for tests and embedding.
"""

from __future__ import annotations

import json
import logging
import tomllib
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from envforge.errors import ParseError
from envforge.models.artifacts import ResolvedArtifact

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class PackageBuilder(Protocol):
    """Protocol for package-build backends.

    ``lookup`` must be idempotent and free of side effects visible to
    envforge.  It returns ``None`` when nothing matches.
    """

    def lookup(
        self, name: str, version_constraint: str | None
    ) -> ResolvedArtifact | None:
        ...


# ---------------------------------------------------------------------------
# Version selection
# ---------------------------------------------------------------------------


def matches_constraint(version: str | None, constraint: str | None) -> bool:
    """Match a concrete version against a constraint.

    ``None`` or ``"*"`` matches anything; ``"3.*"`` matches by prefix
    (``3.0.13`` but not ``30.1``); anything else must match exactly.
    """
    if constraint is None or constraint == "*":
        return True
    if version is None:
        return False
    if constraint.endswith(".*"):
        return version.startswith(constraint[:-1])
    return version == constraint


def default_exports(prefix: str) -> dict[str, list[str]]:
    """Conventional search paths for a package installed at *prefix*."""
    return {
        "PATH": [f"{prefix}/bin"],
        "LIBRARY_PATH": [f"{prefix}/lib"],
        "PKG_CONFIG_PATH": [f"{prefix}/lib/pkgconfig"],
    }


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class StaticBuilder:
    """Builder backed by an in-memory list of artifacts.

    When several artifacts match, the one registered last wins.

    Parameters
    ----------
    artifacts:
        Artifacts to serve.
    """

    def __init__(self, artifacts: Iterable[ResolvedArtifact] = ()) -> None:
        self._by_name: dict[str, list[ResolvedArtifact]] = {}
        for artifact in artifacts:
            self.add(artifact)

    def add(self, artifact: ResolvedArtifact) -> None:
        """Register an artifact."""
        self._by_name.setdefault(artifact.name, []).append(artifact)

    @property
    def names(self) -> list[str]:
        return sorted(self._by_name)

    def lookup(
        self, name: str, version_constraint: str | None
    ) -> ResolvedArtifact | None:
        for artifact in reversed(self._by_name.get(name, [])):
            if matches_constraint(artifact.version, version_constraint):
                return artifact
        return None


class CatalogBuilder(StaticBuilder):
    """Builder backed by a catalog file of prebuilt packages.

    Catalog layout (TOML shown, JSON uses the same structure)::

        [[packages.openssl]]
        version = "3.0.13"
        install_path = "/store/openssl-3.0.13"
        exports = { PKG_CONFIG_PATH = ["{prefix}/lib/pkgconfig"] }

    ``{prefix}`` in export values expands to the install path.  Entries
    without ``exports`` get ``default_exports``.
    """

    @classmethod
    def from_path(cls, path: Path) -> CatalogBuilder:
        """Load a catalog file; ``.json`` is JSON, anything else TOML."""
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
            raw = (
                json.loads(text)
                if path.suffix.lower() == ".json"
                else tomllib.loads(text)
            )
        except (OSError, ValueError) as exc:
            # TOMLDecodeError and JSONDecodeError are both ValueErrors.
            raise ParseError(f"Cannot load catalog {path}: {exc}") from exc
        builder = cls.from_mapping(raw)
        logger.info("Loaded catalog %s with %d packages", path, len(builder.names))
        return builder

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> CatalogBuilder:
        """Build a catalog from an already-decoded mapping."""
        packages = raw.get("packages", {})
        if not isinstance(packages, Mapping):
            raise ParseError("Catalog field 'packages' must be a table")

        builder = cls()
        for name, entries in packages.items():
            if isinstance(entries, Mapping):
                entries = [entries]
            if not isinstance(entries, list):
                raise ParseError(f"Catalog package {name!r} must be a list of tables")
            for entry in entries:
                builder.add(cls._entry_to_artifact(name, entry))
        return builder

    @staticmethod
    def _entry_to_artifact(name: str, entry: Any) -> ResolvedArtifact:
        if not isinstance(entry, Mapping) or "install_path" not in entry:
            raise ParseError(
                f"Catalog entry for {name!r} must be a table with 'install_path'"
            )
        prefix = str(entry["install_path"])
        raw_exports = entry.get("exports")
        if raw_exports is None:
            exports: dict[str, Any] = default_exports(prefix)
        elif isinstance(raw_exports, Mapping):
            exports = {
                key: [str(part).replace("{prefix}", prefix) for part in value]
                if isinstance(value, list)
                else str(value).replace("{prefix}", prefix)
                for key, value in raw_exports.items()
            }
        else:
            raise ParseError(f"Catalog 'exports' for {name!r} must be a table")

        version = entry.get("version")
        return ResolvedArtifact.create(
            name=name,
            version=str(version) if version is not None else None,
            install_path=prefix,
            exported_env=exports,
        )
