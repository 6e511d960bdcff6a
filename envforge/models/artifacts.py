"""Resolved artifact model — a concrete, content-addressed input."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from envforge.core.hasher import content_address

# A search-path variable carries ordered fragments; anything else is a scalar.
EnvValue = tuple[str, ...] | str


class ResolvedArtifact(BaseModel):
    """A concrete resolution of an InputRef.

    ``content_id`` is the content address of the artifact's identity
    fields, so two artifacts with the same id are interchangeable. Owned
    by the resolver's cache; everything else treats it as read-only.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str | None = None
    content_id: str  # "sha256:<hex>"
    install_path: Path
    exported_env: dict[str, EnvValue] = {}

    @staticmethod
    def identity_of(
        name: str,
        version: str | None,
        install_path: Path | str,
        exported_env: dict[str, Any],
    ) -> dict[str, Any]:
        """The fields that determine an artifact's content id."""
        return {
            "name": name,
            "version": version,
            "install_path": str(install_path),
            "exported_env": {
                key: list(value) if not isinstance(value, str) else value
                for key, value in exported_env.items()
            },
        }

    @classmethod
    def create(
        cls,
        name: str,
        install_path: Path | str,
        exported_env: dict[str, Any] | None = None,
        version: str | None = None,
    ) -> ResolvedArtifact:
        """Build an artifact and compute its content id.

        List values become search-path fragments; any other value is
        stringified into a scalar.
        """
        env: dict[str, Any] = {
            key: [str(part) for part in value]
            if isinstance(value, (list, tuple))
            else str(value)
            for key, value in (exported_env or {}).items()
        }
        identity = cls.identity_of(name, version, install_path, env)
        return cls(
            name=name,
            version=version,
            content_id=content_address(identity),
            install_path=Path(install_path),
            exported_env=env,
        )

    def expected_content_id(self) -> str:
        """Recompute the content id from this artifact's identity fields."""
        return content_address(
            self.identity_of(
                self.name, self.version, self.install_path, self.exported_env
            )
        )

    def verify(self) -> bool:
        """True if ``content_id`` matches the artifact's identity."""
        return self.content_id == self.expected_content_id()
