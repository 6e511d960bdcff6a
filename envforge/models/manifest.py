"""Manifest models — the parsed, immutable environment descriptor."""

from __future__ import annotations

from collections.abc import Iterator
from enum import Enum

from pydantic import BaseModel, ConfigDict, field_validator


class InputKind(str, Enum):
    """Which declared list an input came from."""

    BUILD = "build"  # build-time only (nativeBuildInputs)
    LINK = "link"  # link/runtime (buildInputs)


class InputRef(BaseModel):
    """A named, optionally versioned reference to a dependency.

    The textual form is ``name`` or ``name@constraint``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str | None = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("input name must be non-empty")
        return value

    @field_validator("version")
    @classmethod
    def _blank_version_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @classmethod
    def from_string(cls, text: str) -> InputRef:
        """Parse ``name`` or ``name@constraint``."""
        name, sep, version = text.partition("@")
        return cls(name=name, version=version if sep else None)

    def __str__(self) -> str:
        return f"{self.name}@{self.version}" if self.version else self.name


class Manifest(BaseModel):
    """In-memory representation of a parsed environment descriptor.

    ``env_overrides`` keeps insertion order for display; equality of two
    manifests does not depend on that order.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    build_inputs: tuple[InputRef, ...] = ()
    link_inputs: tuple[InputRef, ...] = ()
    env_overrides: dict[str, str] = {}

    def all_inputs(self) -> Iterator[tuple[InputKind, InputRef]]:
        """Yield every declaration, build inputs first, in declaration order."""
        for ref in self.build_inputs:
            yield InputKind.BUILD, ref
        for ref in self.link_inputs:
            yield InputKind.LINK, ref

    def unique_inputs(self) -> list[InputRef]:
        """Inputs to resolve, with cross-list re-declarations collapsed.

        The first declaration of a name wins; the parser guarantees any
        re-declaration carries the same constraint.
        """
        seen: set[str] = set()
        unique: list[InputRef] = []
        for _, ref in self.all_inputs():
            if ref.name not in seen:
                seen.add(ref.name)
                unique.append(ref)
        return unique
