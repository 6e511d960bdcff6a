"""Composed environment model."""

from __future__ import annotations

from collections.abc import Iterator, Mapping

from pydantic import BaseModel, ConfigDict


class ComposedEnvironment(BaseModel):
    """The final, flattened environment for one activation.

    Built once, entirely in memory, before anything observes it.
    ``order`` lists variable names in merge order and drives script output.
    """

    model_config = ConfigDict(frozen=True)

    variables: dict[str, str]
    order: tuple[str, ...] = ()
    environment_hash: str = ""

    def items_in_order(self) -> Iterator[tuple[str, str]]:
        """Yield ``(name, value)`` pairs in merge order."""
        emitted: set[str] = set()
        for name in self.order:
            if name in self.variables and name not in emitted:
                emitted.add(name)
                yield name, self.variables[name]
        for name in sorted(self.variables):
            if name not in emitted:
                yield name, self.variables[name]

    def diff(self, base: Mapping[str, str]) -> dict[str, str]:
        """Variables that are new or changed relative to *base*, in merge order."""
        return {
            name: value
            for name, value in self.items_in_order()
            if base.get(name) != value
        }
