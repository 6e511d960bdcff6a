"""Environment compositor — deterministic merge of artifact exports.

Precedence, lowest to highest:

1. the base environment inherited from the caller,
2. exports of build inputs, in declaration order,
3. exports of link inputs, in declaration order,
4. manifest overrides.

Search-path (list-valued) exports are prepended source by source, so a
higher-precedence source ends up in front.  Within a source the fragments
keep their order, and duplicate entries keep only their first (highest
precedence) occurrence.  Scalars are replaced outright by any higher
source.  The result depends only on the manifest, the artifact set and the
base environment, never on the order lookups happened to finish.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping

from envforge.core.hasher import compute_environment_hash
from envforge.core.resolver import ResolutionResult
from envforge.models.artifacts import EnvValue, ResolvedArtifact
from envforge.models.environment import ComposedEnvironment

logger = logging.getLogger(__name__)


class _Layer:
    """Working state of one variable while layers are applied."""

    __slots__ = ("fragments", "scalar")

    def __init__(self) -> None:
        # Highest-precedence fragment first; ``scalar`` wins when set.
        self.fragments: list[str] = []
        self.scalar: str | None = None

    def prepend(self, fragments: Iterable[str]) -> None:
        if self.scalar is not None:
            # A list over a lower scalar keeps the scalar as one fragment.
            self.fragments = [self.scalar] if self.scalar else []
            self.scalar = None
        self.fragments = [*fragments, *self.fragments]

    def replace(self, value: str) -> None:
        self.scalar = value
        self.fragments = []

    def flatten(self, separator: str) -> str:
        if self.scalar is not None:
            return self.scalar
        seen: set[str] = set()
        unique: list[str] = []
        for fragment in self.fragments:
            if fragment and fragment not in seen:
                seen.add(fragment)
                unique.append(fragment)
        return separator.join(unique)


class Compositor:
    """Merges resolved artifacts and overrides into a ComposedEnvironment.

    Parameters
    ----------
    path_separator:
        Separator for search-path variables; ``os.pathsep`` by default.
    """

    def __init__(self, path_separator: str = os.pathsep) -> None:
        self._sep = path_separator

    def compose(
        self,
        result: ResolutionResult,
        env_overrides: Mapping[str, str] | None = None,
        base_env: Mapping[str, str] | None = None,
    ) -> ComposedEnvironment:
        """Build the full environment in memory.

        Parameters
        ----------
        result:
            The resolver's output; read, never mutated.
        env_overrides:
            Highest-precedence scalars. Defaults to the manifest's overrides.
        base_env:
            Inherited environment. Defaults to ``os.environ``.
        """
        if env_overrides is None:
            env_overrides = result.manifest.env_overrides
        if base_env is None:
            base_env = dict(os.environ)

        layers: dict[str, _Layer] = {}
        order: list[str] = []

        def layer_for(name: str) -> _Layer:
            layer = layers.get(name)
            if layer is None:
                layer = layers[name] = _Layer()
                order.append(name)
            return layer

        # (1) base: values whose name is also exported as a list are split
        # lazily, so plain scalars are never mangled.
        for name in sorted(base_env):
            layer_for(name).replace(base_env[name])

        # (2) build inputs, then (3) link inputs.
        for artifact in self._in_precedence_order(result):
            for name, value in artifact.exported_env.items():
                self._apply(layer_for(name), value)

        # (4) overrides.
        for name, value in env_overrides.items():
            layer_for(name).replace(value)

        variables = {name: layers[name].flatten(self._sep) for name in order}
        composed = ComposedEnvironment(
            variables=variables,
            order=tuple(order),
            environment_hash=compute_environment_hash(variables),
        )
        logger.info(
            "Composed %d variables for %r (%d from artifacts/overrides)",
            len(variables),
            result.manifest.name,
            len(composed.diff(base_env)),
        )
        return composed

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _in_precedence_order(result: ResolutionResult) -> list[ResolvedArtifact]:
        return [*result.build_artifacts(), *result.link_artifacts()]

    def _apply(self, layer: _Layer, value: EnvValue) -> None:
        if isinstance(value, str):
            layer.replace(value)
            return
        if layer.scalar is not None and self._sep in layer.scalar:
            # An inherited search path: split it so entries can be deduplicated.
            inherited = layer.scalar.split(self._sep)
            layer.scalar = None
            layer.fragments = inherited
        layer.prepend(value)


def compose(
    result: ResolutionResult,
    env_overrides: Mapping[str, str] | None = None,
    base_env: Mapping[str, str] | None = None,
) -> ComposedEnvironment:
    """Module-level shortcut for ``Compositor().compose(...)``."""
    return Compositor().compose(result, env_overrides, base_env)
