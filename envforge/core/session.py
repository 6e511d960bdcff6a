"""Environment session — the central coordinator for one activation.

The session wires the Resolver, Compositor, Activator and
ActivationMachine into a single all-or-nothing pipeline:

    unresolved -> resolving -> resolved -> composing -> composed
               -> active -> deactivated

Any failure moves the machine to FAILED, after which no further step is
possible.  Composition is a join point: it only starts once every lookup
has finished, failed or timed out.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping

from envforge.config import EnvforgeSettings
from envforge.core.activation_machine import ActivationMachine
from envforge.core.activator import ActivationHandle, Activator
from envforge.core.artifact_cache import ArtifactCache
from envforge.core.builders import PackageBuilder
from envforge.core.compositor import Compositor
from envforge.core.resolver import ResolutionResult, Resolver
from envforge.errors import EnvforgeError, InvalidTransitionError, ResolutionError
from envforge.models.activation import ActivationState
from envforge.models.environment import ComposedEnvironment
from envforge.models.manifest import Manifest

logger = logging.getLogger(__name__)


def build_resolver(
    builder: PackageBuilder, settings: EnvforgeSettings | None = None
) -> Resolver:
    """Create a Resolver configured from settings."""
    settings = settings or EnvforgeSettings()
    cache = ArtifactCache(settings.cache_path if settings.persist_cache else None)
    return Resolver(
        builder,
        cache,
        max_workers=settings.max_workers,
        timeout=settings.resolve_timeout_seconds,
    )


class EnvironmentSession:
    """Drives one manifest from resolution to activation.

    Parameters
    ----------
    manifest:
        The parsed descriptor.
    resolver:
        Resolver to use; sessions sharing one resolver share its cache.
    compositor:
        Compositor to use. Defaults to one using ``os.pathsep``.
    base_env:
        Inherited environment. Captured from ``os.environ`` if omitted.
    """

    def __init__(
        self,
        manifest: Manifest,
        resolver: Resolver,
        *,
        compositor: Compositor | None = None,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self.manifest = manifest
        self.resolver = resolver
        self.compositor = compositor or Compositor()
        self.base_env = dict(base_env) if base_env is not None else dict(os.environ)
        self.machine = ActivationMachine(manifest.name)

        self.result: ResolutionResult | None = None
        self.composed: ComposedEnvironment | None = None
        self.handle: ActivationHandle | None = None

    @property
    def state(self) -> ActivationState:
        return self.machine.state

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    def resolve(self, *, timeout: float | None = None) -> ResolutionResult:
        """Resolve every declared input.

        Raises
        ------
        ResolutionError
            The session is FAILED afterwards.
        """
        self.machine.transition(ActivationState.RESOLVING)
        try:
            self.result = self.resolver.resolve(self.manifest, timeout=timeout)
        except ResolutionError as exc:
            self.machine.fail(str(exc))
            raise
        self.machine.transition(ActivationState.RESOLVED)
        return self.result

    def compose(self) -> ComposedEnvironment:
        """Merge artifact exports and overrides into the final environment."""
        result = self.result
        if result is None:
            raise InvalidTransitionError(
                f"{self.manifest.name!r} must be resolved before it is composed"
            )
        self.machine.transition(ActivationState.COMPOSING)
        try:
            self.composed = self.compositor.compose(
                result, self.manifest.env_overrides, self.base_env
            )
        except (EnvforgeError, ValueError, TypeError) as exc:
            self.machine.fail(f"composition failed: {exc}")
            raise
        self.machine.transition(ActivationState.COMPOSED)
        return self.composed

    def activate(self, activator: Activator) -> ActivationHandle:
        """Materialize the composed environment.

        The returned handle moves the session to DEACTIVATED on teardown.

        Raises
        ------
        ActivationError
            The session is FAILED afterwards and nothing is left applied.
            Any other exception raised while activating also fails the
            session before it propagates.
        """
        self.machine.require(ActivationState.COMPOSED)
        composed = self.composed
        if composed is None:
            raise InvalidTransitionError(
                f"{self.manifest.name!r} has no composed environment"
            )
        try:
            handle = activator.activate(composed)
        except BaseException as exc:
            self.machine.fail(str(exc) or type(exc).__name__)
            raise

        try:
            self.machine.transition(ActivationState.ACTIVE)
        except EnvforgeError:
            handle.teardown()
            raise
        handle.on_teardown(self._mark_deactivated)
        self.handle = handle
        return handle

    def run(
        self, activator: Activator, *, timeout: float | None = None
    ) -> ActivationHandle:
        """Resolve, compose and activate in one call."""
        self.resolve(timeout=timeout)
        self.compose()
        return self.activate(activator)

    def deactivate(self) -> None:
        """Tear down the active handle, if any. Idempotent."""
        if self.handle is not None:
            self.handle.teardown()

    def _mark_deactivated(self) -> None:
        if self.machine.state == ActivationState.ACTIVE:
            self.machine.transition(ActivationState.DEACTIVATED)
            logger.info("Deactivated %r", self.manifest.name)
