"""Resolver — maps declared inputs to concrete, verified artifacts.

Each unique input is looked up through the package-build collaborator.
Independent lookups run concurrently on a thread pool; the result map is
always assembled in declaration order, never in completion order.

Failures are batched: a single pass reports every missing, conflicting and
timed-out input in one ``ResolutionError``.  Nothing reaches the shared
cache unless it was returned in time and passed hash verification, so an
abandoned or cancelled batch leaves the cache consistent.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

from pydantic import BaseModel, ConfigDict

from envforge.core.artifact_cache import ArtifactCache
from envforge.core.builders import PackageBuilder, matches_constraint
from envforge.errors import ArtifactIntegrityError, ResolutionError
from envforge.models.artifacts import ResolvedArtifact
from envforge.models.manifest import InputKind, InputRef, Manifest

logger = logging.getLogger(__name__)


class ResolutionResult(BaseModel):
    """Artifacts for every input of a manifest, keyed by input name."""

    model_config = ConfigDict(frozen=True)

    manifest: Manifest
    artifacts: dict[str, ResolvedArtifact]
    # Input name -> kind of its first declaration.
    kinds: dict[str, InputKind]

    def build_artifacts(self) -> list[ResolvedArtifact]:
        """Artifacts for build inputs, in declaration order."""
        return [self.artifacts[ref.name] for ref in self.manifest.build_inputs]

    def link_artifacts(self) -> list[ResolvedArtifact]:
        """Artifacts for link inputs, in declaration order."""
        return [self.artifacts[ref.name] for ref in self.manifest.link_inputs]

    def content_ids(self) -> dict[str, str]:
        """Input name -> content id."""
        return {name: a.content_id for name, a in self.artifacts.items()}


class Resolver:
    """Resolves manifests through a package-build collaborator.

    Parameters
    ----------
    builder:
        The external collaborator answering ``lookup(name, constraint)``.
    cache:
        Shared artifact cache. A private in-memory cache is used if omitted.
    max_workers:
        Thread pool size for concurrent lookups.
    timeout:
        Default per-call timeout in seconds (``None`` waits forever).
    """

    def __init__(
        self,
        builder: PackageBuilder,
        cache: ArtifactCache | None = None,
        *,
        max_workers: int = 8,
        timeout: float | None = None,
    ) -> None:
        self._builder = builder
        self.cache = cache if cache is not None else ArtifactCache()
        self._max_workers = max(1, max_workers)
        self._timeout = timeout

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(
        self, manifest: Manifest, *, timeout: float | None = None
    ) -> ResolutionResult:
        """Resolve every input of *manifest*.

        Parameters
        ----------
        timeout:
            Seconds to wait for outstanding lookups. Defaults to the
            resolver-wide timeout.

        Raises
        ------
        ResolutionError
            With every missing, conflicting and timed-out input.
        """
        if timeout is None:
            timeout = self._timeout

        conflicting = self._find_conflicts(manifest)
        refs = manifest.unique_inputs()

        resolved: dict[str, ResolvedArtifact] = {}
        pending: list[InputRef] = []
        unusable: set[InputRef] = set()
        for ref in refs:
            try:
                cached = self.cache.lookup(ref)
            except ArtifactIntegrityError as exc:
                logger.warning("Cached artifact for %s is unusable: %s", ref, exc)
                unusable.add(ref)
                continue
            if cached is not None:
                resolved[ref.name] = cached
            else:
                pending.append(ref)

        logger.info(
            "Resolving %r: %d inputs (%d cached, %d to look up)",
            manifest.name,
            len(refs),
            len(resolved),
            len(pending),
        )

        fetched, missing, timed_out = self._lookup_all(pending, timeout)
        missing |= unusable

        # Commit only what arrived in time and verifies.
        for ref, artifact in fetched.items():
            try:
                resolved[ref.name] = self.cache.commit(ref, artifact)
            except ArtifactIntegrityError as exc:
                logger.warning("Rejected artifact for %s: %s", ref, exc)
                missing.add(ref)

        if missing or conflicting:
            error = ResolutionError(
                missing=missing, conflicting=conflicting, timed_out=timed_out
            )
            logger.error("%s", error)
            raise error

        ordered = {ref.name: resolved[ref.name] for ref in refs}
        kinds: dict[str, InputKind] = {}
        for kind, ref in manifest.all_inputs():
            kinds.setdefault(ref.name, kind)
        return ResolutionResult(manifest=manifest, artifacts=ordered, kinds=kinds)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _find_conflicts(manifest: Manifest) -> set[tuple[InputRef, InputRef]]:
        """Same-named declarations whose constraints disagree."""
        first_seen: dict[str, InputRef] = {}
        conflicts: set[tuple[InputRef, InputRef]] = set()
        for _, ref in manifest.all_inputs():
            other = first_seen.setdefault(ref.name, ref)
            if other.version != ref.version:
                conflicts.add((other, ref))
        return conflicts

    def _query(self, ref: InputRef) -> ResolvedArtifact | None:
        """Ask the collaborator for *ref* and sanity-check the answer."""
        artifact = self._builder.lookup(ref.name, ref.version)
        if artifact is None:
            return None
        if artifact.name != ref.name:
            logger.warning(
                "Builder returned %r for input %s; ignoring", artifact.name, ref
            )
            return None
        if not matches_constraint(artifact.version, ref.version):
            logger.warning(
                "Builder returned version %r for input %s; ignoring",
                artifact.version,
                ref,
            )
            return None
        return artifact

    def _lookup_all(
        self, refs: list[InputRef], timeout: float | None
    ) -> tuple[dict[InputRef, ResolvedArtifact], set[InputRef], set[InputRef]]:
        """Run lookups concurrently; return (found, missing, timed_out)."""
        found: dict[InputRef, ResolvedArtifact] = {}
        missing: set[InputRef] = set()
        timed_out: set[InputRef] = set()
        if not refs:
            return found, missing, timed_out

        executor = ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(refs)),
            thread_name_prefix="envforge-resolve",
        )
        try:
            futures: dict[Future[Any], InputRef] = {
                executor.submit(self._query, ref): ref for ref in refs
            }
            done, not_done = wait(futures, timeout=timeout)

            for future in not_done:
                future.cancel()
                ref = futures[future]
                logger.warning("Lookup of %s timed out after %ss", ref, timeout)
                timed_out.add(ref)
                missing.add(ref)

            for future in done:
                ref = futures[future]
                exc = future.exception()
                if exc is not None:
                    logger.warning("Lookup of %s failed: %s", ref, exc)
                    missing.add(ref)
                    continue
                artifact = future.result()
                if artifact is None:
                    logger.debug("No artifact matches %s", ref)
                    missing.add(ref)
                else:
                    found[ref] = artifact
        finally:
            # Abandon anything still queued or running.
            executor.shutdown(wait=False, cancel_futures=True)

        return found, missing, timed_out
