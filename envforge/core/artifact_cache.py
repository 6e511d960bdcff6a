"""Content-addressed, concurrency-safe artifact cache.

Artifacts are keyed by their verified content id.  Writes are idempotent:
storing the same content twice is a no-op, and two threads committing the
same artifact race harmlessly.  Only insertion is de-duplicated; there is
no update or delete.

Optional on-disk layout::

    {base_path}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.json   artifact records
    {base_path}/index/{sha256(name, constraint)}            content id per input

The index lets a fresh process find what an earlier one resolved.  Records
are re-verified whenever they are read back.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path

from envforge.core.hasher import canonical_json_bytes, sha256_hex, strip_prefix
from envforge.errors import ArtifactIntegrityError
from envforge.models.artifacts import ResolvedArtifact
from envforge.models.manifest import InputRef

logger = logging.getLogger(__name__)


def _write_atomically(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # Sibling temp file + rename: readers never see a partial file and
    # concurrent writers of the same content are harmless.
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class ArtifactCache:
    """Shared result cache for the resolver.

    Parameters
    ----------
    base_path:
        Root directory for persisted records. ``None`` keeps the cache
        in memory only.
    """

    def __init__(self, base_path: Path | None = None) -> None:
        self._base = Path(base_path) if base_path is not None else None
        if self._base is not None:
            self._base.mkdir(parents=True, exist_ok=True)
        self._artifacts: dict[str, ResolvedArtifact] = {}
        # (name, version constraint) -> content id
        self._index: dict[tuple[str, str | None], str] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _record_path(base: Path, content_id: str) -> Path:
        """Layout: {base}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.json"""
        digest = strip_prefix(content_id)
        return base / digest[:2] / digest[2:4] / f"{digest}.json"

    @staticmethod
    def _index_path(base: Path, ref: InputRef) -> Path:
        key = sha256_hex(canonical_json_bytes([ref.name, ref.version]))
        return base / "index" / key

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def commit(self, ref: InputRef, artifact: ResolvedArtifact) -> ResolvedArtifact:
        """Commit a verified artifact and index it under *ref*.

        Returns the cached instance, which is the previously stored one if
        identical content was already present.

        Raises
        ------
        ArtifactIntegrityError
            If the artifact's content id does not match its identity.
        """
        if not artifact.verify():
            raise ArtifactIntegrityError(
                f"Refusing to cache {artifact.name!r}: content id "
                f"{artifact.content_id} does not match its contents"
            )

        with self._lock:
            cached = self._artifacts.setdefault(artifact.content_id, artifact)
            self._index[(ref.name, ref.version)] = artifact.content_id

        if self._base is not None:
            self._persist(self._base, ref, cached)
        return cached

    def _persist(self, base: Path, ref: InputRef, artifact: ResolvedArtifact) -> None:
        path = self._record_path(base, artifact.content_id)
        if not path.exists():
            _write_atomically(path, artifact.model_dump_json())
            logger.debug("Persisted artifact %s to %s", artifact.content_id, path)
        # The record is in place before the index points at it.
        _write_atomically(self._index_path(base, ref), artifact.content_id)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def lookup(self, ref: InputRef) -> ResolvedArtifact | None:
        """Return the artifact previously committed for *ref*, if any.

        Raises
        ------
        ArtifactIntegrityError
            If a persisted record for *ref* fails verification.
        """
        key = (ref.name, ref.version)
        with self._lock:
            content_id = self._index.get(key)
        if content_id is None and self._base is not None:
            index_path = self._index_path(self._base, ref)
            if index_path.exists():
                content_id = index_path.read_text(encoding="utf-8").strip()
        if content_id is None:
            return None

        artifact = self.get(content_id)
        if artifact is not None:
            with self._lock:
                self._index.setdefault(key, content_id)
        return artifact

    def get(self, content_id: str) -> ResolvedArtifact | None:
        """Return the artifact with *content_id*, loading it from disk if needed.

        Raises
        ------
        ArtifactIntegrityError
            If the persisted record is unreadable or fails verification.
        """
        with self._lock:
            artifact = self._artifacts.get(content_id)
        if artifact is not None or self._base is None:
            return artifact

        path = self._record_path(self._base, content_id)
        if not path.exists():
            return None
        try:
            artifact = ResolvedArtifact.model_validate_json(
                path.read_text(encoding="utf-8")
            )
        except ValueError as exc:
            raise ArtifactIntegrityError(
                f"Cached record at {path} is unreadable: {exc}"
            ) from exc
        if artifact.content_id != content_id or not artifact.verify():
            raise ArtifactIntegrityError(
                f"Cached record at {path} failed integrity check"
            )
        with self._lock:
            return self._artifacts.setdefault(content_id, artifact)

    def exists(self, content_id: str) -> bool:
        """Check if an artifact is cached (in memory or on disk)."""
        with self._lock:
            if content_id in self._artifacts:
                return True
        return (
            self._base is not None
            and self._record_path(self._base, content_id).exists()
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._artifacts)
