"""Lockfiles — record and enforce resolved content ids across machines.

At lock time every input's content id is pinned.  Later resolutions,
on this machine or another, are compared entry by entry to detect drift.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from envforge.core.hasher import canonical_json_bytes, compute_manifest_hash
from envforge.core.manifest_parser import serialize
from envforge.core.resolver import ResolutionResult
from envforge.errors import LockDriftError, ParseError
from envforge.models.lockfile import LockEntry, Lockfile

logger = logging.getLogger(__name__)


class LockManager:
    """Creates, persists and checks lockfiles."""

    @staticmethod
    def lock(result: ResolutionResult) -> Lockfile:
        """Pin every artifact in *result*."""
        return Lockfile(
            manifest_name=result.manifest.name,
            manifest_hash=compute_manifest_hash(serialize(result.manifest)),
            entries={
                name: LockEntry(version=a.version, content_id=a.content_id)
                for name, a in result.artifacts.items()
            },
        )

    @staticmethod
    def write(lockfile: Lockfile, path: Path) -> None:
        """Write *lockfile* as canonical JSON (sorted keys, trailing newline)."""
        path = Path(path)
        data = canonical_json_bytes(lockfile.model_dump(mode="json")) + b"\n"
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("Wrote lockfile %s (%d entries)", path, len(lockfile.entries))

    @staticmethod
    def read(path: Path) -> Lockfile:
        """Load a lockfile written by ``write``."""
        path = Path(path)
        try:
            return Lockfile.model_validate_json(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ParseError(f"Cannot read lockfile {path}: {exc}") from exc
        except ValueError as exc:
            raise ParseError(f"Malformed lockfile {path}: {exc}") from exc

    def check_drift(
        self,
        recorded: Lockfile,
        result: ResolutionResult,
        *,
        strict: bool = True,
    ) -> list[str]:
        """Compare a fresh resolution against a recorded lockfile.

        Returns a list of drift descriptions. Empty list means no drift.
        Raises LockDriftError if strict=True and drift is detected.
        """
        current = self.lock(result)
        drifts: list[str] = []

        if current.manifest_hash != recorded.manifest_hash:
            drifts.append("manifest: descriptor changed since lock")

        for name in sorted(set(recorded.entries) | set(current.entries)):
            old = recorded.entries.get(name)
            new = current.entries.get(name)
            if old is None:
                drifts.append(f"{name}: not in lockfile")
            elif new is None:
                drifts.append(f"{name}: locked but no longer declared")
            elif old.content_id != new.content_id:
                drifts.append(
                    f"{name}: recorded={old.content_id} ({old.version}), "
                    f"current={new.content_id} ({new.version})"
                )

        if strict and drifts:
            raise LockDriftError(f"Lock drift detected: {'; '.join(drifts)}")
        return drifts
