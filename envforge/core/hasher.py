"""Canonical hashing helpers for content addressing and drift detection.

All hashes are SHA-256 over canonical JSON so that the same manifest or
artifact produces the same identifier on every machine.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def content_address(obj: Any) -> str:
    """Content-address a JSON-serializable object.

    Returns "sha256:<hex>" format used by the artifact cache.
    """
    return f"sha256:{sha256_hex(canonical_json_bytes(obj))}"


def strip_prefix(address: str) -> str:
    """Strip the ``sha256:`` prefix from a content address, if present."""
    return address.removeprefix("sha256:")


def compute_manifest_hash(serialized_manifest: dict[str, Any]) -> str:
    """SHA-256 of a serialized manifest.

    Used by the lockfile to detect that the descriptor itself changed.
    """
    return sha256_hex(canonical_json_bytes(serialized_manifest))


def compute_environment_hash(variables: dict[str, str]) -> str:
    """SHA-256 of a flattened environment table (sorted by key)."""
    return sha256_hex(canonical_json_bytes(variables))
