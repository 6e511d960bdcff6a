"""Lockfile models — pins each input to the content id it resolved to."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class LockEntry(BaseModel):
    """The pinned resolution of one input."""

    model_config = ConfigDict(frozen=True)

    version: str | None = None
    content_id: str


class Lockfile(BaseModel):
    """Records which artifacts a manifest resolved to.

    Any later resolution on any machine can be compared against it.
    """

    model_config = ConfigDict(frozen=True)

    lock_version: int = 1
    manifest_name: str
    manifest_hash: str
    entries: dict[str, LockEntry] = {}
