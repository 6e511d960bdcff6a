"""Tests for ArtifactCache — content addressing, idempotence, integrity, concurrency."""

from __future__ import annotations

import json
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from envforge.core.artifact_cache import ArtifactCache
from envforge.core.hasher import canonical_json_bytes, content_address, sha256_hex
from envforge.errors import ArtifactIntegrityError
from envforge.models.artifacts import ResolvedArtifact
from envforge.models.manifest import InputRef


class TestHasher:
    def test_canonical_json_sorted_compact(self):
        assert canonical_json_bytes({"b": 1, "a": [1, 2]}) == b'{"a":[1,2],"b":1}'

    def test_content_address_format(self):
        address = content_address({"x": 1})
        assert address == "sha256:" + sha256_hex(b'{"x":1}')


class TestArtifactCache:
    def test_commit_and_lookup(self, make_artifact: Callable[..., ResolvedArtifact]):
        cache = ArtifactCache()
        artifact = make_artifact("rustc")
        ref = InputRef(name="rustc")
        cache.commit(ref, artifact)
        assert cache.lookup(ref) == artifact
        assert cache.get(artifact.content_id) == artifact
        assert cache.exists(artifact.content_id) is True

    def test_lookup_keyed_by_constraint(self, make_artifact: Callable[..., ResolvedArtifact]):
        cache = ArtifactCache()
        cache.commit(InputRef(name="rustc"), make_artifact("rustc"))
        assert cache.lookup(InputRef(name="rustc", version="1.0")) is None

    def test_idempotent_commit(self, make_artifact: Callable[..., ResolvedArtifact]):
        cache = ArtifactCache()
        first = cache.commit(InputRef(name="a"), make_artifact("a"))
        second = cache.commit(InputRef(name="a"), make_artifact("a"))
        assert first is second
        assert len(cache) == 1

    def test_rejects_unverified(self, make_artifact: Callable[..., ResolvedArtifact]):
        cache = ArtifactCache()
        forged = make_artifact("a").model_copy(update={"content_id": "sha256:" + "f" * 64})
        with pytest.raises(ArtifactIntegrityError):
            cache.commit(InputRef(name="a"), forged)
        assert len(cache) == 0

    def test_missing(self):
        cache = ArtifactCache()
        assert cache.lookup(InputRef(name="nope")) is None
        assert cache.get("sha256:" + "0" * 64) is None
        assert cache.exists("sha256:" + "0" * 64) is False

    def test_concurrent_commits_of_same_content(
        self, make_artifact: Callable[..., ResolvedArtifact], tmp_dir: Path
    ):
        cache = ArtifactCache(tmp_dir / "cache")
        ref = InputRef(name="openssl")

        def commit(_: int) -> str:
            return cache.commit(ref, make_artifact("openssl")).content_id

        with ThreadPoolExecutor(max_workers=8) as pool:
            ids = set(pool.map(commit, range(32)))
        assert len(ids) == 1
        assert len(cache) == 1


class TestPersistentCache:
    def test_layout(self, make_artifact: Callable[..., ResolvedArtifact], tmp_dir: Path):
        cache = ArtifactCache(tmp_dir / "cache")
        artifact = make_artifact("rustc")
        cache.commit(InputRef(name="rustc"), artifact)
        digest = artifact.content_id.removeprefix("sha256:")
        path = tmp_dir / "cache" / digest[:2] / digest[2:4] / f"{digest}.json"
        assert path.exists()
        assert not list(path.parent.glob("*.tmp"))

    def test_reload_from_disk(self, make_artifact: Callable[..., ResolvedArtifact], tmp_dir: Path):
        artifact = make_artifact("rustc")
        ArtifactCache(tmp_dir / "cache").commit(InputRef(name="rustc"), artifact)
        fresh = ArtifactCache(tmp_dir / "cache")
        assert fresh.exists(artifact.content_id) is True
        assert fresh.get(artifact.content_id) == artifact

    def test_tampered_record_detected(
        self, make_artifact: Callable[..., ResolvedArtifact], tmp_dir: Path
    ):
        artifact = make_artifact("rustc")
        ArtifactCache(tmp_dir / "cache").commit(InputRef(name="rustc"), artifact)
        digest = artifact.content_id.removeprefix("sha256:")
        path = tmp_dir / "cache" / digest[:2] / digest[2:4] / f"{digest}.json"
        record = json.loads(path.read_text())
        record["install_path"] = "/evil"
        path.write_text(json.dumps(record))

        with pytest.raises(ArtifactIntegrityError):
            ArtifactCache(tmp_dir / "cache").get(artifact.content_id)

    def test_lookup_after_restart(
        self, make_artifact: Callable[..., ResolvedArtifact], tmp_dir: Path
    ):
        artifact = make_artifact("openssl", "3.0.13")
        ref = InputRef(name="openssl", version="3.*")
        ArtifactCache(tmp_dir / "cache").commit(ref, artifact)

        fresh = ArtifactCache(tmp_dir / "cache")
        assert fresh.lookup(ref) == artifact
        assert fresh.lookup(InputRef(name="openssl")) is None
        assert len(fresh) == 1

    def test_index_written_atomically(
        self, make_artifact: Callable[..., ResolvedArtifact], tmp_dir: Path
    ):
        cache = ArtifactCache(tmp_dir / "cache")
        artifact = cache.commit(InputRef(name="rustc"), make_artifact("rustc"))
        entries = list((tmp_dir / "cache" / "index").iterdir())
        assert len(entries) == 1
        assert entries[0].read_text(encoding="utf-8") == artifact.content_id

    def test_tampered_record_detected_on_lookup(
        self, make_artifact: Callable[..., ResolvedArtifact], tmp_dir: Path
    ):
        artifact = make_artifact("rustc")
        ArtifactCache(tmp_dir / "cache").commit(InputRef(name="rustc"), artifact)
        digest = artifact.content_id.removeprefix("sha256:")
        path = tmp_dir / "cache" / digest[:2] / digest[2:4] / f"{digest}.json"
        path.write_text("{truncated", encoding="utf-8")

        with pytest.raises(ArtifactIntegrityError):
            ArtifactCache(tmp_dir / "cache").lookup(InputRef(name="rustc"))
