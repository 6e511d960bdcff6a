"""Tests for the Resolver — ordering, batching, dedup, caching, timeouts."""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from pathlib import Path

import pytest

from envforge.core.artifact_cache import ArtifactCache
from envforge.core.builders import StaticBuilder
from envforge.core.resolver import Resolver
from envforge.errors import ResolutionError
from envforge.models.artifacts import ResolvedArtifact
from envforge.models.manifest import InputKind, InputRef, Manifest


class CountingBuilder(StaticBuilder):
    """StaticBuilder that records every lookup."""

    def __init__(self, artifacts=()) -> None:
        super().__init__(artifacts)
        self.calls: list[tuple[str, str | None]] = []
        self._lock = threading.Lock()

    def lookup(self, name, version_constraint):
        with self._lock:
            self.calls.append((name, version_constraint))
        return super().lookup(name, version_constraint)


class SlowBuilder(StaticBuilder):
    """Blocks lookups of selected names until released."""

    def __init__(self, artifacts, slow: set[str]) -> None:
        super().__init__(artifacts)
        self.slow = slow
        self.release = threading.Event()

    def lookup(self, name, version_constraint):
        if name in self.slow:
            self.release.wait(10)
        return super().lookup(name, version_constraint)


class ReversedDelayBuilder(StaticBuilder):
    """Earlier-declared names finish later, scrambling completion order."""

    def __init__(self, artifacts, delays: dict[str, float]) -> None:
        super().__init__(artifacts)
        self.delays = delays

    def lookup(self, name, version_constraint):
        time.sleep(self.delays.get(name, 0.0))
        return super().lookup(name, version_constraint)


class RaisingBuilder(StaticBuilder):
    def lookup(self, name, version_constraint):
        if name == "broken":
            raise RuntimeError("build farm unreachable")
        return super().lookup(name, version_constraint)


class TestResolve:
    def test_resolves_all_inputs(self, resolver: Resolver, rust_manifest: Manifest):
        result = resolver.resolve(rust_manifest)
        assert list(result.artifacts) == ["rustc", "cargo", "openssl"]
        assert [a.name for a in result.build_artifacts()] == ["rustc", "cargo"]
        assert [a.name for a in result.link_artifacts()] == ["openssl"]

    def test_declaration_order_independent_of_completion(
        self, make_artifact: Callable[..., ResolvedArtifact]
    ):
        names = ["a", "b", "c", "d"]
        builder = ReversedDelayBuilder(
            [make_artifact(n) for n in names],
            {"a": 0.2, "b": 0.15, "c": 0.1, "d": 0.0},
        )
        manifest = Manifest(name="m", link_inputs=tuple(InputRef(name=n) for n in names))
        result = Resolver(builder, max_workers=4).resolve(manifest)
        assert list(result.artifacts) == names

    def test_batched_missing(self, resolver: Resolver):
        manifest = Manifest(
            name="m",
            build_inputs=(InputRef(name="rustc"), InputRef(name="ghost")),
            link_inputs=(InputRef(name="phantom"), InputRef(name="openssl", version="9.9")),
        )
        with pytest.raises(ResolutionError) as excinfo:
            resolver.resolve(manifest)
        err = excinfo.value
        assert {str(r) for r in err.missing} == {"ghost", "phantom", "openssl@9.9"}
        assert err.timed_out == frozenset()
        assert err.to_dict()["missing"] == ["ghost", "openssl@9.9", "phantom"]

    def test_single_missing_name(self, resolver: Resolver):
        manifest = Manifest(name="m", link_inputs=(InputRef(name="nosuchlib"),))
        with pytest.raises(ResolutionError) as excinfo:
            resolver.resolve(manifest)
        assert excinfo.value.missing == {InputRef(name="nosuchlib")}

    def test_failure_commits_nothing_missing(self, resolver: Resolver):
        manifest = Manifest(name="m", link_inputs=(InputRef(name="ghost"),))
        with pytest.raises(ResolutionError):
            resolver.resolve(manifest)
        assert resolver.cache.lookup(InputRef(name="ghost")) is None

    def test_builder_exception_counts_as_missing(
        self, make_artifact: Callable[..., ResolvedArtifact]
    ):
        builder = RaisingBuilder([make_artifact("ok")])
        manifest = Manifest(
            name="m", link_inputs=(InputRef(name="ok"), InputRef(name="broken"))
        )
        with pytest.raises(ResolutionError) as excinfo:
            Resolver(builder).resolve(manifest)
        assert excinfo.value.missing == {InputRef(name="broken")}

    def test_conflicting_declarations_reported(self, resolver: Resolver):
        # Built directly, bypassing the parser's conflict check.
        manifest = Manifest(
            name="m",
            build_inputs=(InputRef(name="openssl", version="1.1"),),
            link_inputs=(InputRef(name="openssl", version="3.0"),),
        )
        with pytest.raises(ResolutionError) as excinfo:
            resolver.resolve(manifest)
        assert excinfo.value.conflicting == {
            (InputRef(name="openssl", version="1.1"), InputRef(name="openssl", version="3.0"))
        }

    def test_redeclared_input_resolved_once(
        self, make_artifact: Callable[..., ResolvedArtifact]
    ):
        builder = CountingBuilder([make_artifact("openssl")])
        manifest = Manifest(
            name="m",
            build_inputs=(InputRef(name="openssl"),),
            link_inputs=(InputRef(name="openssl"),),
        )
        result = Resolver(builder).resolve(manifest)
        assert builder.calls == [("openssl", None)]
        assert list(result.artifacts) == ["openssl"]
        assert result.build_artifacts() == result.link_artifacts()

    def test_kind_follows_first_declaration(
        self, make_artifact: Callable[..., ResolvedArtifact]
    ):
        builder = StaticBuilder([make_artifact("openssl"), make_artifact("gpgme")])
        manifest = Manifest(
            name="m",
            build_inputs=(InputRef(name="openssl"),),
            link_inputs=(InputRef(name="gpgme"), InputRef(name="openssl")),
        )
        result = Resolver(builder).resolve(manifest)
        assert result.kinds == {"openssl": InputKind.BUILD, "gpgme": InputKind.LINK}

    def test_wrong_name_rejected(self, make_artifact: Callable[..., ResolvedArtifact]):
        impostor = make_artifact("libressl")

        class WrongBuilder:
            def lookup(self, name, version_constraint):
                return impostor

        manifest = Manifest(name="m", link_inputs=(InputRef(name="openssl"),))
        with pytest.raises(ResolutionError):
            Resolver(WrongBuilder()).resolve(manifest)

    def test_tampered_artifact_rejected(
        self, make_artifact: Callable[..., ResolvedArtifact]
    ):
        forged = make_artifact("openssl").model_copy(
            update={"content_id": "sha256:" + "a" * 64}
        )
        manifest = Manifest(name="m", link_inputs=(InputRef(name="openssl"),))
        resolver = Resolver(StaticBuilder([forged]))
        with pytest.raises(ResolutionError) as excinfo:
            resolver.resolve(manifest)
        assert excinfo.value.missing == {InputRef(name="openssl")}
        assert len(resolver.cache) == 0

    def test_empty_manifest(self, resolver: Resolver):
        result = resolver.resolve(Manifest(name="empty"))
        assert result.artifacts == {}


class TestCaching:
    def test_warm_and_cold_identical(
        self, rust_builder: StaticBuilder, rust_manifest: Manifest
    ):
        cache = ArtifactCache()
        resolver = Resolver(rust_builder, cache)
        cold = resolver.resolve(rust_manifest).content_ids()
        warm = resolver.resolve(rust_manifest).content_ids()
        fresh = Resolver(rust_builder, ArtifactCache()).resolve(rust_manifest).content_ids()
        assert cold == warm == fresh

    def test_warm_cache_skips_builder(
        self, make_artifact: Callable[..., ResolvedArtifact]
    ):
        builder = CountingBuilder([make_artifact("rustc"), make_artifact("cargo")])
        manifest = Manifest(
            name="m", build_inputs=(InputRef(name="rustc"), InputRef(name="cargo"))
        )
        resolver = Resolver(builder)
        resolver.resolve(manifest)
        resolver.resolve(manifest)
        assert sorted(builder.calls) == [("cargo", None), ("rustc", None)]

    def test_shared_cache_across_resolvers(
        self, rust_builder: StaticBuilder, rust_manifest: Manifest
    ):
        cache = ArtifactCache()
        Resolver(rust_builder, cache).resolve(rust_manifest)
        assert len(cache) == 3
        empty = Resolver(StaticBuilder(), cache)
        assert empty.resolve(rust_manifest).content_ids() == {
            name: cache.lookup(InputRef(name=name)).content_id
            for name in ("rustc", "cargo", "openssl")
        }


class TestTimeout:
    def test_timeout_reports_outstanding(
        self, make_artifact: Callable[..., ResolvedArtifact]
    ):
        builder = SlowBuilder([make_artifact("fast"), make_artifact("slow")], {"slow"})
        manifest = Manifest(
            name="m", link_inputs=(InputRef(name="fast"), InputRef(name="slow"))
        )
        resolver = Resolver(builder, max_workers=2)
        try:
            with pytest.raises(ResolutionError) as excinfo:
                resolver.resolve(manifest, timeout=0.2)
        finally:
            builder.release.set()

        err = excinfo.value
        assert err.timed_out == {InputRef(name="slow")}
        assert err.missing == {InputRef(name="slow")}
        assert "timed out" in str(err)

    def test_timed_out_lookup_never_cached(
        self, make_artifact: Callable[..., ResolvedArtifact]
    ):
        builder = SlowBuilder([make_artifact("slow")], {"slow"})
        manifest = Manifest(name="m", link_inputs=(InputRef(name="slow"),))
        resolver = Resolver(builder, timeout=0.1)
        with pytest.raises(ResolutionError):
            resolver.resolve(manifest)
        builder.release.set()
        time.sleep(0.1)
        assert resolver.cache.lookup(InputRef(name="slow")) is None
        assert len(resolver.cache) == 0


class TestPersistentCache:
    def test_survives_restart(
        self, rust_builder: StaticBuilder, rust_manifest: Manifest, tmp_dir: Path
    ):
        first = Resolver(rust_builder, ArtifactCache(tmp_dir / "cache")).resolve(rust_manifest)

        builder = CountingBuilder()
        again = Resolver(builder, ArtifactCache(tmp_dir / "cache")).resolve(rust_manifest)
        assert again.content_ids() == first.content_ids()
        assert builder.calls == []

    def test_tampered_record_counts_as_missing(
        self, rust_builder: StaticBuilder, rust_manifest: Manifest, tmp_dir: Path
    ):
        result = Resolver(rust_builder, ArtifactCache(tmp_dir / "cache")).resolve(rust_manifest)
        digest = result.artifacts["openssl"].content_id.removeprefix("sha256:")
        record = tmp_dir / "cache" / digest[:2] / digest[2:4] / f"{digest}.json"
        data = json.loads(record.read_text(encoding="utf-8"))
        data["install_path"] = "/tmp/elsewhere"
        record.write_text(json.dumps(data), encoding="utf-8")

        resolver = Resolver(rust_builder, ArtifactCache(tmp_dir / "cache"))
        with pytest.raises(ResolutionError) as excinfo:
            resolver.resolve(rust_manifest)
        assert excinfo.value.missing == {InputRef(name="openssl")}
