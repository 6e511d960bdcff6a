"""Shared test fixtures for envforge."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from envforge.core.artifact_cache import ArtifactCache
from envforge.core.builders import StaticBuilder
from envforge.core.resolver import Resolver
from envforge.core.session import EnvironmentSession
from envforge.models.artifacts import ResolvedArtifact
from envforge.models.manifest import InputRef, Manifest


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def make_artifact() -> Callable[..., ResolvedArtifact]:
    """Factory fixture: build a ResolvedArtifact with PATH under /store/<name>."""

    def _factory(
        name: str,
        version: str | None = "1.0",
        exports: dict[str, Any] | None = None,
    ) -> ResolvedArtifact:
        prefix = f"/store/{name}-{version}"
        if exports is None:
            exports = {"PATH": [f"{prefix}/bin"]}
        return ResolvedArtifact.create(
            name=name, version=version, install_path=prefix, exported_env=exports
        )

    return _factory


@pytest.fixture
def rust_builder(make_artifact: Callable[..., ResolvedArtifact]) -> StaticBuilder:
    """A builder serving the packages of the rust-env descriptor."""
    return StaticBuilder(
        [
            make_artifact("rustc", "1.78.0"),
            make_artifact("cargo", "1.78.0"),
            make_artifact(
                "openssl",
                "3.0.13",
                {
                    "PKG_CONFIG_PATH": ["/store/openssl-3.0.13/lib/pkgconfig"],
                    "RUST_BACKTRACE": "full",
                },
            ),
        ]
    )


@pytest.fixture
def rust_manifest() -> Manifest:
    """Manifest{build=[rustc, cargo], link=[openssl], RUST_BACKTRACE=1}."""
    return Manifest(
        name="rust-env",
        build_inputs=(InputRef(name="rustc"), InputRef(name="cargo")),
        link_inputs=(InputRef(name="openssl"),),
        env_overrides={"RUST_BACKTRACE": "1"},
    )


@pytest.fixture
def base_env() -> dict[str, str]:
    """A small, deterministic inherited environment."""
    return {"PATH": "/usr/bin:/bin", "HOME": "/home/dev", "LANG": "C.UTF-8"}


@pytest.fixture
def resolver(rust_builder: StaticBuilder) -> Resolver:
    """A Resolver over the rust builder with a private in-memory cache."""
    return Resolver(rust_builder, ArtifactCache(), max_workers=4, timeout=5.0)


@pytest.fixture
def session(
    rust_manifest: Manifest, resolver: Resolver, base_env: dict[str, str]
) -> EnvironmentSession:
    """A fresh EnvironmentSession for the rust manifest."""
    return EnvironmentSession(rust_manifest, resolver, base_env=base_env)
