"""Tests for data models — immutability, parsing helpers, content ids."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from envforge.models.activation import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ActivationState,
)
from envforge.models.artifacts import ResolvedArtifact
from envforge.models.environment import ComposedEnvironment
from envforge.models.manifest import InputKind, InputRef, Manifest


class TestInputRef:
    def test_from_string_plain(self):
        ref = InputRef.from_string("openssl")
        assert ref.name == "openssl"
        assert ref.version is None

    def test_from_string_versioned(self):
        ref = InputRef.from_string("openssl@3.0")
        assert ref.name == "openssl"
        assert ref.version == "3.0"

    def test_str_round_trip(self):
        assert str(InputRef(name="cargo")) == "cargo"
        assert str(InputRef(name="cargo", version="1.78")) == "cargo@1.78"

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            InputRef(name="   ")

    def test_blank_version_is_none(self):
        assert InputRef(name="x", version=" ").version is None

    def test_frozen(self):
        ref = InputRef(name="rustc")
        with pytest.raises(ValidationError):
            ref.name = "cargo"

    def test_hashable_and_equal(self):
        assert {InputRef(name="a"), InputRef(name="a")} == {InputRef(name="a")}


class TestManifest:
    def test_all_inputs_order(self, rust_manifest: Manifest):
        decls = list(rust_manifest.all_inputs())
        assert [(k, r.name) for k, r in decls] == [
            (InputKind.BUILD, "rustc"),
            (InputKind.BUILD, "cargo"),
            (InputKind.LINK, "openssl"),
        ]

    def test_unique_inputs_collapses_redeclaration(self):
        m = Manifest(
            name="m",
            build_inputs=(InputRef(name="openssl"), InputRef(name="cargo")),
            link_inputs=(InputRef(name="openssl"),),
        )
        assert [r.name for r in m.unique_inputs()] == ["openssl", "cargo"]

    def test_override_order_irrelevant_for_equality(self):
        a = Manifest(name="m", env_overrides={"A": "1", "B": "2"})
        b = Manifest(name="m", env_overrides={"B": "2", "A": "1"})
        assert a == b
        assert list(a.env_overrides) == ["A", "B"]


class TestResolvedArtifact:
    def test_create_computes_content_id(self):
        a = ResolvedArtifact.create("rustc", "/store/rustc", {"PATH": ["/store/rustc/bin"]})
        assert a.content_id.startswith("sha256:")
        assert a.verify() is True
        assert a.exported_env["PATH"] == ("/store/rustc/bin",)
        assert a.install_path == Path("/store/rustc")

    def test_same_identity_same_id(self):
        a = ResolvedArtifact.create("x", "/p", {"PATH": ["/p/bin"]}, version="1")
        b = ResolvedArtifact.create("x", "/p", {"PATH": ["/p/bin"]}, version="1")
        assert a.content_id == b.content_id

    def test_different_exports_different_id(self):
        a = ResolvedArtifact.create("x", "/p", {"PATH": ["/p/bin"]})
        b = ResolvedArtifact.create("x", "/p", {"PATH": ["/p/sbin"]})
        assert a.content_id != b.content_id

    def test_scalar_values_stringified(self):
        a = ResolvedArtifact.create("x", "/p", {"LEVEL": 1})
        assert a.exported_env["LEVEL"] == "1"

    def test_tampered_id_fails_verify(self):
        a = ResolvedArtifact.create("x", "/p")
        forged = a.model_copy(update={"content_id": "sha256:" + "0" * 64})
        assert forged.verify() is False


class TestComposedEnvironment:
    def test_items_in_order(self):
        env = ComposedEnvironment(
            variables={"B": "2", "A": "1", "C": "3"}, order=("B", "A")
        )
        assert list(env.items_in_order()) == [("B", "2"), ("A", "1"), ("C", "3")]

    def test_diff(self):
        env = ComposedEnvironment(
            variables={"HOME": "/h", "PATH": "/x:/usr/bin"}, order=("HOME", "PATH")
        )
        assert env.diff({"HOME": "/h", "PATH": "/usr/bin"}) == {"PATH": "/x:/usr/bin"}


class TestActivationStates:
    def test_terminal_states(self):
        assert TERMINAL_STATES == {ActivationState.FAILED, ActivationState.DEACTIVATED}

    def test_every_state_has_entry(self):
        assert set(VALID_TRANSITIONS) == set(ActivationState)

    def test_resolving_and_composing_can_fail(self):
        assert ActivationState.FAILED in VALID_TRANSITIONS[ActivationState.RESOLVING]
        assert ActivationState.FAILED in VALID_TRANSITIONS[ActivationState.COMPOSING]
