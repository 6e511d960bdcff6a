"""Environment descriptor parsing and serialization.

A descriptor is a TOML or JSON document::

    name = "rust-env"
    build_inputs = ["rustc", "cargo", "rustfmt", "rls", "pkgconfig"]
    link_inputs = ["gpgme", "openssl@3.0"]

    [env]
    RUST_BACKTRACE = 1

``nativeBuildInputs`` and ``buildInputs`` are accepted as aliases for
``build_inputs`` and ``link_inputs``.  Unknown top-level fields are ignored.

``parse`` is pure; ``load`` is the only function here that touches disk.
"""

from __future__ import annotations

import json
import logging
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from envforge.core.hasher import canonical_json_bytes
from envforge.errors import ConflictError, ParseError
from envforge.models.manifest import InputKind, InputRef, Manifest

logger = logging.getLogger(__name__)

# Field name -> accepted spellings, canonical first.
_LIST_FIELDS: dict[InputKind, tuple[str, ...]] = {
    InputKind.BUILD: ("build_inputs", "nativeBuildInputs"),
    InputKind.LINK: ("link_inputs", "buildInputs"),
}
_ENV_FIELDS: tuple[str, ...] = ("env", "env_overrides")
_KNOWN_FIELDS: frozenset[str] = frozenset(
    {"name", *_ENV_FIELDS, *(a for names in _LIST_FIELDS.values() for a in names)}
)


# ----------------------------------------------------------------------
# Parse
# ----------------------------------------------------------------------


def parse(raw: Mapping[str, Any]) -> Manifest:
    """Validate a decoded descriptor and build a Manifest.

    Raises
    ------
    ParseError
        Missing or malformed fields, empty names, or duplicates within a list.
    ConflictError
        The same name in build and link inputs with different constraints.
    """
    if not isinstance(raw, Mapping):
        raise ParseError(
            f"Descriptor must be a table/object, got {type(raw).__name__}"
        )

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ParseError("Descriptor field 'name' must be a non-empty string")

    unknown = sorted(str(key) for key in raw if key not in _KNOWN_FIELDS)
    if unknown:
        logger.debug("Ignoring unknown descriptor fields: %s", ", ".join(unknown))

    build_inputs = _parse_input_list(raw, InputKind.BUILD)
    link_inputs = _parse_input_list(raw, InputKind.LINK)
    _check_cross_list_conflicts(build_inputs, link_inputs)

    return Manifest(
        name=name.strip(),
        build_inputs=tuple(build_inputs),
        link_inputs=tuple(link_inputs),
        env_overrides=_parse_overrides(raw),
    )


def _pick_field(raw: Mapping[str, Any], spellings: tuple[str, ...]) -> Any:
    present = [key for key in spellings if key in raw]
    if len(present) > 1:
        raise ParseError(
            f"Descriptor sets both {present[0]!r} and {present[1]!r}; use one"
        )
    return raw[present[0]] if present else None


def _parse_input_list(raw: Mapping[str, Any], kind: InputKind) -> list[InputRef]:
    field = _LIST_FIELDS[kind][0]
    entries = _pick_field(raw, _LIST_FIELDS[kind])
    if entries is None:
        return []
    if isinstance(entries, (str, bytes)) or not isinstance(entries, list):
        raise ParseError(f"Field {field!r} must be a list")

    refs: list[InputRef] = []
    seen: set[str] = set()
    for index, entry in enumerate(entries):
        ref = _parse_input_ref(entry, f"{field}[{index}]")
        if ref.name in seen:
            raise ParseError(f"Duplicate input {ref.name!r} in {field!r}")
        seen.add(ref.name)
        refs.append(ref)
    return refs


def _parse_input_ref(entry: Any, where: str) -> InputRef:
    try:
        if isinstance(entry, str):
            return InputRef.from_string(entry)
        if isinstance(entry, Mapping):
            name = entry.get("name")
            version = entry.get("version")
            if not isinstance(name, str):
                raise ParseError(f"{where}: 'name' must be a string")
            if version is not None and not isinstance(version, str):
                raise ParseError(f"{where}: 'version' must be a string")
            return InputRef(name=name, version=version)
    except ValidationError as exc:
        raise ParseError(f"{where}: input name must be non-empty") from exc
    raise ParseError(
        f"{where}: expected a string or table, got {type(entry).__name__}"
    )


def _check_cross_list_conflicts(
    build_inputs: list[InputRef], link_inputs: list[InputRef]
) -> None:
    by_name = {ref.name: ref for ref in build_inputs}
    for ref in link_inputs:
        other = by_name.get(ref.name)
        if other is not None and other.version != ref.version:
            raise ConflictError(
                f"Input {ref.name!r} declared as build input {str(other)!r} "
                f"and link input {str(ref)!r} with different constraints",
                first=(InputKind.BUILD, other),
                second=(InputKind.LINK, ref),
            )


def _parse_overrides(raw: Mapping[str, Any]) -> dict[str, str]:
    block = _pick_field(raw, _ENV_FIELDS)
    if block is None:
        return {}
    if not isinstance(block, Mapping):
        raise ParseError("Field 'env' must be a table of key/value pairs")

    overrides: dict[str, str] = {}
    for key, value in block.items():
        if not isinstance(key, str) or not key or "=" in key:
            raise ParseError(f"Invalid environment variable name: {key!r}")
        overrides[key] = _stringify_override(key, value)
    return overrides


def _stringify_override(key: str, value: Any) -> str:
    # bool is checked first: it is a subclass of int.
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ParseError(
        f"Override {key!r} must be a string, number or boolean, "
        f"got {type(value).__name__}"
    )


# ----------------------------------------------------------------------
# Text and file front-ends
# ----------------------------------------------------------------------


def loads(text: str, fmt: str = "toml") -> Manifest:
    """Decode descriptor text (``toml`` or ``json``) and parse it."""
    if fmt == "toml":
        try:
            raw = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise ParseError(f"Invalid TOML descriptor: {exc}") from exc
    elif fmt == "json":
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ParseError(f"Invalid JSON descriptor: {exc}") from exc
    else:
        raise ParseError(f"Unsupported descriptor format: {fmt!r}")
    return parse(raw)


def load(path: Path) -> Manifest:
    """Read and parse a descriptor file; ``.json`` is JSON, anything else TOML."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ParseError(f"Cannot read descriptor {path}: {exc}") from exc
    fmt = "json" if path.suffix.lower() == ".json" else "toml"
    manifest = loads(text, fmt)
    logger.info(
        "Loaded manifest %r from %s (%d build, %d link inputs)",
        manifest.name,
        path,
        len(manifest.build_inputs),
        len(manifest.link_inputs),
    )
    return manifest


# ----------------------------------------------------------------------
# Serialize
# ----------------------------------------------------------------------


def _ref_to_raw(ref: InputRef) -> str | dict[str, str]:
    # Tables keep constraints containing '@' unambiguous.
    if ref.version is None and "@" not in ref.name:
        return ref.name
    return {"name": ref.name, "version": ref.version}


def serialize(manifest: Manifest) -> dict[str, Any]:
    """Inverse of ``parse``: ``parse(serialize(m)) == m``."""
    return {
        "name": manifest.name,
        "build_inputs": [_ref_to_raw(ref) for ref in manifest.build_inputs],
        "link_inputs": [_ref_to_raw(ref) for ref in manifest.link_inputs],
        "env": dict(manifest.env_overrides),
    }


def dumps(manifest: Manifest) -> str:
    """Canonical JSON text of a manifest (loadable with ``loads(..., "json")``)."""
    return canonical_json_bytes(serialize(manifest)).decode("utf-8")
