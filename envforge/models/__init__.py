"""envforge data models — all Pydantic v2, all frozen (immutable)."""

from envforge.models.activation import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ActivationMode,
    ActivationState,
    ActivationTransition,
    ScriptDialect,
)
from envforge.models.artifacts import EnvValue, ResolvedArtifact
from envforge.models.environment import ComposedEnvironment
from envforge.models.lockfile import LockEntry, Lockfile
from envforge.models.manifest import InputKind, InputRef, Manifest

__all__ = [
    # manifest
    "InputKind",
    "InputRef",
    "Manifest",
    # artifacts
    "EnvValue",
    "ResolvedArtifact",
    # environment
    "ComposedEnvironment",
    # activation
    "ActivationMode",
    "ActivationState",
    "ActivationTransition",
    "ScriptDialect",
    "TERMINAL_STATES",
    "VALID_TRANSITIONS",
    # lockfile
    "LockEntry",
    "Lockfile",
]
