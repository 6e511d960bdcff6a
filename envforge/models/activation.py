"""Activation state machine models — deterministic transitions."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ActivationState(str, Enum):
    """Lifecycle of one activation request."""

    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    COMPOSING = "composing"
    COMPOSED = "composed"
    ACTIVE = "active"
    DEACTIVATED = "deactivated"
    FAILED = "failed"


# Valid state transitions, enforced by ActivationMachine.
# Terminal states (FAILED, DEACTIVATED) have no outgoing transitions.
VALID_TRANSITIONS: dict[ActivationState, set[ActivationState]] = {
    ActivationState.UNRESOLVED: {ActivationState.RESOLVING},
    ActivationState.RESOLVING: {ActivationState.RESOLVED, ActivationState.FAILED},
    ActivationState.RESOLVED: {ActivationState.COMPOSING},
    ActivationState.COMPOSING: {ActivationState.COMPOSED, ActivationState.FAILED},
    ActivationState.COMPOSED: {ActivationState.ACTIVE, ActivationState.FAILED},
    ActivationState.ACTIVE: {ActivationState.DEACTIVATED},
    ActivationState.DEACTIVATED: set(),  # terminal
    ActivationState.FAILED: set(),  # terminal
}

TERMINAL_STATES: frozenset[ActivationState] = frozenset(
    state for state, targets in VALID_TRANSITIONS.items() if not targets
)


class ActivationTransition(BaseModel):
    """Records a single state transition for inspection."""

    model_config = ConfigDict(frozen=True)

    from_state: ActivationState
    to_state: ActivationState
    reason: str | None = None  # populated when entering FAILED
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ActivationMode(str, Enum):
    """How a composed environment is materialized."""

    PROCESS = "process"  # spawn a child process
    SCRIPT = "script"  # emit a script for sourcing
    INPLACE = "inplace"  # apply to this process, restored on teardown


class ScriptDialect(str, Enum):
    """Output syntax for emitted activation scripts."""

    POSIX = "posix"
    FISH = "fish"
    DOTENV = "dotenv"
