"""Deterministic activation state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- FAILED and DEACTIVATED are terminal; nothing leaves them
- Every transition is recorded in the history
"""

from __future__ import annotations

import logging
import threading

from envforge.errors import InvalidTransitionError
from envforge.models.activation import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ActivationState,
    ActivationTransition,
)

logger = logging.getLogger(__name__)


class ActivationMachine:
    """Tracks one activation request through its lifecycle.

    Parameters
    ----------
    label:
        Name used in log messages (usually the manifest name).
    """

    def __init__(self, label: str = "") -> None:
        self._label = label
        self._state = ActivationState.UNRESOLVED
        self._history: list[ActivationTransition] = []
        self._lock = threading.Lock()

    @property
    def state(self) -> ActivationState:
        return self._state

    @property
    def history(self) -> list[ActivationTransition]:
        """A snapshot of every transition so far."""
        return list(self._history)

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def transition(
        self, target_state: ActivationState, *, reason: str | None = None
    ) -> ActivationTransition:
        """Move to *target_state*, recording the transition.

        Raises
        ------
        InvalidTransitionError
            If the move is not allowed from the current state.
        """
        with self._lock:
            current = self._state
            allowed = VALID_TRANSITIONS.get(current, set())
            if target_state not in allowed:
                raise InvalidTransitionError(
                    f"Cannot transition {self._label or 'activation'} from "
                    f"{current.value} to {target_state.value}. "
                    f"Allowed: {sorted(s.value for s in allowed)}"
                )
            record = ActivationTransition(
                from_state=current, to_state=target_state, reason=reason
            )
            self._history.append(record)
            self._state = target_state

        if target_state == ActivationState.FAILED:
            logger.warning(
                "%s: %s -> failed (%s)", self._label, current.value, reason
            )
        else:
            logger.debug(
                "%s: %s -> %s", self._label, current.value, target_state.value
            )
        return record

    def fail(self, reason: str) -> ActivationTransition:
        """Transition to FAILED with a reason."""
        return self.transition(ActivationState.FAILED, reason=reason)

    def require(self, *states: ActivationState) -> None:
        """Raise InvalidTransitionError unless the machine is in one of *states*."""
        if self._state not in states:
            raise InvalidTransitionError(
                f"{self._label or 'activation'} is {self._state.value}; "
                f"expected one of {sorted(s.value for s in states)}"
            )

    def get_available_transitions(self) -> set[ActivationState]:
        """Return the set of valid target states."""
        return set(VALID_TRANSITIONS.get(self._state, set()))
