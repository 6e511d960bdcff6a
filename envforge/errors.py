"""Error taxonomy for envforge.

Every failure surfaced to callers is one of these.  Parse and conflict
errors are fatal and never retried.  Resolution errors are batched so all
missing or conflicting inputs surface together.  Activation errors trigger
teardown of anything partially acquired.
"""

from __future__ import annotations

from typing import Any


class EnvforgeError(RuntimeError):
    """Base class for all envforge errors."""


class ParseError(EnvforgeError):
    """Raised when an environment descriptor is malformed."""


class ConflictError(EnvforgeError):
    """Raised when the same input is declared twice with different constraints.

    Parameters
    ----------
    first, second:
        The two conflicting declarations, as ``(kind, InputRef)`` pairs.
    """

    def __init__(self, message: str, first: Any = None, second: Any = None) -> None:
        super().__init__(message)
        self.first = first
        self.second = second


class ResolutionError(EnvforgeError):
    """Raised when one or more inputs cannot be resolved.

    All problems from a single resolve pass are reported at once.

    Parameters
    ----------
    missing:
        InputRefs with no matching artifact (includes timed-out ones).
    conflicting:
        Pairs of InputRefs that disagree with each other.
    timed_out:
        Subset of *missing* that were abandoned because of a timeout.
    """

    def __init__(
        self,
        missing: Any = (),
        conflicting: Any = (),
        timed_out: Any = (),
    ) -> None:
        self.missing = frozenset(missing)
        self.conflicting = frozenset(conflicting)
        self.timed_out = frozenset(timed_out)
        super().__init__(self._summary())

    def _summary(self) -> str:
        parts: list[str] = []
        if self.missing:
            names = ", ".join(sorted(str(ref) for ref in self.missing))
            parts.append(f"missing: {names}")
        if self.timed_out:
            names = ", ".join(sorted(str(ref) for ref in self.timed_out))
            parts.append(f"timed out: {names}")
        if self.conflicting:
            pairs = ", ".join(
                sorted(f"{a} vs {b}" for a, b in self.conflicting)
            )
            parts.append(f"conflicting: {pairs}")
        return "Resolution failed (" + "; ".join(parts) + ")"

    def to_dict(self) -> dict[str, list[Any]]:
        """Structured form for tooling: sorted names per category."""
        return {
            "missing": sorted(str(ref) for ref in self.missing),
            "conflicting": sorted(
                [str(a), str(b)] for a, b in self.conflicting
            ),
            "timed_out": sorted(str(ref) for ref in self.timed_out),
        }


class ActivationError(EnvforgeError):
    """Raised when an environment cannot be materialized."""


class InvalidTransitionError(EnvforgeError):
    """Raised when a requested activation state transition is not valid."""


class ArtifactIntegrityError(EnvforgeError):
    """Raised when a cached artifact's hash does not match its address."""


class LockDriftError(EnvforgeError):
    """Raised when resolved artifacts do not match the recorded lockfile."""
