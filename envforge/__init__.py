"""envforge: declarative environment resolver and activator.

Reads an environment descriptor (name, build inputs, link inputs,
environment overrides), resolves each input to a content-addressed
artifact through a package-build collaborator, composes the resulting
search paths and variables deterministically, and activates the result
as a child process, a sourcing script, or in the current process.
"""

__version__ = "0.1.0"
__description__ = "Declarative, reproducible development environment activator"

from envforge.core.activator import ActivationHandle, Activator
from envforge.core.compositor import Compositor, compose
from envforge.core.manifest_parser import load, loads, parse, serialize
from envforge.core.resolver import ResolutionResult, Resolver
from envforge.core.session import EnvironmentSession

__all__ = [
    "ActivationHandle",
    "Activator",
    "Compositor",
    "EnvironmentSession",
    "ResolutionResult",
    "Resolver",
    "compose",
    "load",
    "loads",
    "parse",
    "serialize",
    "__version__",
]
