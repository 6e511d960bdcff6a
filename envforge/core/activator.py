"""Activator — materializes a composed environment, all or nothing.

Three modes:

``process``
    Spawn a child process whose environment table is exactly the composed
    variables.
``script``
    Render a sourcing script (posix, fish or dotenv) and optionally write
    it to a path.  The file is written to a temp sibling and renamed into
    place, so nobody can source a half-written script.
``inplace``
    Apply the variables to this process's ``os.environ`` in one update;
    teardown restores the previous table exactly.

The environment is always fully built in memory before it is applied.
``ActivationHandle.teardown`` is idempotent and best-effort: secondary
failures are logged, never raised.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import subprocess
import tempfile
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from types import TracebackType

from envforge.errors import ActivationError
from envforge.models.activation import ActivationMode, ScriptDialect
from envforge.models.environment import ComposedEnvironment

logger = logging.getLogger(__name__)

_VALID_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


# ---------------------------------------------------------------------------
# Script rendering
# ---------------------------------------------------------------------------


def _quote_fish(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def _quote_dotenv(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("$", "\\$")
        .replace("\n", "\\n")
    )
    return f'"{escaped}"'


def render_script(
    composed: ComposedEnvironment,
    dialect: ScriptDialect = ScriptDialect.POSIX,
    base_env: Mapping[str, str] | None = None,
) -> str:
    """Render variable assignments in merge order.

    With *base_env*, only variables that differ from it are emitted.
    Names that are not valid shell identifiers are skipped.
    """
    pairs = (
        composed.diff(base_env).items()
        if base_env is not None
        else composed.items_in_order()
    )
    lines = [f"# envforge activation (environment {composed.environment_hash[:16]})"]
    for name, value in pairs:
        if not _VALID_NAME.match(name):
            logger.warning("Skipping variable with invalid name %r", name)
            continue
        if dialect == ScriptDialect.POSIX:
            lines.append(f"export {name}={shlex.quote(value)}")
        elif dialect == ScriptDialect.FISH:
            lines.append(f"set -gx {name} {_quote_fish(value)}")
        else:
            lines.append(f"{name}={_quote_dotenv(value)}")
    return "\n".join(lines) + "\n"


def _write_atomically(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


# ---------------------------------------------------------------------------
# Handle
# ---------------------------------------------------------------------------


class ActivationHandle:
    """A live activation; release it with ``teardown()`` or a ``with`` block.

    Attributes
    ----------
    process:
        The spawned child (``process`` mode).
    script:
        Rendered script text (``script`` mode).
    script_path:
        Where the script was written, if anywhere.
    """

    def __init__(
        self,
        mode: ActivationMode,
        composed: ComposedEnvironment,
        *,
        process: subprocess.Popen | None = None,
        script: str | None = None,
        script_path: Path | None = None,
        remove_script: bool = False,
        saved_environ: dict[str, str] | None = None,
        grace_seconds: float = 5.0,
    ) -> None:
        self.mode = mode
        self.composed = composed
        self.process = process
        self.script = script
        self.script_path = script_path
        self._remove_script = remove_script
        self._saved_environ = saved_environ
        self._grace = grace_seconds
        self._torn_down = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def active(self) -> bool:
        return not self._torn_down

    def on_teardown(self, callback: Callable[[], None]) -> None:
        """Run *callback* once resources are released."""
        self._callbacks.append(callback)

    def wait(self, timeout: float | None = None) -> int:
        """Wait for the spawned process and return its exit code."""
        if self.process is None:
            raise ActivationError(f"No process to wait for in {self.mode.value} mode")
        return self.process.wait(timeout=timeout)

    def teardown(self) -> None:
        """Release everything this activation acquired.

        Safe to call any number of times; only the first call does work.
        """
        if self._torn_down:
            return
        self._torn_down = True

        if self.process is not None:
            self._stop_process(self.process)
        if self._remove_script and self.script_path is not None:
            try:
                self.script_path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Could not remove %s: %s", self.script_path, exc)
        if self._saved_environ is not None:
            os.environ.clear()
            os.environ.update(self._saved_environ)
            logger.debug("Restored %d inherited variables", len(self._saved_environ))
        for callback in self._callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Teardown callback failed")

    def _stop_process(self, process: subprocess.Popen) -> None:
        if process.poll() is not None:
            return
        try:
            process.terminate()
            process.wait(timeout=self._grace)
        except subprocess.TimeoutExpired:
            logger.warning("Process %s ignored SIGTERM; killing", process.pid)
            try:
                process.kill()
                process.wait(timeout=self._grace)
            except (OSError, subprocess.TimeoutExpired) as exc:
                logger.warning("Could not kill process %s: %s", process.pid, exc)
        except OSError as exc:
            logger.warning("Could not stop process %s: %s", process.pid, exc)

    def __enter__(self) -> ActivationHandle:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.teardown()


# ---------------------------------------------------------------------------
# Activator
# ---------------------------------------------------------------------------


class Activator:
    """Materializes ComposedEnvironments according to caller configuration.

    Parameters
    ----------
    mode:
        ``process``, ``script`` or ``inplace``.
    command:
        Argument vector to spawn (``process`` mode).
    dialect:
        Script syntax (``script`` mode).
    script_path:
        Write the script here (``script`` mode); text-only if omitted.
    keep_script:
        Leave a written script in place on teardown.
    base_env:
        Emit only variables that differ from this table (``script`` mode).
    cwd:
        Working directory for the child (``process`` mode).
    grace_seconds:
        How long teardown waits after SIGTERM before SIGKILL.
    """

    def __init__(
        self,
        mode: ActivationMode = ActivationMode.PROCESS,
        *,
        command: Sequence[str] | None = None,
        dialect: ScriptDialect = ScriptDialect.POSIX,
        script_path: Path | None = None,
        keep_script: bool = False,
        base_env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
        grace_seconds: float = 5.0,
    ) -> None:
        self.mode = ActivationMode(mode)
        self._command = list(command) if command else None
        self._dialect = ScriptDialect(dialect)
        self._script_path = Path(script_path) if script_path is not None else None
        self._keep_script = keep_script
        self._base_env = dict(base_env) if base_env is not None else None
        self._cwd = cwd
        self._grace = grace_seconds

        if self.mode == ActivationMode.PROCESS and not self._command:
            raise ActivationError("process mode needs a command to spawn")

    def activate(self, composed: ComposedEnvironment) -> ActivationHandle:
        """Apply *composed* in one step and return a handle.

        Raises
        ------
        ActivationError
            If materialization fails; nothing partial is left behind.
        """
        if self.mode == ActivationMode.PROCESS:
            return self._spawn(composed)
        if self.mode == ActivationMode.SCRIPT:
            return self._emit(composed)
        return self._apply_inplace(composed)

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    def _spawn(self, composed: ComposedEnvironment) -> ActivationHandle:
        env = dict(composed.variables)
        try:
            process = subprocess.Popen(self._command, env=env, cwd=self._cwd)
        except (OSError, ValueError) as exc:
            raise ActivationError(
                f"Cannot spawn {shlex.join(self._command or [])}: {exc}"
            ) from exc
        logger.info("Spawned %s (pid %d)", self._command[0], process.pid)
        return ActivationHandle(
            ActivationMode.PROCESS,
            composed,
            process=process,
            grace_seconds=self._grace,
        )

    def _emit(self, composed: ComposedEnvironment) -> ActivationHandle:
        text = render_script(composed, self._dialect, self._base_env)
        if self._script_path is not None:
            try:
                _write_atomically(self._script_path, text)
            except OSError as exc:
                raise ActivationError(
                    f"Cannot write activation script {self._script_path}: {exc}"
                ) from exc
            logger.info("Wrote %s script to %s", self._dialect.value, self._script_path)
        return ActivationHandle(
            ActivationMode.SCRIPT,
            composed,
            script=text,
            script_path=self._script_path,
            remove_script=not self._keep_script,
        )

    def _apply_inplace(self, composed: ComposedEnvironment) -> ActivationHandle:
        saved = dict(os.environ)
        target = dict(composed.variables)
        try:
            os.environ.update(target)
        except (OSError, ValueError) as exc:
            os.environ.clear()
            os.environ.update(saved)
            raise ActivationError(f"Cannot apply environment: {exc}") from exc
        logger.info("Applied %d variables to the current process", len(target))
        return ActivationHandle(
            ActivationMode.INPLACE, composed, saved_environ=saved
        )
