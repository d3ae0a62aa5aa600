"""
kbeads Hook Executor -- run one advice hook command under a bounded timeout.

Knows nothing about advice or matching: it runs ``sh -c <command>`` to
completion, timeout or cancellation and reports what happened. Failures
are returned in the result, never raised.
"""

import logging
import os
import signal
import subprocess
import threading
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger("kbeads.executor")

DEFAULT_TIMEOUT = 30.0  # seconds
MAX_TIMEOUT = 300.0  # seconds

# How often a running hook checks its cancel event
_CANCEL_POLL_S = 0.05


class HookExecutionError(Exception):
    """A hook command did not complete successfully."""


class HookExitError(HookExecutionError):
    def __init__(self, returncode: int):
        self.returncode = returncode
        if returncode < 0:
            msg = f"signal: {_signal_name(-returncode)}"
        else:
            msg = f"exit status {returncode}"
        super().__init__(msg)


class HookTimeoutError(HookExecutionError):
    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"timed out after {timeout:g}s")


class HookCancelledError(HookExecutionError):
    def __init__(self):
        super().__init__("cancelled")


class HookSpawnError(HookExecutionError):
    """The shell could not be started at all."""


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


@dataclass
class HookResult:
    """Trimmed output of a hook (stdout, or stderr when stdout is empty) and its error."""

    output: str = ""
    error: Optional[HookExecutionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def effective_timeout(timeout_seconds: float) -> float:
    """Clamp a configured hook timeout into (0, MAX_TIMEOUT]."""
    if not timeout_seconds or timeout_seconds <= 0:
        return DEFAULT_TIMEOUT
    return min(float(timeout_seconds), MAX_TIMEOUT)


def _kill_group(proc: subprocess.Popen) -> None:
    """Kill the hook's shell and everything it spawned."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass
    except OSError:
        proc.kill()


def _pick_output(stdout: Optional[str], stderr: Optional[str]) -> str:
    output = (stdout or "").strip()
    if not output:
        output = (stderr or "").strip()
    return output


def execute(
    command: str,
    timeout_seconds: float = 0,
    cwd: str = "",
    env: Optional[Mapping[str, str]] = None,
    cancel: Optional[threading.Event] = None,
) -> HookResult:
    """Run ``command`` through ``sh -c`` and capture its output.

    Args:
        command: Shell line to run.
        timeout_seconds: Hook timeout; <= 0 means DEFAULT_TIMEOUT, capped at MAX_TIMEOUT.
        cwd: Working directory, used only if it names an existing directory.
        env: Variables overlaid on the inherited process environment.
        cancel: Optional event; setting it kills the running command.
    """
    timeout = effective_timeout(timeout_seconds)

    run_env = dict(os.environ)
    if env:
        run_env.update(env)

    run_cwd = cwd if cwd and os.path.isdir(cwd) else None

    try:
        proc = subprocess.Popen(
            ["sh", "-c", command],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            cwd=run_cwd,
            env=run_env,
            text=True,
            errors="replace",
            start_new_session=True,
        )
    except OSError as e:
        logger.warning("hook spawn failed: %s", e)
        return HookResult(output="", error=HookSpawnError(str(e)))

    # communicate() may be retried after TimeoutExpired without losing output,
    # so wait in short slices when there is a cancel event to watch.
    remaining = timeout
    error: Optional[HookExecutionError] = None
    while True:
        if cancel is not None and cancel.is_set():
            error = HookCancelledError()
            break
        step = min(remaining, _CANCEL_POLL_S) if cancel is not None else remaining
        try:
            stdout, stderr = proc.communicate(timeout=step)
        except subprocess.TimeoutExpired:
            remaining -= step
            if remaining <= 0:
                error = HookTimeoutError(timeout)
                break
            continue
        if proc.returncode != 0:
            error = HookExitError(proc.returncode)
        return HookResult(output=_pick_output(stdout, stderr), error=error)

    _kill_group(proc)
    try:
        # The pipes close once every member of the group is gone
        stdout, stderr = proc.communicate(timeout=5)
    except subprocess.TimeoutExpired:
        # A grandchild left the group and still holds the pipes
        proc.wait()
        stdout, stderr = "", ""
    logger.info("hook command killed: %s", error)
    return HookResult(output=_pick_output(stdout, stderr), error=error)
