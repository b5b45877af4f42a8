"""
Command runner — the single place where package manager commands and
recipe steps become subprocesses.

Every call has a timeout, and an optional cancellation event is polled
while the child runs; when it fires the child is terminated (then
killed after a grace period). Failures never raise: they are captured
in the returned ``CommandResult``.
"""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.2
_KILL_GRACE = 5.0
_OUTPUT_TAIL = 4000


@dataclass
class CommandResult:
    """Outcome of one subprocess invocation."""

    cmd: list[str]
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0
    error: str = ""
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.error

    @property
    def output(self) -> str:
        """stdout and stderr together, for signature matching."""
        return f"{self.stdout}\n{self.stderr}".strip()

    def describe(self) -> str:
        """One-line failure summary."""
        if self.error:
            return self.error
        stderr = self.stderr.strip()[-_OUTPUT_TAIL:]
        detail = f": {stderr}" if stderr else ""
        return f"{self.cmd[0]} exited with code {self.returncode}{detail}"


# Signature shared by run_command and the fakes used in tests.
Runner = Callable[..., CommandResult]


def run_command(
    cmd: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    timeout: float = 300,
    cancel: threading.Event | None = None,
) -> CommandResult:
    """Run ``cmd`` and capture its output.

    Args:
        cmd: Command list (no shell).
        env: Full environment for the child (None = inherit).
        cwd: Working directory for the child.
        timeout: Seconds before the child is terminated.
        cancel: Optional event; when set the child is terminated.

    Returns:
        CommandResult; ``ok`` is True only for exit code 0.
    """
    argv = [str(part) for part in cmd]
    logger.debug("Executing: %s (cwd=%s)", " ".join(argv), cwd)

    start = time.monotonic()
    try:
        proc = subprocess.Popen(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
            env=dict(env) if env is not None else None,
            cwd=cwd,
        )
    except OSError as e:
        return CommandResult(cmd=argv, error=f"Command execution error: {e}")

    deadline = start + timeout
    while True:
        remaining = deadline - time.monotonic()
        try:
            stdout, stderr = proc.communicate(timeout=max(min(_POLL_INTERVAL, remaining), 0.01))
            break
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.is_set():
                stdout, stderr = _terminate(proc)
                return CommandResult(
                    cmd=argv,
                    returncode=proc.returncode,
                    stdout=stdout,
                    stderr=stderr,
                    elapsed_ms=_elapsed_ms(start),
                    error="Command cancelled",
                    cancelled=True,
                )
            if time.monotonic() >= deadline:
                stdout, stderr = _terminate(proc)
                return CommandResult(
                    cmd=argv,
                    returncode=proc.returncode,
                    stdout=stdout,
                    stderr=stderr,
                    elapsed_ms=_elapsed_ms(start),
                    error=f"Command timed out after {timeout}s",
                    timed_out=True,
                )

    result = CommandResult(
        cmd=argv,
        returncode=proc.returncode,
        stdout=stdout or "",
        stderr=stderr or "",
        elapsed_ms=_elapsed_ms(start),
    )
    if not result.ok:
        logger.debug("Command failed (exit %s): %s", result.returncode, result.stderr[-500:])
    return result


def _terminate(proc: subprocess.Popen) -> tuple[str, str]:
    proc.terminate()
    try:
        stdout, stderr = proc.communicate(timeout=_KILL_GRACE)
    except subprocess.TimeoutExpired:
        proc.kill()
        stdout, stderr = proc.communicate()
    return stdout or "", stderr or ""


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
