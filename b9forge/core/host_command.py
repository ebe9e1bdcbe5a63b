"""External command execution with deadlines.

Every external process (``ssh``, ``rsync``, build commands) goes through
``run_host_command``.  Commands are logged with a short tag so that start,
completion and failure lines can be correlated.  A command that outlives
its timeout is killed and reaped before ``HostCommandTimeout`` is raised,
so no transfer process keeps running in the background.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Callable, Sequence

from pydantic import BaseModel, ConfigDict

from b9forge.core.hasher import command_tag

logger = logging.getLogger(__name__)

# Exit code reported when the executable cannot be started at all.
EXIT_COMMAND_NOT_FOUND = 127


class HostCommandTimeout(RuntimeError):
    """Raised when a host command exceeded its timeout and was killed."""

    def __init__(self, argv: Sequence[str], timeout: float) -> None:
        self.argv = list(argv)
        self.timeout = timeout
        super().__init__(f"Command timed out after {timeout:.1f}s: {shlex.join(self.argv)}")


class HostCommandResult(BaseModel):
    """Outcome of a finished host command."""

    model_config = ConfigDict(frozen=True)

    argv: list[str]
    returncode: int
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace").strip()


# Signature shared by ``run_host_command`` and test doubles.
CommandRunner = Callable[..., HostCommandResult]


def run_host_command(
    argv: Sequence[str],
    *,
    timeout: float | None = None,
    timeout_factor: float = 1.0,
    stdin: bytes | None = None,
) -> HostCommandResult:
    """Run ``argv`` and wait for it, killing it if ``timeout`` elapses.

    Parameters
    ----------
    argv:
        Program and arguments; no shell is involved.
    timeout:
        Seconds before the process is killed. ``None`` waits forever.
    timeout_factor:
        Multiplier applied to ``timeout`` (slow hosts, CI machines).
    stdin:
        Bytes fed to the process; stdin is closed otherwise.

    Raises
    ------
    HostCommandTimeout
        If the process did not exit in time.
    """
    argv = [str(arg) for arg in argv]
    tag = command_tag(argv)
    effective_timeout = None if timeout is None else timeout * timeout_factor
    logger.debug("COMMAND [%s]: %s", tag, shlex.join(argv))

    try:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        logger.error("COMMAND [%s] could not be started: %s", tag, exc)
        return HostCommandResult(
            argv=argv,
            returncode=EXIT_COMMAND_NOT_FOUND,
            stderr=str(exc).encode("utf-8"),
        )

    try:
        stdout, stderr = proc.communicate(input=stdin, timeout=effective_timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.communicate()
        logger.error("COMMAND TIMED OUT [%s]", tag)
        raise HostCommandTimeout(argv, effective_timeout or 0.0) from None
    except BaseException:
        # KeyboardInterrupt and friends: never leave the child behind.
        proc.kill()
        proc.wait()
        raise

    if proc.returncode == 0:
        logger.debug("COMMAND FINISHED [%s]", tag)
    else:
        logger.error(
            "COMMAND FAILED EXIT CODE: %d [%s] %s",
            proc.returncode,
            tag,
            stderr.decode("utf-8", errors="replace").strip(),
        )
    return HostCommandResult(
        argv=argv, returncode=proc.returncode, stdout=stdout, stderr=stderr
    )
