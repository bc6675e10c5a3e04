"""
Process Runner - the single seam through which external commands run.

Every component receives a ProcessRunner, so tests can substitute a fake
runner that returns scripted results instead of spawning real processes.
"""

import asyncio
import logging
import shutil
import subprocess
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from .errors import ExternalProcessError

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Captured outcome of a finished child process."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        """Standard output, or standard error when stdout is empty."""
        return self.stdout or self.stderr


class ProcessRunner:
    """
    Runs external commands and maps failures to ExternalProcessError.

    Args:
        timeout: Seconds before a running child is killed. None (the
            default) lets children run until they exit on their own.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    async def run(self, program: str, *args: str, check: bool = True) -> ProcessResult:
        """Run a command to completion and capture its output.

        Raises ExternalProcessError if the program cannot be started, times
        out, or (with check=True) exits with a non-zero status.
        """
        argv = (program, *[str(a) for a in args])
        logger.debug(f"exec: {argv}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExternalProcessError(f"Failed to start {program}: {e}", argv=argv)

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ExternalProcessError(
                f"Command timed out after {self.timeout}s: {' '.join(argv)}", argv=argv
            )

        result = ProcessResult(
            argv=argv,
            returncode=proc.returncode,
            stdout=_decode(stdout),
            stderr=_decode(stderr),
        )

        if check and result.returncode != 0:
            detail = result.stderr or result.stdout or "no output"
            raise ExternalProcessError(
                f"Command failed with exit code {result.returncode}: {' '.join(argv)}\n{detail}",
                argv=argv,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result

    def spawn_detached(self, program: str, *args: str) -> int:
        """Start a command in its own session and return its pid.

        Fire-and-forget: the child is not tracked, awaited or cancellable,
        and its exit status is never observed.
        """
        argv = (program, *[str(a) for a in args])
        logger.debug(f"spawn detached: {argv}")
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise ExternalProcessError(f"Failed to start {program}: {e}", argv=argv)
        return proc.pid

    def which(self, name: str) -> Optional[str]:
        """Resolve a tool on PATH."""
        return shutil.which(name)


def _decode(data: Optional[bytes]) -> str:
    if not data:
        return ""
    # Match shell capture: drop the final newline only
    return data.decode("utf-8", errors="replace").rstrip("\n")


@contextmanager
def advisory(description: str) -> Iterator[None]:
    """Run a side effect whose failure must not fail the enclosing request.

    The failure is logged as a warning and swallowed.
    """
    try:
        yield
    except Exception as e:
        logger.warning(f"Advisory operation failed ({description}): {e}")
