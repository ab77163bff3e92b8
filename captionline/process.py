"""
captionline.process - Async subprocess execution with a hard timeout.

External tools (ffmpeg, the speech-to-text engine) run as child processes
so CPU-bound work never blocks the event loop. An overrunning process is
killed and reported as a timeout rather than left running.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class ProcessTimeout(Exception):
    def __init__(self, description: str, timeout: float) -> None:
        self.description = description
        self.timeout = timeout
        super().__init__(f"{description} timed out after {timeout:.0f}s")


@dataclass(frozen=True)
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def run_process(cmd: list[str], *, timeout: float, description: str) -> ProcessResult:
    """Run ``cmd`` and wait at most ``timeout`` seconds.

    Raises:
        ProcessTimeout: If the process overruns; it is killed first
        OSError: If the executable cannot be started
    """
    logger.debug("%s: %s", description, " ".join(cmd))
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise ProcessTimeout(description, timeout) from None

    return ProcessResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
