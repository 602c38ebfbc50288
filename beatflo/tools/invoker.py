"""Runs yt-dlp / ffmpeg / ffprobe as child processes without a shell."""

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from beatflo.exceptions import (
    ToolExecutionError,
    ToolNotInstalledError,
    ToolTimeoutError,
)

logger = logging.getLogger(__name__)

# Observer for incremental output: fn(stream_name, line) where stream_name is
# "stdout" or "stderr" and line has its trailing newline stripped.
LineCallback = Callable[[str, str], None]

# ffmpeg and yt-dlp can emit very long lines (JSON dumps, filter logs)
_STREAM_LIMIT = 4 * 1024 * 1024


@dataclass
class ToolResult:
    """Outcome of one external process invocation."""
    executable: str
    args: List[str]
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def stderr_tail(self, lines: int = 10) -> str:
        return "\n".join(self.stderr.splitlines()[-lines:])


class ToolInvoker:
    """Spawns external tools and streams their output line by line.

    - Arguments are passed as discrete tokens; user input never reaches a shell
    - A missing executable raises ToolNotInstalledError, distinct from a
      tool that ran and failed
    - On timeout or task cancellation the child is killed and reaped
    """

    def __init__(self, default_timeout: Optional[float] = None):
        self._default_timeout = default_timeout

    @staticmethod
    def is_available(executable: str) -> bool:
        return shutil.which(executable) is not None

    async def run(
        self,
        executable: str,
        args: Sequence[str],
        on_line: Optional[LineCallback] = None,
        timeout: Optional[float] = None,
        check: bool = False,
    ) -> ToolResult:
        argv = [str(a) for a in args]
        tool = os.path.basename(executable)
        timeout = timeout if timeout is not None else self._default_timeout
        logger.debug("Running %s %s", executable, " ".join(argv))

        try:
            proc = await asyncio.create_subprocess_exec(
                executable,
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT,
            )
        except FileNotFoundError as e:
            raise ToolNotInstalledError(tool) from e

        stdout_lines: List[str] = []
        stderr_lines: List[str] = []

        async def pump(stream: asyncio.StreamReader, name: str, sink: List[str]) -> None:
            while True:
                raw = await stream.readline()
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                sink.append(line)
                if on_line is not None:
                    on_line(name, line)

        async def communicate() -> int:
            await asyncio.gather(
                pump(proc.stdout, "stdout", stdout_lines),
                pump(proc.stderr, "stderr", stderr_lines),
            )
            return await proc.wait()

        try:
            if timeout:
                exit_code = await asyncio.wait_for(communicate(), timeout=timeout)
            else:
                exit_code = await communicate()
        except asyncio.TimeoutError:
            await _kill(proc)
            logger.warning("%s timed out after %ss, killed", tool, timeout)
            raise ToolTimeoutError(tool, timeout)
        except BaseException:
            # Cancellation or a failing observer: never leave the child behind
            await _kill(proc)
            raise

        result = ToolResult(
            executable=executable,
            args=argv,
            exit_code=exit_code,
            stdout="\n".join(stdout_lines),
            stderr="\n".join(stderr_lines),
        )
        if result.ok:
            logger.debug("%s finished", tool)
        else:
            logger.warning("%s exited with code %d: %s", tool, exit_code, result.stderr_tail())
        if check and not result.ok:
            raise ToolExecutionError(tool, exit_code, result.stderr_tail())
        return result


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    await proc.wait()
