"""
Runs external tools (yt-dlp, ffmpeg, ffprobe) as asyncio subprocesses with
line streaming and cooperative cancellation.
"""

import asyncio
import codecs
import logging
import re
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from soundlink_cli.exceptions import OperationCancelled, ProcessFailedError
from soundlink_cli.utils.formatting import excerpt

log = logging.getLogger(__name__)

LINE_SPLIT = re.compile(r"\r\n|\r|\n")
READ_CHUNK_SIZE = 8192


@dataclass(frozen=True)
class ExitResult:
    """The completed state of a subprocess."""

    exit_code: int
    stdout: str
    stderr: str


class CancellationToken:
    """A single shared flag checked by every worker and every spawn."""

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def reset(self) -> None:
        self._cancelled = False

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled("Operation cancelled")


class ProcessRegistry:
    """Tracks live subprocesses so a cancel request can terminate them all."""

    def __init__(self):
        self._processes: set[asyncio.subprocess.Process] = set()

    def __len__(self) -> int:
        return len(self._processes)

    def add(self, process: asyncio.subprocess.Process) -> None:
        self._processes.add(process)

    def discard(self, process: asyncio.subprocess.Process) -> None:
        self._processes.discard(process)

    def terminate_all(self) -> int:
        """Sends a termination signal to every tracked process."""
        terminated = 0
        for process in list(self._processes):
            if process.returncode is not None:
                continue
            try:
                process.terminate()
                terminated += 1
            except ProcessLookupError:
                pass
            except OSError as e:
                log.warning(f"Failed to terminate process {process.pid}: {e}")
        self._processes.clear()
        if terminated:
            log.debug(f"Sent termination signal to {terminated} process(es).")
        return terminated


class ExecutorPool:
    """
    The set of interchangeable yt-dlp executables, handed out round-robin.
    """

    def __init__(self, executables: list[str]):
        self._executables = list(dict.fromkeys(e for e in executables if e))
        self._index = 0

    @classmethod
    def discover(cls, configured_paths: list[str]) -> "ExecutorPool":
        """Uses configured executables, falling back to ``yt-dlp`` on PATH."""
        found = [p for p in configured_paths if Path(p).is_file() or shutil.which(p)]
        missing = set(configured_paths) - set(found)
        for path in sorted(missing):
            log.warning(f"[yellow]Configured yt-dlp executable not found:[/] {path}")
        if not found and (on_path := shutil.which("yt-dlp")):
            found = [on_path]
        return cls(found)

    def __len__(self) -> int:
        return len(self._executables)

    @property
    def executables(self) -> list[str]:
        return list(self._executables)

    def next(self) -> str:
        if not self._executables:
            raise ProcessFailedError("No yt-dlp executable found.")
        executable = self._executables[self._index]
        self._index = (self._index + 1) % len(self._executables)
        return executable


class ProcessRunner:
    """
    Spawns external tools, streams their combined output line by line, and
    honours a shared cancellation token.
    """

    def __init__(
        self,
        token: CancellationToken | None = None,
        registry: ProcessRegistry | None = None,
    ):
        self.token = token or CancellationToken()
        self.registry = registry or ProcessRegistry()

    def cancel(self) -> None:
        """Sets the cancellation flag and terminates every live process."""
        self.token.cancel()
        self.registry.terminate_all()

    async def run(
        self,
        executable: str,
        args: list[str],
        on_line: Callable[[str], None] | None = None,
    ) -> ExitResult:
        """
        Runs ``executable`` to completion and returns its exit code and output.

        Raises:
            OperationCancelled: If cancellation was requested before the process
                started or while it was running.
            ProcessFailedError: If the process could not be spawned.
        """
        self.token.raise_if_cancelled()
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProcessFailedError(f"Could not start '{executable}': {e}") from e

        self.registry.add(process)
        if self.token.cancelled:
            # Cancelled while the process was being spawned
            self.registry.terminate_all()

        try:
            stdout, stderr = await asyncio.gather(
                self._pump(process.stdout, on_line),
                self._pump(process.stderr, on_line),
            )
            exit_code = await process.wait()
        finally:
            self.registry.discard(process)
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass

        self.token.raise_if_cancelled()
        log.debug(f"'{Path(executable).name}' exited with code {exit_code}")
        return ExitResult(exit_code=exit_code, stdout=stdout, stderr=stderr)

    async def run_checked(
        self,
        executable: str,
        args: list[str],
        on_line: Callable[[str], None] | None = None,
    ) -> ExitResult:
        """Like ``run`` but raises ``ProcessFailedError`` on a non-zero exit."""
        result = await self.run(executable, args, on_line)
        if result.exit_code != 0:
            raise ProcessFailedError(
                f"{Path(executable).name} exited with code {result.exit_code}: "
                f"{excerpt(result.stderr)}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        return result

    @staticmethod
    async def _pump(
        stream: asyncio.StreamReader, on_line: Callable[[str], None] | None
    ) -> str:
        """Reads a stream to EOF, forwarding each complete line to ``on_line``."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        collected: list[str] = []
        pending = ""
        while chunk := await stream.read(READ_CHUNK_SIZE):
            text = decoder.decode(chunk)
            collected.append(text)
            if on_line is None:
                continue
            pending += text
            *lines, pending = LINE_SPLIT.split(pending)
            for line in lines:
                if line.strip():
                    on_line(line)
        tail = decoder.decode(b"", final=True)
        collected.append(tail)
        pending += tail
        if on_line is not None and pending.strip():
            on_line(pending)
        return "".join(collected)


class YtDlp:
    """Runs yt-dlp through the executor pool with the shared argument prefix."""

    COMMON_ARGS = ["--no-update"]

    def __init__(self, runner: ProcessRunner, pool: ExecutorPool):
        self.runner = runner
        self.pool = pool

    async def run(
        self, args: list[str], on_line: Callable[[str], None] | None = None
    ) -> ExitResult:
        return await self.runner.run(self.pool.next(), self.COMMON_ARGS + args, on_line)

    async def run_checked(
        self, args: list[str], on_line: Callable[[str], None] | None = None
    ) -> ExitResult:
        return await self.runner.run_checked(
            self.pool.next(), self.COMMON_ARGS + args, on_line
        )
