import asyncio
import sys

import pytest

from soundlink_cli.core.process_runner import (
    CancellationToken,
    ExecutorPool,
    ProcessRunner,
    YtDlp,
)
from soundlink_cli.exceptions import OperationCancelled, ProcessFailedError

PY = sys.executable


def test_run_streams_lines_and_returns_output():
    runner = ProcessRunner()
    lines = []
    script = (
        "import sys\n"
        "sys.stdout.write('first\\rsecond\\nthird\\n')\n"
        "sys.stderr.write('oops\\n')\n"
    )

    result = asyncio.run(runner.run(PY, ["-c", script], on_line=lines.append))

    assert result.exit_code == 0
    assert "third" in result.stdout
    assert result.stderr.strip() == "oops"
    assert {"first", "second", "third", "oops"} <= set(lines)
    assert len(runner.registry) == 0


def test_run_reports_non_zero_exit():
    result = asyncio.run(ProcessRunner().run(PY, ["-c", "raise SystemExit(3)"]))
    assert result.exit_code == 3


def test_run_checked_raises_with_exit_code():
    runner = ProcessRunner()
    with pytest.raises(ProcessFailedError) as excinfo:
        asyncio.run(
            runner.run_checked(
                PY, ["-c", "import sys; sys.stderr.write('bad'); sys.exit(2)"]
            )
        )
    assert excinfo.value.exit_code == 2
    assert "bad" in excinfo.value.stderr


def test_cancelled_token_prevents_spawn():
    token = CancellationToken()
    token.cancel()
    runner = ProcessRunner(token=token)
    with pytest.raises(OperationCancelled):
        asyncio.run(runner.run(PY, ["-c", "print('never')"]))
    assert len(runner.registry) == 0


def test_missing_executable_raises_process_failed():
    with pytest.raises(ProcessFailedError):
        asyncio.run(ProcessRunner().run("/nonexistent/tool-binary", []))


def test_cancel_terminates_running_process():
    runner = ProcessRunner()

    async def scenario():
        task = asyncio.create_task(
            runner.run(PY, ["-c", "import time; time.sleep(30)"])
        )
        while len(runner.registry) == 0:
            await asyncio.sleep(0.01)
        runner.cancel()
        return await task

    with pytest.raises(OperationCancelled):
        asyncio.run(asyncio.wait_for(scenario(), timeout=10))
    assert len(runner.registry) == 0


def test_executor_pool_round_robin():
    pool = ExecutorPool(["a", "b", "a", ""])
    assert len(pool) == 2
    assert [pool.next() for _ in range(4)] == ["a", "b", "a", "b"]


def test_empty_executor_pool_raises():
    with pytest.raises(ProcessFailedError):
        ExecutorPool([]).next()


def test_ytdlp_prefixes_common_arguments():
    calls = []

    class RecordingRunner:
        async def run(self, executable, args, on_line=None):
            calls.append((executable, args))

    ytdlp = YtDlp(RecordingRunner(), ExecutorPool(["yt-a", "yt-b"]))
    asyncio.run(ytdlp.run(["--flat-playlist", "ytsearch5:song"]))
    asyncio.run(ytdlp.run(["--get-title", "https://x"]))

    assert calls == [
        ("yt-a", ["--no-update", "--flat-playlist", "ytsearch5:song"]),
        ("yt-b", ["--no-update", "--get-title", "https://x"]),
    ]
