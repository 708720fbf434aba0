"""Asynchronous child-process helper with streaming capture and hard timeouts."""

from __future__ import annotations

import asyncio
import os
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from codegrader.util.logging import get_logger

_READ_CHUNK: Final[int] = 64 * 1024
# Upper bound on waiting for pipes to reach EOF once the child has exited.
_DRAIN_GRACE_S: Final[float] = 1.0
_EXIT_POLL_S: Final[float] = 0.01
_POSIX: Final[bool] = os.name == "posix"

_LOGGER = get_logger("codegrader.execution.process")


@dataclass(frozen=True)
class ProcessRun:
    """Outcome of one child process.

    Attributes:
        command: The shell command that was run.
        stdout: Decoded standard output.
        stderr: Decoded standard error.
        exit_code: Exit status; negative when killed by a signal.
        timed_out: Whether the wall-clock budget expired and the child was killed.
        cancelled: Whether an external cancellation killed the child.
        duration_ms: Wall-clock time from spawn to exit.
    """

    command: str
    stdout: str
    stderr: str
    exit_code: int | None
    timed_out: bool
    cancelled: bool
    duration_ms: float


async def run_shell(
    command: str,
    *,
    cwd: Path,
    timeout_ms: int,
    stdin_data: str | None = None,
    env: dict[str, str] | None = None,
    cancel_event: asyncio.Event | None = None,
) -> ProcessRun:
    """Run a shell command, feeding stdin and collecting both output streams.

    Output is read as it arrives, so a child that blocks on stdin or fills a
    pipe never deadlocks the caller. On timeout or cancellation the child's
    whole process group is killed, which also takes down programs started by
    the intermediate shell. Background children left behind by a program
    that exits on its own are killed too, once the program has exited.

    Args:
        command: Command string interpreted by the shell.
        cwd: Working directory of the child.
        timeout_ms: Wall-clock budget in milliseconds.
        stdin_data: Text written to standard input. Standard input is closed
            afterwards, or immediately when None.
        env: Full environment for the child; inherits ours when None.
        cancel_event: Optional event that kills the child when set.

    Returns:
        ProcessRun with captured output and exit details.
    """

    start = time.perf_counter()
    process = await asyncio.create_subprocess_shell(
        command,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd),
        env=env,
        start_new_session=_POSIX,
    )
    stdout_chunks: list[bytes] = []
    stderr_chunks: list[bytes] = []
    io_tasks = [
        asyncio.create_task(_drain(process.stdout, stdout_chunks)),
        asyncio.create_task(_drain(process.stderr, stderr_chunks)),
        asyncio.create_task(_feed_stdin(process, stdin_data)),
    ]
    waiter = asyncio.create_task(_wait_for_exit(process))
    canceller = asyncio.create_task(cancel_event.wait()) if cancel_event is not None else None
    watched = {waiter} if canceller is None else {waiter, canceller}

    timed_out = False
    cancelled = False
    try:
        done, _ = await asyncio.wait(
            watched,
            timeout=timeout_ms / 1000,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if waiter not in done:
            if canceller is not None and canceller in done:
                cancelled = True
            else:
                timed_out = True
            _LOGGER.debug(
                "Killing process %s (%s)", process.pid, "cancelled" if cancelled else "timeout"
            )
            _kill_group(process)
        await waiter
        duration_ms = (time.perf_counter() - start) * 1000
    finally:
        if canceller is not None:
            canceller.cancel()
        if not waiter.done():
            _kill_group(process)
            waiter.cancel()
        # Stragglers forked into the background would otherwise hold the pipes open.
        _kill_group(process)
        await _settle([*io_tasks, asyncio.create_task(process.wait())])

    return ProcessRun(
        command=command,
        stdout=b"".join(stdout_chunks).decode("utf-8", errors="replace"),
        stderr=b"".join(stderr_chunks).decode("utf-8", errors="replace"),
        exit_code=process.returncode,
        timed_out=timed_out,
        cancelled=cancelled,
        duration_ms=duration_ms,
    )


async def _drain(stream: asyncio.StreamReader | None, sink: list[bytes]) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            return
        sink.append(chunk)


async def _feed_stdin(process: asyncio.subprocess.Process, data: str | None) -> None:
    stdin = process.stdin
    if stdin is None:
        return
    try:
        if data:
            stdin.write(data.encode("utf-8"))
            await stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        # The child exited or closed stdin without reading everything.
        _LOGGER.debug("Process %s closed stdin before input was consumed", process.pid)
    finally:
        stdin.close()


async def _wait_for_exit(process: asyncio.subprocess.Process) -> int:
    # returncode is set as soon as the child exits; wait() also needs every pipe closed.
    while process.returncode is None:
        await asyncio.sleep(_EXIT_POLL_S)
    return process.returncode


async def _settle(tasks: list[asyncio.Task[Any]]) -> None:
    _, pending = await asyncio.wait(tasks, timeout=_DRAIN_GRACE_S)
    for task in pending:
        task.cancel()
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            _LOGGER.debug("Ignoring stream error after process exit: %s", result)


def _kill_group(process: asyncio.subprocess.Process) -> None:
    if _POSIX:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
        return
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
