"""Asynchronous line-oriented process executor.

procstream runtime module v0.1.0

This module provides:
- ProcessExecutor: spawn one child, capture stdout/stderr incrementally and
  let consumers await complete lines one at a time, in production order
- run_synchronously: blocking run-to-completion capture with a result tuple

Key design points:
- Each execute() builds a fresh run context (buffers, cursors, waiters, state)
- Stream readers push events into an anyio memory channel; a supervisor task
  is the only code that mutates the run context
- Suspended readers wait in a per-stream FIFO queue and every one of them is
  woken on each relevant event, then re-checks the buffer itself
- Failures are stored in the run context, so a reader arriving after the
  failure observes it immediately instead of suspending forever
- POSIX: start_new_session=True; Windows: CREATE_NEW_PROCESS_GROUP
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import math
import os
import signal
import subprocess
import sys
import time
from collections import deque
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, NamedTuple, Union

import anyio
from anyio.streams.memory import MemoryObjectSendStream

from ..config import DecodeErrorPolicy, get_config
from ..errors import (
    ConcurrentConsumerError,
    ExecutorBusyError,
    ProcstreamError,
    SpawnError,
    StreamDecodeError,
)
from .events import (
    ChunkEvent,
    EventKind,
    ExitEvent,
    FailureEvent,
    ProcessEvent,
    StreamName,
)
from .line_buffer import LineBuffer

__all__ = [
    "END_OF_STREAM",
    "EndOfStream",
    "ProcessExecutor",
    "RunOutcome",
    "RunResult",
    "RunState",
    "StreamName",
    "run_captured",
    "run_synchronously",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

StrPath = Union[str, os.PathLike]


class RunState(str, Enum):
    """Lifecycle of one executor run.

    TERMINATED and FAILED are absorbing: once reached, the run's buffers
    are frozen and only a new execute() starts over.
    """

    IDLE = "idle"
    RUNNING = "running"
    TERMINATED = "terminated"
    FAILED = "failed"


class EndOfStream(Enum):
    """Sentinel type returned by next_line() once a stream is drained."""

    TOKEN = "end-of-stream"

    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = EndOfStream.TOKEN


class RunResult(NamedTuple):
    """Outcome of run_synchronously().

    success is True iff the process was launched and exited with code 0.
    """

    success: bool
    exit_code: int
    stdout: str
    stderr: str


class RunOutcome(str, Enum):
    """How a run_captured() call ended."""

    EXITED = "exited"
    TIMED_OUT = "timed_out"
    LAUNCH_FAILED = "launch_failed"


class _WaiterQueue:
    """FIFO of readers suspended on one stream."""

    def __init__(self) -> None:
        self._futures: deque[asyncio.Future[None]] = deque()

    def __len__(self) -> int:
        return len(self._futures)

    async def wait(self) -> None:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._futures.append(future)
        try:
            await future
        finally:
            # Still queued only if the reader was cancelled or timed out
            if future in self._futures:
                self._futures.remove(future)

    def wake_all(self) -> int:
        """Wake every queued reader once, in registration order."""
        woken = 0
        while self._futures:
            future = self._futures.popleft()
            if not future.done():
                future.set_result(None)
                woken += 1
        return woken


@dataclass
class _StreamChannel:
    buffer: LineBuffer = field(default_factory=LineBuffer)
    cursor: int = 0
    waiters: _WaiterQueue = field(default_factory=_WaiterQueue)


@dataclass
class _RunContext:
    """State owned by a single execute() call."""

    command: tuple[str, ...] = ()
    state: RunState = RunState.IDLE
    started_at: float = field(default_factory=time.time)
    exit_code: int | None = None
    error: BaseException | None = None
    process: asyncio.subprocess.Process | None = None
    channels: dict[StreamName, _StreamChannel] = field(
        default_factory=lambda: {name: _StreamChannel() for name in StreamName}
    )
    spawned: asyncio.Event = field(default_factory=asyncio.Event)
    finished: asyncio.Event = field(default_factory=asyncio.Event)

    def waiter_count(self) -> int:
        return sum(len(channel.waiters) for channel in self.channels.values())


class ProcessExecutor:
    """Runs one child process at a time and serves its output line by line.

    Both streams are decoded as UTF-8 and split on "\\n". Lines are returned
    without the separator. A final fragment that is not newline-terminated
    is dropped unless emit_partial_on_exit is enabled.

    Example:
        async with ProcessExecutor() as executor:
            executor.execute(["git", "log", "--oneline"])
            while (line := await executor.next_line("stdout")) is not END_OF_STREAM:
                handle(line)
            print(executor.exit_code)

    Attributes:
        emit_partial_on_exit: Flush unterminated tails as lines on exit
        decode_errors: REPLACE substitutes U+FFFD, STRICT fails the run
        read_size: Maximum bytes read from a pipe per chunk
        term_timeout: Seconds to wait after SIGTERM in terminate()
        kill_timeout: Seconds to wait after SIGKILL in terminate()
        exclusive_readers: Reject a second concurrent reader per stream
    """

    def __init__(
        self,
        *,
        emit_partial_on_exit: bool | None = None,
        decode_errors: DecodeErrorPolicy | str | None = None,
        read_size: int | None = None,
        term_timeout: float | None = None,
        kill_timeout: float | None = None,
        exclusive_readers: bool | None = None,
    ) -> None:
        config = get_config()
        self.emit_partial_on_exit = (
            emit_partial_on_exit
            if emit_partial_on_exit is not None
            else config.emit_partial_on_exit
        )
        self.decode_errors = (
            DecodeErrorPolicy(decode_errors)
            if decode_errors is not None
            else config.decode_errors
        )
        self.read_size = read_size if read_size is not None else config.read_size
        if self.read_size < 1:
            raise ValueError(f"read_size must be positive, got {self.read_size}")
        self.term_timeout = term_timeout if term_timeout is not None else config.term_timeout
        self.kill_timeout = kill_timeout if kill_timeout is not None else config.kill_timeout
        self.exclusive_readers = (
            exclusive_readers if exclusive_readers is not None else config.exclusive_readers
        )

        self._context = _RunContext()
        # Supervisors of earlier runs may still be reaping their child
        self._supervisors: set[asyncio.Task[None]] = set()

    def __repr__(self) -> str:
        return (
            f"ProcessExecutor(state={self.state.value}, "
            f"command={list(self.command)}, "
            f"pid={self.pid}, "
            f"exit_code={self.exit_code})"
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> RunState:
        return self._context.state

    @property
    def is_running(self) -> bool:
        return self._context.state is RunState.RUNNING

    @property
    def exit_code(self) -> int | None:
        """Exit code of the last run; None unless it is TERMINATED."""
        if self._context.state is RunState.TERMINATED:
            return self._context.exit_code
        return None

    @property
    def error(self) -> BaseException | None:
        """Stored cause of a FAILED run."""
        return self._context.error

    @property
    def pid(self) -> int | None:
        process = self._context.process
        return process.pid if process is not None else None

    @property
    def command(self) -> tuple[str, ...]:
        return self._context.command

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def execute(
        self,
        command: Sequence[StrPath],
        *,
        cwd: StrPath | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Start the child process in the background.

        Must be called while an event loop is running. Spawn failures do not
        raise here: the run moves to FAILED and the next read reports it.

        Args:
            command: Executable followed by its arguments, no shell involved
            cwd: Working directory (None = inherit)
            env: Environment variables (None = inherit parent)

        Raises:
            TypeError: If command is a string instead of an argument list
            ValueError: If command is empty
            ExecutorBusyError: If a previous run is still RUNNING
        """
        if isinstance(command, (str, bytes)):
            raise TypeError("command must be a sequence of arguments, not a string")
        argv = tuple(os.fspath(part) for part in command)
        if not argv:
            raise ValueError("command must contain at least the executable")
        if self._context.state is RunState.RUNNING:
            raise ExecutorBusyError(self.pid)

        loop = asyncio.get_running_loop()
        ctx = _RunContext(command=argv, state=RunState.RUNNING)
        self._context = ctx
        supervisor = loop.create_task(
            self._supervise(ctx, cwd, env),
            name=f"procstream-supervisor:{argv[0]}",
        )
        self._supervisors.add(supervisor)
        supervisor.add_done_callback(self._supervisors.discard)
        logger.debug(f"Executing argv={list(argv)} cwd={cwd}")

    async def next_line(
        self,
        stream: StreamName | str = StreamName.STDOUT,
        *,
        timeout: float | None = None,
    ) -> str | EndOfStream:
        """Return the next unread line of ``stream``.

        Suspends while nothing is buffered and the process is still running.

        Args:
            stream: "stdout" or "stderr"
            timeout: Seconds to wait before giving up (None = forever)

        Returns:
            The line without its separator, or END_OF_STREAM once the run is
            over and every buffered line has been read

        Raises:
            SpawnError: The process could not be started
            StreamDecodeError: Output was not valid UTF-8 under the strict policy
            ConcurrentConsumerError: exclusive_readers is set and another
                reader is already waiting on ``stream``
            TimeoutError: ``timeout`` elapsed; the run is unaffected
        """
        stream = StreamName(stream)
        with anyio.fail_after(timeout):
            return await self._next_line(stream)

    async def iter_lines(
        self,
        stream: StreamName | str = StreamName.STDOUT,
    ) -> AsyncIterator[str]:
        """Yield lines of ``stream`` until END_OF_STREAM."""
        while True:
            line = await self.next_line(stream)
            if line is END_OF_STREAM:
                return
            yield line

    async def wait(self, *, timeout: float | None = None) -> int:
        """Wait for the current run to end and return its exit code.

        Raises:
            RuntimeError: If nothing has been executed yet
            SpawnError, StreamDecodeError: If the run FAILED
        """
        ctx = self._context
        if ctx.state is RunState.IDLE:
            raise RuntimeError("no process has been executed")

        with anyio.fail_after(timeout):
            await ctx.finished.wait()

        if ctx.state is RunState.FAILED:
            assert ctx.error is not None
            raise ctx.error
        assert ctx.exit_code is not None
        return ctx.exit_code

    async def terminate(self) -> None:
        """Stop a running child (process group), gracefully then forcefully.

        The run still ends through the normal exit path, with the
        signal-derived exit code (e.g. -15 for SIGTERM on POSIX).
        """
        ctx = self._context
        if ctx.state is not RunState.RUNNING:
            return

        await ctx.spawned.wait()
        process = ctx.process
        if process is not None and process.returncode is None:
            await self._terminate_process(process)

    async def aclose(self) -> None:
        """Terminate any running child and wait for the supervisor task.

        Shielded from cancellation so the child is never left behind.
        """
        try:
            await asyncio.shield(self._do_close())
        except asyncio.CancelledError:
            await self._do_close()
            raise

    async def __aenter__(self) -> ProcessExecutor:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def run_synchronously(
        self,
        command: Sequence[StrPath],
        *,
        cwd: StrPath | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> RunResult:
        """Blocking sibling of execute(); leaves this executor's run untouched."""
        return run_synchronously(command, cwd=cwd, env=env, timeout=timeout)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def _next_line(self, stream: StreamName) -> str | EndOfStream:
        ctx = self._context
        channel = ctx.channels[stream]

        while True:
            line = channel.buffer.read_at(channel.cursor)
            if line is not None:
                channel.cursor += 1
                return line

            if ctx.state is RunState.FAILED:
                assert ctx.error is not None
                raise ctx.error
            if ctx.state is not RunState.RUNNING:
                return END_OF_STREAM

            if self.exclusive_readers and len(channel.waiters):
                raise ConcurrentConsumerError(stream.value)

            # A wake-up only means the state may have changed
            await channel.waiters.wait()

    # ------------------------------------------------------------------
    # Run supervision
    # ------------------------------------------------------------------

    async def _supervise(
        self,
        ctx: _RunContext,
        cwd: StrPath | None,
        env: Mapping[str, str] | None,
    ) -> None:
        """Apply run events to the context until the producer is done."""
        send_stream, receive_stream = anyio.create_memory_object_stream(
            max_buffer_size=math.inf
        )
        producer = asyncio.create_task(self._produce(ctx, cwd, env, send_stream))

        try:
            async with receive_stream:
                async for event in receive_stream:
                    self._apply(ctx, event)
            await producer
        finally:
            if not producer.done():
                producer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await producer

            if ctx.state is RunState.RUNNING:
                # Producer ended without reporting an outcome (cancellation)
                error = ProcstreamError("run was cancelled before the process exited")
                self._apply(ctx, FailureEvent(error=error))

    async def _produce(
        self,
        ctx: _RunContext,
        cwd: StrPath | None,
        env: Mapping[str, str] | None,
        send_stream: MemoryObjectSendStream[ProcessEvent],
    ) -> None:
        """Spawn the child, pump both streams, then report the exit."""
        async with send_stream:
            try:
                process = await asyncio.create_subprocess_exec(
                    *ctx.command,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    **self._build_subprocess_kwargs(cwd, env),
                )
                ctx.process = process
            except (OSError, ValueError) as e:
                await send_stream.send(FailureEvent(error=SpawnError(ctx.command, e)))
                return
            finally:
                ctx.spawned.set()

            logger.debug(
                f"Started subprocess pid={process.pid} "
                f"argv={ctx.command[0]} cwd={cwd}"
            )

            pumps = [
                asyncio.create_task(self._pump(process, name, send_stream))
                for name in StreamName
            ]
            try:
                completed = await asyncio.gather(*pumps)
                if not all(completed):
                    return

                returncode = await process.wait()
                logger.debug(
                    f"Subprocess completed pid={process.pid} "
                    f"returncode={returncode}"
                )
                await send_stream.send(ExitEvent(exit_code=returncode))

            except Exception as e:
                logger.debug(f"Stream capture failed pid={process.pid}: {e}")
                await send_stream.send(FailureEvent(error=e))

            finally:
                for task in pumps:
                    task.cancel()
                if process.returncode is None:
                    await asyncio.shield(self._terminate_process(process))

    async def _pump(
        self,
        process: asyncio.subprocess.Process,
        stream: StreamName,
        send_stream: MemoryObjectSendStream[ProcessEvent],
    ) -> bool:
        """Read one pipe to EOF, forwarding decoded chunks.

        Returns:
            False if decoding failed under the strict policy
        """
        reader = process.stdout if stream is StreamName.STDOUT else process.stderr
        if reader is None:
            return True

        decoder = codecs.getincrementaldecoder("utf-8")(errors=self.decode_errors.value)
        while True:
            data = await reader.read(self.read_size)
            final = not data
            try:
                text = decoder.decode(data, final=final)
            except UnicodeDecodeError as e:
                valid = e.object[:e.start].decode("utf-8")
                if valid:
                    await send_stream.send(ChunkEvent(stream=stream, text=valid))
                await send_stream.send(
                    FailureEvent(error=StreamDecodeError(stream.value, e))
                )
                # Stop the child so the other pipe reaches EOF
                await self._terminate_process(process)
                return False

            if text:
                await send_stream.send(ChunkEvent(stream=stream, text=text))
            if final:
                return True

    def _apply(self, ctx: _RunContext, event: ProcessEvent) -> None:
        """Apply one event; no-op once the run has left RUNNING."""
        if ctx.state is not RunState.RUNNING:
            return

        if event.kind is EventKind.CHUNK:
            channel = ctx.channels[event.stream]
            channel.buffer.append_chunk(event.text)
            channel.waiters.wake_all()

        elif event.kind is EventKind.EXIT:
            if self.emit_partial_on_exit:
                for channel in ctx.channels.values():
                    channel.buffer.flush_partial()
            ctx.exit_code = event.exit_code
            self._finish(ctx, RunState.TERMINATED)
            logger.debug(
                f"Run finished argv={ctx.command[0]} exit_code={event.exit_code} "
                f"elapsed={event.timestamp - ctx.started_at:.3f}s"
            )

        elif event.kind is EventKind.FAILURE:
            ctx.error = event.error
            observed = ctx.waiter_count()
            self._finish(ctx, RunState.FAILED)
            if observed:
                logger.debug(f"Run failed argv={ctx.command[0]}: {event.error}")
            else:
                logger.error(
                    f"Run failed with no reader waiting argv={ctx.command[0]}: "
                    f"{type(event.error).__name__}: {event.error}"
                )

    def _finish(self, ctx: _RunContext, state: RunState) -> None:
        ctx.state = state
        ctx.finished.set()
        for channel in ctx.channels.values():
            channel.waiters.wake_all()

    async def _do_close(self) -> None:
        await self.terminate()
        pending = [task for task in self._supervisors if not task.done()]
        if pending:
            await asyncio.gather(*pending)

    # ------------------------------------------------------------------
    # Platform helpers
    # ------------------------------------------------------------------

    def _build_subprocess_kwargs(
        self,
        cwd: StrPath | None,
        env: Mapping[str, str] | None,
    ) -> dict[str, Any]:
        """Build platform-specific kwargs for asyncio.create_subprocess_exec."""
        kwargs: dict[str, Any] = {}

        if cwd is not None:
            kwargs["cwd"] = Path(cwd)
        if env is not None:
            kwargs["env"] = dict(env)

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        return kwargs

    async def _terminate_process(self, process: asyncio.subprocess.Process) -> None:
        """Terminate subprocess gracefully, then forcefully if needed.

        1. SIGTERM to the process group (CTRL_BREAK_EVENT on Windows)
        2. Wait up to term_timeout
        3. SIGKILL to the process group (kill() on Windows)
        4. Wait up to kill_timeout
        """
        pid = process.pid
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            if IS_WINDOWS:
                self._windows_terminate(process)
            else:
                self._posix_signal(process, signal.SIGTERM)

            try:
                await asyncio.wait_for(process.wait(), timeout=self.term_timeout)
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={process.returncode}"
                )
                return
            except asyncio.TimeoutError:
                pass

            logger.debug(f"Force killing subprocess pid={pid}")
            if IS_WINDOWS:
                process.kill()
            else:
                self._posix_signal(process, signal.SIGKILL)

            try:
                await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
                logger.debug(
                    f"Subprocess killed pid={pid} "
                    f"returncode={process.returncode}"
                )
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except OSError as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    def _posix_signal(self, process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
        """Send ``sig`` to the child's process group, or to the child alone."""
        try:
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, sig)
            logger.debug(f"Sent {sig.name} to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to send_signal: {e}")
            process.send_signal(sig)

    def _windows_terminate(self, process: asyncio.subprocess.Process) -> None:
        """Send CTRL_BREAK_EVENT to the child's process group."""
        try:
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
        except OSError as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            process.terminate()


def _decode_output(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")


def run_captured(
    command: Sequence[StrPath],
    *,
    cwd: StrPath | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> tuple[RunOutcome, RunResult]:
    """Run a command to completion and report how it ended.

    Same capture as run_synchronously(), plus the outcome that tells a launch
    failure, a timeout and a child killed by signal 1 apart (all three carry
    exit code -1 in the result tuple).

    Returns:
        (outcome, RunResult(success, exit_code, stdout, stderr))
    """
    if isinstance(command, (str, bytes)):
        logger.error(f"Command must be an argument list, got a string: {command!r}")
        return RunOutcome.LAUNCH_FAILED, RunResult(False, -1, "", "")

    argv = [os.fspath(part) for part in command]
    if not argv:
        logger.error("run_synchronously called with an empty command")
        return RunOutcome.LAUNCH_FAILED, RunResult(False, -1, "", "")

    try:
        completed = subprocess.run(
            argv,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        logger.warning(f"Command timed out after {timeout}s argv={argv[0]}")
        return RunOutcome.TIMED_OUT, RunResult(
            False, -1, _decode_output(e.stdout), _decode_output(e.stderr)
        )
    except (OSError, ValueError) as e:
        logger.error(f"Failed to launch argv={argv[0]}: {e}")
        return RunOutcome.LAUNCH_FAILED, RunResult(False, -1, "", "")

    logger.debug(f"Command completed argv={argv[0]} returncode={completed.returncode}")
    return RunOutcome.EXITED, RunResult(
        completed.returncode == 0,
        completed.returncode,
        _decode_output(completed.stdout),
        _decode_output(completed.stderr),
    )


def run_synchronously(
    command: Sequence[StrPath],
    *,
    cwd: StrPath | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> RunResult:
    """Run a command to completion and capture everything it printed.

    Blocks the calling thread. Never raises: a launch failure returns
    RunResult(False, -1, "", ""), a timeout kills the child and returns
    whatever was captured with exit code -1.

    Args:
        command: Executable followed by its arguments, no shell involved
        cwd: Working directory (None = inherit)
        env: Environment variables (None = inherit parent)
        timeout: Seconds before the child is killed (None = no limit)

    Returns:
        RunResult(success, exit_code, stdout, stderr)
    """
    _, result = run_captured(command, cwd=cwd, env=env, timeout=timeout)
    return result
