"""Asyncio subprocess runner used by every harness test.

ProcessRunner.run() spawns a binary directly (no shell, no PATH search) and
returns a RunResult straight away. The spawn, the stream draining and the
exit status all happen in a background task on the running event loop.

A RunResult separates two things:
- accumulation: stdout/stderr text is always buffered, from spawn to EOF
- completion: exit_code is a future resolved exactly once

Tests that only care about the final output await the exit code and then
read the accumulators. Tests that need to react mid-run subscribe to a
stream with on_stdout()/on_stderr().

Example:
    >>> async def check_usage():
    ...     res = run("/usr/local/bin/dfu-programmer", [])
    ...     assert await res.exit_code == 2
    ...     assert res.stdout == ""
"""

import asyncio
import codecs
import logging
import os
import sys
from collections.abc import Mapping, Sequence
from typing import Callable, Optional

from .errors import LaunchFailure, MissingDependency, SignalTermination, SubscriberError
from .subprocess_utils import get_missing_dependency_codes, signal_name, spawn_kwargs

logger = logging.getLogger(__name__)

StreamCallback = Callable[[str], None]
Unsubscribe = Callable[[], None]

# Upper bound for a single read; the pipe delivers whatever is available up to this
CHUNK_SIZE = 64 * 1024

# Strong references to supervisor tasks so they are not garbage collected mid-run
_background_tasks: set[asyncio.Task[None]] = set()


class StreamAccumulator:
    """Always-on buffer for one output stream plus its subscribers.

    Chunks are decoded incrementally as UTF-8 so a multi-byte character split
    across two reads is still decoded correctly.
    """

    def __init__(self, name: str):
        self.name = name
        self._chunks: list[str] = []
        self._subscribers: dict[int, StreamCallback] = {}
        self._next_handle = 0
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.closed = False
        self.error: Optional[SubscriberError] = None

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: StreamCallback) -> Unsubscribe:
        """Register a callback for every inbound chunk.

        Returns:
            Function that removes exactly this registration
        """
        handle = self._next_handle
        self._next_handle += 1
        self._subscribers[handle] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(handle, None)

        return unsubscribe

    def feed(self, data: bytes, final: bool = False) -> None:
        """Accumulate a raw chunk and hand the decoded text to subscribers."""
        if self.closed:
            raise RuntimeError(f"{self.name} is closed")
        text = self._decoder.decode(data, final=final)
        if final:
            self.closed = True
        if not text:
            return

        self._chunks.append(text)
        for callback in list(self._subscribers.values()):
            try:
                callback(text)
            except KeyboardInterrupt:
                raise
            except Exception as e:
                logger.warning(f"{self.name} subscriber {callback!r} raised: {e}")
                if self.error is None:
                    self.error = SubscriberError(callback, e)


class RunResult:
    """Outcome of one subprocess launch.

    Attributes:
        executable: Path that was launched
        args: Argument vector passed to the child
        exit_code: Future resolving to the exit code, or failing with a ProcessError
        spawned: Future resolving to the process handle, or None if launch failed
        process: The asyncio process handle once spawned, None before
    """

    def __init__(self, executable: str, args: Sequence[str], loop: asyncio.AbstractEventLoop):
        self.executable = executable
        self.args = tuple(args)
        self.exit_code: asyncio.Future[int] = loop.create_future()
        self.spawned: asyncio.Future[Optional[asyncio.subprocess.Process]] = loop.create_future()
        self.process: Optional[asyncio.subprocess.Process] = None
        self._stdout = StreamAccumulator("stdout")
        self._stderr = StreamAccumulator("stderr")

    @property
    def stdout(self) -> str:
        """All stdout text received so far."""
        return self._stdout.text

    @property
    def stderr(self) -> str:
        """All stderr text received so far."""
        return self._stderr.text

    @property
    def done(self) -> bool:
        """Whether the completion signal has resolved."""
        return self.exit_code.done()

    def on_stdout(self, callback: StreamCallback) -> Unsubscribe:
        """Get notified with each stdout chunk. Returns an unsubscribe function."""
        return self._stdout.subscribe(callback)

    def on_stderr(self, callback: StreamCallback) -> Unsubscribe:
        """Get notified with each stderr chunk. Returns an unsubscribe function."""
        return self._stderr.subscribe(callback)

    def __await__(self):
        return self.exit_code.__await__()

    def __repr__(self) -> str:
        state = "running"
        if self.exit_code.cancelled():
            state = "cancelled"
        elif self.done:
            error = self.exit_code.exception()
            state = f"failed: {error}" if error else f"exit {self.exit_code.result()}"
        return f"RunResult({self.executable!r}, args={list(self.args)!r}, {state})"

    def _fail(self, error: BaseException) -> None:
        if not self.spawned.done():
            self.spawned.set_result(None)
        if not self.exit_code.done():
            self.exit_code.set_exception(error)

    def _resolve(self, code: int) -> None:
        if not self.exit_code.done():
            self.exit_code.set_result(code)


class ProcessRunner:
    """Spawns binaries and tracks their output on the running event loop.

    Args:
        missing_dependency_codes: Exit codes that mean a shared library could
            not be loaded, mapped to the message to raise. Defaults to the
            table for the current platform.
        chunk_size: Maximum bytes per read from each pipe
    """

    def __init__(
        self,
        missing_dependency_codes: Optional[Mapping[int, str]] = None,
        chunk_size: int = CHUNK_SIZE,
    ):
        if missing_dependency_codes is None:
            missing_dependency_codes = get_missing_dependency_codes()
        self.missing_dependency_codes = dict(missing_dependency_codes)
        self.chunk_size = chunk_size

    def run(self, executable: str | os.PathLike[str], args: Sequence[str] = ()) -> RunResult:
        """Launch a binary and return its RunResult immediately.

        Must be called from a coroutine (or callback) on a running event loop.

        Args:
            executable: Absolute path of the binary. PATH is not searched.
            args: Arguments for the child. No shell expansion.

        Returns:
            RunResult whose exit_code future completes when the child is done

        Raises:
            RuntimeError: If there is no running event loop
        """
        loop = asyncio.get_running_loop()
        executable = os.fspath(executable)
        result = RunResult(executable, args, loop)

        if not os.path.isabs(executable):
            result._fail(LaunchFailure(executable, reason="executable path must be absolute"))
            return result

        task = loop.create_task(self._supervise(result))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        return result

    async def _supervise(self, result: RunResult) -> None:
        try:
            try:
                process = await asyncio.create_subprocess_exec(result.executable, *result.args, **spawn_kwargs())
            except OSError as e:
                logger.debug(f"Failed to spawn {result.executable}: {e}")
                result._fail(LaunchFailure(result.executable, e))
                return

            result.process = process
            result.spawned.set_result(process)
            logger.debug(f"Spawned pid {process.pid}: {result.executable} {' '.join(result.args)}")

            assert process.stdout is not None
            assert process.stderr is not None
            await asyncio.gather(
                self._drain(process.stdout, result._stdout),
                self._drain(process.stderr, result._stderr),
            )
            returncode = await process.wait()
            logger.debug(f"Process {process.pid} closed with return code {returncode}")
            self._complete(result, returncode)
        except asyncio.CancelledError:
            if not result.exit_code.done():
                result.exit_code.cancel()
            if not result.spawned.done():
                result.spawned.cancel()
            raise
        except Exception as e:
            logger.error(f"Supervisor for {result.executable} failed: {e}", exc_info=True)
            result._fail(e)

    async def _drain(self, stream: asyncio.StreamReader, accumulator: StreamAccumulator) -> None:
        while True:
            data = await stream.read(self.chunk_size)
            if not data:
                break
            accumulator.feed(data)
        accumulator.feed(b"", final=True)

    def _complete(self, result: RunResult, returncode: int) -> None:
        if returncode < 0 and sys.platform != "win32":
            result._fail(SignalTermination(signal_name(-returncode)))
            return

        # Windows reports NTSTATUS codes as unsigned 32-bit values
        code = returncode & 0xFFFFFFFF if returncode < 0 else returncode
        message = self.missing_dependency_codes.get(code)
        if message is not None:
            result._fail(MissingDependency(code, message))
            return

        subscriber_error = result._stdout.error or result._stderr.error
        if subscriber_error is not None:
            result._fail(subscriber_error)
            return

        result._resolve(returncode)


_default_runner: Optional[ProcessRunner] = None


def get_runner() -> ProcessRunner:
    """Get the shared ProcessRunner with the platform defaults."""
    global _default_runner
    if _default_runner is None:
        _default_runner = ProcessRunner()
    return _default_runner


def run(executable: str | os.PathLike[str], args: Sequence[str] = ()) -> RunResult:
    """Launch a binary with the shared runner. See ProcessRunner.run()."""
    return get_runner().run(executable, args)
