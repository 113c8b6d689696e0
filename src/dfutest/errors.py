"""Exception hierarchy for the dfutest harness.

Process-level failures always reach the caller through the completion
signal of a RunResult, so a test can tell "the tool ran and reported an
error" apart from "the tool could not run at all".

Lock failures that are expected (corrupt or abandoned records) are handled
inside the acquisition loop. LockCorruption and LockCleanupFailure exist so
that loop can raise and catch something specific; they never escape it.
"""

from pathlib import Path
from typing import Any, Callable


class DfuTestError(Exception):
    """Base class for every error raised by dfutest."""

    pass


class ProcessError(DfuTestError):
    """Raised when a child process could not produce a usable exit code."""

    pass


class LaunchFailure(ProcessError):
    """Raised when the OS refused to start the process."""

    def __init__(self, executable: str, error: OSError | None = None, reason: str | None = None):
        self.executable = executable
        self.error = error
        detail = reason or (error.strerror if error is not None and error.strerror else str(error))
        super().__init__(f"Failed to launch {executable}: {detail}")


class SignalTermination(ProcessError):
    """Raised when the process was killed by a signal before exiting."""

    def __init__(self, signal_name: str):
        self.signal_name = signal_name
        super().__init__(f"Closed because of a signal: {signal_name}")


class MissingDependency(ProcessError):
    """Raised when the exit code is a platform code for a missing shared library."""

    def __init__(self, code: int, message: str):
        self.code = code
        super().__init__(message)


class SubscriberError(ProcessError):
    """Raised when a stream subscriber callback raised an exception."""

    def __init__(self, callback: Callable[..., Any], error: Exception):
        self.callback = callback
        self.error = error
        name = getattr(callback, "__name__", repr(callback))
        super().__init__(f"Stream subscriber {name} failed: {error}")


class LockError(DfuTestError):
    """Base class for lock protocol errors."""

    pass


class LockCorruption(LockError):
    """Raised when a lock record does not hold a process identifier."""

    def __init__(self, path: Path, content: str):
        self.path = path
        self.content = content
        super().__init__(f"Corrupt lock record {path}: {content!r}")


class LockCleanupFailure(LockError):
    """Raised when a lock record could not be deleted."""

    def __init__(self, path: Path, error: OSError):
        self.path = path
        self.error = error
        super().__init__(f"Failed to remove lock file {path}: {error}")


class LockWaitCancelled(LockError):
    """Raised when the caller gave up waiting for a lock."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Gave up waiting for lock {path}")
