"""dfutest - integration test harness for dfu-programmer.

Two building blocks shared by every test:
- ProcessRunner: spawn a binary, accumulate its streams, resolve its exit code
- ResourceLock: crash-safe file lock serializing access to the one test device

Example:
    >>> import asyncio
    >>> from dfutest import ResourceLock, run_dfu_targeted
    >>>
    >>> async def main():
    ...     async with ResourceLock.for_domain().hold():
    ...         res = run_dfu_targeted(["reset"])
    ...         print(await res.exit_code, res.stderr)
    >>>
    >>> asyncio.run(main())
"""

__version__ = "0.1.0"

from dfutest.dfu import NO_DEVICE_MESSAGE, DfuExitCode, is_no_device, run_dfu, run_dfu_targeted, settle
from dfutest.errors import (
    DfuTestError,
    LaunchFailure,
    LockCleanupFailure,
    LockCorruption,
    LockError,
    LockWaitCancelled,
    MissingDependency,
    ProcessError,
    SignalTermination,
    SubscriberError,
)
from dfutest.liveness import PidProbe, PsutilProbe, SignalProbe, default_probe
from dfutest.process_runner import ProcessRunner, RunResult, run
from dfutest.resource_lock import LockHandle, LockStatus, ResourceLock, get_lock

__all__ = [
    "NO_DEVICE_MESSAGE",
    "DfuExitCode",
    "DfuTestError",
    "LaunchFailure",
    "LockCleanupFailure",
    "LockCorruption",
    "LockError",
    "LockHandle",
    "LockStatus",
    "LockWaitCancelled",
    "MissingDependency",
    "PidProbe",
    "ProcessError",
    "ProcessRunner",
    "PsutilProbe",
    "ResourceLock",
    "RunResult",
    "SignalProbe",
    "SignalTermination",
    "SubscriberError",
    "default_probe",
    "get_lock",
    "is_no_device",
    "run",
    "run_dfu",
    "run_dfu_targeted",
    "settle",
]
