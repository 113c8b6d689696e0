"""Process liveness probes.

The lock protocol only needs one question answered: does a process with
this PID exist right now? That question is answered differently per
platform, so it sits behind the PidProbe interface and the lock never
touches os.kill or psutil directly.
"""

import errno
import os
import sys
from typing import Protocol

import psutil


class PidProbe(Protocol):
    """Answers whether a process identifier belongs to a live process."""

    def is_alive(self, pid: int) -> bool: ...


class SignalProbe:
    """POSIX probe that delivers signal 0, which checks the PID without side effects.

    Returns True on success and False when the OS reports no such process.
    Any other error (for example EPERM) propagates to the caller.
    """

    def is_alive(self, pid: int) -> bool:
        if pid <= 0:
            # 0 and negative values address process groups, not a single process
            return False
        try:
            os.kill(pid, 0)
        except OSError as e:
            if e.errno == errno.ESRCH:
                return False
            raise
        return True


class PsutilProbe:
    """Probe backed by psutil.pid_exists.

    Used on Windows, where os.kill() terminates the target instead of probing it.
    """

    def is_alive(self, pid: int) -> bool:
        if pid <= 0:
            return False
        return psutil.pid_exists(pid)


def default_probe() -> PidProbe:
    """Get the liveness probe for the current platform."""
    if sys.platform == "win32":
        return PsutilProbe()
    return SignalProbe()
