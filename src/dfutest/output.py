"""
Progress lines for the dfutest CLI.

Everything the harness says about itself goes to stderr, prefixed with the
time since the reporter was created (MM:SS.cc). stdout is left to the tool,
so ``dfutest run -- read > fw.hex`` captures only what dfu-programmer wrote.

Example (stderr):
    00:00.01 Acquiring device lock...
    00:00.01       Lock: /tmp/dfu-programmer-test.lock
    00:03.02       Done (3.01s)
    00:03.02 Running: dfu-programmer atmega8u2 reset
    00:03.35 dfu-programmer exited with code 0
"""

import sys
import time
from contextlib import contextmanager
from typing import Iterator, Optional, TextIO

DETAIL_INDENT = 6


class ProgressReporter:
    """Timestamped harness progress for one CLI invocation.

    Args:
        stream: Where to write. Defaults to whatever sys.stderr is at write time.
        verbose: Whether verbose-only lines are shown
    """

    def __init__(self, stream: Optional[TextIO] = None, verbose: bool = False):
        self._stream = stream
        self.verbose = verbose
        self.started = time.monotonic()

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stderr

    def timestamp(self) -> str:
        minutes, seconds = divmod(time.monotonic() - self.started, 60)
        return f"{int(minutes):02d}:{seconds:05.2f}"

    def line(self, message: str, verbose_only: bool = False) -> None:
        if verbose_only and not self.verbose:
            return
        self.stream.write(f"{self.timestamp()} {message}\n")
        self.stream.flush()

    def detail(self, message: str, verbose_only: bool = False) -> None:
        self.line(f"{' ' * DETAIL_INDENT}{message}", verbose_only)

    def warning(self, message: str) -> None:
        self.line(f"WARNING: {message}")

    def error(self, message: str) -> None:
        self.line(f"ERROR: {message}")

    @contextmanager
    def step(self, operation: str) -> Iterator["ProgressReporter"]:
        """Announce an operation and report how long it took.

        Nothing is reported on failure; the caller reports the error itself.
        """
        began = time.monotonic()
        self.line(f"{operation}...")
        yield self
        self.detail(f"Done ({time.monotonic() - began:.2f}s)")
