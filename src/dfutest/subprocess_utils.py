"""Subprocess utilities for platform-safe process execution.

This module builds the keyword arguments handed to
asyncio.create_subprocess_exec so every child is spawned the same way:
no console window flashing on Windows and no inherited stdin.
"""

import asyncio
import signal
import subprocess
import sys
from typing import Any

# Windows NTSTATUS exit codes that mean the loader could not start the program.
# STATUS_DLL_NOT_FOUND is what dfu-programmer.exe reports when libusb is absent.
STATUS_DLL_NOT_FOUND = 0xC0000135

DEFAULT_MISSING_DEPENDENCY_CODES: dict[str, dict[int, str]] = {
    "win32": {
        STATUS_DLL_NOT_FOUND: "DLL_NOT_FOUND. libusb-1.0.dll is probably missing.",
    },
}


def get_subprocess_creation_flags() -> int:
    """Get platform-specific subprocess creation flags.

    Returns:
        - Windows: subprocess.CREATE_NO_WINDOW (prevents console window)
        - Other platforms: 0 (no special flags)
    """
    if sys.platform == "win32":
        return subprocess.CREATE_NO_WINDOW
    return 0


def get_missing_dependency_codes() -> dict[int, str]:
    """Get the missing-dependency exit code table for the current platform."""
    return dict(DEFAULT_MISSING_DEPENDENCY_CODES.get(sys.platform, {}))


def spawn_kwargs(**kwargs: Any) -> dict[str, Any]:
    """Build keyword arguments for asyncio.create_subprocess_exec.

    Automatically applies:
    - CREATE_NO_WINDOW on Windows (prevents console window)
    - stdin=DEVNULL (prevents console input handle inheritance)
    - stdout/stderr=PIPE so both streams can be drained

    Note:
        - If 'creationflags' is explicitly provided in kwargs,
          it will be OR'd with platform defaults to preserve custom flags.
        - Explicit 'stdin', 'stdout' or 'stderr' values are used as-is.
    """
    default_flags = get_subprocess_creation_flags()

    if "creationflags" in kwargs:
        kwargs["creationflags"] = kwargs["creationflags"] | default_flags
    elif default_flags:
        kwargs["creationflags"] = default_flags

    kwargs.setdefault("stdin", asyncio.subprocess.DEVNULL)
    kwargs.setdefault("stdout", asyncio.subprocess.PIPE)
    kwargs.setdefault("stderr", asyncio.subprocess.PIPE)
    return kwargs


def signal_name(signum: int) -> str:
    """Return the symbolic name of a signal number (e.g. 'SIGTERM')."""
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"
