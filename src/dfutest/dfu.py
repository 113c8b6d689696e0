"""dfu-programmer invocation helpers.

Thin wrappers that run the configured dfu-programmer binary through the
process runner, plus the exit codes and messages tests assert on.
"""

import asyncio
from collections.abc import Sequence
from enum import IntEnum

from .paths import get_dfu_binary, get_target
from .process_runner import RunResult, run

PROGRAM_NAME = "dfu-programmer"

# Printed on stderr when the target is not attached
NO_DEVICE_MESSAGE = f"{PROGRAM_NAME}: no device present.\n"

# Pause between hardware commands so the device can re-enumerate
SETTLE_DELAY = 0.4


class DfuExitCode(IntEnum):
    """Exit codes reported by dfu-programmer."""

    SUCCESS = 0
    UNSPECIFIED_ERROR = 1
    ARGUMENT_ERROR = 2
    DEVICE_ACCESS_ERROR = 3


def run_dfu(args: Sequence[str] = ()) -> RunResult:
    """Run the dfu-programmer binary with custom arguments."""
    return run(get_dfu_binary(), list(args))


def run_dfu_targeted(args: Sequence[str] = ()) -> RunResult:
    """Run the dfu-programmer binary with the configured target prepended."""
    return run_dfu([get_target(), *args])


def is_no_device(result: RunResult) -> bool:
    """Whether a finished run failed only because no device is attached."""
    if not result.done or result.exit_code.cancelled() or result.exit_code.exception() is not None:
        return False
    return result.exit_code.result() == DfuExitCode.DEVICE_ACCESS_ERROR and result.stderr == NO_DEVICE_MESSAGE


async def settle(delay: float = SETTLE_DELAY) -> None:
    await asyncio.sleep(delay)
