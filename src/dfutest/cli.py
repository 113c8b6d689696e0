"""
Command-line interface for dfutest.

Runs dfu-programmer by hand under the same device lock the test suite uses,
and inspects or clears that lock.

Examples:
    dfutest run -- reset                  # targeted: dfu-programmer atmega8u2 reset
    dfutest run --untargeted -- --help    # dfu-programmer --help
    dfutest lock status                   # who holds the device lock
    dfutest lock clear                    # remove a stale or corrupt lock record
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass, field
from typing import Callable, Optional, TextIO

from . import __version__
from .dfu import PROGRAM_NAME, is_no_device, run_dfu, run_dfu_targeted
from .errors import LockError, ProcessError
from .output import ProgressReporter
from .paths import DEFAULT_LOCK_DOMAIN, get_dfu_binary, get_target
from .resource_lock import ResourceLock

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(funcName)s:%(lineno)d] - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Attribute set on the handler setup_logging() installs, so repeat calls reuse it
CONSOLE_HANDLER_MARK = "_dfutest_console"


@dataclass
class RunArgs:
    """Arguments for the run command."""

    tool_args: list[str] = field(default_factory=list)
    untargeted: bool = False
    lock: bool = True
    domain: str = DEFAULT_LOCK_DOMAIN
    verbose: bool = False


@dataclass
class LockArgs:
    """Arguments for the lock command."""

    action: str
    domain: str = DEFAULT_LOCK_DOMAIN


def setup_logging(verbose: bool = False) -> None:
    """Send library logging to stderr. Safe to call more than once."""
    logger = logging.getLogger()
    level = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(level)

    for handler in logger.handlers:
        if getattr(handler, CONSOLE_HANDLER_MARK, False):
            handler.setLevel(level)
            return

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    setattr(console_handler, CONSOLE_HANDLER_MARK, True)
    logger.addHandler(console_handler)


def _echo(stream: TextIO) -> Callable[[str], None]:
    def write(chunk: str) -> None:
        stream.write(chunk)
        stream.flush()

    return write


async def _run_tool(args: RunArgs, progress: ProgressReporter) -> int:
    handle = None
    if args.lock:
        lock = ResourceLock.for_domain(args.domain)
        with progress.step("Acquiring device lock"):
            progress.detail(f"Lock: {lock.path}")
            handle = await lock.acquire()

    try:
        res = run_dfu(args.tool_args) if args.untargeted else run_dfu_targeted(args.tool_args)
        progress.line(f"Running: {PROGRAM_NAME} {' '.join(res.args)}")
        progress.detail(f"Binary: {res.executable}", verbose_only=True)
        res.on_stdout(_echo(sys.stdout))
        res.on_stderr(_echo(sys.stderr))
        code = await res.exit_code
    finally:
        if handle is not None:
            await handle.release()

    if is_no_device(res):
        progress.warning(f"No device present (target: {get_target()})")
    progress.line(f"{PROGRAM_NAME} exited with code {code}")
    return code


def run_command(args: RunArgs) -> int:
    """Run dfu-programmer under the device lock and return its exit code.

    Harness progress goes to stderr; stdout carries only the tool's stdout.
    """
    progress = ProgressReporter(verbose=args.verbose)
    try:
        return asyncio.run(_run_tool(args, progress))
    except ProcessError as e:
        progress.error(str(e))
        if not get_dfu_binary().exists():
            progress.detail(f"Set DFU to the dfu-programmer binary (looked in {get_dfu_binary()})")
        return 1
    except LockError as e:
        progress.error(str(e))
        return 1
    except KeyboardInterrupt:
        progress.warning("Interrupted by user")
        return 130


def lock_command(args: LockArgs) -> int:
    """Show or clear the device lock record."""
    lock = ResourceLock.for_domain(args.domain)

    if args.action == "clear":
        if lock.clear_stale():
            print(f"Removed lock record: {lock.path}")
            return 0
        status = lock.status()
        if status.is_held:
            print(f"Lock is held by live process {status.holder_pid}, not removing it")
            return 1
        print(f"Nothing to clear: {lock.path}")
        return 0

    status = lock.status()
    print(f"Lock: {status.path}")
    if not status.exists:
        print("  State: FREE")
    elif status.is_corrupt:
        print("  State: CORRUPT (use 'dfutest lock clear' to remove it)")
    elif status.is_stale:
        print(f"  State: STALE (pid {status.holder_pid} is not running)")
    else:
        print(f"  State: HELD by pid {status.holder_pid}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dfutest",
        description="dfutest - dfu-programmer integration test harness",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"dfutest {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Run command
    run_parser = subparsers.add_parser(
        "run",
        help="Run dfu-programmer while holding the device lock",
    )
    run_parser.add_argument(
        "--untargeted",
        action="store_true",
        help="Do not prepend the target device (TARGET) to the arguments",
    )
    run_parser.add_argument(
        "--no-lock",
        dest="lock",
        action="store_false",
        help="Run without acquiring the device lock",
    )
    run_parser.add_argument(
        "--domain",
        default=DEFAULT_LOCK_DOMAIN,
        help=f"Lock domain (default: {DEFAULT_LOCK_DOMAIN})",
    )
    run_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )
    run_parser.add_argument(
        "tool_args",
        nargs=argparse.REMAINDER,
        help="Arguments passed to dfu-programmer (after --)",
    )

    # Lock command
    lock_parser = subparsers.add_parser(
        "lock",
        help="Inspect or clear the device lock",
    )
    lock_parser.add_argument(
        "action",
        choices=["status", "clear"],
        help="status: show the lock holder; clear: remove a stale or corrupt record",
    )
    lock_parser.add_argument(
        "--domain",
        default=DEFAULT_LOCK_DOMAIN,
        help=f"Lock domain (default: {DEFAULT_LOCK_DOMAIN})",
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """dfutest entry point. Returns the process exit code."""
    parser = build_parser()
    parsed_args = parser.parse_args(argv)

    if not parsed_args.command:
        parser.print_help()
        return 0

    if parsed_args.command == "run":
        tool_args = list(parsed_args.tool_args)
        if tool_args and tool_args[0] == "--":
            tool_args = tool_args[1:]
        setup_logging(parsed_args.verbose)
        return run_command(
            RunArgs(
                tool_args=tool_args,
                untargeted=parsed_args.untargeted,
                lock=parsed_args.lock,
                domain=parsed_args.domain,
                verbose=parsed_args.verbose,
            )
        )

    return lock_command(LockArgs(action=parsed_args.action, domain=parsed_args.domain))


if __name__ == "__main__":
    sys.exit(main())
