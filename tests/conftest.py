"""Pytest configuration and fixtures for dfutest tests.

Hardware tests talk to a real target over USB and are skipped unless pytest
is started with ``--hardware``. Every hardware test holds the device lock for
its whole duration, so parallel runs of the suite never touch the device at
the same time.

This conftest also addresses Python 3.13 compatibility issues with pytest's capture fixtures.
Python 3.13 changed how stdout/stderr are handled, causing "I/O operation on closed file"
errors during test teardown. This is a known issue: https://github.com/pytest-dev/pytest/issues/11439
"""

import asyncio
import os
import sys
from pathlib import Path
from typing import Any, Generator

import pytest

from dfutest.paths import get_dfu_binary
from dfutest.resource_lock import LockHandle, get_lock


def pytest_addoption(parser: Any) -> None:
    parser.addoption(
        "--hardware",
        action="store_true",
        default=False,
        help="Run tests that need a dfu-programmer target attached over USB",
    )


def pytest_collection_modifyitems(config: Any, items: list[Any]) -> None:
    """Skip hardware tests unless --hardware was given."""
    if config.getoption("--hardware"):
        return
    skip_hardware = pytest.mark.skip(reason="needs --hardware and an attached target")
    for item in items:
        if "hardware" in item.keywords:
            item.add_marker(skip_hardware)


@pytest.fixture(scope="session")
def dfu_binary() -> Path:
    """Path of the dfu-programmer binary under test. Skips if it is not built."""
    binary = get_dfu_binary()
    if not binary.is_file() or not os.access(binary, os.X_OK):
        pytest.skip(f"dfu-programmer binary not found at {binary} (set DFU to override)")
    return binary


@pytest.fixture
def device_lock(dfu_binary: Path) -> Generator[LockHandle, None, None]:
    """Hold the shared device lock for the duration of a test."""
    handle = asyncio.run(get_lock())
    try:
        yield handle
    finally:
        asyncio.run(handle.release())


@pytest.fixture
def lock_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point lock records at a private directory."""
    directory = tmp_path / "locks"
    directory.mkdir()
    monkeypatch.setenv("DFUTEST_LOCK_DIR", str(directory))
    return directory


@pytest.fixture(autouse=True)
def _restore_stdio():  # noqa: PT004
    """Ensure stdout/stderr are always restored after each test.

    This prevents "I/O operation on closed file" errors in Python 3.13
    when tests raise exceptions that close stdout/stderr.
    """
    yield

    # Restore if they were closed during the test
    if sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if sys.stderr.closed:
        sys.stderr = sys.__stderr__
