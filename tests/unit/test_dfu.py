"""Tests for the dfu-programmer helpers.

The DFU binary is pointed at the Python interpreter so the helpers can be
exercised without a real dfu-programmer build.
"""

import asyncio
import sys
import time

import pytest

from dfutest.dfu import NO_DEVICE_MESSAGE, DfuExitCode, is_no_device, run_dfu, run_dfu_targeted, settle


def _run(coro):
    """Helper to run an async coroutine in a new event loop."""
    return asyncio.run(coro)


@pytest.fixture
def python_as_dfu(monkeypatch):
    monkeypatch.setenv("DFU", sys.executable)


def test_run_dfu_uses_configured_binary(python_as_dfu):
    async def main():
        res = run_dfu(["-c", "import sys; sys.stderr.write('usage'); sys.exit(2)"])
        return await res.exit_code, res

    code, res = _run(main())
    assert code == DfuExitCode.ARGUMENT_ERROR
    assert res.executable == sys.executable
    assert res.stderr == "usage"


def test_run_dfu_targeted_prepends_target(python_as_dfu, monkeypatch):
    # With TARGET="-c" the target slot becomes Python's -c flag
    monkeypatch.setenv("TARGET", "-c")

    async def main():
        res = run_dfu_targeted(["print('launched')"])
        return await res.exit_code, res

    code, res = _run(main())
    assert code == DfuExitCode.SUCCESS
    assert res.args == ("-c", "print('launched')")
    assert res.stdout == "launched\n"


def test_is_no_device_distinguishes_absent_device(python_as_dfu):
    script = f"import sys; sys.stderr.write({NO_DEVICE_MESSAGE!r}); sys.exit(3)"

    async def main():
        absent = run_dfu(["-c", script])
        present = run_dfu(["-c", "pass"])
        other = run_dfu(["-c", "import sys; sys.stderr.write('failed to release interface 0.\\n'); sys.exit(3)"])
        await asyncio.gather(absent.exit_code, present.exit_code, other.exit_code)
        return absent, present, other

    absent, present, other = _run(main())
    assert is_no_device(absent)
    assert not is_no_device(present)
    assert not is_no_device(other)


def test_is_no_device_is_false_while_running(python_as_dfu):
    async def main():
        res = run_dfu(["-c", "pass"])
        running = is_no_device(res)
        await res.exit_code
        return running

    assert _run(main()) is False


def test_is_no_device_is_false_for_launch_failure(monkeypatch, tmp_path):
    monkeypatch.setenv("DFU", str(tmp_path / "missing"))

    async def main():
        res = run_dfu()
        await asyncio.gather(res.exit_code, return_exceptions=True)
        return is_no_device(res)

    assert _run(main()) is False


def test_no_device_message_text():
    assert NO_DEVICE_MESSAGE == "dfu-programmer: no device present.\n"


def test_settle_waits():
    started = time.monotonic()
    _run(settle(0.05))
    assert time.monotonic() - started >= 0.04
