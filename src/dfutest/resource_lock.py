"""
Cross-process device lock.

Serializes access to a singleton resource (the physical DFU device) between
independent harness runs. The lock is a record file whose content is the
decimal PID of the holder:

- acquire: write our PID to a private file, then hard-link it into place
- contention: read the holder PID and probe whether it is alive
- abandoned record (dead PID): delete it on the first wait iteration only
- corrupt record (not a PID): delete it and retry immediately
- otherwise poll every retry_interval seconds until the record is gone

The link is the only atomic step. It fails if the record exists, so a
record created this way is never seen without its PID. Two contenders may
both judge a record abandoned and both delete it, but only one of them can
win the following link.

Other tools sharing the record may create it empty and write the PID
afterwards. An empty record younger than EMPTY_RECORD_GRACE seconds is
treated as held rather than corrupt.

Example:
    >>> async def test_reset():
    ...     async with ResourceLock.for_domain().hold():
    ...         res = run_dfu_targeted(["reset"])
    ...         assert await res.exit_code == 0
"""

import asyncio
import logging
import os
import re
import tempfile
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional

from .errors import LockCleanupFailure, LockCorruption, LockWaitCancelled
from .liveness import PidProbe, default_probe
from .paths import DEFAULT_LOCK_DOMAIN, lock_path_for

logger = logging.getLogger(__name__)

# Seconds between acquisition attempts while another process holds the lock
DEFAULT_RETRY_INTERVAL = 1.0

# Seconds an empty record may exist before it counts as corrupt
EMPTY_RECORD_GRACE = 2.0

_PID_PATTERN = re.compile(r"[0-9]+")


def _unlink_record(path: Path) -> None:
    try:
        path.unlink()
    except OSError as e:
        raise LockCleanupFailure(path, e) from e


def _discard_record(path: Path) -> None:
    """Delete a record judged abandoned or corrupt while acquiring.

    Raises:
        LockCleanupFailure: If the record exists but could not be deleted
    """
    try:
        path.unlink()
    except FileNotFoundError:
        # Another contender removed it first
        return
    except OSError as e:
        raise LockCleanupFailure(path, e) from e
    logger.debug(f"Removed lock file {path}")


def _is_fresh_empty_record(path: Path, content: str) -> bool:
    """Whether a record is empty and young enough that its PID may still be on the way."""
    if content.strip():
        return False
    try:
        age = time.time() - path.stat().st_mtime
    except FileNotFoundError:
        return False
    return abs(age) < EMPTY_RECORD_GRACE


def _cleanup(path: Path) -> bool:
    """Delete a lock record, logging instead of raising on failure.

    Returns:
        True if the record was removed
    """
    try:
        _unlink_record(path)
    except LockCleanupFailure as e:
        logger.error(str(e))
        return False
    logger.debug(f"Removed lock file {path}")
    return True


def read_holder_pid(path: Path) -> Optional[int]:
    """Read the PID stored in a lock record.

    Returns:
        The holder PID, or None if the record does not exist

    Raises:
        LockCorruption: If the record does not contain a decimal PID
    """
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return None

    if not _PID_PATTERN.fullmatch(content.strip()):
        raise LockCorruption(path, content)
    pid = int(content.strip())
    if pid <= 0:
        raise LockCorruption(path, content)
    return pid


@dataclass
class LockStatus:
    """Snapshot of a lock record, taken without modifying it."""

    path: Path
    exists: bool
    holder_pid: Optional[int] = None
    is_stale: bool = False
    is_corrupt: bool = False

    @property
    def is_held(self) -> bool:
        """Whether a live process currently holds the lock."""
        return self.exists and not self.is_stale and not self.is_corrupt


class LockHandle:
    """Release handle returned by ResourceLock.acquire().

    release() deletes the record. Calling it more than once is a no-op, so a
    second release can never remove a record some other process created since.
    """

    def __init__(self, path: Path, pid: int):
        self.path = path
        self.pid = pid
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        _cleanup(self.path)

    async def __aenter__(self) -> "LockHandle":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "held"
        return f"LockHandle({str(self.path)!r}, pid={self.pid}, {state})"


class ResourceLock:
    """Crash-safe, system-wide mutual exclusion backed by one record file.

    Args:
        path: Location of the lock record. Every contender must agree on it.
        retry_interval: Seconds to wait between acquisition attempts
        probe: Liveness probe for holder PIDs (defaults to the platform probe)
    """

    def __init__(
        self,
        path: Path,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        probe: Optional[PidProbe] = None,
    ):
        self.path = Path(path)
        self.retry_interval = retry_interval
        self.probe = probe if probe is not None else default_probe()

    @classmethod
    def for_domain(cls, domain: str = DEFAULT_LOCK_DOMAIN, **kwargs) -> "ResourceLock":
        """Create a lock for a named lock domain (see paths.lock_path_for)."""
        return cls(lock_path_for(domain), **kwargs)

    def _try_create(self) -> bool:
        """Publish a record holding our PID. Returns False if one already exists.

        The PID is written to a private file first and then hard-linked to the
        record path, so the record appears with its content already in place.
        """
        fd, staging = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="ascii") as f:
                f.write(str(os.getpid()))
            os.chmod(staging, 0o644)
            os.link(staging, self.path)
        except FileExistsError:
            return False
        finally:
            os.unlink(staging)
        return True

    async def acquire(self, cancel: Optional[asyncio.Event] = None) -> LockHandle:
        """Wait until the lock is held by this process.

        There is no timeout. Waiting stops early only when ``cancel`` is set
        or the awaiting task is cancelled; neither touches the record.

        Args:
            cancel: Optional event that abandons the wait when set

        Returns:
            LockHandle whose release() frees the lock

        Raises:
            LockWaitCancelled: If ``cancel`` was set before the lock was acquired
            LockCleanupFailure: If an abandoned or corrupt record could not be deleted
            OSError: On unexpected filesystem or probe errors
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try_count = 0

        while True:
            if cancel is not None and cancel.is_set():
                raise LockWaitCancelled(self.path)

            if self._try_create():
                logger.debug(f"Got lock {self.path} (pid {os.getpid()})")
                return LockHandle(self.path, os.getpid())

            try:
                pid = read_holder_pid(self.path)
            except LockCorruption as e:
                if not _is_fresh_empty_record(self.path, e.content):
                    logger.warning(f"{e}, removing it")
                    _discard_record(self.path)
                    await asyncio.sleep(0)
                    continue
                logger.debug(f"Lock {self.path} is empty, holder may still be writing its PID")
                pid = None
            else:
                if pid is None:
                    # Released between our create attempt and the read
                    await asyncio.sleep(0)
                    continue

            if pid is not None and not self.probe.is_alive(pid):
                logger.debug(f"Lock holder pid {pid} is not alive")
                if not try_count:
                    logger.info(f"Removing stale lock {self.path} left by pid {pid}")
                    _discard_record(self.path)

            if not try_count:
                logger.info("Waiting for lock to be released...")

            try_count += 1
            await self._wait(cancel)

    async def _wait(self, cancel: Optional[asyncio.Event]) -> None:
        if cancel is None:
            await asyncio.sleep(self.retry_interval)
            return
        try:
            await asyncio.wait_for(cancel.wait(), timeout=self.retry_interval)
        except asyncio.TimeoutError:
            return
        raise LockWaitCancelled(self.path)

    @asynccontextmanager
    async def hold(self, cancel: Optional[asyncio.Event] = None) -> AsyncIterator[LockHandle]:
        """Hold the lock for the duration of an ``async with`` block."""
        handle = await self.acquire(cancel=cancel)
        try:
            yield handle
        finally:
            await handle.release()

    def status(self) -> LockStatus:
        """Inspect the lock record without changing it."""
        try:
            pid = read_holder_pid(self.path)
        except LockCorruption:
            return LockStatus(path=self.path, exists=True, is_corrupt=True)

        if pid is None:
            return LockStatus(path=self.path, exists=False)
        return LockStatus(path=self.path, exists=True, holder_pid=pid, is_stale=not self.probe.is_alive(pid))

    def clear_stale(self) -> bool:
        """Remove the record if it is abandoned or corrupt.

        Returns:
            True if a record was removed
        """
        status = self.status()
        if not (status.is_stale or status.is_corrupt):
            return False
        logger.info(f"Clearing {'corrupt' if status.is_corrupt else 'stale'} lock {self.path}")
        return _cleanup(self.path)


async def get_lock(
    domain: str = DEFAULT_LOCK_DOMAIN,
    retry_interval: float = DEFAULT_RETRY_INTERVAL,
    cancel: Optional[asyncio.Event] = None,
) -> LockHandle:
    """Acquire the lock for a domain. Resolves once the lock is held."""
    return await ResourceLock.for_domain(domain, retry_interval=retry_interval).acquire(cancel=cancel)
