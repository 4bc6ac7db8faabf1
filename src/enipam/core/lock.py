"""
Host-wide mutual exclusion.

Every mutating operation runs while holding an exclusive ``flock`` on a
well-known file. The kernel drops the lock when the holding process exits,
so a killed process never leaves the host locked.

Contention fails fast: container lifecycle hooks retry on their own, and
blocking here would only push them into their timeouts.
"""

from __future__ import annotations

import fcntl
import os

from enipam.errors import LockContentionError
from enipam.utils.logger import get_logger

logger = get_logger(__name__)


class HostLock:
    """
    Exclusive advisory lock on a file.

    Usage:
        with HostLock("/run/enipam.lock"):
            ...  # mutate

    Not reentrant: nesting ``with`` on the same instance raises RuntimeError.
    """

    def __init__(self, path: str):
        self.path = path
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """
        Take the lock or fail immediately.

        Raises:
            LockContentionError: Another process holds the lock.
            OSError: The lock file cannot be opened.
        """
        if self._fd is not None:
            raise RuntimeError(f"lock {self.path} already held by this process")

        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            logger.warning(f"Lock {self.path} is held by another process")
            raise LockContentionError(self.path)
        except OSError:
            os.close(fd)
            raise

        # Holder pid is informational only; the flock is the lock
        try:
            os.ftruncate(fd, 0)
            os.write(fd, f"{os.getpid()}\n".encode())
        except OSError:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
            raise
        self._fd = fd
        logger.debug(f"Acquired lock {self.path}")

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug(f"Released lock {self.path}")

    def __enter__(self) -> HostLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
