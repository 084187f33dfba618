"""Exclusive per-service lock around mutating command sequences."""

import fcntl
import os
from pathlib import Path
from typing import Optional, TextIO

from loguru import logger

from rkhost.exceptions import LockHeldError


class ServiceLock:
    """POSIX advisory lock on ``<lock_dir>/<service>.lock``.

    Non-blocking: a second invocation fails fast instead of queueing behind
    the first. The lock is released when the context exits or the process dies.
    """

    def __init__(self, lock_dir: Path, service_name: str):
        self.lock_file = Path(lock_dir) / f"{service_name}.lock"
        self._lock_fh: Optional[TextIO] = None

    def acquire(self) -> None:
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        fh = self.lock_file.open("a+")
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            fh.seek(0)
            holder = fh.read().strip() or "unknown"
            fh.close()
            raise LockHeldError(
                f"Another rkhost invocation holds {self.lock_file} (PID {holder})"
            ) from None
        except OSError as e:
            fh.close()
            raise LockHeldError(f"Failed to acquire lock {self.lock_file}: {e}") from e

        fh.seek(0)
        fh.truncate()
        fh.write(f"{os.getpid()}\n")
        fh.flush()
        self._lock_fh = fh
        logger.debug("Acquired lock {}", self.lock_file)

    def release(self) -> None:
        if self._lock_fh is None:
            return
        try:
            self._lock_fh.seek(0)
            self._lock_fh.truncate()
            fcntl.flock(self._lock_fh.fileno(), fcntl.LOCK_UN)
        finally:
            self._lock_fh.close()
            self._lock_fh = None
        logger.debug("Released lock {}", self.lock_file)

    def __enter__(self) -> "ServiceLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
