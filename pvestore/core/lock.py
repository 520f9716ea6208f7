"""Host-wide lock so only one mutating pvestore run touches disks at a time."""
import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from pvestore.core.errors import LockError
from pvestore.core.logger import get_logger

logger = get_logger(__name__)

DEFAULT_LOCK_FILE = Path("/var/run/pvestore/operation.lock")


class OperationLock:
    """File-based lock for provision, deprovision and rename runs."""

    def __init__(self, lock_file: Optional[Path] = None, timeout: int = 0):
        """Initialize lock.

        Args:
            lock_file: Path to lock file (default: /var/run/pvestore/operation.lock)
            timeout: Seconds to wait for lock (0 = fail immediately)
        """
        self.lock_file = Path(lock_file) if lock_file else DEFAULT_LOCK_FILE
        self.timeout = timeout
        self.lock_fd = None

    def acquire(self) -> bool:
        """Acquire the lock.

        Raises:
            LockError: If another run holds the lock
        """
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        self.lock_fd = open(self.lock_file, 'a+')

        start_time = time.time()
        while True:
            try:
                fcntl.flock(self.lock_fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)

                self.lock_fd.seek(0)
                self.lock_fd.truncate()
                self.lock_fd.write(f"{os.getpid()}\n")
                self.lock_fd.write(f"{time.strftime('%Y-%m-%d %H:%M:%S')}\n")
                self.lock_fd.flush()

                logger.debug(f"Acquired lock: {self.lock_file}")
                return True

            except OSError:
                elapsed = time.time() - start_time
                if self.timeout == 0 or elapsed >= self.timeout:
                    holder = self._read_lock_info()
                    self.lock_fd.close()
                    self.lock_fd = None
                    raise LockError(
                        f"Another pvestore operation is in progress.\n"
                        f"Lock held by PID {holder['pid']} since {holder['time']}\n"
                        f"Wait for it to finish, or remove {self.lock_file} if stale."
                    )
                time.sleep(0.5)

    def release(self):
        if self.lock_fd is None:
            return
        try:
            fcntl.flock(self.lock_fd.fileno(), fcntl.LOCK_UN)
            self.lock_fd.close()
            logger.debug(f"Released lock: {self.lock_file}")
        except OSError as e:
            logger.warning(f"Error releasing lock: {e}")
        finally:
            self.lock_fd = None

        try:
            self.lock_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Error removing lock file: {e}")

    def _read_lock_info(self) -> dict:
        try:
            lines = self.lock_file.read_text().splitlines()
            if len(lines) >= 2:
                return {'pid': lines[0].strip(), 'time': lines[1].strip()}
        except OSError:
            pass
        return {'pid': 'unknown', 'time': 'unknown'}

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


@contextmanager
def operation_lock(enabled: bool = True, lock_file: Optional[Path] = None, timeout: int = 0):
    """Hold the operation lock for the duration of a mutating run.

    Simulation runs pass enabled=False and skip locking entirely.

    Raises:
        LockError: If unable to acquire lock
    """
    if not enabled:
        yield None
        return
    lock = OperationLock(lock_file=lock_file, timeout=timeout)
    lock.acquire()
    try:
        yield lock
    finally:
        lock.release()
