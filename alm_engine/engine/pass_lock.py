"""
Advisory pass lock.

Guarantees one reconciliation pass at a time. Acquisition never blocks:
if another pass holds the lock the caller gets PassAlreadyRunning and is
expected to give up.
"""

import errno
import fcntl
import logging
import os
import threading
from pathlib import Path
from typing import Optional, Union

from ..exceptions import PassAlreadyRunning

logger = logging.getLogger(__name__)


class PassLock:
    """
    Non-blocking exclusive lock scoped to a reconciliation pass.

    With a lock_file, uses flock(2) so it excludes other processes and other
    PassLock instances in the same process alike. Without one, falls back to
    a process-local threading.Lock.

    Usage::

        with pass_lock:
            ...  # pass body
    """

    def __init__(self, lock_file: Optional[Union[str, Path]] = None):
        self.lock_file = Path(lock_file) if lock_file else None
        self._thread_lock = threading.Lock()
        self._fh = None
        self._held = False

    def acquire(self) -> None:
        """
        Try to take the lock.

        Raises:
            PassAlreadyRunning: if the lock is held elsewhere
        """
        if not self._thread_lock.acquire(blocking=False):
            raise PassAlreadyRunning("pass lock is held by this process")

        if self.lock_file is None:
            self._held = True
            logger.debug("Acquired in-process pass lock")
            return

        try:
            self.lock_file.parent.mkdir(parents=True, exist_ok=True)
            fh = os.fdopen(os.open(self.lock_file, os.O_RDWR | os.O_CREAT, 0o600), "r+")
        except OSError:
            self._thread_lock.release()
            raise

        try:
            fcntl.flock(fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            fh.close()
            self._thread_lock.release()
            if isinstance(e, BlockingIOError) or e.errno in (errno.EAGAIN, errno.EACCES):
                raise PassAlreadyRunning(f"pass lock {self.lock_file} is held") from e
            raise

        fh.seek(0)
        fh.truncate()
        fh.write(f"{os.getpid()}\n")
        fh.flush()
        self._fh = fh
        self._held = True
        logger.debug(f"Acquired pass lock: {self.lock_file}")

    def release(self) -> None:
        """Release the lock if this instance holds it."""
        if not self._held:
            return

        try:
            if self._fh is not None:
                try:
                    # Clear the owner pid while still holding the lock
                    self._fh.seek(0)
                    self._fh.truncate()
                    self._fh.flush()
                    fcntl.flock(self._fh, fcntl.LOCK_UN)
                finally:
                    self._fh.close()
                    self._fh = None
                logger.debug(f"Released pass lock: {self.lock_file}")
        finally:
            self._held = False
            self._thread_lock.release()

    @property
    def held(self) -> bool:
        """Whether this instance currently holds the lock."""
        return self._held

    def is_locked(self) -> bool:
        """
        Probe whether some pass currently holds the lock.

        Only a snapshot; the answer may be stale by the time it is used.
        Never touches the lock itself: it reads the owner pid written by
        acquire() and checks that the process is alive.
        """
        if self._thread_lock.locked():
            return True
        if self.lock_file is None:
            return False

        pid = self.owner_pid()
        if pid is None:
            return False

        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            logger.debug(f"Stale pass lock owner {pid} in {self.lock_file}")
            return False
        except PermissionError:
            # Exists, owned by another user
            return True
        return True

    def owner_pid(self) -> Optional[int]:
        """Pid recorded by the current holder, or None when the lock file is empty or absent."""
        if self.lock_file is None:
            return None
        try:
            content = self.lock_file.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Cannot read pass lock file {self.lock_file}: {e}")
            return None

        try:
            pid = int(content)
        except ValueError:
            return None
        return pid if pid > 0 else None

    def __enter__(self) -> "PassLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
