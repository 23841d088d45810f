"""
Single-session guard backed by a marker file.

The marker's existence means "a review is in progress". A second trigger that
finds the marker is dropped, never queued. The marker records the owner's PID
so that a marker left behind by a killed process can be reclaimed.
"""

import atexit
import errno
import fcntl
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

logger = logging.getLogger(__name__)


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user
        return True
    return True


class ReviewGuard:
    """Guards against overlapping review sessions."""

    def __init__(self, marker_path: Union[str, Path]):
        """
        Args:
            marker_path: Location of the marker file
        """
        self.marker_path = Path(marker_path)
        self._held = False
        self._atexit_registered = False

    @property
    def reclaim_lock_path(self) -> Path:
        return self.marker_path.with_name(self.marker_path.name + ".lock")

    def is_busy(self) -> bool:
        """Whether some session (possibly this one) holds the marker."""
        return self.marker_path.exists()

    def acquire(self) -> bool:
        """
        Create the marker if no other session holds it.

        Returns:
            True when the marker was created, False when a session is busy
        """
        if self._held:
            return False

        if self._try_create():
            return self._mark_held()

        if self._reclaim_stale():
            return self._mark_held()

        logger.info("⏳ Review already in progress - skipping this trigger")
        return False

    def release(self) -> None:
        """Remove the marker if this guard created it."""
        if not self._held:
            return
        self._held = False
        self._unlink()
        if self._atexit_registered:
            atexit.unregister(self.release)
            self._atexit_registered = False

    @contextmanager
    def hold(self) -> Iterator[bool]:
        """
        Hold the guard for the duration of a ``with`` block.

        Yields True when acquired. The marker is released on normal exit,
        on exceptions and on ``KeyboardInterrupt``/``SystemExit``.
        """
        acquired = self.acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()

    def _mark_held(self) -> bool:
        self._held = True
        if not self._atexit_registered:
            atexit.register(self.release)
            self._atexit_registered = True
        return True

    @contextmanager
    def _reclaim_lock(self) -> Iterator[None]:
        # Serializes reclaimers; the owner is re-read while the lock is held
        fd = os.open(str(self.reclaim_lock_path), os.O_CREAT | os.O_RDWR, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            os.close(fd)

    def _reclaim_stale(self) -> bool:
        """Replace a marker whose owner is dead. Returns True when we took it."""
        with self._reclaim_lock():
            owner = self._read_owner()
            if owner is None:
                # Released meanwhile, or unreadable
                return not self.marker_path.exists() and self._try_create()
            if owner == os.getpid() or _pid_alive(owner):
                return False

            logger.warning("🧹 Removing stale review marker left by PID %s", owner)
            self._unlink()
            return self._try_create()

    def _try_create(self) -> bool:
        self.marker_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self.marker_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as f:
            f.write(f"{os.getpid()}\n")
        return True

    def _read_owner(self) -> Optional[int]:
        try:
            content = self.marker_path.read_text().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.debug("Could not read review marker %s: %s", self.marker_path, e)
            return None
        try:
            return int(content)
        except ValueError:
            return None

    def _unlink(self) -> None:
        try:
            self.marker_path.unlink()
        except OSError as e:
            if e.errno != errno.ENOENT:
                raise
