"""One tailing daemon per state directory.

Two daemons following the same source would each keep their own cursor and
publish every line twice.  ``logtail run`` therefore holds ``logtail.lock``
(containing its PID) in the state directory for as long as it runs::

    with RunLock(paths.state_dir):
        driver.run(stop)

A lock whose PID no longer belongs to a live process was left by a crash and
is taken over.  ``read_lock_pid`` and ``is_alive`` are also used by the
``process`` health check.
"""

from __future__ import annotations

import os
from pathlib import Path

LOCK_FILE = "logtail.lock"


class LockError(RuntimeError):
    """Another live logtail process owns the state directory."""


class RunLock:
    """PID-file lock on *state_dir* (which must already exist)."""

    def __init__(self, state_dir: Path) -> None:
        self._path = state_dir / LOCK_FILE
        self._owner = os.getpid()

    @property
    def path(self) -> Path:
        return self._path

    def _create(self) -> bool:
        """Create the lock file exclusively; False if it already exists."""
        try:
            fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as fh:
            fh.write(str(self._owner))
        return True

    def acquire(self) -> None:
        """Take the lock.

        Raises:
            LockError: The recorded PID is still running.
        """
        if self._create():
            return
        holder = read_lock_pid(self._path)
        if holder is not None and is_alive(holder):
            raise LockError(
                f"logtail is already running (PID {holder}); lock file {self._path}"
            )
        # Stale: the previous owner died without cleaning up.
        self._path.write_text(str(self._owner))

    def release(self) -> None:
        """Delete the lock file, but only while it still names this process."""
        if read_lock_pid(self._path) != self._owner:
            return
        self._path.unlink(missing_ok=True)

    def close(self) -> None:
        self.release()

    def __enter__(self) -> RunLock:
        self.acquire()
        return self

    def __exit__(self, *_: object) -> None:
        self.release()


def read_lock_pid(lock_path: Path) -> int | None:
    """PID recorded in *lock_path*; None when absent or not a number."""
    try:
        text = lock_path.read_text()
    except FileNotFoundError:
        return None
    try:
        return int(text.strip())
    except ValueError:
        return None


def is_alive(pid: int) -> bool:
    """Whether *pid* names a running process (signal 0 probe)."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # running under another user
    except OverflowError:
        return False  # not a valid pid_t
    return True
