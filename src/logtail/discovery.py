"""Log file discovery: ``FileInfo`` snapshots and the ``FileSetScanner``.

``FileSetScanner(directory, pattern).scan(since_ns=...)`` lists the log
directory once and returns a snapshot of every regular file whose *name*
fully matches ``pattern``, oldest first.  Files whose modification time is
strictly earlier than ``since_ns`` are dropped: the reader passes the mtime of
the file it last finished (or is still reading), so anything older has
already been consumed.

Two results must be told apart by the caller:

- ``[]``   : the listing worked and nothing qualifies.
- ``None`` : the listing itself failed (directory briefly unreadable, NFS
  hiccup).  That is "no new information", not "no files".

Ordering is by ``mtime_ns`` ascending.  Files with the same mtime keep their
discovery order, which is name order, so repeated scans of an unchanged
directory always produce the same sequence.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(eq=False)
class FileInfo:
    """Snapshot of one candidate log file plus its read-position bookkeeping.

    ``path``, ``size``, ``mtime_ns`` and ``ino`` are captured from a single
    ``stat`` at discovery time and never change.  ``before`` / ``after`` are
    the byte offsets bracketing the most recently read line; both start as ``None``
    ("unknown") and are moved only by the cursor reading this file.

    Identity is the canonical path (``key``), not the Python object: a fresh
    snapshot of the same file compares equal to the one being read.
    """

    path: Path
    size: int
    mtime_ns: int
    before: int | None = None
    after: int | None = None
    # Inode number; a new file created under an old name gets a new one.
    ino: int | None = None
    key: str = field(init=False)

    def __post_init__(self) -> None:
        self.key = os.path.realpath(self.path)

    @classmethod
    def from_path(cls, path: Path) -> FileInfo:
        """Snapshot *path*.  Raises ``OSError`` if it cannot be stat'ed."""
        st = path.stat()
        return cls(path=path, size=st.st_size, mtime_ns=st.st_mtime_ns, ino=st.st_ino)

    def update_position(self, offset: int) -> None:
        """Record *offset* as the end of the line just read."""
        self.before = self.after
        self.after = offset

    def set_positions(self, before: int | None, after: int | None) -> None:
        self.before = before
        self.after = after

    def copy_position(self, other: FileInfo) -> None:
        self.before = other.before
        self.after = other.after

    def same_mtime(self, other: FileInfo) -> bool:
        return self.mtime_ns == other.mtime_ns

    def same_inode(self, other: FileInfo) -> bool:
        return self.ino == other.ino

    def is_modified(self, current: FileInfo) -> bool:
        """True if *current* (a newer snapshot of this file) differs in mtime or size."""
        return not self.same_mtime(current) or self.size != current.size

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FileInfo):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __repr__(self) -> str:
        return f"FileInfo(path={str(self.path)!r}, mtime_ns={self.mtime_ns}, size={self.size})"


@dataclass(frozen=True)
class FileSetScanner:
    """Lists ``directory`` through a file-name filter.

    Args:
        directory: Directory holding the log files (not searched recursively).
        pattern:   Compiled pattern that must match the whole file name.
    """

    directory: Path
    pattern: re.Pattern[str]

    def matches(self, name: str) -> bool:
        return self.pattern.fullmatch(name) is not None

    def scan(self, since_ns: int | None = None) -> list[FileInfo] | None:
        """Return matching files not older than *since_ns*, oldest first.

        Args:
            since_ns: Lower bound on ``mtime_ns`` (inclusive).  ``None`` means
                      no bound.

        Returns:
            Sorted list of :class:`FileInfo`, or ``None`` if the directory
            could not be listed.
        """
        try:
            names = sorted(p.name for p in self.directory.iterdir())
        except OSError:
            return None

        found = []
        for name in names:
            if not self.matches(name):
                continue
            path = self.directory / name
            try:
                if not path.is_file():
                    continue
                info = FileInfo.from_path(path)
            except OSError:
                continue  # removed between listing and stat
            if since_ns is None or info.mtime_ns >= since_ns:
                found.append(info)

        # sort() is stable, so equal mtimes keep name order.
        found.sort(key=lambda f: f.mtime_ns)
        return found
