"""Sequential line reader over one open log file.

``ReadCursor`` owns the binary handle for the file currently being tailed.
Reading in binary mode keeps ``tell()`` an exact byte offset, which is what
the rotation logic rolls back to.  Lines are decoded after the terminator is
stripped; undecodable bytes are replaced rather than raised.

After every successful read the cursor records the offsets bracketing the
line on its :class:`~logtail.discovery.FileInfo` (``before`` = start of the
line, ``after`` = end), so the caller can later step back exactly one line.
"""

from __future__ import annotations

import os
from typing import BinaryIO

from logtail.discovery import FileInfo


class PositionIntegrityError(ValueError):
    """A requested offset lies beyond the end of the file.

    The recorded bookkeeping no longer describes the file on disk (it was
    truncated or replaced by something shorter).
    """


class ReadCursor:
    """Reads lines from *file* starting at *offset*.

    Args:
        file:     Snapshot of the file to open.  Its ``before`` / ``after``
                  markers are updated as lines are read.
        encoding: Text encoding of the log file.
        offset:   Byte offset to start at.

    Raises:
        OSError: The file cannot be opened.
        PositionIntegrityError: *offset* is past the end of the file.
    """

    def __init__(self, file: FileInfo, *, encoding: str = "utf-8", offset: int = 0) -> None:
        self._file = file
        self._encoding = encoding
        self._fh: BinaryIO | None = None
        self._last_terminated = True
        try:
            self.seek(offset, reopen=True)
        except PositionIntegrityError:
            self.close()
            raise
        file.set_positions(None, offset)

    @property
    def file(self) -> FileInfo:
        return self._file

    @property
    def closed(self) -> bool:
        return self._fh is None

    @property
    def position(self) -> int:
        if self._fh is None:
            raise ValueError("cursor is closed")
        return self._fh.tell()

    @property
    def last_terminated(self) -> bool:
        """Whether the line most recently returned ended with a newline."""
        return self._last_terminated

    def adopt(self, snapshot: FileInfo) -> None:
        """Continue reading under *snapshot*, a newer stat of the same file."""
        snapshot.copy_position(self._file)
        self._file = snapshot

    def length(self) -> int:
        """Current size of the open file."""
        if self._fh is None:
            raise ValueError("cursor is closed")
        return os.fstat(self._fh.fileno()).st_size

    def read_raw(self) -> str | None:
        """Return the next line, or ``None`` at end of file.

        A final line without a trailing newline is returned as-is; check
        :attr:`last_terminated` to tell it apart.
        """
        if self._fh is None:
            return None
        raw = self._fh.readline()
        if not raw:
            return None
        self._file.update_position(self._fh.tell())
        self._last_terminated = raw.endswith(b"\n")
        if raw.endswith(b"\r\n"):
            raw = raw[:-2]
        elif self._last_terminated or raw.endswith(b"\r"):
            raw = raw[:-1]
        return raw.decode(self._encoding, errors="replace")

    def seek(self, offset: int, *, reopen: bool = False) -> None:
        """Position the next read at *offset*.

        With ``reopen=True`` the path is opened afresh first, so a file that
        was replaced on disk is read from its new content.

        Raises:
            PositionIntegrityError: *offset* exceeds the current file length.
        """
        if reopen or self._fh is None:
            self.close()
            self._fh = open(self._file.path, "rb")
        length = self.length()
        if offset > length:
            raise PositionIntegrityError(
                f"the actual file length {length} is lower than requested position {offset}"
                f" ({self._file.path})"
            )
        self._fh.seek(offset)

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
