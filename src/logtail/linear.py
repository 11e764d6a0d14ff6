"""Single-file reader: the degenerate case with no discovery and no rotation.

``LinearLogReader`` follows one path.  It only hands out lines that end with
a newline; an unterminated final line is stepped back over and read again
once the writer finishes it.  Lines are counted as they are returned.

Changes the handle cannot see on its own (the file was replaced, or cut
short) are found in ``refresh()`` by comparing the number of complete lines
now in the file with the number already processed:

  total > processed   the handle is stale → reopen, skip ``processed`` lines
  total < processed   truncated / replaced → reopen from the start, count from 0
  total == processed  nothing new → caller waits
"""

from __future__ import annotations

from pathlib import Path

import structlog

from logtail.cursor import ReadCursor
from logtail.discovery import FileInfo
from logtail.logging import source_logger
from logtail.reader import ReaderSetupError

_CHUNK = 1 << 20


class LinearLogReader:
    """Reads *path* from the beginning, line by line.

    Raises:
        ReaderSetupError: *path* does not exist or is a directory.
    """

    def __init__(
        self,
        path: Path,
        *,
        encoding: str = "utf-8",
        log: structlog.BoundLogger | None = None,
    ) -> None:
        if not path.is_file():
            raise ReaderSetupError(f"cannot find log file: {path}")
        self._path = path
        self._encoding = encoding
        self._log = log if log is not None else source_logger(__name__, path)
        self._cursor: ReadCursor | None = None
        self._processed = 0
        self.open()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def processed_lines(self) -> int:
        return self._processed

    @property
    def closed(self) -> bool:
        return self._cursor is None

    def open(self) -> None:
        """(Re)open the file at its start and reset the processed-line count."""
        self.close()
        self._cursor = ReadCursor(FileInfo.from_path(self._path), encoding=self._encoding)
        self._processed = 0
        self._log.info("open log file", path=str(self._path))

    def reopen(self) -> None:
        self.open()

    def get_next_line(self) -> str | None:
        cursor = self._cursor
        if cursor is None:
            return None
        line = cursor.read_raw()
        if line is None:
            return None
        if not cursor.last_terminated:
            # Writer is mid-line; step back and try again later.
            start = cursor.file.before or 0
            cursor.seek(start)
            cursor.file.set_positions(None, start)
            return None
        self._processed += 1
        self._log.debug("raw log line", line=line)
        return line

    def skip(self, count: int) -> None:
        """Read past *count* complete lines without returning them."""
        self._log.debug("skipping lines", count=count)
        for _ in range(count):
            if self.get_next_line() is None:
                break

    def line_count(self) -> int:
        """Number of newline-terminated lines currently in the file."""
        total = 0
        with self._path.open("rb") as fh:
            while chunk := fh.read(_CHUNK):
                total += chunk.count(b"\n")
        return total

    def refresh(self) -> bool:
        """Reconcile the handle with the file on disk.

        Returns:
            True if the file was reopened and reading should resume now.
        """
        try:
            total = self.line_count()
            size = self._path.stat().st_size
        except FileNotFoundError:
            self._log.warning("log file is missing", path=str(self._path))
            return False

        processed = self._processed
        offset = self._cursor.position if self._cursor is not None else 0
        if total < processed or size < offset:
            self._log.info(
                "log file truncated, reading from the start",
                lines=total,
                processed=processed,
                size=size,
            )
            self.open()
            return True
        if total > processed:
            self._log.info("log file grew behind the handle, reopening", lines=total, processed=processed)
            self.open()
            self.skip(processed)
            return True
        return False

    def flush(self) -> None:
        """Nothing to release: only complete lines are ever returned."""

    def close(self) -> None:
        if self._cursor is not None:
            self._cursor.close()
            self._cursor = None
            self._log.info("close log file", path=str(self._path))
