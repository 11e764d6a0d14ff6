"""Rotation-aware reader for a directory of log files.

``DirectoryLogReader`` is the heart of logtail.  Across repeated polls it
decides which file to read, where to resume inside it, whether a file was
rewritten or merely appended to, and when the final line of a file is safe
to hand out.

Last-line deferral
------------------
The line most recently read is *held*, not returned: the writer may still be
in the middle of it.  A held line is released when

  a. another line is read after it from the same file,
  b. a newer file takes over (nothing more can be appended to the old one),
  c. ``refresh()`` sees the file unchanged and the line ended with a newline, or
  d. the caller forces it out with ``flush()``.

So the reader always runs one line behind the raw stream.  A held line that
was read without its newline is not released by (a) or (c): whatever is read
next is the rest of that line and is joined onto it.

Revisited files
---------------
A file read to the end is remembered with its end offset and inode.  If it
later gets a newer modification time it is queued again and reading continues
at that offset, unless it is now shorter or is a different file under the same
name.  A queued file that cannot be opened is skipped so the files behind it
are still read; it is retried on the next refresh without counting as new
content, so an idle poller does not spin on it.

States
------
``idle``              no file open.
``active``            cursor open, normal forward reads.
``awaiting_confirm``  the file changed under the held line; the re-read
                      version is held until a later refresh confirms it.

Typical usage (the driver does this)::

    reader = DirectoryLogReader(Path("/var/log/app"), r"app.*\\.log")
    while True:
        line = reader.get_next_line()
        if line is None and not reader.refresh():
            time.sleep(5)
"""

from __future__ import annotations

import os
import re
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal, Protocol

import structlog

from logtail.cursor import PositionIntegrityError, ReadCursor
from logtail.discovery import FileInfo, FileSetScanner
from logtail.logging import source_logger

if TYPE_CHECKING:
    from logtail.config import Settings

State = Literal["idle", "active", "awaiting_confirm"]


class ReaderSetupError(ValueError):
    """The configured log location cannot be tailed (missing, wrong kind, bad filter)."""


class LineReader(Protocol):
    """What the driver needs from a reader."""

    def get_next_line(self) -> str | None: ...

    def refresh(self) -> bool: ...

    def flush(self) -> None: ...

    def close(self) -> None: ...


@dataclass
class _Active:
    cursor: ReadCursor
    held: str | None = None
    # Text between file.before and file.after, released or not.
    last: str | None = None
    # Whether the held line ended with a newline when it was read.
    held_complete: bool = False


@dataclass
class _AwaitingConfirm:
    cursor: ReadCursor
    held: str
    held_complete: bool = False

    @property
    def last(self) -> str:
        return self.held


_Open = _Active | _AwaitingConfirm


class DirectoryLogReader:
    """Tails every file in *directory* whose name fully matches *file_filter*.

    Files are consumed oldest-first by modification time.  All files present
    at construction are queued immediately.

    Args:
        directory:   Directory to tail (not recursive).
        file_filter: Regular expression matched against whole file names.
        encoding:    Text encoding of the log files.
        log:         Bound logger; defaults to one bound to *directory*.

    Raises:
        ReaderSetupError: *directory* is missing or not a directory, or
                          *file_filter* is not a valid pattern.
    """

    def __init__(
        self,
        directory: Path,
        file_filter: str,
        *,
        encoding: str = "utf-8",
        log: structlog.BoundLogger | None = None,
    ) -> None:
        if not directory.exists():
            raise ReaderSetupError(f"cannot find directory: {directory}")
        if not directory.is_dir():
            raise ReaderSetupError(f"expected {directory} to be a directory but it is a file")
        try:
            pattern = re.compile(file_filter)
        except re.error as exc:
            raise ReaderSetupError(f"invalid file filter {file_filter!r}: {exc}") from exc

        self._scanner = FileSetScanner(directory, pattern)
        self._encoding = encoding
        self._log = log if log is not None else source_logger(__name__, directory)

        self._queue: deque[FileInfo] = deque()
        self._ready: deque[str] = deque()
        self._state: _Open | None = None
        # mtime of the file last opened; older files are never looked at again.
        self._floor_ns: int | None = None
        # key → (mtime, end offset, inode) of files read to the end.
        self._finished: dict[str, tuple[int, int, int | None]] = {}
        # key → (mtime, size) of files whose last open attempt failed.
        self._unopenable: dict[str, tuple[int, int]] = {}
        # (key, inode, offset) to resume at after a read failure on that file.
        self._resume: tuple[str, int | None, int] | None = None

        files = self._scanner.scan() or []
        self._log.info(
            "found files to process",
            count=len(files),
            files=[str(f.path) for f in files],
        )
        self._queue.extend(files)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> State:
        if self._state is None:
            return "idle"
        if isinstance(self._state, _AwaitingConfirm):
            return "awaiting_confirm"
        return "active"

    @property
    def current_file(self) -> FileInfo | None:
        return self._state.cursor.file if self._state is not None else None

    @property
    def held_line(self) -> str | None:
        return self._state.held if self._state is not None else None

    @property
    def queued(self) -> tuple[FileInfo, ...]:
        return tuple(self._queue)

    # ------------------------------------------------------------------
    # Reader surface
    # ------------------------------------------------------------------

    def get_next_line(self) -> str | None:
        """Return the next line that is safe to emit, or ``None``.

        Raises:
            OSError: Reading the open file failed.  The reader is left idle;
                     a later ``refresh()`` picks the file up again.
        """
        while True:
            if self._ready:
                return self._ready.popleft()
            if self._state is not None:
                start = self._state.cursor.file.before
                line = self._read(self._state)
                if line is not None:
                    self._hold(line, start)
                    continue
            if not self._queue:
                return None
            # On failure the file is skipped and the next queued one is tried.
            self._open_next(self._queue.popleft())

    def refresh(self) -> bool:
        """Rescan the directory and revalidate the open file.

        Returns:
            True if lines or files are now available to read.  Files that
            failed to open last time and have not changed are queued for
            another attempt but do not count.
        """
        self._log.debug("refreshing state")
        if self._queue:
            return True

        files = self._scanner.scan(since_ns=self._floor_ns)
        if files is None:
            self._log.warning("cannot list log directory", directory=str(self._scanner.directory))
            return bool(self._ready)

        candidates = self._candidates(files)
        state = self._state
        changed = False
        if state is not None and candidates and candidates[0] == state.cursor.file:
            current = candidates.popleft()
            if state.cursor.file.is_modified(current):
                if not self._revalidate(state, current):
                    return bool(self._ready)
                # The open file grew or was rewritten; there may be more to read.
                changed = True
            else:
                self._log.debug("file is not modified", path=str(current.path))
                if state.held_complete:
                    self._release_held()
        elif state is not None:
            # Open file is gone from the listing; it cannot grow any more.
            self._release_held()

        if candidates:
            self._log.debug("queued new files", files=[str(f.path) for f in candidates])
        self._queue.extend(candidates)
        fresh = any(self._unopenable.get(f.key) != (f.mtime_ns, f.size) for f in candidates)
        return bool(self._ready or fresh or changed)

    def flush(self) -> None:
        """Release the held line now, accepting that it may be incomplete."""
        self._release_held()

    def close(self) -> None:
        """Close the open file, if any.  Safe to call repeatedly."""
        if self._state is not None:
            self._state.cursor.close()
            self._state = None
            self._log.info("reader closed")

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _read(self, state: _Open) -> str | None:
        try:
            return state.cursor.read_raw()
        except OSError as exc:
            self._log.error(
                "cannot read file", path=str(state.cursor.file.path), error=str(exc)
            )
            self._drop(state)
            raise

    def _hold(self, line: str, start: int | None) -> None:
        state = self._state
        assert state is not None
        if state.held is not None and not state.held_complete:
            # The writer finished the line being held; it still begins at *start*.
            line = state.held + line
            state.cursor.file.before = start
        elif state.held is not None:
            self._ready.append(state.held)
        self._state = _Active(
            state.cursor,
            held=line,
            last=line,
            held_complete=state.cursor.last_terminated,
        )

    def _release_held(self) -> None:
        state = self._state
        if state is None or state.held is None:
            return
        self._ready.append(state.held)
        self._state = _Active(state.cursor, last=state.last)

    # ------------------------------------------------------------------
    # File transitions
    # ------------------------------------------------------------------

    def _open_next(self, file: FileInfo) -> bool:
        """Finish the open file and start reading *file*.  False if it cannot be opened."""
        if self._state is not None:
            self._finish(self._state)

        offset = self._start_offset(file)
        try:
            try:
                cursor = ReadCursor(file, encoding=self._encoding, offset=offset)
            except PositionIntegrityError as exc:
                self._log.error(
                    "resume position is past end of file, reading from the start",
                    path=str(file.path),
                    detail=str(exc),
                )
                cursor = ReadCursor(file, encoding=self._encoding)
        except (FileNotFoundError, PermissionError) as exc:
            self._log.warning(
                "cannot open file, skipping it", path=str(file.path), error=str(exc)
            )
            self._unopenable[file.key] = (file.mtime_ns, file.size)
            return False

        self._unopenable.pop(file.key, None)
        if self._resume is not None and self._resume[0] == file.key:
            self._resume = None
        self._log.info(
            "start processing file",
            path=str(file.path),
            size=file.size,
            mtime_ns=file.mtime_ns,
            offset=offset,
        )
        self._state = _Active(cursor)
        self._set_floor(file.mtime_ns)
        return True

    def _start_offset(self, file: FileInfo) -> int:
        """Offset just past what was already handed out from *file*, else 0."""
        if self._resume is not None:
            key, ino, offset = self._resume
            if key == file.key and ino == file.ino:
                return min(offset, file.size)
        done = self._finished.get(file.key)
        if done is None or done[2] != file.ino:
            return 0
        end = done[1]
        if end > file.size:
            self._log.warning(
                "finished file shrank, reading it again from the start",
                path=str(file.path),
                offset=end,
                size=file.size,
            )
            return 0
        return end

    def _finish(self, state: _Open) -> None:
        file = state.cursor.file
        if state.held is not None:
            self._ready.append(state.held)
        state.cursor.close()
        end = file.after if file.after is not None else 0
        self._finished[file.key] = (file.mtime_ns, end, file.ino)
        # Forget files that were deleted; their names may be reused.
        self._finished = {k: v for k, v in self._finished.items() if os.path.exists(k)}
        self._state = None
        self._log.info("finished file", path=str(file.path), offset=end)

    def _drop(self, state: _Open) -> None:
        """Close after a failure, remembering where unreleased content starts."""
        file = state.cursor.file
        offset = file.before if state.held is not None and file.before is not None else file.after
        self._resume = (file.key, file.ino, offset) if offset is not None else None
        state.cursor.close()
        self._state = None

    def _restart(self, state: _Open, current: FileInfo) -> None:
        state.cursor.close()
        self._state = None
        cursor = ReadCursor(current, encoding=self._encoding)
        self._state = _Active(cursor)
        self._set_floor(current.mtime_ns)

    def _set_floor(self, mtime_ns: int) -> None:
        self._floor_ns = mtime_ns
        self._unopenable = {k: v for k, v in self._unopenable.items() if v[0] >= mtime_ns}

    def _candidates(self, files: list[FileInfo]) -> deque[FileInfo]:
        """Drop finished files; move the open file (if listed) to the front."""
        active = self.current_file
        head = None
        rest = []
        for f in files:
            if active is not None and f == active:
                head = f
            elif not self._already_read(f):
                rest.append(f)
        return deque([head, *rest] if head is not None else rest)

    def _already_read(self, f: FileInfo) -> bool:
        done = self._finished.get(f.key)
        return done is not None and done[0] == f.mtime_ns and done[2] == f.ino

    # ------------------------------------------------------------------
    # Same-file modification
    # ------------------------------------------------------------------

    def _revalidate(self, state: _Open, current: FileInfo) -> bool:
        """Re-read the last line after the open file changed on disk.

        Returns False while the rewritten last line is still unconfirmed.
        """
        cursor = state.cursor
        file = cursor.file
        path = str(file.path)
        if state.last is None:
            cursor.adopt(current)
            self._set_floor(current.mtime_ns)
            return True

        before = file.before if file.before is not None else 0
        try:
            cursor.seek(before, reopen=True)
        except PositionIntegrityError as exc:
            self._log.error(
                "file shrank below the tracked position, reading it again from the start",
                path=path,
                detail=str(exc),
            )
            self._restart(state, current)
            return True
        except (FileNotFoundError, PermissionError) as exc:
            # Release the held line; a later reopen resumes after it.
            self._log.warning("cannot reopen file, finishing it", path=path, error=str(exc))
            self._finish(state)
            return False

        file.set_positions(None, before)
        line = self._read(state)
        complete = cursor.last_terminated
        self._log.debug("revalidating last line", path=path, previous=state.last, current=line)

        if line == state.last:
            cursor.adopt(current)
            self._set_floor(current.mtime_ns)
            if state.held is not None and complete:
                self._ready.append(state.held)
                self._state = _Active(cursor, last=line)
            else:
                self._state = _Active(
                    cursor, held=state.held, last=line, held_complete=complete
                )
            return True

        if line is None:
            self._log.warning("file was truncated at the last line", path=path)
            cursor.adopt(current)
            self._set_floor(current.mtime_ns)
            self._state = _Active(cursor)
            return True

        if state.held is None:
            self._log.warning("already released line was rewritten", path=path)

        further = self._read(state)
        if further is None:
            self._log.debug("last line changed, awaiting confirmation", path=path)
            self._state = _AwaitingConfirm(cursor, held=line, held_complete=complete)
            return False

        self._log.debug("new line added after the changed line", path=path)
        self._ready.append(line)
        cursor.adopt(current)
        self._set_floor(current.mtime_ns)
        self._state = _Active(
            cursor, held=further, last=further, held_complete=cursor.last_terminated
        )
        return True


def open_reader(settings: Settings, log: structlog.BoundLogger | None = None) -> LineReader:
    """Build the reader described by ``settings.source``.

    Raises:
        ReaderSetupError: No location configured, or the location is unusable.
    """
    from logtail.linear import LinearLogReader

    source = settings.source
    if source.log_directory is not None:
        return DirectoryLogReader(
            source.log_directory, source.file_filter, encoding=source.encoding, log=log
        )
    if source.log_file is not None:
        return LinearLogReader(source.log_file, encoding=source.encoding, log=log)
    raise ReaderSetupError("no log source configured: set source.log_file or source.log_directory")
