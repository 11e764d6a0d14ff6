"""Shared pytest helpers and fixtures for the logtail test suite.

write_log(path, text, mtime_ns)    : (re)write a log file and pin its mtime
append_log(path, text, mtime_ns)   : append to a log file and pin its mtime
drain(reader)                      : read until get_next_line() and refresh() both run dry
log_dir                            : fixture: empty directory to tail
"""

import os
from pathlib import Path

import pytest

# Fixed base timestamp (ns) so test ordering never depends on the wall clock.
T0 = 1_700_000_000_000_000_000
SECOND = 1_000_000_000


def _pin_mtime(path: Path, mtime_ns: int) -> None:
    os.utime(path, ns=(mtime_ns, mtime_ns))


def write_log(path: Path, text: str, mtime_ns: int = T0) -> Path:
    """Replace *path*'s content with *text* and set its mtime to *mtime_ns*."""
    path.write_bytes(text.encode())
    _pin_mtime(path, mtime_ns)
    return path


def append_log(path: Path, text: str, mtime_ns: int) -> Path:
    """Append *text* to *path* and set its mtime to *mtime_ns*."""
    with path.open("ab") as fh:
        fh.write(text.encode())
    _pin_mtime(path, mtime_ns)
    return path


def drain(reader) -> list[str]:
    """Collect every line the reader will hand out without new writes."""
    lines = []
    while True:
        line = reader.get_next_line()
        if line is not None:
            lines.append(line)
            continue
        if not reader.refresh():
            return lines


@pytest.fixture()
def log_dir(tmp_path: Path) -> Path:
    d = tmp_path / "logs"
    d.mkdir()
    return d
