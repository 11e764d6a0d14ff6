"""Tests for the single-file ReadCursor."""

import os

import pytest

from logtail.cursor import PositionIntegrityError, ReadCursor
from logtail.discovery import FileInfo
from tests.conftest import write_log


def _cursor(path, offset=0, encoding="utf-8") -> ReadCursor:
    return ReadCursor(FileInfo.from_path(path), encoding=encoding, offset=offset)


class TestReadRaw:
    def test_reads_lines_then_none(self, log_dir):
        c = _cursor(write_log(log_dir / "a.log", "L1\nL2\n"))
        assert c.read_raw() == "L1"
        assert c.read_raw() == "L2"
        assert c.read_raw() is None
        c.close()

    def test_markers_bracket_last_line(self, log_dir):
        c = _cursor(write_log(log_dir / "a.log", "ab\ncd\n"))
        assert (c.file.before, c.file.after) == (None, 0)
        c.read_raw()
        assert (c.file.before, c.file.after) == (0, 3)
        c.read_raw()
        assert (c.file.before, c.file.after) == (3, 6)

    def test_eof_leaves_markers_alone(self, log_dir):
        c = _cursor(write_log(log_dir / "a.log", "ab\n"))
        c.read_raw()
        c.read_raw()
        assert (c.file.before, c.file.after) == (0, 3)

    def test_strips_crlf(self, log_dir):
        c = _cursor(write_log(log_dir / "a.log", "win\r\nmac\r"))
        assert c.read_raw() == "win"
        assert c.read_raw() == "mac"

    def test_unterminated_last_line(self, log_dir):
        c = _cursor(write_log(log_dir / "a.log", "L1\nL2"))
        c.read_raw()
        assert c.last_terminated
        assert c.read_raw() == "L2"
        assert not c.last_terminated

    def test_undecodable_bytes_are_replaced(self, log_dir):
        p = log_dir / "a.log"
        p.write_bytes(b"\xffok\n")
        assert _cursor(p).read_raw() == "\ufffdok"

    def test_starts_at_offset(self, log_dir):
        c = _cursor(write_log(log_dir / "a.log", "L1\nL2\n"), offset=3)
        assert c.file.after == 3
        assert c.read_raw() == "L2"


class TestSeek:
    def test_seek_back_rereads(self, log_dir):
        c = _cursor(write_log(log_dir / "a.log", "L1\nL2\n"))
        c.read_raw()
        c.read_raw()
        c.seek(c.file.before)
        assert c.read_raw() == "L2"

    def test_seek_past_end_raises(self, log_dir):
        c = _cursor(write_log(log_dir / "a.log", "L1\n"))
        with pytest.raises(PositionIntegrityError, match="lower than requested position 10"):
            c.seek(10)

    def test_offset_past_end_on_open_raises_and_closes(self, log_dir):
        p = write_log(log_dir / "a.log", "L1\n")
        with pytest.raises(PositionIntegrityError):
            _cursor(p, offset=4)

    def test_reopen_sees_replaced_file(self, log_dir):
        p = write_log(log_dir / "a.log", "old\n")
        c = _cursor(p)
        tmp = write_log(log_dir / "a.tmp", "new\n")
        os.replace(tmp, p)
        c.seek(0)
        assert c.read_raw() == "old"
        c.seek(0, reopen=True)
        assert c.read_raw() == "new"


class TestLifecycle:
    def test_close_is_idempotent(self, log_dir):
        c = _cursor(write_log(log_dir / "a.log", "L1\n"))
        c.close()
        c.close()
        assert c.closed
        assert c.read_raw() is None

    def test_position_requires_open_handle(self, log_dir):
        c = _cursor(write_log(log_dir / "a.log", "L1\n"))
        c.read_raw()
        assert c.position == 3
        c.close()
        with pytest.raises(ValueError, match="closed"):
            c.position

    def test_length_tracks_growth(self, log_dir):
        p = write_log(log_dir / "a.log", "L1\n")
        c = _cursor(p)
        with p.open("ab") as fh:
            fh.write(b"L2\n")
        assert c.length() == 6

    def test_adopt_keeps_markers(self, log_dir):
        p = write_log(log_dir / "a.log", "L1\n")
        c = _cursor(p)
        c.read_raw()
        newer = FileInfo.from_path(p)
        c.adopt(newer)
        assert c.file is newer
        assert (newer.before, newer.after) == (0, 3)
