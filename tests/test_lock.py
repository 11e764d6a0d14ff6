"""logtail.lock: one daemon per state directory."""

import os
import re

import pytest

from logtail.lock import LOCK_FILE, LockError, RunLock, is_alive, read_lock_pid

# Far above any pid_max, so never a live process.
DEAD_PID = 99999999


@pytest.fixture
def lock_path(tmp_path):
    return tmp_path / LOCK_FILE


class TestOwnership:
    def test_lock_file_names_this_process(self, tmp_path, lock_path):
        held = RunLock(tmp_path)
        held.acquire()
        try:
            assert held.path == lock_path
            assert read_lock_pid(lock_path) == os.getpid()
        finally:
            held.release()

    def test_close_deletes_lock_file(self, tmp_path, lock_path):
        held = RunLock(tmp_path)
        held.acquire()
        held.close()
        assert not lock_path.exists()

    def test_releasing_an_unheld_lock_does_nothing(self, tmp_path, lock_path):
        RunLock(tmp_path).release()
        assert not lock_path.exists()

    def test_live_holder_refuses_newcomer(self, tmp_path):
        held = RunLock(tmp_path)
        held.acquire()
        try:
            with pytest.raises(LockError, match=f"already running \\(PID {os.getpid()}\\)"):
                RunLock(tmp_path).acquire()
        finally:
            held.release()

    def test_lock_rewritten_by_someone_else_survives_release(self, tmp_path, lock_path):
        held = RunLock(tmp_path)
        held.acquire()
        lock_path.write_text("1")
        held.release()
        assert lock_path.read_text() == "1"


class TestWithStatement:
    def test_exception_inside_block_still_unlocks(self, tmp_path, lock_path):
        with pytest.raises(RuntimeError, match="reader failed"):
            with RunLock(tmp_path):
                raise RuntimeError("reader failed")
        assert not lock_path.exists()

    def test_nested_blocks_conflict(self, tmp_path, lock_path):
        with RunLock(tmp_path):
            with pytest.raises(LockError, match=re.escape(str(lock_path))):
                RunLock(tmp_path).__enter__()


class TestLeftoverLock:
    @pytest.mark.parametrize("content", [str(DEAD_PID), "not-a-pid", ""])
    def test_unowned_lock_is_reclaimed(self, tmp_path, lock_path, content):
        lock_path.write_text(content)
        with RunLock(tmp_path):
            assert read_lock_pid(lock_path) == os.getpid()
        assert not lock_path.exists()


class TestProcessProbe:
    def test_no_lock_file_means_no_pid(self, lock_path):
        assert read_lock_pid(lock_path) is None

    def test_pid_with_trailing_newline(self, lock_path):
        lock_path.write_text("4242\n")
        assert read_lock_pid(lock_path) == 4242

    @pytest.mark.parametrize(
        ("pid", "expected"),
        [(os.getpid(), True), (DEAD_PID, False), (2**64, False)],
    )
    def test_is_alive(self, pid, expected):
        assert is_alive(pid) is expected
