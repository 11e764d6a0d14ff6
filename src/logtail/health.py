"""Liveness / readiness signalling and the ``logtail health`` checks.

The daemon reports its lifecycle through marker files in ``state_dir`` so
an exec probe (``test -f <state_dir>/ready``) or ``logtail health`` can
observe it from outside the process:

  alive   created at startup, removed after shutdown cleanup
  ready   created once the reader has been opened and primed, removed
          first on shutdown

Exit-code contract (enforced by the CLI):
  0  all checks passed
  1  one or more warnings, no failures
  2  one or more failures
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from logtail.lock import LOCK_FILE, is_alive, read_lock_pid

ALIVE_FILE = "alive"
READY_FILE = "ready"

Status = Literal["pass", "warn", "fail"]


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: Status
    message: str
    hint: str = ""


class HealthProbe:
    """Creates and removes the liveness / readiness marker files."""

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir

    def _mark(self, name: str, on: bool) -> None:
        path = self._state_dir / name
        if on:
            path.write_text("1")
        else:
            path.unlink(missing_ok=True)

    def set_alive(self, alive: bool) -> None:
        self._mark(ALIVE_FILE, alive)

    def set_ready(self, ready: bool) -> None:
        self._mark(READY_FILE, ready)

    @property
    def alive(self) -> bool:
        return (self._state_dir / ALIVE_FILE).is_file()

    @property
    def ready(self) -> bool:
        return (self._state_dir / READY_FILE).is_file()


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


def check_process(state_dir: Path) -> CheckResult:
    """The PID in the run lock must belong to a running process."""
    pid = read_lock_pid(state_dir / LOCK_FILE)
    if pid is None:
        return CheckResult(
            name="process",
            status="fail",
            message="no run lock found",
            hint="start the daemon with `logtail run`",
        )
    if not is_alive(pid):
        return CheckResult(
            name="process",
            status="fail",
            message=f"lock held by PID {pid}, which is not running",
            hint="the daemon crashed; the stale lock is replaced on next start",
        )
    return CheckResult(name="process", status="pass", message=f"running as PID {pid}")


def check_liveness(state_dir: Path) -> CheckResult:
    if HealthProbe(state_dir).alive:
        return CheckResult(name="liveness", status="pass", message="alive marker present")
    return CheckResult(
        name="liveness",
        status="fail",
        message="alive marker missing",
        hint="the daemon is not running or has shut down",
    )


def check_readiness(state_dir: Path) -> CheckResult:
    """Ready only after the first successful open; WARN while starting up."""
    probe = HealthProbe(state_dir)
    if probe.ready:
        return CheckResult(name="readiness", status="pass", message="reader opened and primed")
    if probe.alive:
        return CheckResult(
            name="readiness",
            status="warn",
            message="alive but not ready yet",
            hint="check the source location and logs for configuration errors",
        )
    return CheckResult(name="readiness", status="fail", message="not ready")


_CHECKS = {
    "process": check_process,
    "liveness": check_liveness,
    "readiness": check_readiness,
}


def check_health(state_dir: Path, *, only: str = "") -> list[CheckResult]:
    """Run all checks (or only the one named *only*).

    Raises:
        ValueError: *only* names no known check.
    """
    if only:
        if only not in _CHECKS:
            raise ValueError(f"unknown check {only!r}; choose from {sorted(_CHECKS)}")
        return [_CHECKS[only](state_dir)]
    return [check(state_dir) for check in _CHECKS.values()]
