"""Process probes and signals. None of these raise on dead or foreign pids."""

import logging
import os
import signal
import subprocess
import time
from collections.abc import Callable

from .outcome import Outcome

logger = logging.getLogger(__name__)

MAX_ANCESTRY_DEPTH = 32
PS_TIMEOUT = 2


def is_pid_alive(pid: int | None) -> bool:
    """Signal-0 probe. Any probe failure counts as dead."""
    if not pid or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except OSError:
        return False
    return True


def parent_pid(pid: int) -> int | None:
    try:
        result = subprocess.run(
            ["ps", "-o", "ppid=", "-p", str(pid)],
            capture_output=True,
            text=True,
            timeout=PS_TIMEOUT,
            check=False,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    out = result.stdout.strip()
    if result.returncode != 0 or not out:
        return None
    try:
        ppid = int(out)
    except ValueError:
        return None
    return ppid if ppid > 0 else None


def is_descendant(pid: int, ancestor: int, max_depth: int = MAX_ANCESTRY_DEPTH) -> bool:
    """True when `ancestor` appears in the parent chain of `pid`."""
    current = pid
    for _ in range(max_depth):
        ppid = parent_pid(current)
        if ppid is None or ppid == current:
            return False
        if ppid == ancestor:
            return True
        if ppid == 1:
            return False
        current = ppid
    return False


def pid_relation(observed: int | None, expected: int | None) -> str:
    """Classify a mesh-reported pid against the pid we spawned."""
    if not observed or not expected:
        return "none"
    if observed == expected:
        return "exact"
    if is_descendant(observed, expected):
        return "descendant"
    return "mismatch"


def pid_snapshot(pid: int | None) -> str | None:
    """One `ps` line (pid, ppid, stat, etime, command) for diagnostics."""
    if not pid or pid <= 0:
        return None
    try:
        result = subprocess.run(
            ["ps", "-o", "pid=,ppid=,stat=,etime=,command=", "-p", str(pid)],
            capture_output=True,
            text=True,
            timeout=PS_TIMEOUT,
            check=False,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    out = result.stdout.strip()
    return out or None


def send_signal(pid: int | None, sig: int = signal.SIGTERM) -> Outcome:
    if not pid or pid <= 0:
        return Outcome.failure("invalid_pid")
    try:
        os.kill(pid, sig)
    except ProcessLookupError:
        return Outcome.failure("no_such_process")
    except OSError as e:
        logger.debug(f"Signal {sig} to pid {pid} failed: {e}")
        return Outcome.failure(str(e))
    return Outcome.success()


def wait_until(
    predicate: Callable[[], bool],
    timeout_ms: int,
    interval_ms: int = 250,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Poll `predicate` until it holds or `timeout_ms` elapses."""
    deadline = time.monotonic() + timeout_ms / 1000
    while True:
        if predicate():
            return True
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        sleep(min(interval_ms / 1000, remaining))
