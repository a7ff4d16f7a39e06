"""Run a fleet command in the background, outliving the caller."""

import subprocess
import sys
from pathlib import Path


def detach_fleet(*args: str, cwd: Path | None = None) -> int:
    """Start `python -m fleet <args>` in its own session and return its pid.

    Used when a worker asks for its own teardown: the kill must not run
    inside the process tree it is about to terminate.
    """
    proc = subprocess.Popen(
        [sys.executable, "-m", "fleet", *args],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
        cwd=cwd,
    )
    return proc.pid
