"""Process backends: tmux panes when a session is reachable, else headless subprocesses."""

import logging
import os
import shlex
import subprocess
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from fleet.errors import BackendError
from fleet.lib import procs
from fleet.lib.outcome import Outcome

from .models import BackendKind, SpawnedAgent

logger = logging.getLogger(__name__)

TMUX_TIMEOUT = 5
HEADLESS_LOG_LINES = 2000


@dataclass
class SpawnHandle:
    pid: int
    pane_id: str | None = None
    window_id: str | None = None


class Backend(Protocol):
    kind: BackendKind

    def available(self) -> bool: ...

    def spawn(self, name: str, command: list[str], env: dict[str, str]) -> SpawnHandle: ...

    def is_alive(self, pid: int | None) -> bool: ...

    def tail(self, agent: SpawnedAgent, lines: int) -> list[str] | None: ...

    def terminate(self, agent: SpawnedAgent, sig: int) -> Outcome: ...

    def release(self, agent: SpawnedAgent) -> Outcome: ...


def select_backend(backends: dict[BackendKind, Backend]) -> Backend:
    """Paned when the multiplexer answers, headless otherwise."""
    paned = backends.get(BackendKind.PANED)
    if paned is not None and paned.available():
        return paned
    return backends[BackendKind.HEADLESS]


def _tmux(*args: str) -> subprocess.CompletedProcess:
    return subprocess.run(
        ["tmux", *args],
        capture_output=True,
        text=True,
        timeout=TMUX_TIMEOUT,
        check=False,
    )


class PanedBackend:
    kind = BackendKind.PANED

    def available(self) -> bool:
        try:
            return _tmux("display-message", "-p", "#{session_name}").returncode == 0
        except (OSError, subprocess.SubprocessError):
            return False

    def spawn(self, name: str, command: list[str], env: dict[str, str]) -> SpawnHandle:
        env_prefix = " ".join(f"{k}={shlex.quote(v)}" for k, v in env.items())
        shell_command = f"{env_prefix} {shlex.join(command)}".strip()
        try:
            result = _tmux(
                "new-window",
                "-P",
                "-F",
                "#{pane_id} #{window_id} #{pane_pid}",
                "-n",
                name,
                shell_command,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise BackendError(f"tmux new-window failed: {e}") from e
        if result.returncode != 0:
            raise BackendError(f"tmux new-window failed: {result.stderr.strip()}")
        parts = result.stdout.strip().split()
        if len(parts) < 3 or not parts[2].isdigit():
            raise BackendError(f"Unexpected tmux output: {result.stdout.strip()!r}")
        return SpawnHandle(pid=int(parts[2]), pane_id=parts[0], window_id=parts[1])

    def is_alive(self, pid: int | None) -> bool:
        return procs.is_pid_alive(pid)

    def tail(self, agent: SpawnedAgent, lines: int) -> list[str] | None:
        if not agent.pane_id:
            return None
        try:
            result = _tmux("capture-pane", "-t", agent.pane_id, "-p", "-S", f"-{lines}")
        except (OSError, subprocess.SubprocessError):
            return None
        if result.returncode != 0:
            return None
        return result.stdout.rstrip("\n").splitlines()[-lines:]

    def terminate(self, agent: SpawnedAgent, sig: int) -> Outcome:
        return procs.send_signal(agent.pid, sig)

    def release(self, agent: SpawnedAgent) -> Outcome:
        if not agent.pane_id:
            return Outcome.success()
        try:
            result = _tmux("kill-pane", "-t", agent.pane_id)
        except (OSError, subprocess.SubprocessError) as e:
            return Outcome.failure(str(e))
        if result.returncode != 0:
            # pane already gone
            logger.debug(f"kill-pane {agent.pane_id}: {result.stderr.strip()}")
        return Outcome.success()

    def select_window(self, agent: SpawnedAgent) -> Outcome:
        target = agent.window_id or agent.pane_id
        if not target:
            return Outcome.failure("missing_pane")
        try:
            result = _tmux("select-window", "-t", target)
        except (OSError, subprocess.SubprocessError) as e:
            return Outcome.failure(str(e))
        if result.returncode != 0:
            return Outcome.failure(result.stderr.strip() or "select-window failed")
        return Outcome.success()


@dataclass
class _Runtime:
    proc: subprocess.Popen
    lines: deque = field(default_factory=lambda: deque(maxlen=HEADLESS_LOG_LINES))


class HeadlessBackend:
    """Detached subprocesses with combined output kept in memory.

    `on_exit(name, returncode)` runs on the reader thread once the process
    has exited and been reaped.
    """

    kind = BackendKind.HEADLESS

    def __init__(
        self,
        cwd: Path | None = None,
        on_exit: Callable[[str, int | None], None] | None = None,
    ):
        self.cwd = cwd
        self.on_exit = on_exit
        self._runtimes: dict[str, _Runtime] = {}
        self._lock = threading.Lock()

    def available(self) -> bool:
        return True

    def spawn(self, name: str, command: list[str], env: dict[str, str]) -> SpawnHandle:
        try:
            proc = subprocess.Popen(
                command,
                cwd=self.cwd,
                env={**os.environ, **env},
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                start_new_session=True,
            )
        except OSError as e:
            raise BackendError(f"Failed to start {command[0]}: {e}") from e
        runtime = _Runtime(proc)
        with self._lock:
            self._runtimes[name] = runtime
        threading.Thread(
            target=self._pump, args=(name, runtime), daemon=True, name=f"fleet-{name}"
        ).start()
        return SpawnHandle(pid=proc.pid)

    def _pump(self, name: str, runtime: _Runtime) -> None:
        assert runtime.proc.stdout is not None
        for line in runtime.proc.stdout:
            runtime.lines.append(line.rstrip("\n"))
        returncode = runtime.proc.wait()
        logger.info(f"Headless agent {name} exited with code {returncode}")
        if self.on_exit is not None:
            try:
                self.on_exit(name, returncode)
            except Exception as e:
                logger.error(f"Exit handler for {name} failed: {e}")

    def _runtime_for_pid(self, pid: int | None) -> _Runtime | None:
        with self._lock:
            for runtime in self._runtimes.values():
                if runtime.proc.pid == pid:
                    return runtime
        return None

    def is_alive(self, pid: int | None) -> bool:
        runtime = self._runtime_for_pid(pid)
        if runtime is not None:
            return runtime.proc.poll() is None
        return procs.is_pid_alive(pid)

    def tail(self, agent: SpawnedAgent, lines: int) -> list[str] | None:
        with self._lock:
            runtime = self._runtimes.get(agent.name)
        if runtime is None:
            return None
        return list(runtime.lines)[-lines:]

    def terminate(self, agent: SpawnedAgent, sig: int) -> Outcome:
        return procs.send_signal(agent.pid, sig)

    def release(self, agent: SpawnedAgent) -> Outcome:
        self.drop(agent.name)
        return Outcome.success()

    def drop(self, name: str) -> None:
        """Forget the output buffer kept for `name`."""
        with self._lock:
            self._runtimes.pop(name, None)
