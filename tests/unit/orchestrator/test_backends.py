import subprocess
import sys
import threading

import pytest

from fleet.errors import BackendError
from fleet.orchestrator import backends
from fleet.orchestrator.backends import HeadlessBackend, PanedBackend, select_backend
from fleet.orchestrator.models import BackendKind, SpawnedAgent


def agent_for(name, pid, backend=BackendKind.HEADLESS, **extra):
    return SpawnedAgent(
        name=name,
        pid=pid,
        model="test/model",
        backend=backend,
        spawned_at_ms=0,
        spawned_by="orchestrator",
        **extra,
    )


class StubPaned:
    kind = BackendKind.PANED

    def __init__(self, available):
        self._available = available

    def available(self):
        return self._available


def test_select_backend_prefers_paned_when_available():
    headless = HeadlessBackend()
    assert select_backend({BackendKind.PANED: StubPaned(True), BackendKind.HEADLESS: headless}).kind == (
        BackendKind.PANED
    )
    assert select_backend({BackendKind.PANED: StubPaned(False), BackendKind.HEADLESS: headless}) is headless
    assert select_backend({BackendKind.HEADLESS: headless}) is headless


def test_headless_captures_output_and_reports_exit():
    exited = threading.Event()
    codes = []

    def on_exit(name, code):
        codes.append((name, code))
        exited.set()

    backend = HeadlessBackend(on_exit=on_exit)
    handle = backend.spawn(
        "Echo",
        [sys.executable, "-c", "print('hello'); print('world')"],
        {"FLEET_AGENT_NAME": "Echo"},
    )

    assert exited.wait(10)
    assert codes == [("Echo", 0)]
    agent = agent_for("Echo", handle.pid)
    assert backend.tail(agent, 1) == ["world"]
    assert backend.tail(agent, 10) == ["hello", "world"]
    assert not backend.is_alive(handle.pid)

    backend.release(agent)
    assert backend.tail(agent, 10) is None


def test_headless_passes_environment():
    exited = threading.Event()
    backend = HeadlessBackend(on_exit=lambda name, code: exited.set())
    handle = backend.spawn(
        "Env",
        [sys.executable, "-c", "import os; print(os.environ['FLEET_AGENT_NAME'])"],
        {"FLEET_AGENT_NAME": "Env"},
    )
    assert exited.wait(10)
    assert backend.tail(agent_for("Env", handle.pid), 5) == ["Env"]


def test_headless_spawn_failure_raises_backend_error(tmp_path):
    backend = HeadlessBackend()
    with pytest.raises(BackendError):
        backend.spawn("Nope", [str(tmp_path / "does-not-exist")], {})


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def test_paned_spawn_parses_tmux_output(monkeypatch):
    calls = []

    def fake_tmux(*args):
        calls.append(args)
        return completed(stdout="%7 @3 5151\n")

    monkeypatch.setattr(backends, "_tmux", fake_tmux)
    handle = PanedBackend().spawn("Builder", ["pi", "--model", "x y"], {"FLEET_AGENT_NAME": "Builder"})

    assert (handle.pid, handle.pane_id, handle.window_id) == (5151, "%7", "@3")
    args = calls[0]
    assert args[0] == "new-window"
    assert args[-1] == "FLEET_AGENT_NAME=Builder pi --model 'x y'"


@pytest.mark.parametrize(
    "result",
    [completed(returncode=1, stderr="no server running"), completed(stdout="garbage\n")],
)
def test_paned_spawn_failures_raise(monkeypatch, result):
    monkeypatch.setattr(backends, "_tmux", lambda *args: result)
    with pytest.raises(BackendError):
        PanedBackend().spawn("Builder", ["pi"], {})


def test_paned_available_false_without_tmux(monkeypatch):
    def missing(*args):
        raise FileNotFoundError("tmux")

    monkeypatch.setattr(backends, "_tmux", missing)
    assert not PanedBackend().available()


def test_paned_tail_and_release(monkeypatch):
    monkeypatch.setattr(backends, "_tmux", lambda *args: completed(stdout="one\ntwo\nthree\n"))
    agent = agent_for("Builder", 1, BackendKind.PANED, pane_id="%1", window_id="@1")
    backend = PanedBackend()
    assert backend.tail(agent, 2) == ["two", "three"]
    assert backend.release(agent).ok

    monkeypatch.setattr(backends, "_tmux", lambda *args: completed(returncode=1, stderr="can't find pane"))
    assert backend.tail(agent, 2) is None
    assert backend.release(agent).ok
    assert backend.tail(agent_for("Bare", 1, BackendKind.PANED), 2) is None


def test_headless_drop_forgets_output_by_name():
    exited = threading.Event()
    backend = HeadlessBackend(on_exit=lambda name, code: exited.set())
    handle = backend.spawn("Gone", [sys.executable, "-c", "print('bye')"], {})
    assert exited.wait(10)

    backend.drop("Gone")

    assert backend.tail(agent_for("Gone", handle.pid), 5) is None
