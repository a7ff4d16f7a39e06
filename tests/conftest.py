import json
import re
import signal

import pytest

from fleet.lib import config as fleet_config
from fleet.lib import paths
from fleet.lib.config import FleetConfig, MemoryConfig, OrchestratorConfig
from fleet.lib.format import now_ms
from fleet.lib.outcome import Outcome
from fleet.memory import store
from fleet.memory.embedding import EmbeddingResult, normalize
from fleet.orchestrator.backends import SpawnHandle
from fleet.orchestrator.mesh import FileMesh
from fleet.orchestrator.models import AgentStatus, BackendKind, SpawnedAgent, SpawnRequest
from fleet.orchestrator.supervisor import Supervisor

TEST_DIMENSIONS = 64


class FakeProcesses:
    """Pretend process table: pids are alive until something exits them."""

    def __init__(self):
        self.alive: set[int] = set()
        self.signals: list[tuple[int, int]] = []
        self._next = 90_000

    def start(self) -> int:
        pid = self._next
        self._next += 1
        self.alive.add(pid)
        return pid

    def is_alive(self, pid) -> bool:
        return pid in self.alive

    def exit(self, pid) -> None:
        self.alive.discard(pid)


def register(mesh: FileMesh, name: str, pid: int, **extra) -> None:
    """Write a mesh registration the way a worker would."""
    mesh.registry_dir.mkdir(parents=True, exist_ok=True)
    data = {
        "name": name,
        "pid": pid,
        "sessionId": f"session-{name}",
        "model": "test/model",
        **extra,
    }
    (mesh.registry_dir / f"{name}.json").write_text(json.dumps(data))


class FakeBackend:
    """Headless backend stand-in with scripted join and signal behaviour."""

    kind = BackendKind.HEADLESS

    def __init__(self, processes: FakeProcesses, mesh: FileMesh):
        self.processes = processes
        self.mesh = mesh
        self.auto_join = True
        self.exit_on_spawn = False
        self.ignore_sigterm = False
        self.spawned: list[tuple[str, list[str], dict[str, str]]] = []
        self.released: list[str] = []
        self.pids: list[int] = []

    def available(self) -> bool:
        return True

    def spawn(self, name, command, env):
        pid = self.processes.start()
        self.spawned.append((name, command, env))
        self.pids.append(pid)
        if self.exit_on_spawn:
            self.processes.exit(pid)
        elif self.auto_join:
            register(self.mesh, name, pid)
        return SpawnHandle(pid=pid)

    def is_alive(self, pid) -> bool:
        return self.processes.is_alive(pid)

    def tail(self, agent, lines):
        return [f"{agent.name} output {i}" for i in range(3)][-lines:]

    def terminate(self, agent, sig):
        self.processes.signals.append((agent.pid, sig))
        if sig == signal.SIGKILL or not self.ignore_sigterm:
            self.processes.exit(agent.pid)
        return Outcome.success()

    def release(self, agent):
        self.released.append(agent.name)
        return Outcome.success()


class BagOfWords:
    """Deterministic embedder: one axis per distinct word, unit length.

    Each instance keeps its own vocabulary, so similarities inside a test
    are exact as long as it uses fewer words than the index has dimensions.
    """

    def __init__(self):
        self.vocabulary: dict[str, int] = {}
        self.calls = 0

    def __call__(self, text, request):
        self.calls += 1
        vector = [0.0] * request.dimensions
        for token in re.findall(r"[a-z0-9]+", text.lower()):
            slot = self.vocabulary.setdefault(token, len(self.vocabulary)) % request.dimensions
            vector[slot] += 1.0
        if not any(vector):
            return EmbeddingResult(error="empty")
        return EmbeddingResult(vector=normalize(vector), ok=True)


def make_config(**orchestrator) -> FleetConfig:
    memory = orchestrator.pop("memory", None) or MemoryConfig(
        embedding_provider="openai",
        embedding_model="text-embedding-3-small",
        dimensions=TEST_DIMENSIONS,
    )
    defaults = {
        "auto_kill_on_done": False,
        "auto_kill_delay_ms": 0,
        "grace_period_ms": 300,
        "sigterm_grace_ms": 100,
        "spawn_timeout_ms": 1000,
        "spawn_timeout_max_ms": 1000,
        "idle_timeout_ms": 60_000,
    }
    defaults.update(orchestrator)
    return FleetConfig(orchestrator=OrchestratorConfig(memory=memory, **defaults))


@pytest.fixture
def project(monkeypatch, tmp_path):
    """Isolated project directory with fresh config and memory caches."""
    store._reset_for_testing()
    fleet_config.clear_cache()

    root = tmp_path / "project"
    root.mkdir()
    monkeypatch.setattr(paths, "project_root", lambda: root)
    monkeypatch.setenv("FLEET_MESH_DIR", str(tmp_path / "mesh"))

    yield root

    store._reset_for_testing()
    fleet_config.clear_cache()


@pytest.fixture
def processes():
    return FakeProcesses()


@pytest.fixture
def mesh(tmp_path, processes):
    return FileMesh(tmp_path / "mesh", is_alive=processes.is_alive)


@pytest.fixture
def backend(processes, mesh):
    return FakeBackend(processes, mesh)


@pytest.fixture
def embedder():
    return BagOfWords()


@pytest.fixture
def make_supervisor(project, mesh, backend, embedder):
    """Build a Supervisor wired to the fakes; keyword args tweak the config."""

    def build(**orchestrator):
        return Supervisor(
            root=project,
            config=make_config(**orchestrator),
            mesh=mesh,
            backends={BackendKind.HEADLESS: backend},
            embedder=embedder,
            identity="orchestrator",
        )

    return build


@pytest.fixture
def supervisor(make_supervisor):
    return make_supervisor()


def spawn_agent(sup, name="Builder", model="openai/gpt-4o-mini", **kwargs):
    result = sup.spawn(SpawnRequest(name=name, model=model, **kwargs))
    assert result.ok, result.text
    return result


def put_record(sup, name, status, pid, backend=BackendKind.HEADLESS, **extra):
    """Write a record directly, bypassing spawn."""
    if status == AgentStatus.ASSIGNED:
        extra.setdefault("assigned_task", "existing task")
    agent = SpawnedAgent(
        name=name,
        pid=pid,
        model="test/model",
        backend=backend,
        spawned_at_ms=now_ms(),
        spawned_by="orchestrator",
        status=status,
        **extra,
    )
    sup.records.put(agent)
    return agent
