import shlex
import signal
import sys
from pathlib import Path

from conftest import make_config, register, spawn_agent

from fleet.errors import BackendError
from fleet.lib import fs, names, paths
from fleet.memory.models import EntryType
from fleet.orchestrator.mesh import FileMesh
from fleet.orchestrator.models import AgentStatus, BackendKind, HistoryEventKind, SpawnRequest
from fleet.orchestrator.supervisor import Supervisor


def test_spawn_joins_and_becomes_idle(supervisor, backend, mesh):
    result = spawn_agent(supervisor, "Builder", workstream="auth")

    agent = supervisor.records.get("Builder")
    assert agent.status == AgentStatus.IDLE
    assert agent.mesh_session_id == "session-Builder"
    assert agent.workstream == "auth"
    assert agent.thinking == "high"
    assert "Builder" in supervisor.owned
    assert result.details["name"] == "Builder"
    assert result.details["backend"] == "headless"
    assert result.details["timeout_ms"] == 1000

    name, command, env = backend.spawned[0]
    assert name == "Builder"
    assert command[:5] == ["pi", "--model", "openai/gpt-4o-mini", "--thinking", "high"]
    assert '"Builder"' in command[-1]
    assert env == {
        "FLEET_AGENT_NAME": "Builder",
        "FLEET_ORCHESTRATOR": "orchestrator",
        "FLEET_MESH_DIR": str(mesh.root),
    }

    events = supervisor.history.read()
    assert [e.event for e in events] == [HistoryEventKind.SPAWN]
    assert events[0].details["model"] == "openai/gpt-4o-mini"


def test_spawn_clears_stale_inbox(supervisor, mesh):
    mesh.send_message("orchestrator", "Builder", "left over from a previous run")
    spawn_agent(supervisor, "Builder")
    assert mesh.read_inbox("Builder") == []


def test_thinking_suffix_is_not_passed_twice(supervisor, backend):
    result = spawn_agent(supervisor, "Builder", model="openai/gpt-5:low", thinking="high")
    _, command, _ = backend.spawned[0]
    assert "--thinking" not in command
    assert command[:3] == ["pi", "--model", "openai/gpt-5:low"]
    assert result.details["thinking"] == "low"


def test_worker_command_is_split(make_supervisor, backend):
    sup = make_supervisor(worker_command="npx pi-agent --quiet")
    spawn_agent(sup, "Builder")
    assert backend.spawned[0][1][:4] == ["npx", "pi-agent", "--quiet", "--model"]


def test_invalid_thinking(supervisor, backend):
    result = supervisor.spawn(SpawnRequest(name="Builder", thinking="turbo"))
    assert result.error == "invalid_thinking"
    assert backend.spawned == []


def test_invalid_name(supervisor, backend):
    result = supervisor.spawn(SpawnRequest(name="bad name"))
    assert result.error == "invalid_name"
    assert backend.spawned == []


def test_limit_reached(make_supervisor):
    sup = make_supervisor(max_spawned_agents=1)
    spawn_agent(sup, "Builder")
    result = sup.spawn(SpawnRequest(name="Second"))
    assert result.error == "limit_reached"
    assert result.details["max_spawned_agents"] == 1


def test_profile_supplies_model(supervisor, backend, project):
    profiles = paths.profiles_dir(project)
    profiles.mkdir(parents=True)
    (profiles / "reviewer.md").write_text("---\nmodel: anthropic/claude-haiku-4\n---\nReview.\n")

    result = spawn_agent(supervisor, "Builder", model=None, profile="reviewer")
    assert result.details["model"] == "anthropic/claude-haiku-4"
    assert backend.spawned[0][1][2] == "anthropic/claude-haiku-4"


def test_explicit_model_beats_profile(supervisor, project):
    profiles = paths.profiles_dir(project)
    profiles.mkdir(parents=True)
    (profiles / "reviewer.md").write_text("---\nmodel: anthropic/claude-haiku-4\n---\n")

    result = spawn_agent(supervisor, "Builder", model="openai/gpt-4o-mini", profile="reviewer")
    assert result.details["model"] == "openai/gpt-4o-mini"


def test_missing_profile(supervisor, backend):
    result = supervisor.spawn(SpawnRequest(profile="nobody"))
    assert result.error == "profile_not_found"
    assert backend.spawned == []


def test_taken_name_gets_a_generated_one(supervisor, mesh, processes):
    register(mesh, "Builder", processes.start())

    result = spawn_agent(supervisor, "Builder")
    assert result.details["name"] != "Builder"
    assert names.is_valid_name(result.details["name"])


def test_orchestrator_name_is_never_reused(supervisor):
    result = spawn_agent(supervisor, "orchestrator")
    assert result.details["name"] != "orchestrator"


def test_name_collision_after_attempts(supervisor, mesh, processes, monkeypatch):
    register(mesh, "Builder", processes.start())
    monkeypatch.setattr(names, "generate_name", lambda rng=None: "Builder")

    result = supervisor.spawn(SpawnRequest(name="Builder"))
    assert result.error == "name_collision"


def test_dead_registration_does_not_block_name(supervisor, mesh, processes):
    pid = processes.start()
    processes.exit(pid)
    register(mesh, "Builder", pid)

    result = spawn_agent(supervisor, "Builder")
    assert result.details["name"] == "Builder"


def test_spawn_timeout_escalates_and_writes_diagnostics(supervisor, backend, processes, mesh, project):
    backend.auto_join = False
    backend.ignore_sigterm = True
    stale = processes.start()
    processes.exit(stale)
    register(mesh, "Builder", stale)

    result = supervisor.spawn(SpawnRequest(name="Builder"))

    assert result.error == "spawn_timeout"
    pid = backend.pids[0]
    assert processes.signals == [(pid, signal.SIGTERM), (pid, signal.SIGKILL)]
    assert supervisor.records.get("Builder") is None
    assert mesh.read_registration("Builder") is None
    assert "Builder" not in supervisor.owned
    assert backend.released == ["Builder"]

    path = Path(result.details["diagnostics_path"])
    assert path.parent == paths.diagnostics_dir(project)
    saved = fs.read_json(path)
    assert saved["name"] == "Builder"
    assert saved["mesh_pid"] == stale
    assert saved["signals"]["sent_sigterm"]
    assert saved["signals"]["sent_sigkill"]
    assert not saved["signals"]["exited_after_sigterm"]
    assert not saved["expected_pid_alive_after_kill"]

    reap = supervisor.history.read()[-1]
    assert reap.event == HistoryEventKind.REAP
    assert reap.details["reason"] == "spawn_timeout"


def test_spawn_timeout_sigterm_is_enough(supervisor, backend, processes):
    backend.auto_join = False

    result = supervisor.spawn(SpawnRequest(name="Builder"))

    assert result.error == "spawn_timeout"
    assert [sig for _, sig in processes.signals] == [signal.SIGTERM]


def test_worker_exiting_before_join(supervisor, backend, processes):
    backend.exit_on_spawn = True

    result = supervisor.spawn(SpawnRequest(name="Builder"))

    assert result.error == "spawn_exited"
    assert processes.signals == []
    assert supervisor.records.get("Builder") is None
    assert supervisor.history.read()[-1].details["reason"] == "spawn_exited"


def test_backend_failure(supervisor, backend, monkeypatch):
    def broken(name, command, env):
        raise BackendError("no such binary: pi")

    monkeypatch.setattr(backend, "spawn", broken)
    result = supervisor.spawn(SpawnRequest(name="Builder"))

    assert result.error == "backend_spawn_failed"
    assert "no such binary" in result.text
    assert supervisor.records.get("Builder") is None


def test_spawn_prompt_bootstraps_memory(supervisor, mesh):
    store = supervisor.memory()
    store.remember(
        "the parser lives in src/parse.py", agent="Old", entry_type=EntryType.SUMMARY, source="test"
    )

    result = spawn_agent(supervisor, "Builder", prompt="work on the parser")

    assert result.details["memory_injected"] == 1
    inbox = mesh.read_inbox("Builder")
    assert len(inbox) == 1
    assert inbox[0]["text"].startswith("## Context from prior work")
    assert "src/parse.py" in inbox[0]["text"]


def test_crashed_headless_worker_keeps_its_output_for_diagnostics(project, tmp_path, embedder):
    crash = "import sys, time; print('boom: missing API key', flush=True); time.sleep(0.2); sys.exit(3)"
    sup = Supervisor(
        root=project,
        config=make_config(worker_command=shlex.join([sys.executable, "-c", crash])),
        mesh=FileMesh(tmp_path / "real-mesh"),
        embedder=embedder,
        identity="orchestrator",
    )
    del sup.backends[BackendKind.PANED]

    result = sup.spawn(SpawnRequest(name="Crashy"))

    assert result.error == "spawn_exited"
    bundle = fs.read_json(Path(result.details["diagnostics_path"]))
    assert "boom: missing API key" in bundle["headless_tail"]
    reaps = [e.details["reason"] for e in sup.history.read() if e.event == HistoryEventKind.REAP]
    assert reaps == ["spawn_exited"]
    assert sup.owned == set()
