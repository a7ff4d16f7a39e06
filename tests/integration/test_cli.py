import json
import os
from unittest.mock import patch

import pytest
from conftest import register
from typer.testing import CliRunner

from fleet.cli import app
from fleet.lib import paths
from fleet.lib.format import now_ms
from fleet.orchestrator.mesh import FileMesh
from fleet.orchestrator.models import AgentStatus, BackendKind, SpawnedAgent
from fleet.orchestrator.records import RecordStore

runner = CliRunner()


@pytest.fixture
def cli_project(project, monkeypatch):
    monkeypatch.delenv("FLEET_AGENT_NAME", raising=False)
    config = paths.config_file(project)
    config.parent.mkdir(parents=True)
    config.write_text("orchestrator:\n  memory:\n    enabled: false\n")
    return project


def test_list_empty(cli_project):
    result = runner.invoke(app, ["agents", "list"])
    assert result.exit_code == 0
    assert "No spawned agents." in result.output


def test_list_json(cli_project):
    result = runner.invoke(app, ["--json", "agents", "list"])
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["mode"] == "list"
    assert data["agents"] == []


def live_agent(root, status=AgentStatus.IDLE, **extra):
    """Record and register a worker backed by the test process itself."""
    pid = os.getpid()
    RecordStore(root).put(
        SpawnedAgent(
            name="Builder",
            pid=pid,
            model="test/model",
            backend=BackendKind.HEADLESS,
            spawned_at_ms=now_ms(),
            spawned_by="orchestrator",
            status=status,
            **extra,
        )
    )
    register(FileMesh(), "Builder", pid)


def test_list_shows_live_agent(cli_project):
    live_agent(cli_project)

    listed = runner.invoke(app, ["--json", "agents", "list"])
    assert listed.exit_code == 0
    [row] = json.loads(listed.output)["agents"]
    assert row["name"] == "Builder"
    assert not row["owned"]

    logs = runner.invoke(app, ["agents", "logs", "Builder"])
    assert logs.exit_code == 1
    assert "Builder" in logs.output


def test_unknown_agent_commands_fail(cli_project):
    for args in (["agents", "assign", "Ghost", "task"], ["agents", "kill", "Ghost"], ["agents", "check", "Ghost"]):
        result = runner.invoke(app, args)
        assert result.exit_code == 1, args
        assert "Ghost" in result.output


def test_done_outside_a_worker(cli_project):
    result = runner.invoke(app, ["agents", "done", "--summary", "finished"])
    assert result.exit_code == 1


def test_sweep_and_history_when_empty(cli_project):
    sweep = runner.invoke(app, ["agents", "sweep"])
    assert sweep.exit_code == 0
    assert "All agents healthy." in sweep.output

    history = runner.invoke(app, ["--json", "agents", "history"])
    assert history.exit_code == 0
    assert json.loads(history.output)["events"] == []


def test_memory_commands_when_disabled(cli_project):
    stats = runner.invoke(app, ["memory", "stats"])
    assert stats.exit_code == 1
    assert "Memory unavailable: disabled" in stats.output

    reset = runner.invoke(app, ["memory", "reset", "--yes"])
    assert reset.exit_code == 0
    assert "Memory was already empty." in reset.output


def test_invalid_config_exits(project):
    config = paths.config_file(project)
    config.parent.mkdir(parents=True)
    config.write_text("orchestrator:\n  - not a mapping\n")

    result = runner.invoke(app, ["agents", "list"])

    assert result.exit_code == 1
    assert "orchestrator must be a mapping" in result.output


def test_done_schedules_detached_kill(cli_project, monkeypatch):
    live_agent(cli_project, AgentStatus.ASSIGNED, assigned_task="write docs")
    monkeypatch.setenv("FLEET_AGENT_NAME", "Builder")

    with patch("fleet.cli.session.detach_fleet") as detach:
        result = runner.invoke(app, ["agents", "done", "--summary", "wrote the docs"])

    assert result.exit_code == 0, result.output
    detach.assert_called_once_with(
        "agents", "kill", "Builder", "--skip-summary", "--delay-ms", "5000", cwd=cli_project
    )
    [notice] = FileMesh().read_inbox("orchestrator")
    assert notice["text"] == "✅ Builder completed: wrote the docs"
