"""Spawn-timeout diagnostics bundles, one JSON file per failed spawn."""

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from fleet.lib import fs, paths, procs
from fleet.lib.format import iso_now, now_ms

from .backends import Backend
from .mesh import Mesh
from .models import BackendKind, SpawnedAgent

logger = logging.getLogger(__name__)

TAIL_LINES = 250


@dataclass
class SignalLog:
    sent_sigterm: bool = False
    exited_after_sigterm: bool = False
    sent_sigkill: bool = False


@dataclass
class SpawnDiagnostics:
    name: str
    model: str
    thinking: str | None
    backend: str
    timeout_ms: int
    expected_pid: int
    mesh_pid: int | None
    mesh_pid_relation: str
    expected_pid_alive_before_kill: bool
    expected_pid_alive_after_kill: bool
    mesh_pid_alive_at_timeout: bool
    pid_snapshot_expected: str | None
    pid_snapshot_mesh: str | None
    mesh_registration: dict[str, Any] | None
    pane_id: str | None
    window_id: str | None
    pane_tail: list[str] | None
    headless_tail: list[str]
    signals: SignalLog = field(default_factory=SignalLog)
    notes: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=iso_now)


def collect(
    agent: SpawnedAgent,
    backend: Backend,
    mesh: Mesh,
    timeout_ms: int,
) -> SpawnDiagnostics:
    """Snapshot everything known about a spawn before it is torn down."""
    registration = mesh.read_registration(agent.name)
    mesh_pid = registration.pid if registration else None
    relation = procs.pid_relation(mesh_pid, agent.pid)
    notes = []
    if registration is None:
        notes.append("mesh_registration_missing")
    elif relation == "mismatch":
        notes.append("mesh_pid_mismatch")
    alive = backend.is_alive(agent.pid)
    if not alive:
        notes.append("expected_pid_exited_before_timeout")
    tail = backend.tail(agent, TAIL_LINES)
    paned = agent.backend == BackendKind.PANED
    return SpawnDiagnostics(
        name=agent.name,
        model=agent.model,
        thinking=agent.thinking,
        backend=agent.backend.value,
        timeout_ms=timeout_ms,
        expected_pid=agent.pid,
        mesh_pid=mesh_pid,
        mesh_pid_relation=relation,
        expected_pid_alive_before_kill=alive,
        expected_pid_alive_after_kill=alive,
        mesh_pid_alive_at_timeout=backend.is_alive(mesh_pid) if mesh_pid else False,
        pid_snapshot_expected=procs.pid_snapshot(agent.pid),
        pid_snapshot_mesh=procs.pid_snapshot(mesh_pid),
        mesh_registration=registration.raw if registration else None,
        pane_id=agent.pane_id,
        window_id=agent.window_id,
        pane_tail=tail if paned else None,
        headless_tail=[] if paned else (tail or []),
        notes=notes,
    )


def save(diagnostics: SpawnDiagnostics, root: Path | None = None) -> Path:
    path = paths.diagnostics_dir(root) / f"{now_ms()}-{diagnostics.name}.json"
    fs.write_json_atomic(path, asdict(diagnostics))
    logger.warning(f"Spawn of {diagnostics.name} failed; diagnostics saved to {path}")
    return path
