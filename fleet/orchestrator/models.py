from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any


class AgentStatus(str, Enum):
    SPAWNING = "spawning"
    JOINED = "joined"
    IDLE = "idle"
    ASSIGNED = "assigned"
    DONE = "done"
    DEAD = "dead"


VALID_TRANSITIONS: dict[AgentStatus, frozenset[AgentStatus]] = {
    AgentStatus.SPAWNING: frozenset({AgentStatus.JOINED, AgentStatus.DEAD}),
    AgentStatus.JOINED: frozenset({AgentStatus.IDLE, AgentStatus.DEAD}),
    AgentStatus.IDLE: frozenset({AgentStatus.ASSIGNED, AgentStatus.DONE, AgentStatus.DEAD}),
    AgentStatus.ASSIGNED: frozenset({AgentStatus.IDLE, AgentStatus.DONE, AgentStatus.DEAD}),
    AgentStatus.DONE: frozenset({AgentStatus.DEAD}),
    AgentStatus.DEAD: frozenset(),
}


def can_transition(current: AgentStatus, target: AgentStatus) -> bool:
    return current == target or target in VALID_TRANSITIONS[current]


class BackendKind(str, Enum):
    PANED = "paned"
    HEADLESS = "headless"


class HistoryEventKind(str, Enum):
    SPAWN = "spawn"
    KILL = "kill"
    ASSIGN = "assign"
    DONE = "done"
    REAP = "reap"


@dataclass
class SpawnedAgent:
    """Durable record for one worker, persisted as agents/<name>.json."""

    name: str
    pid: int
    model: str
    backend: BackendKind
    spawned_at_ms: int
    spawned_by: str
    status: AgentStatus = AgentStatus.SPAWNING
    thinking: str | None = None
    mesh_session_id: str | None = None
    pane_id: str | None = None
    window_id: str | None = None
    assigned_task: str | None = None
    workstream: str | None = None
    last_activity_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["backend"] = self.backend.value
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "SpawnedAgent | None":
        """Validate a parsed record. Malformed input returns None."""
        if not isinstance(data, dict):
            return None
        try:
            name = data["name"]
            pid = data["pid"]
            if not isinstance(name, str) or not name:
                return None
            if isinstance(pid, bool) or not isinstance(pid, int):
                return None
            known = {f.name for f in fields(cls)}
            kwargs = {k: v for k, v in data.items() if k in known}
            kwargs["status"] = AgentStatus(data["status"])
            kwargs["backend"] = BackendKind(data["backend"])
            return cls(**kwargs)
        except (KeyError, ValueError, TypeError):
            return None


@dataclass
class HistoryEvent:
    event: HistoryEventKind
    agent: str
    timestamp: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event.value,
            "agent": self.agent,
            "timestamp": self.timestamp,
            "details": self.details,
        }


@dataclass
class SpawnRequest:
    """Parameters for one spawn. Absent values fall back to configured defaults."""

    name: str | None = None
    model: str | None = None
    thinking: str | None = None
    profile: str | None = None
    prompt: str | None = None
    workstream: str | None = None
    timeout_ms: int | None = None


@dataclass
class ToolResult:
    """Response of a supervisor operation: human text plus structured details.

    Expected failures never raise; they set details["error"] to a reason code.
    """

    text: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error(self) -> str | None:
        return self.details.get("error")

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SweepReport:
    reaped: list[dict[str, Any]] = field(default_factory=list)
    idle_warnings: list[str] = field(default_factory=list)
