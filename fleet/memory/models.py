from dataclasses import dataclass, field
from enum import Enum


class EntryType(str, Enum):
    MESSAGE = "message"
    DISCOVERY = "discovery"
    DECISION = "decision"
    SUMMARY = "summary"


IMPORTANCE = {
    EntryType.MESSAGE: 0,
    EntryType.DISCOVERY: 1,
    EntryType.DECISION: 2,
    EntryType.SUMMARY: 3,
}


@dataclass
class MemoryEntry:
    id: str
    text: str
    agent: str
    type: EntryType
    source: str
    created_at_ms: int
    content_hash: str
    task_id: str | None = None
    workstream: str | None = None
    files: list[str] = field(default_factory=list)
    similarity: float | None = None

    @property
    def importance(self) -> int:
        return IMPORTANCE[self.type]


@dataclass
class RememberResult:
    ok: bool
    inserted: bool = False
    degraded: bool = False
    error: str | None = None
    id: str | None = None


@dataclass
class RecallResult:
    results: list[MemoryEntry] = field(default_factory=list)
    degraded: bool = False
    error: str | None = None
    tokens: int = 0
