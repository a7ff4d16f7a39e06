"""Agent record store: one JSON file per spawned agent, written atomically."""

import contextlib
import logging
import threading
from dataclasses import replace
from pathlib import Path

from fleet.lib import fs, paths
from fleet.lib.format import now_ms

from .models import AgentStatus, SpawnedAgent, can_transition

logger = logging.getLogger(__name__)


class RecordStore:
    def __init__(self, root: Path | None = None):
        self.dir = paths.agents_dir(root)
        self._lock = threading.RLock()

    def _path(self, name: str) -> Path:
        return self.dir / f"{name}.json"

    def put(self, agent: SpawnedAgent) -> None:
        with self._lock:
            fs.write_json_atomic(self._path(agent.name), agent.to_dict())

    def get(self, name: str) -> SpawnedAgent | None:
        return SpawnedAgent.from_dict(fs.read_json(self._path(name)))

    def list_all(self) -> list[SpawnedAgent]:
        """Every readable record. Corrupt files are skipped, never fatal."""
        if not self.dir.exists():
            return []
        agents = []
        for path in sorted(self.dir.glob("*.json")):
            agent = SpawnedAgent.from_dict(fs.read_json(path))
            if agent is None:
                logger.warning(f"Skipping corrupt agent record {path.name}")
                continue
            agents.append(agent)
        return agents

    def list_active(self) -> list[SpawnedAgent]:
        return [a for a in self.list_all() if a.status != AgentStatus.DEAD]

    def remove(self, name: str) -> None:
        with self._lock, contextlib.suppress(FileNotFoundError):
            self._path(name).unlink()

    def transition(self, name: str, target: AgentStatus, **changes) -> bool:
        """Move a record to `target`, applying `changes` in the same write.

        Rejected transitions leave the stored file untouched. A same-state
        transition succeeds without writing. `assigned_task` is kept non-null
        exactly while the record is assigned.
        """
        with self._lock:
            current = self.get(name)
            if current is None:
                return False
            if current.status == target and not changes:
                return True
            if not can_transition(current.status, target):
                logger.debug(f"Rejected transition {name}: {current.status.value} -> {target.value}")
                return False
            updated = replace(current, status=target, last_activity_ms=now_ms(), **changes)
            if target != AgentStatus.ASSIGNED:
                updated.assigned_task = None
            elif not updated.assigned_task:
                return False
            self.put(updated)
            return True

    def update(self, name: str, **changes) -> SpawnedAgent | None:
        """Rewrite fields on an existing record without changing status."""
        with self._lock:
            current = self.get(name)
            if current is None:
                return None
            updated = replace(current, **changes)
            self.put(updated)
            return updated
