"""Append-only lifecycle log (history.jsonl)."""

import json
import logging
from pathlib import Path
from typing import Any

from fleet.lib import paths
from fleet.lib.format import iso_now

from .models import HistoryEvent, HistoryEventKind

logger = logging.getLogger(__name__)


class History:
    def __init__(self, root: Path | None = None):
        self.path = paths.history_file(root)

    def log(self, event: HistoryEventKind, agent: str, **details: Any) -> HistoryEvent:
        entry = HistoryEvent(event=event, agent=agent, timestamp=iso_now(), details=details)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a") as f:
            f.write(json.dumps(entry.to_dict()) + "\n")
        return entry

    def read(self, limit: int | None = None, agent: str | None = None) -> list[HistoryEvent]:
        """Most recent events last. Malformed lines are skipped."""
        if not self.path.exists():
            return []
        events = []
        with open(self.path) as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    raw = json.loads(line)
                    entry = HistoryEvent(
                        event=HistoryEventKind(raw["event"]),
                        agent=raw["agent"],
                        timestamp=raw["timestamp"],
                        details=raw.get("details") or {},
                    )
                except (ValueError, KeyError, TypeError):
                    logger.debug(f"Skipping malformed history line: {line[:80]}")
                    continue
                if agent and entry.agent != agent:
                    continue
                events.append(entry)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events
