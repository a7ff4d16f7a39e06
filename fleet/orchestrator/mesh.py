"""Adapter for the shared agent mesh.

The mesh is owned by the workers: each registers itself as
registry/<name>.json and reads its inbox at inbox/<name>/. Fleet reads
registrations, drops messages into inboxes, and removes leftovers.
"""

import json
import logging
import os
import random
import shutil
import string
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from fleet.lib import fs, paths
from fleet.lib.format import iso_now, now_ms, parse_iso_ms
from fleet.lib.outcome import Outcome
from fleet.lib.procs import is_pid_alive

logger = logging.getLogger(__name__)


@dataclass
class Registration:
    name: str
    pid: int | None
    session_id: str | None = None
    model: str | None = None
    last_activity_iso: str | None = None
    current_activity: str | None = None
    tool_calls: int = 0
    tokens: int = 0
    files_modified: list[str] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def last_activity_ms(self) -> int | None:
        return parse_iso_ms(self.last_activity_iso)

    @classmethod
    def parse(cls, name: str, data: Any) -> "Registration | None":
        if not isinstance(data, dict):
            return None
        pid = data.get("pid")
        if isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0:
            pid = None
        activity = data.get("activity") if isinstance(data.get("activity"), dict) else {}
        session = data.get("session") if isinstance(data.get("session"), dict) else {}
        files = session.get("filesModified")
        return cls(
            name=data.get("name") or name,
            pid=pid,
            session_id=data.get("sessionId"),
            model=data.get("model"),
            last_activity_iso=activity.get("lastActivityAt") or data.get("startedAt"),
            current_activity=activity.get("currentActivity"),
            tool_calls=_as_int(session.get("toolCalls")),
            tokens=_as_int(session.get("tokens")),
            files_modified=[f for f in files if isinstance(f, str)] if isinstance(files, list) else [],
            raw=data,
        )


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class Mesh(Protocol):
    def list_live_agents(self) -> list[Registration]: ...

    def read_registration(self, name: str) -> Registration | None: ...

    def registration_mtime_ms(self, name: str) -> int | None: ...

    def send_message(self, sender: str, to: str, text: str) -> Outcome: ...

    def clear_inbox(self, name: str) -> None: ...

    def remove_registration(self, name: str) -> Outcome: ...


class FileMesh:
    """Mesh backed by the registry/ and inbox/ directories under one root."""

    def __init__(self, root: Path | None = None, is_alive=None):
        self.root = root or paths.mesh_root()
        self.registry_dir = self.root / "registry"
        self.inbox_dir = self.root / "inbox"
        self._is_alive = is_alive or is_pid_alive

    def _registration_path(self, name: str) -> Path:
        return self.registry_dir / f"{name}.json"

    def read_registration(self, name: str) -> Registration | None:
        return Registration.parse(name, fs.read_json(self._registration_path(name)))

    def registration_mtime_ms(self, name: str) -> int | None:
        try:
            return int(self._registration_path(name).stat().st_mtime * 1000)
        except OSError:
            return None

    def list_live_agents(self) -> list[Registration]:
        """Registrations whose pid is still running."""
        if not self.registry_dir.exists():
            return []
        live = []
        for path in sorted(self.registry_dir.glob("*.json")):
            reg = Registration.parse(path.stem, fs.read_json(path))
            if reg is None or not self._is_alive(reg.pid):
                continue
            live.append(reg)
        return live

    def send_message(self, sender: str, to: str, text: str) -> Outcome:
        inbox = self.inbox_dir / to
        message = {
            "id": str(uuid.uuid4()),
            "from": sender,
            "to": to,
            "text": text,
            "timestamp": iso_now(),
            "replyTo": None,
        }
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
        try:
            inbox.mkdir(parents=True, exist_ok=True)
            (inbox / f"{now_ms()}-{suffix}.json").write_text(json.dumps(message, indent=2))
        except OSError as e:
            logger.warning(f"Failed to deliver message to {to}: {e}")
            return Outcome.failure(str(e))
        return Outcome.success()

    def read_inbox(self, name: str) -> list[dict[str, Any]]:
        inbox = self.inbox_dir / name
        if not inbox.exists():
            return []
        messages = []
        for path in sorted(inbox.glob("*.json")):
            data = fs.read_json(path)
            if isinstance(data, dict):
                messages.append(data)
        return messages

    def clear_inbox(self, name: str) -> None:
        inbox = self.inbox_dir / name
        if inbox.exists():
            shutil.rmtree(inbox, ignore_errors=True)

    def remove_registration(self, name: str) -> Outcome:
        try:
            os.unlink(self._registration_path(name))
        except FileNotFoundError:
            return Outcome.success()
        except OSError as e:
            logger.debug(f"Could not remove registration for {name}: {e}")
            return Outcome.failure(str(e))
        return Outcome.success()
