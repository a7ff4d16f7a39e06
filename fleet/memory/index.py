"""SQLite vector index: one row per memory entry, vectors as float32 blobs.

Vectors are stored unit-length, so similarity is a plain dot product.
"""

import json
import logging
import operator
import sqlite3
from array import array
from pathlib import Path
from typing import Any

from fleet.lib.sqlite import connect

from .models import EntryType, MemoryEntry

logger = logging.getLogger(__name__)

DB_FILE = "index.db"

SCHEMA = """
CREATE TABLE IF NOT EXISTS entries (
    id TEXT PRIMARY KEY,
    text TEXT NOT NULL,
    agent TEXT NOT NULL,
    type TEXT NOT NULL,
    source TEXT NOT NULL,
    created_at_ms INTEGER NOT NULL,
    content_hash TEXT NOT NULL UNIQUE,
    task_id TEXT,
    workstream TEXT,
    files TEXT NOT NULL DEFAULT '[]',
    vector BLOB NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_entries_agent ON entries(agent);
CREATE INDEX IF NOT EXISTS idx_entries_created ON entries(created_at_ms);
"""

_COLUMNS = "id, text, agent, type, source, created_at_ms, content_hash, task_id, workstream, files"


def pack(vector: list[float]) -> bytes:
    return array("f", vector).tobytes()


def unpack(blob: bytes) -> array:
    values = array("f")
    values.frombytes(blob)
    return values


def similarity(a, b) -> float:
    return sum(map(operator.mul, a, b))


def _entry(row: sqlite3.Row, score: float | None = None) -> MemoryEntry:
    return MemoryEntry(
        id=row["id"],
        text=row["text"],
        agent=row["agent"],
        type=EntryType(row["type"]),
        source=row["source"],
        created_at_ms=row["created_at_ms"],
        content_hash=row["content_hash"],
        task_id=row["task_id"],
        workstream=row["workstream"],
        files=json.loads(row["files"] or "[]"),
        similarity=score,
    )


class VectorIndex:
    def __init__(self, directory: Path, dimensions: int):
        self.directory = directory
        self.dimensions = dimensions
        directory.mkdir(parents=True, exist_ok=True)
        self.conn = connect(directory / DB_FILE)
        try:
            self.conn.executescript(SCHEMA)
        except sqlite3.DatabaseError:
            self.conn.close()
            raise

    def close(self) -> None:
        self.conn.close()

    def quick_check(self) -> str:
        return self.conn.execute("PRAGMA quick_check").fetchone()[0]

    def insert(self, entry: MemoryEntry, vector: list[float]) -> None:
        if len(vector) != self.dimensions:
            raise ValueError(f"vector has {len(vector)} dimensions, index expects {self.dimensions}")
        self.conn.execute(
            f"INSERT INTO entries ({_COLUMNS}, vector) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entry.id,
                entry.text,
                entry.agent,
                entry.type.value,
                entry.source,
                entry.created_at_ms,
                entry.content_hash,
                entry.task_id,
                entry.workstream,
                json.dumps(entry.files),
                pack(vector),
            ),
        )

    def get_by_hash(self, content_hash: str) -> MemoryEntry | None:
        row = self.conn.execute(
            f"SELECT {_COLUMNS} FROM entries WHERE content_hash = ?", (content_hash,)
        ).fetchone()
        return _entry(row) if row else None

    def search(
        self,
        vector: list[float],
        topk: int,
        agent: str | None = None,
        entry_type: EntryType | None = None,
        workstream: str | None = None,
    ) -> list[MemoryEntry]:
        """Top-k entries by similarity, restricted by the given filters."""
        clauses, params = [], []
        if agent:
            clauses.append("agent = ?")
            params.append(agent)
        if entry_type:
            clauses.append("type = ?")
            params.append(entry_type.value)
        if workstream:
            clauses.append("workstream = ?")
            params.append(workstream)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(f"SELECT {_COLUMNS}, vector FROM entries {where}", params)
        scored = [(similarity(vector, unpack(row["vector"])), row) for row in rows]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [_entry(row, score) for score, row in scored[:topk]]

    def count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM entries").fetchone()[0]

    def eviction_candidates(self) -> list[dict[str, Any]]:
        rows = self.conn.execute("SELECT id, agent, type, created_at_ms FROM entries").fetchall()
        return [dict(row) for row in rows]

    def created_by_type(self) -> list[tuple[str, str, int]]:
        rows = self.conn.execute("SELECT id, type, created_at_ms FROM entries").fetchall()
        return [(row["id"], row["type"], row["created_at_ms"]) for row in rows]

    def delete(self, ids: list[str]) -> int:
        if not ids:
            return 0
        deleted = 0
        for start in range(0, len(ids), 500):
            chunk = ids[start : start + 500]
            placeholders = ",".join("?" * len(chunk))
            cursor = self.conn.execute(f"DELETE FROM entries WHERE id IN ({placeholders})", chunk)
            deleted += cursor.rowcount
        return deleted

    def delete_agent(self, agent: str) -> int:
        return self.conn.execute("DELETE FROM entries WHERE agent = ?", (agent,)).rowcount

    def group_counts(self, column: str) -> dict[str, int]:
        if column not in ("type", "agent", "workstream"):
            raise ValueError(f"cannot group by {column}")
        rows = self.conn.execute(
            f"SELECT {column} AS key, COUNT(*) AS n FROM entries GROUP BY {column}"
        ).fetchall()
        return {row["key"] or "(none)": row["n"] for row in rows}
