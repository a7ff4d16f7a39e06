"""Vector memory shared by the orchestrator and its workers.

Entries (summaries, decisions, discoveries, messages) are embedded and kept
in a SQLite index under .fleet/orchestrator/memory. The store degrades
instead of failing: embedding outages trip a circuit breaker, on-disk
corruption is backed up and rebuilt, and anything else marks the store
degraded so the orchestrator keeps working without memory.
"""

import logging
import math
import re
import shutil
import sqlite3
import time
import uuid
from collections import Counter
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from fleet.errors import HealthcheckError, SchemaMismatchError
from fleet.lib import fs, paths
from fleet.lib.config import MemoryConfig
from fleet.lib.hashing import content_hash

from .embedding import Embedder, EmbeddingRequest, EmbeddingResult, TaskType, embed
from .index import VectorIndex
from .models import IMPORTANCE, EntryType, MemoryEntry, RecallResult, RememberResult

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
COLLECTION = "orchestrator_memory"
META_FILE = "meta.json"

BREAKER_FAILURES = 3
BREAKER_COOLDOWN_MS = 60_000
MAX_AGENT_SHARE = 0.4
RECENCY_WINDOW_MS = 7 * 24 * 60 * 60 * 1000
RECENCY_WEIGHT = 0.15
DAY_MS = 24 * 60 * 60 * 1000

HEALTH_AGENT = "__fleet_healthcheck__"
_ENTRY_TYPES = {t.value for t in EntryType}

CORRUPTION_HINTS = (
    "corrupt",
    "malformed",
    "not a database",
    "disk image",
    "integrity",
    "checksum",
    "unable to open",
    "no such table",
    "query_failed",
)


def approx_tokens(text: str) -> int:
    return max(1, math.ceil(len(text) / 4))


def recency_bonus(created_at_ms: int, now_ms: int) -> float:
    age = max(0, now_ms - created_at_ms)
    if age >= RECENCY_WINDOW_MS:
        return 0.0
    return RECENCY_WEIGHT * (1 - age / RECENCY_WINDOW_MS)


def is_corruption(error: BaseException) -> bool:
    text = str(error).lower()
    if isinstance(error, HealthcheckError):
        text += " " + error.health_error.lower()
    return any(hint in text for hint in CORRUPTION_HINTS)


def _sanitize(reason: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]+", "-", reason).strip("-")[:60] or "unknown"


class MemoryStore:
    def __init__(
        self,
        root: Path | None,
        config: MemoryConfig,
        embedder: Embedder | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.root = root
        self.config = config
        self.dir = paths.memory_dir(root)
        self.backups_dir = paths.memory_backups_dir(root)
        self.embedder = embedder or (lambda text, request: embed(text, request, cwd=root))
        self.clock = clock
        self.enabled = config.enabled
        self.degraded = False
        self.reason: str | None = None if config.enabled else "disabled"
        self.last_error: str | None = None
        self.consecutive_failures = 0
        self.breaker_open_until_ms = 0
        self.index: VectorIndex | None = None

    def now_ms(self) -> int:
        return int(self.clock() * 1000)

    # lifecycle

    def open(self) -> "MemoryStore":
        """Validate metadata, open the index, self-test, prune expired entries.

        Raises:
            SchemaMismatchError: persisted metadata disagrees with the config.
        """
        if not self.enabled:
            return self
        try:
            self._open_checked()
        except SchemaMismatchError:
            raise
        except (sqlite3.DatabaseError, HealthcheckError, OSError) as e:
            if is_corruption(e):
                self._self_heal(str(getattr(e, "health_error", None) or e))
            else:
                self._degrade(f"init_failed: {e}")
        if self.index is not None:
            self.prune_expired()
        return self

    def _open_checked(self) -> None:
        self._validate_meta()
        self.index = VectorIndex(self.dir, self.config.dimensions)
        check = self.index.quick_check()
        if check != "ok":
            raise HealthcheckError(f"integrity check failed: {check}", f"corrupt: {check}")
        self.self_test()

    def _validate_meta(self) -> None:
        meta_path = self.dir / META_FILE
        expected = {
            "schema_version": SCHEMA_VERSION,
            "embedding_dimensions": self.config.dimensions,
            "embedding_model": self.config.embedding_model,
            "collection": COLLECTION,
        }
        if not meta_path.exists():
            fs.write_json_atomic(meta_path, expected)
            return
        meta = fs.read_json(meta_path)
        if not isinstance(meta, dict):
            raise SchemaMismatchError(
                f"Unreadable memory metadata at {meta_path}. Run `fleet memory reset`."
            )
        if meta.get("schema_version") != SCHEMA_VERSION:
            raise SchemaMismatchError(
                f"Memory schema version {meta.get('schema_version')} does not match "
                f"{SCHEMA_VERSION}. Run `fleet memory reset`."
            )
        if meta.get("embedding_dimensions") != self.config.dimensions:
            raise SchemaMismatchError(
                f"Memory was built with {meta.get('embedding_dimensions')} dimensions but "
                f"config asks for {self.config.dimensions}. Run `fleet memory reset`."
            )

    def self_test(self) -> None:
        """Insert a probe vector, find it by similarity and by hash, delete it.

        Raises:
            HealthcheckError: with health_error naming the failed step.
        """
        assert self.index is not None
        probe_id = f"health-{uuid.uuid4().hex[:12]}"
        vector = [1.0] + [0.0] * (self.config.dimensions - 1)
        probe = MemoryEntry(
            id=probe_id,
            text="healthcheck",
            agent=HEALTH_AGENT,
            type=EntryType.MESSAGE,
            source="healthcheck",
            created_at_ms=self.now_ms(),
            content_hash=f"healthcheck-{probe_id}",
        )
        try:
            self.index.insert(probe, vector)
        except sqlite3.DatabaseError as e:
            raise HealthcheckError(f"probe insert failed: {e}", "insert_failed") from e
        try:
            found = self.index.search(vector, 1, agent=HEALTH_AGENT)
            if not found or found[0].id != probe_id:
                raise HealthcheckError("probe not returned by similarity query", "query_failed")
            by_hash = self.index.get_by_hash(probe.content_hash)
            if by_hash is None or by_hash.id != probe_id:
                raise HealthcheckError("probe not returned by hash lookup", "query_failed")
        except sqlite3.DatabaseError as e:
            raise HealthcheckError(f"probe query failed: {e}", "query_failed") from e
        finally:
            try:
                self.index.delete([probe_id])
            except sqlite3.DatabaseError as e:
                logger.warning(f"Failed to delete memory probe {probe_id}: {e}")

    def _self_heal(self, reason: str) -> None:
        self.close()
        stamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
        backup = self.backups_dir / f"{stamp}-{_sanitize(reason)}"
        logger.warning(f"Memory store looks corrupt ({reason}); moving it to {backup}")
        try:
            self.backups_dir.mkdir(parents=True, exist_ok=True)
            if self.dir.exists():
                shutil.move(str(self.dir), str(backup))
            self._open_checked()
        except (sqlite3.DatabaseError, HealthcheckError, OSError, SchemaMismatchError) as e:
            self.close()
            self._degrade(f"self_heal_failed: {e}")
            return
        self.degraded = False
        self.reason = None

    def _degrade(self, reason: str) -> None:
        logger.warning(f"Memory degraded: {reason}")
        self.degraded = True
        self.reason = reason

    def _on_runtime_error(self, error: sqlite3.DatabaseError) -> None:
        self.last_error = str(error)
        if not is_corruption(error):
            return
        try:
            self.self_test()
        except (HealthcheckError, sqlite3.DatabaseError) as e:
            self._self_heal(str(getattr(e, "health_error", None) or e))

    def close(self) -> None:
        if self.index is not None:
            try:
                self.index.close()
            except sqlite3.Error as e:
                logger.debug(f"Closing memory index failed: {e}")
            self.index = None

    # breaker

    @property
    def breaker_open(self) -> bool:
        return self.now_ms() < self.breaker_open_until_ms

    def _unavailable(self) -> str | None:
        if not self.enabled:
            return "disabled"
        if self.degraded or self.index is None:
            return self.reason or "memory_unavailable"
        if self.breaker_open:
            return "embedding_circuit_breaker_open"
        return None

    def _embed(self, text: str, task_type: TaskType) -> EmbeddingResult:
        request = EmbeddingRequest(
            provider=self.config.embedding_provider,
            model=self.config.embedding_model,
            dimensions=self.config.dimensions,
            timeout_ms=self.config.embedding_timeout_ms,
            task_type=task_type,
        )
        result = self.embedder(text, request)
        if not result.ok or not result.vector:
            self._mark_failure(result.error or "embedding_failed")
            return EmbeddingResult(error=result.error or "embedding_failed")
        if len(result.vector) != self.config.dimensions:
            self._mark_failure(f"embedding_dimensions_mismatch:{len(result.vector)}")
            return EmbeddingResult(error="embedding_dimensions_mismatch")
        self._mark_success()
        return result

    def _mark_failure(self, error: str) -> None:
        self.last_error = error
        self.consecutive_failures += 1
        if self.consecutive_failures >= BREAKER_FAILURES:
            self.breaker_open_until_ms = self.now_ms() + BREAKER_COOLDOWN_MS
            logger.warning(
                f"Embedding failed {self.consecutive_failures} times in a row ({error}); "
                f"pausing memory for {BREAKER_COOLDOWN_MS // 1000}s"
            )

    def _mark_success(self) -> None:
        self.consecutive_failures = 0
        self.breaker_open_until_ms = 0

    # write path

    def remember(
        self,
        text: str,
        agent: str,
        entry_type: EntryType,
        source: str,
        task_id: str | None = None,
        workstream: str | None = None,
        files: list[str] | None = None,
    ) -> RememberResult:
        trimmed = text.strip()
        if not trimmed:
            return RememberResult(ok=False, error="empty_text")
        unavailable = self._unavailable()
        if unavailable:
            return RememberResult(ok=False, degraded=unavailable != "disabled", error=unavailable)

        digest = content_hash(trimmed)
        try:
            existing = self.index.get_by_hash(digest)
        except sqlite3.DatabaseError as e:
            self._on_runtime_error(e)
            return RememberResult(ok=False, degraded=True, error=str(e))
        if existing is not None:
            return RememberResult(ok=True, id=existing.id)

        embedded = self._embed(trimmed, TaskType.RETRIEVAL_DOCUMENT)
        if not embedded.ok:
            return RememberResult(ok=False, degraded=True, error=embedded.error)

        now = self.now_ms()
        entry = MemoryEntry(
            id=f"{now}-{uuid.uuid4().hex[:8]}",
            text=trimmed,
            agent=agent,
            type=entry_type,
            source=source,
            created_at_ms=now,
            content_hash=digest,
            task_id=task_id,
            workstream=(workstream or "").strip() or None,
            files=list(files or []),
        )
        try:
            self.index.insert(entry, embedded.vector)
            self.evict_if_needed()
        except sqlite3.IntegrityError:
            # raced with an identical insert
            return RememberResult(ok=True)
        except sqlite3.DatabaseError as e:
            self._on_runtime_error(e)
            return RememberResult(ok=False, degraded=True, error=str(e))
        return RememberResult(ok=True, inserted=True, id=entry.id)

    def evict_if_needed(self) -> int:
        """Trim to max_entries, taking from agents over their share first.

        Candidates go lowest importance first, then oldest. No agent keeps
        more than floor(max_entries * 0.4) entries once eviction runs.
        """
        assert self.index is not None
        limit = self.config.max_entries
        candidates = self.index.eviction_candidates()
        if len(candidates) <= limit:
            return 0

        per_agent = max(1, math.floor(limit * MAX_AGENT_SHARE))
        candidates.sort(key=lambda c: (IMPORTANCE[EntryType(c["type"])], c["created_at_ms"]))
        counts = Counter(c["agent"] for c in candidates)
        remaining = len(candidates)
        doomed: list[str] = []
        kept = []
        for c in candidates:
            if counts[c["agent"]] > per_agent:
                doomed.append(c["id"])
                counts[c["agent"]] -= 1
                remaining -= 1
            else:
                kept.append(c)
        for c in kept:
            if remaining <= limit:
                break
            doomed.append(c["id"])
            remaining -= 1

        deleted = self.index.delete(doomed)
        logger.info(f"Evicted {deleted} memory entries (limit {limit})")
        return deleted

    # read path

    def recall(
        self,
        query: str,
        topk: int | None = None,
        min_similarity: float | None = None,
        max_tokens: int | None = None,
        agent: str | None = None,
        entry_type: EntryType | None = None,
        workstream: str | None = None,
    ) -> RecallResult:
        trimmed = query.strip()
        if not trimmed:
            return RecallResult(error="empty_query")
        unavailable = self._unavailable()
        if unavailable:
            return RecallResult(degraded=unavailable != "disabled", error=unavailable)

        embedded = self._embed(trimmed, TaskType.RETRIEVAL_QUERY)
        if not embedded.ok:
            return RecallResult(degraded=True, error=embedded.error)

        topk = topk or self.config.auto_inject_top_k
        threshold = self.config.min_similarity if min_similarity is None else min_similarity
        budget = self.config.max_injection_tokens if max_tokens is None else max_tokens
        try:
            hits = self.index.search(
                embedded.vector,
                topk,
                agent=agent,
                entry_type=entry_type,
                workstream=(workstream or "").strip() or None,
            )
        except sqlite3.DatabaseError as e:
            self._on_runtime_error(e)
            return RecallResult(degraded=True, error=str(e))

        now = self.now_ms()
        hits = [h for h in hits if h.agent != HEALTH_AGENT and (h.similarity or 0) >= threshold]
        hits.sort(
            key=lambda h: (h.similarity + recency_bonus(h.created_at_ms, now), h.created_at_ms),
            reverse=True,
        )

        results, used = [], 0
        for hit in hits:
            cost = approx_tokens(hit.text)
            if used + cost > budget:
                continue
            results.append(hit)
            used += cost
        return RecallResult(results=results, tokens=used)

    # maintenance

    def prune_expired(self) -> int:
        if self.index is None:
            return 0
        now = self.now_ms()
        ttl = self.config.ttl_days
        try:
            expired = [
                entry_id
                for entry_id, entry_type, created in self.index.created_by_type()
                if entry_type in _ENTRY_TYPES
                and created + ttl.for_type(entry_type) * DAY_MS <= now
            ]
            deleted = self.index.delete(expired)
        except sqlite3.DatabaseError as e:
            self._on_runtime_error(e)
            return 0
        if deleted:
            logger.info(f"Pruned {deleted} expired memory entries")
        return deleted

    def forget_agent(self, agent: str) -> int:
        if self.index is None:
            return 0
        try:
            return self.index.delete_agent(agent)
        except sqlite3.DatabaseError as e:
            self._on_runtime_error(e)
            return 0

    def stats(self) -> dict[str, Any]:
        now = self.now_ms()
        data: dict[str, Any] = {
            "enabled": self.enabled,
            "degraded": self.degraded,
            "reason": self.reason,
            "path": str(self.dir),
            "embedding_provider": self.config.embedding_provider,
            "embedding_model": self.config.embedding_model,
            "dimensions": self.config.dimensions,
            "max_entries": self.config.max_entries,
            "doc_count": 0,
            "by_type": {},
            "by_agent": {},
            "by_workstream": {},
            "consecutive_failures": self.consecutive_failures,
            "breaker_open": self.breaker_open,
            "breaker_seconds_remaining": max(0, math.ceil((self.breaker_open_until_ms - now) / 1000)),
            "last_error": self.last_error,
        }
        if self.index is None:
            return data
        try:
            data["doc_count"] = self.index.count()
            data["by_type"] = self.index.group_counts("type")
            data["by_agent"] = self.index.group_counts("agent")
            data["by_workstream"] = self.index.group_counts("workstream")
        except sqlite3.DatabaseError as e:
            self._on_runtime_error(e)
        return data


_stores: dict[Path, MemoryStore] = {}


def ensure_memory(
    root: Path | None,
    config: MemoryConfig,
    embedder: Embedder | None = None,
) -> MemoryStore:
    """Process-wide store for a project directory, opened on first use.

    Raises:
        SchemaMismatchError: persisted metadata disagrees with the config.
    """
    key = paths.memory_dir(root).resolve()
    store = _stores.get(key)
    if store is not None:
        return store
    store = MemoryStore(root, config, embedder=embedder).open()
    _stores[key] = store
    return store


def reset_memory(root: Path | None) -> bool:
    """Close and delete the project's memory directory."""
    directory = paths.memory_dir(root)
    store = _stores.pop(directory.resolve(), None)
    if store is not None:
        store.close()
    if not directory.exists():
        return False
    shutil.rmtree(directory)
    return True


def close_all() -> None:
    for store in _stores.values():
        store.close()
    _stores.clear()


def _reset_for_testing() -> None:
    close_all()
