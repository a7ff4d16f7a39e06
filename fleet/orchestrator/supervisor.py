"""Lifecycle supervisor: spawn, assign, complete, kill and reap worker agents.

One Supervisor is built per orchestrator session. It owns the set of agent
names it spawned, and every lifecycle operation goes through it. Expected
failures come back as ToolResult errors, never as exceptions.
"""

import logging
import os
import shlex
import signal
import threading
import time
from collections.abc import Callable
from pathlib import Path

from fleet.errors import BackendError, SchemaMismatchError
from fleet.lib import names, paths, procs
from fleet.lib.config import THINKING_LEVELS, FleetConfig, load_config
from fleet.lib.format import format_ms, now_ms
from fleet.memory.embedding import Embedder
from fleet.memory.models import EntryType
from fleet.memory.store import MemoryStore, close_all, ensure_memory, reset_memory

from . import diagnostics, profiles, prompts
from .backends import Backend, HeadlessBackend, PanedBackend, select_backend
from .diagnostics import SignalLog
from .history import History
from .mesh import FileMesh, Mesh, Registration
from .models import (
    AgentStatus,
    BackendKind,
    HistoryEventKind,
    SpawnedAgent,
    SpawnRequest,
    SweepReport,
    ToolResult,
    can_transition,
)
from .records import RecordStore
from .timeouts import poll_interval_ms, spawn_timeout_ms, split_thinking_suffix

logger = logging.getLogger(__name__)

LOG_LINES_DEFAULT = 50
LOG_LINES_MAX = 500
SIGKILL_WAIT_MS = 1000
REGISTRATION_SKEW_MS = 1000


def _result(text: str, mode: str, **details) -> ToolResult:
    return ToolResult(text, {"mode": mode, **details})


class Supervisor:
    def __init__(
        self,
        root: Path | None = None,
        config: FleetConfig | None = None,
        mesh: Mesh | None = None,
        backends: dict[BackendKind, Backend] | None = None,
        embedder: Embedder | None = None,
        identity: str | None = None,
        kill_scheduler: Callable[[str], None] | None = None,
    ):
        self.root = root or paths.project_root()
        self.config = config or load_config(self.root)
        self.orch = self.config.orchestrator
        self.identity = identity or os.environ.get("FLEET_AGENT_NAME") or "orchestrator"
        self.mesh = mesh or FileMesh()
        self.records = RecordStore(self.root)
        self.history = History(self.root)
        self.backends = backends or {
            BackendKind.PANED: PanedBackend(),
            BackendKind.HEADLESS: HeadlessBackend(cwd=self.root, on_exit=self._on_headless_exit),
        }
        self.embedder = embedder
        self.kill_scheduler = kill_scheduler
        self.owned: set[str] = set()
        self._idle_warned: dict[str, int] = {}
        self._closing: set[str] = set()
        self._lock = threading.RLock()
        self._memory: MemoryStore | None = None
        self._memory_error: str | None = None

    # collaborators

    def memory(self) -> MemoryStore | None:
        """The project's memory store, or None when disabled or unusable."""
        if not self.orch.memory.enabled:
            return None
        if self._memory is None and self._memory_error is None:
            try:
                self._memory = ensure_memory(self.root, self.orch.memory, embedder=self.embedder)
            except SchemaMismatchError as e:
                logger.warning(f"Memory unavailable: {e}")
                self._memory_error = str(e)
        return self._memory

    def _healthy_memory(self) -> MemoryStore | None:
        store = self.memory()
        if store is None or not store.enabled or store.degraded:
            return None
        return store

    def _backend_for(self, agent: SpawnedAgent) -> Backend:
        return self.backends.get(agent.backend) or select_backend(self.backends)

    def _is_alive(self, agent: SpawnedAgent) -> bool:
        return self._backend_for(agent).is_alive(agent.pid)

    # spawn

    def _name_taken(self, name: str, live: set[str]) -> bool:
        if name == self.identity:
            return True
        existing = self.records.get(name)
        if existing is not None and existing.status != AgentStatus.DEAD:
            return True
        return name in live

    def _resolve_name(self, requested: str | None) -> str | None:
        live = {reg.name for reg in self.mesh.list_live_agents()}
        if requested and not self._name_taken(requested, live):
            return requested
        for _ in range(self.orch.name_attempts):
            candidate = names.generate_name()
            if not self._name_taken(candidate, live):
                return candidate
        return None

    def spawn(self, request: SpawnRequest | None = None) -> ToolResult:
        request = request or SpawnRequest()
        active = self.records.list_active()
        if len(active) >= self.orch.max_spawned_agents:
            return _result(
                f"Error: max spawned agents reached ({len(active)}/{self.orch.max_spawned_agents}).",
                "spawn",
                error="limit_reached",
                max_spawned_agents=self.orch.max_spawned_agents,
            )

        requested = (request.name or "").strip() or None
        if requested and not names.is_valid_name(requested):
            return _result(
                f"Error: invalid agent name '{requested}'. Use letters, digits, '_' or '-' (max 50).",
                "spawn",
                error="invalid_name",
                name=requested,
            )

        profile_model = None
        if request.profile:
            profile = profiles.find_profile(self.root, request.profile.strip())
            if profile is None or not profile.model:
                return _result(
                    f"Error: profile '{request.profile}' not found (or missing model) in "
                    f"{paths.profiles_dir(self.root)}.",
                    "spawn",
                    error="profile_not_found",
                    profile=request.profile,
                )
            profile_model = profile.model

        model = (request.model or "").strip() or profile_model or self.orch.default_model
        _, suffix = split_thinking_suffix(model)
        thinking = suffix or (request.thinking or "").strip().lower() or self.orch.default_thinking
        if thinking not in THINKING_LEVELS:
            return _result(
                f"Error: thinking must be one of {', '.join(THINKING_LEVELS)}.",
                "spawn",
                error="invalid_thinking",
                thinking=thinking,
            )
        timeout = spawn_timeout_ms(self.orch, model, thinking, request.timeout_ms)
        workstream = (request.workstream or "").strip() or None

        name = self._resolve_name(requested)
        if name is None:
            return _result(
                f"Error: failed to find a free agent name after {self.orch.name_attempts} attempts.",
                "spawn",
                error="name_collision",
                requested=requested,
            )

        self.mesh.clear_inbox(name)
        command = shlex.split(self.orch.worker_command) + ["--model", model]
        if suffix is None:
            command += ["--thinking", thinking]
        command.append(prompts.initial_prompt(name, model, self.identity, request.prompt))
        env = {"FLEET_AGENT_NAME": name, "FLEET_ORCHESTRATOR": self.identity}
        mesh_root = getattr(self.mesh, "root", None)
        if mesh_root is not None:
            env["FLEET_MESH_DIR"] = str(mesh_root)

        # exit handlers stay out of the way until the handshake settles
        self._closing.add(name)
        try:
            return self._launch(
                name,
                command,
                env,
                model=model,
                thinking=thinking,
                workstream=workstream,
                timeout=timeout,
                prompt=request.prompt,
            )
        finally:
            self._closing.discard(name)

    def _launch(
        self,
        name: str,
        command: list[str],
        env: dict[str, str],
        model: str,
        thinking: str,
        workstream: str | None,
        timeout: int,
        prompt: str | None,
    ) -> ToolResult:
        backend = select_backend(self.backends)
        spawned_at = now_ms()
        try:
            handle = backend.spawn(name, command, env)
        except BackendError as e:
            return _result(
                f"Error: failed to start {name}: {e}",
                "spawn",
                error="backend_spawn_failed",
                name=name,
                backend=backend.kind.value,
            )

        agent = SpawnedAgent(
            name=name,
            pid=handle.pid,
            model=model,
            backend=backend.kind,
            spawned_at_ms=spawned_at,
            spawned_by=self.identity,
            thinking=thinking,
            pane_id=handle.pane_id,
            window_id=handle.window_id,
            workstream=workstream,
            last_activity_ms=spawned_at,
        )
        self.records.put(agent)
        self.owned.add(name)
        logger.info(f"Spawned {name} pid={handle.pid} via {backend.kind.value}; waiting {timeout}ms to join")

        joined = self._await_join(agent, backend, timeout)
        if joined is None:
            return self._fail_spawn(agent, backend, timeout)

        pid = joined.pid or agent.pid
        self.records.transition(
            name, AgentStatus.JOINED, pid=pid, mesh_session_id=joined.session_id
        )
        self.records.transition(name, AgentStatus.IDLE)
        self.history.log(
            HistoryEventKind.SPAWN,
            name,
            model=model,
            thinking=thinking,
            backend=backend.kind.value,
            pid=pid,
            timeout_ms=timeout,
            workstream=workstream,
        )
        injected = self._bootstrap_memory(name, prompt, workstream)
        return _result(
            f"Spawned {name} ({model}, {backend.kind.value}) pid {pid}.",
            "spawn",
            name=name,
            pid=pid,
            model=model,
            thinking=thinking,
            backend=backend.kind.value,
            session_id=joined.session_id,
            pane_id=handle.pane_id,
            window_id=handle.window_id,
            workstream=workstream,
            timeout_ms=timeout,
            memory_injected=injected,
        )

    def _await_join(
        self, agent: SpawnedAgent, backend: Backend, timeout_ms: int
    ) -> Registration | None:
        """Poll the mesh until this spawn's own registration shows up.

        A registration counts only if its pid is alive and is the spawned pid
        or one of its descendants, and the file is not older than the spawn.
        """
        earliest = agent.spawned_at_ms - REGISTRATION_SKEW_MS

        def joined() -> bool:
            reg = self.mesh.read_registration(agent.name)
            if reg is None or not reg.pid or not backend.is_alive(reg.pid):
                return False
            mtime = self.mesh.registration_mtime_ms(agent.name)
            if mtime is None or mtime < earliest:
                return False
            return procs.pid_relation(reg.pid, agent.pid) in ("exact", "descendant")

        def settled() -> bool:
            return joined() or not backend.is_alive(agent.pid)

        procs.wait_until(settled, timeout_ms, poll_interval_ms(timeout_ms))
        if joined():
            return self.mesh.read_registration(agent.name)
        return None

    def _fail_spawn(self, agent: SpawnedAgent, backend: Backend, timeout_ms: int) -> ToolResult:
        name = agent.name
        bundle = diagnostics.collect(agent, backend, self.mesh, timeout_ms)
        exited = not bundle.expected_pid_alive_before_kill
        bundle.signals = self._escalate(agent, backend)
        bundle.expected_pid_alive_after_kill = backend.is_alive(agent.pid)
        path = diagnostics.save(bundle, self.root)
        backend.release(agent)
        self.records.remove(name)
        self._drop_stale_registration(agent, backend)
        self.owned.discard(name)
        reason = "spawn_exited" if exited else "spawn_timeout"
        self.history.log(HistoryEventKind.REAP, name, reason=reason, diagnostics=str(path))

        if exited:
            text = f"Error: {name} exited before joining the mesh. Diagnostics: {path}"
        else:
            text = f"Error: {name} did not join the mesh within {timeout_ms}ms. Diagnostics: {path}"
        return _result(
            text,
            "spawn",
            error=reason,
            name=name,
            timeout_ms=timeout_ms,
            diagnostics_path=str(path),
        )

    def _bootstrap_memory(self, name: str, prompt: str | None, workstream: str | None) -> int:
        query = (prompt or "").strip()
        store = self._healthy_memory() if query else None
        if store is None:
            return 0
        recalled = store.recall(query, workstream=workstream)
        if not recalled.results:
            return 0
        self.mesh.send_message(self.identity, name, prompts.memory_context(recalled.results))
        return len(recalled.results)

    # signals

    def _escalate(self, agent: SpawnedAgent, backend: Backend) -> SignalLog:
        """SIGTERM, wait sigterm_grace_ms, then SIGKILL if still running."""
        log = SignalLog()
        if not backend.is_alive(agent.pid):
            return log
        log.sent_sigterm = backend.terminate(agent, signal.SIGTERM).ok
        if procs.wait_until(lambda: not backend.is_alive(agent.pid), self.orch.sigterm_grace_ms):
            log.exited_after_sigterm = True
            return log
        log.sent_sigkill = backend.terminate(agent, signal.SIGKILL).ok
        procs.wait_until(lambda: not backend.is_alive(agent.pid), SIGKILL_WAIT_MS)
        return log

    def _drop_stale_registration(self, agent: SpawnedAgent, backend: Backend) -> None:
        reg = self.mesh.read_registration(agent.name)
        if reg is None:
            return
        if reg.pid == agent.pid or not backend.is_alive(reg.pid):
            self.mesh.remove_registration(agent.name)

    # assignment

    def assign(self, name: str, task: str, workstream: str | None = None) -> ToolResult:
        name = (name or "").strip()
        task = (task or "").strip()
        if not name:
            return _result("Error: name is required.", "assign", error="missing_name")
        if not task:
            return _result("Error: task is required.", "assign", error="missing_task", name=name)

        agent = self.records.get(name)
        if agent is None:
            return _result(f"Error: no spawned agent named {name}.", "assign", error="not_found", name=name)
        if agent.status == AgentStatus.ASSIGNED:
            return _result(
                f"Error: {name} is already working on: {agent.assigned_task}",
                "assign",
                error="already_assigned",
                name=name,
                task=agent.assigned_task,
            )
        if agent.status == AgentStatus.SPAWNING:
            return _result(
                f"Error: {name} is still spawning.", "assign", error="still_spawning", name=name
            )
        if agent.status in (AgentStatus.DONE, AgentStatus.DEAD):
            return _result(
                f"Error: {name} is not running ({agent.status.value}).",
                "assign",
                error="not_running",
                name=name,
                status=agent.status.value,
            )
        if not self._is_alive(agent):
            self._reap(agent, "pid_exited")
            return _result(
                f"Error: {name} is not running (process exited).",
                "assign",
                error="not_running",
                name=name,
            )
        if agent.status == AgentStatus.JOINED:
            self.records.transition(name, AgentStatus.IDLE)

        latest = self.records.get(name)
        if latest is None or latest.status != AgentStatus.IDLE:
            return _result(
                f"Error: {name} is not idle and cannot receive an assignment.",
                "assign",
                error="not_idle",
                name=name,
                status=latest.status.value if latest else None,
            )

        stream = (workstream or "").strip() or latest.workstream
        context, injected, degraded = "", 0, False
        store = self.memory()
        if store is not None:
            recalled = store.recall(
                task,
                topk=self.orch.memory.auto_inject_top_k,
                min_similarity=self.orch.memory.min_similarity,
                max_tokens=self.orch.memory.max_injection_tokens,
                workstream=stream,
            )
            degraded = recalled.degraded
            injected = len(recalled.results)
            context = prompts.memory_context(recalled.results)

        message = prompts.assignment_message(task, stream, context)
        sent = self.mesh.send_message(self.identity, name, message)
        if not sent.ok:
            return _result(
                f"Error: failed to deliver task to {name}: {sent.error}",
                "assign",
                error="send_failed",
                name=name,
            )

        self.records.transition(name, AgentStatus.ASSIGNED, assigned_task=task, workstream=stream)
        self._idle_warned.pop(name, None)
        self.history.log(
            HistoryEventKind.ASSIGN, name, task=task, workstream=stream, memory_injected=injected
        )
        logger.info(f"Assigned {name}: {task[:80]}")
        return _result(
            f"Assigned to {name}: {task}",
            "assign",
            name=name,
            task=task,
            workstream=stream,
            memory_injected=injected,
            memory_degraded=degraded,
        )

    # completion

    def done(self, summary: str, files: list[str] | None = None, caller: str | None = None) -> ToolResult:
        """Called by a worker when its task is finished."""
        caller = caller or self.identity
        agent = self.records.get(caller)
        if agent is None:
            return _result(
                f"Error: {caller} is not a spawned agent.", "done", error="not_spawned_agent", name=caller
            )
        if agent.status != AgentStatus.ASSIGNED:
            return _result(
                f"Error: {caller} has no assigned task (status {agent.status.value}).",
                "done",
                error="invalid_state",
                name=caller,
                status=agent.status.value,
            )

        task = agent.assigned_task
        summary = (summary or "").strip() or f"Completed: {task}"
        saved = False
        store = self.memory()
        if store is not None:
            remembered = store.remember(
                summary,
                agent=caller,
                entry_type=EntryType.SUMMARY,
                source="agents.done",
                workstream=agent.workstream,
                files=files,
            )
            saved = remembered.ok
            if not remembered.ok:
                logger.warning(f"Could not store summary for {caller}: {remembered.error}")

        notified = self.mesh.send_message(
            caller, agent.spawned_by, prompts.completion_notice(caller, summary)
        ).ok
        self.history.log(
            HistoryEventKind.DONE,
            caller,
            task=task,
            summary=summary,
            workstream=agent.workstream,
            files=files or [],
            memory_saved=saved,
        )
        logger.info(f"{caller} completed: {summary[:80]}")

        if not self.orch.auto_kill_on_done:
            self.records.transition(caller, AgentStatus.IDLE, workstream=None)
            return _result(
                f"{caller} marked done and is idle.",
                "done",
                name=caller,
                summary=summary,
                memory_saved=saved,
                notified=notified,
                auto_kill=False,
            )

        if self.kill_scheduler is not None:
            self.kill_scheduler(caller)
        else:
            time.sleep(self.orch.auto_kill_delay_ms / 1000)
            self._kill_one(caller, skip_summary=True)
        return _result(
            f"{caller} marked done; shutting down.",
            "done",
            name=caller,
            summary=summary,
            memory_saved=saved,
            notified=notified,
            auto_kill=True,
        )

    # kill

    def kill(self, name: str, skip_summary: bool = False) -> ToolResult:
        name = (name or "").strip()
        if not name:
            return _result("Error: name is required.", "kill", error="missing_name")
        return self._kill_one(name, skip_summary=skip_summary)

    def _kill_one(self, name: str, skip_summary: bool = False) -> ToolResult:
        agent = self.records.get(name)
        if agent is None:
            return _result(f"Error: no spawned agent named {name}.", "kill", error="not_found", name=name)
        if agent.status in (AgentStatus.DONE, AgentStatus.DEAD):
            return _result(
                f"{name} is already {agent.status.value}.",
                "kill",
                name=name,
                noop=True,
                status=agent.status.value,
            )

        backend = self._backend_for(agent)
        self._closing.add(name)
        try:
            if agent.assigned_task and not skip_summary:
                self._capture_kill_summary(agent)

            # spawning and joined go straight to dead; there is no done step for them
            closing_status = agent.status
            if can_transition(agent.status, AgentStatus.DONE):
                closing_status = AgentStatus.DONE
                self.records.transition(name, closing_status)
            self.mesh.send_message(self.identity, name, prompts.SHUTDOWN_MESSAGE)
            graceful = procs.wait_until(
                lambda: not backend.is_alive(agent.pid), self.orch.grace_period_ms
            )

            signals = SignalLog()
            if not graceful:
                latest = self.records.get(name)
                if latest is None or latest.status != closing_status:
                    return _result(
                        f"{name} changed state during shutdown; leaving it alone.",
                        "kill",
                        name=name,
                        noop=True,
                        aborted=True,
                    )
                signals = self._escalate(agent, backend)

            backend.release(agent)
            self.records.transition(name, AgentStatus.DEAD)
            self.records.remove(name)
            self._drop_stale_registration(agent, backend)
            self.owned.discard(name)
            self._idle_warned.pop(name, None)
            self.history.log(
                HistoryEventKind.KILL,
                name,
                graceful=graceful,
                sent_sigterm=signals.sent_sigterm,
                sent_sigkill=signals.sent_sigkill,
                task=agent.assigned_task,
            )
        finally:
            self._closing.discard(name)

        logger.info(f"Killed {name} (graceful={graceful})")
        return _result(
            f"Killed {name}.",
            "kill",
            name=name,
            graceful=graceful,
            sent_sigterm=signals.sent_sigterm,
            sent_sigkill=signals.sent_sigkill,
        )

    def _capture_kill_summary(self, agent: SpawnedAgent) -> None:
        store = self._healthy_memory()
        if store is None:
            return
        remembered = store.remember(
            f"Killed while assigned: {agent.assigned_task}",
            agent=agent.name,
            entry_type=EntryType.SUMMARY,
            source="agents.kill",
            workstream=agent.workstream,
        )
        if not remembered.ok:
            logger.debug(f"Kill summary for {agent.name} not stored: {remembered.error}")

    def kill_all(self) -> ToolResult:
        """Kill every non-dead agent, one at a time."""
        killed, failed = [], []
        for agent in self.records.list_active():
            result = self._kill_one(agent.name)
            if result.error:
                failed.append(agent.name)
            elif not result.details.get("noop"):
                killed.append(agent.name)
        text = f"Killed {len(killed)} agent(s)."
        if failed:
            text += f" Failed: {', '.join(failed)}"
        return _result(text, "killall", killed=killed, failed=failed)

    def shutdown(self) -> None:
        """End the session: kill agents this supervisor spawned, close memory."""
        for name in sorted(self.owned):
            self._kill_one(name)
        close_all()
        self._memory = None

    # reaping

    def _reap(self, agent: SpawnedAgent, reason: str) -> dict:
        name = agent.name
        backend = self._backend_for(agent)
        if backend.is_alive(agent.pid):
            backend.terminate(agent, signal.SIGTERM)
        backend.release(agent)
        self.records.transition(name, AgentStatus.DEAD)
        self.records.remove(name)
        self._drop_stale_registration(agent, backend)
        self.owned.discard(name)
        self._idle_warned.pop(name, None)
        self.history.log(
            HistoryEventKind.REAP, name, reason=reason, status=agent.status.value, pid=agent.pid
        )
        logger.info(f"Reaped {name}: {reason}")
        return {"name": name, "reason": reason}

    def _orphan_reason(self, agent: SpawnedAgent) -> str | None:
        if not self._is_alive(agent):
            return "pid_exited"
        if agent.status == AgentStatus.SPAWNING:
            return None
        reg = self.mesh.read_registration(agent.name)
        if reg is None:
            return "mesh_missing"
        if procs.pid_relation(reg.pid, agent.pid) not in ("exact", "descendant"):
            return "mesh_pid_mismatch"
        return None

    def reap_orphans(self) -> list[dict]:
        reaped = []
        for agent in self.records.list_active():
            if agent.name in self._closing:
                continue
            reason = self._orphan_reason(agent)
            if reason:
                reaped.append(self._reap(agent, reason))
        return reaped

    def _on_headless_exit(self, name: str, returncode: int | None) -> None:
        with self._lock:
            if name in self._closing:
                return
            self.owned.discard(name)
            self._idle_warned.pop(name, None)
            headless = self.backends.get(BackendKind.HEADLESS)
            agent = self.records.get(name)
            if agent is None or agent.status == AgentStatus.DEAD:
                # killed elsewhere, e.g. by the detached kill that follows done
                if isinstance(headless, HeadlessBackend):
                    headless.drop(name)
                return
            self.records.transition(name, AgentStatus.DEAD)
            self.records.remove(name)
            self.mesh.remove_registration(name)
            if headless is not None:
                headless.release(agent)
            self.history.log(HistoryEventKind.REAP, name, reason="headless_exit", exit_code=returncode)

    def idle_warnings(self) -> list[str]:
        """Advisory only: agents idle past idle_timeout_ms, each warned once."""
        now = now_ms()
        warnings = []
        present = set()
        for agent in self.records.list_all():
            present.add(agent.name)
            if agent.status != AgentStatus.IDLE:
                self._idle_warned.pop(agent.name, None)
                continue
            reg = self.mesh.read_registration(agent.name)
            last = (reg.last_activity_ms if reg else None) or agent.last_activity_ms or agent.spawned_at_ms
            warned_at = self._idle_warned.get(agent.name)
            if warned_at is not None:
                if last <= warned_at:
                    continue
                del self._idle_warned[agent.name]
            if now - last >= self.orch.idle_timeout_ms:
                self._idle_warned[agent.name] = last
                message = f"{agent.name} has been idle for {format_ms(now - last)}"
                logger.warning(message)
                warnings.append(message)
        for name in list(self._idle_warned):
            if name not in present:
                del self._idle_warned[name]
        return warnings

    def sweep(self) -> SweepReport:
        """Heartbeat hook: reap dead or orphaned agents, then report idle ones."""
        with self._lock:
            reaped = self.reap_orphans()
            return SweepReport(reaped=reaped, idle_warnings=self.idle_warnings())

    # inspection

    def list_agents(self) -> ToolResult:
        reaped = self.reap_orphans()
        agents = self.records.list_all()
        if not agents:
            return _result("No spawned agents.", "list", agents=[], reaped=reaped)
        now = now_ms()
        lines, rows = [], []
        for agent in agents:
            task = f" - {agent.assigned_task}" if agent.assigned_task else ""
            uptime = format_ms(now - agent.spawned_at_ms)
            lines.append(
                f"{agent.name:<16} {agent.status.value:<9} {agent.model:<32} {agent.backend.value:<8} {uptime}{task}"
            )
            row = agent.to_dict()
            row["owned"] = agent.name in self.owned
            rows.append(row)
        return _result("\n".join(lines), "list", agents=rows, reaped=reaped)

    def check(self, name: str) -> ToolResult:
        agent = self.records.get(name)
        if agent is None:
            return _result(f"Error: no spawned agent named {name}.", "check", error="not_found", name=name)
        if agent.status != AgentStatus.DEAD and not self._is_alive(agent):
            self._reap(agent, "pid_exited")
            return _result(
                f"{name} process exited; record reaped.", "check", name=name, alive=False, reaped=True
            )

        now = now_ms()
        reg = self.mesh.read_registration(name)
        last = (reg.last_activity_ms if reg else None) or agent.last_activity_ms
        activity = (reg.current_activity if reg else None) or "unknown"
        lines = [
            f"{name} ({agent.status.value}) pid {agent.pid}, {agent.backend.value}",
            f"Model: {agent.model}" + (f" thinking={agent.thinking}" if agent.thinking else ""),
            f"Uptime: {format_ms(now - agent.spawned_at_ms)}",
            f"Activity: {activity} ({format_ms(now - last) + ' ago' if last else 'never'})",
        ]
        if reg:
            lines.append(f"Tools: {reg.tool_calls} calls, {reg.tokens} tokens")
            if reg.files_modified:
                lines.append(f"Files: {', '.join(reg.files_modified)}")
        if agent.assigned_task:
            lines.append(f"Task: {agent.assigned_task}")
        if agent.workstream:
            lines.append(f"Workstream: {agent.workstream}")
        return _result(
            "\n".join(lines),
            "check",
            name=name,
            alive=True,
            status=agent.status.value,
            pid=agent.pid,
            uptime_ms=now - agent.spawned_at_ms,
            task=agent.assigned_task,
            workstream=agent.workstream,
            activity={
                "current": activity,
                "last_activity_ms": last,
                "tool_calls": reg.tool_calls if reg else 0,
                "tokens": reg.tokens if reg else 0,
                "files_modified": reg.files_modified if reg else [],
            },
        )

    def logs(self, name: str, lines: int = LOG_LINES_DEFAULT) -> ToolResult:
        agent = self.records.get(name)
        if agent is None:
            return _result(f"Error: no spawned agent named {name}.", "logs", error="not_found", name=name)
        count = max(1, min(LOG_LINES_MAX, int(lines or LOG_LINES_DEFAULT)))
        if agent.backend == BackendKind.PANED and not agent.pane_id:
            return _result(f"Error: {name} has no pane.", "logs", error="missing_pane", name=name)
        tail = self._backend_for(agent).tail(agent, count)
        if tail is None:
            return _result(
                f"Error: could not capture output for {name}.",
                "logs",
                error="capture_failed",
                name=name,
            )
        return _result("\n".join(tail) or "(no output)", "logs", name=name, lines=count, output=tail)

    def attach(self, name: str) -> ToolResult:
        agent = self.records.get(name)
        if agent is None:
            return _result(f"Error: no spawned agent named {name}.", "attach", error="not_found", name=name)
        if agent.backend != BackendKind.PANED:
            return _result(
                f"Error: {name} runs headless; use `fleet agents logs {name}`.",
                "attach",
                error="headless_backend",
                name=name,
            )
        if not agent.window_id and not agent.pane_id:
            return _result(f"Error: {name} has no pane.", "attach", error="missing_pane", name=name)
        target = agent.window_id or agent.pane_id
        backend = self._backend_for(agent)
        if os.environ.get("TMUX") and isinstance(backend, PanedBackend):
            outcome = backend.select_window(agent)
            if outcome.ok:
                return _result(f"Switched to {name}.", "attach", name=name, attached=True)
        return _result(
            f"Run: tmux select-window -t {target}",
            "attach",
            name=name,
            attached=False,
            command=f"tmux select-window -t {target}",
        )

    def read_history(self, limit: int | None = None, agent: str | None = None) -> ToolResult:
        events = self.history.read(limit=limit, agent=agent)
        lines = [f"{e.timestamp} {e.event.value:<7} {e.agent}" for e in events]
        return _result(
            "\n".join(lines) or "No history.",
            "history",
            events=[e.to_dict() for e in events],
        )

    # memory administration

    def _memory_unavailable(self, mode: str) -> ToolResult:
        reason = self._memory_error or ("disabled" if not self.orch.memory.enabled else "memory_unavailable")
        return _result(f"Memory unavailable: {reason}", mode, error="memory_unavailable", reason=reason)

    def memory_stats(self) -> ToolResult:
        store = self.memory()
        if store is None:
            return self._memory_unavailable("memory.stats")
        stats = store.stats()
        state = "degraded" if stats["degraded"] else "healthy"
        lines = [
            f"Memory: {state}" + (f" ({stats['reason']})" if stats["reason"] else ""),
            f"Entries: {stats['doc_count']}/{stats['max_entries']}",
            f"Model: {stats['embedding_provider']}/{stats['embedding_model']} ({stats['dimensions']}d)",
        ]
        if stats["by_type"]:
            lines.append("By type: " + ", ".join(f"{k}={v}" for k, v in sorted(stats["by_type"].items())))
        if stats["breaker_open"]:
            lines.append(f"Embedding paused for {stats['breaker_seconds_remaining']}s")
        return _result("\n".join(lines), "memory.stats", **stats)

    def memory_reset(self) -> ToolResult:
        self._memory = None
        self._memory_error = None
        removed = reset_memory(self.root)
        text = "Memory reset." if removed else "Memory was already empty."
        return _result(text, "memory.reset", removed=removed)

    def memory_forget(self, agent: str) -> ToolResult:
        store = self._healthy_memory()
        if store is None:
            return self._memory_unavailable("memory.forget")
        count = store.forget_agent(agent)
        return _result(f"Forgot {count} entries from {agent}.", "memory.forget", agent=agent, deleted=count)

    def memory_recall(self, query: str, topk: int | None = None, workstream: str | None = None) -> ToolResult:
        store = self.memory()
        if store is None:
            return self._memory_unavailable("memory.recall")
        recalled = store.recall(query, topk=topk, workstream=workstream)
        if recalled.error:
            return _result(
                f"Recall failed: {recalled.error}",
                "memory.recall",
                error="memory_unavailable",
                reason=recalled.error,
                degraded=recalled.degraded,
            )
        context = prompts.memory_context(recalled.results)
        return _result(
            context or "No relevant memories.",
            "memory.recall",
            results=[
                {
                    "id": e.id,
                    "agent": e.agent,
                    "type": e.type.value,
                    "text": e.text,
                    "similarity": e.similarity,
                    "created_at_ms": e.created_at_ms,
                }
                for e in recalled.results
            ],
            tokens=recalled.tokens,
        )
