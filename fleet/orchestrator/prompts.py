from fleet.lib.format import format_ms, now_ms
from fleet.memory.models import MemoryEntry

SHUTDOWN_MESSAGE = "SHUTDOWN: Release reservations and exit."
DONE_INSTRUCTION = 'fleet agents done --summary "Brief description of what you did"'


def initial_prompt(name: str, model: str, orchestrator: str, user_prompt: str | None = None) -> str:
    custom = (user_prompt or "").strip()
    return f"""Your FIRST action must be to join the mesh. Register yourself as "{name}" before doing anything else.

You are "{name}", a {model} agent spawned by {orchestrator} to work on this project.

## Your Role
- Wait for task assignments via DM from {orchestrator}
- When you receive a task, implement it fully using the tools available to you
- When done, run: {DONE_INSTRUCTION}
- You may message {orchestrator} at any time for clarification
- Reserve files before editing them and release them when done

{custom}""".strip()


def memory_context(entries: list[MemoryEntry], now: int | None = None) -> str:
    if not entries:
        return ""
    now = now if now is not None else now_ms()
    lines = [
        f"- [{entry.agent}, {format_ms(now - entry.created_at_ms)} ago]: {entry.text}"
        for entry in entries
    ]
    return "## Context from prior work\n" + "\n".join(lines)


def assignment_message(task: str, workstream: str | None, context: str = "") -> str:
    blocks = ["# Task Assignment"]
    if workstream:
        blocks.append(f"## Workstream\n{workstream}")
    if context:
        blocks.append(context)
    blocks.append(f"## Your Task\n{task}")
    blocks.append(f"## When Done\nRun: {DONE_INSTRUCTION}")
    return "\n\n".join(blocks)


def completion_notice(name: str, summary: str) -> str:
    return f"✅ {name} completed: {summary}"
