from fleet.memory.models import EntryType, MemoryEntry
from fleet.orchestrator import prompts


def entry(text, agent="Builder", created_at_ms=0):
    return MemoryEntry(
        id="1",
        text=text,
        agent=agent,
        type=EntryType.SUMMARY,
        source="agents.done",
        created_at_ms=created_at_ms,
        content_hash="h",
    )


def test_initial_prompt_names_agent_and_orchestrator():
    text = prompts.initial_prompt("Builder", "test/model", "orchestrator", "Focus on tests.")
    assert text.startswith("Your FIRST action must be to join the mesh.")
    assert '"Builder"' in text
    assert "spawned by orchestrator" in text
    assert prompts.DONE_INSTRUCTION in text
    assert text.endswith("Focus on tests.")


def test_memory_context_format():
    now = 2 * 3600 * 1000
    text = prompts.memory_context([entry("implemented parser", created_at_ms=0)], now=now)
    assert text == "## Context from prior work\n- [Builder, 2h ago]: implemented parser"


def test_memory_context_empty():
    assert prompts.memory_context([]) == ""


def test_assignment_message_sections_in_order():
    text = prompts.assignment_message("Fix the login bug", "auth", "## Context from prior work\n- x")
    headings = [line for line in text.splitlines() if line.startswith("#")]
    assert headings == [
        "# Task Assignment",
        "## Workstream",
        "## Context from prior work",
        "## Your Task",
        "## When Done",
    ]
    assert "Fix the login bug" in text


def test_assignment_message_without_optional_sections():
    text = prompts.assignment_message("Fix it", None)
    assert "## Workstream" not in text
    assert "## Context from prior work" not in text


def test_completion_notice():
    assert prompts.completion_notice("Builder", "shipped") == "✅ Builder completed: shipped"
