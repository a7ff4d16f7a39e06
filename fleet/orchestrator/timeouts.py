"""Adaptive spawn handshake budget."""

from fleet.lib.config import THINKING_LEVELS, OrchestratorConfig

MIN_SPAWN_TIMEOUT_MS = 1000
MIN_POLL_MS = 250
MAX_POLL_MS = 2000

SLOW_MODEL_HINTS = (
    "opus",
    "gpt-5",
    "o1",
    "o3",
    "ultra",
    "sonnet-4-6",
    "gemini-2.5-pro",
    "gemini-3-pro",
)
HIGH_THINKING = ("high", "xhigh")


def split_thinking_suffix(model: str) -> tuple[str, str | None]:
    """`provider/model:high` -> (`provider/model`, `high`)."""
    base, sep, suffix = model.rpartition(":")
    if sep and suffix.lower() in THINKING_LEVELS:
        return base, suffix.lower()
    return model, None


def is_slow_model(model: str) -> bool:
    lowered = model.lower()
    return any(hint in lowered for hint in SLOW_MODEL_HINTS)


def spawn_timeout_ms(
    config: OrchestratorConfig,
    model: str,
    thinking: str | None,
    override_ms: int | None = None,
) -> int:
    base = max(MIN_SPAWN_TIMEOUT_MS, config.spawn_timeout_ms)
    ceiling = max(base, config.spawn_timeout_max_ms)
    if override_ms is not None and override_ms > 0:
        return max(MIN_SPAWN_TIMEOUT_MS, min(int(override_ms), ceiling))

    budget = base
    if is_slow_model(model):
        budget = round(budget * max(1.0, config.spawn_timeout_slow_model_multiplier))
    _, suffix = split_thinking_suffix(model)
    level = (suffix or thinking or "").lower()
    if level in HIGH_THINKING:
        budget = round(budget * max(1.0, config.spawn_timeout_high_thinking_multiplier))
    return max(base, min(budget, ceiling))


def poll_interval_ms(timeout_ms: int) -> int:
    return max(MIN_POLL_MS, min(MAX_POLL_MS, timeout_ms // 8))
