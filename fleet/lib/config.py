"""Project configuration: .fleet/config.yaml merged over typed defaults."""

from dataclasses import dataclass, field, fields, is_dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from fleet.errors import ConfigError

from . import paths

THINKING_LEVELS = ("off", "minimal", "low", "medium", "high", "xhigh")
MEMORY_TYPES = ("message", "discovery", "summary", "decision")
EMBEDDING_PROVIDERS = ("openai", "google", "gemini")


@dataclass
class TtlDays:
    message: int = 7
    discovery: int = 30
    summary: int = 90
    decision: int = 90

    def for_type(self, entry_type: str) -> int:
        return getattr(self, entry_type)


@dataclass
class MemoryConfig:
    enabled: bool = True
    embedding_provider: str = "google"
    embedding_model: str = "gemini-embedding-001"
    dimensions: int = 1536
    max_entries: int = 10000
    auto_inject_top_k: int = 3
    min_similarity: float = 0.3
    max_injection_tokens: int = 2000
    embedding_timeout_ms: int = 2000
    ttl_days: TtlDays = field(default_factory=TtlDays)


@dataclass
class OrchestratorConfig:
    worker_command: str = "pi"
    default_model: str = "anthropic/claude-sonnet-4-6"
    default_thinking: str = "high"
    idle_timeout_ms: int = 300_000
    auto_kill_on_done: bool = True
    auto_kill_delay_ms: int = 5000
    grace_period_ms: int = 15_000
    sigterm_grace_ms: int = 5000
    max_spawned_agents: int = 5
    name_attempts: int = 5
    spawn_timeout_ms: int = 30_000
    spawn_timeout_max_ms: int = 180_000
    spawn_timeout_slow_model_multiplier: float = 1.75
    spawn_timeout_high_thinking_multiplier: float = 1.5
    memory: MemoryConfig = field(default_factory=MemoryConfig)


@dataclass
class FleetConfig:
    logging_level: str = "WARNING"
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)


def clear_cache():
    _load.cache_clear()


def load_config(root: Path | None = None) -> FleetConfig:
    """Load .fleet/config.yaml for a project, falling back to defaults."""
    return _load(paths.config_file(root))


@lru_cache(maxsize=8)
def _load(path: Path) -> FleetConfig:
    raw: dict = {}
    if path.exists():
        with open(path) as f:
            try:
                raw = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(raw).__name__}")
    config = build(FleetConfig, raw)
    validate(config)
    return config


def build(cls, raw: dict, where: str = ""):
    """Construct dataclass `cls` from a mapping, keeping defaults for absent keys.

    Unknown keys are ignored. Nested dataclasses are built recursively.
    """
    defaults = cls()
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in raw or raw[f.name] is None:
            continue
        value = raw[f.name]
        key = f"{where}{f.name}"
        current = getattr(defaults, f.name)
        if is_dataclass(current):
            if not isinstance(value, dict):
                raise ConfigError(f"{key} must be a mapping")
            kwargs[f.name] = build(type(current), value, f"{key}.")
        else:
            kwargs[f.name] = _coerce(key, value, current)
    return cls(**kwargs)


def _coerce(key: str, value: Any, default: Any) -> Any:
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ConfigError(f"{key} must be true or false")
        return value
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{key} must be an integer")
        return value
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise ConfigError(f"{key} must be a number")
        return float(value)
    if isinstance(default, str):
        if not isinstance(value, str):
            raise ConfigError(f"{key} must be a string")
        return value
    return value


def validate(config: FleetConfig) -> None:
    orch = config.orchestrator
    positive = {
        "orchestrator.idle_timeout_ms": orch.idle_timeout_ms,
        "orchestrator.grace_period_ms": orch.grace_period_ms,
        "orchestrator.sigterm_grace_ms": orch.sigterm_grace_ms,
        "orchestrator.max_spawned_agents": orch.max_spawned_agents,
        "orchestrator.name_attempts": orch.name_attempts,
        "orchestrator.spawn_timeout_ms": orch.spawn_timeout_ms,
        "orchestrator.spawn_timeout_max_ms": orch.spawn_timeout_max_ms,
        "orchestrator.memory.dimensions": orch.memory.dimensions,
        "orchestrator.memory.max_entries": orch.memory.max_entries,
        "orchestrator.memory.auto_inject_top_k": orch.memory.auto_inject_top_k,
        "orchestrator.memory.max_injection_tokens": orch.memory.max_injection_tokens,
        "orchestrator.memory.embedding_timeout_ms": orch.memory.embedding_timeout_ms,
    }
    for key, value in positive.items():
        if value <= 0:
            raise ConfigError(f"{key} must be positive, got {value}")
    if orch.auto_kill_delay_ms < 0:
        raise ConfigError("orchestrator.auto_kill_delay_ms must not be negative")
    if orch.default_thinking not in THINKING_LEVELS:
        raise ConfigError(
            f"orchestrator.default_thinking must be one of {', '.join(THINKING_LEVELS)}"
        )
    if orch.memory.embedding_provider not in EMBEDDING_PROVIDERS:
        raise ConfigError(
            f"orchestrator.memory.embedding_provider must be one of {', '.join(EMBEDDING_PROVIDERS)}"
        )
    if not orch.worker_command.strip():
        raise ConfigError("orchestrator.worker_command must not be empty")
    for entry_type in MEMORY_TYPES:
        if orch.memory.ttl_days.for_type(entry_type) <= 0:
            raise ConfigError(f"orchestrator.memory.ttl_days.{entry_type} must be positive")
