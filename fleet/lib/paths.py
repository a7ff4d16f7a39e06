import os
from pathlib import Path


def project_root() -> Path:
    return Path.cwd()


def dot_fleet(root: Path | None = None) -> Path:
    return (root or project_root()) / ".fleet"


def config_file(root: Path | None = None) -> Path:
    return dot_fleet(root) / "config.yaml"


def profiles_dir(root: Path | None = None) -> Path:
    return dot_fleet(root) / "agents"


def orchestrator_dir(root: Path | None = None) -> Path:
    return dot_fleet(root) / "orchestrator"


def agents_dir(root: Path | None = None) -> Path:
    return orchestrator_dir(root) / "agents"


def history_file(root: Path | None = None) -> Path:
    return orchestrator_dir(root) / "history.jsonl"


def memory_dir(root: Path | None = None) -> Path:
    return orchestrator_dir(root) / "memory"


def memory_backups_dir(root: Path | None = None) -> Path:
    return orchestrator_dir(root) / "memory-backups"


def diagnostics_dir(root: Path | None = None) -> Path:
    return orchestrator_dir(root) / "spawn-diagnostics"


def mesh_root() -> Path:
    """Shared mesh directory. FLEET_MESH_DIR overrides ~/.fleet/mesh."""
    override = os.environ.get("FLEET_MESH_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".fleet" / "mesh"
