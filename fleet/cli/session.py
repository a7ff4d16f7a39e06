"""Build the Supervisor a CLI invocation runs against."""

from fleet.lib import paths
from fleet.lib.config import load_config
from fleet.lib.detach import detach_fleet
from fleet.orchestrator.supervisor import Supervisor


def supervisor() -> Supervisor:
    root = paths.project_root()
    config = load_config(root)
    delay_ms = config.orchestrator.auto_kill_delay_ms

    def schedule_kill(name: str) -> None:
        # must run outside the calling worker's process tree
        detach_fleet("agents", "kill", name, "--skip-summary", "--delay-ms", str(delay_ms), cwd=root)

    return Supervisor(root=root, config=config, kill_scheduler=schedule_kill)
