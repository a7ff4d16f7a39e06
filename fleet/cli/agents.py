import time

import typer

from fleet.orchestrator.models import SpawnRequest

from . import output, session
from .errors import error_feedback

app = typer.Typer(no_args_is_help=True)


def _watch(sup, ctx: typer.Context, interval: float, until_idle: bool = False) -> None:
    try:
        while True:
            report = sup.sweep()
            for reaped in report.reaped:
                output.echo_text(f"reaped {reaped['name']} ({reaped['reason']})", ctx)
            for warning in report.idle_warnings:
                output.echo_text(f"idle: {warning}", ctx)
            if until_idle and not sup.owned:
                return
            time.sleep(interval)
    except KeyboardInterrupt:
        output.echo_text("Shutting down spawned agents...", ctx)
        sup.shutdown()


@app.command()
@error_feedback
def spawn(
    ctx: typer.Context,
    name: str = typer.Option(None, "--name", "-n", help="Requested agent name."),
    model: str = typer.Option(None, "--model", "-m", help="Model, optionally with :thinking suffix."),
    thinking: str = typer.Option(None, "--thinking", "-t", help="Reasoning effort level."),
    profile: str = typer.Option(None, "--profile", "-p", help="Profile in .fleet/agents/."),
    prompt: str = typer.Option(None, "--prompt", help="Extra instructions for the worker."),
    workstream: str = typer.Option(None, "--workstream", "-w", help="Workstream label."),
    timeout_ms: int = typer.Option(None, "--timeout-ms", help="Override the join timeout."),
    interval: float = typer.Option(30.0, "--interval", help="Sweep interval while attached."),
):
    """Spawn a worker and wait for it to join the mesh."""
    sup = session.supervisor()
    result = sup.spawn(
        SpawnRequest(
            name=name,
            model=model,
            thinking=thinking,
            profile=profile,
            prompt=prompt,
            workstream=workstream,
            timeout_ms=timeout_ms,
        )
    )
    output.emit(result, ctx)
    if result.details.get("backend") == "headless":
        output.echo_text("Headless worker is tied to this process; Ctrl-C to stop it.", ctx)
        _watch(sup, ctx, interval, until_idle=True)


@app.command("list")
@error_feedback
def list_agents(ctx: typer.Context):
    """List spawned agents (reaps dead ones first)."""
    output.emit(session.supervisor().list_agents(), ctx)


@app.command()
@error_feedback
def assign(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Agent to assign."),
    task: str = typer.Argument(..., help="Task description."),
    workstream: str = typer.Option(None, "--workstream", "-w", help="Workstream label."),
):
    """Send a task to an idle agent."""
    output.emit(session.supervisor().assign(name, task, workstream), ctx)


@app.command()
@error_feedback
def done(
    ctx: typer.Context,
    summary: str = typer.Option("", "--summary", "-s", help="What you did."),
    files: list[str] = typer.Option(None, "--file", "-f", help="Files touched (repeatable)."),
):
    """Report the caller's task as finished (run by the worker itself)."""
    output.emit(session.supervisor().done(summary, files=files or None), ctx)


@app.command()
@error_feedback
def check(ctx: typer.Context, name: str = typer.Argument(..., help="Agent to inspect.")):
    """Show liveness and mesh activity for one agent."""
    output.emit(session.supervisor().check(name), ctx)


@app.command()
@error_feedback
def kill(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Agent to kill."),
    skip_summary: bool = typer.Option(False, "--skip-summary", hidden=True),
    delay_ms: int = typer.Option(0, "--delay-ms", hidden=True),
):
    """Shut an agent down gracefully, escalating to signals."""
    if delay_ms > 0:
        time.sleep(delay_ms / 1000)
    output.emit(session.supervisor().kill(name, skip_summary=skip_summary), ctx)


@app.command()
@error_feedback
def killall(ctx: typer.Context):
    """Kill every spawned agent, one at a time."""
    output.emit(session.supervisor().kill_all(), ctx)


@app.command()
@error_feedback
def logs(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Agent whose output to show."),
    lines: int = typer.Option(50, "--lines", "-l", help="Lines to show (1-500)."),
):
    """Show the tail of an agent's output."""
    output.emit(session.supervisor().logs(name, lines), ctx)


@app.command()
@error_feedback
def attach(ctx: typer.Context, name: str = typer.Argument(..., help="Agent to attach to.")):
    """Switch to an agent's tmux window."""
    output.emit(session.supervisor().attach(name), ctx)


@app.command()
@error_feedback
def sweep(ctx: typer.Context):
    """Reap dead agents and report idle ones once."""
    report = session.supervisor().sweep()
    if output.echo_json({"reaped": report.reaped, "idle_warnings": report.idle_warnings}, ctx):
        return
    if not report.reaped and not report.idle_warnings:
        output.echo_text("All agents healthy.", ctx)
    for reaped in report.reaped:
        output.echo_text(f"reaped {reaped['name']} ({reaped['reason']})", ctx)
    for warning in report.idle_warnings:
        output.echo_text(f"idle: {warning}", ctx)


@app.command()
@error_feedback
def watch(
    ctx: typer.Context,
    interval: float = typer.Option(30.0, "--interval", help="Seconds between sweeps."),
):
    """Sweep periodically until interrupted."""
    _watch(session.supervisor(), ctx, interval)


@app.command()
@error_feedback
def history(
    ctx: typer.Context,
    limit: int = typer.Option(50, "--limit", help="Number of events to show."),
    agent: str = typer.Option(None, "--agent", "-a", help="Only this agent."),
):
    """Show recent lifecycle events."""
    output.emit(session.supervisor().read_history(limit=limit, agent=agent), ctx)
