import typer

from . import output, session
from .errors import error_feedback

app = typer.Typer(no_args_is_help=True)


@app.command()
@error_feedback
def stats(ctx: typer.Context):
    """Show memory store health and contents."""
    output.emit(session.supervisor().memory_stats(), ctx)


@app.command()
@error_feedback
def reset(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
):
    """Delete the memory store (required after a schema mismatch)."""
    if not yes:
        typer.confirm("Delete all stored memory for this project?", abort=True)
    output.emit(session.supervisor().memory_reset(), ctx)


@app.command()
@error_feedback
def forget(ctx: typer.Context, agent: str = typer.Argument(..., help="Agent whose entries to drop.")):
    """Delete every memory entry written by an agent."""
    output.emit(session.supervisor().memory_forget(agent), ctx)


@app.command()
@error_feedback
def recall(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="What to look for."),
    topk: int = typer.Option(None, "--topk", "-k", help="Maximum results."),
    workstream: str = typer.Option(None, "--workstream", "-w", help="Workstream filter."),
):
    """Search memory the way assignments do."""
    output.emit(session.supervisor().memory_recall(query, topk=topk, workstream=workstream), ctx)
