"""docrest index: provision declared secondary indexes."""

from __future__ import annotations

from typing import Optional

import typer

from docrest.cli import _exitcodes as ec
from docrest.cli._loader import load_processors
from docrest.cli._output import print_error, print_table
from docrest.indexes import EnsureOutcome

app = typer.Typer(no_args_is_help=True)


@app.command(name="ensure")
def index_ensure_cmd(
    target: str = typer.Argument(..., help="MODULE:ATTR of processors"),
    biz: Optional[list[str]] = typer.Option(None, "--biz", help="Limit to these processors"),
    db: Optional[str] = typer.Option(None, "--db", help="Database name override"),
    col: Optional[str] = typer.Option(None, "--col", help="Table name override"),
) -> None:
    """Create missing indexes for every selected processor, then exit."""
    from docrest.cli import open_service, state

    try:
        processors = load_processors(target)
    except Exception as e:
        print_error(f"Failed to load processors: {e}")
        raise typer.Exit(ec.GENERAL_ERROR)

    try:
        service = open_service(processors, start_scheduler=False)
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    query = {k: v for k, v in (("db", db), ("col", col)) if v}
    rows = []
    failed = False
    try:
        for p in processors:
            if biz and p.biz not in biz:
                continue
            database, table = p.location(query)
            service.scheduler.enqueue(database, table, p)
            outcome = service.scheduler.run_once()
            failed = failed or outcome is EnsureOutcome.FAILED
            rows.append([p.biz, database, table, len(p.indexes), outcome.value])
    finally:
        service.close()

    print_table(["biz", "db", "table", "indexes", "outcome"], rows, json_mode=state.json_output)
    if failed:
        raise typer.Exit(ec.EXECUTION_FAILURE)
