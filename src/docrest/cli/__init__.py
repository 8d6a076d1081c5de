"""docrest CLI: operator console for resource schemas, queries and indexes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import typer

from docrest.cli import index, query, schema, serve

if TYPE_CHECKING:
    from docrest.processor import Processor
    from docrest.service import Service

app = typer.Typer(
    name="docrest",
    help="docrest CLI: inspect resource schemas, compile queries, provision indexes, serve.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    root: str = "data"
    search: bool = False
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        try:
            from importlib.metadata import version

            v = version("docrest")
        except Exception:
            v = "unknown"
        print(f"docrest {v}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    root: Optional[str] = typer.Option(
        None,
        "--root",
        envvar="DOCREST_ROOT",
        help="Directory holding one SQLite file per database (default: data)",
    ),
    search: bool = typer.Option(
        False,
        "--search/--no-search",
        envvar="DOCREST_SEARCH",
        help="Enable the Elasticsearch backend configured by DOCREST_ES_* variables",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all docrest commands."""
    state.root = root or "data"
    state.search = search
    state.json_output = json_output
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


def open_service(processors: list[Processor], *, start_scheduler: bool = True) -> Service:
    """Build and initialize a Service from CLI state and ``DOCREST_*`` settings."""
    from docrest.config import ServiceConfig
    from docrest.search import ElasticsearchBackend
    from docrest.service import Service
    from docrest.storage import SqliteDocumentStore

    config = ServiceConfig.from_env()
    backend = ElasticsearchBackend.from_config(config) if state.search else None
    service = Service(SqliteDocumentStore(state.root), processors, config, search=backend)
    return service.init(start_scheduler=start_scheduler)


app.add_typer(schema.app, name="schema", help="Inspect compiled schemas")
app.add_typer(query.app, name="query", help="Compile query parameters")
app.add_typer(index.app, name="index", help="Provision secondary indexes")

app.command(name="serve")(serve.serve_cmd)


def main() -> None:
    """Entry point for the docrest CLI."""
    app()
