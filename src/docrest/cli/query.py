"""docrest query: compile query parameters without touching storage."""

from __future__ import annotations

from typing import Optional

import typer

from docrest.cli import _exitcodes as ec
from docrest.cli._loader import load_fields
from docrest.cli._output import print_data, print_error
from docrest.errors import DocrestError
from docrest.query import QueryCompiler

app = typer.Typer(no_args_is_help=True)


@app.command(name="compile")
def query_compile_cmd(
    target: str = typer.Argument(..., help="MODULE:ATTR of a model class or processors"),
    biz: Optional[str] = typer.Option(None, "--biz", help="Processor to compile against"),
    filter_: Optional[str] = typer.Option(None, "--filter", help="filter clause (JSON)"),
    range_: Optional[str] = typer.Option(None, "--range", help="range clause (JSON)"),
    in_: Optional[str] = typer.Option(None, "--in", help="in clause (JSON)"),
    nin: Optional[str] = typer.Option(None, "--nin", help="nin clause (JSON)"),
    all_: Optional[str] = typer.Option(None, "--all", help="all clause (JSON)"),
    or_: Optional[str] = typer.Option(None, "--or", help="or clause (JSON)"),
    search: Optional[str] = typer.Option(
        None, "--search", help="search text (regex search fields only)"
    ),
    order: Optional[str] = typer.Option(None, "--order", help="order clause (JSON)"),
    select: Optional[str] = typer.Option(None, "--select", help="select clause (JSON)"),
    fmt: str = typer.Option("json", "--format", help="Output format: json or yaml"),
) -> None:
    """Print the condition, sort and projection a query compiles to."""
    try:
        fields, processor = load_fields(target, biz)
    except Exception as e:
        print_error(f"Failed to load schema: {e}")
        raise typer.Exit(ec.GENERAL_ERROR)

    params = {
        name: value
        for name, value in (
            ("filter", filter_),
            ("range", range_),
            ("in", in_),
            ("nin", nin),
            ("all", all_),
            ("or", or_),
            ("search", search),
            ("order", order),
            ("select", select),
        )
        if value
    }
    regex_fields = processor.regex_search_fields if processor is not None else []
    try:
        compiled = QueryCompiler(fields).compile(params, regex_search_fields=regex_fields)
    except DocrestError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    print_data(
        {
            "condition": compiled.condition,
            "sort": QueryCompiler.order_to_fields(compiled.sort),
            "projection": compiled.projection,
        },
        "yaml" if fmt == "yaml" else "json",
    )
