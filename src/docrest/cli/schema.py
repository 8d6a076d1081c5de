"""docrest schema: inspect compiled resource schemas."""

from __future__ import annotations

from typing import Optional

import typer

from docrest.cli import _exitcodes as ec
from docrest.cli._loader import load_fields
from docrest.cli._output import FORMATS, print_data, print_error, print_table

app = typer.Typer(no_args_is_help=True)


@app.command(name="show")
def schema_show_cmd(
    target: str = typer.Argument(..., help="MODULE:ATTR of a model class or processors"),
    biz: Optional[str] = typer.Option(None, "--biz", help="Processor to show"),
    fmt: str = typer.Option("table", "--format", help="Output format: table, json or yaml"),
) -> None:
    """Show every field path with its kind and write policy."""
    from docrest.cli import state

    if state.json_output:
        fmt = "json"
    if fmt not in FORMATS:
        print_error(f"--format must be one of {', '.join(FORMATS)}")
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        fields, processor = load_fields(target, biz)
    except Exception as e:
        print_error(f"Failed to load schema: {e}")
        raise typer.Exit(ec.GENERAL_ERROR)

    rows = fields.describe()
    if fmt == "table":
        print_table(
            ["path", "kind", "create_only", "read_only"],
            [[r["path"], r["kind"], r["create_only"], r["read_only"]] for r in rows],
        )
        return

    data: dict = {"fields": rows}
    if processor is not None:
        data = {
            "biz": processor.biz,
            "search_fields": list(processor.search_fields),
            "regex_search_fields": list(processor.regex_search_fields),
            "indexes": [
                {"key": list(idx.key), "unique": idx.unique} for idx in processor.indexes
            ],
            **data,
        }
    print_data(data, fmt)
