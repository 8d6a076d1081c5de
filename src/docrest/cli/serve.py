"""docrest serve: run the HTTP service."""

from __future__ import annotations

import logging

import typer
import uvicorn

from docrest.cli import _exitcodes as ec
from docrest.cli._loader import load_processors
from docrest.cli._output import print_error
from docrest.http import create_app


def serve_cmd(
    target: str = typer.Argument(..., help="MODULE:ATTR of processors"),
    host: str = typer.Option("127.0.0.1", "--host", envvar="DOCREST_HOST"),
    port: int = typer.Option(8000, "--port", envvar="DOCREST_PORT"),
    log_level: str = typer.Option("info", "--log-level", help="Logging level"),
) -> None:
    """Serve the processors' REST resources with uvicorn."""
    from docrest.cli import open_service

    logging.basicConfig(
        level=log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    try:
        service = open_service(load_processors(target))
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    try:
        uvicorn.run(create_app(service), host=host, port=port, log_level=log_level.lower())
    finally:
        service.close()
