"""Shared fixtures for CLI tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from docrest.cli import app

if TYPE_CHECKING:
    from click.testing import Result

PROCESSORS = "tests.models:build_processors"
MOVIE_MODEL = "tests.models:Movie"


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_root(tmp_path, monkeypatch):
    """A temp store root; search stays off regardless of the environment."""
    monkeypatch.delenv("DOCREST_SEARCH", raising=False)
    return str(tmp_path / "data")


def invoke(runner: CliRunner, args: list[str], root: str | None = None) -> "Result":
    """Invoke CLI with proper state setup."""
    if root:
        # Inject --root before subcommand
        args = ["--root", root] + args
    return runner.invoke(app, args, catch_exceptions=False)
