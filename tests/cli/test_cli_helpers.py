"""Tests for CLI output helpers, target loading and the serve command."""

import json

import pytest

from docrest.cli import _loader
from docrest.cli._output import print_data, print_error, print_table
from tests.cli.conftest import PROCESSORS, invoke


def test_print_table_json(capsys):
    print_table(["biz", "outcome"], [["movie", "ensured"]], json_mode=True)
    assert json.loads(capsys.readouterr().out) == [{"biz": "movie", "outcome": "ensured"}]


def test_print_table_empty(capsys):
    print_table(["biz"], [], json_mode=False)
    assert capsys.readouterr().out == ""


def test_print_data_yaml(capsys):
    print_data({"b": 1, "a": [1, 2]}, "yaml")
    assert capsys.readouterr().out == "b: 1\na:\n- 1\n- 2\n"


def test_print_error(capsys):
    print_error("something broke")
    assert "Error: something broke" in capsys.readouterr().err


def test_load_object_requires_attribute():
    with pytest.raises(ValueError, match="MODULE:ATTRIBUTE"):
        _loader.load_object("tests.models")


def test_load_object_from_file(tmp_path):
    path = tmp_path / "extra_resources.py"
    path.write_text("VALUE = 42\n")
    assert _loader.load_object(f"{path}:VALUE") == 42


def test_load_processors_factory():
    processors = _loader.load_processors(PROCESSORS)
    assert [p.biz for p in processors] == ["movie", "note"]
    assert _loader.select_processor(processors, "note").biz == "note"
    with pytest.raises(ValueError, match="not found"):
        _loader.select_processor(processors, "tv")


def test_serve_builds_app(runner, cli_root, monkeypatch):
    calls = {}

    def fake_run(app, host, port, log_level):
        calls.update(host=host, port=port, routes={r.path for r in app.routes})

    monkeypatch.setattr("docrest.cli.serve.uvicorn.run", fake_run)
    result = invoke(runner, ["serve", PROCESSORS, "--port", "9001"], cli_root)
    assert result.exit_code == 0
    assert calls["port"] == 9001
    assert {"/movie", "/movie/{id}", "/note"} <= calls["routes"]


def test_version(runner):
    result = invoke(runner, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("docrest ")
