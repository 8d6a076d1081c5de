"""Shared test fixtures for docrest tests."""

from __future__ import annotations

import json

import pytest

from docrest import FieldSet, ServiceConfig, SqliteDocumentStore
from docrest.service import Service
from tests.models import Movie, movie_processor, note_processor


class FakeClock:
    """Settable clock for deterministic btime/mtime."""

    def __init__(self, now: float = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def movie_fields():
    """Frozen FieldSet of the Movie resource with its write policies applied."""
    return movie_processor().compile_fields()


@pytest.fixture
def raw_movie_fields():
    """Movie FieldSet without write policies."""
    return FieldSet.build(Movie)


@pytest.fixture
def store(tmp_path):
    return SqliteDocumentStore(tmp_path / "data")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(store, clock):
    """An initialized Service with the movie and note resources; no background scheduler."""
    svc = Service(
        store,
        [movie_processor(), note_processor()],
        ServiceConfig(side_effect_workers=1),
        clock=clock,
    )
    svc.init(start_scheduler=False)
    yield svc
    svc.close()


@pytest.fixture
def movies(service):
    return service.processor("movie")


def body(doc: dict) -> bytes:
    return json.dumps(doc).encode()
