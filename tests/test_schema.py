"""Tests for schema compilation, write policies and resource declaration checks."""

from __future__ import annotations

import logging
from typing import Optional

import pytest
from pydantic import BaseModel, Field, create_model

from docrest import ConfigurationError, FieldSet, Kind
from docrest.schema import REQUIRED_FIELDS
from tests.models import Note, Untracked, movie_processor


class TestBuild:
    def test_paths_in_declaration_order(self, raw_movie_fields):
        assert raw_movie_fields.paths[:6] == ("id", "btime", "mtime", "seq", "title", "year")

    def test_scalar_kinds(self, raw_movie_fields):
        assert raw_movie_fields.lookup("title") == Kind.STRING
        assert raw_movie_fields.lookup("year") == Kind.INT
        assert raw_movie_fields.lookup("rating") == Kind.FLOAT
        assert raw_movie_fields.lookup("released") == Kind.BOOL

    def test_unsigned_marker(self, raw_movie_fields):
        assert raw_movie_fields.lookup("views") == Kind.UINT

    def test_containers(self, raw_movie_fields):
        assert raw_movie_fields.lookup("tags") == Kind.ARRAY_STRING
        assert raw_movie_fields.lookup("scores") == Kind.MAP_INT
        assert raw_movie_fields.lookup("comments") == Kind.ARRAY_OBJECT

    def test_nested_members(self, raw_movie_fields):
        assert raw_movie_fields.lookup("comments.likes") == Kind.INT
        assert raw_movie_fields.lookup("director") == Kind.OBJECT
        assert raw_movie_fields.lookup("director.born") == Kind.INT

    def test_map_members_resolve_to_map_kind(self, raw_movie_fields):
        assert raw_movie_fields.get("scores.imdb") is None
        assert raw_movie_fields.lookup("scores.imdb") == Kind.MAP_INT
        assert raw_movie_fields.map_member("scores.imdb") == Kind.MAP_INT
        assert raw_movie_fields.map_member("director.name") is None

    def test_typed_dict(self):
        fields = FieldSet.build(Note)
        assert fields.lookup("body") == Kind.STRING
        assert fields.lookup("weights") == Kind.MAP_FLOAT

    def test_alias_is_the_path(self):
        class Aliased(BaseModel):
            display_name: str = Field("", alias="displayName")

        fields = FieldSet.build(Aliased)
        assert "displayName" in fields
        assert "display_name" not in fields

    def test_nested_containers_dropped(self, caplog):
        class Grid(BaseModel):
            id: str = ""
            cells: list[list[int]] = []
            lookup: dict[int, str] = {}

        with caplog.at_level(logging.WARNING, logger="docrest.schema"):
            fields = FieldSet.build(Grid)
        assert "cells" not in fields
        assert "lookup" not in fields
        assert "cells" in caplog.text

    def test_self_reference_terminates(self):
        class Node(BaseModel):
            name: str = ""
            parent: Optional["Node"] = None

        Node.model_rebuild()
        fields = FieldSet.build(Node)
        assert fields.lookup("parent") == Kind.OBJECT
        assert fields.lookup("parent.name") is None

    def test_rejects_non_models(self):
        with pytest.raises(ConfigurationError):
            FieldSet.build(dict)

    def test_from_kinds(self):
        fields = FieldSet.from_kinds({"id": Kind.STRING, "tags": Kind.ARRAY_STRING})
        assert fields.paths == ("id", "tags")


class TestRequired:
    BOOKKEEPING = {"id": (str, ""), "btime": (int, 0), "mtime": (int, 0), "seq": (str, "")}

    @pytest.mark.parametrize("missing", ["id", "btime", "mtime", "seq"])
    def test_each_bookkeeping_field_required(self, missing):
        declared = {k: v for k, v in self.BOOKKEEPING.items() if k != missing}
        model = create_model(f"Without_{missing}", title=(str, ""), **declared)
        with pytest.raises(ConfigurationError, match=f"must contain '{missing}'"):
            FieldSet.build(model).require(*REQUIRED_FIELDS, resource="partial")
        with pytest.raises(ConfigurationError, match=f"movie struct must contain '{missing}'"):
            movie_processor(model=model).compile_fields()

    def test_missing_required_field(self):
        fields = FieldSet.build(Untracked)
        with pytest.raises(ConfigurationError, match="must contain 'btime'"):
            fields.require(*REQUIRED_FIELDS, resource="untracked")

    def test_processor_refuses_model(self):
        with pytest.raises(ConfigurationError):
            movie_processor(model=Untracked).compile_fields()


class TestPolicies:
    def test_prefix_applies_to_descendants(self, raw_movie_fields):
        raw_movie_fields.set_read_only(["comments"])
        assert raw_movie_fields.is_read_only("comments")
        assert raw_movie_fields.is_read_only("comments.text")
        assert not raw_movie_fields.is_read_only("title")

    def test_prefix_matches_on_path_boundary(self):
        fields = FieldSet.from_kinds({"tag": Kind.STRING, "tags": Kind.ARRAY_STRING})
        fields.set_create_only(["tag"])
        assert fields.is_create_only("tag")
        assert not fields.is_create_only("tags")

    def test_unknown_policy_field(self, raw_movie_fields):
        with pytest.raises(ConfigurationError, match="unknown"):
            raw_movie_fields.set_create_only(["nope"])

    def test_frozen(self, movie_fields):
        with pytest.raises(ConfigurationError, match="frozen"):
            movie_fields.set_read_only(["title"])
        with pytest.raises(ConfigurationError, match="frozen"):
            movie_fields.add("extra", Kind.STRING)

    def test_processor_policies(self, movie_fields):
        assert movie_fields.is_create_only("owner")
        assert movie_fields.is_read_only("views")


class TestDeclarationChecks:
    def test_search_fields(self, raw_movie_fields):
        raw_movie_fields.check_search_fields(["title", "tags", "director.name"])
        with pytest.raises(ConfigurationError, match="not string"):
            raw_movie_fields.check_search_fields(["year"])
        with pytest.raises(ConfigurationError, match="unknown"):
            raw_movie_fields.check_search_fields(["plot"])

    def test_regex_search_fields_require_plain_strings(self, raw_movie_fields):
        raw_movie_fields.check_regex_search_fields(["title"])
        with pytest.raises(ConfigurationError, match="not string"):
            raw_movie_fields.check_regex_search_fields(["tags"])

    def test_index_fields_normalized(self, raw_movie_fields):
        keys = raw_movie_fields.check_index_fields(["+year", "-rating", "+comments.likes"])
        assert keys == ["year", "-rating", "comments.likes"]

    @pytest.mark.parametrize(
        "keys,message",
        [
            ([], "empty"),
            (["+year", "+year"], "dup"),
            (["+"], "invalid"),
            (["year"], "should start with"),
            (["+id"], "id field"),
            (["+plot"], "unknown"),
        ],
    )
    def test_index_fields_rejected(self, raw_movie_fields, keys, message):
        with pytest.raises(ConfigurationError, match=message):
            raw_movie_fields.check_index_fields(keys)

    def test_processor_normalizes_indexes(self):
        processor = movie_processor()
        processor.compile_fields()
        assert [idx.key for idx in processor.indexes] == [("year", "-rating"), ("owner",)]


class TestRenaming:
    def test_in_replace_recurses_into_groups(self, movie_fields):
        cond = {"id": "a", "$or": [{"id": "b"}, {"title": "x"}], "$and": [{"id": "c"}]}
        movie_fields.in_replace(cond)
        assert cond == {"_id": "a", "$or": [{"_id": "b"}, {"title": "x"}], "$and": [{"_id": "c"}]}

    def test_out_replace_all(self, movie_fields):
        docs = movie_fields.out_replace_all([{"_id": "a"}, {"_id": "b", "title": "t"}])
        assert docs == [{"id": "a"}, {"id": "b", "title": "t"}]

    def test_storage_layout_keeps_declared_top_level_order(self, movie_fields):
        doc = {"title": "t", "_id": "a", "seq": "1", "btime": 1, "mtime": 1}
        assert list(movie_fields.storage_layout(doc)) == ["_id", "btime", "mtime", "seq", "title"]

    def test_build_search_content(self, movie_fields):
        doc = {"_id": "a", "title": "Alien", "tags": ["space", 3, "horror"], "labels": {"en": "x"}}
        content = movie_fields.build_search_content(doc, ["title", "tags", "labels.en", "owner"])
        assert content == "Alien space horror x"
