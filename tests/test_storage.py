"""Tests for the storage layer: condition matching, CRUD, conditional update, indexes."""

from __future__ import annotations

import pytest

from docrest import DuplicateKeyError, Index, StorageError
from docrest.storage import match_condition, project, set_path


@pytest.fixture
def coll(store):
    with store.session() as session:
        yield session.collection("rest_test", "cn")


def seed(coll):
    coll.insert({"_id": "a", "title": "Alien", "year": 1979, "tags": ["space", "horror"]})
    coll.insert({"_id": "b", "title": "Brazil", "year": 1985, "tags": ["satire"]})
    coll.insert({"_id": "c", "title": "Cube", "year": 1997, "released": True})


class TestMatchCondition:
    def test_equality_and_missing(self):
        doc = {"title": "x", "year": 0}
        assert match_condition({"title": "x"}, doc)
        assert match_condition({"missing": None}, doc)
        assert match_condition({"year": {"$in": [None, 0]}}, doc)
        assert match_condition({"title": {"$in": [None, ""]}}, {})

    def test_bool_never_equals_int(self):
        assert not match_condition({"flag": 1}, {"flag": True})
        assert not match_condition({"count": True}, {"count": 1})

    def test_array_membership(self):
        doc = {"tags": ["a", "b"]}
        assert match_condition({"tags": "a"}, doc)
        assert match_condition({"tags": ["a", "b"]}, doc)
        assert match_condition({"tags": {"$all": ["b", "a"]}}, doc)
        assert not match_condition({"tags": {"$nin": ["b"]}}, doc)

    def test_paths_through_arrays_of_objects(self):
        doc = {"comments": [{"likes": 1}, {"likes": 7}]}
        assert match_condition({"comments.likes": 7}, doc)
        assert match_condition({"comments.likes": {"$gt": 5}}, doc)
        assert not match_condition({"comments.likes": {"$gt": 7}}, doc)

    def test_ranges_skip_incomparable(self):
        assert not match_condition({"year": {"$gt": 1}}, {"year": "1999"})
        assert match_condition({"title": {"$gte": "B", "$lt": "C"}}, {"title": "Brazil"})

    def test_regex(self):
        assert match_condition({"title": {"$regex": "li"}}, {"title": "Alien"})
        assert not match_condition({"title": {"$regex": "^li"}}, {"title": "Alien"})

    def test_or_and(self):
        doc = {"a": 1, "b": 2}
        assert match_condition({"$or": [{"a": 2}, {"b": 2}]}, doc)
        assert not match_condition({"$and": [{"$or": [{"a": 1}]}, {"$or": [{"b": 3}]}]}, doc)

    def test_unknown_operator(self):
        with pytest.raises(StorageError):
            match_condition({"a": {"$near": 1}}, {"a": 1})


class TestPaths:
    def test_project_keeps_primary_key(self):
        doc = {"_id": "a", "title": "t", "director": {"name": "n", "born": 1}}
        assert project(doc, {"director.name": 1}) == {"_id": "a", "director": {"name": "n"}}

    def test_project_through_arrays(self):
        doc = {"_id": "a", "comments": [{"text": "x", "likes": 1}, {"text": "y"}]}
        assert project(doc, {"comments.text": 1}) == {
            "_id": "a",
            "comments": [{"text": "x"}, {"text": "y"}],
        }

    def test_set_path_creates_parents(self):
        doc = {"scores": {"rt": 1}}
        set_path(doc, "scores.imdb", 8)
        set_path(doc, "director.name", "n")
        assert doc == {"scores": {"rt": 1, "imdb": 8}, "director": {"name": "n"}}

    def test_set_path_refuses_to_overwrite_non_objects(self):
        doc = {"comments": [{"text": "t"}], "title": "x"}
        with pytest.raises(StorageError, match="comments is not an object"):
            set_path(doc, "comments.text", "hi")
        with pytest.raises(StorageError):
            set_path(doc, "title.en", "hi")
        assert doc == {"comments": [{"text": "t"}], "title": "x"}


class TestCrud:
    def test_missing_table_reads_empty(self, coll):
        assert coll.find_one("a") is None
        assert coll.find({}) == []
        assert coll.count({}) == 0
        assert not coll.remove("a")
        assert not coll.update({"_id": "a"}, {"title": "x"})

    def test_insert_and_find_one(self, coll):
        seed(coll)
        assert coll.find_one("a")["title"] == "Alien"
        assert coll.find_one("a", {"year": 1}) == {"_id": "a", "year": 1979}

    def test_duplicate_insert(self, coll):
        seed(coll)
        with pytest.raises(DuplicateKeyError):
            coll.insert({"_id": "a"})

    def test_upsert_replaces(self, coll):
        seed(coll)
        coll.upsert("a", {"title": "Aliens"})
        assert coll.find_one("a") == {"_id": "a", "title": "Aliens"}
        coll.upsert("z", {"title": "Zodiac"})
        assert coll.count({}) == 4

    def test_find_filters_sorts_and_pages(self, coll):
        seed(coll)
        docs = coll.find({"year": {"$gt": 1980}}, sort=[("year", -1)])
        assert [d["_id"] for d in docs] == ["c", "b"]
        docs = coll.find({}, sort=[("_id", 1)], skip=1, limit=1)
        assert [d["_id"] for d in docs] == ["b"]
        assert coll.count({"tags": "space"}) == 1

    def test_find_projection(self, coll):
        seed(coll)
        assert coll.find({"_id": "b"}, projection={"title": 1}) == [{"_id": "b", "title": "Brazil"}]

    def test_remove(self, coll):
        seed(coll)
        assert coll.remove("a")
        assert not coll.remove("a")
        assert coll.count({}) == 2


class TestConditionalUpdate:
    def test_applies_when_selector_matches(self, coll):
        coll.insert({"_id": "a", "seq": "1", "scores": {"rt": 1}})
        assert coll.update({"_id": "a", "seq": "1"}, {"seq": "2", "scores.imdb": 8})
        assert coll.find_one("a") == {"_id": "a", "seq": "2", "scores": {"rt": 1, "imdb": 8}}

    def test_stale_selector_matches_nothing(self, coll):
        coll.insert({"_id": "a", "seq": "2"})
        assert not coll.update({"_id": "a", "seq": "1"}, {"seq": "2", "title": "x"})
        assert coll.find_one("a") == {"_id": "a", "seq": "2"}

    def test_failed_assignment_rolls_back(self, coll):
        coll.insert({"_id": "a", "seq": "1", "comments": [{"text": "t"}]})
        with pytest.raises(StorageError):
            coll.update({"_id": "a", "seq": "1"}, {"seq": "2", "comments.text": "hi"})
        assert coll.find_one("a") == {"_id": "a", "seq": "1", "comments": [{"text": "t"}]}


class TestIndexes:
    def test_list_indexes_missing_table(self, coll):
        assert coll.list_indexes() is None

    def test_create_and_list(self, coll):
        seed(coll)
        assert coll.list_indexes() == []
        coll.create_index(Index(key=("year", "-title")))
        coll.create_index(Index(key=("title",), unique=True))
        assert set(coll.list_indexes()) == {
            Index(key=("year", "-title")),
            Index(key=("title",), unique=True),
        }

    def test_unique_index_enforced(self, coll):
        seed(coll)
        coll.create_index(Index(key=("title",), unique=True))
        with pytest.raises(DuplicateKeyError):
            coll.insert({"_id": "d", "title": "Alien"})

    def test_index_upgraded_to_unique(self, coll):
        seed(coll)
        coll.create_index(Index(key=("title",)))
        coll.create_index(Index(key=("title",), unique=True))
        assert Index(key=("title",), unique=True) in coll.list_indexes()
        with pytest.raises(DuplicateKeyError):
            coll.insert({"_id": "d", "title": "Alien"})

    def test_create_unique_index_over_duplicates_fails(self, coll):
        seed(coll)
        coll.insert({"_id": "d", "title": "Alien"})
        with pytest.raises(StorageError):
            coll.create_index(Index(key=("title",), unique=True))
        assert coll.list_indexes() == []


class TestNames:
    def test_invalid_table_name(self, store):
        with store.session() as session:
            with pytest.raises(StorageError):
                session.collection("rest_test", "bad name")

    def test_invalid_database_name(self, store):
        with store.session() as session:
            with pytest.raises(StorageError):
                session.collection("../escape", "cn")
