"""
test_document_store.py
----------------------
HealthCloud Clinical Backend: Test Suite for document_store.py
--------------------------------------------------------------
Each test uses a fresh SQLite file under pytest's ``tmp_path``.

Run:
    pytest tests/test_document_store.py -v --tb=short

Project: HealthCloud Clinical Backend
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from document_store import SQLiteDocumentStore, init_db, suffix_collection
from errors import InvalidInputError, NotFoundError


@pytest.fixture
def store(tmp_path):
    return SQLiteDocumentStore(tmp_path / "documents.sqlite")


@pytest.fixture
def seeded(store):
    store.create("people", {"name": "Amina", "age": 34, "tags": ["nurse", "admin"]})
    store.create("people", {"name": "Brian", "age": 51, "tags": ["doctor"]})
    store.create("people", {"name": "Chao", "tags": []})
    return store


def _names(documents):
    return sorted(doc["name"] for doc in documents)


def test_create_then_get(store):
    doc_id = store.create("email_opt_ins", {"email": "a@example.com", "optedIn": True})
    document = store.get("email_opt_ins", doc_id)
    assert document == {"email": "a@example.com", "optedIn": True, "id": doc_id}


def test_get_missing_raises(store):
    with pytest.raises(NotFoundError):
        store.get("email_opt_ins", "nope")


def test_collections_are_isolated(store):
    doc_id = store.create("a", {"x": 1})
    with pytest.raises(NotFoundError):
        store.get("b", doc_id)
    assert store.get_all("b") == []


def test_get_all_without_filter_returns_in_insertion_order(seeded):
    assert [doc["name"] for doc in seeded.get_all("people")] == ["Amina", "Brian", "Chao"]


@pytest.mark.parametrize("operator, value, expected", [
    ("==", 34, ["Amina"]),
    ("!=", 34, ["Brian"]),
    ("<", 50, ["Amina"]),
    ("<=", 51, ["Amina", "Brian"]),
    (">", 34, ["Brian"]),
    (">=", 34, ["Amina", "Brian"]),
    ("in", [51, 99], ["Brian"]),
])
def test_get_all_comparison_operators(seeded, operator, value, expected):
    """Documents lacking the field (Chao has no age) never match."""
    assert _names(seeded.get_all("people", "age", operator, value)) == expected


def test_get_all_array_contains(seeded):
    assert _names(seeded.get_all("people", "tags", "array-contains", "nurse")) == ["Amina"]


def test_get_all_incomparable_values_do_not_match(seeded):
    assert seeded.get_all("people", "age", "<", "fifty") == []


@pytest.mark.parametrize("filters", [
    {"field": "age"},
    {"operator": "==", "value": 34},
    {"field": "age", "operator": "=="},
    {"value": 34},
])
def test_get_all_partial_filter_rejected(seeded, filters):
    with pytest.raises(InvalidInputError):
        seeded.get_all("people", **filters)


def test_get_all_filters_on_null_value(seeded):
    seeded.create("people", {"name": "Dana", "age": None})
    assert _names(seeded.get_all("people", "age", "==", None)) == ["Dana"]
    assert _names(seeded.get_all("people", "age", "!=", None)) == ["Amina", "Brian"]


def test_get_all_unknown_operator_rejected(seeded):
    with pytest.raises(InvalidInputError):
        seeded.get_all("people", "age", "~=", 34)


def test_update_merges_fields(store):
    doc_id = store.create("people", {"name": "Amina", "age": 34})
    store.update("people", doc_id, {"age": 35, "ward": "B"})
    assert store.get("people", doc_id) == {"name": "Amina", "age": 35, "ward": "B", "id": doc_id}


def test_update_missing_raises(store):
    with pytest.raises(NotFoundError):
        store.update("people", "nope", {"age": 1})


def test_delete(store):
    doc_id = store.create("people", {"name": "Amina"})
    store.delete("people", doc_id)
    with pytest.raises(NotFoundError):
        store.get("people", doc_id)
    store.delete("people", doc_id)


def test_empty_collection_name_rejected(store):
    with pytest.raises(InvalidInputError):
        store.create("", {"x": 1})


def test_init_db_is_idempotent(tmp_path):
    path = tmp_path / "documents.sqlite"
    init_db(path)
    init_db(path)
    assert SQLiteDocumentStore(path).get_all("anything") == []


def test_suffix_collection():
    assert suffix_collection("email_opt_ins", "staging") == "email_opt_ins_staging"
    assert suffix_collection("email_opt_ins", "") == "email_opt_ins"
