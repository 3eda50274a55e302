import json
import sqlite3

import pytest

from relpop import where
from relpop_common.errors import InvalidWhere

DOCS = [
    {"id": "a", "status": "published", "views": 10, "tags": ["x", "y"], "meta": {"lang": "en"}},
    {"id": "b", "status": "draft", "views": 3, "tags": ["z"], "disableRelation": True},
    {"id": "c", "status": "published", "views": None, "tags": [], "meta": {"lang": "nl"}},
]

CASES = [
    ({"status": {"equals": "published"}}, ["a", "c"]),
    ({"status": {"not_equals": "published"}}, ["b"]),
    ({"disableRelation": {"not_equals": True}}, ["a", "c"]),
    ({"status": {"in": ["draft", "archived"]}}, ["b"]),
    ({"status": {"not_in": ["draft"]}}, ["a", "c"]),
    ({"tags": {"equals": "y"}}, ["a"]),
    ({"tags": {"in": ["y", "z"]}}, ["a", "b"]),
    ({"views": {"exists": True}}, ["a", "b"]),
    ({"views": {"exists": False}}, ["c"]),
    ({"views": {"greater_than": 3}}, ["a"]),
    ({"views": {"greater_than_equal": 3}}, ["a", "b"]),
    ({"views": {"less_than": 10}}, ["b"]),
    ({"views": {"less_than_equal": 10}}, ["a", "b"]),
    ({"status": {"like": "PUB"}}, ["a", "c"]),
    ({"meta.lang": {"equals": "nl"}}, ["c"]),
    ({"status": {"equals": "published"}, "views": {"greater_than": 5}}, ["a"]),
    ({"or": [{"status": {"equals": "draft"}}, {"meta.lang": {"equals": "nl"}}]}, ["b", "c"]),
    ({"and": [{"status": {"equals": "published"}}, {"tags": {"exists": True}}]}, ["a", "c"]),
    ({}, ["a", "b", "c"]),
]


@pytest.mark.parametrize("flt,expected", CASES)
def test_matches(flt, expected):
    assert [d["id"] for d in DOCS if where.matches(d, flt)] == expected


@pytest.fixture()
def con():
    con = sqlite3.connect(":memory:")
    con.execute("CREATE TABLE documents (seq INTEGER PRIMARY KEY, data TEXT)")
    con.executemany("INSERT INTO documents (data) VALUES (?)", [(json.dumps(d),) for d in DOCS])
    yield con
    con.close()


@pytest.mark.parametrize("flt,expected", CASES)
def test_to_sql_agrees_with_matches(con, flt, expected):
    sql, params = where.to_sql(flt)
    rows = con.execute(f"SELECT data FROM documents WHERE {sql} ORDER BY seq", params).fetchall()
    assert [json.loads(r[0])["id"] for r in rows] == expected


# values whose json type differs from the operand; sqlite must not coerce across types
MIXED_DOCS = [
    {"id": "s", "views": "abc", "label": "50% off", "meta": {"lang": "en"}, "code": "a_b"},
    {"id": "t", "views": 1, "label": "500 off", "meta": "en", "code": "axb"},
    {"id": "u", "views": 7.5, "label": None, "meta": [{"lang": "en"}, "en"], "code": "A\\B"},
]

MIXED_CASES = [
    ({"views": {"greater_than": 3}}, ["u"]),
    ({"views": {"less_than": 3}}, ["t"]),
    ({"views": {"greater_than": "a"}}, ["s"]),
    ({"views": {"greater_than": None}}, []),
    ({"label": {"like": "50%"}}, ["s"]),
    ({"label": {"like": "% OFF"}}, ["s"]),
    ({"code": {"like": "a_b"}}, ["s"]),
    ({"code": {"like": "a\\b"}}, ["u"]),
    ({"views": {"like": "1"}}, []),
    ({"meta": {"equals": "en"}}, ["t", "u"]),
    ({"meta": {"not_equals": "en"}}, ["s"]),
    ({"meta": {"in": ["en"]}}, ["t", "u"]),
    ({"meta.lang": {"equals": "en"}}, ["s"]),
    ({"views": {"equals": "1"}}, []),
    ({"views": {"equals": 1.0}}, ["t"]),
    ({"label": {"not_in": ["500 off"]}}, ["s", "u"]),
]


@pytest.fixture()
def mixed_con():
    con = sqlite3.connect(":memory:")
    con.execute("CREATE TABLE documents (seq INTEGER PRIMARY KEY, data TEXT)")
    con.executemany("INSERT INTO documents (data) VALUES (?)", [(json.dumps(d),) for d in MIXED_DOCS])
    yield con
    con.close()


@pytest.mark.parametrize("flt,expected", MIXED_CASES)
def test_mixed_types_match_in_memory(flt, expected):
    assert [d["id"] for d in MIXED_DOCS if where.matches(d, flt)] == expected


@pytest.mark.parametrize("flt,expected", MIXED_CASES)
def test_mixed_types_match_in_sqlite(mixed_con, flt, expected):
    sql, params = where.to_sql(flt)
    rows = mixed_con.execute(f"SELECT data FROM documents WHERE {sql} ORDER BY seq", params).fetchall()
    assert [json.loads(r[0])["id"] for r in rows] == expected


def test_to_sql_parameterizes_values():
    sql, params = where.to_sql({"status": {"equals": "x'; DROP TABLE documents; --"}})
    assert "DROP" not in sql
    assert params[0] == "$.status"
    assert "x'; DROP TABLE documents; --" in params


def test_combine():
    a = {"status": {"equals": "published"}}
    b = {"views": {"exists": True}}
    assert where.combine(None, None) is None
    assert where.combine(a, None) is a
    assert where.combine(a, {}, b) == {"and": [a, b]}


@pytest.mark.parametrize("bad", [
    [],
    {"status": "published"},
    {"status": {}},
    {"status": {"matches": "x"}},
    {"status": {"in": "draft"}},
    {"bad path": {"equals": 1}},
    {"$.status": {"equals": 1}},
    {"or": {"status": {"equals": 1}}},
])
def test_validate_rejects(bad):
    with pytest.raises(InvalidWhere):
        where.validate(bad)
