"""
Where filters shared by access rules, field filter options and store queries.

Shape::

    {"and": [<where>, ...]}
    {"or": [<where>, ...]}
    {"<field.path>": {"<operator>": <value>, ...}, ...}   # several keys = and

Operators: equals, not_equals, in, not_in, exists, greater_than,
greater_than_equal, less_than, less_than_equal, like.

A document matches an equality operator on a list-valued field when any
element matches. Missing fields read as None.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Tuple

from relpop_common.errors import InvalidWhere

Where = Dict[str, Any]

OPERATORS = {
    "equals",
    "not_equals",
    "in",
    "not_in",
    "exists",
    "greater_than",
    "greater_than_equal",
    "less_than",
    "less_than_equal",
    "like",
}

_PATH_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")

_COMPARE_SQL = {
    "greater_than": ">",
    "greater_than_equal": ">=",
    "less_than": "<",
    "less_than_equal": "<=",
}


def combine(*wheres: Optional[Where]) -> Optional[Where]:
    """And together the non-empty filters; None when nothing is left."""
    parts = [w for w in wheres if w]
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return {"and": parts}


def validate(where: Any) -> Where:
    if not isinstance(where, dict):
        raise InvalidWhere(f"where must be an object, got {type(where).__name__}")
    for key, cond in where.items():
        if key in ("and", "or"):
            if not isinstance(cond, list):
                raise InvalidWhere(f"'{key}' expects a list of filters")
            for sub in cond:
                validate(sub)
            continue
        if not _PATH_RE.match(key):
            raise InvalidWhere(f"invalid field path {key!r}")
        if not isinstance(cond, dict) or not cond:
            raise InvalidWhere(f"condition for {key!r} must be a non-empty object")
        for op, value in cond.items():
            if op not in OPERATORS:
                raise InvalidWhere(f"unknown operator {op!r} on {key!r}")
            if op in ("in", "not_in") and not isinstance(value, list):
                raise InvalidWhere(f"'{op}' on {key!r} expects a list")
    return where


def _lookup(doc: Any, path: str) -> Any:
    node = doc
    for part in path.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(part)
    return node


def _test(op: str, actual: Any, expected: Any) -> bool:
    values = actual if isinstance(actual, list) else [actual]

    if op == "equals":
        if expected is None:
            return actual is None
        return any(v == expected for v in values)
    if op == "not_equals":
        if expected is None:
            return actual is not None
        return not any(v == expected for v in values)
    if op == "in":
        return any(v in expected for v in values if v is not None)
    if op == "not_in":
        return not any(v in expected for v in values if v is not None)
    if op == "exists":
        return (actual is not None) == bool(expected)
    if op == "like":
        return isinstance(actual, str) and str(expected).lower() in actual.lower()

    if actual is None or isinstance(actual, list):
        return False
    try:
        if op == "greater_than":
            return actual > expected
        if op == "greater_than_equal":
            return actual >= expected
        if op == "less_than":
            return actual < expected
        if op == "less_than_equal":
            return actual <= expected
    except TypeError:
        return False
    raise InvalidWhere(f"unknown operator {op!r}")


def matches(doc: Dict[str, Any], where: Optional[Where]) -> bool:
    if not where:
        return True
    for key, cond in where.items():
        if key == "and":
            if not all(matches(doc, sub) for sub in cond):
                return False
        elif key == "or":
            if not any(matches(doc, sub) for sub in cond):
                return False
        else:
            actual = _lookup(doc, key)
            if not all(_test(op, actual, expected) for op, expected in cond.items()):
                return False
    return True


def _like_pattern(value: Any) -> str:
    text = str(value).replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{text}%"


def _compare_guard(value: Any) -> Optional[str]:
    # python refuses to order across types; only compare like with like
    if isinstance(value, (int, float)):
        return "IN ('integer', 'real', 'true', 'false')"
    if isinstance(value, str):
        return "= 'text'"
    return None


def _element_match(column: str, jpath: str, test: str, values: List[Any]) -> Tuple[str, List[Any]]:
    """Scalar test against a field, or against any scalar element when it is an array."""
    sql = (
        f"COALESCE(CASE json_type({column}, ?)"
        f" WHEN 'array' THEN EXISTS (SELECT 1 FROM json_each({column}, ?) AS je"
        f" WHERE je.type NOT IN ('object', 'array') AND je.value {test})"
        f" WHEN 'object' THEN 0"
        f" ELSE json_extract({column}, ?) {test} END, 0)"
    )
    return sql, [jpath, jpath, *values, jpath, *values]


def _condition_sql(column: str, path: str, op: str, value: Any) -> Tuple[str, List[Any]]:
    jpath = "$." + path
    is_null = f"(json_type({column}, ?) IS NULL OR json_type({column}, ?) = 'null')"

    if op in ("equals", "not_equals"):
        if value is None:
            sql = is_null if op == "equals" else f"NOT {is_null}"
            return sql, [jpath, jpath]
        sql, params = _element_match(column, jpath, "= ?", [value])
        return (sql if op == "equals" else f"NOT {sql}"), params
    if op in ("in", "not_in"):
        if not value:
            return ("0", []) if op == "in" else ("1", [])
        marks = ", ".join("?" for _ in value)
        sql, params = _element_match(column, jpath, f"IN ({marks})", list(value))
        return (sql if op == "in" else f"NOT {sql}"), params
    if op == "exists":
        prefix = "NOT " if value else ""
        return f"{prefix}{is_null}", [jpath, jpath]
    if op == "like":
        sql = f"(json_type({column}, ?) = 'text' AND json_extract({column}, ?) LIKE ? ESCAPE '\\')"
        return sql, [jpath, jpath, _like_pattern(value)]
    if op in _COMPARE_SQL:
        guard = _compare_guard(value)
        if guard is None:
            return "0", []
        sql = f"(json_type({column}, ?) {guard} AND json_extract({column}, ?) {_COMPARE_SQL[op]} ?)"
        return sql, [jpath, jpath, value]
    raise InvalidWhere(f"unknown operator {op!r}")


def to_sql(where: Optional[Where], column: str = "data") -> Tuple[str, List[Any]]:
    """Compile a filter into an SQLite boolean expression over a JSON column."""
    if not where:
        return "1", []
    validate(where)

    clauses: List[str] = []
    params: List[Any] = []
    for key, cond in where.items():
        if key in ("and", "or"):
            subs = [to_sql(sub, column) for sub in cond]
            if not subs:
                clauses.append("1" if key == "and" else "0")
                continue
            joiner = " AND " if key == "and" else " OR "
            clauses.append("(" + joiner.join(s for s, _ in subs) + ")")
            for _, p in subs:
                params.extend(p)
            continue
        for op, value in cond.items():
            sql, p = _condition_sql(column, key, op, value)
            clauses.append(sql)
            params.extend(p)

    return "(" + " AND ".join(clauses) + ")", params
