import json
import os

import pytest
from pydantic import ValidationError

from relpop.models import CollectionConfig, FieldConfig
from relpop.registry import CollectionRegistry
from relpop_common.errors import UnknownCollection


def _write(path, collections):
    path.write_text(json.dumps({"collections": collections}), encoding="utf-8")


def test_get_and_unknown(registry):
    assert registry.get("posts").field("relationField").targets == ["relation"]
    assert "posts" in registry
    assert "users" not in registry
    with pytest.raises(UnknownCollection):
        registry.get("users")


def test_relationship_field_validation():
    with pytest.raises(ValidationError):
        FieldConfig(name="rel", type="relationship")
    with pytest.raises(ValidationError):
        FieldConfig(name="title", type="text", relation_to="relation")
    with pytest.raises(ValidationError):
        FieldConfig(name="rel", type="relationship", relation_to=["a", "a"])
    with pytest.raises(ValidationError):
        FieldConfig(name="rel", type="relationship", relation_to="a", max_depth=-1)
    with pytest.raises(ValidationError):
        FieldConfig(name="title", type="text", fields=[{"name": "x"}])


def test_collection_validation():
    with pytest.raises(ValidationError):
        CollectionConfig(slug="  ")
    with pytest.raises(ValidationError):
        CollectionConfig(slug="posts", id_type="uuid")
    with pytest.raises(ValidationError):
        CollectionConfig(slug="posts", access={"publish": "admin"})


def test_from_file_and_refresh(tmp_path):
    p = tmp_path / "collections.json"
    _write(p, [{"slug": "relation"}])

    reg = CollectionRegistry.from_file(p)
    assert reg.slugs == ["relation"]
    assert reg.refresh() is False

    _write(p, [{"slug": "relation"}, {"slug": "custom-id-number", "id_type": "number"}])
    st = p.stat()
    os.utime(p, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000))

    assert reg.refresh() is True
    assert reg.get("custom-id-number").id_type == "number"


def test_broken_file_keeps_previous_config(tmp_path):
    p = tmp_path / "collections.json"
    _write(p, [{"slug": "relation"}])
    reg = CollectionRegistry.from_file(p)

    p.write_text('{"collections": [{"slug": ""}]}', encoding="utf-8")
    st = p.stat()
    os.utime(p, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000))

    assert reg.refresh() is False
    assert reg.slugs == ["relation"]


def test_filters_are_checked_on_load():
    with pytest.raises(ValidationError):
        FieldConfig(name="rel", type="relationship", relation_to="relation", filter_options={"x": {"equal": 1}})
    with pytest.raises(ValidationError):
        CollectionConfig(slug="posts", access={"read": {"where": {"x": {"equal": 1}}}})
    with pytest.raises(ValidationError):
        CollectionConfig(slug="posts", access={"read": {"rule": "public", "filter": {}}})

    ok = CollectionConfig(slug="posts", access={"read": {"rule": "public", "where": {"x": {"equals": 1}}}})
    assert ok.access["read"]["where"] == {"x": {"equals": 1}}


def test_bad_filter_in_file_keeps_previous_config(tmp_path):
    p = tmp_path / "collections.json"
    _write(p, [{"slug": "relation"}])
    reg = CollectionRegistry.from_file(p)

    _write(p, [
        {"slug": "relation"},
        {"slug": "posts", "fields": [
            {"name": "rel", "type": "relationship", "relation_to": "relation",
             "filter_options": {"disableRelation": {"not_equal": True}}},
        ]},
    ])
    st = p.stat()
    os.utime(p, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000))

    assert reg.refresh() is False
    assert reg.slugs == ["relation"]

    _write(p, [{"slug": "relation", "access": {"read": {"where": {"status": "published"}}}}])
    st = p.stat()
    os.utime(p, ns=(st.st_atime_ns, st.st_mtime_ns + 2_000_000))

    assert reg.refresh() is False
    assert reg.get("relation").access == {}


def test_missing_file_is_empty(tmp_path):
    reg = CollectionRegistry.from_file(tmp_path / "nope.json")
    assert reg.slugs == []


def test_rules_and_reference_check():
    reg = CollectionRegistry.from_dicts([
        {"slug": "posts", "fields": [{"name": "author", "type": "relationship", "relation_to": "users"}],
         "access": {"read": "owner", "update": {"rule": "admin"}}},
    ])
    with pytest.raises(LookupError):
        reg.rule("owner")

    problems = reg.check_references()
    assert "posts.author relates to unknown collection 'users'" in problems
    assert "posts.access.read uses unknown rule 'owner'" in problems
    assert len(problems) == 2

    reg.register_rule("owner", lambda identity, collection: identity is not None)
    reg.register(CollectionConfig(slug="users"))
    assert reg.check_references() == []


def test_shipped_config_is_consistent():
    reg = CollectionRegistry.from_file(os.path.join(os.path.dirname(__file__), "..", "..", "config", "collections.json"))
    assert "posts" in reg
    assert reg.check_references() == []
    assert reg.get("posts").field("maxDepthRelation").max_depth == 0
