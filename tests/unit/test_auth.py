import json

import pytest

from relpop_api.auth import load_api_keys


def test_load_api_keys(tmp_path):
    p = tmp_path / "users.json"
    p.write_text(json.dumps({"users": [
        {"id": "dev", "email": "dev@example.com", "roles": ["admin"], "api_key": "k1"},
        {"id": "nokey", "api_key": ""},
        {"id": None, "api_key": "broken"},
    ]}), encoding="utf-8")

    keys = load_api_keys(p)

    assert list(keys) == ["k1"]
    assert keys["k1"].id == "dev"
    assert keys["k1"].roles == ["admin"]


def test_missing_users_file_means_anonymous_only(tmp_path):
    assert load_api_keys(tmp_path / "users.json") == {}


def test_invalid_users_file(tmp_path):
    p = tmp_path / "users.json"
    p.write_text(json.dumps([{"id": 1}]), encoding="utf-8")
    with pytest.raises(ValueError):
        load_api_keys(p)
