from __future__ import annotations

import pytest

from relpop.access import AccessEvaluator
from relpop.populator import Populator
from relpop.registry import CollectionRegistry
from relpop.resolver import ReferenceResolver
from tests.helpers.stores import COLLECTIONS, CountingStore, seed_documents


@pytest.fixture(autouse=True)
def _isolated_runtime(tmp_path, monkeypatch):
    """Keep telemetry and settings away from the developer's repo and env."""
    monkeypatch.setenv("RELPOP_TELEMETRY_DIR", str(tmp_path / "telemetry"))
    for name in ("RELPOP_DEFAULT_DEPTH", "RELPOP_MAX_DEPTH", "RELPOP_POPULATE_TIMEOUT", "RELPOP_DISABLE_TELEMETRY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def registry() -> CollectionRegistry:
    return CollectionRegistry.from_dicts(COLLECTIONS)


@pytest.fixture()
def store() -> CountingStore:
    return CountingStore(seed_documents())


@pytest.fixture()
def populator(registry, store) -> Populator:
    return Populator(registry, ReferenceResolver(store, AccessEvaluator(registry)))
