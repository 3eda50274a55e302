from __future__ import annotations

import pytest
import pytest_asyncio

from relpop.registry import CollectionRegistry
from relpop.service import DocumentService
from relpop.store import SqliteDocumentStore
from tests.helpers.stores import COLLECTIONS, seed_service


@pytest.fixture()
def sqlite_store(tmp_path) -> SqliteDocumentStore:
    return SqliteDocumentStore(tmp_path / "relpop.sqlite")


@pytest_asyncio.fixture
async def service(sqlite_store) -> DocumentService:
    svc = DocumentService(CollectionRegistry.from_dicts(COLLECTIONS), sqlite_store)
    await seed_service(svc)
    return svc
