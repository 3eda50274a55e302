import pytest

from relpop.access import AccessEvaluator
from relpop.models import Identity
from relpop.resolver import UNRESOLVED, ReferenceResolver
from relpop_common.errors import AccessDenied, NotFound, StorageError
from tests.helpers.stores import FailingStore, seed_documents

USER = Identity(id="u1")


@pytest.fixture()
def resolver(registry, store):
    return ReferenceResolver(store, AccessEvaluator(registry))


def test_unresolved_marker():
    assert not UNRESOLVED
    assert repr(UNRESOLVED) == "UNRESOLVED"
    assert type(UNRESOLVED)() is UNRESOLVED


@pytest.mark.asyncio
async def test_resolve_returns_document(resolver):
    assert await resolver.resolve("relation", "rel-1", None) == {"id": "rel-1", "name": "name"}


@pytest.mark.asyncio
async def test_denied_access_never_reaches_the_store(resolver, store):
    assert await resolver.resolve("strict-access", "strict-1", None) is UNRESOLVED
    assert store.fetches == []

    with pytest.raises(AccessDenied):
        await resolver.fetch("strict-access", "strict-1", None)

    assert (await resolver.resolve("strict-access", "strict-1", USER))["id"] == "strict-1"


@pytest.mark.asyncio
async def test_missing_and_filtered_documents_are_unresolved(resolver):
    flt = {"disableRelation": {"not_equals": True}}
    assert await resolver.resolve("relation", "rel-disabled", None, flt) is UNRESOLVED
    assert await resolver.resolve("relation", "missing", None) is UNRESOLVED
    with pytest.raises(NotFound):
        await resolver.fetch("relation", "rel-disabled", None, flt)


@pytest.mark.asyncio
async def test_access_where_is_combined_with_filter(store):
    from relpop.registry import CollectionRegistry

    registry = CollectionRegistry.from_dicts(
        [{"slug": "relation", "access": {"read": {"where": {"name": {"equals": "name"}}}}}]
    )
    resolver = ReferenceResolver(store, AccessEvaluator(registry))
    flt = {"disableRelation": {"not_equals": True}}

    assert (await resolver.resolve("relation", "rel-filtered", None, flt))["id"] == "rel-filtered"
    assert store.fetches[-1][2] == {"and": [{"name": {"equals": "name"}}, flt]}
    assert await resolver.resolve("relation", "rel-disabled", None) is UNRESOLVED


@pytest.mark.asyncio
async def test_storage_errors_propagate(registry):
    store = FailingStore(seed_documents(), fail_collection="relation")
    resolver = ReferenceResolver(store, AccessEvaluator(registry))
    with pytest.raises(StorageError):
        await resolver.resolve("relation", "rel-1", None)
