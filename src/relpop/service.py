from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from relpop import where as where_mod
from relpop.access import AccessEvaluator
from relpop.identifiers import DocId, coerce_id, new_id
from relpop.models import CollectionConfig, Identity
from relpop.populator import PopulationReport, Populator, gather_all
from relpop.ports import DocumentStorePort
from relpop.registry import CollectionRegistry
from relpop.resolver import ReferenceResolver
from relpop.store import SqliteDocumentStore
from relpop.validation import RelationshipValidator
from relpop_common.errors import AccessDenied
from relpop_common.context import get_request_id
from relpop_common.telemetry import log_event
from relpop_config import settings

log = logging.getLogger(__name__)


def _client_id(identity: Optional[Identity]) -> Optional[str]:
    return None if identity is None else f"{identity.collection}:{identity.id}"


class DocumentService:
    """
    Application service: composes registry, store, access, population and validation.
    The HTTP layer and local callers talk to this class only.

    `override_access` skips the access check on the document being read or
    written; relationships are still populated as seen by `identity`.
    """

    def __init__(
        self,
        registry: CollectionRegistry,
        store: DocumentStorePort,
        *,
        evaluator: Optional[AccessEvaluator] = None,
        populator: Optional[Populator] = None,
        validator: Optional[RelationshipValidator] = None,
        max_depth: Optional[int] = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.evaluator = evaluator or AccessEvaluator(registry)
        self.resolver = ReferenceResolver(store, self.evaluator)
        self.populator = populator or Populator(registry, self.resolver)
        self.validator = validator or RelationshipValidator(registry, store)
        self._max_depth = max_depth

    @classmethod
    def from_settings(cls) -> "DocumentService":
        registry = CollectionRegistry.from_file(settings.collections_path())
        for problem in registry.check_references():
            log.warning("Collection config: %s", problem)
        return cls(registry, SqliteDocumentStore(settings.store_path()))

    # ---- helpers ----------------------------------------------------------------
    def _config(self, collection: str) -> CollectionConfig:
        self.registry.refresh()
        return self.registry.get(collection)

    def resolve_depth(self, depth: Optional[int]) -> int:
        if depth is None:
            return self.populator.default_depth
        if depth < 0:
            raise ValueError(f"depth must be >= 0, got {depth}")
        cap = settings.max_depth() if self._max_depth is None else self._max_depth
        return min(depth, cap)

    def _check(self, identity: Optional[Identity], collection: str, operation: str, override_access: bool):
        if override_access:
            return None
        decision = self.evaluator.evaluate(identity, collection, operation)
        if not decision.allowed:
            raise AccessDenied(collection, operation)
        return decision.where

    # ---- reads ------------------------------------------------------------------
    async def find_by_id(
        self,
        collection: str,
        doc_id: Any,
        *,
        depth: Optional[int] = None,
        identity: Optional[Identity] = None,
        override_access: bool = False,
        report: Optional[PopulationReport] = None,
    ) -> Dict[str, Any]:
        t0 = time.perf_counter()
        report = report if report is not None else PopulationReport()
        ok = False
        exc: Optional[str] = None
        d: Optional[int] = None
        try:
            config = self._config(collection)
            typed = coerce_id(config, doc_id)
            d = self.resolve_depth(depth)
            access_where = self._check(identity, collection, "read", override_access)
            doc = await self.store.fetch_by_id(collection, typed, access_where)
            result = await self.populator.populate(doc, d, identity, collection=collection, report=report)
            ok = True
            return result
        except Exception as e:
            exc = str(e)
            raise
        finally:
            args: Dict[str, Any] = {"collection": collection, "id": doc_id, "depth": d, **report.as_dict()}
            if exc:
                args["exception"] = exc
            log_event(
                "populate",
                "find_by_id",
                args,
                ok=ok,
                ms=int((time.perf_counter() - t0) * 1000),
                client_id=_client_id(identity),
                corr_id=get_request_id(),
            )

    async def find(
        self,
        collection: str,
        *,
        where: Optional[Dict[str, Any]] = None,
        depth: Optional[int] = None,
        identity: Optional[Identity] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        override_access: bool = False,
    ) -> Dict[str, Any]:
        t0 = time.perf_counter()
        report = PopulationReport()
        ok = False
        d: Optional[int] = None
        try:
            self._config(collection)
            d = self.resolve_depth(depth)
            if where is not None:
                where_mod.validate(where)
            access_where = self._check(identity, collection, "read", override_access)
            docs, total = await self.store.find(
                collection, where_mod.combine(access_where, where), limit=limit, offset=offset
            )
            populated = await gather_all(
                [self.populator.populate(doc, d, identity, collection=collection, report=report) for doc in docs]
            )
            ok = True
            return {"docs": list(populated), "total_docs": total, "limit": limit, "offset": int(offset or 0)}
        finally:
            log_event(
                "populate",
                "find",
                {"collection": collection, "depth": d, "limit": limit, "offset": offset, **report.as_dict()},
                ok=ok,
                ms=int((time.perf_counter() - t0) * 1000),
                client_id=_client_id(identity),
                corr_id=get_request_id(),
            )

    # ---- writes -----------------------------------------------------------------
    async def create(
        self,
        collection: str,
        data: Dict[str, Any],
        *,
        identity: Optional[Identity] = None,
        override_access: bool = False,
    ) -> Dict[str, Any]:
        config = self._config(collection)
        self._check(identity, collection, "create", override_access)

        doc = dict(data)
        if doc.get("id") is not None:
            doc["id"] = coerce_id(config, doc["id"])
        else:
            doc["id"] = new_id(config, await self.store.ids(collection))

        await self.validator.validate(collection, doc)
        stored = await self.store.insert(collection, doc)
        log.info("Created %s/%r", collection, stored["id"])
        log_event("write", "create", {"collection": collection, "id": stored["id"]}, client_id=_client_id(identity))
        return stored

    async def update(
        self,
        collection: str,
        doc_id: Any,
        data: Dict[str, Any],
        *,
        identity: Optional[Identity] = None,
        override_access: bool = False,
    ) -> Dict[str, Any]:
        config = self._config(collection)
        typed: DocId = coerce_id(config, doc_id)
        access_where = self._check(identity, collection, "update", override_access)
        existing = await self.store.fetch_by_id(collection, typed, access_where)

        changes = {k: v for k, v in data.items() if k != "id"}
        await self.validator.validate(collection, changes)
        stored = await self.store.replace(collection, {**existing, **changes, "id": existing["id"]})
        log_event("write", "update", {"collection": collection, "id": typed, "fields": sorted(changes)},
                  client_id=_client_id(identity))
        return stored

    async def delete(
        self,
        collection: str,
        doc_id: Any,
        *,
        identity: Optional[Identity] = None,
        override_access: bool = False,
    ) -> Dict[str, Any]:
        config = self._config(collection)
        typed = coerce_id(config, doc_id)
        access_where = self._check(identity, collection, "delete", override_access)
        existing = await self.store.fetch_by_id(collection, typed, access_where)
        await self.store.delete(collection, typed)
        log_event("write", "delete", {"collection": collection, "id": typed}, client_id=_client_id(identity))
        return existing
