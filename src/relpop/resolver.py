from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

from relpop import where as where_mod
from relpop.access import AccessEvaluator, DecisionCache
from relpop.identifiers import DocId
from relpop.models import Identity
from relpop.ports import DocumentStorePort
from relpop_common.errors import AccessDenied, NotFound

log = logging.getLogger(__name__)


class Unresolved:
    """Marker for a reference that is not disclosed: denied, filtered out or missing."""

    _instance: Optional["Unresolved"] = None

    def __new__(cls) -> "Unresolved":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNRESOLVED"


UNRESOLVED = Unresolved()


class ReferenceResolver:
    """Fetches one referenced document, gated by the access evaluator."""

    def __init__(self, store: DocumentStorePort, evaluator: AccessEvaluator) -> None:
        self.store = store
        self.evaluator = evaluator

    async def fetch(
        self,
        collection: str,
        doc_id: DocId,
        identity: Optional[Identity],
        where: Optional[Dict[str, Any]] = None,
        *,
        decisions: Optional[DecisionCache] = None,
        operation: str = "read",
    ) -> Dict[str, Any]:
        """
        Like resolve(), but tells the outcomes apart: AccessDenied when the
        collection is closed to the identity, NotFound when the document is
        absent or fails a filter.
        """
        decision = self.evaluator.evaluate_cached(identity, collection, operation, decisions)
        if not decision.allowed:
            raise AccessDenied(collection, operation)
        return await self.store.fetch_by_id(collection, doc_id, where_mod.combine(decision.where, where))

    async def resolve(
        self,
        collection: str,
        doc_id: DocId,
        identity: Optional[Identity],
        where: Optional[Dict[str, Any]] = None,
        *,
        decisions: Optional[DecisionCache] = None,
    ) -> Union[Dict[str, Any], Unresolved]:
        try:
            return await self.fetch(collection, doc_id, identity, where, decisions=decisions)
        except (AccessDenied, NotFound) as e:
            log.debug("Leaving %s/%r unresolved: %s", collection, doc_id, e)
            return UNRESOLVED
