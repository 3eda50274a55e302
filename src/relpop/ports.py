from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from relpop.identifiers import DocId


@runtime_checkable
class DocumentStorePort(Protocol):
    """
    Storage used by the resolver and the document service.
    Documents go in and come out as plain dicts carrying "id".
    """

    async def fetch_by_id(
        self,
        collection: str,
        doc_id: DocId,
        where: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        ...
        # Implementations should:
        # - apply `where` as part of the lookup, not after it
        # - raise NotFound when no document matches (absent or filtered)
        # - raise StorageError when the backend itself fails

    async def find(
        self,
        collection: str,
        where: Optional[Dict[str, Any]] = None,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[Dict[str, Any]], int]:
        ...
        # Returns (page, total matching) ordered by insertion.

    async def ids(self, collection: str) -> List[DocId]:
        ...

    async def insert(self, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def replace(self, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        ...
        # Raises NotFound when the document does not exist.

    async def delete(self, collection: str, doc_id: DocId) -> None:
        ...
