from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Optional

from relpop.identifiers import coerce_id, relation_target
from relpop.models import CollectionConfig, FieldConfig, Identity
from relpop.registry import CollectionRegistry
from relpop.resolver import UNRESOLVED, ReferenceResolver
from relpop_common.errors import InvalidIdentifier, PopulationAborted
from relpop_config import settings

log = logging.getLogger(__name__)


@dataclass
class PopulationReport:
    """What happened during one populate() call."""

    resolved: int = 0
    unresolved: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def add_error(self, path: str, exc: InvalidIdentifier) -> None:
        self.errors.append(
            {"field": path, "code": exc.code, "collection": exc.collection, "value": exc.value, "message": str(exc)}
        )

    def as_dict(self) -> Dict[str, Any]:
        return {"resolved": self.resolved, "unresolved": self.unresolved, "errors": list(self.errors)}


@dataclass
class _Scope:
    # lives for exactly one populate() call
    identity: Optional[Identity]
    report: PopulationReport
    decisions: Dict[Any, Any] = field(default_factory=dict)


async def gather_all(coros: List[Awaitable[Any]]) -> List[Any]:
    """Run sibling branches concurrently; if one fails, cancel the rest and re-raise."""
    if not coros:
        return []
    tasks = [asyncio.ensure_future(c) for c in coros]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class Populator:
    """
    Replaces stored relationship ids with the referenced documents, down to a depth.

    Recursion stops when the depth counter runs out, so reference cycles are
    walked again until then instead of being detected. The stored document is
    never modified; the result is a fresh tree.
    """

    def __init__(
        self,
        registry: CollectionRegistry,
        resolver: ReferenceResolver,
        *,
        default_depth: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.registry = registry
        self.resolver = resolver
        self._default_depth = default_depth
        self._timeout = timeout

    @property
    def default_depth(self) -> int:
        return settings.default_depth() if self._default_depth is None else self._default_depth

    @property
    def timeout(self) -> Optional[float]:
        return settings.populate_timeout() if self._timeout is None else self._timeout

    async def populate(
        self,
        document: Dict[str, Any],
        depth: Optional[int] = None,
        identity: Optional[Identity] = None,
        *,
        collection: str,
        report: Optional[PopulationReport] = None,
    ) -> Dict[str, Any]:
        """
        Return a copy of `document` (from `collection`) with relationships populated.

        depth=0 returns ids only and never touches storage. Field-level errors
        (bad ids) keep the raw value and are recorded on `report`; storage
        failures abort the whole call.
        """
        if depth is None:
            depth = self.default_depth
        if depth < 0:
            raise ValueError(f"depth must be >= 0, got {depth}")

        config = self.registry.get(collection)
        if depth == 0:
            return copy.deepcopy(document)

        scope = _Scope(identity=identity, report=report if report is not None else PopulationReport())
        run = self._populate_document(config, document, depth, scope)

        timeout = self.timeout
        if timeout is None:
            return await run
        try:
            return await asyncio.wait_for(run, timeout)
        except asyncio.TimeoutError as e:
            raise PopulationAborted(f"Populating {collection}/{document.get('id')!r} exceeded {timeout}s") from e

    def populate_sync(
        self,
        document: Dict[str, Any],
        depth: Optional[int] = None,
        identity: Optional[Identity] = None,
        *,
        collection: str,
        report: Optional[PopulationReport] = None,
    ) -> Dict[str, Any]:
        return asyncio.run(self.populate(document, depth, identity, collection=collection, report=report))

    # ---- recursion --------------------------------------------------------------
    async def _populate_document(
        self, config: CollectionConfig, doc: Dict[str, Any], depth: int, scope: _Scope
    ) -> Dict[str, Any]:
        if depth <= 0:
            return copy.deepcopy(doc)
        return await self._populate_fields(config.fields, doc, depth, scope, "")

    async def _populate_fields(
        self, fields: List[FieldConfig], data: Dict[str, Any], depth: int, scope: _Scope, path: str
    ) -> Dict[str, Any]:
        out = copy.deepcopy(data)
        names: List[str] = []
        jobs: List[Awaitable[Any]] = []

        for f in fields:
            if f.name not in data:
                continue
            value = data[f.name]
            fpath = f"{path}.{f.name}" if path else f.name

            if f.type == "relationship":
                jobs.append(self._populate_relationship(f, value, depth, scope, fpath))
            elif f.type == "group" and isinstance(value, dict):
                jobs.append(self._populate_fields(f.fields, value, depth, scope, fpath))
            elif f.type == "array" and isinstance(value, list):
                jobs.append(self._populate_rows(f, value, depth, scope, fpath))
            else:
                continue
            names.append(f.name)

        for name, result in zip(names, await gather_all(jobs)):
            out[name] = result
        return out

    async def _populate_rows(
        self, f: FieldConfig, rows: List[Any], depth: int, scope: _Scope, path: str
    ) -> List[Any]:
        async def one(i: int, row: Any) -> Any:
            if not isinstance(row, dict):
                return copy.deepcopy(row)
            return await self._populate_fields(f.fields, row, depth, scope, f"{path}.{i}")

        return await gather_all([one(i, row) for i, row in enumerate(rows)])

    async def _populate_relationship(
        self, f: FieldConfig, value: Any, depth: int, scope: _Scope, path: str
    ) -> Any:
        # max_depth only narrows this field's own branch
        effective = depth if f.max_depth is None else min(depth, f.max_depth)
        if effective <= 0 or value is None:
            return copy.deepcopy(value)

        if f.has_many and isinstance(value, list):
            return await gather_all(
                [self._populate_reference(f, item, effective, scope, f"{path}.{i}") for i, item in enumerate(value)]
            )
        return await self._populate_reference(f, value, effective, scope, path)

    async def _populate_reference(
        self, f: FieldConfig, raw: Any, depth: int, scope: _Scope, path: str
    ) -> Any:
        if raw is None:
            return None
        try:
            target, raw_id = relation_target(f, raw)
            target_config = self.registry.get(target)
            doc_id = coerce_id(target_config, raw_id)
        except InvalidIdentifier as e:
            log.warning("Not populating %s: %s", path, e)
            scope.report.add_error(path, e)
            return copy.deepcopy(raw)

        doc = await self.resolver.resolve(
            target, doc_id, scope.identity, f.filter_options, decisions=scope.decisions
        )
        if doc is UNRESOLVED:
            scope.report.unresolved += 1
            return copy.deepcopy(raw)

        scope.report.resolved += 1
        populated = await self._populate_document(target_config, doc, depth - 1, scope)
        if f.is_polymorphic:
            return {"relationTo": target, "value": populated}
        return populated
