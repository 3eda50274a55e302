from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from relpop.identifiers import coerce_id, relation_target
from relpop.models import FieldConfig
from relpop.ports import DocumentStorePort
from relpop.registry import CollectionRegistry
from relpop_common.errors import InvalidIdentifier, NotFound, RelationshipValidationError

log = logging.getLogger(__name__)


class RelationshipValidator:
    """
    Write-side check for relationship values.

    A value is accepted when its id fits the target collection and the target
    document exists and satisfies the field's filter_options. Access rules are
    not consulted here; reads apply them.
    """

    def __init__(self, registry: CollectionRegistry, store: DocumentStorePort) -> None:
        self.registry = registry
        self.store = store

    async def _check_reference(self, f: FieldConfig, raw: Any, path: str) -> Optional[Dict[str, Any]]:
        if raw is None:
            return None
        try:
            target, raw_id = relation_target(f, raw)
            doc_id = coerce_id(self.registry.get(target), raw_id)
        except InvalidIdentifier as e:
            return {"field": path, "message": str(e), "value": raw}

        try:
            await self.store.fetch_by_id(target, doc_id, f.filter_options)
        except NotFound:
            return {
                "field": path,
                "message": f"{doc_id!r} is not a valid option for {path}",
                "value": raw,
                "relation_to": target,
            }
        return None

    async def _check_fields(self, fields: List[FieldConfig], data: Dict[str, Any], path: str) -> List[Dict[str, Any]]:
        errors: List[Dict[str, Any]] = []
        for f in fields:
            if f.name not in data:
                continue
            value = data[f.name]
            fpath = f"{path}.{f.name}" if path else f.name

            if f.type == "relationship":
                if f.has_many:
                    if value is None:
                        continue
                    if not isinstance(value, list):
                        errors.append({"field": fpath, "message": "expected a list of references", "value": value})
                        continue
                    for i, item in enumerate(value):
                        err = await self._check_reference(f, item, f"{fpath}.{i}")
                        if err:
                            errors.append(err)
                else:
                    err = await self._check_reference(f, value, fpath)
                    if err:
                        errors.append(err)
            elif f.type == "group" and isinstance(value, dict):
                errors.extend(await self._check_fields(f.fields, value, fpath))
            elif f.type == "array" and isinstance(value, list):
                for i, row in enumerate(value):
                    if isinstance(row, dict):
                        errors.extend(await self._check_fields(f.fields, row, f"{fpath}.{i}"))
        return errors

    async def validate(self, collection: str, data: Dict[str, Any]) -> None:
        """Raise RelationshipValidationError listing every rejected value in `data`."""
        config = self.registry.get(collection)
        errors = await self._check_fields(config.fields, data, "")
        if errors:
            log.info("Rejected write to %s: %d invalid relationship value(s)", collection, len(errors))
            raise RelationshipValidationError(collection, errors)
