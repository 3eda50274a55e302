from __future__ import annotations

import re
import uuid
from typing import Any, Iterable, Tuple, Union

from relpop.models import CollectionConfig, FieldConfig
from relpop_common.errors import InvalidIdentifier

DocId = Union[str, int]


def coerce_id(config: CollectionConfig, raw: Any) -> DocId:
    """Parse a raw id into the collection's declared id type."""
    if config.id_type == "number":
        # bool is an int subclass; never accept it as an id
        if isinstance(raw, bool):
            raise InvalidIdentifier(config.slug, raw, "number")
        if isinstance(raw, int):
            return raw
        if isinstance(raw, float) and raw.is_integer():
            return int(raw)
        if isinstance(raw, str):
            t = raw.strip()
            if re.fullmatch(r"-?[0-9]+", t):
                return int(t)
        raise InvalidIdentifier(config.slug, raw, "number")

    if isinstance(raw, bool):
        raise InvalidIdentifier(config.slug, raw, "text")
    if isinstance(raw, int):
        return str(raw)
    if isinstance(raw, str) and raw.strip():
        return raw
    raise InvalidIdentifier(config.slug, raw, "text")


def relation_target(field: FieldConfig, raw: Any) -> Tuple[str, Any]:
    """
    Split one stored relationship value into (collection, raw id).

    Polymorphic values are stored as {"relationTo": slug, "value": id}.
    """
    if not field.is_polymorphic:
        return field.targets[0], raw

    if not isinstance(raw, dict) or "relationTo" not in raw or "value" not in raw:
        raise InvalidIdentifier("|".join(field.targets), raw, "{relationTo, value}")
    slug = raw["relationTo"]
    if slug not in field.targets:
        raise InvalidIdentifier(str(slug), raw, f"relation to one of {field.targets}")
    return slug, raw["value"]


def new_id(config: CollectionConfig, existing: Iterable[DocId] = ()) -> DocId:
    if config.id_type == "number":
        return max((int(i) for i in existing), default=0) + 1
    return uuid.uuid4().hex[:24]
