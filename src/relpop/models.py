from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from relpop import where as where_mod

FieldType = Literal["text", "number", "checkbox", "json", "relationship", "group", "array"]
IdType = Literal["text", "number"]

# A rule reference in collection config: a rule name, or {"rule": name, "where": {...}}.
RuleSpec = Union[str, Dict[str, Any]]


class FieldConfig(BaseModel):
    name: str
    type: FieldType = "text"

    # relationship only
    relation_to: Optional[Union[str, List[str]]] = None
    has_many: bool = False
    max_depth: Optional[int] = Field(default=None, ge=0)
    filter_options: Optional[Dict[str, Any]] = None

    # group / array only
    fields: List["FieldConfig"] = Field(default_factory=list)

    @field_validator("filter_options")
    @classmethod
    def _valid_filter(cls, v: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if v is not None:
            where_mod.validate(v)
        return v

    @model_validator(mode="after")
    def _check_kind(self) -> "FieldConfig":
        if self.type == "relationship":
            if not self.relation_to:
                raise ValueError(f"relationship field '{self.name}' needs relation_to")
            if isinstance(self.relation_to, list) and len(set(self.relation_to)) != len(self.relation_to):
                raise ValueError(f"relationship field '{self.name}' lists a collection twice")
        elif self.relation_to is not None or self.max_depth is not None or self.filter_options is not None:
            raise ValueError(f"field '{self.name}' of type {self.type} cannot declare relationship options")
        if self.type not in ("group", "array") and self.fields:
            raise ValueError(f"field '{self.name}' of type {self.type} cannot have nested fields")
        return self

    @property
    def is_polymorphic(self) -> bool:
        return isinstance(self.relation_to, list)

    @property
    def targets(self) -> List[str]:
        if self.relation_to is None:
            return []
        return list(self.relation_to) if isinstance(self.relation_to, list) else [self.relation_to]


class CollectionConfig(BaseModel):
    slug: str
    id_type: IdType = "text"
    fields: List[FieldConfig] = Field(default_factory=list)
    # operation -> rule spec; a missing operation means unrestricted
    access: Dict[str, RuleSpec] = Field(default_factory=dict)

    @field_validator("slug")
    @classmethod
    def _slug_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("slug must not be blank")
        return v

    @field_validator("access")
    @classmethod
    def _known_operations(cls, v: Dict[str, RuleSpec]) -> Dict[str, RuleSpec]:
        unknown = set(v) - {"read", "create", "update", "delete"}
        if unknown:
            raise ValueError(f"unknown access operation(s): {', '.join(sorted(unknown))}")
        for op, spec in v.items():
            if isinstance(spec, str):
                continue
            if set(spec) - {"rule", "where"}:
                raise ValueError(f"access.{op} only accepts 'rule' and 'where'")
            if spec.get("rule") is not None and not isinstance(spec["rule"], str):
                raise ValueError(f"access.{op}.rule must be a rule name")
            if spec.get("where") is not None:
                where_mod.validate(spec["where"])
        return v

    def field(self, name: str) -> Optional[FieldConfig]:
        return next((f for f in self.fields if f.name == name), None)


class Identity(BaseModel):
    """The requesting principal. Anonymous requests carry no Identity at all."""

    id: Union[str, int]
    collection: str = "users"
    email: Optional[str] = None
    roles: List[str] = Field(default_factory=list)

    @property
    def key(self) -> tuple:
        return (self.collection, str(self.id))


class AccessDecision(BaseModel):
    allowed: bool
    where: Optional[Dict[str, Any]] = None

    @classmethod
    def allow(cls, where: Optional[Dict[str, Any]] = None) -> "AccessDecision":
        return cls(allowed=True, where=where or None)

    @classmethod
    def deny(cls) -> "AccessDecision":
        return cls(allowed=False)


FieldConfig.model_rebuild()
