from __future__ import annotations

from typing import Any

REDACT_TOKEN = "***redacted***"


def typed_error(code: str, message: str, *, details: dict | list | None = None, **extra: Any) -> dict:
    """
    Standard error envelope:
      {"error": {"code": code, "message": message, "details": {...}}, ...extra}
    """
    err: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        err["error"]["details"] = details
    if extra:
        err.update(extra)
    return err


class RelpopError(Exception):
    """Base class for every error raised by the engine."""

    code = "internal"

    def to_error(self) -> dict:
        return typed_error(self.code, str(self))


class InvalidIdentifier(RelpopError, ValueError):
    """A raw id cannot be coerced to the collection's declared id type."""

    code = "invalid_identifier"

    def __init__(self, collection: str, value: Any, expected: str) -> None:
        self.collection = collection
        self.value = value
        self.expected = expected
        super().__init__(f"{value!r} is not a valid {expected} id for collection '{collection}'")


class NotFound(RelpopError, LookupError):
    code = "not_found"

    def __init__(self, collection: str, doc_id: Any) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"No document {doc_id!r} in collection '{collection}'")


class DuplicateDocument(RelpopError):
    code = "duplicate"

    def __init__(self, collection: str, doc_id: Any) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Document {doc_id!r} already exists in collection '{collection}'")


class AccessDenied(RelpopError):
    code = "forbidden"

    def __init__(self, collection: str, operation: str = "read") -> None:
        self.collection = collection
        self.operation = operation
        super().__init__(f"Not allowed to {operation} collection '{collection}'")


class UnknownCollection(RelpopError, LookupError):
    code = "unknown_collection"

    def __init__(self, collection: str) -> None:
        self.collection = collection
        super().__init__(f"Unknown collection '{collection}'")


class InvalidWhere(RelpopError, ValueError):
    code = "invalid_where"


class RelationshipValidationError(RelpopError):
    """Write rejected because one or more relationship values are not allowed."""

    code = "validation_error"

    def __init__(self, collection: str, errors: list[dict]) -> None:
        self.collection = collection
        self.errors = list(errors)
        fields = ", ".join(e.get("field", "?") for e in self.errors)
        super().__init__(f"Invalid relationship value(s) in '{collection}': {fields}")

    def to_error(self) -> dict:
        return typed_error(self.code, str(self), details={"errors": self.errors})


class StorageError(RelpopError):
    """The storage layer itself failed. Aborts the whole call."""

    code = "storage_error"


class PopulationAborted(RelpopError):
    """Population was cancelled or ran past its time limit."""

    code = "population_aborted"
