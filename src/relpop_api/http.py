from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping, Optional

from flask import jsonify, make_response, request

from relpop_common.errors import (
    AccessDenied,
    DuplicateDocument,
    InvalidIdentifier,
    InvalidWhere,
    NotFound,
    PopulationAborted,
    RelationshipValidationError,
    RelpopError,
    StorageError,
    UnknownCollection,
    typed_error,
)

_STATUS_BY_ERROR = (
    (RelationshipValidationError, 400),
    (InvalidIdentifier, 400),
    (InvalidWhere, 400),
    (AccessDenied, 403),
    (UnknownCollection, 404),
    (NotFound, 404),
    (DuplicateDocument, 409),
    (PopulationAborted, 504),
    (StorageError, 500),
)

_EXPOSE = "ETag, X-Request-Id, X-Identity"


def _stable_json_dumps(obj: Any) -> str:
    """Compact + deterministic JSON (no spaces, sorted keys)."""
    return json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False, default=str)


def compute_etag(payload: Any) -> str:
    """Strong ETag over the body, the query and the caller's identity."""
    h = hashlib.sha256()
    h.update(_stable_json_dumps(payload).encode("utf-8"))
    variant = {
        "path": request.path,
        "qs": request.query_string.decode("utf-8", "ignore"),
        "identity": _identity_label(),
    }
    h.update(_stable_json_dumps(variant).encode("utf-8"))
    return f"\"{h.hexdigest()[:16]}\""


def _identity_label() -> str:
    identity = getattr(request, "identity", None)
    return "anonymous" if identity is None else f"{identity.collection}:{identity.id}"


def _common_headers(resp, extra: Mapping[str, str]) -> None:
    req_id = getattr(request, "request_id", None)
    if req_id:
        resp.headers["X-Request-Id"] = req_id
    resp.headers["X-Identity"] = _identity_label()
    resp.headers["Access-Control-Allow-Origin"] = request.headers.get("Origin", "*")
    resp.headers["Vary"] = "Origin"
    resp.headers["Access-Control-Expose-Headers"] = _EXPOSE
    for k, v in extra.items():
        resp.headers[k] = v


def json_with_headers(
    payload: Any,
    *,
    status: int = 200,
    extra_headers: Optional[Mapping[str, str]] = None,
):
    """Return JSON with request headers, plus conditional ETag/304 on GET 200s."""
    extra = dict(extra_headers or {})

    etag: Optional[str] = None
    if status == 200 and request.method == "GET":
        etag = compute_etag(payload)
        inm = request.headers.get("If-None-Match")
        if inm and etag in [x.strip() for x in inm.split(",")]:
            resp = make_response("", 304)
            resp.headers["ETag"] = etag
            resp.headers.setdefault("Cache-Control", "private, must-revalidate")
            _common_headers(resp, extra)
            return resp

    resp = jsonify(payload)
    resp.status_code = status
    if etag is not None:
        resp.headers["ETag"] = etag
        resp.headers.setdefault("Cache-Control", "private, must-revalidate")
    _common_headers(resp, extra)
    return resp


def api_error(code: str, message: str, *, status: int = 400, details: Any = None):
    """Return a consistent error envelope via json_with_headers()."""
    return json_with_headers(typed_error(code, message, details=details), status=status)


def error_response(exc: RelpopError):
    status = next((s for cls, s in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    payload = exc.to_error()
    if status >= 500:
        # do not leak backend details to clients
        payload = typed_error(exc.code, "Internal server error" if status == 500 else str(exc))
    return json_with_headers(payload, status=status)
