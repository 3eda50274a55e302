from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from flask import Blueprint, request

from relpop.models import Identity
from relpop.service import DocumentService
from relpop_api.auth import with_identity
from relpop_api.http import api_error, error_response, json_with_headers
from relpop_common.errors import RelpopError

log = logging.getLogger(__name__)


class BadRequest(ValueError):
    pass


def _depth_arg() -> Optional[int]:
    raw = request.args.get("depth")
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise BadRequest("depth must be an integer") from None


def _int_arg(name: str) -> Optional[int]:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError:
        raise BadRequest(f"{name} must be an integer") from None
    if value < 0:
        raise BadRequest(f"{name} must be >= 0")
    return value


def _where_arg() -> Optional[Dict[str, Any]]:
    raw = request.args.get("where")
    if not raw:
        return None
    try:
        where = json.loads(raw)
    except json.JSONDecodeError:
        raise BadRequest("where must be a JSON object") from None
    if not isinstance(where, dict):
        raise BadRequest("where must be a JSON object")
    return where


def _body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequest("request body must be a JSON object")
    return data


def make_documents_blueprint(*, service: DocumentService, api_keys: Dict[str, Identity]) -> Blueprint:
    """REST routes over the document service: /api/<collection>[/<id>]."""

    bp = Blueprint("documents", __name__, url_prefix="/api")

    def _run(call):
        """Run one service coroutine and map errors to typed HTTP envelopes."""
        try:
            return asyncio.run(call()), None
        except BadRequest as e:
            return None, api_error("bad_request", str(e), status=400)
        except RelpopError as e:
            if not isinstance(e, (LookupError, ValueError)):
                log.warning("[rid=%s] %s: %s", getattr(request, "request_id", "-"), type(e).__name__, e)
            return None, error_response(e)
        except ValueError as e:
            return None, api_error("bad_request", str(e), status=400)

    def _identity() -> Optional[Identity]:
        return getattr(request, "identity", None)

    @bp.get("/<collection>")
    @with_identity(api_keys)
    def find(collection: str):
        async def call():
            return await service.find(
                collection,
                where=_where_arg(),
                depth=_depth_arg(),
                identity=_identity(),
                limit=_int_arg("limit"),
                offset=_int_arg("offset") or 0,
            )

        result, err = _run(call)
        return err or json_with_headers(result)

    @bp.get("/<collection>/_access")
    @with_identity(api_keys)
    def explain_access(collection: str):
        async def call():
            service.registry.get(collection)
            return {op: service.evaluator.explain(_identity(), collection, op)["resolved"]
                    for op in ("read", "create", "update", "delete")}

        result, err = _run(call)
        return err or json_with_headers(result)

    @bp.get("/<collection>/<doc_id>")
    @with_identity(api_keys)
    def find_by_id(collection: str, doc_id: str):
        async def call():
            return await service.find_by_id(collection, doc_id, depth=_depth_arg(), identity=_identity())

        result, err = _run(call)
        return err or json_with_headers(result)

    @bp.post("/<collection>")
    @with_identity(api_keys)
    def create(collection: str):
        async def call():
            return await service.create(collection, _body(), identity=_identity())

        result, err = _run(call)
        return err or json_with_headers({"doc": result, "message": "Created"}, status=201)

    @bp.patch("/<collection>/<doc_id>")
    @with_identity(api_keys)
    def update(collection: str, doc_id: str):
        async def call():
            return await service.update(collection, doc_id, _body(), identity=_identity())

        result, err = _run(call)
        return err or json_with_headers({"doc": result, "message": "Updated"})

    @bp.delete("/<collection>/<doc_id>")
    @with_identity(api_keys)
    def delete(collection: str, doc_id: str):
        async def call():
            return await service.delete(collection, doc_id, identity=_identity())

        result, err = _run(call)
        return err or json_with_headers({"doc": result, "message": "Deleted"})

    return bp
