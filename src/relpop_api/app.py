from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Dict, Optional

from flask import Flask, request

from relpop.models import Identity
from relpop.service import DocumentService
from relpop_api.auth import load_api_keys
from relpop_api.http import json_with_headers
from relpop_api.routes import make_documents_blueprint
from relpop_common.context import set_request_id
from relpop_common.telemetry import log_event
from relpop_config import settings


def create_app(
    service: Optional[DocumentService] = None,
    api_keys: Optional[Dict[str, Identity]] = None,
) -> Flask:
    """Flask application factory.

    Tests pass their own service and keys; otherwise both come from settings
    (config/collections.json, config/users.json, the SQLite store).
    """
    settings.init_runtime()

    app = Flask(__name__)
    app.logger.setLevel(logging.getLogger().level)

    if service is None:
        service = DocumentService.from_settings()
    if api_keys is None:
        api_keys = load_api_keys(settings.users_path())

    app.logger.info(
        "Serving %d collection(s) %s with %d API key(s)",
        len(service.registry.slugs),
        service.registry.slugs,
        len(api_keys),
    )

    # --- middleware (request id + timing) ------------------------------------
    @app.before_request
    def ensure_request_id() -> None:
        rid = (
            request.headers.get("X-Request-Id")
            or request.headers.get("X-Correlation-Id")
            or uuid.uuid4().hex
        )
        setattr(request, "request_id", rid)
        setattr(request, "started_at", time.perf_counter())
        set_request_id(rid)

    @app.after_request
    def record_request(resp):
        rid = getattr(request, "request_id", None)
        if rid and "X-Request-Id" not in resp.headers:
            resp.headers["X-Request-Id"] = rid
        started = getattr(request, "started_at", None)
        ms = int((time.perf_counter() - started) * 1000) if started else 0
        identity = getattr(request, "identity", None)
        log_event(
            "http",
            f"{request.method} {request.path}",
            {"status": resp.status_code, "query": request.args.to_dict()},
            ok=resp.status_code < 400,
            ms=ms,
            client_id=None if identity is None else f"{identity.collection}:{identity.id}",
            corr_id=rid,
        )
        return resp

    # --- routes --------------------------------------------------------------
    app.register_blueprint(make_documents_blueprint(service=service, api_keys=api_keys))

    @app.get("/health")
    def health():
        return json_with_headers({"ok": True, "collections": service.registry.slugs})

    @app.route("/<path:_any>", methods=["OPTIONS"])
    def any_options(_any: str):
        return ("", 204)

    return app


def main() -> None:
    app = create_app()
    host = os.getenv("RELPOP_API_HOST", "127.0.0.1")
    port = int(os.getenv("RELPOP_API_PORT", "5000"))
    debug = os.getenv("RELPOP_API_DEBUG", "0").lower() in ("1", "true", "yes")

    app.logger.info("Starting the relpop API on http://%s:%d", host, port)
    app.run(debug=debug, host=host, port=port)


if __name__ == "__main__":
    main()
