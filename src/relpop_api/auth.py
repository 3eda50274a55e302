from __future__ import annotations

import json
import logging
from functools import wraps
from pathlib import Path
from typing import Dict, Optional

from flask import request
from pydantic import ValidationError

from relpop.models import Identity
from relpop_api.http import api_error

log = logging.getLogger(__name__)


def load_api_keys(path: Path) -> Dict[str, Identity]:
    """
    Read config/users.json into {api_key: Identity}::

        {"users": [{"id": 1, "email": "dev@example.com", "roles": ["admin"], "api_key": "..."}]}

    Entries without an api_key cannot authenticate and are skipped.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        log.warning("Users file not found: %s (all requests are anonymous)", path)
        return {}

    if not isinstance(data, dict) or not isinstance(data.get("users"), list):
        raise ValueError(f"Invalid users file format: {path}")

    keys: Dict[str, Identity] = {}
    for entry in data["users"]:
        key = (entry.get("api_key") or "").strip()
        if not key:
            continue
        try:
            keys[key] = Identity.model_validate({k: v for k, v in entry.items() if k != "api_key"})
        except ValidationError as e:
            log.error("Skipping invalid user entry %r: %s", entry.get("id"), e)
    return keys


def _extract_api_key() -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return request.headers.get("X-API-KEY") or request.headers.get("x-api-key") or None


def with_identity(api_keys: Dict[str, Identity]):
    """
    Decorator: attach request.identity from Authorization: Bearer <key> or X-API-KEY.

    No key means an anonymous request (identity None); an unknown key is a 401.
    """

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            api_key = _extract_api_key()
            if api_key is None:
                request.identity = None
                return f(*args, **kwargs)

            identity = api_keys.get(api_key)
            if identity is None:
                log.debug("Invalid API key provided.")
                request.identity = None
                return api_error("invalid_api_key", "Invalid API key", status=401)

            request.identity = identity
            return f(*args, **kwargs)

        return decorated_function

    return decorator
