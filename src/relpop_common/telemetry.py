from __future__ import annotations

import datetime as _dt
import json
import logging
from pathlib import Path
from typing import Any

from relpop_config.settings import telemetry_dir, telemetry_disabled
from relpop_common.context import get_request_id
from relpop_common.errors import REDACT_TOKEN

log = logging.getLogger(__name__)

_TELEMETRY_FILE = "relpop-telemetry.jsonl"

_SECRET_KEYS = {"authorization", "x-api-key", "api_key", "apikey", "access_token", "token", "password"}

_PII_KEYS = {"email"}


def _redact_secrets(obj: Any) -> Any:
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if isinstance(k, str) and k.strip().lower() in _SECRET_KEYS:
                if isinstance(v, str) and v.strip().lower().startswith("bearer "):
                    out[k] = "Bearer " + REDACT_TOKEN
                else:
                    out[k] = REDACT_TOKEN
            else:
                out[k] = _redact_secrets(v)
        return out
    if isinstance(obj, list):
        return [_redact_secrets(x) for x in obj]
    return obj


def _redact_pii(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {
            k: (REDACT_TOKEN if isinstance(k, str) and k.strip().lower() in _PII_KEYS else _redact_pii(v))
            for k, v in obj.items()
        }
    if isinstance(obj, list):
        return [_redact_pii(x) for x in obj]
    return obj


def _telemetry_file(name: str) -> Path:
    d = telemetry_dir()
    d.mkdir(parents=True, exist_ok=True)
    return d / name


def log_event(
    kind: str,
    name: str,
    args: dict | None = None,
    ok: bool = True,
    ms: int = 0,
    *,
    client_id: str | None = None,
    corr_id: str | None = None,
    telemetry_file: str = _TELEMETRY_FILE,
) -> None:
    """
    Append one JSONL telemetry record (population runs, API requests).
    """
    if telemetry_disabled():
        return

    rid = get_request_id()
    payload = {} if args is None else dict(args)

    rec = {
        "ts": _dt.datetime.now(_dt.timezone.utc).isoformat().replace("+00:00", "Z"),
        "kind": kind,
        "name": name,
        "client_id": client_id,
        "request_id": rid,
        "corr_id": corr_id or rid,
        "args": payload,
        "ok": bool(ok),
        "ms": int(ms),
    }

    safe = _redact_pii(_redact_secrets(rec))
    try:
        with _telemetry_file(telemetry_file).open("a", encoding="utf-8") as f:
            f.write(json.dumps(safe, ensure_ascii=False, default=str) + "\n")
    except OSError as e:
        # Telemetry must never fail a read.
        log.warning("Could not write telemetry record %s/%s: %s", kind, name, e)


def telemetry_recent(n: int = 50, telemetry_file: str = _TELEMETRY_FILE) -> dict:
    """
    Return last N telemetry records (bounded) with secrets + PII redacted.
    """
    p = telemetry_dir() / telemetry_file
    if not p.exists():
        return {"records": []}

    try:
        n_int = int(n)
    except (TypeError, ValueError):
        n_int = 50
    n_int = max(1, min(n_int, 200))

    lines = p.read_text(encoding="utf-8").splitlines()[-n_int:]

    out = []
    for line in lines:
        try:
            rec = json.loads(line)
        except json.JSONDecodeError:
            continue
        out.append(_redact_pii(_redact_secrets(rec)))

    return {"records": out}
