"""Structured JSON logging to stdout.

Low overhead, minimal dependencies, safe for production stdout collectors.
Bearer tokens never reach the output in full.
"""

from typing import Any, Dict
from datetime import datetime, timezone
import json

from connector.obs.context import request_id_var, session_generation_var


_TOKEN_FIELDS = ("token", "password_reset_token", "authorization")


def _redact_token(value: Any) -> Any:
    s = str(value) if value is not None else ""
    if not s:
        return s
    if len(s) <= 4:
        return "***"
    return f"***{s[-4:]}"


def log_event(event: str, **fields: Any) -> None:
    now = datetime.now(timezone.utc).isoformat()
    payload: Dict[str, Any] = {
        "ts": now,
        "level": fields.pop("level", "INFO"),
        "event": event,
        "request_id": request_id_var.get(),
    }
    payload.setdefault("session_generation", session_generation_var.get())

    for k, v in fields.items():
        if k in _TOKEN_FIELDS:
            payload[k] = _redact_token(v)
        else:
            payload[k] = v

    try:
        print(json.dumps(payload, separators=(",", ":"), default=str))
    except Exception:
        # As a last resort, avoid crashing the session loop due to logging
        pass
