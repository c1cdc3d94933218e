from __future__ import annotations

import copy
import itertools
import json
import threading
import time
from datetime import datetime, timezone
from typing import Any

ALLOWED_ERROR_CODES = {
    "BAD_REQUEST",
    "AUTH_INVALID",
    "FORBIDDEN",
    "NOT_FOUND",
    "CONFLICT",
    "NETWORK",
    "TIMEOUT",
    "INTERNAL",
}

_CODE_MAP = {
    "VALIDATION": "BAD_REQUEST",
    "UNPROCESSABLE": "BAD_REQUEST",
    "AUTH_REQUIRED": "AUTH_INVALID",
    "SESSION_EXPIRED": "AUTH_INVALID",
    "RBAC_DENIED": "FORBIDDEN",
    "CONNECTION": "NETWORK",
    "UNKNOWN_ERROR": "INTERNAL",
}

_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "AUTH_INVALID",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    408: "TIMEOUT",
    409: "CONFLICT",
    422: "BAD_REQUEST",
}

NETWORK_ERROR_MESSAGE = "Network error. Please check your connection."
TIMEOUT_ERROR_MESSAGE = "Request timeout. Please check your connection."


def map_error_code(code: str) -> str:
    c = str(code or "").upper().strip()
    if c in ALLOWED_ERROR_CODES:
        return c
    return _CODE_MAP.get(c, "INTERNAL")


def code_for_status(status: int | None) -> str:
    if not status:
        return "NETWORK"
    if status in _STATUS_CODES:
        return _STATUS_CODES[status]
    if 400 <= status < 500:
        return "BAD_REQUEST"
    return "INTERNAL"


class ResourceError(Exception):
    """Failure reported by a resource collaborator: ``{message, status}`` plus a code."""

    def __init__(self, code: str, message: str, status: int | None = None):
        super().__init__(message)
        self.code = map_error_code(code)
        self.message = str(message or "")
        self.status = status

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ResourceError":
        if isinstance(exc, ResourceError):
            return exc
        return cls("NETWORK", NETWORK_ERROR_MESSAGE)


def iso_utc_now() -> str:
    dt = datetime.now(timezone.utc)
    # Millisecond precision, same as the browser's Date.toJSON().
    dt = dt.replace(microsecond=(dt.microsecond // 1000) * 1000)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


_temp_counter = itertools.count(1)
_temp_lock = threading.Lock()

TEMP_ID_PREFIX = "tmp-"


def new_temp_id() -> str:
    with _temp_lock:
        n = next(_temp_counter)
    return f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}-{n}"


def is_temp_id(value: Any) -> bool:
    return str(value or "").startswith(TEMP_ID_PREFIX)


def parse_json_maybe(raw: Any, fallback: Any = None) -> Any:
    s = str(raw or "").strip()
    if not s:
        return fallback
    try:
        return json.loads(s)
    except Exception:
        return fallback


def clone_record(record: dict[str, Any]) -> dict[str, Any]:
    return copy.deepcopy(dict(record or {}))


def record_id(record: Any) -> str:
    if not isinstance(record, dict):
        return ""
    return str(record.get("id") or "")


def without_id(record: dict[str, Any]) -> dict[str, Any]:
    out = clone_record(record)
    out.pop("id", None)
    return out
