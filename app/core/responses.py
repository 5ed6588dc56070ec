"""Response envelope helpers shared by routers and exception handlers.

Success: ``{"success": true, "timestamp": ..., "message"?: ..., "data"?: ..., **extra}``
Error:   ``{"success": false, "timestamp": ..., "error": {"code", "message", "statusCode", "request_id", "details"?}}``
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from app.core.logging import get_request_id


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def success_body(message: str | None = None, data: Any = None, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True, "timestamp": utc_now_iso()}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


def error_body(
    code: str,
    message: str,
    status_code: int,
    details: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "statusCode": status_code,
        "request_id": get_request_id(),
    }
    # Include details only if present (optional structured context)
    if details:
        error["details"] = dict(details)
    return {"success": False, "timestamp": utc_now_iso(), "error": error}
