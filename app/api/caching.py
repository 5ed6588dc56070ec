"""HTTP caching helpers for public, cacheable payloads."""

from __future__ import annotations

from typing import Any

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse

from app.core.rate_limit import quota_headers
from app.core.responses import success_body
from app.utils.etag import compute_etag, etag_matches


def cacheable_response(request: Request, payload: dict[str, Any], max_age: int) -> Response:
    """Render a payload with ``ETag``/``Cache-Control``, or 304 when the client copy matches.

    The response object is built here rather than by FastAPI, so quota
    headers recorded by the rate limit dependency are copied on explicitly.
    """

    etag = compute_etag(payload)
    headers = {
        "ETag": etag,
        "Cache-Control": f"public, max-age={max_age}",
        **quota_headers(request),
    }

    if etag_matches(request.headers.get("if-none-match"), etag):
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers=headers)

    return JSONResponse(content=success_body(**payload), headers=headers)
