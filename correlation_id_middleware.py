"""Correlation ids: one per request, taken from the client or generated.

The id is echoed back in the ``X-Request-ID`` response header and in the
body of every error response, so a failed API call can be matched with its
log lines.
"""

from __future__ import annotations

import re
import uuid

from flask import Flask, Response, g, request

from app_logging import clear_request_context, set_request_id

HEADER_NAME = "X-Request-ID"

# Ids from clients are trusted only if they look like a token.
_ACCEPTED_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_request_id(header_value: str | None) -> str:
    candidate = (header_value or "").strip()
    if _ACCEPTED_ID.match(candidate):
        return candidate
    return uuid.uuid4().hex


def init_correlation_id(app: Flask) -> None:
    """Register the hooks; must run before the request logging middleware."""

    @app.before_request
    def _bind_request_id() -> None:
        g.request_id = resolve_request_id(request.headers.get(HEADER_NAME))
        set_request_id(g.request_id)

    @app.after_request
    def _echo_request_id(response: Response) -> Response:
        request_id = g.get("request_id")
        if request_id:
            response.headers[HEADER_NAME] = request_id
        return response

    @app.teardown_request
    def _unbind_request_context(_exc) -> None:
        clear_request_context()


__all__ = ["HEADER_NAME", "init_correlation_id", "resolve_request_id"]
