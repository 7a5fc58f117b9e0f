"""Structured request/response logging for the API."""

from __future__ import annotations

import os
import random
import time
from typing import Any, Dict, Optional

from flask import Flask, Response, g, request, session

from app_logging import get_logger, merge_request_context, redact_sensitive_data

_DEFAULT_SAMPLE_RATE = 1.0
_DEFAULT_MAX_BYTES = 2048
_SKIPPED_PATHS = {"/health"}

_request_logger = get_logger("lms.request")


def _sample_rate() -> float:
    try:
        rate = float(os.environ.get("REQUEST_LOG_SAMPLE_RATE", _DEFAULT_SAMPLE_RATE))
    except ValueError:
        return _DEFAULT_SAMPLE_RATE
    return max(0.0, min(1.0, rate))


def _max_response_bytes() -> int:
    try:
        return max(0, int(os.environ.get("RESPONSE_BODY_MAX_BYTES", _DEFAULT_MAX_BYTES)))
    except ValueError:
        return _DEFAULT_MAX_BYTES


def _route() -> Optional[str]:
    return request.url_rule.rule if request.url_rule else None


def _should_log_request(path: str) -> bool:
    if path in _SKIPPED_PATHS or path.startswith("/static"):
        return False
    rate = _sample_rate()
    return rate >= 1.0 or random.random() < rate


def _request_payload() -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    if request.args:
        payload["query"] = redact_sensitive_data(request.args.to_dict(flat=False))
    if request.method in {"POST", "PUT", "PATCH", "DELETE"}:
        body = request.get_json(silent=True)
        if body is not None:
            payload["json"] = redact_sensitive_data(body)
    return payload


def _response_excerpt(resp: Response) -> Optional[str]:
    limit = _max_response_bytes()
    if limit == 0 or resp.direct_passthrough or not resp.is_json:
        return None
    body = resp.get_json(silent=True)
    if body is None:
        return None
    text = str(redact_sensitive_data(body))
    if len(text) > limit:
        return text[:limit] + f"... truncated {len(text) - limit} bytes"
    return text


def init_request_logging(app: Flask) -> None:
    """Emit ``request_start`` and ``request_end`` records for sampled requests."""

    @app.before_request
    def _log_request_start() -> None:
        g._log_request = _should_log_request(request.path)
        g._request_start = time.perf_counter()
        merge_request_context(
            method=request.method,
            path=request.path,
            route=_route(),
            user_id=session.get("user_id"),
        )
        if g._log_request:
            _request_logger.info(
                "request_start",
                extra={
                    "event": "request_start",
                    "client_ip": request.headers.get("X-Forwarded-For", request.remote_addr),
                    "user_agent": request.headers.get("User-Agent"),
                    "request_payload": _request_payload(),
                },
            )

    @app.after_request
    def _log_request_end(response: Response) -> Response:
        duration_ms = None
        if hasattr(g, "_request_start"):
            duration_ms = round((time.perf_counter() - g._request_start) * 1000, 2)
        merge_request_context(status=response.status_code, duration_ms=duration_ms)
        if getattr(g, "_log_request", False):
            log = _request_logger.warning if response.status_code >= 500 else _request_logger.info
            log(
                "request_end",
                extra={"event": "request_end", "response_body": _response_excerpt(response)},
            )
        return response


__all__ = ["init_request_logging"]
