"""Flask application for the English course management system.

The application factory wires configuration, the database, logging
middleware and the JSON API (see :mod:`api` for the route list). Besides
the API it exposes ``GET /health`` for load balancer checks.

Run locally with ``python app.py``; in production use
``gunicorn app:app``.
"""

from __future__ import annotations

import os
from datetime import date, datetime, time
from typing import Any, Mapping, Optional

from flask import Flask, jsonify
from flask.json.provider import DefaultJSONProvider
from werkzeug.exceptions import HTTPException

from sqlalchemy.exc import SQLAlchemyError

from api import register_api
from app_logging import configure_logging, get_logger, get_request_id
from config import Config
from correlation_id_middleware import init_correlation_id
from db_utils import retry_with_backoff
from models import db
from request_logging_middleware import init_request_logging

_logger = get_logger("lms.app")


class ISOJSONProvider(DefaultJSONProvider):
    """Serialise dates and times as ISO 8601 instead of HTTP dates."""

    @staticmethod
    def default(o: Any) -> Any:
        if isinstance(o, (datetime, date, time)):
            return o.isoformat()
        return DefaultJSONProvider.default(o)


def create_app(overrides: Optional[Mapping[str, Any]] = None) -> Flask:
    """Application factory used by both the server and tests.

    ``overrides`` is applied on top of :class:`config.Config`, before the
    database extension is initialised, so tests can swap the database URL.
    """
    configure_logging()
    app = Flask(__name__)
    app.json = ISOJSONProvider(app)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)
    db.init_app(app)

    init_correlation_id(app)
    init_request_logging(app)
    register_api(app)

    @app.route('/health')
    def healthcheck():
        return jsonify({'status': 'ok'}), 200

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        response = jsonify({
            'success': False,
            'error': error.description,
            'status': error.code,
            'request_id': get_request_id(),
        })
        response.status_code = error.code or 500
        return response

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(error: SQLAlchemyError):
        db.session.rollback()
        _logger.exception("Database operation failed", exc_info=error)
        return jsonify({
            'success': False,
            'error': 'Database temporarily unavailable',
            'status': 503,
            'request_id': get_request_id(),
        }), 503

    with app.app_context():
        try:
            retry_with_backoff(db.create_all)
        except SQLAlchemyError as exc:
            # Keep serving; /api calls will answer 503 until the database is back.
            _logger.warning("Database unavailable during table creation: %s", exc)

    return app


app = create_app()

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 8000))
    app.run(host='0.0.0.0', port=port, debug=os.environ.get('FLASK_DEBUG') == '1')
