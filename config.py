"""Application configuration module.

Settings are read from environment variables, with a local ``.env`` file
loaded first during development. ``DATABASE_URL`` selects the relational
database; URLs using the legacy ``postgres://`` scheme are rewritten to
``postgresql://`` so SQLAlchemy picks the right dialect. Without a URL the
application falls back to a SQLite file in the working directory.

"""

import os
from dotenv import load_dotenv


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        return default


class Config:
    """Base configuration class.

    Flask and Flask-SQLAlchemy read their settings from the attributes below.
    Values are resolved once at import time.
    """

    load_dotenv()

    # Signs the session cookie that carries the logged-in user id and role.
    SECRET_KEY = os.environ.get('SECRET_KEY', 'change-this-secret-in-prod')

    _db_url = os.environ.get('DATABASE_URL', '')
    if _db_url.startswith('postgres://'):
        _db_url = _db_url.replace('postgres://', 'postgresql://', 1)
    SQLALCHEMY_DATABASE_URI = _db_url or 'sqlite:///english_course.db'

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Connections come from the engine pool and are returned when the app
    # context tears down. The connect timeout only applies to network
    # databases; sqlite3 has no such argument.
    DB_CONNECT_TIMEOUT = _int_env('DB_CONNECT_TIMEOUT', 10)
    SQLALCHEMY_ENGINE_OPTIONS = {'pool_pre_ping': True}
    if _db_url and not _db_url.startswith('sqlite'):
        SQLALCHEMY_ENGINE_OPTIONS['connect_args'] = {'connect_timeout': DB_CONNECT_TIMEOUT}

    # Seats per class when the class row does not define its own limit.
    DEFAULT_CLASS_CAPACITY = _int_env('DEFAULT_CLASS_CAPACITY', 30)

    MIN_PASSWORD_LENGTH = _int_env('MIN_PASSWORD_LENGTH', 6)
