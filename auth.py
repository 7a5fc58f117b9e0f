"""Session-based authentication for the JSON API.

A successful login stores ``user_id`` and ``role`` in the signed Flask
session cookie. Handlers declare the roles they accept with
:func:`role_required`.
"""

from __future__ import annotations

import functools
from typing import Callable, Optional

from flask import session
from werkzeug.exceptions import Forbidden, Unauthorized

from app_logging import merge_request_context
from models import User


def login_user(user: User) -> None:
    session.clear()
    session['user_id'] = user.user_id
    session['role'] = user.role
    session['name'] = user.full_name


def logout_user() -> None:
    session.clear()


def current_user_id() -> Optional[int]:
    return session.get('user_id')


def current_role() -> Optional[str]:
    return session.get('role')


def role_required(*roles: str) -> Callable:
    """Reject requests without a session (401) or with another role (403)."""

    def decorator(view: Callable) -> Callable:
        @functools.wraps(view)
        def wrapper(*args, **kwargs):
            user_id = current_user_id()
            if user_id is None:
                raise Unauthorized('Authentication required')
            if roles and current_role() not in roles:
                raise Forbidden('Unauthorized')
            merge_request_context(user_id=user_id)
            return view(*args, **kwargs)

        return wrapper

    return decorator


__all__ = ['current_role', 'current_user_id', 'login_user', 'logout_user', 'role_required']
