"""User accounts: sign-up, credential checks and admin management."""

from __future__ import annotations

import re
from typing import List, Optional

from flask import current_app
from sqlalchemy import func, or_
from werkzeug.security import check_password_hash, generate_password_hash

from db_utils import timed_read, transactional
from models import ROLES, CourseClass, CourseStudent, User, db
from results import OperationResult

_EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')


def normalize_email(email: Optional[str]) -> str:
    """Trimmed, lower-cased email; anything that is not a string becomes ``''``."""
    if not isinstance(email, str):
        return ''
    return email.strip().lower()


def _validate_profile(full_name, email, role) -> Optional[str]:
    if not isinstance(full_name, str) or not full_name.strip():
        return 'Full name is required'
    if not _EMAIL_RE.match(email):
        return 'Invalid email format'
    if role not in ROLES:
        return 'Invalid role selected'
    return None


def _validate_password(password: Optional[str]) -> Optional[str]:
    min_length = current_app.config.get('MIN_PASSWORD_LENGTH', 6)
    if not isinstance(password, str) or len(password) < min_length:
        return f'Password must be at least {min_length} characters long'
    return None


@timed_read
def find_user_by_email(email: str) -> Optional[User]:
    return User.query.filter_by(email=normalize_email(email)).first()


def authenticate(email: str, password: str) -> Optional[User]:
    """Return the user whose credentials match, or ``None``."""
    if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
        return None
    user = find_user_by_email(email)
    if user is None or not check_password_hash(user.password, password):
        return None
    return user


@transactional('create_user')
def create_user(full_name: str, email: str, password: str, role: str) -> OperationResult:
    email = normalize_email(email)
    if not full_name or not email or not password or not role:
        return OperationResult.invalid('All fields are required')
    problem = _validate_profile(full_name, email, role) or _validate_password(password)
    if problem:
        return OperationResult.invalid(problem)

    if User.query.filter_by(email=email).first() is not None:
        return OperationResult.conflict('An account with this email already exists')

    user = User(
        full_name=full_name.strip(),
        email=email,
        password=generate_password_hash(password),
        role=role,
    )
    db.session.add(user)
    db.session.flush()
    return OperationResult.ok(user=user.to_dict())


@timed_read
def get_user(user_id: int) -> Optional[User]:
    return db.session.get(User, user_id)


@timed_read
def list_users(search: Optional[str] = None, role: Optional[str] = None) -> List[dict]:
    query = User.query
    if role:
        query = query.filter(User.role == role)
    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(User.full_name.ilike(pattern), User.email.ilike(pattern)))
    return [user.to_dict() for user in query.order_by(User.created_at.desc(), User.user_id.desc()).all()]


@timed_read
def user_stats() -> dict:
    rows = db.session.query(User.role, func.count(User.user_id)).group_by(User.role).all()
    by_role = {role: 0 for role in ROLES}
    by_role.update({role: count for role, count in rows})
    return {'total': sum(by_role.values()), 'by_role': by_role}


@transactional('update_user')
def update_user(user_id: int, full_name: str, email: str, role: str,
                password: Optional[str] = None) -> OperationResult:
    user = db.session.get(User, user_id)
    if user is None:
        return OperationResult.not_found('User not found')

    email = normalize_email(email)
    problem = _validate_profile(full_name, email, role)
    if not problem and password not in (None, ''):
        problem = _validate_password(password)
    if problem:
        return OperationResult.invalid(problem)

    duplicate = User.query.filter(User.email == email, User.user_id != user_id).first()
    if duplicate is not None:
        return OperationResult.conflict('An account with this email already exists')

    user.full_name = full_name.strip()
    user.email = email
    user.role = role
    if password:
        user.password = generate_password_hash(password)
    return OperationResult.ok(user=user.to_dict())


@transactional('delete_user')
def delete_user(user_id: int) -> OperationResult:
    """Delete a user that neither holds registrations nor teaches a class."""
    registration_count = CourseStudent.query.filter_by(student_id=user_id).count()
    if registration_count > 0:
        return OperationResult.conflict(
            f'Cannot delete user. User has {registration_count} course registration(s).')

    class_count = CourseClass.query.filter_by(teacher_id=user_id).count()
    if class_count > 0:
        return OperationResult.conflict(
            f'Cannot delete user. User is teaching {class_count} class(es).')

    deleted = User.query.filter_by(user_id=user_id).delete(synchronize_session=False)
    if deleted == 0:
        return OperationResult.not_found('User not found')
    return OperationResult.ok(message='User deleted successfully')
