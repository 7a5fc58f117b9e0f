"""Per-course settings.

Settings are stored as text next to the type they were written with
(``string``, ``number``, ``boolean`` or ``json``) and decoded back to that
type on read. Writing a key that already exists for the course replaces its
value and type.
"""

from __future__ import annotations

import json
import math
from typing import Any, Dict, Mapping, Optional, Tuple

from app_logging import get_logger
from db_utils import timed_read, transactional
from models import SETTING_TYPES, Course, CourseSetting, db
from results import OperationResult

_logger = get_logger("lms.course_settings")

MAX_KEY_LENGTH = 100


def infer_setting_type(value: Any) -> str:
    if isinstance(value, bool):
        return 'boolean'
    if isinstance(value, (int, float)):
        return 'number'
    if isinstance(value, (dict, list)):
        return 'json'
    return 'string'


def encode_setting(value: Any, setting_type: str) -> str:
    """Serialise ``value`` for storage; raises :class:`ValueError` if it does not fit the type."""
    if setting_type == 'boolean':
        if isinstance(value, str):
            return 'true' if value.strip().lower() == 'true' else 'false'
        return 'true' if value else 'false'
    if setting_type == 'number':
        if isinstance(value, bool):
            raise ValueError('Number settings need a numeric value')
        number = float(value) if isinstance(value, str) else value
        if not isinstance(number, (int, float)) or not math.isfinite(number):
            raise ValueError('Number settings need a finite numeric value')
        return json.dumps(number)
    if setting_type == 'json':
        return json.dumps(value)
    if value is None:
        raise ValueError('Setting value is required')
    return str(value)


def decode_setting(text: str, setting_type: str) -> Any:
    if setting_type == 'boolean':
        return text == 'true'
    if setting_type in ('number', 'json'):
        try:
            return json.loads(text)
        except ValueError:
            return text
    return text


def _validate(key: Any, value: Any, setting_type: Optional[str]) -> Tuple[str, str, str]:
    if not isinstance(key, str) or not key.strip():
        raise ValueError('Setting key is required')
    key = key.strip()
    if len(key) > MAX_KEY_LENGTH:
        raise ValueError(f'Setting key must be at most {MAX_KEY_LENGTH} characters')
    setting_type = setting_type or infer_setting_type(value)
    if setting_type not in SETTING_TYPES:
        raise ValueError(f"Setting type must be one of: {', '.join(SETTING_TYPES)}")
    try:
        text = encode_setting(value, setting_type)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid value for setting '{key}': {exc}")
    return key, text, setting_type


def _settings_of(course_id: int) -> Dict[str, Any]:
    rows = CourseSetting.query.filter_by(course_id=course_id).order_by(CourseSetting.setting_key).all()
    return {row.setting_key: decode_setting(row.setting_value, row.setting_type) for row in rows}


@timed_read
def get_course_settings(course_id: int) -> OperationResult:
    if db.session.get(Course, course_id) is None:
        return OperationResult.not_found('Course not found')
    return OperationResult.ok(settings=_settings_of(course_id))


def _upsert(course_id: int, key: str, text: str, setting_type: str) -> None:
    setting = CourseSetting.query.filter_by(course_id=course_id, setting_key=key).first()
    if setting is None:
        db.session.add(CourseSetting(course_id=course_id, setting_key=key,
                                     setting_value=text, setting_type=setting_type))
    else:
        setting.setting_value = text
        setting.setting_type = setting_type


@transactional('update_course_setting')
def update_course_setting(course_id: int, key: str, value: Any,
                          setting_type: Optional[str] = None) -> OperationResult:
    """Create or replace one setting; the type is inferred from ``value`` when omitted."""
    try:
        key, text, setting_type = _validate(key, value, setting_type)
    except ValueError as exc:
        return OperationResult.invalid(str(exc))
    if db.session.get(Course, course_id) is None:
        return OperationResult.not_found('Course not found')

    _upsert(course_id, key, text, setting_type)
    db.session.flush()
    return OperationResult.ok(key=key, value=decode_setting(text, setting_type), type=setting_type)


@transactional('update_course_settings')
def update_course_settings(course_id: int, settings: Mapping[str, Any]) -> OperationResult:
    """Write several settings at once; nothing is stored if any of them is invalid."""
    if not isinstance(settings, Mapping) or not settings:
        return OperationResult.invalid('Settings object is required')
    try:
        validated = [_validate(key, value, None) for key, value in settings.items()]
    except ValueError as exc:
        return OperationResult.invalid(str(exc))
    if db.session.get(Course, course_id) is None:
        return OperationResult.not_found('Course not found')

    for key, text, setting_type in validated:
        _upsert(course_id, key, text, setting_type)
    db.session.flush()
    _logger.info("course settings updated", extra={"course_id": course_id, "keys": len(validated)})
    return OperationResult.ok(settings=_settings_of(course_id))
