"""Course catalogue operations."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional

from flask import current_app
from sqlalchemy import func, or_

from db_utils import timed_read, transactional
from models import DEFAULT_MAX_STUDENTS, LEVELS, ClassStudent, Course, CourseClass, CourseMetric, \
    CourseSetting, CourseStudent, User, db
from results import OperationResult


_FALSE_STRINGS = frozenset({'false', '0', 'no', 'off', ''})


def parse_flag(value: Any, default: bool = True) -> bool:
    """Interpret a JSON or form value as a boolean; the string ``"false"`` is false."""
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_STRINGS
    return bool(value)


def _parse_course_data(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate and coerce incoming course fields.

    Raises :class:`ValueError` with a user-facing message on bad input.
    """
    name = data.get('course_name')
    name = name.strip() if isinstance(name, str) else ''
    if not name:
        raise ValueError('Course name is required')
    level = data.get('level')
    if level not in LEVELS:
        raise ValueError(f"Level must be one of: {', '.join(LEVELS)}")
    try:
        duration_weeks = int(data.get('duration_weeks'))
        max_students = int(data.get('max_students', DEFAULT_MAX_STUDENTS))
        price = Decimal(str(data.get('price', 0)))
        if not price.is_finite():
            raise ValueError(price)
    except (TypeError, ValueError, OverflowError, InvalidOperation):
        raise ValueError('Duration, price and max students must be numbers')
    if duration_weeks <= 0:
        raise ValueError('Duration must be at least one week')
    if max_students <= 0:
        raise ValueError('Max students must be positive')
    if price < 0:
        raise ValueError('Price cannot be negative')
    return {
        'course_name': name,
        'description': data.get('description') or '',
        'level': level,
        'duration_weeks': duration_weeks,
        'price': price,
        'max_students': max_students,
        'is_active': parse_flag(data.get('is_active')),
    }


@transactional('create_course')
def create_course(data: Mapping[str, Any]) -> OperationResult:
    try:
        fields = _parse_course_data(data)
    except ValueError as exc:
        return OperationResult.invalid(str(exc))

    if Course.query.filter_by(course_name=fields['course_name']).first() is not None:
        return OperationResult.conflict('A course with this name already exists')

    course = Course(**fields)
    db.session.add(course)
    db.session.flush()
    return OperationResult.ok(course=course.to_dict())


@transactional('update_course')
def update_course(course_id: int, data: Mapping[str, Any]) -> OperationResult:
    try:
        fields = _parse_course_data(data)
    except ValueError as exc:
        return OperationResult.invalid(str(exc))

    course = db.session.get(Course, course_id)
    if course is None:
        return OperationResult.not_found('Course not found')

    duplicate = Course.query.filter(Course.course_name == fields['course_name'],
                                    Course.course_id != course_id).first()
    if duplicate is not None:
        return OperationResult.conflict('A course with this name already exists')

    for key, value in fields.items():
        setattr(course, key, value)
    return OperationResult.ok(course=course.to_dict())


@transactional('delete_course')
def delete_course(course_id: int) -> OperationResult:
    """Delete a course nobody is registered for and that has no classes."""
    registration_count = CourseStudent.query.filter_by(course_id=course_id).count()
    if registration_count > 0:
        return OperationResult.conflict(
            f'Cannot delete course. {registration_count} student(s) are registered for this course.')

    class_count = CourseClass.query.filter_by(course_id=course_id).count()
    if class_count > 0:
        return OperationResult.conflict(
            f'Cannot delete course. {class_count} class(es) are associated with this course.')

    CourseSetting.query.filter_by(course_id=course_id).delete(synchronize_session=False)
    CourseMetric.query.filter_by(course_id=course_id).delete(synchronize_session=False)
    deleted = Course.query.filter_by(course_id=course_id).delete(synchronize_session=False)
    if deleted == 0:
        return OperationResult.not_found('Course not found')
    return OperationResult.ok(message='Course deleted successfully')


@transactional('bulk_update_course_status')
def bulk_update_course_status(course_ids: Iterable[int], is_active: Any) -> OperationResult:
    if isinstance(course_ids, (str, bytes)):
        return OperationResult.invalid('course_ids must be a list of course ids')
    try:
        ids = [int(course_id) for course_id in course_ids or []]
    except (TypeError, ValueError, OverflowError):
        return OperationResult.invalid('course_ids must be a list of course ids')
    if not ids:
        return OperationResult.invalid('No courses selected')
    updated = (Course.query.filter(Course.course_id.in_(ids))
               .update({Course.is_active: parse_flag(is_active, default=False)}, synchronize_session=False))
    return OperationResult.ok(updated=updated)


def _enrolled_count_subquery():
    return (db.session.query(CourseStudent.course_id, func.count(CourseStudent.id).label('enrolled_count'))
            .group_by(CourseStudent.course_id).subquery())


def _class_count_subquery():
    return (db.session.query(CourseClass.course_id, func.count(CourseClass.class_id).label('class_count'))
            .group_by(CourseClass.course_id).subquery())


@timed_read
def get_course(course_id: int) -> Optional[dict]:
    course = db.session.get(Course, course_id)
    if course is None:
        return None
    payload = course.to_dict()
    payload['enrolled_count'] = CourseStudent.query.filter_by(course_id=course_id).count()
    return payload


@timed_read
def find_courses(level: Optional[str] = None, search: Optional[str] = None,
                 limit: int = 20, offset: int = 0, active_only: bool = False) -> List[dict]:
    enrolled = _enrolled_count_subquery()
    classes = _class_count_subquery()
    query = (db.session.query(Course,
                              func.coalesce(enrolled.c.enrolled_count, 0),
                              func.coalesce(classes.c.class_count, 0))
             .outerjoin(enrolled, enrolled.c.course_id == Course.course_id)
             .outerjoin(classes, classes.c.course_id == Course.course_id))
    if level:
        query = query.filter(Course.level == level)
    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(Course.course_name.ilike(pattern), Course.description.ilike(pattern)))
    if active_only:
        query = query.filter(Course.is_active.is_(True))

    rows = (query.order_by(Course.created_at.desc(), Course.course_id.desc())
            .limit(limit).offset(offset).all())
    result = []
    for course, enrolled_count, class_count in rows:
        payload = course.to_dict()
        payload['enrolled_count'] = enrolled_count
        payload['class_count'] = class_count
        result.append(payload)
    return result


@timed_read
def course_stats() -> dict:
    rows = db.session.query(Course.level, func.count(Course.course_id)).group_by(Course.level).all()
    return {
        'total_courses': sum(count for _, count in rows),
        'by_level': [{'level': level, 'count': count} for level, count in rows],
    }


@timed_read
def get_course_classes_with_stats(course_id: int) -> List[dict]:
    default_capacity = current_app.config.get('DEFAULT_CLASS_CAPACITY', 30)
    rows = (db.session.query(CourseClass, User.full_name, func.count(ClassStudent.id))
            .join(User, User.user_id == CourseClass.teacher_id)
            .outerjoin(ClassStudent, ClassStudent.class_id == CourseClass.class_id)
            .filter(CourseClass.course_id == course_id)
            .group_by(CourseClass.class_id, User.full_name)
            .order_by(CourseClass.class_name)
            .all())
    result = []
    for course_class, teacher_name, current_students in rows:
        payload = course_class.to_dict()
        payload['max_students'] = course_class.max_students or default_capacity
        payload['teacher_name'] = teacher_name
        payload['current_students'] = current_students
        result.append(payload)
    return result
