"""Aggregate figures for the admin dashboard."""

from __future__ import annotations

import math
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func

from classes import parse_date
from db_utils import timed_read, transactional
from models import ATTENDANCE_STATUSES, ROLES, Attendance, ClassStudent, Course, CourseClass, \
    CourseMetric, CourseStudent, Schedule, User, db
from results import OperationResult

MAX_METRIC_DAYS = 365
MAX_METRIC_NAME_LENGTH = 100

PERIODS = {'week': 7, 'month': 30, 'year': 365, 'all': None}


def period_start(period: str, today: Optional[date] = None) -> Optional[date]:
    """First day covered by ``period``; ``None`` means no lower bound.

    Raises :class:`KeyError` for unknown periods.
    """
    days = PERIODS[period]
    if days is None:
        return None
    return (today or date.today()) - timedelta(days=days)


@timed_read
def dashboard_summary() -> dict:
    users_by_role = dict.fromkeys(ROLES, 0)
    users_by_role.update(db.session.query(User.role, func.count(User.user_id)).group_by(User.role).all())
    return {
        'users': users_by_role,
        'courses': Course.query.count(),
        'active_courses': Course.query.filter(Course.is_active.is_(True)).count(),
        'classes': CourseClass.query.count(),
        'registrations': CourseStudent.query.count(),
        'assignments': ClassStudent.query.count(),
    }


@timed_read
def attendance_summary(period: str = 'month') -> dict:
    start = period_start(period)
    query = (db.session.query(Attendance.status, func.count(Attendance.attendance_id))
             .join(Schedule, Schedule.schedule_id == Attendance.schedule_id))
    if start is not None:
        query = query.filter(Schedule.lesson_date >= start)
    counts = dict.fromkeys(ATTENDANCE_STATUSES, 0)
    counts.update(query.group_by(Attendance.status).all())
    total = sum(counts.values())
    attended = counts['present'] + counts['late']
    return {
        'period': period,
        'counts': counts,
        'total': total,
        'attendance_rate': round(attended / total * 100, 1) if total else None,
    }


@timed_read
def course_popularity(limit: int = 5) -> List[dict]:
    rows = (db.session.query(Course.course_id, Course.course_name, Course.level,
                             func.count(CourseStudent.id).label('registrations'))
            .outerjoin(CourseStudent, CourseStudent.course_id == Course.course_id)
            .group_by(Course.course_id, Course.course_name, Course.level)
            .order_by(func.count(CourseStudent.id).desc(), Course.course_name)
            .limit(limit)
            .all())
    return [row._asdict() for row in rows]


@timed_read
def registration_stats() -> dict:
    total = CourseStudent.query.count()
    assigned = ClassStudent.query.count()
    return {'total': total, 'assigned': assigned, 'unassigned': max(total - assigned, 0)}


@timed_read
def get_course_metrics(course_id: int, days: int = 30, today: Optional[date] = None) -> OperationResult:
    """Metric values of the last ``days`` days, grouped by metric name, newest first."""
    if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= MAX_METRIC_DAYS:
        return OperationResult.invalid(f'Days parameter must be between 1 and {MAX_METRIC_DAYS}')
    if db.session.get(Course, course_id) is None:
        return OperationResult.not_found('Course not found')

    since = (today or date.today()) - timedelta(days=days)
    rows = (CourseMetric.query
            .filter(CourseMetric.course_id == course_id, CourseMetric.metric_date >= since)
            .order_by(CourseMetric.metric_date.desc(), CourseMetric.metric_name)
            .all())
    metrics = defaultdict(list)
    for row in rows:
        metrics[row.metric_name].append({'value': float(row.metric_value), 'date': row.metric_date})
    return OperationResult.ok(metrics=dict(metrics), period_days=days)


@transactional('record_course_metric')
def record_course_metric(course_id: int, metric_name: str, metric_value, metric_date=None) -> OperationResult:
    """Store the value of a metric for one day, replacing an earlier value for that day."""
    if not isinstance(metric_name, str) or not metric_name.strip():
        return OperationResult.invalid('Metric name is required and must be a string')
    metric_name = metric_name.strip()
    if len(metric_name) > MAX_METRIC_NAME_LENGTH:
        return OperationResult.invalid(f'Metric name must be at most {MAX_METRIC_NAME_LENGTH} characters')
    if isinstance(metric_value, bool) or not isinstance(metric_value, (int, float, Decimal)) \
            or not math.isfinite(metric_value):
        return OperationResult.invalid('Metric value is required and must be a number')
    if abs(metric_value) >= 10 ** 8:
        return OperationResult.invalid('Metric value is out of range')
    try:
        day = parse_date(metric_date) or date.today()
    except ValueError:
        return OperationResult.invalid('Date must be in YYYY-MM-DD format')
    if db.session.get(Course, course_id) is None:
        return OperationResult.not_found('Course not found')

    value = Decimal(str(metric_value)).quantize(Decimal('0.01'))
    metric = CourseMetric.query.filter_by(course_id=course_id, metric_name=metric_name,
                                          metric_date=day).first()
    if metric is None:
        db.session.add(CourseMetric(course_id=course_id, metric_name=metric_name,
                                    metric_value=value, metric_date=day))
    else:
        metric.metric_value = value
    return OperationResult.ok(metric_name=metric_name, metric_value=float(value), metric_date=day)
