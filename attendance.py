"""Per-lesson attendance recording.

Attendance belongs to one lesson occurrence (a :class:`~models.Schedule`
row). Saving attendance resolves the occurrence of the class on the given
calendar day and replaces everything recorded for it.

The two lookups intentionally differ: saving compares the year, month and
day parts of ``lesson_date`` separately, reading compares ``DATE(lesson_date)``
with the requested date directly. On a ``DATE`` column both agree; they can
diverge when ``lesson_date`` holds timestamps stored in another time zone.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping

from sqlalchemy import extract, func

from app_logging import get_logger
from classes import owned_class, parse_date
from db_utils import timed_read, transactional
from models import ATTENDANCE_STATUSES, Attendance, Schedule, db
from results import OperationResult

_logger = get_logger("lms.attendance")


def _normalise_records(records: Iterable[Mapping[str, Any]]) -> List[dict]:
    """Validate submitted rows; raises :class:`ValueError` on the first bad one."""
    normalised = []
    seen = set()
    for record in records or []:
        try:
            student_id = int(record.get('student_id'))
        except (TypeError, ValueError, AttributeError):
            raise ValueError('Each attendance record needs a student_id')
        status = record.get('status')
        if status not in ATTENDANCE_STATUSES:
            raise ValueError(f"Invalid status '{status}', expected one of: {', '.join(ATTENDANCE_STATUSES)}")
        if student_id in seen:
            raise ValueError(f'Duplicate attendance record for student {student_id}')
        seen.add(student_id)
        normalised.append({'student_id': student_id, 'status': status, 'note': record.get('note') or None})
    return normalised


def _available_dates(class_id: int) -> List[str]:
    rows = (db.session.query(Schedule.lesson_date)
            .filter(Schedule.class_id == class_id)
            .order_by(Schedule.lesson_date)
            .all())
    return [lesson_date.isoformat() for (lesson_date,) in rows]


@transactional('save_attendance')
def save_attendance(class_id: int, teacher_id: int, date: str,
                    records: Iterable[Mapping[str, Any]]) -> OperationResult:
    if not class_id or not teacher_id or not date:
        return OperationResult.invalid('Missing required parameters')
    try:
        class_id = int(class_id)
    except (TypeError, ValueError):
        return OperationResult.invalid('class_id must be an integer')
    try:
        lesson_day = parse_date(date)
    except ValueError:
        return OperationResult.invalid('Invalid date format, must be YYYY-MM-DD')
    try:
        rows = _normalise_records(records)
    except ValueError as exc:
        return OperationResult.invalid(str(exc))

    _, failure = owned_class(class_id, teacher_id)
    if failure is not None:
        return failure

    schedule = (Schedule.query
                .filter(Schedule.class_id == class_id,
                        extract('year', Schedule.lesson_date) == lesson_day.year,
                        extract('month', Schedule.lesson_date) == lesson_day.month,
                        extract('day', Schedule.lesson_date) == lesson_day.day)
                .order_by(Schedule.start_time)
                .first())
    if schedule is None:
        available = _available_dates(class_id)
        return OperationResult.not_found(
            f"No schedule found for this class and date. Available dates: {', '.join(available)}")

    Attendance.query.filter_by(schedule_id=schedule.schedule_id).delete(synchronize_session=False)
    db.session.add_all(Attendance(schedule_id=schedule.schedule_id, **row) for row in rows)
    db.session.flush()
    _logger.info("attendance saved", extra={"class_id": class_id, "schedule_id": schedule.schedule_id,
                                            "records": len(rows)})
    return OperationResult.ok(schedule_id=schedule.schedule_id, saved=len(rows))


@timed_read
def get_attendance_by_date(class_id: int, teacher_id: int, date: str) -> OperationResult:
    try:
        lesson_day = parse_date(date)
    except ValueError:
        lesson_day = None
    if lesson_day is None:
        return OperationResult.invalid('Invalid date format, must be YYYY-MM-DD')
    date = lesson_day.isoformat()

    _, failure = owned_class(class_id, teacher_id)
    if failure is not None:
        return failure
    rows = (db.session.query(Attendance)
            .join(Schedule, Schedule.schedule_id == Attendance.schedule_id)
            .filter(Schedule.class_id == class_id, func.date(Schedule.lesson_date) == date)
            .order_by(Attendance.student_id)
            .all())
    return OperationResult.ok(attendance=[
        {'student_id': row.student_id, 'status': row.status, 'note': row.note} for row in rows
    ])
