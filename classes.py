"""Teacher-owned classes and their lesson schedule.

Every operation that acts on a specific class on behalf of a teacher checks
ownership first; a class owned by someone else is reported as unauthorized,
a class that does not exist at all as not found.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Any, List, Mapping, Optional, Tuple

from flask import current_app
from sqlalchemy import case, func

from db_utils import timed_read, transactional
from models import Attendance, ClassStudent, Course, CourseClass, Schedule, User, db
from results import OperationResult


def parse_date(value: Any) -> Optional[date]:
    """Parse ``YYYY-MM-DD`` (or pass through a date); ``None`` for blanks.

    Raises :class:`ValueError` for anything else.
    """
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value).strip()[:10], '%Y-%m-%d').date()


def parse_time(value: Any) -> Optional[time]:
    if value in (None, ''):
        return None
    if isinstance(value, time):
        return value
    text = str(value).strip()
    fmt = '%H:%M:%S' if text.count(':') == 2 else '%H:%M'
    return datetime.strptime(text, fmt).time()


def owned_class(class_id: int, teacher_id: int):
    """Return ``(course_class, failure)``; exactly one of them is ``None``."""
    course_class = db.session.get(CourseClass, class_id)
    if course_class is None:
        return None, OperationResult.not_found('Class not found')
    if course_class.teacher_id != teacher_id:
        return None, OperationResult.unauthorized('Unauthorized access to class')
    return course_class, None


def _parse_class_data(data: Mapping[str, Any]) -> dict:
    name = (data.get('class_name') or '').strip()
    if not name:
        raise ValueError('Class name is required')
    try:
        course_id = int(data.get('course_id'))
    except (TypeError, ValueError):
        raise ValueError('A valid course is required')
    try:
        start_date = parse_date(data.get('start_date'))
        end_date = parse_date(data.get('end_date'))
    except ValueError:
        raise ValueError('Invalid date format, must be YYYY-MM-DD')
    if start_date and end_date and end_date < start_date:
        raise ValueError('End date cannot be before start date')
    max_students = data.get('max_students')
    if max_students in (None, ''):
        max_students = current_app.config.get('DEFAULT_CLASS_CAPACITY', 30)
    try:
        max_students = int(max_students)
    except (TypeError, ValueError):
        raise ValueError('Max students must be a number')
    if max_students <= 0:
        raise ValueError('Max students must be positive')
    return {
        'class_name': name,
        'course_id': course_id,
        'start_date': start_date,
        'end_date': end_date,
        'max_students': max_students,
    }


@transactional('create_teacher_class')
def create_teacher_class(teacher_id: int, data: Mapping[str, Any]) -> OperationResult:
    try:
        fields = _parse_class_data(data)
    except ValueError as exc:
        return OperationResult.invalid(str(exc))

    if CourseClass.query.filter_by(class_name=fields['class_name'], teacher_id=teacher_id).first():
        return OperationResult.conflict('Class name already exists')
    if db.session.get(Course, fields['course_id']) is None:
        return OperationResult.not_found('Course not found')

    course_class = CourseClass(teacher_id=teacher_id, **fields)
    db.session.add(course_class)
    db.session.flush()
    return OperationResult.ok(class_id=course_class.class_id)


@transactional('update_teacher_class')
def update_teacher_class(class_id: int, teacher_id: int, data: Mapping[str, Any]) -> OperationResult:
    course_class, failure = owned_class(class_id, teacher_id)
    if failure is not None:
        return failure
    try:
        fields = _parse_class_data(data)
    except ValueError as exc:
        return OperationResult.invalid(str(exc))

    duplicate = (CourseClass.query
                 .filter(CourseClass.class_name == fields['class_name'],
                         CourseClass.teacher_id == teacher_id,
                         CourseClass.class_id != class_id)
                 .first())
    if duplicate is not None:
        return OperationResult.conflict('Class name already exists')
    if db.session.get(Course, fields['course_id']) is None:
        return OperationResult.not_found('Course not found')
    if fields['course_id'] != course_class.course_id and \
            ClassStudent.query.filter_by(class_id=class_id).count() > 0:
        return OperationResult.conflict('Cannot move a class with enrolled students to another course')

    for key, value in fields.items():
        setattr(course_class, key, value)
    course_class.updated_at = datetime.utcnow()
    return OperationResult.ok(course_class=course_class.to_dict())


@transactional('delete_teacher_class')
def delete_teacher_class(class_id: int, teacher_id: int) -> OperationResult:
    """Delete an empty class together with its schedule."""
    course_class, failure = owned_class(class_id, teacher_id)
    if failure is not None:
        return failure

    if ClassStudent.query.filter_by(class_id=class_id).count() > 0:
        return OperationResult.conflict('Cannot delete class with enrolled students')

    schedule_ids = db.select(Schedule.schedule_id).where(Schedule.class_id == class_id)
    Attendance.query.filter(Attendance.schedule_id.in_(schedule_ids)).delete(synchronize_session=False)
    Schedule.query.filter_by(class_id=class_id).delete(synchronize_session=False)
    db.session.delete(course_class)
    return OperationResult.ok(class_id=class_id)


@timed_read
def get_teacher_classes(teacher_id: int) -> List[dict]:
    default_capacity = current_app.config.get('DEFAULT_CLASS_CAPACITY', 30)
    rows = (db.session.query(CourseClass, Course.course_name, Course.level,
                             func.count(func.distinct(ClassStudent.student_id)),
                             func.count(func.distinct(Schedule.schedule_id)),
                             func.min(case((Schedule.lesson_date >= date.today(), Schedule.lesson_date))))
            .join(Course, Course.course_id == CourseClass.course_id)
            .outerjoin(ClassStudent, ClassStudent.class_id == CourseClass.class_id)
            .outerjoin(Schedule, Schedule.class_id == CourseClass.class_id)
            .filter(CourseClass.teacher_id == teacher_id)
            .group_by(CourseClass.class_id, Course.course_name, Course.level)
            .order_by(CourseClass.class_name)
            .all())
    result = []
    for course_class, course_name, level, student_count, schedule_count, next_class in rows:
        payload = course_class.to_dict()
        payload.update(
            course_name=course_name,
            course_level=level,
            max_students=course_class.max_students or default_capacity,
            student_count=student_count,
            schedule_count=schedule_count,
            next_class=next_class,
        )
        result.append(payload)
    return result


@timed_read
def get_teacher_class(class_id: int, teacher_id: int) -> OperationResult:
    course_class, failure = owned_class(class_id, teacher_id)
    if failure is not None:
        return failure
    payload = course_class.to_dict()
    payload['course_name'] = course_class.course.course_name
    payload['schedules'] = [schedule.to_dict() for schedule in course_class.schedules]
    return OperationResult.ok(course_class=payload)


@timed_read
def get_class_students(class_id: int, teacher_id: int) -> OperationResult:
    _, failure = owned_class(class_id, teacher_id)
    if failure is not None:
        return failure
    rows = (db.session.query(ClassStudent, User)
            .join(User, User.user_id == ClassStudent.student_id)
            .filter(ClassStudent.class_id == class_id)
            .order_by(User.full_name)
            .all())
    students = [{
        'student_id': user.user_id,
        'student_name': user.full_name,
        'student_email': user.email,
        'joined_at': assignment.joined_at,
    } for assignment, user in rows]
    return OperationResult.ok(students=students)


@timed_read
def teacher_stats(teacher_id: int) -> dict:
    today = date.today()
    classes = CourseClass.query.filter_by(teacher_id=teacher_id).all()
    total_students = (db.session.query(func.count(func.distinct(ClassStudent.student_id)))
                      .join(CourseClass, CourseClass.class_id == ClassStudent.class_id)
                      .filter(CourseClass.teacher_id == teacher_id)
                      .scalar())
    return {
        'total_classes': len(classes),
        'total_students': total_students or 0,
        'upcoming_classes': sum(1 for c in classes if c.start_date and c.start_date > today),
        'completed_classes': sum(1 for c in classes if c.end_date and c.end_date < today),
    }


@transactional('create_schedule')
def create_schedule(data: Mapping[str, Any]) -> OperationResult:
    try:
        class_id = int(data.get('class_id'))
        lesson_date = parse_date(data.get('lesson_date'))
        start_time = parse_time(data.get('start_time'))
        end_time = parse_time(data.get('end_time'))
    except (TypeError, ValueError):
        return OperationResult.invalid('class_id, lesson_date (YYYY-MM-DD) and times (HH:MM) are required')
    if lesson_date is None:
        return OperationResult.invalid('lesson_date is required')
    if start_time and end_time and end_time <= start_time:
        return OperationResult.invalid('End time must be after start time')
    if db.session.get(CourseClass, class_id) is None:
        return OperationResult.not_found('Class not found')

    schedule = Schedule(class_id=class_id, lesson_date=lesson_date, start_time=start_time,
                        end_time=end_time, room_or_link=data.get('room_or_link'))
    db.session.add(schedule)
    db.session.flush()
    return OperationResult.ok(schedule_id=schedule.schedule_id)


@transactional('delete_schedule')
def delete_schedule(schedule_id: int) -> OperationResult:
    """Delete a lesson occurrence and the attendance recorded for it."""
    schedule = db.session.get(Schedule, schedule_id)
    if schedule is None:
        return OperationResult.not_found('Schedule not found')
    Attendance.query.filter_by(schedule_id=schedule_id).delete(synchronize_session=False)
    db.session.delete(schedule)
    return OperationResult.ok(schedule_id=schedule_id)


def _schedule_rows(query) -> List[dict]:
    result = []
    for schedule, class_name, course_name, teacher_name in query.all():
        payload = schedule.to_dict()
        payload.update(class_name=class_name, course_name=course_name, teacher_name=teacher_name)
        result.append(payload)
    return result


def _schedules_query():
    return (db.session.query(Schedule, CourseClass.class_name, Course.course_name, User.full_name)
            .join(CourseClass, CourseClass.class_id == Schedule.class_id)
            .join(Course, Course.course_id == CourseClass.course_id)
            .join(User, User.user_id == CourseClass.teacher_id))


@timed_read
def list_schedules(lesson_date: Optional[date] = None, class_id: Optional[int] = None) -> List[dict]:
    query = _schedules_query()
    if lesson_date is not None:
        query = query.filter(Schedule.lesson_date == lesson_date)
    if class_id is not None:
        query = query.filter(Schedule.class_id == class_id)
    return _schedule_rows(query.order_by(Schedule.lesson_date, Schedule.start_time))


@timed_read
def get_student_schedule(student_id: int) -> List[dict]:
    query = (_schedules_query()
             .join(ClassStudent, ClassStudent.class_id == Schedule.class_id)
             .filter(ClassStudent.student_id == student_id)
             .order_by(Schedule.lesson_date, Schedule.start_time))
    return _schedule_rows(query)


def week_bounds(week_offset: Any = 0, today: Optional[date] = None) -> Tuple[date, date]:
    """Sunday and Saturday of the week ``week_offset`` weeks from the current one.

    Offsets that are not integers fall back to the current week.
    """
    try:
        week_offset = int(week_offset or 0)
    except (TypeError, ValueError):
        week_offset = 0
    today = today or date.today()
    # date.weekday() counts from Monday; weeks here start on Sunday.
    start = today - timedelta(days=(today.weekday() + 1) % 7) + timedelta(weeks=week_offset)
    return start, start + timedelta(days=6)


def _week_rows(query) -> List[dict]:
    result = []
    for schedule, class_name, course_name, level, teacher_name, student_count in query.all():
        payload = schedule.to_dict()
        payload.update(
            class_name=class_name,
            course_name=course_name,
            level=level,
            teacher_name=teacher_name,
            day_of_week=schedule.lesson_date.strftime('%A'),
            student_count=student_count,
        )
        result.append(payload)
    return result


def _week_query(start: date, end: date):
    return (db.session.query(Schedule, CourseClass.class_name, Course.course_name, Course.level,
                             User.full_name, func.count(func.distinct(ClassStudent.student_id)))
            .join(CourseClass, CourseClass.class_id == Schedule.class_id)
            .join(Course, Course.course_id == CourseClass.course_id)
            .join(User, User.user_id == CourseClass.teacher_id)
            .outerjoin(ClassStudent, ClassStudent.class_id == CourseClass.class_id)
            .filter(Schedule.lesson_date >= start, Schedule.lesson_date <= end)
            .group_by(Schedule.schedule_id, CourseClass.class_name, Course.course_name,
                      Course.level, User.full_name)
            .order_by(Schedule.lesson_date, Schedule.start_time))


@timed_read
def get_teacher_schedule(teacher_id: int, week_offset: Any = 0, today: Optional[date] = None) -> dict:
    start, end = week_bounds(week_offset, today)
    query = _week_query(start, end).filter(CourseClass.teacher_id == teacher_id)
    return {'week_start': start, 'week_end': end, 'lessons': _week_rows(query)}


@timed_read
def get_admin_schedule(week_offset: Any = 0, today: Optional[date] = None) -> dict:
    start, end = week_bounds(week_offset, today)
    return {'week_start': start, 'week_end': end, 'lessons': _week_rows(_week_query(start, end))}


@timed_read
def get_teacher_upcoming_classes(teacher_id: int, limit: int = 10, today: Optional[date] = None) -> List[dict]:
    """Classes with at least one lesson from today on, soonest first."""
    today = today or date.today()
    next_lesson = (db.session.query(Schedule.class_id,
                                    func.min(Schedule.lesson_date).label('next_lesson'))
                   .filter(Schedule.lesson_date >= today)
                   .group_by(Schedule.class_id)
                   .subquery())
    rows = (db.session.query(CourseClass, Course.course_name, next_lesson.c.next_lesson)
            .join(Course, Course.course_id == CourseClass.course_id)
            .join(next_lesson, next_lesson.c.class_id == CourseClass.class_id)
            .filter(CourseClass.teacher_id == teacher_id)
            .order_by(next_lesson.c.next_lesson, CourseClass.class_name)
            .limit(limit)
            .all())
    result = []
    for course_class, course_name, lesson_day in rows:
        lessons = Schedule.query.filter_by(class_id=course_class.class_id)
        first = (lessons.filter(Schedule.lesson_date == lesson_day)
                 .order_by(Schedule.start_time).first())
        result.append({
            'class_id': course_class.class_id,
            'class_name': course_class.class_name,
            'course_name': course_name,
            'next_lesson': lesson_day,
            'next_time': first.start_time if first else None,
            'location': first.room_or_link if first else None,
            'student_count': ClassStudent.query.filter_by(class_id=course_class.class_id).count(),
            'total_lessons': lessons.count(),
            'completed_lessons': lessons.filter(Schedule.lesson_date < today).count(),
        })
    return result


@timed_read
def get_all_classes() -> List[dict]:
    rows = (db.session.query(CourseClass.class_id, CourseClass.class_name, CourseClass.course_id,
                             Course.course_name, User.full_name.label('teacher_name'))
            .join(Course, Course.course_id == CourseClass.course_id)
            .join(User, User.user_id == CourseClass.teacher_id)
            .order_by(CourseClass.class_name)
            .all())
    return [row._asdict() for row in rows]


def _student_class_payload(course_class: CourseClass, today: date) -> dict:
    default_capacity = current_app.config.get('DEFAULT_CLASS_CAPACITY', 30)
    lessons = Schedule.query.filter_by(class_id=course_class.class_id)
    first = lessons.order_by(Schedule.lesson_date, Schedule.start_time).first()
    upcoming = (lessons.filter(Schedule.lesson_date > today)
                .order_by(Schedule.lesson_date).first())
    payload = course_class.to_dict()
    payload.update(
        course_name=course_class.course.course_name,
        teacher_name=course_class.teacher.full_name,
        max_students=course_class.max_students or default_capacity,
        student_count=ClassStudent.query.filter_by(class_id=course_class.class_id).count(),
        schedule_time=_time_range(first),
        location=(first.room_or_link if first and first.room_or_link else 'TBD'),
        next_class=upcoming.lesson_date if upcoming else None,
    )
    return payload


def _time_range(schedule: Optional[Schedule]) -> str:
    if schedule is None or schedule.start_time is None or schedule.end_time is None:
        return 'TBD'
    return f"{schedule.start_time.strftime('%I:%M %p')} - {schedule.end_time.strftime('%I:%M %p')}"


def _is_placed(class_id: int, student_id: int) -> bool:
    return ClassStudent.query.filter_by(class_id=class_id, student_id=student_id).first() is not None


@timed_read
def get_student_classes(student_id: int, today: Optional[date] = None) -> List[dict]:
    today = today or date.today()
    classes = (CourseClass.query
               .join(ClassStudent, ClassStudent.class_id == CourseClass.class_id)
               .filter(ClassStudent.student_id == student_id)
               .order_by(CourseClass.start_date.desc(), CourseClass.class_name)
               .all())
    return [_student_class_payload(course_class, today) for course_class in classes]


@timed_read
def get_student_class(class_id: int, student_id: int, today: Optional[date] = None) -> OperationResult:
    """A class the student is placed in; any other class is reported as not found."""
    if not _is_placed(class_id, student_id):
        return OperationResult.not_found('Class not found')
    course_class = db.session.get(CourseClass, class_id)
    payload = _student_class_payload(course_class, today or date.today())
    payload['teacher_email'] = course_class.teacher.email
    return OperationResult.ok(course_class=payload)


@timed_read
def get_student_class_schedules(class_id: int, student_id: int) -> List[dict]:
    """Lessons of a class the student is placed in; empty for any other class."""
    if not _is_placed(class_id, student_id):
        return []
    lessons = (Schedule.query.filter_by(class_id=class_id)
               .order_by(Schedule.lesson_date, Schedule.start_time)
               .all())
    return [lesson.to_dict() for lesson in lessons]
