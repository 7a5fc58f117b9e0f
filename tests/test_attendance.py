from datetime import date

import pytest

from attendance import get_attendance_by_date, save_attendance
from models import Attendance
from results import FailureKind


@pytest.fixture
def lesson(make_user, make_course, make_class, make_schedule):
    teacher = make_user('teacher')
    course_class = make_class(make_course(), teacher)
    schedule = make_schedule(course_class, date(2024, 1, 10))
    students = [make_user('student') for _ in range(3)]
    return teacher, course_class, schedule, students


def test_save_attendance_for_class_without_schedule(make_user, make_course, make_class):
    teacher = make_user('teacher')
    make_class(make_course(), teacher, class_id=7)

    result = save_attendance(7, teacher.user_id, '2024-01-10', [])

    assert result.kind == FailureKind.NOT_FOUND
    assert result.error == 'No schedule found for this class and date. Available dates: '


def test_save_attendance_lists_available_dates(lesson, make_schedule):
    teacher, course_class, _, students = lesson
    make_schedule(course_class, date(2024, 1, 17))

    result = save_attendance(course_class.class_id, teacher.user_id, '2024-01-11',
                             [{'student_id': students[0].user_id, 'status': 'present'}])

    assert not result.success
    assert result.error.endswith('Available dates: 2024-01-10, 2024-01-17')
    assert Attendance.query.count() == 0


def test_resubmission_replaces_previous_records(lesson):
    teacher, course_class, schedule, students = lesson
    first = save_attendance(course_class.class_id, teacher.user_id, '2024-01-10', [
        {'student_id': students[0].user_id, 'status': 'present'},
        {'student_id': students[1].user_id, 'status': 'absent', 'note': 'sick'},
    ])
    assert first.success and first.data['saved'] == 2

    second = save_attendance(course_class.class_id, teacher.user_id, '2024-01-10', [
        {'student_id': students[2].user_id, 'status': 'late'},
    ])

    assert second.success
    rows = Attendance.query.filter_by(schedule_id=schedule.schedule_id).all()
    assert [(row.student_id, row.status) for row in rows] == [(students[2].user_id, 'late')]


def test_save_accepts_timestamp_on_lesson_day(lesson):
    teacher, course_class, schedule, students = lesson

    result = save_attendance(course_class.class_id, teacher.user_id, '2024-01-10T23:30:00',
                             [{'student_id': students[0].user_id, 'status': 'present'}])

    assert result.success
    assert result.data['schedule_id'] == schedule.schedule_id


def test_save_requires_all_parameters(lesson):
    teacher, course_class, _, _ = lesson
    assert save_attendance(None, teacher.user_id, '2024-01-10', []).kind == FailureKind.VALIDATION
    assert save_attendance(course_class.class_id, None, '2024-01-10', []).kind == FailureKind.VALIDATION
    assert save_attendance(course_class.class_id, teacher.user_id, '', []).error == 'Missing required parameters'


def test_save_rejects_unknown_status(lesson):
    teacher, course_class, _, students = lesson

    result = save_attendance(course_class.class_id, teacher.user_id, '2024-01-10',
                             [{'student_id': students[0].user_id, 'status': 'excused'}])

    assert result.kind == FailureKind.VALIDATION
    assert Attendance.query.count() == 0


def test_save_rejects_other_teachers_class(lesson, make_user):
    _, course_class, _, students = lesson
    intruder = make_user('teacher')

    result = save_attendance(course_class.class_id, intruder.user_id, '2024-01-10',
                             [{'student_id': students[0].user_id, 'status': 'present'}])

    assert result.kind == FailureKind.UNAUTHORIZED
    assert result.error == 'Unauthorized access to class'
    assert Attendance.query.count() == 0


def test_get_attendance_by_date(lesson):
    teacher, course_class, _, students = lesson
    save_attendance(course_class.class_id, teacher.user_id, '2024-01-10', [
        {'student_id': students[0].user_id, 'status': 'present'},
        {'student_id': students[1].user_id, 'status': 'late', 'note': 'bus'},
    ])

    result = get_attendance_by_date(course_class.class_id, teacher.user_id, '2024-01-10')

    assert result.success
    assert result.data['attendance'] == [
        {'student_id': students[0].user_id, 'status': 'present', 'note': None},
        {'student_id': students[1].user_id, 'status': 'late', 'note': 'bus'},
    ]
    empty = get_attendance_by_date(course_class.class_id, teacher.user_id, '2024-01-11')
    assert empty.data['attendance'] == []


def test_get_attendance_checks_ownership(lesson, make_user):
    _, course_class, _, _ = lesson
    result = get_attendance_by_date(course_class.class_id, make_user('teacher').user_id, '2024-01-10')
    assert result.kind == FailureKind.UNAUTHORIZED
