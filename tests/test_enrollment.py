from datetime import datetime, timedelta

from enrollment import (
    assign_student_to_class,
    get_course_registered_students,
    get_registration_status,
    get_student_courses,
    register_student_for_course,
    unassign_student_from_class,
    unregister_student_from_course,
)
from models import ClassStudent, CourseStudent, db
from results import FailureKind


def _placements(student_id):
    return ClassStudent.query.filter_by(student_id=student_id).all()


def test_register_creates_registration(make_user, make_course):
    student = make_user('student')
    course = make_course()

    result = register_student_for_course(course.course_id, student.user_id)

    assert result.success
    assert CourseStudent.query.filter_by(course_id=course.course_id, student_id=student.user_id).count() == 1


def test_register_twice_reports_already_registered(make_user, make_course):
    student = make_user('student')
    course = make_course()
    register_student_for_course(course.course_id, student.user_id)

    result = register_student_for_course(course.course_id, student.user_id)

    assert not result.success
    assert result.kind == FailureKind.CONFLICT
    assert result.error == 'Already registered for this course'
    assert CourseStudent.query.count() == 1


def test_register_unknown_course(make_user):
    student = make_user('student')
    result = register_student_for_course(999, student.user_id)
    assert result.kind == FailureKind.NOT_FOUND


def test_register_unknown_or_non_student_user(make_user, make_course):
    course = make_course()
    teacher = make_user('teacher')

    assert register_student_for_course(course.course_id, 4242).error == 'Student not found'
    assert register_student_for_course(course.course_id, teacher.user_id).kind == FailureKind.NOT_FOUND
    assert CourseStudent.query.count() == 0


def test_assign_requires_registration(make_user, make_course, make_class):
    teacher = make_user('teacher')
    student = make_user('student')
    course = make_course()
    course_class = make_class(course, teacher)

    result = assign_student_to_class(course.course_id, student.user_id, course_class.class_id)

    assert not result.success
    assert result.error == 'Student is not registered for this course'
    assert _placements(student.user_id) == []


def test_assign_not_registered_checked_before_class_validity(make_user, make_course):
    student = make_user('student')
    course = make_course()

    result = assign_student_to_class(course.course_id, student.user_id, 12345)

    assert result.error == 'Student is not registered for this course'


def test_assign_rejects_class_of_other_course(make_user, make_course, make_class, register):
    teacher = make_user('teacher')
    student = make_user('student')
    course = make_course()
    other_course = make_course()
    foreign_class = make_class(other_course, teacher)
    register(course, student)

    result = assign_student_to_class(course.course_id, student.user_id, foreign_class.class_id)

    assert result.kind == FailureKind.NOT_FOUND
    assert result.error == 'Class does not belong to this course'


def test_assign_full_class_fails_without_insert(make_user, make_course, make_class, register):
    teacher = make_user('teacher')
    course = make_course()
    course_class = make_class(course, teacher, max_students=2)
    students = [make_user('student') for _ in range(3)]
    for student in students:
        register(course, student)
    for student in students[:2]:
        assert assign_student_to_class(course.course_id, student.user_id, course_class.class_id).success

    result = assign_student_to_class(course.course_id, students[2].user_id, course_class.class_id)

    assert result.kind == FailureKind.CONFLICT
    assert result.error == 'Class is full'
    assert ClassStudent.query.filter_by(class_id=course_class.class_id).count() == 2


def test_assign_uses_default_capacity_when_class_has_none(app, make_user, make_course, make_class,
                                                         register, place):
    app.config['DEFAULT_CLASS_CAPACITY'] = 1
    teacher = make_user('teacher')
    course = make_course()
    course_class = make_class(course, teacher)
    course_class.max_students = None
    db.session.commit()
    first, second = make_user('student'), make_user('student')
    register(course, first)
    register(course, second)
    place(course_class, first)

    result = assign_student_to_class(course.course_id, second.user_id, course_class.class_id)

    assert result.error == 'Class is full'


def test_assign_scenario_second_class_of_same_course(make_user, make_course, make_class, register):
    teacher = make_user('teacher')
    student = make_user('student', user_id=2)
    course = make_course(course_id=5)
    class_11 = make_class(course, teacher, class_id=11, name='Morning Group')
    make_class(course, teacher, class_id=12, name='Evening Group')
    register(course, student)

    before = datetime.utcnow()
    first = assign_student_to_class(5, 2, 11)

    assert first.success
    assignment = first.data['assignment']
    assert assignment['class_id'] == 11
    assert assignment['student_id'] == 2
    assert before - timedelta(seconds=1) <= assignment['joined_at'] <= datetime.utcnow()
    assert ClassStudent.query.filter_by(student_id=2).count() == 1

    second = assign_student_to_class(5, 2, 12)

    assert not second.success
    assert second.kind == FailureKind.CONFLICT
    assert second.error == f'Student is already assigned to class: {class_11.class_name}'
    assert [p.class_id for p in _placements(2)] == [11]


def test_unassign_is_idempotent(make_user, make_course, make_class, register):
    teacher = make_user('teacher')
    student = make_user('student')
    course = make_course()
    course_class = make_class(course, teacher)
    register(course, student)
    assign_student_to_class(course.course_id, student.user_id, course_class.class_id)

    first = unassign_student_from_class(course.course_id, student.user_id)
    second = unassign_student_from_class(course.course_id, student.user_id)

    assert first.success and first.data['removed'] == 1
    assert second.success and second.data['removed'] == 0


def test_assign_then_unassign_keeps_registration(make_user, make_course, make_class, register):
    teacher = make_user('teacher')
    student = make_user('student')
    course = make_course()
    course_class = make_class(course, teacher)
    register(course, student)

    assign_student_to_class(course.course_id, student.user_id, course_class.class_id)
    unassign_student_from_class(course.course_id, student.user_id)

    assert _placements(student.user_id) == []
    assert CourseStudent.query.filter_by(course_id=course.course_id, student_id=student.user_id).count() == 1


def test_unassign_only_touches_given_course(make_user, make_course, make_class, register, place):
    teacher = make_user('teacher')
    student = make_user('student')
    course, other_course = make_course(), make_course()
    class_a = make_class(course, teacher)
    class_b = make_class(other_course, teacher)
    register(course, student)
    register(other_course, student)
    place(class_a, student)
    place(class_b, student)

    unassign_student_from_class(course.course_id, student.user_id)

    assert [p.class_id for p in _placements(student.user_id)] == [class_b.class_id]


def test_unregister_removes_placement_and_registration(make_user, make_course, make_class, register, place):
    teacher = make_user('teacher')
    student = make_user('student')
    course = make_course()
    course_class = make_class(course, teacher)
    register(course, student)
    place(course_class, student)

    result = unregister_student_from_course(course.course_id, student.user_id)

    assert result.success
    assert _placements(student.user_id) == []
    assert CourseStudent.query.count() == 0


def test_unregister_when_not_registered(make_user, make_course):
    student = make_user('student')
    course = make_course()
    result = unregister_student_from_course(course.course_id, student.user_id)
    assert result.kind == FailureKind.NOT_FOUND


def test_registration_listings_include_class(make_user, make_course, make_class, register, place):
    teacher = make_user('teacher', full_name='Sarah Johnson')
    placed, waiting = make_user('student'), make_user('student')
    course = make_course(name='English Foundations')
    course_class = make_class(course, teacher, name='Foundations A')
    register(course, placed)
    register(course, waiting)
    place(course_class, placed)

    status = get_registration_status(course.course_id, placed.user_id)
    assert status['class_name'] == 'Foundations A'
    assert get_registration_status(course.course_id, waiting.user_id)['class_id'] is None
    assert get_registration_status(course.course_id, teacher.user_id) is None

    roster = {row['student_id']: row for row in get_course_registered_students(course.course_id)}
    assert roster[placed.user_id]['class_id'] == course_class.class_id
    assert roster[waiting.user_id]['class_id'] is None

    courses = get_student_courses(placed.user_id)
    assert courses[0]['course_name'] == 'English Foundations'
    assert courses[0]['class']['teacher_name'] == 'Sarah Johnson'


def test_storage_constraint_rejects_second_placement_in_course(make_user, make_course, make_class, register):
    teacher, student = make_user('teacher'), make_user('student')
    course, other_course = make_course(), make_course()
    target = make_class(course, teacher, name='Target')
    elsewhere = make_class(other_course, teacher, name='Elsewhere')
    register(course, student)
    # A placement that belongs to ``course`` but that the lookup by class cannot
    # see, as if a concurrent request inserted it after the checks ran.
    db.session.add(ClassStudent(class_id=elsewhere.class_id, student_id=student.user_id,
                                course_id=course.course_id))
    db.session.commit()

    result = assign_student_to_class(course.course_id, student.user_id, target.class_id)

    assert result.kind == FailureKind.CONFLICT
    assert result.error == 'Student is already assigned to a class in this course'
    assert ClassStudent.query.count() == 1
    assert ClassStudent.query.filter_by(class_id=target.class_id).count() == 0
