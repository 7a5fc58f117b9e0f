"""Course registration and class placement.

A student moves through three states for a given course::

    unregistered --register--> registered --assign--> assigned
         ^                         |  ^                  |
         +-------unregister--------+  +----unassign------+

Unregistering also removes the class placement, so a placement never
outlives its registration.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from db_utils import timed_read, transactional
from models import ClassStudent, Course, CourseClass, CourseStudent, User, db
from results import OperationResult


def _class_ids_of_course(course_id: int):
    return db.select(CourseClass.class_id).where(CourseClass.course_id == course_id)


@transactional('register_student_for_course')
def register_student_for_course(course_id: int, student_id: int) -> OperationResult:
    if db.session.get(Course, course_id) is None:
        return OperationResult.not_found('Course not found')
    student = db.session.get(User, student_id)
    if student is None or student.role != 'student':
        return OperationResult.not_found('Student not found')
    if CourseStudent.query.filter_by(course_id=course_id, student_id=student_id).first() is not None:
        return OperationResult.conflict('Already registered for this course')

    registration = CourseStudent(course_id=course_id, student_id=student_id,
                                 registered_at=datetime.utcnow())
    db.session.add(registration)
    try:
        db.session.flush()
    except IntegrityError:
        # A concurrent registration for the same pair won the insert.
        return OperationResult.conflict('Already registered for this course')
    return OperationResult.ok(course_id=course_id, student_id=student_id,
                              registered_at=registration.registered_at)


@transactional('unregister_student_from_course')
def unregister_student_from_course(course_id: int, student_id: int) -> OperationResult:
    """Remove the student's class placement in the course, then the registration."""
    registration = CourseStudent.query.filter_by(course_id=course_id, student_id=student_id).first()
    if registration is None:
        return OperationResult.not_found('Not registered for this course')

    (ClassStudent.query
     .filter(ClassStudent.student_id == student_id,
             ClassStudent.class_id.in_(_class_ids_of_course(course_id)))
     .delete(synchronize_session=False))
    db.session.delete(registration)
    return OperationResult.ok(course_id=course_id, student_id=student_id)


@transactional('assign_student_to_class')
def assign_student_to_class(course_id: int, student_id: int, class_id: int) -> OperationResult:
    """Place a registered student into one class of the course.

    Checks run in a fixed order and the first one that fails decides the
    error: registration, class/course membership, capacity, existing
    placement in the same course.
    """
    registered = CourseStudent.query.filter_by(course_id=course_id, student_id=student_id).first()
    if registered is None:
        return OperationResult.not_found('Student is not registered for this course')

    # Lock the class row so concurrent placements into it serialise on
    # databases that support SELECT ... FOR UPDATE.
    course_class = (CourseClass.query
                    .filter_by(class_id=class_id, course_id=course_id)
                    .with_for_update()
                    .first())
    if course_class is None:
        return OperationResult.not_found('Class does not belong to this course')

    max_students = course_class.max_students or current_app.config.get('DEFAULT_CLASS_CAPACITY', 30)
    current_count = ClassStudent.query.filter_by(class_id=class_id).count()
    if current_count >= max_students:
        return OperationResult.conflict('Class is full')

    existing = (db.session.query(CourseClass.class_name)
                .join(ClassStudent, ClassStudent.class_id == CourseClass.class_id)
                .filter(ClassStudent.student_id == student_id, CourseClass.course_id == course_id)
                .first())
    if existing is not None:
        return OperationResult.conflict(f'Student is already assigned to class: {existing.class_name}')

    assignment = ClassStudent(class_id=class_id, student_id=student_id, course_id=course_id,
                              joined_at=datetime.utcnow())
    db.session.add(assignment)
    try:
        db.session.flush()
    except IntegrityError:
        # Another request placed the student between our check and insert.
        return OperationResult.conflict('Student is already assigned to a class in this course')
    return OperationResult.ok(assignment={
        'class_id': class_id,
        'student_id': student_id,
        'joined_at': assignment.joined_at,
    })


@transactional('unassign_student_from_class')
def unassign_student_from_class(course_id: int, student_id: int) -> OperationResult:
    """Remove the student's placement within the course; a no-op when there is none."""
    removed = (ClassStudent.query
               .filter(ClassStudent.student_id == student_id,
                       ClassStudent.class_id.in_(_class_ids_of_course(course_id)))
               .delete(synchronize_session=False))
    return OperationResult.ok(removed=removed)


def _placement_in_course(course_id: int, student_id: int) -> Optional[tuple]:
    return (db.session.query(ClassStudent, CourseClass.class_name)
            .join(CourseClass, CourseClass.class_id == ClassStudent.class_id)
            .filter(ClassStudent.student_id == student_id, CourseClass.course_id == course_id)
            .first())


@timed_read
def get_registration_status(course_id: int, student_id: int) -> Optional[dict]:
    registration = CourseStudent.query.filter_by(course_id=course_id, student_id=student_id).first()
    if registration is None:
        return None
    status = {'registered_at': registration.registered_at, 'class_id': None,
              'class_name': None, 'joined_at': None}
    placement = _placement_in_course(course_id, student_id)
    if placement is not None:
        assignment, class_name = placement
        status.update(class_id=assignment.class_id, class_name=class_name,
                      joined_at=assignment.joined_at)
    return status


def _registration_rows(query) -> List[dict]:
    """Attach the class placement (if any) of each registration row."""
    rows = []
    for registration, course, student in query.all():
        placement = _placement_in_course(registration.course_id, registration.student_id)
        rows.append({
            'course_id': course.course_id,
            'course_name': course.course_name,
            'level': course.level,
            'student_id': student.user_id,
            'student_name': student.full_name,
            'student_email': student.email,
            'registered_at': registration.registered_at,
            'class_id': placement[0].class_id if placement else None,
            'class_name': placement[1] if placement else None,
            'assigned_at': placement[0].joined_at if placement else None,
        })
    return rows


def _registrations_query():
    return (db.session.query(CourseStudent, Course, User)
            .join(Course, Course.course_id == CourseStudent.course_id)
            .join(User, User.user_id == CourseStudent.student_id))


@timed_read
def get_course_registered_students(course_id: int) -> List[dict]:
    query = (_registrations_query()
             .filter(CourseStudent.course_id == course_id)
             .order_by(CourseStudent.registered_at.desc()))
    return _registration_rows(query)


@timed_read
def get_all_registrations() -> List[dict]:
    return _registration_rows(_registrations_query().order_by(CourseStudent.registered_at.desc()))


@timed_read
def get_student_courses(student_id: int) -> List[dict]:
    """Courses the student is registered for, with the assigned class and its teacher."""
    rows = (db.session.query(CourseStudent, Course)
            .join(Course, Course.course_id == CourseStudent.course_id)
            .filter(CourseStudent.student_id == student_id)
            .order_by(CourseStudent.registered_at.desc())
            .all())
    result = []
    for registration, course in rows:
        entry = {
            'course_id': course.course_id,
            'course_name': course.course_name,
            'description': course.description,
            'level': course.level,
            'registered_at': registration.registered_at,
            'class': None,
        }
        placement = _placement_in_course(course.course_id, student_id)
        if placement is not None:
            course_class = placement[0].course_class
            entry['class'] = {
                'class_id': course_class.class_id,
                'class_name': course_class.class_name,
                'start_date': course_class.start_date,
                'end_date': course_class.end_date,
                'teacher_name': course_class.teacher.full_name,
            }
        result.append(entry)
    return result
