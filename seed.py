"""Seed the database with demo data.

Creates an admin, two teachers and a handful of students, one course per
level, classes with a week of lessons, and a few registrations and class
placements. All demo accounts use the password ``password123``.

Usage:
    python seed.py

"""

from datetime import date, time, timedelta
from decimal import Decimal

from flask import Flask
from werkzeug.security import generate_password_hash

from app_logging import get_logger
from config import Config
from models import ClassStudent, Course, CourseClass, CourseMetric, CourseSetting, CourseStudent, Schedule, \
    User, db

DEMO_PASSWORD = 'password123'

_logger = get_logger("lms.seed")


def create_app() -> Flask:
    """Standalone application for seeding, without routes or middleware."""
    app = Flask(__name__)
    app.config.from_object(Config)
    db.init_app(app)
    return app


def _user(full_name: str, email: str, role: str) -> User:
    return User(full_name=full_name, email=email, role=role,
                password=generate_password_hash(DEMO_PASSWORD))


def seed_data(start: date = None) -> None:
    """Drop all tables, recreate them and insert the demo data set."""
    start = start or date.today()

    db.drop_all()
    db.create_all()

    admin = _user('Admin User', 'admin@englishcourse.com', 'admin')
    teachers = [
        _user('Sarah Johnson', 'sarah.johnson@englishcourse.com', 'teacher'),
        _user('Michael Brown', 'michael.brown@englishcourse.com', 'teacher'),
    ]
    students = [
        _user(name, f"{name.split()[0].lower()}@student.com", 'student')
        for name in ('Alice Nguyen', 'Bao Tran', 'Chris Lee', 'Dana Kim', 'Emma Pham', 'Felix Do')
    ]
    db.session.add_all([admin, *teachers, *students])
    db.session.commit()

    courses = [
        Course(course_name='English Foundations', level='Beginner', duration_weeks=8,
               price=Decimal('199.00'), max_students=40,
               description='Everyday vocabulary, basic grammar and pronunciation.'),
        Course(course_name='Conversational English', level='Intermediate', duration_weeks=10,
               price=Decimal('249.00'), max_students=30,
               description='Fluency practice through discussion and role play.'),
        Course(course_name='Academic Writing', level='Advanced', duration_weeks=12,
               price=Decimal('299.00'), max_students=20,
               description='Essay structure, argumentation and citation.'),
    ]
    db.session.add_all(courses)
    db.session.commit()

    end = start + timedelta(weeks=8)
    classes = []
    for index, course in enumerate(courses):
        for suffix in ('A', 'B'):
            classes.append(CourseClass(
                class_name=f'{course.course_name} {suffix}',
                course_id=course.course_id,
                teacher_id=teachers[index % len(teachers)].user_id,
                start_date=start,
                end_date=end,
                max_students=15,
            ))
    db.session.add_all(classes)
    db.session.commit()

    # Two lessons per class in the first week.
    for index, course_class in enumerate(classes):
        for offset in (index % 3, index % 3 + 3):
            db.session.add(Schedule(
                class_id=course_class.class_id,
                lesson_date=start + timedelta(days=offset),
                start_time=time(9 + index % 4 * 2, 0),
                end_time=time(10 + index % 4 * 2, 30),
                room_or_link=f'Room {101 + index}',
            ))
    db.session.commit()

    # First four students register for the beginner course, two of them are
    # already placed in its first class.
    beginner, beginner_class = courses[0], classes[0]
    for student in students[:4]:
        db.session.add(CourseStudent(course_id=beginner.course_id, student_id=student.user_id))
    for student in students[:2]:
        db.session.add(ClassStudent(class_id=beginner_class.class_id, student_id=student.user_id,
                                    course_id=beginner.course_id))
    db.session.commit()

    # A few settings and a week of page view figures per course.
    for course in courses:
        db.session.add_all([
            CourseSetting(course_id=course.course_id, setting_key='allow_waitlist',
                          setting_value='true', setting_type='boolean'),
            CourseSetting(course_id=course.course_id, setting_key='lessons_per_week',
                          setting_value='2', setting_type='number'),
        ])
        for offset in range(7):
            db.session.add(CourseMetric(course_id=course.course_id, metric_name='page_views',
                                        metric_value=Decimal(20 + offset * 3),
                                        metric_date=start - timedelta(days=offset)))
    db.session.commit()

    _logger.info("database seeded", extra={"users": 1 + len(teachers) + len(students),
                                            "courses": len(courses), "classes": len(classes)})


def main() -> None:
    app = create_app()
    with app.app_context():
        seed_data()


if __name__ == '__main__':
    main()
