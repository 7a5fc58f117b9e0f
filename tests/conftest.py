import os
import sys
from datetime import date
from pathlib import Path
from typing import Generator

import pytest
from werkzeug.security import generate_password_hash

sys.path.append(str(Path(__file__).resolve().parents[1]))

os.environ.pop('DATABASE_URL', None)

from app import create_app
from models import ClassStudent, Course, CourseClass, CourseStudent, Schedule, User, db

PASSWORD = 'secret123'


@pytest.fixture
def app(monkeypatch: pytest.MonkeyPatch) -> Generator:
    monkeypatch.setenv('REQUEST_LOG_SAMPLE_RATE', '1')
    application = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_ENGINE_OPTIONS': {},
        'DEFAULT_CLASS_CAPACITY': 30,
    })
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = {'n': 0}

    def _make(role='student', email=None, full_name=None, user_id=None):
        counter['n'] += 1
        user = User(
            user_id=user_id,
            full_name=full_name or f'{role.title()} {counter["n"]}',
            email=email or f'{role}{counter["n"]}@example.com',
            password=generate_password_hash(PASSWORD),
            role=role,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_course(app):
    counter = {'n': 0}

    def _make(course_id=None, name=None, level='Beginner', is_active=True):
        counter['n'] += 1
        course = Course(course_id=course_id, course_name=name or f'Course {counter["n"]}',
                        level=level, duration_weeks=8, price=100, max_students=30,
                        is_active=is_active)
        db.session.add(course)
        db.session.commit()
        return course

    return _make


@pytest.fixture
def make_class(app):
    counter = {'n': 0}

    def _make(course, teacher, class_id=None, name=None, max_students=30):
        counter['n'] += 1
        course_class = CourseClass(class_id=class_id, class_name=name or f'Class {counter["n"]}',
                                   course_id=course.course_id, teacher_id=teacher.user_id,
                                   start_date=date(2024, 1, 1), end_date=date(2024, 3, 1),
                                   max_students=max_students)
        db.session.add(course_class)
        db.session.commit()
        return course_class

    return _make


@pytest.fixture
def make_schedule(app):
    def _make(course_class, lesson_date):
        schedule = Schedule(class_id=course_class.class_id, lesson_date=lesson_date)
        db.session.add(schedule)
        db.session.commit()
        return schedule

    return _make


@pytest.fixture
def register(app):
    def _register(course, student):
        db.session.add(CourseStudent(course_id=course.course_id, student_id=student.user_id))
        db.session.commit()

    return _register


@pytest.fixture
def place(app):
    def _place(course_class, student):
        db.session.add(ClassStudent(class_id=course_class.class_id, student_id=student.user_id,
                                    course_id=course_class.course_id))
        db.session.commit()

    return _place


@pytest.fixture
def login(client):
    def _login(user):
        response = client.post('/api/auth/login', json={'email': user.email, 'password': PASSWORD})
        assert response.status_code == 200
        return response

    return _login
