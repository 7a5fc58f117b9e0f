"""Database models for the English course system.

SQLAlchemy (through Flask-SQLAlchemy) maps the following tables:

* :class:`User` - admins, teachers and students in one table, told apart by
  ``role``.
* :class:`Course` - a catalogue entry (level, duration, price, capacity).
* :class:`CourseClass` - a concrete group of a course taught by one teacher.
* :class:`CourseStudent` - a student's registration for a course.
* :class:`ClassStudent` - a registered student's placement in one class of
  that course.
* :class:`Schedule` - one lesson occurrence of a class.
* :class:`Attendance` - a student's status for one lesson occurrence.
* :class:`CourseSetting` - a typed key/value setting of a course.
* :class:`CourseMetric` - one daily value of a named course metric.

Referential rules (a course cannot be deleted while registrations or classes
point at it, a class cannot be deleted while students are placed in it) are
checked by the data operations before any delete. Unique constraints back the
one-registration-per-course and one-class-per-course rules at the storage
layer.
"""

from datetime import date, datetime, time
from decimal import Decimal

from flask_sqlalchemy import SQLAlchemy


db = SQLAlchemy()

ROLES = ('admin', 'teacher', 'student')
LEVELS = ('Beginner', 'Intermediate', 'Advanced')
ATTENDANCE_STATUSES = ('present', 'absent', 'late')
SETTING_TYPES = ('string', 'number', 'boolean', 'json')

DEFAULT_MAX_STUDENTS = 30


class User(db.Model):
    __tablename__ = 'users'

    user_id: int = db.Column(db.Integer, primary_key=True)
    full_name: str = db.Column(db.String(100), nullable=False)
    email: str = db.Column(db.String(120), unique=True, nullable=False)
    password: str = db.Column(db.String(255), nullable=False)  # werkzeug hash
    role: str = db.Column(db.Enum(*ROLES, name='user_role'), nullable=False)
    created_at: datetime = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    taught_classes = db.relationship('CourseClass', backref='teacher', lazy=True)

    def to_dict(self) -> dict:
        return {
            'user_id': self.user_id,
            'full_name': self.full_name,
            'email': self.email,
            'role': self.role,
            'created_at': self.created_at,
        }

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class Course(db.Model):
    __tablename__ = 'courses'

    course_id: int = db.Column(db.Integer, primary_key=True)
    course_name: str = db.Column(db.String(150), unique=True, nullable=False)
    description: str = db.Column(db.Text, nullable=True)
    level: str = db.Column(db.Enum(*LEVELS, name='course_level'), nullable=False)
    duration_weeks: int = db.Column(db.Integer, nullable=False)
    price: Decimal = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    max_students: int = db.Column(db.Integer, nullable=False, default=DEFAULT_MAX_STUDENTS)
    is_active: bool = db.Column(db.Boolean, nullable=False, default=True)
    created_at: datetime = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    classes = db.relationship('CourseClass', backref='course', lazy=True)

    def to_dict(self) -> dict:
        return {
            'course_id': self.course_id,
            'course_name': self.course_name,
            'description': self.description,
            'level': self.level,
            'duration_weeks': self.duration_weeks,
            'price': float(self.price) if self.price is not None else None,
            'max_students': self.max_students,
            'is_active': bool(self.is_active),
            'created_at': self.created_at,
        }

    def __repr__(self) -> str:
        return f"<Course {self.course_name} ({self.level})>"


class CourseClass(db.Model):
    """A class (teaching group) of a course.

    ``max_students`` may be NULL on rows created before the column existed;
    the data layer then falls back to the configured default capacity.
    """

    __tablename__ = 'classes'

    class_id: int = db.Column(db.Integer, primary_key=True)
    class_name: str = db.Column(db.String(150), nullable=False)
    course_id: int = db.Column(db.Integer, db.ForeignKey('courses.course_id'), nullable=False, index=True)
    teacher_id: int = db.Column(db.Integer, db.ForeignKey('users.user_id'), nullable=False, index=True)
    start_date: date = db.Column(db.Date, nullable=True)
    end_date: date = db.Column(db.Date, nullable=True)
    max_students: int = db.Column(db.Integer, nullable=True, default=DEFAULT_MAX_STUDENTS,
                                  server_default=str(DEFAULT_MAX_STUDENTS))
    created_at: datetime = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at: datetime = db.Column(db.DateTime, nullable=True, onupdate=datetime.utcnow)

    schedules = db.relationship('Schedule', backref='course_class', lazy=True,
                                order_by='Schedule.lesson_date')

    def to_dict(self) -> dict:
        return {
            'class_id': self.class_id,
            'class_name': self.class_name,
            'course_id': self.course_id,
            'teacher_id': self.teacher_id,
            'start_date': self.start_date,
            'end_date': self.end_date,
            'max_students': self.max_students,
        }

    def __repr__(self) -> str:
        return f"<CourseClass {self.class_name} course={self.course_id}>"


class CourseStudent(db.Model):
    """Course-level registration; at most one per (course, student)."""

    __tablename__ = 'course_students'

    id: int = db.Column(db.Integer, primary_key=True)
    course_id: int = db.Column(db.Integer, db.ForeignKey('courses.course_id'), nullable=False, index=True)
    student_id: int = db.Column(db.Integer, db.ForeignKey('users.user_id'), nullable=False, index=True)
    registered_at: datetime = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    student = db.relationship('User', lazy=True)

    __table_args__ = (db.UniqueConstraint('course_id', 'student_id', name='uix_course_student'),)

    def __repr__(self) -> str:
        return f"<CourseStudent course={self.course_id} student={self.student_id}>"


class ClassStudent(db.Model):
    """Class-level placement.

    ``course_id`` repeats the parent class's course so that the
    ``uix_class_student_course`` constraint can reject a second placement of
    the same student within one course even when two requests race past the
    application-level check.
    """

    __tablename__ = 'class_students'

    id: int = db.Column(db.Integer, primary_key=True)
    class_id: int = db.Column(db.Integer, db.ForeignKey('classes.class_id'), nullable=False, index=True)
    student_id: int = db.Column(db.Integer, db.ForeignKey('users.user_id'), nullable=False, index=True)
    course_id: int = db.Column(db.Integer, db.ForeignKey('courses.course_id'), nullable=False)
    joined_at: datetime = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    course_class = db.relationship('CourseClass', lazy=True)
    student = db.relationship('User', lazy=True)

    __table_args__ = (
        db.UniqueConstraint('class_id', 'student_id', name='uix_class_student'),
        db.UniqueConstraint('course_id', 'student_id', name='uix_class_student_course'),
    )

    def __repr__(self) -> str:
        return f"<ClassStudent class={self.class_id} student={self.student_id}>"


class Schedule(db.Model):
    __tablename__ = 'schedules'

    schedule_id: int = db.Column(db.Integer, primary_key=True)
    class_id: int = db.Column(db.Integer, db.ForeignKey('classes.class_id'), nullable=False, index=True)
    lesson_date: date = db.Column(db.Date, nullable=False)
    start_time: time = db.Column(db.Time, nullable=True)
    end_time: time = db.Column(db.Time, nullable=True)
    room_or_link: str = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            'schedule_id': self.schedule_id,
            'class_id': self.class_id,
            'lesson_date': self.lesson_date,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'room_or_link': self.room_or_link,
        }

    def __repr__(self) -> str:
        return f"<Schedule class={self.class_id} date={self.lesson_date}>"


class Attendance(db.Model):
    """Attendance of one student at one lesson occurrence.

    Records for an occurrence are always replaced as a whole, never merged.
    """

    __tablename__ = 'attendance'

    attendance_id: int = db.Column(db.Integer, primary_key=True)
    schedule_id: int = db.Column(db.Integer, db.ForeignKey('schedules.schedule_id'), nullable=False, index=True)
    student_id: int = db.Column(db.Integer, db.ForeignKey('users.user_id'), nullable=False)
    status: str = db.Column(db.Enum(*ATTENDANCE_STATUSES, name='attendance_status'), nullable=False)
    note: str = db.Column(db.String(255), nullable=True)
    recorded_at: datetime = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint('schedule_id', 'student_id', name='uix_attendance_unique'),)

    def __repr__(self) -> str:
        return (f"<Attendance schedule={self.schedule_id} student={self.student_id} "
                f"status={self.status}>")


class CourseSetting(db.Model):
    """Free-form course configuration stored as text with its value type."""

    __tablename__ = 'course_settings'

    setting_id: int = db.Column(db.Integer, primary_key=True)
    course_id: int = db.Column(db.Integer, db.ForeignKey('courses.course_id'), nullable=False, index=True)
    setting_key: str = db.Column(db.String(100), nullable=False)
    setting_value: str = db.Column(db.Text, nullable=False)
    setting_type: str = db.Column(db.Enum(*SETTING_TYPES, name='setting_type'), nullable=False,
                                  default='string')
    created_at: datetime = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at: datetime = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                                     onupdate=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint('course_id', 'setting_key', name='uix_course_setting'),)

    def __repr__(self) -> str:
        return f"<CourseSetting course={self.course_id} key={self.setting_key}>"


class CourseMetric(db.Model):
    __tablename__ = 'course_analytics'

    analytics_id: int = db.Column(db.Integer, primary_key=True)
    course_id: int = db.Column(db.Integer, db.ForeignKey('courses.course_id'), nullable=False)
    metric_name: str = db.Column(db.String(100), nullable=False)
    metric_value: Decimal = db.Column(db.Numeric(10, 2), nullable=False)
    metric_date: date = db.Column(db.Date, nullable=False)
    created_at: datetime = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('course_id', 'metric_name', 'metric_date', name='uix_course_metric_day'),
    )

    def __repr__(self) -> str:
        return f"<CourseMetric course={self.course_id} {self.metric_name}@{self.metric_date}>"
