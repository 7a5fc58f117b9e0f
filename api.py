"""JSON API routes.

Handlers parse the request, call one data operation and serialise its
result. They hold no business rules of their own.

* ``/api/auth/*`` - sign-up, login, logout, current user.
* ``/api/courses`` - public catalogue and student self-registration.
* ``/api/student/*`` - a student's courses, classes and lesson schedule.
* ``/api/admin/*`` - course, setting, user, placement and schedule management
  plus dashboard figures and course metrics.
* ``/api/teacher/*`` - a teacher's classes, rosters, weekly timetable and
  attendance.
"""

from __future__ import annotations

from typing import Any, Dict

from flask import Flask, jsonify, request
from werkzeug.exceptions import BadRequest, NotFound

import analytics
import attendance
import classes
import course_settings
import courses
import enrollment
import users
from auth import current_user_id, login_user, logout_user, role_required
from results import OperationResult

SELF_SERVICE_ROLES = ('student', 'teacher')


def _respond(result: OperationResult, success_status: int = 200):
    status = success_status if result.success else result.http_status
    return jsonify(result.to_dict()), status


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequest('Missing JSON payload')
    return data


def _required_int(data: Dict[str, Any], key: str) -> int:
    try:
        return int(data[key])
    except (KeyError, TypeError, ValueError):
        raise BadRequest(f'{key} is required and must be an integer')


def _week_offset() -> int:
    return request.args.get('weekOffset', 0, type=int) or 0


def _pagination() -> Dict[str, int]:
    page = max(request.args.get('page', 1, type=int) or 1, 1)
    limit = min(max(request.args.get('limit', 20, type=int) or 20, 1), 100)
    return {'limit': limit, 'offset': (page - 1) * limit}


def register_api(app: Flask) -> None:
    _register_auth_routes(app)
    _register_catalogue_routes(app)
    _register_admin_routes(app)
    _register_teacher_routes(app)


def _register_auth_routes(app: Flask) -> None:

    @app.route('/api/auth/signup', methods=['POST'])
    def api_signup():
        data = _json_body()
        role = data.get('role', 'student')
        if role not in SELF_SERVICE_ROLES:
            raise BadRequest('Invalid role selected')
        result = users.create_user(data.get('full_name'), data.get('email'), data.get('password'), role)
        return _respond(result, 201)

    @app.route('/api/auth/login', methods=['POST'])
    def api_login():
        data = _json_body()
        user = users.authenticate(data.get('email'), data.get('password'))
        if user is None:
            return jsonify({'success': False, 'error': 'Invalid email or password'}), 401
        login_user(user)
        return jsonify({'success': True, 'user': user.to_dict()})

    @app.route('/api/auth/logout', methods=['POST'])
    def api_logout():
        logout_user()
        return jsonify({'success': True})

    @app.route('/api/auth/me', methods=['GET'])
    @role_required()
    def api_me():
        user = users.get_user(current_user_id())
        if user is None:
            logout_user()
            raise NotFound('User not found')
        return jsonify({'success': True, 'user': user.to_dict()})


def _register_catalogue_routes(app: Flask) -> None:

    @app.route('/api/courses', methods=['GET'])
    def api_list_courses():
        found = courses.find_courses(level=request.args.get('level'),
                                     search=request.args.get('search'),
                                     active_only=True, **_pagination())
        return jsonify({'courses': found})

    @app.route('/api/courses/<int:course_id>', methods=['GET'])
    def api_get_course(course_id: int):
        course = courses.get_course(course_id)
        if course is None:
            raise NotFound('Course not found')
        course['classes'] = courses.get_course_classes_with_stats(course_id)
        return jsonify({'course': course})

    @app.route('/api/courses/<int:course_id>/register', methods=['POST'])
    @role_required('student')
    def api_register_course(course_id: int):
        return _respond(enrollment.register_student_for_course(course_id, current_user_id()), 201)

    @app.route('/api/courses/<int:course_id>/register', methods=['DELETE'])
    @role_required('student')
    def api_unregister_course(course_id: int):
        return _respond(enrollment.unregister_student_from_course(course_id, current_user_id()))

    @app.route('/api/courses/<int:course_id>/registration', methods=['GET'])
    @role_required('student')
    def api_registration_status(course_id: int):
        status = enrollment.get_registration_status(course_id, current_user_id())
        return jsonify({'registered': status is not None, 'registration': status})

    @app.route('/api/student/courses', methods=['GET'])
    @role_required('student')
    def api_student_courses():
        return jsonify({'courses': enrollment.get_student_courses(current_user_id())})

    @app.route('/api/student/schedule', methods=['GET'])
    @role_required('student')
    def api_student_schedule():
        return jsonify({'schedule': classes.get_student_schedule(current_user_id())})

    @app.route('/api/student/classes', methods=['GET'])
    @role_required('student')
    def api_student_classes():
        return jsonify({'classes': classes.get_student_classes(current_user_id())})

    @app.route('/api/student/classes/<int:class_id>', methods=['GET'])
    @role_required('student')
    def api_student_class(class_id: int):
        return _respond(classes.get_student_class(class_id, current_user_id()))

    @app.route('/api/student/classes/<int:class_id>/schedules', methods=['GET'])
    @role_required('student')
    def api_student_class_schedules(class_id: int):
        return jsonify({'schedules': classes.get_student_class_schedules(class_id, current_user_id())})


def _register_admin_routes(app: Flask) -> None:
    admin_only = role_required('admin')

    @app.route('/api/admin/dashboard', methods=['GET'])
    @admin_only
    def api_admin_dashboard():
        return jsonify({
            'summary': analytics.dashboard_summary(),
            'registrations': analytics.registration_stats(),
            'popular_courses': analytics.course_popularity(),
            'schedule': classes.get_admin_schedule(_week_offset()),
        })

    @app.route('/api/admin/analytics', methods=['GET'])
    @admin_only
    def api_admin_analytics():
        period = request.args.get('period', 'month')
        if period not in analytics.PERIODS:
            raise BadRequest(f"period must be one of: {', '.join(analytics.PERIODS)}")
        return jsonify({
            'attendance': analytics.attendance_summary(period),
            'courses': courses.course_stats(),
            'users': users.user_stats(),
        })

    # Courses
    @app.route('/api/admin/courses', methods=['GET'])
    @admin_only
    def api_admin_courses():
        found = courses.find_courses(level=request.args.get('level'),
                                     search=request.args.get('search'), **_pagination())
        return jsonify({'courses': found, 'stats': courses.course_stats()})

    @app.route('/api/admin/courses', methods=['POST'])
    @admin_only
    def api_admin_create_course():
        return _respond(courses.create_course(_json_body()), 201)

    @app.route('/api/admin/courses/<int:course_id>', methods=['PUT'])
    @admin_only
    def api_admin_update_course(course_id: int):
        return _respond(courses.update_course(course_id, _json_body()))

    @app.route('/api/admin/courses/<int:course_id>', methods=['DELETE'])
    @admin_only
    def api_admin_delete_course(course_id: int):
        return _respond(courses.delete_course(course_id))

    @app.route('/api/admin/courses/status', methods=['PATCH'])
    @admin_only
    def api_admin_course_status():
        data = _json_body()
        return _respond(courses.bulk_update_course_status(data.get('course_ids'),
                                                          data.get('is_active')))

    # Registrations and class placement
    @app.route('/api/admin/courses/<int:course_id>/students', methods=['GET'])
    @admin_only
    def api_admin_course_students(course_id: int):
        return jsonify({
            'students': enrollment.get_course_registered_students(course_id),
            'classes': courses.get_course_classes_with_stats(course_id),
        })

    @app.route('/api/admin/courses/<int:course_id>/assign', methods=['POST'])
    @admin_only
    def api_admin_assign(course_id: int):
        data = _json_body()
        result = enrollment.assign_student_to_class(
            course_id, _required_int(data, 'student_id'), _required_int(data, 'class_id'))
        return _respond(result)

    @app.route('/api/admin/courses/<int:course_id>/unassign', methods=['POST'])
    @admin_only
    def api_admin_unassign(course_id: int):
        data = _json_body()
        return _respond(enrollment.unassign_student_from_class(course_id, _required_int(data, 'student_id')))

    @app.route('/api/admin/registrations', methods=['GET'])
    @admin_only
    def api_admin_registrations():
        return jsonify({'registrations': enrollment.get_all_registrations(),
                        'stats': analytics.registration_stats()})

    # Course settings and metrics
    @app.route('/api/admin/courses/<int:course_id>/settings', methods=['GET'])
    @admin_only
    def api_admin_course_settings(course_id: int):
        return _respond(course_settings.get_course_settings(course_id))

    @app.route('/api/admin/courses/<int:course_id>/settings', methods=['PUT'])
    @admin_only
    def api_admin_replace_course_settings(course_id: int):
        return _respond(course_settings.update_course_settings(course_id, _json_body().get('settings')))

    @app.route('/api/admin/courses/<int:course_id>/settings', methods=['PATCH'])
    @admin_only
    def api_admin_update_course_setting(course_id: int):
        data = _json_body()
        result = course_settings.update_course_setting(course_id, data.get('key'), data.get('value'),
                                                       data.get('type'))
        return _respond(result)

    @app.route('/api/admin/courses/<int:course_id>/analytics', methods=['GET'])
    @admin_only
    def api_admin_course_metrics(course_id: int):
        days = request.args.get('days', 30, type=int)
        return _respond(analytics.get_course_metrics(course_id, days))

    @app.route('/api/admin/courses/<int:course_id>/analytics', methods=['POST'])
    @admin_only
    def api_admin_record_course_metric(course_id: int):
        data = _json_body()
        result = analytics.record_course_metric(course_id, data.get('metric_name'),
                                                data.get('metric_value'), data.get('date'))
        return _respond(result, 201)

    # Classes across all teachers and the weekly timetable
    @app.route('/api/admin/classes', methods=['GET'])
    @admin_only
    def api_admin_classes():
        return jsonify({'classes': classes.get_all_classes()})

    @app.route('/api/admin/schedule', methods=['GET'])
    @admin_only
    def api_admin_week_schedule():
        return jsonify({'week_offset': _week_offset(), **classes.get_admin_schedule(_week_offset())})

    # Users
    @app.route('/api/admin/users', methods=['GET'])
    @admin_only
    def api_admin_users():
        found = users.list_users(search=request.args.get('search'), role=request.args.get('role'))
        return jsonify({'users': found, 'stats': users.user_stats()})

    @app.route('/api/admin/users', methods=['POST'])
    @admin_only
    def api_admin_create_user():
        data = _json_body()
        result = users.create_user(data.get('full_name'), data.get('email'),
                                   data.get('password'), data.get('role'))
        return _respond(result, 201)

    @app.route('/api/admin/users/<int:user_id>', methods=['GET'])
    @admin_only
    def api_admin_get_user(user_id: int):
        user = users.get_user(user_id)
        if user is None:
            raise NotFound('User not found')
        return jsonify({'user': user.to_dict()})

    @app.route('/api/admin/users/<int:user_id>', methods=['PUT'])
    @admin_only
    def api_admin_update_user(user_id: int):
        data = _json_body()
        result = users.update_user(user_id, data.get('full_name'), data.get('email'),
                                   data.get('role'), password=data.get('password'))
        return _respond(result)

    @app.route('/api/admin/users/<int:user_id>', methods=['DELETE'])
    @admin_only
    def api_admin_delete_user(user_id: int):
        if user_id == current_user_id():
            raise BadRequest('You cannot delete your own account')
        return _respond(users.delete_user(user_id))

    # Schedules
    @app.route('/api/admin/schedules', methods=['GET'])
    @admin_only
    def api_admin_schedules():
        try:
            lesson_date = classes.parse_date(request.args.get('date'))
        except ValueError:
            raise BadRequest('Invalid date format, must be YYYY-MM-DD')
        found = classes.list_schedules(lesson_date=lesson_date,
                                       class_id=request.args.get('class_id', type=int))
        return jsonify({'schedules': found})

    @app.route('/api/admin/schedules', methods=['POST'])
    @admin_only
    def api_admin_create_schedule():
        return _respond(classes.create_schedule(_json_body()), 201)

    @app.route('/api/admin/schedules/<int:schedule_id>', methods=['DELETE'])
    @admin_only
    def api_admin_delete_schedule(schedule_id: int):
        return _respond(classes.delete_schedule(schedule_id))


def _register_teacher_routes(app: Flask) -> None:
    teacher_only = role_required('teacher')

    @app.route('/api/teacher/dashboard', methods=['GET'])
    @teacher_only
    def api_teacher_dashboard():
        teacher_id = current_user_id()
        return jsonify({
            'stats': classes.teacher_stats(teacher_id),
            'classes': classes.get_teacher_classes(teacher_id),
            'schedule': classes.get_teacher_schedule(teacher_id, _week_offset()),
        })

    @app.route('/api/teacher/classes', methods=['GET'])
    @teacher_only
    def api_teacher_classes():
        return jsonify({'classes': classes.get_teacher_classes(current_user_id())})

    @app.route('/api/teacher/classes', methods=['POST'])
    @teacher_only
    def api_teacher_create_class():
        return _respond(classes.create_teacher_class(current_user_id(), _json_body()), 201)

    @app.route('/api/teacher/classes/<int:class_id>', methods=['GET'])
    @teacher_only
    def api_teacher_get_class(class_id: int):
        return _respond(classes.get_teacher_class(class_id, current_user_id()))

    @app.route('/api/teacher/classes/<int:class_id>', methods=['PUT'])
    @teacher_only
    def api_teacher_update_class(class_id: int):
        return _respond(classes.update_teacher_class(class_id, current_user_id(), _json_body()))

    @app.route('/api/teacher/classes/<int:class_id>', methods=['DELETE'])
    @teacher_only
    def api_teacher_delete_class(class_id: int):
        return _respond(classes.delete_teacher_class(class_id, current_user_id()))

    @app.route('/api/teacher/classes/<int:class_id>/students', methods=['GET'])
    @teacher_only
    def api_teacher_class_students(class_id: int):
        return _respond(classes.get_class_students(class_id, current_user_id()))

    @app.route('/api/teacher/schedule', methods=['GET'])
    @teacher_only
    def api_teacher_schedule():
        teacher_id = current_user_id()
        return jsonify({
            'week_offset': _week_offset(),
            **classes.get_teacher_schedule(teacher_id, _week_offset()),
            'upcoming_classes': classes.get_teacher_upcoming_classes(teacher_id),
        })

    @app.route('/api/teacher/attendance', methods=['GET'])
    @teacher_only
    def api_get_attendance():
        class_id = request.args.get('class_id', type=int)
        date_str = request.args.get('date')
        if not class_id or not date_str:
            raise BadRequest('Missing class_id or date parameter')
        return _respond(attendance.get_attendance_by_date(class_id, current_user_id(), date_str))

    @app.route('/api/teacher/attendance', methods=['POST'])
    @teacher_only
    def api_save_attendance():
        data = _json_body()
        records = data.get('attendance', [])
        if not isinstance(records, list):
            raise BadRequest('attendance must be a list')
        result = attendance.save_attendance(data.get('class_id'), current_user_id(),
                                            data.get('date'), records)
        return _respond(result)


__all__ = ['register_api']
