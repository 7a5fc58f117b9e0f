from datetime import date

from models import Attendance, ClassStudent


def test_signup_login_and_me(client):
    response = client.post('/api/auth/signup', json={
        'full_name': 'Dana Kim', 'email': 'dana@example.com', 'password': 'secret123', 'role': 'student'})
    assert response.status_code == 201
    assert response.get_json()['user']['email'] == 'dana@example.com'

    assert client.post('/api/auth/login', json={'email': 'dana@example.com', 'password': 'nope'}).status_code == 401
    assert client.post('/api/auth/login', json={'email': 'dana@example.com', 'password': 'secret123'}).status_code == 200

    me = client.get('/api/auth/me').get_json()
    assert me['user']['role'] == 'student'

    client.post('/api/auth/logout')
    assert client.get('/api/auth/me').status_code == 401


def test_signup_cannot_create_admin(client):
    response = client.post('/api/auth/signup', json={
        'full_name': 'Eve', 'email': 'eve@example.com', 'password': 'secret123', 'role': 'admin'})
    assert response.status_code == 400


def test_signup_rejects_non_string_fields(client):
    for payload in ({'full_name': 5, 'email': 'x@example.com'}, {'full_name': 'X', 'email': ['x@example.com']}):
        response = client.post('/api/auth/signup', json={**payload, 'password': 'secret123', 'role': 'student'})
        assert response.status_code == 400
    assert client.post('/api/auth/login', json={'email': 5, 'password': 'secret123'}).status_code == 401


def test_role_gating(client, make_user, login):
    assert client.get('/api/admin/dashboard').status_code == 401
    login(make_user('student'))
    response = client.get('/api/admin/dashboard')
    assert response.status_code == 403
    assert response.get_json()['success'] is False


def test_public_catalogue(client, make_user, make_course, make_class):
    course = make_course(name='Foundations')
    make_course(name='Retired', is_active=False)
    make_class(course, make_user('teacher'), name='Foundations A')

    listing = client.get('/api/courses').get_json()
    assert [c['course_name'] for c in listing['courses']] == ['Foundations']

    detail = client.get(f'/api/courses/{course.course_id}').get_json()['course']
    assert detail['classes'][0]['class_name'] == 'Foundations A'
    assert detail['classes'][0]['start_date'] == '2024-01-01'
    assert client.get('/api/courses/999').status_code == 404


def test_student_registration_flow(client, make_user, make_course, login):
    student = make_user('student')
    course = make_course()
    login(student)

    assert client.post(f'/api/courses/{course.course_id}/register').status_code == 201
    duplicate = client.post(f'/api/courses/{course.course_id}/register')
    assert duplicate.status_code == 409
    assert duplicate.get_json() == {'success': False, 'error': 'Already registered for this course'}

    status = client.get(f'/api/courses/{course.course_id}/registration').get_json()
    assert status['registered'] is True
    assert len(client.get('/api/student/courses').get_json()['courses']) == 1

    assert client.delete(f'/api/courses/{course.course_id}/register').status_code == 200
    assert client.delete(f'/api/courses/{course.course_id}/register').status_code == 404


def test_admin_assignment_endpoints(client, make_user, make_course, make_class, register, login):
    admin, teacher, student = make_user('admin'), make_user('teacher'), make_user('student')
    course = make_course()
    first = make_class(course, teacher, name='Group A')
    second = make_class(course, teacher, name='Group B')
    register(course, student)
    login(admin)

    url = f'/api/admin/courses/{course.course_id}/assign'
    ok = client.post(url, json={'student_id': student.user_id, 'class_id': first.class_id})
    assert ok.status_code == 200
    assert ok.get_json()['assignment']['class_id'] == first.class_id

    again = client.post(url, json={'student_id': student.user_id, 'class_id': second.class_id})
    assert again.status_code == 409
    assert again.get_json()['error'] == 'Student is already assigned to class: Group A'

    assert client.post(url, json={'student_id': student.user_id}).status_code == 400

    unassign = f'/api/admin/courses/{course.course_id}/unassign'
    assert client.post(unassign, json={'student_id': student.user_id}).status_code == 200
    assert client.post(unassign, json={'student_id': student.user_id}).status_code == 200
    assert ClassStudent.query.count() == 0


def test_admin_delete_course_with_registrations(client, make_user, make_course, register, login):
    course = make_course()
    register(course, make_user('student'))
    login(make_user('admin'))

    response = client.delete(f'/api/admin/courses/{course.course_id}')

    assert response.status_code == 409
    assert 'registered for this course' in response.get_json()['error']


def test_admin_course_and_user_management(client, make_user, login):
    login(make_user('admin'))
    created = client.post('/api/admin/courses', json={
        'course_name': 'IELTS Prep', 'level': 'Advanced', 'duration_weeks': 6, 'price': 300})
    assert created.status_code == 201
    course_id = created.get_json()['course']['course_id']

    listing = client.get('/api/admin/courses').get_json()
    assert listing['stats']['total_courses'] == 1
    assert client.patch('/api/admin/courses/status',
                        json={'course_ids': [course_id], 'is_active': False}).get_json()['updated'] == 1

    user = client.post('/api/admin/users', json={
        'full_name': 'New Admin', 'email': 'boss@example.com', 'password': 'secret123', 'role': 'admin'})
    assert user.status_code == 201
    assert client.get('/api/admin/users?role=admin').get_json()['stats']['by_role']['admin'] == 2


def test_teacher_attendance_endpoints(client, make_user, make_course, make_class, make_schedule, login):
    teacher, student = make_user('teacher'), make_user('student')
    course_class = make_class(make_course(), teacher)
    make_schedule(course_class, date(2024, 1, 10))
    login(teacher)

    missing = client.post('/api/teacher/attendance', json={
        'class_id': course_class.class_id, 'date': '2024-01-11', 'attendance': []})
    assert missing.status_code == 404
    assert 'Available dates: 2024-01-10' in missing.get_json()['error']

    saved = client.post('/api/teacher/attendance', json={
        'class_id': course_class.class_id, 'date': '2024-01-10',
        'attendance': [{'student_id': student.user_id, 'status': 'present', 'note': 'on time'}]})
    assert saved.status_code == 200
    assert Attendance.query.count() == 1

    fetched = client.get(f'/api/teacher/attendance?class_id={course_class.class_id}&date=2024-01-10')
    assert fetched.get_json()['attendance'] == [
        {'student_id': student.user_id, 'status': 'present', 'note': 'on time'}]
    assert client.get('/api/teacher/attendance?class_id=1').status_code == 400


def test_teacher_class_crud(client, make_user, make_course, login):
    teacher = make_user('teacher')
    course = make_course()
    login(teacher)

    created = client.post('/api/teacher/classes', json={
        'class_name': 'Evening', 'course_id': course.course_id, 'max_students': 12})
    assert created.status_code == 201
    class_id = created.get_json()['class_id']

    dashboard = client.get('/api/teacher/dashboard').get_json()
    assert dashboard['stats']['total_classes'] == 1
    assert dashboard['classes'][0]['max_students'] == 12
    assert client.get(f'/api/teacher/classes/{class_id}/students').get_json()['students'] == []
    assert client.delete(f'/api/teacher/classes/{class_id}').status_code == 200
    assert client.get(f'/api/teacher/classes/{class_id}').status_code == 404


def test_admin_course_settings_and_metrics(client, make_user, make_course, login):
    course = make_course()
    login(make_user('admin'))
    url = f'/api/admin/courses/{course.course_id}'

    replaced = client.put(f'{url}/settings', json={'settings': {'allow_waitlist': True, 'lessons_per_week': 2}})
    assert replaced.status_code == 200
    assert client.patch(f'{url}/settings', json={'key': 'level_test', 'value': 'yes'}).status_code == 200
    assert client.put(f'{url}/settings', json={}).status_code == 400
    settings = client.get(f'{url}/settings').get_json()['settings']
    assert settings == {'allow_waitlist': True, 'lessons_per_week': 2, 'level_test': 'yes'}
    assert client.get('/api/admin/courses/999/settings').status_code == 404

    today = date.today().isoformat()
    recorded = client.post(f'{url}/analytics', json={'metric_name': 'page_views', 'metric_value': 42})
    assert recorded.status_code == 201
    assert recorded.get_json()['metric_date'] == today
    assert client.post(f'{url}/analytics', json={'metric_name': 'page_views'}).status_code == 400

    metrics = client.get(f'{url}/analytics?days=7').get_json()
    assert metrics['metrics'] == {'page_views': [{'value': 42.0, 'date': today}]}
    assert client.get(f'{url}/analytics?days=400').status_code == 400


def test_admin_classes_and_week_schedule(client, make_user, make_course, make_class, make_schedule, login):
    course_class = make_class(make_course(name='Listening'), make_user('teacher', full_name='Ms Park'))
    make_schedule(course_class, date.today())
    login(make_user('admin'))

    listing = client.get('/api/admin/classes').get_json()['classes']
    assert listing == [{'class_id': course_class.class_id, 'class_name': course_class.class_name,
                        'course_id': course_class.course_id, 'course_name': 'Listening',
                        'teacher_name': 'Ms Park'}]

    week = client.get('/api/admin/schedule').get_json()
    assert week['week_offset'] == 0
    assert [lesson['class_id'] for lesson in week['lessons']] == [course_class.class_id]
    assert client.get('/api/admin/schedule?weekOffset=1').get_json()['lessons'] == []
    assert client.get('/api/admin/schedule?weekOffset=soon').get_json()['week_offset'] == 0

    dashboard = client.get('/api/admin/dashboard').get_json()
    assert dashboard['registrations'] == {'total': 0, 'assigned': 0, 'unassigned': 0}
    assert len(dashboard['schedule']['lessons']) == 1


def test_teacher_week_schedule(client, make_user, make_course, make_class, make_schedule, login):
    teacher = make_user('teacher')
    course_class = make_class(make_course(), teacher)
    make_schedule(course_class, date.today())
    login(teacher)

    response = client.get('/api/teacher/schedule').get_json()

    assert response['week_offset'] == 0
    assert [lesson['class_id'] for lesson in response['lessons']] == [course_class.class_id]
    assert response['upcoming_classes'][0]['next_lesson'] == date.today().isoformat()


def test_student_class_endpoints(client, make_user, make_course, make_class, make_schedule, place, login):
    teacher, student = make_user('teacher'), make_user('student')
    course = make_course()
    joined = make_class(course, teacher, name='Joined')
    other = make_class(course, teacher, name='Other')
    place(joined, student)
    make_schedule(joined, date(2024, 1, 8))
    login(student)

    listing = client.get('/api/student/classes').get_json()['classes']
    assert [item['class_name'] for item in listing] == ['Joined']
    assert client.get(f'/api/student/classes/{joined.class_id}').get_json()['course_class']['class_name'] == 'Joined'
    assert client.get(f'/api/student/classes/{other.class_id}').status_code == 404
    lessons = client.get(f'/api/student/classes/{joined.class_id}/schedules').get_json()['schedules']
    assert [lesson['lesson_date'] for lesson in lessons] == ['2024-01-08']
    assert client.get(f'/api/student/classes/{other.class_id}/schedules').get_json()['schedules'] == []
