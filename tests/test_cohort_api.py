import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from cohort_admin.db import Base, get_db
from cohort_admin.models import AdminProfile, AttendanceRecord, Batch, Invitation, Student, Teacher, TeacherAttendance
from cohort_admin.routers import attendance, batches, dashboard, invitations, rankings, students, teachers
from cohort_admin.services import email_service
from cohort_admin.services.auth_service import issue_session_token


class CohortApiTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_cohort_api.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

        app = FastAPI()
        for module in (attendance, batches, dashboard, invitations, rankings, students, teachers):
            app.include_router(module.router)

        def override_get_db():
            db = cls._session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        cls.client = TestClient(app)

    @classmethod
    def tearDownClass(cls):
        cls.client.close()
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        db = self._session_factory()
        try:
            for table in (TeacherAttendance, Teacher, AttendanceRecord, Student, Batch, Invitation, AdminProfile):
                db.query(table).delete()
            db.commit()
            profiles = {
                role: AdminProfile(email=f'{role}@example.com', first_name=role.title(), last_name='User', role=role)
                for role in ('super_admin', 'admin', 'viewer')
            }
            db.add_all(profiles.values())
            db.commit()
            self.headers = {
                role: {'Authorization': f"Bearer {issue_session_token(profile)['token']}"}
                for role, profile in profiles.items()
            }
        finally:
            db.close()

    def _create_batch(self, code='2025-Jan', headers=None):
        resp = self.client.post(
            '/api/batches',
            json={
                'batch_code': code,
                'start_date': '2025-01-05',
                'end_date': '2025-06-29',
                'module_names': ['Foundations', 'Web Projects', 'Capstone'],
            },
            headers=headers or self.headers['admin'],
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        return resp.json()

    def _create_student(self, batch_id, first_name, last_name):
        resp = self.client.post(
            '/api/students',
            json={'first_name': first_name, 'last_name': last_name, 'batch_id': batch_id},
            headers=self.headers['admin'],
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        return resp.json()

    def test_requests_without_session_are_unauthorized(self):
        self.assertEqual(self.client.get('/api/batches').status_code, 401)
        self.assertEqual(self.client.get('/api/rankings', headers={'Authorization': 'Bearer junk'}).status_code, 401)

    def test_viewer_can_read_but_not_write(self):
        batch = self._create_batch()
        self.assertEqual(self.client.get('/api/batches', headers=self.headers['viewer']).status_code, 200)
        self.assertEqual(self.client.get('/api/rankings', headers=self.headers['viewer']).status_code, 200)

        blocked = self.client.put(
            f"/api/batches/{batch['id']}/status",
            json={'status': 'completed'},
            headers=self.headers['viewer'],
        )
        self.assertEqual(blocked.status_code, 403)
        create = self.client.post(
            '/api/students',
            json={'first_name': 'V', 'last_name': 'W', 'batch_id': batch['id']},
            headers=self.headers['viewer'],
        )
        self.assertEqual(create.status_code, 403)

    def test_batch_errors_map_to_status_codes(self):
        batch = self._create_batch()
        missing = self.client.get('/api/batches/9999', headers=self.headers['admin'])
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()['detail'], 'Batch not found')

        out_of_range = self.client.put(
            f"/api/batches/{batch['id']}/module",
            json={'module': 4},
            headers=self.headers['admin'],
        )
        self.assertEqual(out_of_range.status_code, 400)
        self.assertEqual(out_of_range.json()['detail'], 'Module must be between 1 and 3')

        duplicate = self.client.post(
            '/api/batches',
            json={
                'batch_code': '2025-Jan',
                'start_date': '2025-01-05',
                'end_date': '2025-06-29',
                'module_names': ['A', 'B', 'C'],
            },
            headers=self.headers['admin'],
        )
        self.assertEqual(duplicate.status_code, 400)

        bad_status = self.client.put(
            f"/api/batches/{batch['id']}/status",
            json={'status': 'archived'},
            headers=self.headers['admin'],
        )
        self.assertEqual(bad_status.status_code, 422)

    def test_completed_batch_students_stay_in_completed_rankings(self):
        batch = self._create_batch()
        self.assertEqual(batch['status'], 'upcoming')
        created = [
            self._create_student(batch['id'], 'Amira', 'Khan'),
            self._create_student(batch['id'], 'Bilal', 'Aziz'),
            self._create_student(batch['id'], 'Chen', 'Li'),
        ]

        before = self.client.get('/api/rankings', headers=self.headers['admin']).json()['items']
        self.assertEqual(before, [])

        started = self.client.post(f"/api/batches/{batch['id']}/start", headers=self.headers['admin'])
        self.assertEqual(started.json()['status'], 'active')

        scores = {'Amira': 9, 'Bilal': 7, 'Chen': 8}
        for student in created:
            value = scores[student['first_name']]
            resp = self.client.put(
                f"/api/students/{student['id']}/performance",
                json={name: value for name in ('creativity', 'leadership', 'behavior', 'presentation', 'communication', 'technical_skills', 'general_performance')},
                headers=self.headers['admin'],
            )
            self.assertEqual(resp.status_code, 200, resp.text)

        marked = self.client.post(
            '/api/attendance/bulk',
            json={
                'batch_id': batch['id'],
                'attendance_date': '2025-01-05',
                'records': [
                    {'student_id': created[0]['id'], 'status': 'present'},
                    {'student_id': created[1]['id'], 'status': 'late'},
                    {'student_id': created[2]['id'], 'status': 'absent'},
                ],
            },
            headers=self.headers['admin'],
        )
        self.assertEqual(marked.status_code, 200, marked.text)

        active_view = self.client.get('/api/rankings', params={'batch_status': 'active'}, headers=self.headers['admin'])
        self.assertEqual(len(active_view.json()['items']), 3)
        top = self.client.get('/api/dashboard/top-performers', headers=self.headers['admin']).json()['items']
        self.assertEqual(top[0]['name'], 'Amira Khan')
        overview = self.client.get('/api/dashboard/batches', headers=self.headers['admin']).json()['items']
        self.assertEqual(overview[0]['student_count'], 3)
        self.assertEqual(overview[0]['attendance'], 67)
        self.assertEqual(overview[0]['progress'], 33)

        completed = self.client.put(
            f"/api/batches/{batch['id']}/status",
            json={'status': 'completed'},
            headers=self.headers['admin'],
        )
        self.assertEqual(completed.status_code, 200)

        listed = self.client.get('/api/students', params={'batch_id': batch['id']}, headers=self.headers['admin']).json()['items']
        self.assertTrue(all(not item['is_active'] for item in listed))

        ranked = self.client.get('/api/rankings', params={'batch_status': 'completed'}, headers=self.headers['admin']).json()['items']
        self.assertEqual([item['first_name'] for item in ranked], ['Amira', 'Chen', 'Bilal'])
        self.assertEqual([item['rank'] for item in ranked], [1, 2, 3])
        self.assertEqual([item['attendance_percentage'] for item in ranked], [100, 0, 100])

        self.assertEqual(self.client.get('/api/rankings', params={'batch_status': 'active'}, headers=self.headers['admin']).json()['items'], [])
        all_view = self.client.get('/api/rankings', headers=self.headers['admin']).json()['items']
        self.assertEqual(len(all_view), 3)
        self.assertEqual(self.client.get('/api/dashboard/batches', headers=self.headers['admin']).json()['items'], [])

        reactivated = self.client.post(
            f"/api/batches/{batch['id']}/reactivate",
            json={'target_status': 'active'},
            headers=self.headers['admin'],
        )
        self.assertEqual(reactivated.status_code, 200)
        listed = self.client.get('/api/students', params={'status': 'active'}, headers=self.headers['admin']).json()['items']
        self.assertEqual(len(listed), 3)

    def test_rankings_reject_unknown_filter(self):
        resp = self.client.get('/api/rankings', params={'batch_status': 'upcoming'}, headers=self.headers['admin'])
        self.assertEqual(resp.status_code, 400)

    def test_attendance_rejects_non_class_day(self):
        batch = self._create_batch()
        student = self._create_student(batch['id'], 'Amira', 'Khan')
        resp = self.client.post(
            '/api/attendance',
            json={
                'student_id': student['id'],
                'batch_id': batch['id'],
                'attendance_date': '2025-01-06',
                'status': 'present',
            },
            headers=self.headers['admin'],
        )
        self.assertEqual(resp.status_code, 400)
        self.assertIn('You selected Monday', resp.json()['detail'])
        days = self.client.get('/api/attendance/class-days', headers=self.headers['viewer']).json()['days']
        self.assertEqual(days, ['Sunday', 'Tuesday', 'Thursday'])

    def test_teacher_management_is_super_admin_only(self):
        payload = {'first_name': 'Tariq', 'department': 'Science', 'age': 40}
        self.assertEqual(self.client.post('/api/teachers', json=payload, headers=self.headers['admin']).status_code, 403)
        created = self.client.post('/api/teachers', json=payload, headers=self.headers['super_admin'])
        self.assertEqual(created.status_code, 200, created.text)
        teacher_id = created.json()['id']

        self.assertEqual(self.client.get('/api/teachers', headers=self.headers['viewer']).status_code, 200)
        mark = {'teacher_id': teacher_id, 'attendance_date': '2025-01-04', 'status': 'present'}
        self.assertEqual(self.client.post('/api/teachers/attendance', json=mark, headers=self.headers['admin']).status_code, 403)
        marked = self.client.post('/api/teachers/attendance', json=mark, headers=self.headers['super_admin'])
        self.assertEqual(marked.status_code, 200, marked.text)
        self.assertEqual(marked.json()['day_of_week'], 7)

        listed = self.client.get(f'/api/teachers/{teacher_id}', headers=self.headers['viewer']).json()
        self.assertEqual(listed['attendance_percentage'], 100)
        self.assertEqual(self.client.get('/api/teachers/9999', headers=self.headers['viewer']).status_code, 404)

    def test_invitations_require_super_admin(self):
        body = {'email': 'new.viewer@example.com', 'role': 'viewer'}
        self.assertEqual(self.client.post('/api/invitations', json=body, headers=self.headers['admin']).status_code, 403)
        with patch.object(email_service, 'send_invitation_email', return_value={'success': False, 'error': 'down'}):
            resp = self.client.post('/api/invitations', json=body, headers=self.headers['super_admin'])
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertIn('/signup?invite=', resp.json()['invite_link'])

        listed = self.client.get('/api/invitations', headers=self.headers['super_admin']).json()['items']
        self.assertEqual(listed[0]['inviter_name'], 'Super_Admin User')
        stats = self.client.get('/api/invitations/stats', headers=self.headers['super_admin']).json()
        self.assertEqual(stats['pending'], 1)

        invitation_id = resp.json()['invitation']['id']
        self.assertEqual(self.client.delete(f'/api/invitations/{invitation_id}', headers=self.headers['super_admin']).status_code, 200)
        self.assertEqual(self.client.delete(f'/api/invitations/{invitation_id}', headers=self.headers['super_admin']).status_code, 404)


if __name__ == '__main__':
    unittest.main()
