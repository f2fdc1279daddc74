import tempfile
import unittest
from datetime import date, datetime, timezone
from pathlib import Path
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from cohort_admin.core.time_provider import TimeProvider
from cohort_admin.db import Base
from cohort_admin.models import AttendanceRecord, Batch, Student, Teacher, TeacherAttendance
from cohort_admin.services import student_service
from cohort_admin.services.student_service import (
    create_student,
    delete_student,
    generate_unique_student_code,
    get_students_stats,
    list_students,
    student_to_dict,
    update_student,
    update_student_performance,
)
from cohort_admin.services.teacher_service import (
    create_teacher,
    generate_unique_teacher_code,
    get_teacher_attendance_percentage,
    get_teacher_attendance_stats,
    list_departments,
    list_teacher_attendance,
    list_teachers,
    mark_teacher_attendance,
    update_teacher,
)


class FixedTimeProvider(TimeProvider):
    def __init__(self, now_value: datetime):
        self._now_value = now_value

    def now(self) -> datetime:
        return self._now_value


CLOCK = FixedTimeProvider(datetime(2025, 1, 9, 10, 0, tzinfo=timezone.utc))


class _DatabaseTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_people.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        db = self._session_factory()
        try:
            for table in (TeacherAttendance, Teacher, AttendanceRecord, Student, Batch):
                db.query(table).delete()
            db.commit()
        finally:
            db.close()


class StudentServiceTests(_DatabaseTestCase):
    def _batch(self, db, code='2025-Jan', max_students=30):
        row = Batch(
            batch_code=code,
            start_date=date(2025, 1, 5),
            end_date=date(2025, 6, 30),
            status='active',
            max_students=max_students,
            module_1='A',
            module_2='B',
            module_3='C',
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

    def test_create_student_assigns_year_code(self):
        db = self._session_factory()
        try:
            batch = self._batch(db)
            row = create_student(
                db,
                first_name=' Amira ',
                last_name='Khan',
                batch_id=batch.id,
                gender='Female',
                email='Amira@Example.com',
                time_provider=CLOCK,
            )
            self.assertRegex(row.student_code, r'^STU-2025-\d{4}$')
            self.assertEqual(row.first_name, 'Amira')
            self.assertEqual(row.email, 'amira@example.com')
            self.assertEqual(row.gender, 'female')
            self.assertTrue(row.is_active)
            payload = student_to_dict(row, attendance_percentage=0)
            self.assertEqual(payload['batch_code'], '2025-Jan')
            self.assertEqual(payload['technical_skills'], 0.0)
        finally:
            db.close()

    def test_code_generation_gives_up_after_configured_attempts(self):
        db = self._session_factory()
        try:
            batch = self._batch(db)
            db.add(Student(student_code='STU-2025-1234', first_name='Taken', batch_id=batch.id))
            db.commit()
            with patch.object(student_service.random, 'randint', return_value=1234):
                with self.assertRaisesRegex(ValueError, 'Unable to generate unique student ID'):
                    generate_unique_student_code(db, time_provider=CLOCK)
            with patch.object(student_service.random, 'randint', side_effect=[1234, 5678]):
                self.assertEqual(generate_unique_student_code(db, time_provider=CLOCK), 'STU-2025-5678')
        finally:
            db.close()

    def test_batch_capacity_is_enforced(self):
        db = self._session_factory()
        try:
            batch = self._batch(db, max_students=1)
            create_student(db, first_name='A', last_name='One', batch_id=batch.id, time_provider=CLOCK)
            with self.assertRaisesRegex(ValueError, r'Batch 2025-Jan is full \(1 students\)'):
                create_student(db, first_name='B', last_name='Two', batch_id=batch.id, time_provider=CLOCK)
            with self.assertRaisesRegex(ValueError, 'Batch not found'):
                create_student(db, first_name='C', last_name='Three', batch_id=9999, time_provider=CLOCK)
        finally:
            db.close()

    def test_moving_student_checks_target_capacity(self):
        db = self._session_factory()
        try:
            source = self._batch(db, code='2025-Jan')
            full = self._batch(db, code='2025-Feb', max_students=1)
            mover = create_student(db, first_name='M', last_name='Mover', batch_id=source.id, time_provider=CLOCK)
            create_student(db, first_name='S', last_name='Sitter', batch_id=full.id, time_provider=CLOCK)
            with self.assertRaisesRegex(ValueError, 'is full'):
                update_student(db, mover.id, {'batch_id': full.id})
            row = update_student(db, mover.id, {'last_name': 'Moved', 'is_active': False})
            self.assertEqual(row.last_name, 'Moved')
            self.assertFalse(row.is_active)
            with self.assertRaisesRegex(ValueError, 'Unknown student fields'):
                update_student(db, mover.id, {'student_code': 'X'})
        finally:
            db.close()

    def test_performance_bounds(self):
        db = self._session_factory()
        try:
            batch = self._batch(db)
            row = create_student(db, first_name='P', last_name='Perf', batch_id=batch.id, time_provider=CLOCK)
            updated = update_student_performance(db, row.id, {'technical_skills': 9.5, 'creativity': 0})
            self.assertEqual(updated.technical_skills, 9.5)
            with self.assertRaisesRegex(ValueError, 'between 0 and 10'):
                update_student_performance(db, row.id, {'leadership': 10.5})
            with self.assertRaisesRegex(ValueError, 'between 0 and 10'):
                update_student_performance(db, row.id, {'leadership': -1})
            with self.assertRaisesRegex(ValueError, 'Unknown performance metrics'):
                update_student_performance(db, row.id, {'charisma': 5})
        finally:
            db.close()

    def test_list_and_stats(self):
        db = self._session_factory()
        try:
            batch = self._batch(db)
            first = create_student(db, first_name='Amira', last_name='Khan', batch_id=batch.id, time_provider=CLOCK)
            second = create_student(db, first_name='Bilal', last_name='Aziz', batch_id=batch.id, time_provider=CLOCK)
            update_student(db, second.id, {'is_active': False})
            update_student_performance(db, first.id, {name: 7 for name in ('creativity', 'leadership', 'behavior')})

            self.assertEqual([row.id for row in list_students(db, status='active')], [first.id])
            self.assertEqual([row.id for row in list_students(db, status='inactive')], [second.id])
            self.assertEqual([row.id for row in list_students(db, search='aziz')], [second.id])
            with self.assertRaisesRegex(ValueError, 'status must be one of'):
                list_students(db, status='graduated')

            stats = get_students_stats(db)
            self.assertEqual(stats['total_students'], 2)
            self.assertEqual(stats['active_students'], 1)
            # Amira averages 21/7 = 3.0, Bilal 0.0
            self.assertEqual(stats['average_performance'], 1.5)
            self.assertEqual(stats['average_attendance'], 0)

            delete_student(db, second.id)
            with self.assertRaisesRegex(ValueError, 'Student not found'):
                delete_student(db, second.id)
        finally:
            db.close()


class TeacherServiceTests(_DatabaseTestCase):
    def test_teacher_codes_fill_first_free_slot(self):
        db = self._session_factory()
        try:
            first = create_teacher(db, {'first_name': 'Tariq'}, time_provider=CLOCK)
            second = create_teacher(db, {'first_name': 'Uma'}, time_provider=CLOCK)
            self.assertEqual(first.teacher_code, 'TCH-2025-001')
            self.assertEqual(second.teacher_code, 'TCH-2025-002')
            db.delete(first)
            db.commit()
            self.assertEqual(generate_unique_teacher_code(db, time_provider=CLOCK), 'TCH-2025-001')
        finally:
            db.close()

    def test_teacher_validation(self):
        db = self._session_factory()
        try:
            with self.assertRaisesRegex(ValueError, 'First name is required'):
                create_teacher(db, {'first_name': '  '}, time_provider=CLOCK)
            with self.assertRaisesRegex(ValueError, 'Age must be between 18 and 100'):
                create_teacher(db, {'first_name': 'Young', 'age': 17}, time_provider=CLOCK)
            with self.assertRaisesRegex(ValueError, 'Invalid email'):
                create_teacher(db, {'first_name': 'Mail', 'email': 'nope'}, time_provider=CLOCK)
            row = create_teacher(db, {'first_name': 'Vera', 'age': 100, 'department': 'Science'}, time_provider=CLOCK)
            with self.assertRaisesRegex(ValueError, 'Age must be between 18 and 100'):
                update_teacher(db, row.id, {'age': 101})
            db.expire_all()
            self.assertEqual(db.get(Teacher, row.id).age, 100)

            with self.assertRaisesRegex(ValueError, 'Invalid email'):
                update_teacher(db, row.id, {'department': 'Art', 'phone': '555-0100', 'email': 'broken'})
            kept = db.get(Teacher, row.id)
            self.assertEqual((kept.department, kept.phone, kept.email), ('Science', None, None))
            self.assertFalse(db.dirty)

            updated = update_teacher(db, row.id, {'email': ' Vera@Example.com ', 'department': 'Art'})
            self.assertEqual((updated.email, updated.department), ('vera@example.com', 'Art'))
        finally:
            db.close()

    def test_listing_and_departments(self):
        db = self._session_factory()
        try:
            create_teacher(db, {'first_name': 'Ana', 'department': 'Math'}, time_provider=CLOCK)
            create_teacher(db, {'first_name': 'Ben', 'department': 'Art'}, time_provider=CLOCK)
            retired = create_teacher(db, {'first_name': 'Cal', 'department': 'History'}, time_provider=CLOCK)
            update_teacher(db, retired.id, {'is_active': False})

            self.assertEqual(list_departments(db), ['Art', 'Math'])
            self.assertEqual([row.first_name for row in list_teachers(db, is_active=True)], ['Ana', 'Ben'])
            self.assertEqual([row.first_name for row in list_teachers(db, department='History')], ['Cal'])
            self.assertEqual([row.first_name for row in list_teachers(db, search='TCH-2025-002')], ['Ben'])
        finally:
            db.close()

    def test_teacher_attendance_uses_teacher_days(self):
        db = self._session_factory()
        try:
            teacher = create_teacher(db, {'first_name': 'Ana'}, time_provider=CLOCK)
            with self.assertRaisesRegex(ValueError, 'Saturday, Monday, and Thursday. You selected Sunday'):
                mark_teacher_attendance(db, teacher_id=teacher.id, target_date=date(2025, 1, 5), status='present')

            saturday = mark_teacher_attendance(
                db,
                teacher_id=teacher.id,
                target_date=date(2025, 1, 4),
                status='present',
                marked_by=1,
                time_provider=CLOCK,
            )
            self.assertEqual(saturday.day_of_week, 7)
            again = mark_teacher_attendance(
                db,
                teacher_id=teacher.id,
                target_date=date(2025, 1, 4),
                status='absent',
                time_provider=CLOCK,
            )
            self.assertEqual(again.id, saturday.id)
            self.assertEqual(again.status, 'absent')
            mark_teacher_attendance(db, teacher_id=teacher.id, target_date=date(2025, 1, 6), status='late', time_provider=CLOCK)
            mark_teacher_attendance(db, teacher_id=teacher.id, target_date=date(2025, 1, 9), status='present', time_provider=CLOCK)

            self.assertEqual(get_teacher_attendance_percentage(db, teacher.id), 67)
            self.assertEqual(len(list_teacher_attendance(db, teacher_id=teacher.id)), 3)
            self.assertEqual(len(list_teacher_attendance(db, date_from=date(2025, 1, 6))), 2)
            self.assertEqual(len(list_teacher_attendance(db, status='absent')), 1)

            stats = get_teacher_attendance_stats(db, time_provider=CLOCK)
            self.assertEqual(stats, {'total_teachers': 1, 'present_today': 1, 'absent_today': 0, 'late_today': 0})
            with self.assertRaisesRegex(ValueError, 'Teacher not found'):
                mark_teacher_attendance(db, teacher_id=9999, target_date=date(2025, 1, 4), status='present')
        finally:
            db.close()


if __name__ == '__main__':
    unittest.main()
