import tempfile
import unittest
from datetime import date, datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from cohort_admin.core.time_provider import TimeProvider
from cohort_admin.db import Base
from cohort_admin.models import Student
from cohort_admin.services.batch_service import complete_batch, create_batch, update_batch_status
from cohort_admin.services.ranking_service import get_rankings_filtered
from cohort_admin.services.student_service import create_student


class FixedTimeProvider(TimeProvider):
    def now(self) -> datetime:
        return datetime(2025, 1, 5, 9, 0, tzinfo=timezone.utc)


class BatchToRankingScenarioTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_scenario.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def test_completed_students_remain_ranked(self):
        clock = FixedTimeProvider()
        db = self._session_factory()
        try:
            batch = create_batch(
                db,
                batch_code='2025-Jan',
                start_date=date(2025, 1, 5),
                end_date=date(2025, 6, 29),
                module_names=['Foundations', 'Web Projects', 'Capstone'],
                status='upcoming',
                time_provider=clock,
            )
            for first_name in ('Amira', 'Bilal', 'Chen'):
                create_student(db, first_name=first_name, last_name='Doe', batch_id=batch.id, time_provider=clock)

            update_batch_status(db, batch.id, 'active', time_provider=clock)
            flags = [row.is_active for row in db.query(Student).filter(Student.batch_id == batch.id).all()]
            self.assertEqual(flags, [True, True, True])

            row = complete_batch(db, batch.id, time_provider=clock)
            self.assertEqual(row.status, 'completed')
            self.assertEqual(row.current_module, 3)
            flags = [row.is_active for row in db.query(Student).filter(Student.batch_id == batch.id).all()]
            self.assertEqual(flags, [False, False, False])

            ranked = get_rankings_filtered(db, batch_status='completed')
            self.assertEqual(sorted(item['first_name'] for item in ranked), ['Amira', 'Bilal', 'Chen'])
            self.assertTrue(all(item['is_active'] is False for item in ranked))
            self.assertEqual(get_rankings_filtered(db, batch_status='active'), [])
        finally:
            db.close()


if __name__ == '__main__':
    unittest.main()
