from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from cohort_admin.core.rounding import percent, round_half_up, to_decimal
from cohort_admin.core.time_provider import TimeProvider, default_time_provider
from cohort_admin.models import MODULE_COUNT, PERFORMANCE_METRICS, AttendanceRecord, Batch, BatchStatus, Student
from cohort_admin.services.attendance_service import ATTENDED_STATUSES, attendance_percentage_between
from cohort_admin.services.ranking_service import get_rankings_filtered


logger = logging.getLogger(__name__)


def _mean_metric_score(students: list[Student]) -> float:
    if not students:
        return 0.0
    means = [sum((to_decimal(v) for v in row.metrics().values()), Decimal(0)) / len(PERFORMANCE_METRICS) for row in students]
    return round_half_up(sum(means, Decimal(0)) / len(students), 1)


def get_dashboard_stats(db: Session, *, time_provider: TimeProvider = default_time_provider) -> dict:
    today = time_provider.today()
    active_students = db.query(Student).filter(Student.is_active.is_(True)).all()
    active_batches = db.query(func.count(Batch.id)).filter(Batch.status == BatchStatus.ACTIVE.value).scalar() or 0
    return {
        'active_students': len(active_students),
        'active_batches': int(active_batches),
        'monthly_attendance': attendance_percentage_between(db, today.replace(day=1), today),
        'average_performance': _mean_metric_score(active_students),
        'max_score': 10,
    }


def get_batch_overview(db: Session) -> list[dict]:
    batches = db.query(Batch).filter(Batch.status == BatchStatus.ACTIVE.value).order_by(Batch.batch_code.asc()).all()
    if not batches:
        return []
    batch_ids = [batch.id for batch in batches]

    students_by_batch: dict[int, list[Student]] = {batch_id: [] for batch_id in batch_ids}
    for student in db.query(Student).filter(Student.batch_id.in_(batch_ids), Student.is_active.is_(True)).all():
        students_by_batch[student.batch_id].append(student)

    attendance_rows = (
        db.query(AttendanceRecord.batch_id, AttendanceRecord.status, func.count(AttendanceRecord.id))
        .filter(AttendanceRecord.batch_id.in_(batch_ids))
        .group_by(AttendanceRecord.batch_id, AttendanceRecord.status)
        .all()
    )
    totals: dict[int, list[int]] = {batch_id: [0, 0] for batch_id in batch_ids}
    for batch_id, status, count in attendance_rows:
        totals[batch_id][1] += int(count)
        if status in ATTENDED_STATUSES:
            totals[batch_id][0] += int(count)

    overview = []
    for batch in batches:
        students = students_by_batch[batch.id]
        attended, total = totals[batch.id]
        overview.append(
            {
                'id': batch.id,
                'batch_code': batch.batch_code,
                'status': batch.status,
                'current_module': batch.current_module,
                'current_module_name': batch.module_name(batch.current_module),
                'student_count': len(students),
                'progress': percent(batch.current_module, MODULE_COUNT),
                'attendance': percent(attended, total),
                'average_score': _mean_metric_score(students),
            }
        )
    return overview


def get_top_performers(db: Session, limit: int = 5) -> list[dict]:
    ranked = get_rankings_filtered(db, batch_status='active')[: max(0, int(limit))]
    return [
        {
            'id': item['id'],
            'name': f"{item['first_name']} {item['last_name']}".strip(),
            'student_code': item['student_code'],
            'batch_code': item['batch_code'],
            'score': item['overall_score'],
            'rank': item['rank'],
        }
        for item in ranked
    ]
