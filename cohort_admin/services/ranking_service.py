"""Student ranking.

Students of active and completed batches are scored with a fixed weighted sum of
their seven performance metrics, paired with their attendance percentage, and
ranked 1..N by score. Upcoming batches never take part.
"""
from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from cohort_admin.core.rounding import round_half_up, to_decimal
from cohort_admin.models import PERFORMANCE_METRICS, Batch, BatchStatus, Student
from cohort_admin.services.attendance_service import attendance_percentages


logger = logging.getLogger(__name__)

SCORE_WEIGHTS = {
    'creativity': Decimal('0.15'),
    'leadership': Decimal('0.15'),
    'behavior': Decimal('0.10'),
    'presentation': Decimal('0.15'),
    'communication': Decimal('0.15'),
    'technical_skills': Decimal('0.20'),
    'general_performance': Decimal('0.10'),
}

RANKING_STATUS_FILTERS = {
    'all': (BatchStatus.ACTIVE.value, BatchStatus.COMPLETED.value),
    'active': (BatchStatus.ACTIVE.value,),
    'completed': (BatchStatus.COMPLETED.value,),
}

CATEGORY_LABELS = {
    'technical_skills': 'Technical Skills',
    'communication': 'Communication',
    'creativity': 'Creativity',
    'leadership': 'Leadership',
    'behavior': 'Behavior',
    'presentation': 'Presentation',
    'general_performance': 'General Performance',
}


def calculate_overall_score(metrics: dict) -> float:
    weighted = sum(
        (to_decimal(metrics.get(name) or 0) * weight for name, weight in SCORE_WEIGHTS.items()),
        Decimal(0),
    )
    return round_half_up(weighted, 1)


def _clean_status_filter(batch_status: str | None) -> str:
    value = str(batch_status or 'all').strip().lower()
    if value not in RANKING_STATUS_FILTERS:
        raise ValueError('batch_status must be one of: all, active, completed')
    return value


def _clean_batch_filter(batch) -> int | None:
    if batch is None or batch == '' or batch == 'all':
        return None
    try:
        return int(batch)
    except (TypeError, ValueError) as exc:
        raise ValueError('batch must be a batch id or "all"') from exc


def _keep_for_activity(status_filter: str, student: Student, batch: Batch) -> bool:
    if status_filter == 'completed':
        return True
    if status_filter == 'active':
        return bool(student.is_active)
    if batch.status == BatchStatus.COMPLETED.value:
        return True
    return batch.status == BatchStatus.ACTIVE.value and bool(student.is_active)


def _matches_search(student: Student, term: str) -> bool:
    haystack = (student.first_name or '', student.last_name or '', student.student_code or '')
    return any(term in value.lower() for value in haystack)


def _ranked_view(student: Student, batch: Batch, attendance: int) -> dict:
    metrics = student.metrics()
    return {
        'id': student.id,
        'student_code': student.student_code,
        'first_name': student.first_name,
        'last_name': student.last_name,
        'batch_id': batch.id,
        'batch_code': batch.batch_code,
        'batch_status': batch.status,
        'is_active': bool(student.is_active),
        'overall_score': calculate_overall_score(metrics),
        'attendance_percentage': attendance,
        'technical_score': metrics['technical_skills'],
        'communication_score': metrics['communication'],
        **metrics,
    }


def get_rankings_filtered(db: Session, *, search: str | None = None, batch_status: str | None = 'all', batch=None) -> list[dict]:
    status_filter = _clean_status_filter(batch_status)
    batch_id = _clean_batch_filter(batch)

    query = (
        db.query(Student, Batch)
        .join(Batch, Batch.id == Student.batch_id)
        .filter(Batch.status.in_(RANKING_STATUS_FILTERS[status_filter]))
    )
    if batch_id is not None:
        query = query.filter(Student.batch_id == batch_id)
    rows = query.order_by(Student.first_name.asc(), Student.id.asc()).all()

    rows = [(student, row_batch) for student, row_batch in rows if _keep_for_activity(status_filter, student, row_batch)]
    term = (search or '').strip().lower()
    if term:
        rows = [(student, row_batch) for student, row_batch in rows if _matches_search(student, term)]

    percentages = attendance_percentages(db, [student.id for student, _ in rows])
    ranked = [_ranked_view(student, row_batch, percentages.get(student.id, 0)) for student, row_batch in rows]
    # equal scores fall back to the student code, then the row id
    ranked.sort(key=lambda item: (-item['overall_score'], item['student_code'] or '', item['id']))
    for index, item in enumerate(ranked):
        item['rank'] = index + 1
    logger.debug('rankings_computed status=%s batch=%s count=%s', status_filter, batch_id, len(ranked))
    return ranked


def get_rankings_stats(db: Session, *, search: str | None = None, batch_status: str | None = 'all', batch=None) -> dict:
    ranked = get_rankings_filtered(db, search=search, batch_status=batch_status, batch=batch)
    active_batches = db.query(func.count(Batch.id)).filter(Batch.status == BatchStatus.ACTIVE.value).scalar() or 0
    completed_batches = db.query(func.count(Batch.id)).filter(Batch.status == BatchStatus.COMPLETED.value).scalar() or 0

    if not ranked:
        return {
            'top_performer': {'name': 'N/A', 'score': 0.0},
            'average_score': 0.0,
            'total_students': 0,
            'active_batches': int(active_batches),
            'completed_batches': int(completed_batches),
        }

    top = ranked[0]
    total = sum((to_decimal(item['overall_score']) for item in ranked), Decimal(0))
    return {
        'top_performer': {
            'name': f"{top['first_name']} {top['last_name']}".strip(),
            'score': top['overall_score'],
        },
        'average_score': round_half_up(total / len(ranked), 1),
        'total_students': len(ranked),
        'active_batches': int(active_batches),
        'completed_batches': int(completed_batches),
    }


def get_performance_categories(db: Session, *, search: str | None = None, batch_status: str | None = 'all', batch=None) -> list[dict]:
    ranked = get_rankings_filtered(db, search=search, batch_status=batch_status, batch=batch)
    categories = []
    for name in PERFORMANCE_METRICS:
        if ranked:
            total = sum((to_decimal(item[name]) for item in ranked), Decimal(0))
            score = round_half_up(total / len(ranked), 1)
        else:
            score = 0.0
        categories.append({'key': name, 'category': CATEGORY_LABELS[name], 'score': score})
    return categories


def get_batches_for_rankings(db: Session, batch_status: str | None = 'all') -> list[Batch]:
    status_filter = _clean_status_filter(batch_status)
    return (
        db.query(Batch)
        .filter(Batch.status.in_(RANKING_STATUS_FILTERS[status_filter]))
        .order_by(Batch.batch_code.asc())
        .all()
    )
