"""Class-day schedules for attendance.

Students and teachers are configured independently (``STUDENT_CLASS_WEEKDAYS``
and ``TEACHER_CLASS_WEEKDAYS``). Both use Python ``weekday()`` numbering in
configuration, while attendance rows store ``day_of_week`` as 1=Sunday ...
7=Saturday.
"""
from __future__ import annotations

from datetime import date

from cohort_admin.config import settings


_DAY_NAMES = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']


def parse_weekdays(raw: str) -> tuple[int, ...]:
    days: list[int] = []
    for part in (raw or '').split(','):
        part = part.strip()
        if not part:
            continue
        value = int(part)
        if value < 0 or value > 6:
            raise ValueError('weekday must be between 0 and 6')
        if value not in days:
            days.append(value)
    return tuple(days)


class ClassDaySchedule:
    def __init__(self, label: str, weekdays: tuple[int, ...]):
        self.label = label
        self.weekdays = weekdays

    def is_class_day(self, target: date) -> bool:
        return target.weekday() in self.weekdays

    def day_names(self) -> list[str]:
        return [_DAY_NAMES[day] for day in self.weekdays]

    def validate(self, target: date) -> int:
        if not self.is_class_day(target):
            names = self.day_names()
            readable = ', '.join(names[:-1]) + f', and {names[-1]}' if len(names) > 1 else ''.join(names)
            raise ValueError(
                f'Attendance can only be marked for {readable}. You selected {_DAY_NAMES[target.weekday()]}.'
            )
        return day_of_week(target)


def day_of_week(target: date) -> int:
    return target.isoweekday() % 7 + 1


def student_schedule() -> ClassDaySchedule:
    return ClassDaySchedule('student', parse_weekdays(settings.student_class_weekdays))


def teacher_schedule() -> ClassDaySchedule:
    return ClassDaySchedule('teacher', parse_weekdays(settings.teacher_class_weekdays))
