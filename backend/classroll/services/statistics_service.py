"""
Statistiques de présence d'un cours, calculées sur le statut dérivé
(une absence justifiée et approuvée compte comme PRESENT).
"""

import logging
from datetime import date
from typing import Dict, Optional

from sqlalchemy.orm import Session

from classroll.models.attendance import ABSENT, LATE, MEDICAL, OFFICIAL, PRESENT
from classroll.schemas.attendance import (
    CourseStatistics,
    DateStatistics,
    StatusCounts,
    StudentStatistics,
)
from classroll.schemas.principal import Principal
from classroll.services.course_service import ensure_course_owner, load_course
from classroll.services.record_service import RecordQuery
from classroll.services.status_resolver import UNCONFIRMED

logger = logging.getLogger(__name__)

_COUNTERS = {
    PRESENT: "present",
    LATE: "late",
    ABSENT: "absent",
    MEDICAL: "medical",
    OFFICIAL: "official",
    UNCONFIRMED: "unconfirmed",
}


def _tally(counts: StatusCounts, status: str) -> None:
    counts.total += 1
    field = _COUNTERS.get(status)
    if field is not None:
        setattr(counts, field, getattr(counts, field) + 1)


def _finalize(counts: StatusCounts) -> None:
    if counts.total:
        counts.attendance_rate = round((counts.present + counts.late) / counts.total * 100, 2)


def course_statistics(
    db: Session,
    course_id: int,
    actor: Principal,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> CourseStatistics:
    """Totaux, répartition par date et par étudiant pour un cours."""
    course = load_course(db, course_id)
    ensure_course_owner(course, actor)

    totals = StatusCounts()
    by_date: Dict[date, DateStatistics] = {}
    by_student: Dict[int, StudentStatistics] = {}

    for view in RecordQuery(db, course_id=course.id, start=start, end=end):
        _tally(totals, view.status)

        if view.date not in by_date:
            by_date[view.date] = DateStatistics(date=view.date)
        _tally(by_date[view.date], view.status)

        if view.student_id not in by_student:
            by_student[view.student_id] = StudentStatistics(student_id=view.student_id)
        _tally(by_student[view.student_id], view.status)

    _finalize(totals)
    for counts in list(by_date.values()) + list(by_student.values()):
        _finalize(counts)

    logger.debug("Statistiques cours %s : %d fiche(s)", course.id, totals.total)
    return CourseStatistics(
        course_id=course.id,
        totals=totals,
        by_date=[by_date[day] for day in sorted(by_date)],
        by_student=[by_student[sid] for sid in sorted(by_student)],
    )
