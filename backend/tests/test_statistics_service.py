"""
Tests des statistiques de présence d'un cours (statut dérivé).
"""

from datetime import date

import pytest

from classroll.exceptions import AuthorizationDenied, NotFound
from classroll.schemas.attendance import RecordUpsert
from classroll.schemas.leave_request import LeaveDecision, LeaveRequestCreate
from classroll.services.leave_service import decide_leave_request, file_leave_request
from classroll.services.record_service import upsert_record
from classroll.services.statistics_service import course_statistics

MONDAY = date(2025, 3, 3)
WEDNESDAY = date(2025, 3, 5)


def upsert(db, course, actor, student_id, day, raw_status):
    return upsert_record(
        db, RecordUpsert(student_id=student_id, course_id=course.id, date=day, raw_status=raw_status), actor
    )


def test_cours_sans_fiche(db, course, instructor):
    stats = course_statistics(db, course.id, instructor)

    assert stats.totals.total == 0
    assert stats.totals.attendance_rate == 0.0
    assert stats.by_date == []
    assert stats.by_student == []


def test_totaux_et_taux(db, course, instructor):
    upsert(db, course, instructor, 1, MONDAY, "PRESENT")
    upsert(db, course, instructor, 2, MONDAY, "LATE")
    upsert(db, course, instructor, 3, MONDAY, "ABSENT")
    upsert(db, course, instructor, 1, WEDNESDAY, "MEDICAL")

    stats = course_statistics(db, course.id, instructor)

    assert stats.totals.total == 4
    assert stats.totals.present == 1
    assert stats.totals.late == 1
    assert stats.totals.absent == 1
    assert stats.totals.medical == 1
    assert stats.totals.attendance_rate == 50.0

    assert [d.date for d in stats.by_date] == [MONDAY, WEDNESDAY]
    assert stats.by_date[0].total == 3
    assert round(stats.by_date[0].attendance_rate, 2) == 66.67

    student_one = next(s for s in stats.by_student if s.student_id == 1)
    assert (student_one.total, student_one.present, student_one.medical) == (2, 1, 1)


def test_absence_approuvee_comptee_presente(db, course, instructor, student):
    record = upsert(db, course, instructor, student.id, MONDAY, "ABSENT")
    leave = file_leave_request(db, LeaveRequestCreate(record_id=record.id, start_date=MONDAY, reason="Malade"), student)
    decide_leave_request(db, leave.id, LeaveDecision(decision="APPROVED"), instructor)

    stats = course_statistics(db, course.id, instructor)

    assert stats.totals.present == 1
    assert stats.totals.absent == 0
    assert stats.totals.attendance_rate == 100.0


def test_filtre_de_periode(db, course, instructor):
    upsert(db, course, instructor, 1, MONDAY, "PRESENT")
    upsert(db, course, instructor, 1, WEDNESDAY, "ABSENT")

    stats = course_statistics(db, course.id, instructor, start=WEDNESDAY, end=WEDNESDAY)
    assert stats.totals.total == 1
    assert stats.totals.absent == 1


def test_reserve_a_l_enseignant_responsable(db, course, other_instructor, student):
    with pytest.raises(AuthorizationDenied):
        course_statistics(db, course.id, other_instructor)
    with pytest.raises(AuthorizationDenied):
        course_statistics(db, course.id, student)


def test_cours_inconnu(db, instructor):
    with pytest.raises(NotFound):
        course_statistics(db, 9999, instructor)
