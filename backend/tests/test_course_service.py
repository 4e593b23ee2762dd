"""
Tests du service des cours (création, contrôles de propriété).
"""

from datetime import date, time

import pytest
from pydantic import ValidationError

from classroll.exceptions import AuthorizationDenied, Conflict, NotFound
from classroll.schemas.course import CourseCreate
from classroll.services.course_service import create_course, get_course, load_course


def course_data(**kwargs) -> CourseCreate:
    values = dict(
        name="Bases de données",
        code="BDD-101",
        semester="2025-S2",
        weekdays=["wed", "MON"],
        start_time=time(9, 0),
        end_time=time(10, 0),
        start_date=date(2025, 3, 3),
        end_date=date(2025, 6, 27),
    )
    values.update(kwargs)
    return CourseCreate(**values)


# --- Schémas ---

def test_jours_normalises():
    assert course_data().weekdays == ["MON", "WED"]


def test_jour_inconnu_rejete():
    with pytest.raises(ValidationError):
        course_data(weekdays=["MON", "LUNDI"])


def test_sans_jour_rejete():
    with pytest.raises(ValidationError):
        course_data(weekdays=[])


def test_periode_inversee_rejetee():
    with pytest.raises(ValidationError):
        course_data(start_date=date(2025, 6, 1), end_date=date(2025, 3, 1))


def test_horaires_inverses_rejetes():
    with pytest.raises(ValidationError):
        course_data(start_time=time(11, 0), end_time=time(10, 0))


# --- Service ---

def test_creation(db, instructor):
    response = create_course(db, course_data(), instructor)

    assert response.instructor_id == instructor.id
    assert response.weekdays == ["MON", "WED"]
    assert get_course(db, response.id).code == "BDD-101"


def test_creation_par_un_etudiant(db, student):
    with pytest.raises(AuthorizationDenied):
        create_course(db, course_data(), student)


def test_code_en_double(db, instructor):
    create_course(db, course_data(), instructor)
    with pytest.raises(Conflict):
        create_course(db, course_data(name="Autre"), instructor)


def test_cours_introuvable(db):
    assert get_course(db, 9999) is None
    with pytest.raises(NotFound):
        load_course(db, 9999)
