"""
Service métier pour les cours : création par l'enseignant et contrôles de propriété
partagés par les autres services (calendrier, jetons, fiches, demandes d'absence).
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from classroll.exceptions import AuthorizationDenied, Conflict, NotFound
from classroll.models.course import Course
from classroll.schemas.course import CourseCreate, CourseResponse
from classroll.schemas.principal import Principal
from classroll.services.calendar import format_weekdays

logger = logging.getLogger(__name__)


def create_course(db: Session, data: CourseCreate, actor: Principal) -> CourseResponse:
    """
    Crée un cours dont l'appelant devient l'enseignant responsable.
    Lève AuthorizationDenied si l'appelant n'est pas enseignant,
    Conflict si le code de cours existe déjà.
    """
    if not actor.is_instructor:
        raise AuthorizationDenied("Seul un enseignant peut créer un cours.")

    course = Course(
        name=data.name,
        code=data.code,
        semester=data.semester,
        instructor_id=actor.id,
        weekdays=format_weekdays(data.weekdays),
        start_time=data.start_time,
        end_time=data.end_time,
        start_date=data.start_date,
        end_date=data.end_date,
        room=data.room,
        description=data.description,
        is_active=True,
    )
    db.add(course)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict(f"Un cours avec le code '{data.code}' existe déjà.")
    db.refresh(course)

    logger.info("Cours créé : %s (%s), enseignant %s", course.code, course.id, actor.id)
    return CourseResponse.model_validate(course)


def get_course(db: Session, course_id: int) -> Optional[CourseResponse]:
    """Retourne un cours par son ID, ou None s'il n'existe pas."""
    course = db.get(Course, course_id)
    if course is None:
        return None
    return CourseResponse.model_validate(course)


def load_course(db: Session, course_id: int) -> Course:
    """Charge le modèle Course ou lève NotFound."""
    course = db.get(Course, course_id)
    if course is None:
        raise NotFound(f"Cours {course_id} introuvable.")
    return course


def lock_course(db: Session, course_id: int) -> Course:
    """
    Charge le cours avec SELECT … FOR UPDATE.
    Sérialise les modifications du calendrier et les écritures de fiches d'un même cours :
    une annulation ne peut pas s'intercaler entre la vérification de la date et l'écriture.
    """
    course = db.execute(
        select(Course).where(Course.id == course_id).with_for_update()
    ).scalar()
    if course is None:
        raise NotFound(f"Cours {course_id} introuvable.")
    return course


def ensure_course_owner(course: Course, actor: Principal) -> None:
    """Seul l'enseignant responsable (ou un ADMIN) peut modifier le calendrier ou les fiches."""
    if actor.is_admin:
        return
    if not actor.is_instructor or course.instructor_id != actor.id:
        raise AuthorizationDenied("Action réservée à l'enseignant responsable du cours.")
