"""
Service métier pour le calendrier d'un cours : exceptions (annulation / rattrapage),
résolution d'une date et génération des séances du motif hebdomadaire.

Invariants garantis par la BDD (et vérifiés en amont pour des messages lisibles) :
- UNIQUE(course_id, date)          → une seule exception par date
- UNIQUE(related_exception_id)     → un seul rattrapage par annulation
En cas de création concurrente, le perdant reçoit l'IntegrityError → Conflict / AlreadyLinked.

Toute modification du calendrier verrouille la ligne du cours (lock_course), comme
les écritures de fiches : une annulation et un pointage sur la même date sont sérialisés.
"""

import logging
from datetime import date
from typing import Iterable, Iterator, List, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from classroll.exceptions import (
    AlreadyLinked,
    Conflict,
    HasAttendanceRecords,
    HasDependentMakeup,
    InvalidMakeupDate,
    InvalidRange,
    InvalidWeekday,
    NotCancelled,
    NotFound,
    OutOfRange,
    ValidationError,
)
from classroll.models.attendance import AttendanceRecord
from classroll.models.course import Course
from classroll.models.schedule_exception import CANCELLATION, MAKEUP, ScheduleException
from classroll.schemas.principal import Principal
from classroll.schemas.schedule import (
    CANCELLED,
    REGULAR,
    GeneratedOccurrence,
    OccurrenceView,
    ScheduleExceptionCreate,
    ScheduleExceptionResponse,
    ScheduleExceptionUpdate,
)
from classroll.services.calendar import (
    in_course_range,
    is_meeting_day,
    iter_meeting_dates,
    resolve_occurrence,
    week_number,
)
from classroll.services.course_service import ensure_course_owner, load_course, lock_course

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------
# Lecture
# ----------------------------------------------------------------

def find_exception(db: Session, course_id: int, day: date) -> Optional[ScheduleException]:
    return db.execute(
        select(ScheduleException).where(
            ScheduleException.course_id == course_id,
            ScheduleException.date == day,
        )
    ).scalar()


def find_partner(db: Session, exception: ScheduleException) -> Optional[ScheduleException]:
    """Annulation remplacée (pour un MAKEUP) ou rattrapage lié (pour une CANCELLATION)."""
    if exception.exception_type == MAKEUP:
        if exception.related_exception_id is None:
            return None
        return db.get(ScheduleException, exception.related_exception_id)
    return db.execute(
        select(ScheduleException).where(ScheduleException.related_exception_id == exception.id)
    ).scalar()


def resolve_for_date(db: Session, course: Course, day: date) -> OccurrenceView:
    """Résout une date pour un cours déjà chargé (utilisé par les jetons et les fiches)."""
    exception = find_exception(db, course.id, day)
    partner = find_partner(db, exception) if exception is not None else None
    return resolve_occurrence(course, day, exception, partner)


def get_occurrence(db: Session, course_id: int, day: date) -> Optional[OccurrenceView]:
    """Retourne la sémantique d'une date pour un cours, ou None si le cours est introuvable."""
    course = db.get(Course, course_id)
    if course is None:
        return None
    return resolve_for_date(db, course, day)


def list_exceptions(
    db: Session,
    course_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[ScheduleExceptionResponse]:
    """Liste les exceptions d'un cours, triées par date (filtre de période optionnel)."""
    load_course(db, course_id)

    query = select(ScheduleException).where(ScheduleException.course_id == course_id)
    if start is not None:
        query = query.where(ScheduleException.date >= start)
    if end is not None:
        query = query.where(ScheduleException.date <= end)

    exceptions = db.execute(query.order_by(ScheduleException.date)).scalars().all()
    return [_to_response(db, e) for e in exceptions]


# ----------------------------------------------------------------
# Création / modification / suppression
# ----------------------------------------------------------------

def create_exception(
    db: Session,
    course_id: int,
    data: ScheduleExceptionCreate,
    actor: Principal,
) -> ScheduleExceptionResponse:
    """
    Enregistre une annulation ou un rattrapage à une date donnée.

    Validations communes :
    1. Le cours existe et l'appelant en est responsable
    2. La date est dans la période du cours
    3. Aucune exception n'existe déjà à cette date (Conflict)

    Annulation : la date doit être un jour du motif (InvalidWeekday) et
    ne doit porter aucune fiche de présence (HasAttendanceRecords).

    Rattrapage : related_date doit porter une annulation (NotCancelled) sans
    rattrapage existant (AlreadyLinked) ; la date du rattrapage doit être
    postérieure à la date annulée (InvalidMakeupDate).
    """
    course = lock_course(db, course_id)
    ensure_course_owner(course, actor)

    if not in_course_range(course, data.date):
        raise OutOfRange(
            f"La date {data.date} est hors de la période du cours "
            f"({course.start_date} → {course.end_date})."
        )

    if find_exception(db, course_id, data.date) is not None:
        raise Conflict(f"Une exception existe déjà le {data.date} pour ce cours.")

    if data.exception_type == CANCELLATION:
        exception = _build_cancellation(db, course, data)
    else:
        exception = _build_makeup(db, course, data)

    db.add(exception)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        _raise_creation_conflict(db, course_id, data)
    db.refresh(exception)

    logger.info(
        "Exception %s créée : cours %s, %s (semaine %s)",
        exception.exception_type, course_id, exception.date, exception.week,
    )
    return _to_response(db, exception)


def update_exception(
    db: Session,
    exception_id: int,
    data: ScheduleExceptionUpdate,
    actor: Principal,
) -> ScheduleExceptionResponse:
    """
    Modifie la date, l'horaire, le motif ou les notes d'une exception.
    Le type et le lien annulation ↔ rattrapage ne changent jamais.

    Changement de date :
    - la nouvelle date doit être dans la période du cours (OutOfRange) et libre (Conflict)
    - aucune fiche ne doit se rapporter à l'exception (HasAttendanceRecords)
    - annulation : jour du motif sans fiche, antérieur au rattrapage lié
    - rattrapage : postérieur à la date annulée (InvalidMakeupDate)
    """
    exception = db.get(ScheduleException, exception_id)
    if exception is None:
        raise NotFound(f"Exception {exception_id} introuvable.")

    course = lock_course(db, exception.course_id)
    ensure_course_owner(course, actor)

    if exception.exception_type == CANCELLATION and (data.start_time is not None or data.end_time is not None):
        raise ValidationError("Une annulation n'a pas d'horaire.")

    start_time = data.start_time or exception.start_time
    end_time = data.end_time or exception.end_time
    if start_time is not None and end_time is not None and end_time <= start_time:
        raise ValidationError("L'heure de fin doit être postérieure à l'heure de début.")

    if data.date is not None and data.date != exception.date:
        _move_exception(db, course, exception, data.date)

    exception.start_time = start_time
    exception.end_time = end_time

    if data.reason is not None:
        exception.reason = data.reason
    if data.notes is not None:
        exception.notes = data.notes

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Une autre exception occupe déjà cette date pour ce cours.")
    db.refresh(exception)

    logger.info("Exception %s modifiée (cours %s, %s)", exception_id, exception.course_id, exception.date)
    return _to_response(db, exception)


def delete_exception(db: Session, exception_id: int, actor: Principal) -> None:
    """
    Supprime une exception.
    Bloqué si c'est une annulation avec un rattrapage lié (HasDependentMakeup)
    ou si des fiches de présence s'y rapportent (HasAttendanceRecords).
    """
    exception = db.get(ScheduleException, exception_id)
    if exception is None:
        raise NotFound(f"Exception {exception_id} introuvable.")

    course = lock_course(db, exception.course_id)
    ensure_course_owner(course, actor)

    if exception.exception_type == CANCELLATION:
        makeup = find_partner(db, exception)
        if makeup is not None:
            raise HasDependentMakeup(
                f"Cette annulation a un rattrapage lié (exception {makeup.id}). "
                "Supprimez d'abord le rattrapage."
            )

    record_count = _count_records(db, exception)
    if record_count > 0:
        raise HasAttendanceRecords(
            f"Impossible de supprimer cette exception : {record_count} fiche(s) de présence s'y rapportent."
        )

    course_id, day = exception.course_id, exception.date
    db.delete(exception)
    try:
        db.commit()
    except IntegrityError:
        # Fiche créée sur le rattrapage entre le comptage et la suppression (FK RESTRICT)
        db.rollback()
        raise HasAttendanceRecords(
            "Impossible de supprimer cette exception : des fiches de présence s'y rapportent."
        )
    logger.info("Exception %s supprimée (cours %s, %s)", exception_id, course_id, day)


# ----------------------------------------------------------------
# Génération des séances
# ----------------------------------------------------------------

def bulk_generate(
    db: Session,
    course_id: int,
    start: date,
    end: date,
    skip_weeks: Optional[Iterable[int]] = None,
) -> Iterator[GeneratedOccurrence]:
    """
    Énumère les séances du motif hebdomadaire dans [start, end], hors semaines ignorées.
    Rien n'est persisté : chaque séance est annotée REGULAR ou CANCELLED.

    Les erreurs (cours introuvable, période inversée) sont levées immédiatement ;
    seule l'énumération est paresseuse.
    """
    if end < start:
        raise InvalidRange("La date de fin doit être postérieure ou égale à la date de début.")
    course = load_course(db, course_id)

    cancelled_dates = set(
        db.execute(
            select(ScheduleException.date).where(
                ScheduleException.course_id == course_id,
                ScheduleException.exception_type == CANCELLATION,
                ScheduleException.date >= start,
                ScheduleException.date <= end,
            )
        ).scalars().all()
    )

    return (
        GeneratedOccurrence(
            date=day,
            week=week,
            kind=CANCELLED if day in cancelled_dates else REGULAR,
        )
        for day, week in iter_meeting_dates(course, start, end, skip_weeks)
    )


# ----------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------

def _build_cancellation(db: Session, course: Course, data: ScheduleExceptionCreate) -> ScheduleException:
    if not is_meeting_day(course, data.date):
        raise InvalidWeekday(
            f"Le {data.date} n'est pas un jour de cours ({course.weekdays})."
        )

    record_count = db.execute(
        select(func.count())
        .select_from(AttendanceRecord)
        .where(
            AttendanceRecord.course_id == course.id,
            AttendanceRecord.date == data.date,
        )
    ).scalar() or 0

    if record_count > 0:
        raise HasAttendanceRecords(
            f"Impossible d'annuler le {data.date} : {record_count} fiche(s) de présence existent déjà."
        )

    return ScheduleException(
        course_id=course.id,
        date=data.date,
        exception_type=CANCELLATION,
        week=week_number(course.start_date, data.date),
        reason=data.reason or "Annulation",
        notes=data.notes,
    )


def _build_makeup(db: Session, course: Course, data: ScheduleExceptionCreate) -> ScheduleException:
    cancellation = find_exception(db, course.id, data.related_date)
    if cancellation is None or cancellation.exception_type != CANCELLATION:
        raise NotCancelled(f"Aucune annulation enregistrée le {data.related_date}.")

    if find_partner(db, cancellation) is not None:
        raise AlreadyLinked(f"L'annulation du {data.related_date} a déjà un rattrapage.")

    if data.date <= cancellation.date:
        raise InvalidMakeupDate("La date du rattrapage doit être postérieure à la date annulée.")

    return ScheduleException(
        course_id=course.id,
        date=data.date,
        exception_type=MAKEUP,
        related_exception_id=cancellation.id,
        week=cancellation.week,
        start_time=data.start_time or course.start_time,
        end_time=data.end_time or course.end_time,
        reason=data.reason or "Rattrapage",
        notes=data.notes or f"Rattrapage de la séance du {cancellation.date}",
    )


def _raise_creation_conflict(db: Session, course_id: int, data: ScheduleExceptionCreate) -> None:
    """Traduit une violation d'unicité (création concurrente) en erreur métier."""
    if find_exception(db, course_id, data.date) is not None:
        logger.debug("Création concurrente perdue : cours %s, %s", course_id, data.date)
        raise Conflict(f"Une exception existe déjà le {data.date} pour ce cours.")
    if data.exception_type == MAKEUP:
        raise AlreadyLinked(f"L'annulation du {data.related_date} a déjà un rattrapage.")
    raise Conflict("Violation de contrainte d'unicité sur le calendrier.")


def _to_response(db: Session, exception: ScheduleException) -> ScheduleExceptionResponse:
    """Construit le schéma de réponse avec la date de l'exception liée."""
    partner = find_partner(db, exception)
    response = ScheduleExceptionResponse.model_validate(exception)
    response.related_date = partner.date if partner is not None else None
    return response


def _count_records(db: Session, exception: ScheduleException) -> int:
    """Fiches rattachées à l'exception (clé étrangère ou même cours / même date)."""
    return db.execute(
        select(func.count())
        .select_from(AttendanceRecord)
        .where(
            or_(
                AttendanceRecord.schedule_exception_id == exception.id,
                and_(
                    AttendanceRecord.course_id == exception.course_id,
                    AttendanceRecord.date == exception.date,
                ),
            )
        )
    ).scalar() or 0


def _move_exception(db: Session, course: Course, exception: ScheduleException, new_date: date) -> None:
    """Déplace une exception à une autre date en conservant son type et son lien."""
    if not in_course_range(course, new_date):
        raise OutOfRange(
            f"La date {new_date} est hors de la période du cours "
            f"({course.start_date} → {course.end_date})."
        )
    if find_exception(db, course.id, new_date) is not None:
        raise Conflict(f"Une exception existe déjà le {new_date} pour ce cours.")

    record_count = _count_records(db, exception)
    if record_count > 0:
        raise HasAttendanceRecords(
            f"Impossible de déplacer cette exception : {record_count} fiche(s) de présence s'y rapportent."
        )

    partner = find_partner(db, exception)
    if exception.exception_type == CANCELLATION:
        if not is_meeting_day(course, new_date):
            raise InvalidWeekday(f"Le {new_date} n'est pas un jour de cours ({course.weekdays}).")
        if _has_records_on(db, course.id, new_date):
            raise HasAttendanceRecords(
                f"Impossible d'annuler le {new_date} : des fiches de présence existent déjà."
            )
        if partner is not None and partner.date <= new_date:
            raise InvalidMakeupDate("La date annulée doit précéder la date de son rattrapage.")
        exception.week = week_number(course.start_date, new_date)
        if partner is not None:
            partner.week = exception.week
    elif partner is not None and new_date <= partner.date:
        raise InvalidMakeupDate("La date du rattrapage doit être postérieure à la date annulée.")

    exception.date = new_date


def _has_records_on(db: Session, course_id: int, day: date) -> bool:
    return db.execute(
        select(AttendanceRecord.id).where(
            AttendanceRecord.course_id == course_id,
            AttendanceRecord.date == day,
        ).limit(1)
    ).first() is not None
