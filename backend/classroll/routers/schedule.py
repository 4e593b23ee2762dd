"""
Router pour le calendrier des cours : résolution d'une date, génération des séances,
annulations et rattrapages (création, modification, suppression).
"""

import datetime as dt
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from classroll.database import get_db
from classroll.schemas.principal import Principal
from classroll.schemas.schedule import (
    CalendarResponse,
    OccurrenceView,
    ScheduleExceptionCreate,
    ScheduleExceptionResponse,
    ScheduleExceptionUpdate,
)
from classroll.security import get_current_principal
from classroll.services import schedule_service

router = APIRouter(prefix="/api/v1", tags=["Calendrier"])


@router.get(
    "/courses/{course_id}/occurrences/{day}",
    response_model=OccurrenceView,
    summary="Sémantique d'une date pour un cours",
)
def get_occurrence(
    course_id: int,
    day: dt.date,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    Indique si le cours a lieu à cette date :
    NO_CLASS, REGULAR, CANCELLED (avec la date du rattrapage éventuel)
    ou MAKEUP (avec la date de la séance remplacée).
    """
    occurrence = schedule_service.get_occurrence(db, course_id, day)
    if occurrence is None:
        raise HTTPException(status_code=404, detail="Cours introuvable.")
    return occurrence


@router.get(
    "/courses/{course_id}/calendar",
    response_model=CalendarResponse,
    summary="Générer les séances d'une période",
)
def get_calendar(
    course_id: int,
    start: dt.date,
    end: dt.date,
    skip_weeks: List[int] = Query(default=[]),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    Énumère les séances du motif hebdomadaire dans [start, end] (bornées à la période
    du cours), hors semaines listées dans skip_weeks. Rien n'est enregistré.
    """
    occurrences = schedule_service.bulk_generate(db, course_id, start, end, skip_weeks)
    return CalendarResponse(
        course_id=course_id,
        start=start,
        end=end,
        skip_weeks=sorted(set(skip_weeks)),
        occurrences=list(occurrences),
    )


@router.get(
    "/courses/{course_id}/exceptions",
    response_model=List[ScheduleExceptionResponse],
    summary="Lister les annulations et rattrapages",
)
def list_exceptions(
    course_id: int,
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return schedule_service.list_exceptions(db, course_id, start, end)


@router.post(
    "/courses/{course_id}/exceptions",
    response_model=ScheduleExceptionResponse,
    status_code=201,
    summary="Annuler une séance ou planifier un rattrapage",
)
def create_exception(
    course_id: int,
    data: ScheduleExceptionCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    CANCELLATION : la date doit être un jour de cours sans fiche de présence.
    MAKEUP : related_date doit porter une annulation sans rattrapage,
    et la date du rattrapage doit lui être postérieure.
    Une seule exception par date.
    """
    return schedule_service.create_exception(db, course_id, data, principal)


@router.patch(
    "/exceptions/{exception_id}",
    response_model=ScheduleExceptionResponse,
    summary="Modifier une annulation ou un rattrapage",
)
def update_exception(
    exception_id: int,
    data: ScheduleExceptionUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    Date, horaire, motif, notes. Le type et le lien vers l'annulation ne sont pas modifiables.
    Un déplacement est refusé si la date est occupée ou si des fiches s'y rapportent.
    """
    return schedule_service.update_exception(db, exception_id, data, principal)


@router.delete("/exceptions/{exception_id}", status_code=204, summary="Supprimer une exception")
def delete_exception(
    exception_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    Refusé si l'annulation a un rattrapage lié (supprimer d'abord le rattrapage)
    ou si des fiches de présence s'y rapportent.
    """
    schedule_service.delete_exception(db, exception_id, principal)
