"""
Router pour les cours et leurs statistiques de présence.
"""

import datetime as dt
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from classroll.database import get_db
from classroll.schemas.attendance import CourseStatistics
from classroll.schemas.course import CourseCreate, CourseResponse
from classroll.schemas.principal import Principal
from classroll.security import get_current_principal
from classroll.services import course_service, statistics_service

router = APIRouter(prefix="/api/v1/courses", tags=["Cours"])


@router.post("", response_model=CourseResponse, status_code=201, summary="Créer un cours")
def create_course(
    data: CourseCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    Crée un cours avec son motif hebdomadaire (jours, horaires, période).
    L'enseignant appelant en devient responsable. Le code de cours est unique.
    """
    return course_service.create_course(db, data, principal)


@router.get("/{course_id}", response_model=CourseResponse, summary="Détail d'un cours")
def get_course(
    course_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    course = course_service.get_course(db, course_id)
    if course is None:
        raise HTTPException(status_code=404, detail="Cours introuvable.")
    return course


@router.get(
    "/{course_id}/statistics",
    response_model=CourseStatistics,
    summary="Statistiques de présence d'un cours",
)
def get_course_statistics(
    course_id: int,
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    Retourne les totaux par statut (statut dérivé : une absence justifiée
    et approuvée compte comme présente), le taux de présence
    ((PRESENT + LATE) / total) et la répartition par date et par étudiant.
    """
    return statistics_service.course_statistics(db, course_id, principal, start=start, end=end)
