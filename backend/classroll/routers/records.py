"""
Router pour les fiches de présence : saisie individuelle, pointage collectif, consultation.
"""

import datetime as dt
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from classroll.database import get_db
from classroll.schemas.attendance import (
    BulkUpsertReport,
    BulkUpsertRequest,
    RecordUpsert,
    RecordView,
)
from classroll.schemas.principal import Principal
from classroll.security import get_current_principal
from classroll.services import record_service

router = APIRouter(prefix="/api/v1", tags=["Fiches de présence"])


@router.put("/records", response_model=RecordView, summary="Saisir une présence")
def upsert_record(
    data: RecordUpsert,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    Crée ou met à jour le statut brut d'un étudiant pour une date de cours.
    Les statuts LATE, ABSENT et MEDICAL sont marqués « à justifier ».
    Refusé sur une date annulée.
    """
    return record_service.upsert_record(db, data, principal)


@router.put(
    "/courses/{course_id}/records/{day}",
    response_model=BulkUpsertReport,
    summary="Pointage collectif d'une séance",
)
def bulk_upsert_records(
    course_id: int,
    day: dt.date,
    data: BulkUpsertRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    Applique chaque entrée indépendamment. Les entrées invalides (statut inconnu,
    doublon dans le lot) sont ignorées et listées dans `skipped` avec leur motif.
    """
    return record_service.bulk_upsert(db, course_id, day, data, principal)


@router.get("/records", response_model=List[RecordView], summary="Rechercher des fiches")
def query_records(
    student_id: Optional[int] = None,
    course_id: Optional[int] = None,
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    Filtres combinables. `status` porte sur le statut affiché
    (PRESENT, LATE, ABSENT, MEDICAL, OFFICIAL ou UNCONFIRMED).
    Un étudiant ne voit que ses propres fiches.
    """
    query = record_service.query_records(
        db, principal,
        student_id=student_id,
        course_id=course_id,
        start=start,
        end=end,
        status=status,
    )
    return list(query)


@router.get("/records/{record_id}", response_model=RecordView, summary="Détail d'une fiche")
def get_record(
    record_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return record_service.get_record(db, record_id, principal)
