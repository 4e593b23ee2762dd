"""
Schémas Pydantic pour les fiches de présence.

Une fiche exposée (RecordView) fusionne le fait brut et la demande d'absence ;
`status` est le statut dérivé calculé par status_resolver à chaque lecture.
"""

import datetime as dt
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator

from classroll.models.attendance import CHECK_METHODS, METHOD_MANUAL, RAW_STATUSES
from classroll.schemas.leave_request import LeaveRequestSummary

MAX_BULK_SIZE = 500


class AttendanceDetailView(BaseModel):
    checked_at: datetime
    method: str
    raw_status: str
    requires_justification: bool

    model_config = {"from_attributes": True}


class RecordView(BaseModel):
    id: int
    student_id: int
    course_id: int
    date: dt.date
    schedule_exception_id: Optional[int]
    notes: Optional[str]
    status: str                                     # Statut dérivé (affichage / statistiques)
    detail: Optional[AttendanceDetailView] = None
    leave_request: Optional[LeaveRequestSummary] = None


class RecordUpsert(BaseModel):
    student_id: int
    course_id: int
    date: dt.date
    raw_status: str
    method: str = METHOD_MANUAL
    notes: Optional[str] = None

    @field_validator("raw_status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in RAW_STATUSES:
            raise ValueError(f"Statut de présence invalide. Valeurs acceptées : {RAW_STATUSES}")
        return v

    @field_validator("method")
    @classmethod
    def valid_method(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in CHECK_METHODS:
            raise ValueError(f"Méthode de pointage invalide. Valeurs acceptées : {CHECK_METHODS}")
        return v


class BulkEntry(BaseModel):
    """Entrée d'un pointage collectif. Le statut n'est pas validé ici : une entrée
    invalide est ignorée par le service au lieu de rejeter tout le lot."""
    student_id: int
    raw_status: str
    notes: Optional[str] = None


class BulkUpsertRequest(BaseModel):
    entries: List[BulkEntry]
    method: str = METHOD_MANUAL

    @field_validator("entries")
    @classmethod
    def not_too_large(cls, v: List[BulkEntry]) -> List[BulkEntry]:
        if len(v) > MAX_BULK_SIZE:
            raise ValueError(f"Lot trop grand : maximum {MAX_BULK_SIZE} entrées par requête.")
        return v


class SkippedEntry(BaseModel):
    student_id: int
    reason: str


class BulkUpsertReport(BaseModel):
    """Rapport du pointage collectif : chaque entrée est appliquée indépendamment."""
    course_id: int
    date: dt.date
    applied: List[RecordView]
    skipped: List[SkippedEntry]
    total_received: int
    total_applied: int


class StatusCounts(BaseModel):
    total: int = 0
    present: int = 0
    late: int = 0
    absent: int = 0
    medical: int = 0
    official: int = 0
    unconfirmed: int = 0
    attendance_rate: float = 0.0


class StudentStatistics(StatusCounts):
    student_id: int


class DateStatistics(StatusCounts):
    date: dt.date


class CourseStatistics(BaseModel):
    course_id: int
    totals: StatusCounts
    by_date: List[DateStatistics]
    by_student: List[StudentStatistics]
