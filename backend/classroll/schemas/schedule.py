"""
Schémas Pydantic pour le calendrier d'un cours : occurrences calculées,
exceptions persistées (annulation / rattrapage) et génération en masse.
"""

import datetime as dt
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator, model_validator

from classroll.models.schedule_exception import EXCEPTION_TYPES, MAKEUP

NO_CLASS = "NO_CLASS"
REGULAR = "REGULAR"
CANCELLED = "CANCELLED"
MAKEUP_CLASS = "MAKEUP"
OCCURRENCE_KINDS = {NO_CLASS, REGULAR, CANCELLED, MAKEUP_CLASS}


class OccurrenceView(BaseModel):
    """Sémantique d'une date pour un cours, calculée à la demande (jamais persistée)."""
    course_id: int
    date: dt.date
    kind: str                               # NO_CLASS, REGULAR, CANCELLED, MAKEUP
    has_class: bool
    is_regular_day: bool                    # la date correspond au motif hebdomadaire
    week: Optional[int] = None
    start_time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    exception_id: Optional[int] = None
    related_date: Optional[dt.date] = None  # MAKEUP → date annulée ; CANCELLED → date du rattrapage
    reason: Optional[str] = None


class ScheduleExceptionCreate(BaseModel):
    date: dt.date
    exception_type: str                     # CANCELLATION, MAKEUP
    related_date: Optional[dt.date] = None  # obligatoire pour un MAKEUP
    start_time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    reason: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("exception_type")
    @classmethod
    def valid_type(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in EXCEPTION_TYPES:
            raise ValueError(f"Type d'exception invalide. Valeurs acceptées : {EXCEPTION_TYPES}")
        return v

    @model_validator(mode="after")
    def makeup_needs_related_date(self) -> "ScheduleExceptionCreate":
        if self.exception_type == MAKEUP and self.related_date is None:
            raise ValueError("Un rattrapage doit référencer la date annulée (related_date).")
        if self.exception_type != MAKEUP and self.related_date is not None:
            raise ValueError("Seul un rattrapage peut référencer une date annulée.")
        return self


class ScheduleExceptionUpdate(BaseModel):
    """Champs modifiables d'une exception : le type et le lien annulation ↔ rattrapage sont figés."""
    date: Optional[dt.date] = None
    start_time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    reason: Optional[str] = None
    notes: Optional[str] = None

    model_config = {"extra": "forbid"}


class ScheduleExceptionResponse(BaseModel):
    id: int
    course_id: int
    date: dt.date
    exception_type: str
    related_exception_id: Optional[int]
    related_date: Optional[dt.date] = None
    week: Optional[int]
    start_time: Optional[dt.time]
    end_time: Optional[dt.time]
    reason: Optional[str]
    notes: Optional[str]
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class GeneratedOccurrence(BaseModel):
    """Séance issue du motif hebdomadaire, annotée de sa résolution."""
    date: dt.date
    week: int
    kind: str                               # REGULAR ou CANCELLED


class CalendarResponse(BaseModel):
    course_id: int
    start: dt.date
    end: dt.date
    skip_weeks: List[int]
    occurrences: List[GeneratedOccurrence]
