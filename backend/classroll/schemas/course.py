"""
Schémas Pydantic pour les cours.

Note : on importe datetime en tant que module (dt) pour éviter le conflit de nommage
entre les champs `start_date` / `date` et les types de datetime dans Pydantic v2.
"""

import datetime as dt
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator, model_validator

from classroll.models.course import WEEKDAY_CODES


class CourseCreate(BaseModel):
    name: str
    code: str
    semester: str
    weekdays: List[str]                 # Ex: ["MON", "WED"]
    start_time: dt.time
    end_time: dt.time
    start_date: dt.date
    end_date: dt.date
    room: Optional[str] = None
    description: Optional[str] = None

    @field_validator("name", "code", "semester")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Ce champ ne peut pas être vide.")
        return v.strip()

    @field_validator("weekdays")
    @classmethod
    def valid_weekdays(cls, v: List[str]) -> List[str]:
        codes = [d.strip().upper() for d in v]
        if not codes:
            raise ValueError("Au moins un jour de cours doit être sélectionné.")
        invalid = [d for d in codes if d not in WEEKDAY_CODES]
        if invalid:
            raise ValueError(f"Jours invalides : {invalid}. Valeurs acceptées : {list(WEEKDAY_CODES)}")
        # Dédupliqué, dans l'ordre de la semaine
        return [d for d in WEEKDAY_CODES if d in codes]

    @model_validator(mode="after")
    def check_ranges(self) -> "CourseCreate":
        if self.end_date < self.start_date:
            raise ValueError("La date de fin doit être postérieure à la date de début.")
        if self.end_time <= self.start_time:
            raise ValueError("L'heure de fin doit être postérieure à l'heure de début.")
        return self


class CourseResponse(BaseModel):
    id: int
    name: str
    code: str
    semester: str
    instructor_id: int
    weekdays: List[str]
    start_time: dt.time
    end_time: dt.time
    start_date: dt.date
    end_date: dt.date
    room: Optional[str]
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_validator("weekdays", mode="before")
    @classmethod
    def split_weekdays(cls, v):
        if isinstance(v, str):
            return [d for d in v.split(",") if d]
        return v
