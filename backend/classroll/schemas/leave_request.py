"""
Schémas Pydantic pour les demandes d'absence (workflow d'approbation).
"""

import datetime as dt
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator


class EvidenceItem(BaseModel):
    """Référence vers un justificatif déjà déposé dans le stockage externe."""
    filename: str
    handle: str
    size: Optional[int] = None
    mime_type: Optional[str] = None

    model_config = {"from_attributes": True}

    @field_validator("filename", "handle")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le nom de fichier et le handle sont obligatoires.")
        return v.strip()


class LeaveRequestCreate(BaseModel):
    record_id: int
    start_date: dt.date
    end_date: Optional[dt.date] = None      # absent = demande sur une seule date
    reason: str
    evidence: List[EvidenceItem] = []

    @field_validator("reason")
    @classmethod
    def reason_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le motif ne peut pas être vide.")
        return v.strip()


class LeaveRequestUpdate(BaseModel):
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    reason: Optional[str] = None
    add_evidence: List[EvidenceItem] = []
    remove_evidence: List[str] = []         # handles à retirer

    @field_validator("reason")
    @classmethod
    def reason_not_empty(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Le motif ne peut pas être vide.")
        return v.strip() if v is not None else v


class LeaveDecision(BaseModel):
    # Validé par le service (InvalidDecision) plutôt que par Pydantic
    decision: str
    feedback: Optional[str] = None


class LeaveRequestSummary(BaseModel):
    """Vue compacte embarquée dans une fiche de présence."""
    id: int
    status: str
    start_date: dt.date
    end_date: dt.date
    reviewer_id: Optional[int]
    decided_at: Optional[datetime]

    model_config = {"from_attributes": True}


class LeaveRequestResponse(BaseModel):
    id: int
    record_id: int
    student_id: int
    course_id: int
    start_date: dt.date
    end_date: dt.date
    reason: str
    status: str
    reviewer_id: Optional[int]
    feedback: Optional[str]
    decided_at: Optional[datetime]
    evidences: List[EvidenceItem]
    record_status: Optional[str] = None     # Statut dérivé de la fiche liée après l'opération
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class EvidenceUploadResponse(EvidenceItem):
    pass
