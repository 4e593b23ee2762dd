"""
Schémas Pydantic pour les jetons de présence (QR / mot de passe).
Le jeton n'est jamais persisté : `payload` est une chaîne signée auto-suffisante.
"""

import datetime as dt
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

TOKEN_KIND_QR = "QR"
TOKEN_KIND_PASSWORD = "PASSWORD"
TOKEN_KINDS = {TOKEN_KIND_QR, TOKEN_KIND_PASSWORD}


class CheckInTokenCreate(BaseModel):
    date: dt.date
    kind: str = TOKEN_KIND_QR

    @field_validator("kind")
    @classmethod
    def valid_kind(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in TOKEN_KINDS:
            raise ValueError(f"Type de jeton invalide. Valeurs acceptées : {TOKEN_KINDS}")
        return v


class CheckInTokenResponse(BaseModel):
    payload: str                            # Chaîne signée à encoder dans le QR / transmettre
    kind: str
    course_id: int
    date: dt.date
    exception_id: Optional[int] = None      # Rattrapage concerné (traçabilité)
    issued_at: datetime
    valid_until: datetime
    passcode: Optional[str] = None          # Uniquement pour kind=PASSWORD
    qr_png_base64: Optional[str] = None     # Uniquement pour kind=QR


class RedeemRequest(BaseModel):
    token: str
    student_id: int
    passcode: Optional[str] = None

    @field_validator("token")
    @classmethod
    def token_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le jeton ne peut pas être vide.")
        return v.strip()
