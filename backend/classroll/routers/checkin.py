"""
Router pour le pointage par jeton (QR code ou mot de passe).
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from classroll.database import get_db
from classroll.schemas.attendance import RecordView
from classroll.schemas.checkin import CheckInTokenCreate, CheckInTokenResponse, RedeemRequest
from classroll.schemas.principal import Principal
from classroll.security import get_current_principal
from classroll.services import checkin_service

router = APIRouter(prefix="/api/v1", tags=["Pointage"])


@router.post(
    "/courses/{course_id}/checkin-tokens",
    response_model=CheckInTokenResponse,
    status_code=201,
    summary="Émettre un jeton de présence",
)
def issue_checkin_token(
    course_id: int,
    data: CheckInTokenCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    Émet un jeton signé valable 10 minutes pour la séance du jour demandé.
    QR : l'image PNG est fournie en base64. PASSWORD : le code est à annoncer en classe.
    Refusé si la séance est annulée ou si aucune séance n'est prévue.
    """
    return checkin_service.issue_token(db, course_id, data, principal)


@router.post("/checkin/redeem", response_model=RecordView, summary="Pointer avec un jeton")
def redeem_checkin_token(
    data: RedeemRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    Enregistre la présence de l'étudiant (statut PRESENT).
    Erreurs : jeton invalide (400), expiré (410), séance annulée (400),
    code incorrect (400), présence déjà enregistrée (409).
    """
    return checkin_service.redeem_token(db, data, principal)
