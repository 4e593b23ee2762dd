"""
Router pour les demandes d'absence (dépôt, modification, examen, décision, retrait, justificatifs).
"""

from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from classroll.database import get_db
from classroll.schemas.leave_request import (
    LeaveDecision,
    LeaveRequestCreate,
    LeaveRequestResponse,
    LeaveRequestUpdate,
)
from classroll.schemas.principal import Principal
from classroll.security import get_current_principal
from classroll.services import leave_service
from classroll.services.evidence_store import EvidenceStore, get_evidence_store
from classroll.services.notification_sink import NotificationSink, get_notification_sink

router = APIRouter(prefix="/api/v1/leave-requests", tags=["Demandes d'absence"])


@router.post("", response_model=LeaveRequestResponse, status_code=201, summary="Déposer une demande")
def file_leave_request(
    data: LeaveRequestCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    sink: NotificationSink = Depends(get_notification_sink),
):
    """
    Justifie une fiche de présence de l'étudiant (retard, absence, certificat médical).
    Les justificatifs référencent des fichiers déjà déposés via POST /evidence.
    Une seule demande par fiche.
    """
    return leave_service.file_leave_request(db, data, principal, sink=sink)


@router.get("/{request_id}", response_model=LeaveRequestResponse, summary="Détail d'une demande")
def get_leave_request(
    request_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return leave_service.get_leave_request(db, request_id, principal)


@router.get("/{request_id}/evidence/{handle}", summary="Télécharger un justificatif")
def download_evidence(
    request_id: int,
    handle: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    store: EvidenceStore = Depends(get_evidence_store),
):
    """Accessible à l'étudiant concerné et à l'enseignant responsable du cours."""
    evidence, stream = leave_service.open_evidence(db, request_id, handle, principal, store)
    return StreamingResponse(
        _iter_chunks(stream),
        media_type=evidence.mime_type or "application/octet-stream",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(evidence.filename)}"},
    )


@router.patch("/{request_id}", response_model=LeaveRequestResponse, summary="Modifier une demande")
def edit_leave_request(
    request_id: int,
    data: LeaveRequestUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    store: EvidenceStore = Depends(get_evidence_store),
):
    """Possible uniquement tant que la demande est PENDING."""
    return leave_service.edit_leave_request(db, request_id, data, principal, store=store)


@router.delete("/{request_id}", status_code=204, summary="Retirer une demande")
def withdraw_leave_request(
    request_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    store: EvidenceStore = Depends(get_evidence_store),
):
    """
    Supprime une demande encore PENDING et ses justificatifs.
    Un échec de suppression d'un fichier n'empêche pas le retrait.
    """
    leave_service.withdraw_leave_request(db, request_id, principal, store=store)


@router.post("/{request_id}/review", response_model=LeaveRequestResponse, summary="Prendre en examen")
def start_review(
    request_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """PENDING → UNDER_REVIEW. La demande n'est alors plus modifiable par l'étudiant."""
    return leave_service.start_review(db, request_id, principal)


@router.post("/{request_id}/decision", response_model=LeaveRequestResponse, summary="Décider")
def decide_leave_request(
    request_id: int,
    data: LeaveDecision,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    sink: NotificationSink = Depends(get_notification_sink),
):
    """
    APPROVED ou REJECTED, définitif. Une approbation fait apparaître la fiche
    comme PRESENT sans modifier le statut brut saisi.
    """
    return leave_service.decide_leave_request(db, request_id, data, principal, sink=sink)


def _iter_chunks(stream, chunk_size: int = 64 * 1024):
    with stream:
        for chunk in iter(lambda: stream.read(chunk_size), b""):
            yield chunk
