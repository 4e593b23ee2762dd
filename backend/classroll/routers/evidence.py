"""
Router pour le dépôt des justificatifs (pièces jointes des demandes d'absence).
"""

import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from classroll.config import settings
from classroll.schemas.leave_request import EvidenceUploadResponse
from classroll.schemas.principal import Principal
from classroll.security import get_current_principal
from classroll.services.evidence_store import EvidenceStore, get_evidence_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/evidence", tags=["Justificatifs"])

ALLOWED_EXTENSIONS = (".pdf", ".png", ".jpg", ".jpeg")


@router.post("", response_model=EvidenceUploadResponse, status_code=201, summary="Déposer un justificatif")
async def upload_evidence(
    file: UploadFile = File(...),
    principal: Principal = Depends(get_current_principal),
    store: EvidenceStore = Depends(get_evidence_store),
):
    """
    Dépose un fichier (PDF ou image) et retourne son handle,
    à référencer ensuite dans une demande d'absence.
    """
    filename = file.filename or ""
    if not filename.lower().endswith(ALLOWED_EXTENSIONS):
        raise HTTPException(
            status_code=400,
            detail=f"Format non supporté. Formats acceptés : {', '.join(ALLOWED_EXTENSIONS)}",
        )

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Le fichier est vide.")
    if len(content) > settings.EVIDENCE_MAX_SIZE_MB * 1024 * 1024:
        raise HTTPException(
            status_code=413,
            detail=f"Fichier trop volumineux (maximum {settings.EVIDENCE_MAX_SIZE_MB} Mo).",
        )

    handle = store.put(filename, content, file.content_type)
    logger.info("Justificatif %s déposé par %s", handle, principal.id)
    return EvidenceUploadResponse(
        filename=filename,
        handle=handle,
        size=len(content),
        mime_type=file.content_type,
    )
