"""
Service métier pour les demandes d'absence (justification d'une fiche de présence).

Machine à états :
    PENDING ──► UNDER_REVIEW ──► APPROVED / REJECTED
       └──────────────────────► APPROVED / REJECTED

Règles :
- Seul l'étudiant concerné dépose, modifie ou retire sa demande, et seulement en PENDING
- Seul l'enseignant responsable du cours (ou un ADMIN) examine et décide
- Une décision est définitive (AlreadyDecided)
- Chaque demande est lue FOR UPDATE et protégée par sa colonne version :
  une écriture concurrente sur une version périmée devient Conflict

La décision ne modifie jamais le fait brut : le statut affiché est recalculé
par status_resolver (APPROVED → PRESENT).
"""

import logging
from datetime import datetime, timezone
from typing import BinaryIO, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from classroll.exceptions import (
    AlreadyDecided,
    AuthorizationDenied,
    Conflict,
    Immutable,
    InvalidDecision,
    InvalidRange,
    NotFound,
    NotJustifiable,
    StateViolation,
)
from classroll.models.attendance import JUSTIFIABLE_STATUSES, AttendanceRecord
from classroll.models.leave_request import (
    APPROVED,
    DECISIONS,
    PENDING,
    TERMINAL_STATUSES,
    UNDER_REVIEW,
    LeaveEvidence,
    LeaveRequest,
)
from classroll.schemas.leave_request import (
    LeaveDecision,
    LeaveRequestCreate,
    LeaveRequestResponse,
    LeaveRequestUpdate,
)
from classroll.schemas.principal import Principal
from classroll.services.course_service import ensure_course_owner, load_course
from classroll.services.evidence_store import EvidenceStore, discard_evidence
from classroll.services.notification_sink import (
    LEAVE_REQUEST_DECIDED,
    LEAVE_REQUEST_FILED,
    NotificationSink,
    notify,
)
from classroll.services.status_resolver import resolve_record_status

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------

def _lock_request(db: Session, request_id: int) -> LeaveRequest:
    leave_request = db.execute(
        select(LeaveRequest).where(LeaveRequest.id == request_id).with_for_update()
    ).scalar()
    if leave_request is None:
        raise NotFound(f"Demande d'absence {request_id} introuvable.")
    return leave_request


def _ensure_requester(leave_request: LeaveRequest, actor: Principal) -> None:
    if actor.is_admin:
        return
    if leave_request.student_id != actor.id:
        raise AuthorizationDenied("Cette demande d'absence ne vous appartient pas.")


def _ensure_pending(leave_request: LeaveRequest) -> None:
    if leave_request.status != PENDING:
        raise Immutable(
            f"La demande {leave_request.id} est en statut {leave_request.status} "
            "et ne peut plus être modifiée."
        )


def _check_range(record: AttendanceRecord, start, end) -> None:
    if end < start:
        raise InvalidRange("La date de fin doit être postérieure ou égale à la date de début.")
    if not start <= record.date <= end:
        raise InvalidRange(f"La période demandée doit couvrir la date de la fiche ({record.date}).")


def _load_readable(db: Session, request_id: int, actor: Principal) -> LeaveRequest:
    leave_request = db.get(LeaveRequest, request_id)
    if leave_request is None:
        raise NotFound(f"Demande d'absence {request_id} introuvable.")
    if leave_request.student_id != actor.id:
        ensure_course_owner(load_course(db, leave_request.course_id), actor)
    return leave_request


def _is_justifiable(record: AttendanceRecord) -> bool:
    detail = record.detail
    return (
        detail is not None
        and detail.requires_justification
        and detail.raw_status in JUSTIFIABLE_STATUSES
    )


def _commit(db: Session) -> None:
    """Commit protégé par le verrou optimiste (version)."""
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise Conflict("La demande d'absence a été modifiée simultanément, réessayez.")


def _to_response(leave_request: LeaveRequest) -> LeaveRequestResponse:
    response = LeaveRequestResponse.model_validate(leave_request)
    response.record_status = resolve_record_status(leave_request.record)
    return response


def _event_payload(leave_request: LeaveRequest) -> dict:
    return {
        "leave_request_id": leave_request.id,
        "record_id": leave_request.record_id,
        "student_id": leave_request.student_id,
        "course_id": leave_request.course_id,
        "status": leave_request.status,
    }


# ----------------------------------------------------------------
# Opérations étudiant
# ----------------------------------------------------------------

def file_leave_request(
    db: Session,
    data: LeaveRequestCreate,
    actor: Principal,
    sink: Optional[NotificationSink] = None,
) -> LeaveRequestResponse:
    """
    Dépose une demande d'absence sur une fiche de l'étudiant.

    Lève NotFound (fiche), AuthorizationDenied (fiche d'un autre étudiant),
    NotJustifiable (fiche sans fait brut à justifier), InvalidRange,
    Conflict (une demande existe déjà pour cette fiche).
    """
    record = db.get(AttendanceRecord, data.record_id)
    if record is None:
        raise NotFound(f"Fiche de présence {data.record_id} introuvable.")
    if not actor.is_admin and record.student_id != actor.id:
        raise AuthorizationDenied("Vous ne pouvez justifier que vos propres absences.")

    if not _is_justifiable(record):
        raise NotJustifiable("Cette fiche de présence ne nécessite pas de justification.")

    end_date = data.end_date or data.start_date
    _check_range(record, data.start_date, end_date)

    if record.leave_request is not None:
        raise Conflict(f"Une demande d'absence existe déjà pour la fiche {record.id}.")

    leave_request = LeaveRequest(
        record_id=record.id,
        student_id=record.student_id,
        course_id=record.course_id,
        start_date=data.start_date,
        end_date=end_date,
        reason=data.reason,
        status=PENDING,
        evidences=[LeaveEvidence(**item.model_dump()) for item in data.evidence],
    )
    db.add(leave_request)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict(f"Une demande d'absence existe déjà pour la fiche {data.record_id}.")
    db.refresh(leave_request)

    logger.info(
        "Demande d'absence %s déposée : étudiant %s, fiche %s (%d justificatif(s))",
        leave_request.id, leave_request.student_id, record.id, len(data.evidence),
    )
    notify(sink, LEAVE_REQUEST_FILED, _event_payload(leave_request))
    return _to_response(leave_request)


def edit_leave_request(
    db: Session,
    request_id: int,
    data: LeaveRequestUpdate,
    actor: Principal,
    store: Optional[EvidenceStore] = None,
) -> LeaveRequestResponse:
    """
    Modifie une demande encore PENDING (dates, motif, justificatifs).
    Les fichiers retirés sont supprimés du stockage après le commit, sans garantie.
    """
    leave_request = _lock_request(db, request_id)
    _ensure_requester(leave_request, actor)
    _ensure_pending(leave_request)

    if data.start_date is not None or data.end_date is not None:
        start = data.start_date or leave_request.start_date
        if data.end_date is not None:
            end = data.end_date
        elif data.start_date is not None and leave_request.start_date == leave_request.end_date:
            # Demande sur une date unique : la fin suit le début
            end = start
        else:
            end = leave_request.end_date
        _check_range(leave_request.record, start, end)
        leave_request.start_date = start
        leave_request.end_date = end

    if data.reason is not None:
        leave_request.reason = data.reason

    removed_handles: List[str] = []
    if data.remove_evidence:
        wanted = set(data.remove_evidence)
        for evidence in list(leave_request.evidences):
            if evidence.handle in wanted:
                leave_request.evidences.remove(evidence)
                removed_handles.append(evidence.handle)

    for item in data.add_evidence:
        leave_request.evidences.append(LeaveEvidence(**item.model_dump()))

    leave_request.updated_at = func.now()
    _commit(db)
    db.refresh(leave_request)

    if removed_handles and store is not None:
        discard_evidence(store, removed_handles)

    logger.info(
        "Demande d'absence %s modifiée (+%d / -%d justificatif(s))",
        request_id, len(data.add_evidence), len(removed_handles),
    )
    return _to_response(leave_request)


def withdraw_leave_request(
    db: Session,
    request_id: int,
    actor: Principal,
    store: Optional[EvidenceStore] = None,
) -> None:
    """
    Retire (supprime) une demande encore PENDING.
    Les échecs de suppression des justificatifs sont journalisés, jamais levés.
    """
    leave_request = _lock_request(db, request_id)
    _ensure_requester(leave_request, actor)
    _ensure_pending(leave_request)

    handles = [evidence.handle for evidence in leave_request.evidences]
    db.delete(leave_request)
    _commit(db)

    if handles and store is not None:
        failed = discard_evidence(store, handles)
        if failed:
            logger.debug("Demande %s retirée, %d justificatif(s) orphelin(s)", request_id, len(failed))

    logger.info("Demande d'absence %s retirée par %s", request_id, actor.id)


# ----------------------------------------------------------------
# Opérations enseignant
# ----------------------------------------------------------------

def start_review(db: Session, request_id: int, actor: Principal) -> LeaveRequestResponse:
    """PENDING → UNDER_REVIEW. Toute autre transition lève StateViolation."""
    leave_request = _lock_request(db, request_id)
    ensure_course_owner(load_course(db, leave_request.course_id), actor)

    if leave_request.status in TERMINAL_STATUSES:
        raise AlreadyDecided(f"La demande {request_id} est déjà {leave_request.status}.")
    if leave_request.status != PENDING:
        raise StateViolation(f"La demande {request_id} est déjà en cours d'examen.")

    leave_request.status = UNDER_REVIEW
    leave_request.reviewer_id = actor.id
    _commit(db)
    db.refresh(leave_request)

    logger.info("Demande d'absence %s en cours d'examen par %s", request_id, actor.id)
    return _to_response(leave_request)


def decide_leave_request(
    db: Session,
    request_id: int,
    data: LeaveDecision,
    actor: Principal,
    sink: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> LeaveRequestResponse:
    """
    Approuve ou rejette une demande (PENDING ou UNDER_REVIEW).

    Lève InvalidDecision, NotFound, AuthorizationDenied, AlreadyDecided,
    NotJustifiable (approbation d'une fiche qui ne requiert plus de justification).
    La réponse porte le statut dérivé recalculé de la fiche liée.
    """
    decision = (data.decision or "").strip().upper()
    if decision not in DECISIONS:
        raise InvalidDecision(f"Décision invalide. Valeurs acceptées : {sorted(DECISIONS)}")

    leave_request = _lock_request(db, request_id)
    ensure_course_owner(load_course(db, leave_request.course_id), actor)

    if leave_request.status in TERMINAL_STATUSES:
        raise AlreadyDecided(f"La demande {request_id} a déjà été {leave_request.status}.")

    # Le fait brut a pu être corrigé depuis le dépôt (ex. ABSENT → PRESENT)
    if decision == APPROVED and not _is_justifiable(leave_request.record):
        raise NotJustifiable(
            f"La fiche {leave_request.record_id} ne nécessite plus de justification : "
            "la demande ne peut qu'être rejetée."
        )

    leave_request.status = decision
    leave_request.reviewer_id = actor.id
    leave_request.feedback = data.feedback
    leave_request.decided_at = now or datetime.now(timezone.utc)
    _commit(db)
    db.refresh(leave_request)

    response = _to_response(leave_request)
    logger.info(
        "Demande d'absence %s %s par %s (fiche %s → %s)",
        request_id, decision, actor.id, leave_request.record_id, response.record_status,
    )
    payload = _event_payload(leave_request)
    payload["record_status"] = response.record_status
    notify(sink, LEAVE_REQUEST_DECIDED, payload)
    return response


def get_leave_request(db: Session, request_id: int, actor: Principal) -> LeaveRequestResponse:
    """Consultation par l'étudiant concerné ou l'enseignant responsable."""
    return _to_response(_load_readable(db, request_id, actor))


def open_evidence(
    db: Session,
    request_id: int,
    handle: str,
    actor: Principal,
    store: EvidenceStore,
) -> Tuple[LeaveEvidence, BinaryIO]:
    """
    Ouvre un justificatif rattaché à la demande (mêmes droits que la consultation).
    Le flux retourné est à fermer par l'appelant.
    """
    leave_request = _load_readable(db, request_id, actor)
    evidence = next((e for e in leave_request.evidences if e.handle == handle), None)
    if evidence is None:
        raise NotFound(f"Justificatif {handle} introuvable pour la demande {request_id}.")
    try:
        stream = store.open(handle)
    except (OSError, ValueError) as exc:
        logger.warning("Justificatif %s illisible (demande %s) : %s", handle, request_id, exc)
        raise NotFound(f"Le fichier du justificatif {handle} n'est plus disponible.")
    return evidence, stream