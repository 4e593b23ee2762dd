"""
Service de pointage par jeton (QR code projeté ou mot de passe annoncé en classe).

Émission (enseignant) :
  1. Vérifier le cours, les droits et que la date porte une séance (REGULAR ou MAKEUP)
  2. Signer (HS256) un jeu de claims auto-suffisant, valable CHECKIN_TOKEN_TTL_MINUTES
  3. QR → image PNG en base64 ; PASSWORD → code numérique à annoncer

Le jeton n'est jamais persisté. Le code d'un jeton PASSWORD n'y figure pas en clair :
seul son HMAC (clé SECRET_KEY, salé par le nonce) est signé dans les claims.

Rachat (étudiant) :
  1. Signature et forme du jeton → InvalidToken
  2. now >= valid_until → Expired (borne supérieure inclusive)
  3. Séance toujours au calendrier → ClassCancelled / NotScheduled
  4. Code du jeton PASSWORD → InvalidPasscode
  5. Cours verrouillé (FOR UPDATE), séance revérifiée dans la transaction d'écriture
  6. Fiche déjà PRESENT / LATE → AlreadyCheckedIn
"""

import base64
import hashlib
import hmac
import io
import logging
import secrets
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import qrcode
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from classroll.config import settings
from classroll.exceptions import (
    AlreadyCheckedIn,
    AuthorizationDenied,
    ClassCancelled,
    Expired,
    InvalidPasscode,
    InvalidToken,
    NotScheduled,
)
from classroll.models.attendance import (
    CHECKED_IN_STATUSES,
    METHOD_PASSWORD,
    METHOD_QR,
    PRESENT,
    AttendanceRecord,
)
from classroll.models.course import Course
from classroll.schemas.attendance import RecordView
from classroll.schemas.checkin import (
    TOKEN_KIND_PASSWORD,
    TOKEN_KIND_QR,
    TOKEN_KINDS,
    CheckInTokenCreate,
    CheckInTokenResponse,
    RedeemRequest,
)
from classroll.schemas.principal import Principal
from classroll.schemas.schedule import CANCELLED, MAKEUP_CLASS, OccurrenceView
from classroll.services.course_service import ensure_course_owner, load_course, lock_course
from classroll.services.record_service import (
    apply_detail,
    load_or_create_record,
    run_record_write,
    to_view,
)
from classroll.services.schedule_service import resolve_for_date

logger = logging.getLogger(__name__)

TOKEN_TYPE = "checkin"
_REQUIRED_CLAIMS = ("typ", "course_id", "date", "kind", "nonce", "issued_at", "valid_until")


# ----------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------

def generate_qr_image(payload: str) -> bytes:
    """Génère une image PNG du QR code encodant le jeton signé."""
    qr = qrcode.QRCode(version=None, box_size=10, border=4)
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _generate_passcode(length: int) -> str:
    """Code numérique à annoncer oralement (zéros de tête conservés)."""
    return "".join(secrets.choice("0123456789") for _ in range(length))


def _passcode_digest(nonce: str, passcode: str) -> str:
    message = f"{nonce}:{passcode}".encode("utf-8")
    return hmac.new(settings.SECRET_KEY.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _ensure_class_held(occurrence: OccurrenceView) -> None:
    if occurrence.kind == CANCELLED:
        raise ClassCancelled(f"Le cours du {occurrence.date} est annulé.")
    if not occurrence.has_class:
        raise NotScheduled(f"Aucune séance n'est prévue le {occurrence.date} pour ce cours.")


def _utc(value: datetime) -> datetime:
    """Les horloges naïves sont interprétées en UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def decode_token(payload: str) -> dict:
    """Vérifie la signature et la forme du jeton. Lève InvalidToken."""
    try:
        claims = jwt.decode(payload, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as exc:
        logger.debug("Jeton de présence rejeté : %s", exc)
        raise InvalidToken("Jeton de présence invalide ou altéré.")

    if any(key not in claims for key in _REQUIRED_CLAIMS) or claims["typ"] != TOKEN_TYPE:
        raise InvalidToken("Jeton de présence mal formé.")
    if claims["kind"] not in TOKEN_KINDS:
        raise InvalidToken("Type de jeton inconnu.")
    if claims["kind"] == TOKEN_KIND_PASSWORD and not claims.get("passcode_digest"):
        raise InvalidToken("Jeton PASSWORD sans code associé.")

    try:
        claims["date"] = date.fromisoformat(claims["date"])
        claims["issued_at"] = _utc(datetime.fromisoformat(claims["issued_at"]))
        claims["valid_until"] = _utc(datetime.fromisoformat(claims["valid_until"]))
        claims["course_id"] = int(claims["course_id"])
    except (TypeError, ValueError):
        raise InvalidToken("Jeton de présence mal formé.")
    return claims


# ----------------------------------------------------------------
# Émission
# ----------------------------------------------------------------

def issue_token(
    db: Session,
    course_id: int,
    data: CheckInTokenCreate,
    actor: Principal,
    now: Optional[datetime] = None,
) -> CheckInTokenResponse:
    """
    Émet un jeton de présence pour la séance du cours à la date demandée.

    Lève NotFound, AuthorizationDenied, ClassCancelled (date annulée)
    ou NotScheduled (aucune séance ce jour-là).
    """
    course = load_course(db, course_id)
    ensure_course_owner(course, actor)

    occurrence = resolve_for_date(db, course, data.date)
    _ensure_class_held(occurrence)

    issued_at = _utc(now) if now is not None else datetime.now(timezone.utc)
    valid_until = issued_at + timedelta(minutes=settings.CHECKIN_TOKEN_TTL_MINUTES)
    exception_id = occurrence.exception_id if occurrence.kind == MAKEUP_CLASS else None
    nonce = secrets.token_hex(10)

    claims = {
        "typ": TOKEN_TYPE,
        "course_id": course.id,
        "date": data.date.isoformat(),
        "exception_id": exception_id,
        "kind": data.kind,
        "nonce": nonce,
        "issued_at": issued_at.isoformat(),
        "valid_until": valid_until.isoformat(),
    }

    passcode = None
    if data.kind == TOKEN_KIND_PASSWORD:
        passcode = _generate_passcode(settings.CHECKIN_PASSCODE_LENGTH)
        claims["passcode_digest"] = _passcode_digest(nonce, passcode)

    payload = jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    qr_png_base64 = None
    if data.kind == TOKEN_KIND_QR:
        qr_png_base64 = base64.b64encode(generate_qr_image(payload)).decode("ascii")

    logger.info(
        "Jeton %s émis : cours %s, %s, valable jusqu'à %s",
        data.kind, course.id, data.date, valid_until.isoformat(),
    )
    return CheckInTokenResponse(
        payload=payload,
        kind=data.kind,
        course_id=course.id,
        date=data.date,
        exception_id=exception_id,
        issued_at=issued_at,
        valid_until=valid_until,
        passcode=passcode,
        qr_png_base64=qr_png_base64,
    )


# ----------------------------------------------------------------
# Rachat
# ----------------------------------------------------------------

def redeem_token(
    db: Session,
    data: RedeemRequest,
    actor: Principal,
    now: Optional[datetime] = None,
) -> RecordView:
    """
    Enregistre la présence d'un étudiant à partir d'un jeton.

    Un étudiant ne peut pointer que pour lui-même (un ADMIN peut pointer pour autrui).
    Deux rachats concurrents pour le même étudiant et la même séance :
    un seul réussit, l'autre reçoit AlreadyCheckedIn.
    """
    claims = decode_token(data.token)
    moment = _utc(now) if now is not None else datetime.now(timezone.utc)

    if moment >= claims["valid_until"]:
        raise Expired("Ce jeton de présence a expiré.")

    if not actor.is_admin and actor.id != data.student_id:
        raise AuthorizationDenied("Un étudiant ne peut pointer que pour lui-même.")

    course = db.get(Course, claims["course_id"])
    if course is None:
        raise InvalidToken("Le cours référencé par ce jeton n'existe plus.")

    occurrence = resolve_for_date(db, course, claims["date"])
    _ensure_class_held(occurrence)

    if claims["kind"] == TOKEN_KIND_PASSWORD:
        expected = claims["passcode_digest"]
        given = _passcode_digest(claims["nonce"], (data.passcode or "").strip())
        if not hmac.compare_digest(expected, given):
            raise InvalidPasscode("Code de présence incorrect.")
        method = METHOD_PASSWORD
    else:
        method = METHOD_QR

    day = claims["date"]

    def operation() -> AttendanceRecord:
        # La séance peut avoir été annulée depuis la vérification ci-dessus
        current = resolve_for_date(db, lock_course(db, course.id), day)
        _ensure_class_held(current)
        exception_id = current.exception_id if current.kind == MAKEUP_CLASS else None
        record = load_or_create_record(db, data.student_id, course.id, day, exception_id)
        if record.detail is not None and record.detail.raw_status in CHECKED_IN_STATUSES:
            raise AlreadyCheckedIn(
                f"Présence déjà enregistrée pour l'étudiant {data.student_id} le {day}."
            )
        apply_detail(record, PRESENT, method, moment)
        return record

    record = run_record_write(db, operation, description="rachat de jeton")
    logger.info(
        "Pointage %s : étudiant %s, cours %s, %s",
        method, data.student_id, course.id, day,
    )
    return to_view(record)
