"""
Service métier pour les fiches de présence (une fiche par étudiant / cours / date).

Linéarisation des écritures sur une même clé :
1. La fiche est lue avec SELECT … FOR UPDATE (verrou de ligne PostgreSQL)
2. Si elle n'existe pas, elle est créée puis flushée : la contrainte
   uq_attendance_records_key fait échouer le second créateur (IntegrityError)
3. La colonne version (version_id_col) fait échouer une mise à jour basée
   sur une lecture périmée (StaleDataError)
Avant toute écriture, la ligne du cours est verrouillée puis la date revérifiée :
une annulation concurrente ne peut pas laisser de fiche sur une date annulée.

Dans les cas 2 et 3, la transaction est annulée et l'opération rejouée une fois :
le perdant relit l'état du gagnant (→ AlreadyCheckedIn ou fusion), jamais de doublon.

Pointage collectif (bulk_upsert) : chaque entrée est sa propre transaction ;
une entrée invalide est ignorée et signalée dans le rapport, sans rejouer le lot.
"""

import logging
from datetime import date, datetime, timezone
from typing import Callable, Iterator, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.orm.exc import StaleDataError

from classroll.exceptions import (
    AuthorizationDenied,
    ClassCancelled,
    Conflict,
    DomainError,
    NotFound,
    ValidationError,
)
from classroll.models.attendance import (
    JUSTIFIABLE_STATUSES,
    RAW_STATUSES,
    AttendanceDetail,
    AttendanceRecord,
)
from classroll.models.course import Course
from classroll.schemas.attendance import (
    AttendanceDetailView,
    BulkUpsertReport,
    BulkUpsertRequest,
    RecordUpsert,
    RecordView,
    SkippedEntry,
)
from classroll.schemas.leave_request import LeaveRequestSummary
from classroll.schemas.principal import STUDENT, Principal
from classroll.schemas.schedule import CANCELLED, MAKEUP_CLASS
from classroll.services.course_service import ensure_course_owner, load_course, lock_course
from classroll.services.schedule_service import resolve_for_date
from classroll.services.status_resolver import UNCONFIRMED, resolve_status

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 2
DERIVED_STATUSES = RAW_STATUSES | {UNCONFIRMED}


# ----------------------------------------------------------------
# Écriture linéarisée par clé (étudiant, cours, date)
# ----------------------------------------------------------------

def find_record(
    db: Session,
    student_id: int,
    course_id: int,
    day: date,
    lock: bool = False,
) -> Optional[AttendanceRecord]:
    query = select(AttendanceRecord).where(
        AttendanceRecord.student_id == student_id,
        AttendanceRecord.course_id == course_id,
        AttendanceRecord.date == day,
    )
    if lock:
        query = query.with_for_update()
    return db.execute(query).scalar()


def load_or_create_record(
    db: Session,
    student_id: int,
    course_id: int,
    day: date,
    schedule_exception_id: Optional[int] = None,
) -> AttendanceRecord:
    """
    Retourne la fiche verrouillée, ou la crée (création paresseuse au premier évènement).
    Le flush immédiat fait remonter l'IntegrityError d'une création concurrente.
    """
    record = find_record(db, student_id, course_id, day, lock=True)
    if record is None:
        record = AttendanceRecord(
            student_id=student_id,
            course_id=course_id,
            date=day,
            schedule_exception_id=schedule_exception_id,
        )
        db.add(record)
        db.flush()
    return record


def apply_detail(
    record: AttendanceRecord,
    raw_status: str,
    method: str,
    checked_at: datetime,
) -> AttendanceDetail:
    """Crée ou met à jour le fait brut et recalcule requires_justification."""
    detail = record.detail
    if detail is None:
        detail = AttendanceDetail(checked_at=checked_at, method=method, raw_status=raw_status)
        record.detail = detail
    else:
        detail.checked_at = checked_at
        detail.method = method
        detail.raw_status = raw_status
    detail.requires_justification = raw_status in JUSTIFIABLE_STATUSES

    # Marque la fiche modifiée : incrémente version (contrôle de lecture périmée)
    record.updated_at = func.now()
    return detail


def run_record_write(
    db: Session,
    operation: Callable[[], AttendanceRecord],
    description: str = "écriture",
) -> AttendanceRecord:
    """
    Exécute `operation` puis commit. Rejoue une fois après rollback si une écriture
    concurrente a gagné (IntegrityError / StaleDataError). Toute erreur métier
    annule la transaction et laisse l'état antérieur intact.
    """
    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        try:
            record = operation()
            db.commit()
            return record
        except (IntegrityError, StaleDataError) as exc:
            db.rollback()
            logger.debug("%s : écriture concurrente détectée (tentative %d) : %s", description, attempt, exc)
            if attempt == MAX_WRITE_ATTEMPTS:
                raise Conflict("La fiche de présence a été modifiée simultanément, réessayez.")
        except DomainError:
            db.rollback()
            raise
    raise Conflict("La fiche de présence a été modifiée simultanément, réessayez.")


# ----------------------------------------------------------------
# Vues
# ----------------------------------------------------------------

def to_view(record: AttendanceRecord) -> RecordView:
    """Fusionne la fiche et ses sous-fiches ; le statut passe toujours par le resolver."""
    detail = record.detail
    leave_request = record.leave_request
    return RecordView(
        id=record.id,
        student_id=record.student_id,
        course_id=record.course_id,
        date=record.date,
        schedule_exception_id=record.schedule_exception_id,
        notes=record.notes,
        status=resolve_status(detail, leave_request),
        detail=AttendanceDetailView.model_validate(detail) if detail is not None else None,
        leave_request=(
            LeaveRequestSummary.model_validate(leave_request) if leave_request is not None else None
        ),
    )


class RecordQuery:
    """
    Séquence paresseuse, finie et ré-itérable de fiches fusionnées.

    Chaque itération relance la requête (yield_per) : deux parcours successifs
    reflètent l'état courant de la base. Le filtre `status` porte sur le statut dérivé.
    """

    def __init__(
        self,
        db: Session,
        student_id: Optional[int] = None,
        course_id: Optional[int] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        status: Optional[str] = None,
        instructor_id: Optional[int] = None,
        batch_size: int = 200,
    ):
        if status is not None and status not in DERIVED_STATUSES:
            raise ValidationError(f"Statut invalide. Valeurs acceptées : {sorted(DERIVED_STATUSES)}")
        if start is not None and end is not None and end < start:
            raise ValidationError("La date de fin doit être postérieure ou égale à la date de début.")
        self.db = db
        self.student_id = student_id
        self.course_id = course_id
        self.start = start
        self.end = end
        self.status = status
        self.instructor_id = instructor_id
        self.batch_size = batch_size

    def statement(self):
        query = select(AttendanceRecord).options(
            joinedload(AttendanceRecord.detail),
            joinedload(AttendanceRecord.leave_request),
        )
        if self.student_id is not None:
            query = query.where(AttendanceRecord.student_id == self.student_id)
        if self.course_id is not None:
            query = query.where(AttendanceRecord.course_id == self.course_id)
        if self.start is not None:
            query = query.where(AttendanceRecord.date >= self.start)
        if self.end is not None:
            query = query.where(AttendanceRecord.date <= self.end)
        if self.instructor_id is not None:
            query = query.where(
                AttendanceRecord.course_id.in_(
                    select(Course.id).where(Course.instructor_id == self.instructor_id)
                )
            )
        return query.order_by(AttendanceRecord.date.desc(), AttendanceRecord.student_id)

    def __iter__(self) -> Iterator[RecordView]:
        result = self.db.execute(
            self.statement().execution_options(yield_per=self.batch_size)
        ).scalars()
        for record in result:
            view = to_view(record)
            if self.status is None or view.status == self.status:
                yield view


# ----------------------------------------------------------------
# Opérations
# ----------------------------------------------------------------

def upsert_record(
    db: Session,
    data: RecordUpsert,
    actor: Principal,
    now: Optional[datetime] = None,
) -> RecordView:
    """
    Crée ou met à jour le fait brut d'une fiche (saisie enseignant).

    Lève NotFound (cours), AuthorizationDenied (pas l'enseignant responsable),
    ClassCancelled (la date porte une annulation).
    """
    course = load_course(db, data.course_id)
    ensure_course_owner(course, actor)
    _ensure_not_cancelled(db, course, data.date)
    checked_at = now or datetime.now(timezone.utc)

    def operation() -> AttendanceRecord:
        exception_id = lock_occurrence(db, course.id, data.date)
        record = load_or_create_record(db, data.student_id, course.id, data.date, exception_id)
        apply_detail(record, data.raw_status, data.method, checked_at)
        if data.notes is not None:
            record.notes = data.notes
        return record

    record = run_record_write(db, operation, description="upsert")
    logger.info(
        "Présence enregistrée : étudiant %s, cours %s, %s → %s (%s)",
        data.student_id, course.id, data.date, data.raw_status, data.method,
    )
    return to_view(record)


def bulk_upsert(
    db: Session,
    course_id: int,
    day: date,
    data: BulkUpsertRequest,
    actor: Principal,
    now: Optional[datetime] = None,
) -> BulkUpsertReport:
    """
    Applique upsert à chaque entrée d'un pointage collectif.

    Chaque entrée est atomique, mais le lot tolère un succès partiel : une entrée
    invalide (statut inconnu, doublon dans le lot, conflit) est ignorée et
    listée dans `skipped`, sans être rejouée. Les préconditions communes
    (cours, droits, date annulée) font échouer tout le lot.
    """
    course = load_course(db, course_id)
    ensure_course_owner(course, actor)
    _ensure_not_cancelled(db, course, day)
    checked_at = now or datetime.now(timezone.utc)

    applied = []
    skipped = []
    seen_in_batch: set = set()

    for entry in data.entries:
        raw_status = (entry.raw_status or "").strip().upper()

        if entry.student_id in seen_in_batch:
            skipped.append(SkippedEntry(student_id=entry.student_id, reason="DUPLICATE_IN_BATCH"))
            logger.debug("Doublon intra-lot ignoré : étudiant %s", entry.student_id)
            continue
        seen_in_batch.add(entry.student_id)

        if raw_status not in RAW_STATUSES:
            skipped.append(SkippedEntry(student_id=entry.student_id, reason="INVALID_STATUS"))
            logger.debug("Statut invalide ignoré : étudiant %s (%s)", entry.student_id, entry.raw_status)
            continue

        def operation(entry=entry, raw_status=raw_status) -> AttendanceRecord:
            exception_id = lock_occurrence(db, course.id, day)
            record = load_or_create_record(db, entry.student_id, course.id, day, exception_id)
            apply_detail(record, raw_status, data.method, checked_at)
            if entry.notes is not None:
                record.notes = entry.notes
            return record

        try:
            record = run_record_write(db, operation, description="bulk upsert")
        except DomainError as exc:
            skipped.append(SkippedEntry(student_id=entry.student_id, reason=exc.code))
            continue
        applied.append(to_view(record))

    logger.info(
        "Pointage collectif cours %s, %s : %d reçus, %d appliqués, %d ignorés",
        course.id, day, len(data.entries), len(applied), len(skipped),
    )
    return BulkUpsertReport(
        course_id=course.id,
        date=day,
        applied=applied,
        skipped=skipped,
        total_received=len(data.entries),
        total_applied=len(applied),
    )


def query_records(
    db: Session,
    actor: Principal,
    student_id: Optional[int] = None,
    course_id: Optional[int] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    status: Optional[str] = None,
) -> RecordQuery:
    """
    Construit la requête de consultation en appliquant le périmètre de l'appelant :
    un étudiant ne voit que ses fiches, un enseignant celles de ses cours.
    """
    instructor_id = None
    if actor.role == STUDENT:
        if student_id is not None and student_id != actor.id:
            raise AuthorizationDenied("Un étudiant ne peut consulter que ses propres fiches.")
        student_id = actor.id
    elif not actor.is_admin:
        if course_id is not None:
            ensure_course_owner(load_course(db, course_id), actor)
        instructor_id = actor.id

    return RecordQuery(
        db,
        student_id=student_id,
        course_id=course_id,
        start=start,
        end=end,
        status=status.strip().upper() if status else None,
        instructor_id=instructor_id,
    )


def get_record(db: Session, record_id: int, actor: Principal) -> RecordView:
    """Retourne une fiche fusionnée (propriétaire ou enseignant responsable)."""
    record = db.get(AttendanceRecord, record_id)
    if record is None:
        raise NotFound(f"Fiche de présence {record_id} introuvable.")
    if actor.role == STUDENT:
        if record.student_id != actor.id:
            raise AuthorizationDenied("Cette fiche de présence ne vous appartient pas.")
    else:
        ensure_course_owner(load_course(db, record.course_id), actor)
    return to_view(record)


def _ensure_not_cancelled(db: Session, course: Course, day: date) -> Optional[int]:
    """Lève ClassCancelled sur une annulation ; retourne l'ID du rattrapage éventuel."""
    occurrence = resolve_for_date(db, course, day)
    if occurrence.kind == CANCELLED:
        raise ClassCancelled(f"Le cours du {day} est annulé : aucune présence ne peut y être enregistrée.")
    if occurrence.kind == MAKEUP_CLASS:
        return occurrence.exception_id
    return None


def lock_occurrence(db: Session, course_id: int, day: date) -> Optional[int]:
    """
    Verrouille le cours et revérifie la date dans la transaction d'écriture.
    Appelé au début de chaque opération rejouable : une annulation validée
    entre-temps est vue à la tentative suivante.
    """
    course = lock_course(db, course_id)
    return _ensure_not_cancelled(db, course, day)
