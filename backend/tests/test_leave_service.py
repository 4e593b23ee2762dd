"""
Tests du workflow des demandes d'absence sur SQLite.
Le stockage des justificatifs et le sink de notifications sont des MagicMock.
"""

from datetime import date
from unittest.mock import MagicMock, patch

import pytest

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
from classroll.models.attendance import AttendanceDetail
from classroll.models.leave_request import LeaveEvidence, LeaveRequest
from classroll.schemas.attendance import RecordUpsert
from classroll.schemas.leave_request import (
    EvidenceItem,
    LeaveDecision,
    LeaveRequestCreate,
    LeaveRequestUpdate,
)
from classroll.schemas.principal import INSTRUCTOR, STUDENT, Principal
from classroll.services import leave_service
from classroll.services.evidence_store import LocalEvidenceStore
from classroll.services.leave_service import (
    decide_leave_request,
    edit_leave_request,
    file_leave_request,
    get_leave_request,
    open_evidence,
    start_review,
    withdraw_leave_request,
)
from classroll.services.notification_sink import LEAVE_REQUEST_DECIDED, LEAVE_REQUEST_FILED
from classroll.services.record_service import get_record, upsert_record

from conftest import INSTRUCTOR_ID, STUDENT_ID, make_course

MONDAY = date(2025, 3, 3)


# --- Helpers ---

def make_record(db, course, instructor, student_id, raw_status="ABSENT"):
    return upsert_record(
        db,
        RecordUpsert(student_id=student_id, course_id=course.id, date=MONDAY, raw_status=raw_status),
        instructor,
    )


def file_request(db, record, actor, sink=None, **kwargs):
    values = dict(record_id=record.id, start_date=MONDAY, reason="Rendez-vous médical")
    values.update(kwargs)
    return file_leave_request(db, LeaveRequestCreate(**values), actor, sink=sink)


def evidence(handle="EVD-1.pdf"):
    return EvidenceItem(filename="certificat.pdf", handle=handle, size=1024, mime_type="application/pdf")


@pytest.fixture
def absent_record(db, course, instructor, student):
    return make_record(db, course, instructor, student.id)


# --- Dépôt ---

def test_depot_succes(db, absent_record, student):
    sink = MagicMock()
    response = file_request(db, absent_record, student, sink=sink, evidence=[evidence()])

    assert response.status == "PENDING"
    assert response.end_date == MONDAY  # date unique
    assert [e.handle for e in response.evidences] == ["EVD-1.pdf"]
    assert response.record_status == "ABSENT"
    sink.publish.assert_called_once()
    assert sink.publish.call_args.args[0] == LEAVE_REQUEST_FILED


def test_depot_fiche_introuvable(db, student):
    with pytest.raises(NotFound):
        file_leave_request(db, LeaveRequestCreate(record_id=9999, start_date=MONDAY, reason="x"), student)


def test_depot_fiche_d_un_autre_etudiant(db, absent_record, other_student):
    with pytest.raises(AuthorizationDenied):
        file_request(db, absent_record, other_student)


def test_depot_fiche_presente_non_justifiable(db, course, instructor, student):
    record = make_record(db, course, instructor, student.id, raw_status="PRESENT")
    with pytest.raises(NotJustifiable):
        file_request(db, record, student)


def test_depot_statut_officiel_non_justifiable(db, course, instructor, student):
    record = make_record(db, course, instructor, student.id, raw_status="OFFICIAL")
    with pytest.raises(NotJustifiable):
        file_request(db, record, student)


def test_depot_periode_inversee(db, absent_record, student):
    with pytest.raises(InvalidRange):
        file_request(db, absent_record, student, start_date=date(2025, 3, 3), end_date=date(2025, 3, 1))


def test_depot_periode_ne_couvrant_pas_la_fiche(db, absent_record, student):
    with pytest.raises(InvalidRange):
        file_request(db, absent_record, student, start_date=date(2025, 3, 4), end_date=date(2025, 3, 6))


def test_depot_sur_une_periode(db, absent_record, student):
    response = file_request(db, absent_record, student, start_date=date(2025, 3, 1), end_date=date(2025, 3, 7))
    assert response.end_date == date(2025, 3, 7)


def test_depot_en_double(db, absent_record, student):
    file_request(db, absent_record, student)
    with pytest.raises(Conflict):
        file_request(db, absent_record, student)


def test_depot_sink_defaillant_ne_bloque_pas(db, absent_record, student):
    sink = MagicMock()
    sink.publish.side_effect = RuntimeError("broker down")

    response = file_request(db, absent_record, student, sink=sink)

    assert response.status == "PENDING"
    assert db.query(LeaveRequest).count() == 1


# --- Modification ---

def test_modification_en_attente(db, absent_record, student):
    created = file_request(db, absent_record, student, evidence=[evidence("EVD-1.pdf"), evidence("EVD-2.pdf")])
    store = MagicMock()

    response = edit_leave_request(
        db, created.id,
        LeaveRequestUpdate(reason="Hospitalisation", add_evidence=[evidence("EVD-3.pdf")], remove_evidence=["EVD-1.pdf"]),
        student,
        store=store,
    )

    assert response.reason == "Hospitalisation"
    assert [e.handle for e in response.evidences] == ["EVD-2.pdf", "EVD-3.pdf"]
    store.delete.assert_called_once_with("EVD-1.pdf")
    assert db.query(LeaveEvidence).count() == 2


def test_modification_suppression_fichier_en_echec(db, absent_record, student):
    created = file_request(db, absent_record, student, evidence=[evidence()])
    store = MagicMock()
    store.delete.side_effect = OSError("disque plein")

    response = edit_leave_request(db, created.id, LeaveRequestUpdate(remove_evidence=["EVD-1.pdf"]), student, store=store)

    assert response.evidences == []


def test_modification_dates(db, absent_record, student):
    created = file_request(db, absent_record, student)
    response = edit_leave_request(
        db, created.id, LeaveRequestUpdate(start_date=date(2025, 3, 2), end_date=date(2025, 3, 4)), student
    )
    assert (response.start_date, response.end_date) == (date(2025, 3, 2), date(2025, 3, 4))

    with pytest.raises(InvalidRange):
        edit_leave_request(db, created.id, LeaveRequestUpdate(end_date=date(2025, 3, 1)), student)


def test_modification_apres_examen_refusee(db, absent_record, student, instructor):
    created = file_request(db, absent_record, student)
    start_review(db, created.id, instructor)

    with pytest.raises(Immutable):
        edit_leave_request(db, created.id, LeaveRequestUpdate(reason="Autre"), student)


def test_modification_par_un_autre_etudiant(db, absent_record, student, other_student):
    created = file_request(db, absent_record, student)
    with pytest.raises(AuthorizationDenied):
        edit_leave_request(db, created.id, LeaveRequestUpdate(reason="Autre"), other_student)


# --- Examen et décision ---

def test_scenario_approbation(db, absent_record, student, instructor):
    """Absence justifiée puis approuvée : affichée PRESENT, fait brut toujours ABSENT."""
    created = file_request(db, absent_record, student)
    sink = MagicMock()

    response = decide_leave_request(
        db, created.id, LeaveDecision(decision="APPROVED", feedback="Certificat reçu"), instructor, sink=sink
    )

    assert response.status == "APPROVED"
    assert response.reviewer_id == instructor.id
    assert response.feedback == "Certificat reçu"
    assert response.decided_at is not None
    assert response.record_status == "PRESENT"

    view = get_record(db, absent_record.id, student)
    assert view.status == "PRESENT"
    assert view.detail.raw_status == "ABSENT"
    assert db.query(AttendanceDetail).one().raw_status == "ABSENT"

    topic, payload = sink.publish.call_args.args
    assert topic == LEAVE_REQUEST_DECIDED
    assert payload["record_status"] == "PRESENT"


def test_rejet_conserve_le_statut_brut(db, absent_record, student, instructor):
    created = file_request(db, absent_record, student)
    response = decide_leave_request(db, created.id, LeaveDecision(decision="rejected"), instructor)

    assert response.status == "REJECTED"
    assert response.record_status == "ABSENT"


def test_decision_apres_examen(db, absent_record, student, instructor):
    created = file_request(db, absent_record, student)
    reviewed = start_review(db, created.id, instructor)
    assert reviewed.status == "UNDER_REVIEW"

    assert decide_leave_request(db, created.id, LeaveDecision(decision="APPROVED"), instructor).status == "APPROVED"


def test_approbation_apres_correction_de_la_fiche(db, course, absent_record, student, instructor):
    """L'absence est corrigée en PRESENT après le dépôt : la demande ne peut plus qu'être rejetée."""
    created = file_request(db, absent_record, student)
    make_record(db, course, instructor, student.id, raw_status="PRESENT")

    with pytest.raises(NotJustifiable):
        decide_leave_request(db, created.id, LeaveDecision(decision="APPROVED"), instructor)
    assert db.get(LeaveRequest, created.id).status == "PENDING"

    response = decide_leave_request(db, created.id, LeaveDecision(decision="REJECTED"), instructor)
    assert response.status == "REJECTED"
    assert response.record_status == "PRESENT"


def test_decision_invalide(db, absent_record, student, instructor):
    created = file_request(db, absent_record, student)
    with pytest.raises(InvalidDecision):
        decide_leave_request(db, created.id, LeaveDecision(decision="PENDING"), instructor)


def test_decision_definitive(db, absent_record, student, instructor):
    created = file_request(db, absent_record, student)
    decide_leave_request(db, created.id, LeaveDecision(decision="APPROVED"), instructor)

    with pytest.raises(AlreadyDecided):
        decide_leave_request(db, created.id, LeaveDecision(decision="REJECTED"), instructor)
    with pytest.raises(AlreadyDecided):
        start_review(db, created.id, instructor)


def test_examen_deja_en_cours(db, absent_record, student, instructor):
    created = file_request(db, absent_record, student)
    start_review(db, created.id, instructor)
    with pytest.raises(StateViolation):
        start_review(db, created.id, instructor)


def test_decision_par_un_autre_enseignant(db, absent_record, student, other_instructor):
    created = file_request(db, absent_record, student)
    with pytest.raises(AuthorizationDenied):
        decide_leave_request(db, created.id, LeaveDecision(decision="APPROVED"), other_instructor)


def test_decision_par_l_etudiant(db, absent_record, student):
    created = file_request(db, absent_record, student)
    with pytest.raises(AuthorizationDenied):
        decide_leave_request(db, created.id, LeaveDecision(decision="APPROVED"), student)


def test_decision_demande_introuvable(db, instructor):
    with pytest.raises(NotFound):
        decide_leave_request(db, 9999, LeaveDecision(decision="APPROVED"), instructor)


# --- Retrait ---

def test_retrait_supprime_la_demande_et_les_fichiers(db, absent_record, student):
    created = file_request(db, absent_record, student, evidence=[evidence("EVD-1.pdf"), evidence("EVD-2.pdf")])
    store = MagicMock()

    withdraw_leave_request(db, created.id, student, store=store)

    assert db.query(LeaveRequest).count() == 0
    assert db.query(LeaveEvidence).count() == 0
    assert store.delete.call_count == 2
    assert get_record(db, absent_record.id, student).leave_request is None


def test_retrait_malgre_echec_du_stockage(db, absent_record, student):
    created = file_request(db, absent_record, student, evidence=[evidence()])
    store = MagicMock()
    store.delete.side_effect = OSError("indisponible")

    withdraw_leave_request(db, created.id, student, store=store)

    assert db.query(LeaveRequest).count() == 0


def test_retrait_apres_decision_refuse(db, absent_record, student, instructor):
    created = file_request(db, absent_record, student)
    decide_leave_request(db, created.id, LeaveDecision(decision="REJECTED"), instructor)

    with pytest.raises(Immutable):
        withdraw_leave_request(db, created.id, student)


def test_nouvelle_demande_apres_retrait(db, absent_record, student):
    created = file_request(db, absent_record, student)
    withdraw_leave_request(db, created.id, student)

    assert file_request(db, absent_record, student).status == "PENDING"


# --- Consultation ---

def test_consultation(db, absent_record, student, other_student, instructor):
    created = file_request(db, absent_record, student)

    assert get_leave_request(db, created.id, student).id == created.id
    assert get_leave_request(db, created.id, instructor).id == created.id
    with pytest.raises(AuthorizationDenied):
        get_leave_request(db, created.id, other_student)


def test_telechargement_justificatif(db, absent_record, student, instructor, tmp_path):
    store = LocalEvidenceStore(str(tmp_path))
    handle = store.put("certificat.pdf", b"%PDF-1.4 contenu", "application/pdf")
    created = file_request(db, absent_record, student, evidence=[evidence(handle)])

    for actor in (student, instructor):
        item, stream = open_evidence(db, created.id, handle, actor, store)
        with stream:
            assert stream.read() == b"%PDF-1.4 contenu"
        assert item.filename == "certificat.pdf"
        assert item.mime_type == "application/pdf"


def test_telechargement_par_un_autre_etudiant(db, absent_record, student, other_student, tmp_path):
    store = LocalEvidenceStore(str(tmp_path))
    handle = store.put("certificat.pdf", b"%PDF", "application/pdf")
    created = file_request(db, absent_record, student, evidence=[evidence(handle)])

    with pytest.raises(AuthorizationDenied):
        open_evidence(db, created.id, handle, other_student, store)


def test_telechargement_handle_inconnu(db, absent_record, student):
    created = file_request(db, absent_record, student, evidence=[evidence("EVD-1.pdf")])
    store = MagicMock()

    with pytest.raises(NotFound):
        open_evidence(db, created.id, "EVD-2.pdf", student, store)
    store.open.assert_not_called()


def test_telechargement_fichier_disparu(db, absent_record, student):
    created = file_request(db, absent_record, student, evidence=[evidence("EVD-1.pdf")])
    store = MagicMock()
    store.open.side_effect = FileNotFoundError("EVD-1.pdf")

    with pytest.raises(NotFound):
        open_evidence(db, created.id, "EVD-1.pdf", student, store)


# --- Concurrence ---

def test_examen_sur_une_version_perimee(file_session_factory):
    """
    A charge la demande, B la modifie et commit : le commit de A porte une version
    périmée (StaleDataError), annulé et signalé comme Conflict.
    """
    setup = file_session_factory()
    course = make_course(setup)
    instructor = Principal(id=INSTRUCTOR_ID, role=INSTRUCTOR)
    student = Principal(id=STUDENT_ID, role=STUDENT)
    record = make_record(setup, course, instructor, student.id)
    request_id = file_request(setup, record, student).id
    setup.close()

    session_a = file_session_factory()
    session_b = file_session_factory()
    real_lock = leave_service._lock_request
    edits = []

    def lock_then_concurrent_edit(db, request_id):
        leave_request = real_lock(db, request_id)
        if db is session_a and not edits:
            edits.append(request_id)
            edit_leave_request(session_b, request_id, LeaveRequestUpdate(reason="Motif corrigé"), student)
        return leave_request

    with patch.object(leave_service, "_lock_request", side_effect=lock_then_concurrent_edit):
        with pytest.raises(Conflict):
            start_review(session_a, request_id, instructor)

    assert edits == [request_id]
    session_a.close()
    session_b.close()

    check = file_session_factory()
    stored = check.get(LeaveRequest, request_id)
    assert stored.status == "PENDING"
    assert stored.reviewer_id is None
    assert stored.reason == "Motif corrigé"
    check.close()
