"""
Tests des collaborateurs externes : stockage des justificatifs, sink de notifications,
décodage du principal.
"""

from unittest.mock import MagicMock

import pytest
from jose import jwt

from classroll.config import settings
from classroll.security import create_access_token, decode_principal
from classroll.services.evidence_store import LocalEvidenceStore, discard_evidence
from classroll.services.notification_sink import LoggingNotificationSink, notify


# --- Stockage local ---

def test_depot_puis_suppression(tmp_path):
    store = LocalEvidenceStore(str(tmp_path / "evidence"))

    handle = store.put("Certificat.PDF", b"%PDF-1.4", "application/pdf")

    assert handle.startswith("EVD-")
    assert handle.endswith(".pdf")
    assert (tmp_path / "evidence" / handle).read_bytes() == b"%PDF-1.4"

    store.delete(handle)
    assert not (tmp_path / "evidence" / handle).exists()


def test_handle_hors_repertoire_refuse(tmp_path):
    store = LocalEvidenceStore(str(tmp_path))
    with pytest.raises(ValueError):
        store.delete("../secret.txt")


def test_discard_evidence_best_effort(tmp_path):
    store = LocalEvidenceStore(str(tmp_path))
    kept = store.put("a.png", b"png", "image/png")

    failed = discard_evidence(store, ["EVD-inexistant.pdf", kept])

    assert failed == ["EVD-inexistant.pdf"]
    assert not (tmp_path / kept).exists()


def test_lecture_d_un_justificatif(tmp_path):
    store = LocalEvidenceStore(str(tmp_path))
    handle = store.put("scan.png", b"\x89PNG contenu", "image/png")

    with store.open(handle) as stream:
        assert stream.read() == b"\x89PNG contenu"

    with pytest.raises(FileNotFoundError):
        store.open("EVD-inexistant.pdf")
    with pytest.raises(ValueError):
        store.open("../secret.txt")


# --- Notifications ---

def test_notify_succes():
    sink = MagicMock()
    assert notify(sink, "leave_request.filed", {"id": 1}) is True
    sink.publish.assert_called_once_with("leave_request.filed", {"id": 1})


def test_notify_echec_absorbe():
    sink = MagicMock()
    sink.publish.side_effect = ConnectionError("broker down")
    assert notify(sink, "leave_request.decided", {}) is False


def test_notify_sans_sink():
    assert notify(None, "leave_request.filed", {}) is False


def test_logging_sink_ne_leve_pas():
    LoggingNotificationSink().publish("leave_request.filed", {"id": 1})


# --- Principal ---

def test_decode_principal():
    principal = decode_principal(create_access_token(42, "instructor"))
    assert principal.id == 42
    assert principal.role == "INSTRUCTOR"
    assert principal.is_instructor


def test_decode_principal_role_inconnu():
    token = jwt.encode({"sub": "1", "role": "GUEST"}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    with pytest.raises(ValueError):
        decode_principal(token)


def test_decode_principal_sans_sub():
    token = jwt.encode({"role": "STUDENT"}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    with pytest.raises(ValueError):
        decode_principal(token)


def test_decode_principal_mauvaise_signature():
    token = jwt.encode({"sub": "1", "role": "STUDENT"}, "autre-cle", algorithm="HS256")
    with pytest.raises(ValueError):
        decode_principal(token)
