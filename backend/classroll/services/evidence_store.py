"""
Stockage des justificatifs (collaborateur externe).

Le moteur ne manipule que des handles opaques : `put` dépose les octets et retourne
un handle stable, `open` le relit, `delete` le retire. LocalEvidenceStore range les fichiers sous
EVIDENCE_DIR ; un autre backend (S3, GED...) peut être injecté via get_evidence_store.
"""

import logging
import os
import uuid
from abc import ABC, abstractmethod
from typing import BinaryIO, Optional

from classroll.config import settings

logger = logging.getLogger(__name__)


class EvidenceStore(ABC):
    @abstractmethod
    def put(self, filename: str, content: bytes, mime_type: Optional[str] = None) -> str:
        """Dépose un fichier et retourne son handle."""

    @abstractmethod
    def open(self, handle: str) -> BinaryIO:
        """Ouvre le fichier en lecture binaire. Lève OSError s'il n'existe plus."""

    @abstractmethod
    def delete(self, handle: str) -> None:
        """Supprime le fichier désigné par handle. Peut lever une exception."""


class LocalEvidenceStore(EvidenceStore):
    """Stockage sur disque local : handle = nom de fichier unique sous base_dir."""

    def __init__(self, base_dir: str):
        self.base_dir = base_dir

    def put(self, filename: str, content: bytes, mime_type: Optional[str] = None) -> str:
        os.makedirs(self.base_dir, exist_ok=True)
        extension = os.path.splitext(filename)[1].lower()
        handle = f"EVD-{uuid.uuid4().hex}{extension}"
        with open(self._path(handle), "wb") as f:
            f.write(content)
        logger.info("Justificatif déposé : %s (%d octets) → %s", filename, len(content), handle)
        return handle

    def open(self, handle: str) -> BinaryIO:
        return open(self._path(handle), "rb")

    def delete(self, handle: str) -> None:
        os.remove(self._path(handle))
        logger.info("Justificatif supprimé : %s", handle)

    def _path(self, handle: str) -> str:
        # Le handle ne doit jamais sortir du répertoire de stockage
        if os.path.basename(handle) != handle:
            raise ValueError(f"Handle de justificatif invalide : {handle}")
        return os.path.join(self.base_dir, handle)


def get_evidence_store() -> EvidenceStore:
    """Dépendance FastAPI : stockage par défaut (surchargable en test)."""
    return LocalEvidenceStore(settings.EVIDENCE_DIR)


def discard_evidence(store: EvidenceStore, handles) -> list[str]:
    """
    Suppression best-effort : un échec est journalisé, jamais propagé.
    Retourne les handles dont la suppression a échoué.
    """
    failed = []
    for handle in handles:
        try:
            store.delete(handle)
        except Exception as exc:
            failed.append(handle)
            logger.warning("Suppression du justificatif %s impossible : %s", handle, exc)
    return failed
