"""
Résolution du statut affiché d'une fiche de présence.

Seul endroit où le fait brut (AttendanceDetail) et la justification (LeaveRequest)
sont fusionnés. Ordre de priorité :
1. Demande d'absence APPROVED → PRESENT (le détail brut reste inchangé)
2. Détail présent           → son statut brut
3. Sinon                    → UNCONFIRMED

Fonction pure : recalculée à chaque lecture, elle ne peut pas être périmée.
"""

from typing import Optional

from classroll.models.attendance import PRESENT
from classroll.models.leave_request import APPROVED

UNCONFIRMED = "UNCONFIRMED"


def resolve_status(detail=None, leave_request=None) -> str:
    if leave_request is not None and leave_request.status == APPROVED:
        return PRESENT
    if detail is not None:
        return detail.raw_status
    return UNCONFIRMED


def resolve_record_status(record) -> Optional[str]:
    """Raccourci : statut dérivé d'une AttendanceRecord (None si pas de fiche)."""
    if record is None:
        return None
    return resolve_status(record.detail, record.leave_request)
