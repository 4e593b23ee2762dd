"""
Signal de notification (collaborateur externe, fire-and-forget).

Le sink est injecté (dépendance FastAPI) plutôt que stocké dans un registre global.
Un échec de livraison est journalisé et ne fait jamais échouer l'opération d'origine.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)

LEAVE_REQUEST_FILED = "leave_request.filed"
LEAVE_REQUEST_DECIDED = "leave_request.decided"


class NotificationSink(ABC):
    @abstractmethod
    def publish(self, topic: str, payload: dict) -> None:
        """Publie un évènement. Peut lever : l'appelant passe par notify()."""


class LoggingNotificationSink(NotificationSink):
    """Sink par défaut : trace l'évènement dans les logs applicatifs."""

    def publish(self, topic: str, payload: dict) -> None:
        logger.info("Notification %s : %s", topic, payload)


def get_notification_sink() -> NotificationSink:
    """Dépendance FastAPI : sink par défaut (surchargable en test ou en production)."""
    return LoggingNotificationSink()


def notify(sink: Optional[NotificationSink], topic: str, payload: dict) -> bool:
    """Publie sans jamais propager d'erreur. Retourne False si la livraison a échoué."""
    if sink is None:
        return False
    try:
        sink.publish(topic, payload)
        return True
    except Exception as exc:
        logger.warning("Échec de la notification %s : %s", topic, exc)
        return False
