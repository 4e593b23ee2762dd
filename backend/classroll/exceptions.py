"""
Erreurs métier du moteur de présence.

Chaque erreur porte un `code` machine stable et le statut HTTP associé.
Le handler enregistré dans main.py les convertit en réponse JSON :
    {"detail": <message>, "code": <code>}

Familles :
- NotFound            (404)
- Conflict            (409) : unicité date / occurrence / présence
- Expired             (410) : jeton de présence périmé
- StateViolation      (409) : transition de workflow interdite
- AuthorizationDenied (403) : contrôle de propriété / rôle
- ValidationError     (400) : entrée mal formée ou incohérente
- ServiceUnavailable  (503) : incident d'infrastructure, seule erreur rejouable
"""


class DomainError(Exception):
    """Base de toutes les erreurs métier."""

    code = "DOMAIN_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class NotFound(DomainError):
    code = "NOT_FOUND"
    status_code = 404


class Conflict(DomainError):
    code = "CONFLICT"
    status_code = 409


class Expired(DomainError):
    code = "EXPIRED"
    status_code = 410


class StateViolation(DomainError):
    code = "STATE_VIOLATION"
    status_code = 409


class AuthorizationDenied(DomainError):
    code = "AUTHORIZATION_DENIED"
    status_code = 403


class ValidationError(DomainError):
    code = "VALIDATION_ERROR"
    status_code = 400


class ServiceUnavailable(DomainError):
    code = "SERVICE_UNAVAILABLE"
    status_code = 503
    retryable = True


# --- Conflits ---

class AlreadyCheckedIn(Conflict):
    code = "ALREADY_CHECKED_IN"


class AlreadyLinked(Conflict):
    code = "ALREADY_LINKED"


class HasDependentMakeup(Conflict):
    code = "HAS_DEPENDENT_MAKEUP"


class HasAttendanceRecords(Conflict):
    code = "HAS_ATTENDANCE_RECORDS"


# --- Workflow ---

class Immutable(StateViolation):
    code = "IMMUTABLE"


class AlreadyDecided(StateViolation):
    code = "ALREADY_DECIDED"


# --- Validation ---

class InvalidWeekday(ValidationError):
    code = "INVALID_WEEKDAY"


class NotCancelled(ValidationError):
    code = "NOT_CANCELLED"


class OutOfRange(ValidationError):
    code = "OUT_OF_RANGE"


class InvalidMakeupDate(ValidationError):
    code = "INVALID_MAKEUP_DATE"


class ClassCancelled(ValidationError):
    code = "CLASS_CANCELLED"


class NotScheduled(ValidationError):
    code = "NOT_SCHEDULED"


class InvalidToken(ValidationError):
    code = "INVALID_TOKEN"


class InvalidPasscode(ValidationError):
    code = "INVALID_PASSCODE"


class NotJustifiable(ValidationError):
    code = "NOT_JUSTIFIABLE"


class InvalidRange(ValidationError):
    code = "INVALID_RANGE"


class InvalidDecision(ValidationError):
    code = "INVALID_DECISION"
