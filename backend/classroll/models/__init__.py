# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles
# (attendance_records.schedule_exception_id → schedule_exceptions.id, etc.).

from classroll.models.course import Course  # noqa: F401 (doit précéder les exceptions)
from classroll.models.schedule_exception import ScheduleException  # noqa: F401
from classroll.models.attendance import AttendanceDetail, AttendanceRecord  # noqa: F401
from classroll.models.leave_request import LeaveEvidence, LeaveRequest  # noqa: F401
