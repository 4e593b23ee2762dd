"""
Modèles SQLAlchemy pour les fiches de présence.

Une AttendanceRecord est unique par (étudiant, cours, date) et créée au premier événement.
Elle possède au plus un AttendanceDetail (le fait brut) et au plus une LeaveRequest
(la justification). Les deux sont indépendants : une demande peut justifier
une absence déjà enregistrée. Le statut affiché est calculé par status_resolver.

La colonne version sert de verrou optimiste (version_id_col) : une mise à jour
concurrente sur une version périmée lève StaleDataError au lieu d'écraser.
"""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from classroll.database import Base

PRESENT = "PRESENT"
LATE = "LATE"
ABSENT = "ABSENT"
MEDICAL = "MEDICAL"
OFFICIAL = "OFFICIAL"
RAW_STATUSES = {PRESENT, LATE, ABSENT, MEDICAL, OFFICIAL}

# Statuts qu'un étudiant peut contester par une demande d'absence
JUSTIFIABLE_STATUSES = {LATE, ABSENT, MEDICAL}

# Statuts considérés comme "déjà pointé" pour le passage du jeton
CHECKED_IN_STATUSES = {PRESENT, LATE}

METHOD_MANUAL = "MANUAL"
METHOD_QR = "QR"
METHOD_PASSWORD = "PASSWORD"
METHOD_AUTO = "AUTO"
CHECK_METHODS = {METHOD_MANUAL, METHOD_QR, METHOD_PASSWORD, METHOD_AUTO}


class AttendanceRecord(Base):
    """Fiche canonique par (étudiant, cours, date)."""
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("student_id", "course_id", "date", name="uq_attendance_records_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, nullable=False)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)

    # Rattrapage auquel la fiche se rapporte (traçabilité, NULL pour une séance régulière)
    schedule_exception_id = Column(
        Integer, ForeignKey("schedule_exceptions.id", ondelete="RESTRICT"), nullable=True
    )
    notes = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    detail = relationship(
        "AttendanceDetail",
        back_populates="record",
        uselist=False,
        cascade="all, delete-orphan",
    )
    leave_request = relationship(
        "LeaveRequest",
        back_populates="record",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}


class AttendanceDetail(Base):
    """Fait brut : horodatage, méthode de pointage, statut saisi."""
    __tablename__ = "attendance_details"

    id = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(
        Integer, ForeignKey("attendance_records.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    checked_at = Column(DateTime(timezone=True), nullable=False)
    method = Column(String(20), nullable=False)              # MANUAL, QR, PASSWORD, AUTO
    raw_status = Column(String(20), nullable=False)          # PRESENT, LATE, ABSENT, MEDICAL, OFFICIAL
    requires_justification = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    record = relationship("AttendanceRecord", back_populates="detail")
