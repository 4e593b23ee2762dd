"""
Modèles SQLAlchemy pour les demandes d'absence et leurs justificatifs.

Les justificatifs sont une table enfant (et non une liste JSON sérialisée en texte) :
chaque ligne garde le handle fourni par le stockage de fichiers externe.
"""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import relationship

from classroll.database import Base

PENDING = "PENDING"
UNDER_REVIEW = "UNDER_REVIEW"
APPROVED = "APPROVED"
REJECTED = "REJECTED"
LEAVE_STATUSES = {PENDING, UNDER_REVIEW, APPROVED, REJECTED}
TERMINAL_STATUSES = {APPROVED, REJECTED}
DECISIONS = {APPROVED, REJECTED}


class LeaveRequest(Base):
    """Justification d'une absence / d'un retard, rattachée à une fiche de présence (1:1)."""
    __tablename__ = "leave_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(
        Integer, ForeignKey("attendance_records.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    student_id = Column(Integer, nullable=False)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)                  # = start_date pour une date unique
    reason = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=PENDING)

    reviewer_id = Column(Integer, nullable=True)
    feedback = Column(Text, nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    record = relationship("AttendanceRecord", back_populates="leave_request")
    evidences = relationship(
        "LeaveEvidence",
        back_populates="leave_request",
        cascade="all, delete-orphan",
        order_by="LeaveEvidence.id",
    )

    __mapper_args__ = {"version_id_col": version}


class LeaveEvidence(Base):
    """Justificatif déposé dans le stockage externe (on ne conserve que le handle)."""
    __tablename__ = "leave_evidences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    leave_request_id = Column(
        Integer, ForeignKey("leave_requests.id", ondelete="CASCADE"), nullable=False
    )
    filename = Column(String(255), nullable=False)
    handle = Column(String(255), nullable=False)
    size = Column(Integer, nullable=True)
    mime_type = Column(String(100), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    leave_request = relationship("LeaveRequest", back_populates="evidences")
