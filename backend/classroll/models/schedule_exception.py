"""
Modèle SQLAlchemy pour les exceptions au calendrier hebdomadaire (annulation / rattrapage).

Les séances régulières ne sont jamais persistées : elles sont calculées à la demande
à partir du motif hebdomadaire du cours. Seules les dérogations sont stockées ici.

Un rattrapage (MAKEUP) référence l'annulation qu'il remplace via related_exception_id.
L'unicité de cette colonne garantit au niveau BDD qu'une annulation n'a qu'un seul rattrapage.
"""

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from classroll.database import Base

CANCELLATION = "CANCELLATION"
MAKEUP = "MAKEUP"
EXCEPTION_TYPES = {CANCELLATION, MAKEUP}


class ScheduleException(Base):
    """Dérogation ponctuelle au motif hebdomadaire d'un cours, à une date donnée."""
    __tablename__ = "schedule_exceptions"
    __table_args__ = (
        UniqueConstraint("course_id", "date", name="uq_schedule_exceptions_course_date"),
        UniqueConstraint("related_exception_id", name="uq_schedule_exceptions_related"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    exception_type = Column(String(20), nullable=False)     # CANCELLATION, MAKEUP

    # Rattrapage → annulation remplacée (NULL pour une annulation)
    related_exception_id = Column(
        Integer, ForeignKey("schedule_exceptions.id", ondelete="RESTRICT"), nullable=True
    )

    week = Column(Integer, nullable=True)
    start_time = Column(Time, nullable=True)                # NULL = horaire du cours
    end_time = Column(Time, nullable=True)
    reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    cancellation = relationship(
        "ScheduleException",
        remote_side=[id],
        back_populates="makeup",
        foreign_keys=[related_exception_id],
    )
    makeup = relationship(
        "ScheduleException",
        back_populates="cancellation",
        foreign_keys=[related_exception_id],
        uselist=False,
    )
