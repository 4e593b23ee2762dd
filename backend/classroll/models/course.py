"""
Modèle SQLAlchemy pour les cours (un cours = un semestre d'un enseignant).
Le motif hebdomadaire est stocké sous forme de liste de jours : "MON,WED".
"""

from sqlalchemy import Boolean, Column, Date, DateTime, Integer, String, Text, Time, func

from classroll.database import Base

# Ordre = datetime.date.weekday()
WEEKDAY_CODES = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")


class Course(Base):
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    semester = Column(String(20), nullable=False)           # Ex: "2025-1"
    instructor_id = Column(Integer, nullable=False)         # Fourni par le fournisseur d'identité

    weekdays = Column(String(32), nullable=False)           # Ex: "MON,WED"
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    start_date = Column(Date, nullable=False)               # Premier jour du semestre (semaine 1)
    end_date = Column(Date, nullable=False)

    room = Column(String(50), nullable=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
