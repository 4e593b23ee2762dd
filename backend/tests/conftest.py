"""
Configuration partagée pour tous les tests.

- `client` : override get_db (BDD mockée) et get_current_principal pour éviter
  toute connexion réelle à PostgreSQL ; les tests API patchent les services.
- `db` : session SQLAlchemy sur une base SQLite en mémoire, pour les tests
  de service qui vérifient les contraintes et les transactions.
"""

import datetime as dt
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import classroll.models  # noqa: F401
from classroll.database import Base, get_db
from classroll.main import app
from classroll.models.course import Course
from classroll.schemas.principal import ADMIN, INSTRUCTOR, STUDENT, Principal
from classroll.security import get_current_principal

INSTRUCTOR_ID = 100
OTHER_INSTRUCTOR_ID = 200
STUDENT_ID = 1
OTHER_STUDENT_ID = 2


@pytest.fixture
def instructor():
    return Principal(id=INSTRUCTOR_ID, role=INSTRUCTOR)


@pytest.fixture
def other_instructor():
    return Principal(id=OTHER_INSTRUCTOR_ID, role=INSTRUCTOR)


@pytest.fixture
def student():
    return Principal(id=STUDENT_ID, role=STUDENT)


@pytest.fixture
def other_student():
    return Principal(id=OTHER_STUDENT_ID, role=STUDENT)


@pytest.fixture
def admin():
    return Principal(id=999, role=ADMIN)


# --- API ---

@pytest.fixture
def principal_holder():
    """Principal courant des requêtes de test (modifiable dans un test)."""
    return {"principal": Principal(id=INSTRUCTOR_ID, role=INSTRUCTOR)}


@pytest.fixture
def client(principal_holder):
    """Client HTTP de test avec la BDD mockée et un principal fixé."""
    mock_db = MagicMock()
    app.dependency_overrides[get_db] = lambda: mock_db
    app.dependency_overrides[get_current_principal] = lambda: principal_holder["principal"]
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def anonymous_client():
    """Client sans override d'authentification (vérifie le 401)."""
    app.dependency_overrides[get_db] = lambda: MagicMock()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# --- Base SQLite ---

def _make_engine(url: str):
    engine = create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def engine():
    engine = _make_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """Fabrique de sessions indépendantes sur une base SQLite fichier (scénarios concurrents)."""
    engine = create_engine(f"sqlite:///{tmp_path / 'classroll.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


def make_course(db, **overrides) -> Course:
    """Cours lundi / mercredi 09:00-10:00 à partir du lundi 3 mars 2025."""
    values = dict(
        name="Algorithmique",
        code=f"ALGO-{overrides.get('instructor_id', INSTRUCTOR_ID)}-{db.query(Course).count() + 1}",
        semester="2025-S2",
        instructor_id=INSTRUCTOR_ID,
        weekdays="MON,WED",
        start_time=dt.time(9, 0),
        end_time=dt.time(10, 0),
        start_date=dt.date(2025, 3, 3),
        end_date=dt.date(2025, 6, 27),
        room="B-204",
        is_active=True,
    )
    values.update(overrides)
    course = Course(**values)
    db.add(course)
    db.commit()
    db.refresh(course)
    return course


@pytest.fixture
def course(db):
    return make_course(db)
