"""
Principal authentifié tel que fourni par le fournisseur d'identité externe.
Le moteur lui fait confiance : aucune ré-authentification n'est effectuée.
"""

from pydantic import BaseModel

STUDENT = "STUDENT"
INSTRUCTOR = "INSTRUCTOR"
ADMIN = "ADMIN"
ROLES = {STUDENT, INSTRUCTOR, ADMIN}


class Principal(BaseModel):
    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN

    @property
    def is_instructor(self) -> bool:
        return self.role in (INSTRUCTOR, ADMIN)
