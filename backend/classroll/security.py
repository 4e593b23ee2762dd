"""
Identification de l'appelant.

L'authentification est déléguée à un fournisseur d'identité externe qui émet
un JWT (HS256, clé partagée SECRET_KEY) avec les claims :
    sub  : identifiant numérique de l'utilisateur
    role : STUDENT, INSTRUCTOR ou ADMIN
Le moteur décode le jeton et fait confiance au principal obtenu.
"""

import logging

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from classroll.config import settings
from classroll.schemas.principal import ROLES, Principal

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def decode_principal(token: str) -> Principal:
    """Décode un jeton d'accès en Principal. Lève ValueError si invalide."""
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as exc:
        raise ValueError(f"Jeton d'accès invalide : {exc}")

    role = str(claims.get("role", "")).upper()
    if role not in ROLES:
        raise ValueError("Rôle absent ou inconnu dans le jeton d'accès.")
    try:
        user_id = int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        raise ValueError("Identifiant utilisateur absent du jeton d'accès.")
    return Principal(id=user_id, role=role)


def create_access_token(user_id: int, role: str) -> str:
    """Utilitaire (tests, scripts) : signe un jeton au format du fournisseur d'identité."""
    return jwt.encode({"sub": str(user_id), "role": role}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> Principal:
    """Dépendance FastAPI : principal authentifié (401 si absent ou invalide)."""
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Authentification requise.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return decode_principal(credentials.credentials)
    except ValueError as e:
        logger.debug("Authentification refusée : %s", e)
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
