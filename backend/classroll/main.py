"""
Point d'entrée principal de l'API ClassRoll.
Démarrage : uvicorn classroll.main:app --reload  (depuis backend/)
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

import classroll.models  # noqa: F401  (enregistre tous les modèles dans Base.metadata avant les routers)
from classroll.config import settings
from classroll.database import init_db
from classroll.exceptions import DomainError, ServiceUnavailable
from classroll.routers import checkin, courses, evidence, leave_requests, records, schedule

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Cycle de vie : création des tables en développement uniquement (AUTO_CREATE_TABLES)."""
    if settings.AUTO_CREATE_TABLES:
        init_db()
        logger.info("Tables créées / vérifiées (%s).", settings.ENV)
    yield


app = FastAPI(
    title="ClassRoll API",
    description="API de gestion des présences en cours : calendrier, pointage QR / mot de passe, justificatifs",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# CORS : autorise tous les ports localhost en développement (à restreindre en production).
# allow_origin_regex est nécessaire pour les requêtes preflight POST avec Content-Type JSON.
app.add_middleware(
    CORSMiddleware,
    allow_origins=[],
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)


app.include_router(courses.router)
app.include_router(schedule.router)
app.include_router(checkin.router)
app.include_router(records.router)
app.include_router(leave_requests.router)
app.include_router(evidence.router)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Erreur métier → statut HTTP de sa famille, avec un code machine stable."""
    logger.debug("%s %s → %s (%s)", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


@app.exception_handler(OperationalError)
async def database_unavailable_handler(request: Request, exc: OperationalError) -> JSONResponse:
    """Base de données injoignable : seule erreur que le client peut rejouer."""
    logger.error("Base de données indisponible : %s", exc)
    return JSONResponse(
        status_code=ServiceUnavailable.status_code,
        content={"detail": "Service temporairement indisponible.", "code": ServiceUnavailable.code},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Intercepte toutes les exceptions non gérées pour garantir que la réponse 500
    passe bien par CORSMiddleware (qui injecte les headers CORS).
    """
    logger.error("Exception non gérée : %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Une erreur interne est survenue."},
    )


@app.get("/api/health", tags=["Santé"])
def health_check():
    """Vérifie que l'API est opérationnelle."""
    return {"status": "ok", "service": "ClassRoll API", "version": "0.1.0"}
