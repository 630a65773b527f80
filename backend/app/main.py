"""
backend/app/main.py - Aplicación FastAPI
───────────────────────────────────────────────────
Capa HTTP delgada sobre cod_logic/.

Ejecución:
    # desarrollo
    uvicorn backend.app.main:app --reload --port 8000

    # producción
    uvicorn backend.app.main:app --host 0.0.0.0 --port 8000 --workers 2
"""

import logging
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.app.api import (
    health_router,
    dispatch_router,
    settlements_router,
    zones_router,
    carrier_accounts_router,
    logs_router,
)
from backend.app.config import settings

# App
app = FastAPI(
    title=settings.APP_NAME,
    description="Despachos, liquidaciones y cuenta corriente de couriers contra entrega",
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# CORS (según variables de entorno)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.cors_methods_list,
    allow_headers=settings.CORS_ALLOW_HEADERS.split(",") if settings.CORS_ALLOW_HEADERS != "*" else ["*"],
)


# Routers
app.include_router(health_router)
app.include_router(dispatch_router)
app.include_router(settlements_router)
app.include_router(zones_router)
app.include_router(carrier_accounts_router)
app.include_router(logs_router)


@app.get("/")
async def root():
    """Raíz de la API."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "health": "/health",
    }


@app.on_event("startup")
async def startup_event():
    """Logging, ruta de la DB y tablas."""
    from cod_logic import db

    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    db.DB_PATH = Path(settings.DATABASE_PATH)
    db.ensure_tables()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
