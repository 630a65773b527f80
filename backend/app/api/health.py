"""
backend/app/api/health.py - Salud del servicio
───────────────────────────────────────────────
Endpoint para verificar que el servicio responde.
"""

from fastapi import APIRouter

from backend.app.config import settings
from backend.app.models import HealthResponse

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("", response_model=HealthResponse)
@router.get("/", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Estado del servicio.

    Returns:
        estado y versión
    """
    return HealthResponse(status="ok", version=settings.APP_VERSION)
