"""
backend/app/api/errors.py - Errores de negocio → HTTP
"""
import logging

from fastapi import HTTPException

from cod_logic.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


def http_error(e: Exception) -> HTTPException:
    """NotFound → 404, Conflict → 409, otra validación → 400, resto → 500."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    logger.exception("Error inesperado")
    return HTTPException(status_code=500, detail=str(e))
