"""
cod_logic/errors.py - Errores de negocio
────────────────────────────────────────
Todas heredan de ValueError: la capa HTTP responde 400 por defecto y
distingue NotFound (404) y Conflict (409).
"""


class SettlementError(ValueError):
    """Precondición rechazada; el mensaje se muestra tal cual al operador."""


class NotFoundError(SettlementError):
    pass


class ConflictError(SettlementError):
    """El estado actual no admite la operación (ya despachado, ya liquidado...)."""


class DiscrepancyError(SettlementError):
    """Diferencia de cobro que requiere confirmación explícita."""

    def __init__(self, message: str, discrepancy: float):
        super().__init__(message)
        self.discrepancy = discrepancy
