"""
backend/app/api - Routers de la API
───────────────────────────────────
Un router por área.
"""

from .health import router as health_router
from .dispatch import router as dispatch_router
from .settlements import router as settlements_router
from .zones import router as zones_router
from .carrier_accounts import router as carrier_accounts_router
from .logs import router as logs_router

__all__ = [
    "health_router",
    "dispatch_router",
    "settlements_router",
    "zones_router",
    "carrier_accounts_router",
    "logs_router",
]
