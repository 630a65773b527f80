"""
backend/app/config.py - Configuración
───────────────────────────────────
Configuración basada en variables de entorno.

Lee los valores de un archivo .env o del entorno del sistema.
"""

import os
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Configuración de la aplicación."""

    # ─────────────────────────────────────
    # App
    # ─────────────────────────────────────
    APP_NAME: str = "COD Settlement API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # ─────────────────────────────────────
    # Servidor
    # ─────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ─────────────────────────────────────
    # Base de datos
    # ─────────────────────────────────────
    DATABASE_PATH: str = os.getenv("COD_DB", "settlements.db")

    # ─────────────────────────────────────
    # CORS
    # ─────────────────────────────────────
    # Origins separados por coma (ej: "http://localhost:3000,https://app.example.com")
    CORS_ORIGINS: str = "http://localhost:3000"
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: str = "GET,POST,PUT,DELETE,OPTIONS"
    CORS_ALLOW_HEADERS: str = "*"

    # ─────────────────────────────────────
    # Archivos
    # ─────────────────────────────────────
    MAX_UPLOAD_SIZE: int = 10 * 1024 * 1024  # 10MB
    EXPORT_SHEET_PASSPHRASE: str = "codsettle"

    # ─────────────────────────────────────
    # Políticas de liquidación
    # ─────────────────────────────────────
    OVERPAYMENT_POLICY: str = "allow"  # allow | clamp | reject
    DEFAULT_ZONE_RATE: float = 25000

    @property
    def cors_origins_list(self) -> List[str]:
        """CORS Origins como lista."""
        if self.CORS_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def cors_methods_list(self) -> List[str]:
        """CORS Methods como lista."""
        if self.CORS_ALLOW_METHODS == "*":
            return ["*"]
        return [method.strip() for method in self.CORS_ALLOW_METHODS.split(",")]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# instancia única
settings = Settings()
