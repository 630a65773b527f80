"""
cod_logic/zones.py - Tarifas por zona del courier
────────────────────────────────────────────────────────────
  • Resolución de tarifa: coincidencia exacta → zonas comodín → primera zona
    → constante (sin zonas configuradas)
  • Nombres comparados sin acentos ni mayúsculas ("Asunción" == "asuncion")
  • ABM de carrier_zones
"""

from __future__ import annotations

import logging
import os
import unicodedata
from typing import Dict, Iterable, List, Optional, Tuple

import sqlite3

from .db import get_connection, transaction, fetch_all, fetch_one, new_id, now_str
from .errors import NotFoundError, SettlementError

logger = logging.getLogger(__name__)

# prioridad de zonas comodín para ciudades sin zona propia
FALLBACK_ZONE_NAMES = ("default", "otros", "interior", "general")

# tarifa cuando el courier no tiene ninguna zona
DEFAULT_ZONE_RATE = float(os.getenv("DEFAULT_ZONE_RATE", "25000"))


def normalize_city(text: Optional[str]) -> str:
    """Quita acentos, pasa a minúsculas y recorta."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", str(text))
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return stripped.lower().strip()


class ZoneRateTable:
    """Tabla nombre → tarifa de un courier, con la cadena de respaldo."""

    def __init__(
        self,
        zones: Iterable[Tuple[str, float]],
        default_rate: float = DEFAULT_ZONE_RATE,
        carrier_id: Optional[str] = None,
    ):
        self.carrier_id = carrier_id
        self.default_rate = float(default_rate)
        self.rates: Dict[str, float] = {}
        for name, rate in zones:
            key = normalize_city(name)
            if key and key not in self.rates:
                self.rates[key] = float(rate)
        self._warned = False

    def __len__(self) -> int:
        return len(self.rates)

    @property
    def fallback_zone(self) -> Optional[str]:
        for name in FALLBACK_ZONE_NAMES:
            if name in self.rates:
                return name
        return None

    @property
    def has_fallback_zone(self) -> bool:
        return self.fallback_zone is not None

    def match(self, *candidates: Optional[str]) -> Optional[float]:
        """Sólo coincidencia exacta, sin respaldo."""
        for cand in candidates:
            key = normalize_city(cand)
            if key and key in self.rates:
                return self.rates[key]
        return None

    def resolve(self, *candidates: Optional[str]) -> float:
        """
        Tarifa para la primera zona/ciudad que coincida.

        Args:
            candidates: zona de entrega, ciudad, ... en orden de preferencia

        Returns:
            tarifa resuelta (nunca None)
        """
        rate = self.match(*candidates)
        if rate is not None:
            return rate

        fallback = self.fallback_zone
        if fallback is not None:
            return self.rates[fallback]

        if self.rates:
            first_name, first_rate = next(iter(self.rates.items()))
            if not self._warned:
                logger.warning(
                    f"Courier {self.carrier_id} sin zona de respaldo "
                    f"({'/'.join(FALLBACK_ZONE_NAMES)}); se usa la tarifa de '{first_name}': {first_rate:,.2f}"
                )
                self._warned = True
            return first_rate

        if not self._warned:
            logger.warning(
                f"Courier {self.carrier_id} sin zonas configuradas; tarifa por defecto {self.default_rate:,.2f}"
            )
            self._warned = True
        return self.default_rate


def resolve_zone_rate(zones: Dict[str, float], zone_or_city: Optional[str],
                      default_rate: float = DEFAULT_ZONE_RATE) -> float:
    """Atajo funcional sobre ZoneRateTable."""
    return ZoneRateTable(zones.items(), default_rate=default_rate).resolve(zone_or_city)


def load_rate_table(con: sqlite3.Connection, store_id: str, carrier_id: str,
                    default_rate: float = DEFAULT_ZONE_RATE) -> ZoneRateTable:
    rows = con.execute(
        """
        SELECT zone_name, rate FROM carrier_zones
        WHERE store_id = ? AND carrier_id = ? AND is_active = 1
        ORDER BY created_at, zone_name
        """,
        (store_id, carrier_id),
    ).fetchall()
    return ZoneRateTable(rows, default_rate=default_rate, carrier_id=carrier_id)


# ───────────── ABM de zonas ─────────────────────────────
def get_carrier_zones(store_id: str, carrier_id: Optional[str] = None) -> List[Dict]:
    sql = "SELECT * FROM carrier_zones WHERE store_id = ?"
    params: list = [store_id]
    if carrier_id:
        sql += " AND carrier_id = ?"
        params.append(carrier_id)
    sql += " ORDER BY zone_name"
    with get_connection() as con:
        rows = fetch_all(con, sql, params)
    for r in rows:
        r["is_active"] = bool(r["is_active"])
    return rows


def _upsert_zone(con: sqlite3.Connection, store_id: str, carrier_id: str, zone: Dict) -> bool:
    """Inserta o actualiza una zona. True si era nueva."""
    name = str(zone.get("zone_name") or "").strip()
    if not name:
        raise SettlementError("El nombre de la zona es obligatorio")
    try:
        rate = float(zone.get("rate"))
    except (TypeError, ValueError):
        raise SettlementError(f"Tarifa inválida para la zona '{name}'")
    if rate < 0:
        raise SettlementError(f"La tarifa de la zona '{name}' no puede ser negativa")

    carrier = con.execute(
        "SELECT 1 FROM carriers WHERE id = ? AND store_id = ?", (carrier_id, store_id)
    ).fetchone()
    if carrier is None:
        raise NotFoundError("Courier no encontrado")

    existing = con.execute(
        "SELECT id FROM carrier_zones WHERE store_id = ? AND carrier_id = ? AND zone_name = ?",
        (store_id, carrier_id, name),
    ).fetchone()
    is_active = 0 if zone.get("is_active") is False else 1
    if existing:
        con.execute(
            """
            UPDATE carrier_zones
               SET zone_code = ?, rate = ?, is_active = ?, updated_at = ?
             WHERE id = ?
            """,
            (zone.get("zone_code"), rate, is_active, now_str(), existing[0]),
        )
        return False
    con.execute(
        """
        INSERT INTO carrier_zones(id, store_id, carrier_id, zone_name, zone_code, rate, is_active, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (new_id(), store_id, carrier_id, name, zone.get("zone_code"), rate, is_active, now_str()),
    )
    return True


def upsert_carrier_zone(store_id: str, carrier_id: str, zone: Dict) -> Dict:
    with transaction() as con:
        _upsert_zone(con, store_id, carrier_id, zone)
        row = fetch_one(
            con,
            "SELECT * FROM carrier_zones WHERE store_id = ? AND carrier_id = ? AND zone_name = ?",
            (store_id, carrier_id, str(zone["zone_name"]).strip()),
        )
    row["is_active"] = bool(row["is_active"])
    return row


def bulk_upsert_carrier_zones(store_id: str, carrier_id: str, zones: List[Dict]) -> Dict[str, int]:
    """Carga masiva (p.ej. desde Excel). Todo o nada."""
    created = updated = 0
    with transaction() as con:
        for zone in zones:
            if _upsert_zone(con, store_id, carrier_id, zone):
                created += 1
            else:
                updated += 1
    logger.info(f"Zonas de {carrier_id}: {created} creadas, {updated} actualizadas")
    return {"created": created, "updated": updated}


def delete_carrier_zone(zone_id: str, store_id: str) -> None:
    with transaction() as con:
        cur = con.execute(
            "DELETE FROM carrier_zones WHERE id = ? AND store_id = ?", (zone_id, store_id)
        )
        if cur.rowcount == 0:
            raise NotFoundError("Zona no encontrada")
