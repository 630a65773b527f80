"""
backend/app/api/zones.py - Tarifas por zona API
"""
from typing import Optional

from fastapi import APIRouter

from backend.app.api.errors import http_error
from backend.app.api.logs import add_log
from backend.app.models import CarrierZoneBulk, CarrierZoneUpsert
from cod_logic import (
    bulk_upsert_carrier_zones,
    delete_carrier_zone,
    get_carrier_zones,
    upsert_carrier_zone,
)

router = APIRouter(prefix="/zones", tags=["Zones"])


@router.get("")
@router.get("/")
async def list_zones(store_id: str, carrier_id: Optional[str] = None):
    try:
        zones = get_carrier_zones(store_id, carrier_id)
        return {"success": True, "data": zones, "count": len(zones)}
    except Exception as e:
        raise http_error(e)


@router.post("")
@router.post("/")
async def upsert_zone(request: CarrierZoneUpsert):
    """Crea la zona, o actualiza su tarifa si ya existe con ese nombre."""
    try:
        zone = upsert_carrier_zone(
            request.store_id, request.carrier_id,
            request.model_dump(include={"zone_name", "rate", "zone_code", "is_active"}),
        )
        add_log("zone_saved", "carrier_zone", zone["id"], zone["zone_name"],
                request.user_id, f"tarifa {zone['rate']:,.2f}")
        return zone
    except Exception as e:
        raise http_error(e)


@router.post("/bulk")
async def bulk_upsert(request: CarrierZoneBulk):
    try:
        result = bulk_upsert_carrier_zones(
            request.store_id, request.carrier_id, [z.model_dump() for z in request.zones]
        )
        add_log("zones_bulk", "carrier", request.carrier_id, None, request.user_id,
                f"{result['created']} creadas, {result['updated']} actualizadas")
        return {"success": True, **result}
    except Exception as e:
        raise http_error(e)


@router.delete("/{zone_id}")
async def delete_zone(zone_id: str, store_id: str, user_id: Optional[str] = None):
    try:
        delete_carrier_zone(zone_id, store_id)
        add_log("zone_deleted", "carrier_zone", zone_id, None, user_id)
        return {"success": True}
    except Exception as e:
        raise http_error(e)
