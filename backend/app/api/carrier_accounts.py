"""
backend/app/api/carrier_accounts.py - Cuenta corriente de couriers API
───────────────────────────────────────────────
Saldos, movimientos, ajustes y pagos fuera de liquidación.
"""
from typing import Optional

from fastapi import APIRouter, Query

from backend.app.api.errors import http_error
from backend.app.api.logs import add_log
from backend.app.config import settings
from backend.app.models import (
    AdjustmentRequest,
    BackfillRequest,
    CarrierConfigUpdate,
    CarrierPaymentRequest,
    ListResponse,
)
from cod_logic import (
    backfill_carrier_movements,
    create_adjustment,
    get_carrier_account_summary,
    get_carrier_balance,
    get_carrier_balance_summary,
    get_carrier_balances,
    get_carrier_config,
    get_carrier_movements,
    get_carrier_payments,
    get_unsettled_movements,
    register_carrier_payment,
    update_carrier_config,
)

router = APIRouter(prefix="/carrier-accounts", tags=["Carrier Accounts"])


# ─────────────────────────────────────
# Saldos
# ─────────────────────────────────────
@router.get("/balances")
async def balances(store_id: str):
    try:
        return {"success": True, "data": get_carrier_balances(store_id)}
    except Exception as e:
        raise http_error(e)


@router.get("/summary")
async def account_summary(store_id: str):
    """Posición global: lo que deben los couriers y lo que se les debe."""
    try:
        return get_carrier_account_summary(store_id)
    except Exception as e:
        raise http_error(e)


@router.get("/unsettled")
async def unsettled(store_id: str, carrier_id: Optional[str] = None):
    try:
        rows = get_unsettled_movements(store_id, carrier_id)
        return {"success": True, "data": rows, "count": len(rows)}
    except Exception as e:
        raise http_error(e)


@router.get("/payments")
async def list_payments(
    store_id: str,
    carrier_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    try:
        rows = get_carrier_payments(store_id, carrier_id, status, limit, offset)
        return {"success": True, "data": rows, "count": len(rows)}
    except Exception as e:
        raise http_error(e)


# ─────────────────────────────────────
# Operaciones
# ─────────────────────────────────────
@router.post("/adjustments", status_code=201)
async def adjustment(request: AdjustmentRequest):
    try:
        movement = create_adjustment(
            request.store_id, request.carrier_id, request.amount, request.direction,
            request.description, created_by=request.user_id, order_id=request.order_id,
        )
        add_log("carrier_adjustment", "carrier", request.carrier_id, None, request.user_id,
                f"{request.direction} {request.amount:,.2f}: {request.description}")
        return movement
    except Exception as e:
        raise http_error(e)


@router.post("/payments", status_code=201)
async def register_payment(request: CarrierPaymentRequest):
    try:
        payment = register_carrier_payment(
            request.store_id, request.carrier_id, request.amount, request.direction,
            request.payment_method,
            payment_reference=request.payment_reference,
            notes=request.notes,
            settlement_ids=request.settlement_ids,
            movement_ids=request.movement_ids,
            created_by=request.user_id,
        )
        add_log("carrier_payment", "carrier", request.carrier_id, payment["payment_code"],
                request.user_id, f"{request.direction} {request.amount:,.2f}")
        return payment
    except Exception as e:
        raise http_error(e)


@router.post("/backfill")
async def backfill(request: BackfillRequest):
    """Genera movimientos para entregas anteriores al libro (máx. 1000 por corrida)."""
    try:
        result = backfill_carrier_movements(request.store_id, default_rate=settings.DEFAULT_ZONE_RATE)
        add_log("carrier_backfill", "store", request.store_id, None, None,
                f"{result['orders_processed']} pedidos, {result['movements_created']} movimientos")
        return {"success": True, **result}
    except Exception as e:
        raise http_error(e)


# ─────────────────────────────────────
# Por courier
# ─────────────────────────────────────
@router.get("/{carrier_id}/balance")
async def carrier_balance(carrier_id: str, store_id: str):
    try:
        return get_carrier_balance(store_id, carrier_id)
    except Exception as e:
        raise http_error(e)


@router.get("/{carrier_id}/balance-summary")
async def carrier_balance_summary(carrier_id: str, store_id: str,
                                  from_date: Optional[str] = None, to_date: Optional[str] = None):
    try:
        return get_carrier_balance_summary(store_id, carrier_id, from_date, to_date)
    except Exception as e:
        raise http_error(e)


@router.get("/{carrier_id}/movements", response_model=ListResponse)
async def carrier_movements(
    carrier_id: str,
    store_id: str,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
    movement_type: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    try:
        result = get_carrier_movements(
            store_id, carrier_id, from_date, to_date, movement_type, limit, offset
        )
        return ListResponse(data=result["data"], count=result["count"])
    except Exception as e:
        raise http_error(e)


@router.get("/{carrier_id}/config")
async def carrier_config(carrier_id: str, store_id: str):
    try:
        return get_carrier_config(store_id, carrier_id)
    except Exception as e:
        raise http_error(e)


@router.put("/{carrier_id}/config")
async def update_config(carrier_id: str, request: CarrierConfigUpdate):
    try:
        config = update_carrier_config(
            request.store_id, carrier_id, request.settlement_type, request.payment_schedule
        )
        add_log("carrier_config", "carrier", carrier_id, config["carrier_name"], request.user_id,
                f"{config['settlement_type']} / {config['payment_schedule']}")
        return config
    except Exception as e:
        raise http_error(e)
