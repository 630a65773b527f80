"""
backend/app/api/settlements.py - Liquidaciones API
───────────────────────────────────────────────
Liquidaciones diarias, pagos, conciliación manual y por fecha de entrega.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Query

from backend.app.api.errors import http_error
from backend.app.api.logs import add_log
from backend.app.config import settings
from backend.app.models import (
    CancelRequest,
    DeliveryReconciliationRequest,
    DisputeRequest,
    ListResponse,
    ManualReconciliationRequest,
    SettlementPaymentRequest,
)
from cod_logic import (
    cancel_settlement,
    dispute_settlement,
    get_daily_settlements,
    get_pending_by_carrier,
    get_pending_reconciliation,
    get_pending_reconciliation_orders,
    get_settlement,
    get_settlements_summary,
    get_shipped_orders_grouped,
    mark_settlement_paid,
    process_delivery_reconciliation,
    process_manual_reconciliation,
)

router = APIRouter(prefix="/settlements", tags=["Settlements"])


# ─────────────────────────────────────
# Consultas
# ─────────────────────────────────────
@router.get("", response_model=ListResponse)
@router.get("/", response_model=ListResponse)
async def list_settlements(
    store_id: str,
    status: Optional[str] = None,
    carrier_id: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    try:
        rows, total = get_daily_settlements(
            store_id, status=status, carrier_id=carrier_id,
            start_date=start_date, end_date=end_date, limit=limit, offset=offset,
        )
        return ListResponse(data=rows, count=total)
    except Exception as e:
        raise http_error(e)


@router.get("/summary")
async def settlements_summary(store_id: str, start_date: Optional[str] = None,
                              end_date: Optional[str] = None):
    try:
        return get_settlements_summary(store_id, start_date, end_date)
    except Exception as e:
        raise http_error(e)


@router.get("/pending-by-carrier")
async def pending_by_carrier(store_id: str):
    try:
        return {"success": True, "data": get_pending_by_carrier(store_id)}
    except Exception as e:
        raise http_error(e)


@router.get("/shipped-groups")
async def shipped_groups(store_id: str):
    """Pedidos enviados agrupados por courier y fecha (para conciliar)."""
    try:
        return {"success": True, "data": get_shipped_orders_grouped(store_id)}
    except Exception as e:
        raise http_error(e)


# ─────────────────────────────────────
# Conciliación manual
# ─────────────────────────────────────
@router.post("/manual-reconciliation", status_code=201)
async def manual_reconciliation(request: ManualReconciliationRequest):
    try:
        data = request.model_dump(exclude={"store_id", "user_id"})
        data["dispatch_date"] = str(request.dispatch_date)
        settlement = process_manual_reconciliation(
            request.store_id, data, user_id=request.user_id,
            default_rate=settings.DEFAULT_ZONE_RATE,
        )
        add_log(
            "manual_reconciliation", "daily_settlement", settlement["id"], settlement["settlement_code"],
            request.user_id, f"{len(request.orders)} pedidos, neto {settlement['net_receivable']:,.2f}",
        )
        return settlement
    except Exception as e:
        raise http_error(e)


# ─────────────────────────────────────
# Conciliación por fecha de entrega
# ─────────────────────────────────────
@router.get("/pending-reconciliation")
async def pending_reconciliation(store_id: str):
    """Entregas sin conciliar agrupadas por courier y día."""
    try:
        return {"success": True, "data": get_pending_reconciliation(store_id)}
    except Exception as e:
        raise http_error(e)


@router.get("/pending-reconciliation/orders")
async def pending_reconciliation_orders(store_id: str, carrier_id: str, delivery_date: date):
    try:
        rows = get_pending_reconciliation_orders(
            store_id, carrier_id, str(delivery_date), default_rate=settings.DEFAULT_ZONE_RATE,
        )
        return {"success": True, "data": rows}
    except Exception as e:
        raise http_error(e)


@router.post("/delivery-reconciliation", status_code=201)
async def delivery_reconciliation(request: DeliveryReconciliationRequest):
    try:
        data = request.model_dump(exclude={"store_id", "user_id"})
        data["delivery_date"] = str(request.delivery_date)
        settlement = process_delivery_reconciliation(
            request.store_id, data, user_id=request.user_id,
            default_rate=settings.DEFAULT_ZONE_RATE,
        )
        add_log(
            "delivery_reconciliation", "daily_settlement", settlement["id"], settlement["settlement_code"],
            request.user_id, f"{len(request.orders)} pedidos, neto {settlement['net_receivable']:,.2f}",
        )
        return settlement
    except Exception as e:
        raise http_error(e)


# ─────────────────────────────────────
# /{settlement_id} va después de las rutas fijas
# ─────────────────────────────────────
@router.get("/{settlement_id}")
async def settlement_detail(settlement_id: str, store_id: str):
    try:
        return get_settlement(settlement_id, store_id)
    except Exception as e:
        raise http_error(e)


@router.post("/{settlement_id}/pay")
async def pay_settlement(settlement_id: str, request: SettlementPaymentRequest):
    """
    Registra un pago parcial o total.

    amount_paid es acumulativo; el exceso sobre el saldo sigue la
    política OVERPAYMENT_POLICY configurada.
    """
    try:
        settlement = mark_settlement_paid(
            settlement_id, request.store_id, request.amount,
            method=request.method, reference=request.reference, notes=request.notes,
            policy=settings.OVERPAYMENT_POLICY, user_id=request.user_id,
        )
        add_log(
            "settlement_payment", "daily_settlement", settlement_id, settlement["settlement_code"],
            request.user_id, f"{request.amount:,.2f} ({request.method}) → {settlement['status']}",
        )
        return settlement
    except Exception as e:
        raise http_error(e)


@router.post("/{settlement_id}/dispute")
async def dispute(settlement_id: str, request: DisputeRequest):
    try:
        settlement = dispute_settlement(settlement_id, request.store_id, request.reason)
        add_log(
            "settlement_disputed", "daily_settlement", settlement_id, settlement["settlement_code"],
            request.user_id, request.reason,
        )
        return settlement
    except Exception as e:
        raise http_error(e)


@router.post("/{settlement_id}/cancel")
async def cancel(settlement_id: str, request: CancelRequest):
    try:
        settlement = cancel_settlement(settlement_id, request.store_id, request.reason)
        add_log(
            "settlement_cancelled", "daily_settlement", settlement_id, settlement["settlement_code"],
            request.user_id, request.reason,
        )
        return settlement
    except Exception as e:
        raise http_error(e)
