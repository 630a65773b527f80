"""
cod_logic/ledger.py - Cuenta corriente de couriers
────────────────────────────────────────────────────────────
Libro de movimientos append-only (nunca se actualiza ni se borra un monto;
las correcciones son movimientos compensatorios).

Convención de signo (igual que net_receivable):
    positivo  = el courier le debe a la tienda
    negativo  = la tienda le debe al courier

    cod_collected       +monto cobrado
    delivery_fee        −tarifa
    failed_attempt_fee  −50% tarifa
    payment_received    −monto   (el courier pagó a la tienda)
    payment_sent        +monto   (la tienda pagó al courier)
    adjustment_credit   −|monto|
    adjustment_debit    +|monto|
    discount            −|monto|
    refund              +|monto|

El saldo es simplemente SUM(amount).
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import sqlite3

from .db import (
    transaction,
    get_connection,
    fetch_all,
    fetch_one,
    insert_row,
    insert_with_code,
    placeholders,
    new_id,
    now_str,
    today_str,
    df_from_sql,
)
from .errors import ConflictError, NotFoundError, SettlementError
from .payment import is_order_cod
from .policies import FAILED_ATTEMPT_FEE_RATE
from .zones import DEFAULT_ZONE_RATE, load_rate_table

logger = logging.getLogger(__name__)

MOVEMENT_SIGNS: Dict[str, int] = {
    "cod_collected": 1,
    "delivery_fee": -1,
    "failed_attempt_fee": -1,
    "payment_received": -1,
    "payment_sent": 1,
    "adjustment_credit": -1,
    "adjustment_debit": 1,
    "discount": -1,
    "refund": 1,
}

ADJUSTMENT_TYPES = ("adjustment_credit", "adjustment_debit", "discount", "refund")

PAYMENT_DIRECTIONS = ("from_carrier", "to_carrier")
PAYMENT_METHODS = ("cash", "bank_transfer", "mobile_payment", "check", "deduction", "other")

SETTLEMENT_TYPES = ("net", "gross", "salary")
PAYMENT_SCHEDULES = ("daily", "weekly", "biweekly", "monthly")

FAILED_STATUSES = ("not_delivered", "rejected", "returned")

BACKFILL_LIMIT = 1000


def signed_amount(movement_type: str, amount: float) -> float:
    if movement_type not in MOVEMENT_SIGNS:
        raise SettlementError(f"Tipo de movimiento inválido: {movement_type}")
    return round(MOVEMENT_SIGNS[movement_type] * abs(float(amount)), 2)


# ─────────────────────────────────────
# 1. Alta de movimientos
# ─────────────────────────────────────
def add_movement(
    con: sqlite3.Connection,
    store_id: str,
    carrier_id: str,
    movement_type: str,
    amount: float,
    *,
    order_id: Optional[str] = None,
    order_number: Optional[str] = None,
    dispatch_session_id: Optional[str] = None,
    settlement_id: Optional[str] = None,
    payment_record_id: Optional[str] = None,
    description: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    movement_date: Optional[str] = None,
    created_by: Optional[str] = None,
) -> str:
    """Agrega un movimiento; `amount` se firma según el tipo."""
    movement_id = new_id()
    insert_row(con, "carrier_account_movements", {
        "id": movement_id,
        "store_id": store_id,
        "carrier_id": carrier_id,
        "movement_type": movement_type,
        "amount": signed_amount(movement_type, amount),
        "order_id": order_id,
        "order_number": order_number,
        "dispatch_session_id": dispatch_session_id,
        "settlement_id": settlement_id,
        "payment_record_id": payment_record_id,
        "batch_id": (dispatch_session_id or settlement_id) if order_id else None,
        "description": description,
        "metadata": json.dumps(metadata, ensure_ascii=False) if metadata else None,
        "movement_date": movement_date or today_str(),
        "created_by": created_by,
        "created_at": now_str(),
    })
    return movement_id


def record_outcome_movements(
    con: sqlite3.Connection,
    store_id: str,
    carrier_id: str,
    order_id: str,
    order_number: Optional[str],
    delivery_status: str,
    is_cod: bool,
    amount_collected: float,
    carrier_fee: float,
    *,
    dispatch_session_id: Optional[str] = None,
    settlement_id: Optional[str] = None,
    created_by: Optional[str] = None,
) -> int:
    """
    Movimientos de un resultado de entrega.

    entregado      → cod_collected (si COD y > 0) + delivery_fee
    no entregado / rechazado / devuelto → failed_attempt_fee (50%)
    otro           → nada

    Returns:
        cantidad de movimientos creados
    """
    common = dict(
        order_id=order_id,
        order_number=order_number,
        dispatch_session_id=dispatch_session_id,
        settlement_id=settlement_id,
        created_by=created_by,
    )
    created = 0
    fee = float(carrier_fee or 0)
    if delivery_status == "delivered":
        if is_cod and amount_collected and amount_collected > 0:
            add_movement(con, store_id, carrier_id, "cod_collected", amount_collected,
                         description=f"COD cobrado pedido {order_number}", **common)
            created += 1
        if fee > 0:
            add_movement(con, store_id, carrier_id, "delivery_fee", fee,
                         description=f"Tarifa de entrega pedido {order_number}", **common)
            created += 1
    elif delivery_status in FAILED_STATUSES and fee > 0:
        add_movement(con, store_id, carrier_id, "failed_attempt_fee",
                     round(fee * FAILED_ATTEMPT_FEE_RATE, 2),
                     description=f"Intento fallido pedido {order_number}",
                     metadata={"base_fee": fee, "rate": FAILED_ATTEMPT_FEE_RATE}, **common)
        created += 1
    return created


def _require_carrier(con: sqlite3.Connection, store_id: str, carrier_id: str) -> Dict[str, Any]:
    carrier = fetch_one(
        con, "SELECT * FROM carriers WHERE id = ? AND store_id = ?", (carrier_id, store_id)
    )
    if carrier is None:
        raise NotFoundError("Courier no encontrado")
    return carrier


def create_adjustment(
    store_id: str,
    carrier_id: str,
    amount: float,
    direction: str,
    description: str,
    created_by: Optional[str] = None,
    order_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Ajuste manual.

    credit: reduce lo que debe el courier (negativo)
    debit:  aumenta lo que debe el courier (positivo)
    """
    if direction not in ("credit", "debit"):
        raise SettlementError("La dirección del ajuste debe ser 'credit' o 'debit'")
    if not amount or float(amount) == 0:
        raise SettlementError("El monto del ajuste no puede ser cero")
    if not (description or "").strip():
        raise SettlementError("Se requiere una descripción para el ajuste")

    movement_type = f"adjustment_{direction}"
    with transaction() as con:
        _require_carrier(con, store_id, carrier_id)
        movement_id = add_movement(
            con, store_id, carrier_id, movement_type, amount,
            order_id=order_id, description=description.strip(), created_by=created_by,
        )
        movement = fetch_one(con, "SELECT * FROM carrier_account_movements WHERE id = ?", (movement_id,))
    logger.info(f"Ajuste {movement_type} {movement['amount']:,.2f} para courier {carrier_id}")
    return movement


# ─────────────────────────────────────
# 2. Pagos
# ─────────────────────────────────────
# liquidaciones que todavía aceptan pagos sueltos
PAYABLE_STATUSES = ("pending", "partial")


def _payable_settlements(con: sqlite3.Connection, store_id: str, carrier_id: str,
                         settlement_ids: List[str], direction: str) -> List[Dict[str, Any]]:
    """
    Carga y valida las liquidaciones a las que se aplica un pago suelto.

    Cada una debe ser del mismo courier, estar abierta y tener un neto en
    la dirección del pago (neto ≥ 0 → from_carrier, neto < 0 → to_carrier).
    """
    rows = []
    for sid in dict.fromkeys(settlement_ids):
        row = fetch_one(
            con,
            "SELECT * FROM daily_settlements WHERE id = ? AND store_id = ?",
            (sid, store_id),
        )
        if row is None:
            raise NotFoundError(f"Liquidación {sid} no encontrada")
        code = row["settlement_code"]
        if row["carrier_id"] != carrier_id:
            raise SettlementError(f"La liquidación {code} es de otro courier")
        if row["status"] not in PAYABLE_STATUSES:
            raise ConflictError(
                f"No se puede registrar un pago en una liquidación {row['status']} ({code})"
            )
        expected = "from_carrier" if float(row["net_receivable"] or 0) >= 0 else "to_carrier"
        if direction != expected:
            raise SettlementError(
                f"La liquidación {code} requiere un pago {expected}, no {direction}"
            )
        rows.append(row)
    return rows


def _apply_to_settlements(con: sqlite3.Connection, settlements: List[Dict[str, Any]],
                          amount: float) -> float:
    """Aplica `amount` a las liquidaciones en orden. Devuelve el sobrante."""
    from .settlement import apply_payment_to_settlement

    remaining = round(float(amount), 2)
    for row in settlements:
        if remaining <= 0:
            break
        outstanding = abs(float(row["balance_due"] or 0))
        if outstanding <= 0:
            continue
        applied = min(remaining, outstanding)
        apply_payment_to_settlement(con, row, applied)
        remaining = round(remaining - applied, 2)
    return remaining


def _payment_out(row: Dict[str, Any]) -> Dict[str, Any]:
    """Decodifica las listas de ids guardadas como JSON."""
    row["settlement_ids"] = json.loads(row["settlement_ids"] or "[]")
    row["movement_ids"] = json.loads(row["movement_ids"] or "[]")
    return row


def insert_payment(
    con: sqlite3.Connection,
    store_id: str,
    carrier_id: str,
    amount: float,
    direction: str,
    payment_method: str,
    *,
    payment_reference: Optional[str] = None,
    notes: Optional[str] = None,
    settlement_ids: Optional[List[str]] = None,
    movement_ids: Optional[List[str]] = None,
    link_movements: bool = True,
    created_by: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Registro de pago + movimiento de pago, y vinculación de los movimientos
    que cubre (dejan de contar como "sin liquidar").

    Sin ids explícitos cubre: los movimientos de las liquidaciones dadas, o
    todos los movimientos sin liquidar del courier.
    """
    if direction not in PAYMENT_DIRECTIONS:
        raise SettlementError("Dirección de pago inválida (from_carrier | to_carrier)")
    if payment_method not in PAYMENT_METHODS:
        raise SettlementError(
            f"Método de pago inválido: {payment_method} ({', '.join(PAYMENT_METHODS)})"
        )
    if amount is None or float(amount) <= 0:
        raise SettlementError("Se requiere un monto válido")

    settlement_ids = list(settlement_ids or [])
    movement_ids = list(movement_ids or [])

    if not link_movements:
        covered = []
    elif movement_ids:
        covered = fetch_all(
            con,
            f"""
            SELECT id, movement_date FROM carrier_account_movements
             WHERE store_id = ? AND carrier_id = ? AND payment_record_id IS NULL
               AND id IN ({placeholders(movement_ids)})
            """,
            (store_id, carrier_id, *movement_ids),
        )
    elif settlement_ids:
        covered = fetch_all(
            con,
            f"""
            SELECT id, movement_date FROM carrier_account_movements
             WHERE store_id = ? AND carrier_id = ? AND payment_record_id IS NULL
               AND settlement_id IN ({placeholders(settlement_ids)})
            """,
            (store_id, carrier_id, *settlement_ids),
        )
    else:
        covered = fetch_all(
            con,
            """
            SELECT id, movement_date FROM carrier_account_movements
             WHERE store_id = ? AND carrier_id = ?
               AND settlement_id IS NULL AND payment_record_id IS NULL
            """,
            (store_id, carrier_id),
        )
    covered_ids = [m["id"] for m in covered]
    dates = sorted(m["movement_date"] for m in covered) or [today_str()]

    payment_id = new_id()
    payment_code = insert_with_code(
        con, "carrier_payment_records", "payment_code", store_id, "PAG", today_str(),
        {
            "id": payment_id,
            "store_id": store_id,
            "carrier_id": carrier_id,
            "direction": direction,
            "amount": round(float(amount), 2),
            "period_start": dates[0],
            "period_end": dates[-1],
            "settlement_ids": json.dumps(settlement_ids),
            "movement_ids": json.dumps(covered_ids),
            "payment_method": payment_method,
            "payment_reference": payment_reference,
            "notes": notes,
            "status": "completed",
            "payment_date": today_str(),
            "created_by": created_by,
            "created_at": now_str(),
        },
    )

    movement_type = "payment_received" if direction == "from_carrier" else "payment_sent"
    add_movement(
        con, store_id, carrier_id, movement_type, amount,
        payment_record_id=payment_id,
        description=f"Pago {payment_code}",
        created_by=created_by,
    )

    if covered_ids:
        con.execute(
            f"UPDATE carrier_account_movements SET payment_record_id = ? WHERE id IN ({placeholders(covered_ids)})",
            (payment_id, *covered_ids),
        )

    logger.info(f"Pago {payment_code} ({direction}) {float(amount):,.2f} para courier {carrier_id}")
    return _payment_out(fetch_one(con, "SELECT * FROM carrier_payment_records WHERE id = ?", (payment_id,)))


def register_carrier_payment(
    store_id: str,
    carrier_id: str,
    amount: float,
    direction: str,
    payment_method: str,
    payment_reference: Optional[str] = None,
    notes: Optional[str] = None,
    settlement_ids: Optional[List[str]] = None,
    movement_ids: Optional[List[str]] = None,
    created_by: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Pago suelto fuera del flujo despacho/liquidación (p.ej. un pago en efectivo
    que cubre muchos cobros chicos).

    Si se indican liquidaciones, el monto se aplica a su amount_paid en orden,
    manteniendo balance_due = net_receivable − amount_paid.
    """
    with transaction() as con:
        _require_carrier(con, store_id, carrier_id)
        settlements = _payable_settlements(con, store_id, carrier_id, list(settlement_ids or []), direction)
        payment = insert_payment(
            con, store_id, carrier_id, amount, direction, payment_method,
            payment_reference=payment_reference, notes=notes,
            settlement_ids=settlement_ids, movement_ids=movement_ids, created_by=created_by,
        )
        unapplied = _apply_to_settlements(con, settlements, amount) if settlements else 0.0
    payment["unapplied_amount"] = unapplied
    return payment


def get_carrier_payments(
    store_id: str,
    carrier_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    sql = """
        SELECT p.*, c.name AS carrier_name
          FROM carrier_payment_records p
          LEFT JOIN carriers c ON c.id = p.carrier_id
         WHERE p.store_id = ?
    """
    params: list = [store_id]
    if carrier_id:
        sql += " AND p.carrier_id = ?"
        params.append(carrier_id)
    if status:
        sql += " AND p.status = ?"
        params.append(status)
    sql += " ORDER BY p.created_at DESC, p.payment_code DESC LIMIT ? OFFSET ?"
    params += [limit, offset]
    with get_connection() as con:
        rows = fetch_all(con, sql, params)
    return [_payment_out(r) for r in rows]


# ─────────────────────────────────────
# 3. Saldos
# ─────────────────────────────────────
_BALANCE_SELECT = """
    SELECT
        c.id   AS carrier_id,
        c.name AS carrier_name,
        c.settlement_type,
        c.payment_schedule,
        COALESCE(SUM(CASE WHEN m.movement_type = 'cod_collected' THEN m.amount END), 0)          AS total_cod_collected,
        COALESCE(-SUM(CASE WHEN m.movement_type = 'delivery_fee' THEN m.amount END), 0)          AS total_delivery_fees,
        COALESCE(-SUM(CASE WHEN m.movement_type = 'failed_attempt_fee' THEN m.amount END), 0)    AS total_failed_fees,
        COALESCE(-SUM(CASE WHEN m.movement_type = 'payment_received' THEN m.amount END), 0)      AS total_payments_received,
        COALESCE(SUM(CASE WHEN m.movement_type = 'payment_sent' THEN m.amount END), 0)           AS total_payments_sent,
        COALESCE(SUM(CASE WHEN m.movement_type IN ('adjustment_credit', 'adjustment_debit', 'discount', 'refund')
                          THEN m.amount END), 0)                                                  AS total_adjustments,
        COALESCE(SUM(m.amount), 0)                                                                AS net_balance,
        COALESCE(SUM(CASE WHEN m.settlement_id IS NULL AND m.payment_record_id IS NULL
                          THEN m.amount END), 0)                                                  AS unsettled_balance,
        COUNT(DISTINCT CASE WHEN m.settlement_id IS NULL AND m.payment_record_id IS NULL
                            THEN m.order_id END)                                                  AS unsettled_orders,
        MAX(m.movement_date)                                                                      AS last_movement_date,
        MAX(CASE WHEN m.movement_type IN ('payment_received', 'payment_sent')
                 THEN m.movement_date END)                                                        AS last_payment_date
    FROM carriers c
    LEFT JOIN carrier_account_movements m
           ON m.carrier_id = c.id AND m.store_id = c.store_id
"""

_MONEY_COLS = (
    "total_cod_collected", "total_delivery_fees", "total_failed_fees",
    "total_payments_received", "total_payments_sent", "total_adjustments",
    "net_balance", "unsettled_balance",
)


def _round_money(row: Dict[str, Any]) -> Dict[str, Any]:
    for col in _MONEY_COLS:
        row[col] = round(float(row[col] or 0), 2) + 0.0
    return row


def get_carrier_balances(store_id: str) -> List[Dict[str, Any]]:
    """Saldo derivado por courier (vista, no se almacena)."""
    sql = _BALANCE_SELECT + """
     WHERE c.store_id = ?
     GROUP BY c.id
     ORDER BY c.name
    """
    with get_connection() as con:
        rows = fetch_all(con, sql, (store_id,))
    return [_round_money(r) for r in rows]


def get_carrier_balance(store_id: str, carrier_id: str) -> Dict[str, Any]:
    sql = _BALANCE_SELECT + """
     WHERE c.store_id = ? AND c.id = ?
     GROUP BY c.id
    """
    with get_connection() as con:
        row = fetch_one(con, sql, (store_id, carrier_id))
    if row is None:
        raise NotFoundError("Courier no encontrado")
    return _round_money(row)


def get_carrier_balance_summary(
    store_id: str,
    carrier_id: str,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Resumen de un período.

    gross_balance no incluye pagos; net_balance sí.
    """
    sql = "SELECT movement_type, amount, order_id FROM carrier_account_movements WHERE store_id = ? AND carrier_id = ?"
    params: list = [store_id, carrier_id]
    if from_date:
        sql += " AND movement_date >= ?"
        params.append(from_date)
    if to_date:
        sql += " AND movement_date <= ?"
        params.append(to_date)
    df = df_from_sql(sql, params)

    by_type = df.groupby("movement_type")["amount"].sum() if not df.empty else {}

    def total(movement_type: str) -> float:
        return round(abs(float(by_type.get(movement_type, 0.0))), 2)

    adjustments = round(float(sum(by_type.get(t, 0.0) for t in ADJUSTMENT_TYPES)), 2)
    gross = round(float(df.loc[~df["movement_type"].isin(["payment_received", "payment_sent"]), "amount"].sum()), 2) if not df.empty else 0.0
    net = round(float(df["amount"].sum()), 2) if not df.empty else 0.0

    return {
        "carrier_id": carrier_id,
        "from_date": from_date,
        "to_date": to_date,
        "cod_collected": total("cod_collected"),
        "delivery_fees": total("delivery_fee"),
        "failed_fees": total("failed_attempt_fee"),
        "adjustments": adjustments,
        "payments_received": total("payment_received"),
        "payments_sent": total("payment_sent"),
        "gross_balance": gross,
        "net_balance": net,
        "movement_count": int(len(df)),
        "orders_count": int(df["order_id"].dropna().nunique()) if not df.empty else 0,
    }


def get_unsettled_movements(store_id: str, carrier_id: Optional[str] = None) -> List[Dict[str, Any]]:
    sql = """
        SELECT m.*, c.name AS carrier_name
          FROM carrier_account_movements m
          LEFT JOIN carriers c ON c.id = m.carrier_id
         WHERE m.store_id = ? AND m.settlement_id IS NULL AND m.payment_record_id IS NULL
    """
    params: list = [store_id]
    if carrier_id:
        sql += " AND m.carrier_id = ?"
        params.append(carrier_id)
    sql += " ORDER BY m.movement_date, m.created_at"
    with get_connection() as con:
        return fetch_all(con, sql, params)


def get_carrier_movements(
    store_id: str,
    carrier_id: str,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
    movement_type: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> Dict[str, Any]:
    where = " WHERE store_id = ? AND carrier_id = ?"
    params: list = [store_id, carrier_id]
    if from_date:
        where += " AND movement_date >= ?"
        params.append(from_date)
    if to_date:
        where += " AND movement_date <= ?"
        params.append(to_date)
    if movement_type:
        where += " AND movement_type = ?"
        params.append(movement_type)
    with get_connection() as con:
        total = con.execute(f"SELECT COUNT(*) FROM carrier_account_movements{where}", params).fetchone()[0]
        rows = fetch_all(
            con,
            f"SELECT * FROM carrier_account_movements{where} ORDER BY created_at DESC, id LIMIT ? OFFSET ?",
            [*params, limit, offset],
        )
    return {"data": rows, "count": total}


# ─────────────────────────────────────
# 4. Configuración del courier
# ─────────────────────────────────────
def get_carrier_config(store_id: str, carrier_id: str) -> Dict[str, Any]:
    with get_connection() as con:
        carrier = _require_carrier(con, store_id, carrier_id)
    return {
        "carrier_id": carrier["id"],
        "carrier_name": carrier["name"],
        "settlement_type": carrier["settlement_type"] or "net",
        "payment_schedule": carrier["payment_schedule"] or "weekly",
        "failed_attempt_fee_rate": FAILED_ATTEMPT_FEE_RATE,
    }


def update_carrier_config(store_id: str, carrier_id: str,
                          settlement_type: Optional[str] = None,
                          payment_schedule: Optional[str] = None) -> Dict[str, Any]:
    if settlement_type is not None and settlement_type not in SETTLEMENT_TYPES:
        raise SettlementError(f"Tipo de liquidación inválido: {settlement_type}")
    if payment_schedule is not None and payment_schedule not in PAYMENT_SCHEDULES:
        raise SettlementError(f"Frecuencia de pago inválida: {payment_schedule}")
    with transaction() as con:
        _require_carrier(con, store_id, carrier_id)
        con.execute(
            """
            UPDATE carriers
               SET settlement_type = COALESCE(?, settlement_type),
                   payment_schedule = COALESCE(?, payment_schedule),
                   updated_at = ?
             WHERE id = ? AND store_id = ?
            """,
            (settlement_type, payment_schedule, now_str(), carrier_id, store_id),
        )
    return get_carrier_config(store_id, carrier_id)


# ─────────────────────────────────────
# 5. Migración única
# ─────────────────────────────────────
def backfill_carrier_movements(store_id: Optional[str] = None,
                               default_rate: float = DEFAULT_ZONE_RATE) -> Dict[str, int]:
    """
    Genera movimientos para pedidos entregados antes de existir el libro.

    Sólo pedidos entregados, con courier y sin ningún movimiento;
    a lo sumo BACKFILL_LIMIT por corrida.
    """
    sql = """
        SELECT o.* FROM orders o
         WHERE o.status = 'delivered' AND o.courier_id IS NOT NULL
           AND NOT EXISTS (SELECT 1 FROM carrier_account_movements m WHERE m.order_id = o.id)
    """
    params: list = []
    if store_id:
        sql += " AND o.store_id = ?"
        params.append(store_id)
    sql += " ORDER BY o.delivered_at LIMIT ?"
    params.append(BACKFILL_LIMIT)

    orders_processed = movements_created = 0
    with transaction() as con:
        tables: Dict[tuple, Any] = {}
        for order in fetch_all(con, sql, params):
            key = (order["store_id"], order["courier_id"])
            if key not in tables:
                tables[key] = load_rate_table(con, *key, default_rate=default_rate)
            fee = tables[key].resolve(order["delivery_zone"], order["delivery_city"])
            cod = is_order_cod(order["payment_method"], order["prepaid_method"])
            collected = order["amount_collected"]
            if collected is None:
                collected = float(order["total_price"] or 0) if cod else 0.0
            movement_date = (order["delivered_at"] or today_str())[:10]

            common = dict(order_id=order["id"], order_number=order["order_number"],
                          movement_date=movement_date, description="Backfill")
            if cod and collected > 0:
                add_movement(con, order["store_id"], order["courier_id"], "cod_collected", collected, **common)
                movements_created += 1
            if fee > 0:
                add_movement(con, order["store_id"], order["courier_id"], "delivery_fee", fee, **common)
                movements_created += 1
            orders_processed += 1

    logger.info(f"Backfill: {orders_processed} pedidos, {movements_created} movimientos")
    return {"orders_processed": orders_processed, "movements_created": movements_created}


# ─────────────────────────────────────
# 6. Resumen general
# ─────────────────────────────────────
def get_carrier_account_summary(store_id: str) -> Dict[str, Any]:
    balances = get_carrier_balances(store_id)
    owed_by = round(sum(b["net_balance"] for b in balances if b["net_balance"] > 0), 2)
    owed_to = round(sum(-b["net_balance"] for b in balances if b["net_balance"] < 0), 2)

    with get_connection() as con:
        pending = fetch_one(
            con,
            """
            SELECT COUNT(*) AS n, COALESCE(SUM(balance_due), 0) AS amount
              FROM daily_settlements
             WHERE store_id = ? AND status IN ('pending', 'partial')
            """,
            (store_id,),
        )

    return {
        "total_owed_by_carriers": owed_by,
        "total_owed_to_carriers": owed_to,
        "net_position": round(owed_by - owed_to, 2),
        "carriers_with_balance": sum(1 for b in balances if abs(b["net_balance"]) > 0.01),
        "pending_settlements_count": int(pending["n"]),
        "pending_settlements_amount": round(float(pending["amount"]), 2),
        "balances": balances,
    }
