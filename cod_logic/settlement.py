"""
cod_logic/settlement.py - Liquidaciones diarias
────────────────────────────────────────────────────────────
Cierre financiero de un despacho (o de una conciliación manual):

    net_receivable = cobrado COD
                   − tarifas de entregados (COD + prepago)
                   − 50% de la tarifa por cada intento fallido

positivo = el courier le debe a la tienda; negativo = la tienda le debe.
balance_due = net_receivable − amount_paid, siempre.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import sqlite3

from .db import (
    transaction,
    get_connection,
    fetch_all,
    fetch_one,
    insert_with_code,
    placeholders,
    new_id,
    now_str,
    today_str,
    to_date,
    df_from_sql,
)
from .dispatch import load_session, load_session_orders
from .errors import ConflictError, NotFoundError, SettlementError
from .ledger import PAYMENT_METHODS, FAILED_STATUSES, insert_payment
from .policies import (
    DEFAULT_OVERPAYMENT_POLICY,
    DISCREPANCY_TOLERANCE,
    FAILED_ATTEMPT_FEE_RATE,
    OverpaymentPolicy,
)

logger = logging.getLogger(__name__)

CLOSED_STATUSES = ("disputed", "cancelled")


# ─────────────────────────────────────
# 1. Fórmula (compartida por despacho y conciliación manual)
# ─────────────────────────────────────
def compute_settlement_totals(orders: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Totales de una liquidación a partir de los resultados por pedido.

    Cada pedido necesita: delivery_status, is_cod, total_price,
    amount_collected, carrier_fee.
    """
    t = {
        "total_dispatched": 0,
        "total_delivered": 0,
        "total_not_delivered": 0,
        "total_cod_delivered": 0,
        "total_prepaid_delivered": 0,
        "total_cod_expected": 0.0,
        "total_cod_collected": 0.0,
        "total_carrier_fees": 0.0,
        "failed_attempt_fee": 0.0,
    }
    for o in orders:
        t["total_dispatched"] += 1
        fee = float(o.get("carrier_fee") or 0)
        cod = bool(o.get("is_cod"))
        if cod:
            t["total_cod_expected"] += float(o.get("total_price") or 0)

        status = o.get("delivery_status")
        if status == "delivered":
            t["total_delivered"] += 1
            t["total_carrier_fees"] += fee
            if cod:
                t["total_cod_delivered"] += 1
                t["total_cod_collected"] += float(o.get("amount_collected") or 0)
            else:
                t["total_prepaid_delivered"] += 1
        elif status in FAILED_STATUSES:
            t["total_not_delivered"] += 1
            t["failed_attempt_fee"] += fee * FAILED_ATTEMPT_FEE_RATE

    for key in ("total_cod_expected", "total_cod_collected", "total_carrier_fees", "failed_attempt_fee"):
        t[key] = round(t[key], 2)
    t["net_receivable"] = round(
        t["total_cod_collected"] - t["total_carrier_fees"] - t["failed_attempt_fee"], 2
    )
    return t


def insert_settlement(
    con: sqlite3.Connection,
    store_id: str,
    carrier_id: str,
    totals: Dict[str, Any],
    *,
    settlement_date: Optional[str] = None,
    dispatch_session_id: Optional[str] = None,
    notes: Optional[str] = None,
    created_by: Optional[str] = None,
) -> Dict[str, Any]:
    """Inserta la liquidación con código LIQ-DDMMYYYY-NNN (pendiente, sin pagos)."""
    day = str(to_date(settlement_date)) if settlement_date else today_str()
    settlement_id = new_id()
    row = {
        "id": settlement_id,
        "store_id": store_id,
        "carrier_id": carrier_id,
        "dispatch_session_id": dispatch_session_id,
        "settlement_date": day,
        "amount_paid": 0,
        "balance_due": totals["net_receivable"],
        "status": "pending",
        "notes": notes,
        "created_by": created_by,
        "created_at": now_str(),
        "updated_at": now_str(),
    }
    row.update({k: totals[k] for k in (
        "total_dispatched", "total_delivered", "total_not_delivered",
        "total_cod_delivered", "total_prepaid_delivered", "total_cod_expected",
        "total_cod_collected", "total_carrier_fees", "failed_attempt_fee", "net_receivable",
    )})
    insert_with_code(con, "daily_settlements", "settlement_code", store_id, "LIQ", day, row)
    return load_settlement(con, settlement_id, store_id)


def load_settlement(con: sqlite3.Connection, settlement_id: str, store_id: str) -> Dict[str, Any]:
    row = fetch_one(
        con,
        """
        SELECT d.*, c.name AS carrier_name
          FROM daily_settlements d
          LEFT JOIN carriers c ON c.id = d.carrier_id
         WHERE d.id = ? AND d.store_id = ?
        """,
        (settlement_id, store_id),
    )
    if row is None:
        raise NotFoundError("Liquidación no encontrada")
    return row


# ─────────────────────────────────────
# 2. Liquidar un despacho
# ─────────────────────────────────────
def process_settlement(
    session_id: str,
    store_id: str,
    user_id: Optional[str] = None,
    settlement_date: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Liquida una sesión de despacho (completa o parcial).

    La sesión pasa a 'settled' con un UPDATE condicional: si otra
    liquidación concurrente ganó, ésta se revierte entera.
    """
    warnings: List[str] = []
    with transaction() as con:
        session = load_session(con, session_id, store_id)
        if session["status"] == "settled":
            raise ConflictError("La sesión ya fue liquidada")
        if session["status"] == "cancelled":
            raise ConflictError("La sesión fue cancelada")

        orders = load_session_orders(con, session_id)
        pending = [o for o in orders if o["delivery_status"] in ("pending", "rescheduled")]
        if pending:
            msg = f"{len(pending)} pedido(s) sin resultado final quedan fuera del cobro y vuelven a ready_to_ship"
            logger.warning(f"{session['session_code']}: {msg}")
            warnings.append(msg)

        totals = compute_settlement_totals(orders)
        settlement = insert_settlement(
            con, store_id, session["carrier_id"], totals,
            settlement_date=settlement_date,
            dispatch_session_id=session_id,
            created_by=user_id,
        )

        cur = con.execute(
            """
            UPDATE dispatch_sessions
               SET status = 'settled', daily_settlement_id = ?, settled_at = ?
             WHERE id = ? AND status IN ('dispatched', 'processing')
            """,
            (settlement["id"], now_str(), session_id),
        )
        if cur.rowcount == 0:
            raise ConflictError("La sesión ya fue liquidada")

        con.execute(
            """
            UPDATE carrier_account_movements SET settlement_id = ?
             WHERE dispatch_session_id = ? AND settlement_id IS NULL
            """,
            (settlement["id"], session_id),
        )

        # estado principal de los pedidos
        delivered = [o["order_id"] for o in orders if o["delivery_status"] == "delivered"]
        retry = [o["order_id"] for o in orders if o["delivery_status"] != "delivered"]
        if delivered:
            con.execute(
                f"""
                UPDATE orders SET status = 'delivered', delivered_at = COALESCE(delivered_at, ?),
                       reconciled_at = COALESCE(reconciled_at, ?)
                 WHERE store_id = ? AND id IN ({placeholders(delivered)})
                """,
                (now_str(), now_str(), store_id, *delivered),
            )
        if retry:
            con.execute(
                f"""
                UPDATE orders SET status = 'ready_to_ship'
                 WHERE store_id = ? AND status = 'shipped' AND id IN ({placeholders(retry)})
                """,
                (store_id, *retry),
            )

        settlement = load_settlement(con, settlement["id"], store_id)

    logger.info(
        f"Liquidación {settlement['settlement_code']} ({session['session_code']}): "
        f"neto {settlement['net_receivable']:,.2f}"
    )
    settlement["warnings"] = warnings
    return settlement


# ─────────────────────────────────────
# 3. Pagos
# ─────────────────────────────────────
def _direction_sign(net_receivable: float) -> int:
    return 1 if net_receivable >= 0 else -1


def apply_payment_to_settlement(
    con: sqlite3.Connection,
    settlement: Dict[str, Any],
    amount: float,
    payment_method: Optional[str] = None,
    payment_reference: Optional[str] = None,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Suma un pago a amount_paid y recalcula balance_due y estado.

    El pago se firma en la dirección del neto: si la tienda le debe al
    courier (neto negativo) lo pagado también es negativo.
    """
    net = float(settlement["net_receivable"] or 0)
    sign = _direction_sign(net)
    new_paid = round(float(settlement["amount_paid"] or 0) + sign * float(amount), 2)
    new_balance = round(net - new_paid, 2)
    status = "paid" if sign * new_paid >= sign * net else "partial"

    note = settlement["notes"]
    if notes:
        note = f"{note} | {notes}" if note else notes

    con.execute(
        """
        UPDATE daily_settlements
           SET amount_paid = ?, balance_due = ?, status = ?,
               payment_date = ?, payment_method = COALESCE(?, payment_method),
               payment_reference = COALESCE(?, payment_reference),
               notes = ?, updated_at = ?
         WHERE id = ?
        """,
        (new_paid, new_balance, status, now_str(), payment_method,
         payment_reference, note, now_str(), settlement["id"]),
    )
    return {"amount_paid": new_paid, "balance_due": new_balance, "status": status}


def mark_settlement_paid(
    settlement_id: str,
    store_id: str,
    amount: float,
    method: str = "cash",
    reference: Optional[str] = None,
    notes: Optional[str] = None,
    policy: OverpaymentPolicy = DEFAULT_OVERPAYMENT_POLICY,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Registra un pago (parcial o total) de una liquidación.

    Aditivo: amount_paid += amount; balance_due = net_receivable − amount_paid;
    'paid' cuando lo pagado alcanza el neto, si no 'partial'. El exceso sobre
    el saldo se resuelve según `policy`. También queda un registro de pago en
    la cuenta corriente del courier.
    """
    try:
        amount = float(amount)
    except (TypeError, ValueError):
        raise SettlementError("Se requiere un monto válido")
    if amount <= 0:
        raise SettlementError("Se requiere un monto válido")
    if method not in PAYMENT_METHODS:
        raise SettlementError(f"Método de pago inválido: {method} ({', '.join(PAYMENT_METHODS)})")
    policy = OverpaymentPolicy(policy)

    with transaction() as con:
        settlement = load_settlement(con, settlement_id, store_id)
        if settlement["status"] in CLOSED_STATUSES:
            raise ConflictError(
                f"No se puede registrar un pago en una liquidación {settlement['status']}"
            )

        net = float(settlement["net_receivable"] or 0)
        sign = _direction_sign(net)
        outstanding = round(sign * float(settlement["balance_due"] or 0), 2)
        if amount > outstanding + DISCREPANCY_TOLERANCE:
            if policy == OverpaymentPolicy.REJECT:
                raise SettlementError(
                    f"El pago {amount:,.2f} supera el saldo pendiente {max(outstanding, 0):,.2f}"
                )
            if policy == OverpaymentPolicy.CLAMP:
                if outstanding <= DISCREPANCY_TOLERANCE:
                    raise ConflictError("La liquidación no tiene saldo pendiente")
                logger.warning(
                    f"{settlement['settlement_code']}: pago {amount:,.2f} ajustado al saldo {outstanding:,.2f}"
                )
                amount = outstanding
            else:
                logger.warning(
                    f"{settlement['settlement_code']}: pago {amount:,.2f} supera el saldo {outstanding:,.2f}; "
                    f"queda crédito a favor"
                )

        result = apply_payment_to_settlement(con, settlement, amount, method, reference, notes)
        insert_payment(
            con, store_id, settlement["carrier_id"], amount,
            "from_carrier" if sign > 0 else "to_carrier",
            method,
            payment_reference=reference,
            notes=f"Pago de liquidación {settlement['settlement_code']}",
            settlement_ids=[settlement_id],
            link_movements=result["status"] == "paid",
            created_by=user_id,
        )
        settlement = load_settlement(con, settlement_id, store_id)

    logger.info(
        f"Pago {amount:,.2f} en {settlement['settlement_code']}: "
        f"pagado {settlement['amount_paid']:,.2f}, saldo {settlement['balance_due']:,.2f} ({settlement['status']})"
    )
    return settlement


# ─────────────────────────────────────
# 4. Disputa / anulación
# ─────────────────────────────────────
def dispute_settlement(settlement_id: str, store_id: str, reason: str) -> Dict[str, Any]:
    if not (reason or "").strip():
        raise SettlementError("Se requiere el motivo de la disputa")
    with transaction() as con:
        settlement = load_settlement(con, settlement_id, store_id)
        if settlement["status"] in ("paid", *CLOSED_STATUSES):
            raise ConflictError(f"No se puede disputar una liquidación {settlement['status']}")
        con.execute(
            """
            UPDATE daily_settlements
               SET status = 'disputed', notes = COALESCE(notes || ' | ', '') || ?, updated_at = ?
             WHERE id = ?
            """,
            (f"Disputa: {reason.strip()}", now_str(), settlement_id),
        )
        settlement = load_settlement(con, settlement_id, store_id)
    logger.warning(f"Liquidación {settlement['settlement_code']} en disputa: {reason}")
    return settlement


def cancel_settlement(settlement_id: str, store_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
    """
    Anula una liquidación sin pagos. Sus movimientos vuelven a quedar sin liquidar.
    """
    with transaction() as con:
        settlement = load_settlement(con, settlement_id, store_id)
        if settlement["status"] == "cancelled":
            raise ConflictError("La liquidación ya está anulada")
        if float(settlement["amount_paid"] or 0) != 0:
            raise ConflictError("No se puede anular una liquidación con pagos registrados")
        con.execute(
            """
            UPDATE daily_settlements
               SET status = 'cancelled', notes = COALESCE(notes || ' | ', '') || ?, updated_at = ?
             WHERE id = ?
            """,
            (f"Anulada: {reason or 'sin motivo'}", now_str(), settlement_id),
        )
        con.execute(
            "UPDATE carrier_account_movements SET settlement_id = NULL WHERE settlement_id = ? AND payment_record_id IS NULL",
            (settlement_id,),
        )
        settlement = load_settlement(con, settlement_id, store_id)
    logger.warning(f"Liquidación {settlement['settlement_code']} anulada")
    return settlement


# ─────────────────────────────────────
# 5. Consultas
# ─────────────────────────────────────
def get_daily_settlements(
    store_id: str,
    status: Optional[str] = None,
    carrier_id: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Dict[str, Any]], int]:
    where = " WHERE d.store_id = ?"
    params: list = [store_id]
    if status:
        where += " AND d.status = ?"
        params.append(status)
    if carrier_id:
        where += " AND d.carrier_id = ?"
        params.append(carrier_id)
    if start_date:
        where += " AND d.settlement_date >= ?"
        params.append(start_date)
    if end_date:
        where += " AND d.settlement_date <= ?"
        params.append(end_date)
    with get_connection() as con:
        total = con.execute(f"SELECT COUNT(*) FROM daily_settlements d{where}", params).fetchone()[0]
        rows = fetch_all(
            con,
            f"""
            SELECT d.*, c.name AS carrier_name
              FROM daily_settlements d
              LEFT JOIN carriers c ON c.id = d.carrier_id
            {where}
             ORDER BY d.settlement_date DESC, d.settlement_code DESC
             LIMIT ? OFFSET ?
            """,
            [*params, limit, offset],
        )
    return rows, total


def get_settlement(settlement_id: str, store_id: str) -> Dict[str, Any]:
    """Liquidación con los pedidos del despacho y sus movimientos."""
    with get_connection() as con:
        settlement = load_settlement(con, settlement_id, store_id)
        settlement["movements"] = fetch_all(
            con,
            "SELECT * FROM carrier_account_movements WHERE settlement_id = ? ORDER BY created_at, id",
            (settlement_id,),
        )
        if settlement["dispatch_session_id"]:
            settlement["orders"] = load_session_orders(con, settlement["dispatch_session_id"])
        else:
            # conciliación manual: los pedidos salen de sus movimientos
            ids = list(dict.fromkeys(m["order_id"] for m in settlement["movements"] if m["order_id"]))
            settlement["orders"] = fetch_all(
                con,
                f"""
                SELECT id AS order_id, order_number, customer_name, delivery_city, total_price,
                       payment_method, status, amount_collected, failure_reason
                  FROM orders WHERE id IN ({placeholders(ids)}) ORDER BY order_number
                """,
                ids,
            ) if ids else []
    return settlement


def get_settlements_summary(store_id: str, start_date: Optional[str] = None,
                            end_date: Optional[str] = None) -> Dict[str, Any]:
    sql = "SELECT status, total_cod_collected, total_carrier_fees, net_receivable, balance_due FROM daily_settlements WHERE store_id = ?"
    params: list = [store_id]
    if start_date:
        sql += " AND settlement_date >= ?"
        params.append(start_date)
    if end_date:
        sql += " AND settlement_date <= ?"
        params.append(end_date)
    df = df_from_sql(sql, params)

    def total(col: str) -> float:
        return round(float(df[col].fillna(0).sum()), 2) if not df.empty else 0.0

    return {
        "total_settlements": int(len(df)),
        "total_pending": int((df["status"] == "pending").sum()) if not df.empty else 0,
        "total_partial": int((df["status"] == "partial").sum()) if not df.empty else 0,
        "total_paid": int((df["status"] == "paid").sum()) if not df.empty else 0,
        "total_cod_collected": total("total_cod_collected"),
        "total_carrier_fees": total("total_carrier_fees"),
        "total_net_receivable": total("net_receivable"),
        "total_balance_due": total("balance_due"),
    }


def get_pending_by_carrier(store_id: str) -> List[Dict[str, Any]]:
    df = df_from_sql(
        """
        SELECT d.carrier_id, c.name AS carrier_name, d.balance_due
          FROM daily_settlements d
          LEFT JOIN carriers c ON c.id = d.carrier_id
         WHERE d.store_id = ? AND d.status IN ('pending', 'partial')
        """,
        (store_id,),
    )
    if df.empty:
        return []
    df["carrier_name"] = df["carrier_name"].fillna("")
    grouped = (
        df.groupby(["carrier_id", "carrier_name"])
        .agg(pending_settlements=("balance_due", "size"), total_balance_due=("balance_due", "sum"))
        .reset_index()
        .sort_values("total_balance_due", ascending=False)
    )
    return [
        {
            "carrier_id": r.carrier_id,
            "carrier_name": r.carrier_name,
            "pending_settlements": int(r.pending_settlements),
            "total_balance_due": round(float(r.total_balance_due), 2),
        }
        for r in grouped.itertuples(index=False)
    ]
