"""
cod_logic/dispatch.py - Sesiones de despacho
────────────────────────────────────────────────────────────
Agrupa pedidos confirmados en un despacho a un courier:
  • código DISP-DDMMYYYY-NNN único por tienda y día
  • foto (snapshot) de cada pedido con su tarifa y tipo de pago
  • total COD esperado y cantidad de prepagos
  • pedidos → 'shipped'

Un pedido pertenece a lo sumo a UNA sesión activa (dispatched/processing).
Toda la creación ocurre en una sola transacción.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import sqlite3

from .db import (
    ACTIVE_SESSION_STATUSES,
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
    to_date,
    df_from_sql,
    df_records,
)
from .errors import ConflictError, NotFoundError, SettlementError
from .payment import is_order_cod, normalize_payment_method
from .zones import DEFAULT_ZONE_RATE, load_rate_table

logger = logging.getLogger(__name__)

DISPATCHABLE_STATUSES = ("ready_to_ship", "confirmed")


# ───────────── helpers ──────────────────────────────────
def _session_order_out(row: Dict[str, Any]) -> Dict[str, Any]:
    row["is_cod"] = bool(row.get("is_cod"))
    return row


def get_carrier(con: sqlite3.Connection, store_id: str, carrier_id: str) -> Dict[str, Any]:
    carrier = fetch_one(
        con, "SELECT * FROM carriers WHERE id = ? AND store_id = ?", (carrier_id, store_id)
    )
    if carrier is None:
        raise NotFoundError("Courier no encontrado")
    return carrier


def load_session(con: sqlite3.Connection, session_id: str, store_id: str) -> Dict[str, Any]:
    session = fetch_one(
        con,
        """
        SELECT s.*, c.name AS carrier_name
          FROM dispatch_sessions s
          LEFT JOIN carriers c ON c.id = s.carrier_id
         WHERE s.id = ? AND s.store_id = ?
        """,
        (session_id, store_id),
    )
    if session is None:
        raise NotFoundError("Sesión de despacho no encontrada")
    return session


def load_session_orders(con: sqlite3.Connection, session_id: str) -> List[Dict[str, Any]]:
    rows = fetch_all(
        con,
        "SELECT * FROM dispatch_session_orders WHERE dispatch_session_id = ? ORDER BY order_number",
        (session_id,),
    )
    return [_session_order_out(r) for r in rows]


def find_active_memberships(con: sqlite3.Connection, store_id: str,
                            order_ids: List[str]) -> List[Tuple[str, str]]:
    """(order_id, session_code) de los pedidos que ya están en una sesión activa."""
    if not order_ids:
        return []
    return con.execute(
        f"""
        SELECT so.order_id, s.session_code
          FROM dispatch_session_orders so
          JOIN dispatch_sessions s ON s.id = so.dispatch_session_id
         WHERE s.store_id = ?
           AND s.status IN ({placeholders(list(ACTIVE_SESSION_STATUSES))})
           AND so.order_id IN ({placeholders(order_ids)})
        """,
        (store_id, *ACTIVE_SESSION_STATUSES, *order_ids),
    ).fetchall()


# ───────────── consulta ─────────────────────────────────
def get_orders_to_dispatch(store_id: str, carrier_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Pedidos confirmados (o para reintentar) que no están en una sesión activa."""
    sql = f"""
        SELECT o.*, c.name AS carrier_name
          FROM orders o
          LEFT JOIN carriers c ON c.id = o.courier_id
         WHERE o.store_id = ?
           AND o.status IN ({placeholders(list(DISPATCHABLE_STATUSES))})
           AND o.id NOT IN (
               SELECT so.order_id
                 FROM dispatch_session_orders so
                 JOIN dispatch_sessions s ON s.id = so.dispatch_session_id
                WHERE s.status IN ({placeholders(list(ACTIVE_SESSION_STATUSES))})
           )
    """
    params: list = [store_id, *DISPATCHABLE_STATUSES, *ACTIVE_SESSION_STATUSES]
    if carrier_id:
        sql += " AND o.courier_id = ?"
        params.append(carrier_id)
    sql += " ORDER BY o.created_at"
    df = df_from_sql(sql, params)
    return df_records(df)


def get_dispatch_sessions(
    store_id: str,
    status: Optional[str] = None,
    carrier_id: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Dict[str, Any]], int]:
    where = " WHERE s.store_id = ?"
    params: list = [store_id]
    if status:
        where += " AND s.status = ?"
        params.append(status)
    if carrier_id:
        where += " AND s.carrier_id = ?"
        params.append(carrier_id)
    if start_date:
        where += " AND s.dispatch_date >= ?"
        params.append(start_date)
    if end_date:
        where += " AND s.dispatch_date <= ?"
        params.append(end_date)

    with get_connection() as con:
        total = con.execute(f"SELECT COUNT(*) FROM dispatch_sessions s{where}", params).fetchone()[0]
        rows = fetch_all(
            con,
            f"""
            SELECT s.*, c.name AS carrier_name
              FROM dispatch_sessions s
              LEFT JOIN carriers c ON c.id = s.carrier_id
            {where}
             ORDER BY s.dispatch_date DESC, s.session_code DESC
             LIMIT ? OFFSET ?
            """,
            [*params, limit, offset],
        )
    return rows, total


def get_dispatch_session(session_id: str, store_id: str) -> Dict[str, Any]:
    """Sesión con sus pedidos."""
    with get_connection() as con:
        session = load_session(con, session_id, store_id)
        session["orders"] = load_session_orders(con, session_id)
    return session


# ───────────── creación ─────────────────────────────────
def create_dispatch_session(
    store_id: str,
    carrier_id: str,
    order_ids: List[str],
    user_id: Optional[str] = None,
    dispatch_date: Optional[str] = None,
    notes: Optional[str] = None,
    default_rate: float = DEFAULT_ZONE_RATE,
) -> Dict[str, Any]:
    """
    Crea una sesión de despacho.

    Bloquea si: algún pedido ya está en una sesión activa, el courier no
    tiene zonas, o algún pedido no existe. Sólo avisa si: un pedido no está
    en ready_to_ship/confirmed, o el courier no tiene zona de respaldo.

    Returns:
        la sesión creada, con `orders` y `warnings`
    """
    order_ids = list(dict.fromkeys(str(o) for o in order_ids or []))
    if not order_ids:
        raise SettlementError("Se requiere al menos un pedido para despachar")

    dispatch_day = str(to_date(dispatch_date)) if dispatch_date else today_str()
    warnings: List[str] = []

    with transaction() as con:
        carrier = get_carrier(con, store_id, carrier_id)

        # ① pedidos ya despachados (se verifica bajo el lock de escritura)
        duplicates = find_active_memberships(con, store_id, order_ids)
        if duplicates:
            detail = ", ".join(f"{oid[:8]} ({code})" for oid, code in duplicates)
            raise ConflictError(
                f"{len(duplicates)} orden(es) ya están en sesiones activas: {detail}"
            )

        # ② tarifas
        rate_table = load_rate_table(con, store_id, carrier_id, default_rate=default_rate)
        if len(rate_table) == 0:
            raise SettlementError(
                f'El carrier "{carrier["name"]}" no tiene zonas configuradas. '
                f'Configure al menos una zona (por ejemplo "default") antes de despachar.'
            )

        # ③ pedidos existentes
        orders = fetch_all(
            con,
            f"SELECT * FROM orders WHERE store_id = ? AND id IN ({placeholders(order_ids)})",
            (store_id, *order_ids),
        )
        found = {o["id"] for o in orders}
        missing = [oid for oid in order_ids if oid not in found]
        if missing:
            raise NotFoundError(
                f"{len(missing)} orden(es) no encontradas: {', '.join(missing)}"
            )

        # avisos (no bloquean)
        odd_status = [o for o in orders if o["status"] not in DISPATCHABLE_STATUSES]
        if odd_status:
            msg = (
                f"{len(odd_status)} orden(es) no están en estado ready_to_ship/confirmed: "
                + ", ".join(f"{o['order_number'] or o['id'][:8]} ({o['status']})" for o in odd_status)
            )
            logger.warning(msg)
            warnings.append(msg)
        if not rate_table.has_fallback_zone:
            msg = (
                f'El carrier "{carrier["name"]}" no tiene zona de respaldo '
                f"(default/otros/interior/general); ciudades sin zona usarán la primera tarifa."
            )
            logger.warning(msg)
            warnings.append(msg)

        # ④ sesión
        session_id = new_id()
        created_at = now_str()
        session_code = insert_with_code(
            con, "dispatch_sessions", "session_code", store_id, "DISP", dispatch_day,
            {
                "id": session_id,
                "store_id": store_id,
                "carrier_id": carrier_id,
                "dispatch_date": dispatch_day,
                "total_orders": len(orders),
                "status": "dispatched",
                "notes": notes,
                "created_by": user_id,
                "created_at": created_at,
            },
        )

        # ⑤ snapshot de pedidos
        by_id = {o["id"]: o for o in orders}
        total_cod_expected = 0.0
        total_prepaid = 0
        for oid in order_ids:
            order = by_id[oid]
            fee = rate_table.resolve(order["delivery_zone"], order["delivery_city"])
            cod = is_order_cod(order["payment_method"], order["prepaid_method"])
            price = float(order["total_price"] or 0)
            if cod:
                total_cod_expected += price
            else:
                total_prepaid += 1
            insert_row(con, "dispatch_session_orders", {
                "id": new_id(),
                "dispatch_session_id": session_id,
                "order_id": oid,
                "order_number": order["order_number"],
                "customer_name": order["customer_name"] or "",
                "customer_phone": order["customer_phone"] or "",
                "delivery_address": order["delivery_address"] or "",
                "delivery_city": order["delivery_city"] or order["delivery_zone"] or "",
                "delivery_zone": order["delivery_zone"] or "",
                "total_price": price,
                "payment_method": normalize_payment_method(order["payment_method"]),
                "is_cod": int(cod),
                "carrier_fee": fee,
                "delivery_status": "pending",
            })

        con.execute(
            "UPDATE dispatch_sessions SET total_cod_expected = ?, total_prepaid = ? WHERE id = ?",
            (round(total_cod_expected, 2), total_prepaid, session_id),
        )

        # ⑥ pedidos → shipped
        con.execute(
            f"""
            UPDATE orders SET status = 'shipped', courier_id = ?, shipped_at = ?
             WHERE store_id = ? AND id IN ({placeholders(order_ids)})
            """,
            (carrier_id, created_at, store_id, *order_ids),
        )

        session = load_session(con, session_id, store_id)
        session["orders"] = load_session_orders(con, session_id)

    logger.info(
        f"Despacho {session_code}: {len(order_ids)} pedidos, "
        f"COD esperado {total_cod_expected:,.2f}, prepagos {total_prepaid}"
    )
    session["warnings"] = warnings
    return session


# ───────────── cancelación ──────────────────────────────
def cancel_dispatch_session(session_id: str, store_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
    """
    Cancela un despacho que todavía no tiene resultados importados.

    Los pedidos vuelven a 'confirmed' y quedan libres para otro despacho.
    """
    with transaction() as con:
        session = load_session(con, session_id, store_id)
        cur = con.execute(
            """
            UPDATE dispatch_sessions
               SET status = 'cancelled', cancelled_at = ?,
                   notes = COALESCE(notes || ' | ', '') || ?
             WHERE id = ? AND status = 'dispatched'
            """,
            (now_str(), f"Cancelado: {reason or 'sin motivo'}", session_id),
        )
        if cur.rowcount == 0:
            raise ConflictError(
                f"La sesión {session['session_code']} no se puede cancelar (estado: {session['status']})"
            )
        order_ids = [r[0] for r in con.execute(
            "SELECT order_id FROM dispatch_session_orders WHERE dispatch_session_id = ?", (session_id,)
        )]
        if order_ids:
            con.execute(
                f"""
                UPDATE orders SET status = 'confirmed', shipped_at = NULL
                 WHERE store_id = ? AND status = 'shipped' AND id IN ({placeholders(order_ids)})
                """,
                (store_id, *order_ids),
            )
        session = load_session(con, session_id, store_id)

    logger.info(f"Despacho {session['session_code']} cancelado")
    return session


def mark_session_exported(session_id: str, store_id: str) -> None:
    with transaction() as con:
        con.execute(
            "UPDATE dispatch_sessions SET exported_at = ? WHERE id = ? AND store_id = ?",
            (now_str(), session_id, store_id),
        )
