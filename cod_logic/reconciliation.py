"""
cod_logic/reconciliation.py - Conciliación manual (sin planilla)
────────────────────────────────────────────────────────────
El operador marca cada pedido enviado como entregado / no entregado e
informa UN total cobrado para todo el lote.

  • sólo pedidos en 'shipped', del courier indicado
  • no entregado ⇒ motivo obligatorio y penalidad del 50% de la tarifa
  • diferencia entre lo cobrado y lo esperado: bloquea hasta confirmarla;
    confirmada, se reparte entre los COD entregados (EQUAL_SPLIT)
  • entregados → 'delivered'; fallidos → 'ready_to_ship' (reintento)

Si el lote incluye pedidos de un despacho activo, debe incluir el despacho
completo y éste queda liquidado con la misma liquidación.

Conciliación por fecha de entrega: pedidos ya 'delivered' (fuera de todo
despacho) se agrupan por courier y día de entrega y se liquidan con el
total que informa el courier. Sólo se marca reconciled_at; el estado del
pedido no cambia.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional

from .db import (
    ACTIVE_SESSION_STATUSES,
    get_connection,
    transaction,
    fetch_all,
    placeholders,
    now_str,
    to_date,
    df_from_sql,
    df_records,
)
from .dispatch import get_carrier, find_active_memberships
from .errors import ConflictError, DiscrepancyError, NotFoundError, SettlementError
from .ledger import record_outcome_movements
from .payment import is_order_cod
from .policies import (
    DISCREPANCY_TOLERANCE,
    AllocationStrategy,
    DiscrepancyPolicy,
    allocate_discrepancy,
)
from .settlement import compute_settlement_totals, insert_settlement, load_settlement
from .zones import DEFAULT_ZONE_RATE, load_rate_table

logger = logging.getLogger(__name__)


# ─────────────────────────────────────
# 1. Pedidos enviados agrupados por courier y fecha
# ─────────────────────────────────────
def get_shipped_orders_grouped(store_id: str) -> List[Dict[str, Any]]:
    df = df_from_sql(
        """
        SELECT o.*, c.name AS carrier_name
          FROM orders o
          LEFT JOIN carriers c ON c.id = o.courier_id
         WHERE o.store_id = ? AND o.status = 'shipped' AND o.courier_id IS NOT NULL
         ORDER BY o.shipped_at DESC
        """,
        (store_id,),
    )
    if df.empty:
        return []

    groups: Dict[tuple, Dict[str, Any]] = {}
    for o in df_records(df):
        day = str(o["shipped_at"] or o["created_at"] or "")[:10]
        key = (o["courier_id"], day)
        cod = is_order_cod(o["payment_method"], o["prepaid_method"])
        price = float(o["total_price"] or 0)
        group = groups.setdefault(key, {
            "carrier_id": o["courier_id"],
            "carrier_name": o["carrier_name"] or "Sin courier",
            "dispatch_date": day,
            "orders": [],
            "total_orders": 0,
            "total_cod_expected": 0.0,
            "total_prepaid": 0,
        })
        group["orders"].append({
            "id": o["id"],
            "order_number": o["order_number"],
            "customer_name": o["customer_name"] or "Cliente",
            "customer_phone": o["customer_phone"] or "",
            "delivery_address": o["delivery_address"] or "",
            "delivery_city": o["delivery_city"] or o["delivery_zone"] or "",
            "total_price": price,
            "cod_amount": price if cod else 0.0,
            "payment_method": o["payment_method"] or "",
            "is_cod": cod,
            "shipped_at": o["shipped_at"] or o["created_at"],
        })
        group["total_orders"] += 1
        if cod:
            group["total_cod_expected"] = round(group["total_cod_expected"] + price, 2)
        else:
            group["total_prepaid"] += 1

    return sorted(groups.values(), key=lambda g: g["dispatch_date"], reverse=True)


# ─────────────────────────────────────
# 2. Conciliación
# ─────────────────────────────────────
def _parse_total(value: Any) -> float:
    try:
        total = float(value)
    except (TypeError, ValueError):
        raise SettlementError("total_amount_collected debe ser un número válido")
    if not math.isfinite(total) or total < 0:
        raise SettlementError("total_amount_collected debe ser un número válido mayor o igual a 0")
    return round(total, 2)


def _validate_input(data: Dict[str, Any]) -> tuple:
    carrier_id = data.get("carrier_id")
    dispatch_date = data.get("dispatch_date")
    items = data.get("orders")
    if not carrier_id or not dispatch_date:
        raise SettlementError("Faltan campos requeridos (carrier_id, dispatch_date)")
    if not isinstance(items, list) or not items:
        raise SettlementError("Se requiere al menos un pedido para conciliar")

    seen = set()
    for item in items:
        oid = str(item.get("order_id") or "")
        if not oid:
            raise SettlementError("Cada pedido necesita order_id")
        if oid in seen:
            raise SettlementError(f"Pedido {oid} repetido en la conciliación")
        seen.add(oid)

    no_reason = [i for i in items if not i.get("delivered") and not (i.get("failure_reason") or "").strip()]
    if no_reason:
        raise SettlementError(f"{len(no_reason)} pedido(s) no entregados sin motivo de falla")
    return carrier_id, str(dispatch_date), items, _parse_total(data.get("total_amount_collected"))


def process_manual_reconciliation(
    store_id: str,
    data: Dict[str, Any],
    user_id: Optional[str] = None,
    policy: DiscrepancyPolicy = DiscrepancyPolicy.REQUIRE_CONFIRMATION,
    strategy: AllocationStrategy = AllocationStrategy.EQUAL_SPLIT,
    default_rate: float = DEFAULT_ZONE_RATE,
) -> Dict[str, Any]:
    """
    Concilia un lote de pedidos enviados y crea su liquidación.

    Args:
        data: carrier_id, dispatch_date, orders [{order_id, delivered,
              failure_reason, notes}], total_amount_collected,
              discrepancy_notes, confirm_discrepancy

    Returns:
        la liquidación creada, con `discrepancy` y `warnings`
    """
    carrier_id, dispatch_date, items, total_collected = _validate_input(data)
    policy = DiscrepancyPolicy(policy)
    confirmed = bool(data.get("confirm_discrepancy"))
    order_ids = [str(i["order_id"]) for i in items]
    warnings: List[str] = []

    with transaction() as con:
        carrier = get_carrier(con, store_id, carrier_id)

        orders = fetch_all(
            con,
            f"SELECT * FROM orders WHERE store_id = ? AND id IN ({placeholders(order_ids)})",
            (store_id, *order_ids),
        )
        by_id = {o["id"]: o for o in orders}
        missing = [oid for oid in order_ids if oid not in by_id]
        if missing:
            raise NotFoundError(f"{len(missing)} pedido(s) no encontrados: {', '.join(missing)}")

        not_shipped = [o for o in orders if o["status"] != "shipped"]
        if not_shipped:
            raise ConflictError(
                f"{len(not_shipped)} pedido(s) no están en estado 'shipped': "
                + ", ".join(f"{o['order_number']} ({o['status']})" for o in not_shipped)
            )

        foreign = [o for o in orders if o["courier_id"] != carrier_id]
        if foreign:
            raise SettlementError(
                f"{len(foreign)} pedido(s) no pertenecen al courier seleccionado: "
                + ", ".join(str(o["order_number"]) for o in foreign)
            )

        # despachos activos: sólo completos y sin resultados importados
        sessions: Dict[str, Dict[str, Any]] = {}
        session_of: Dict[str, str] = {}
        for oid, code in find_active_memberships(con, store_id, order_ids):
            row = con.execute(
                "SELECT s.id, s.status FROM dispatch_sessions s WHERE s.store_id = ? AND s.session_code = ?",
                (store_id, code),
            ).fetchone()
            sessions[row[0]] = {"code": code, "status": row[1]}
            session_of[oid] = row[0]
        for sid, info in sessions.items():
            if info["status"] != "dispatched":
                raise ConflictError(
                    f"El despacho {info['code']} ya tiene resultados importados; liquídelo desde el despacho"
                )
            members = {r[0] for r in con.execute(
                "SELECT order_id FROM dispatch_session_orders WHERE dispatch_session_id = ?", (sid,)
            )}
            left_out = members - set(order_ids)
            if left_out:
                raise ConflictError(
                    f"El despacho {info['code']} tiene {len(left_out)} pedido(s) fuera de esta conciliación; "
                    f"incluya el despacho completo"
                )

        # tarifas y montos esperados
        rate_table = load_rate_table(con, store_id, carrier_id, default_rate=default_rate)
        snapshot_fees = {
            r[0]: r[1] for r in con.execute(
                f"""
                SELECT so.order_id, so.carrier_fee FROM dispatch_session_orders so
                 WHERE so.dispatch_session_id IN ({placeholders(list(sessions))})
                """,
                list(sessions),
            )
        } if sessions else {}

        outcomes: List[Dict[str, Any]] = []
        for item in items:
            order = by_id[str(item["order_id"])]
            fee = snapshot_fees.get(order["id"])
            if fee is None:
                fee = rate_table.resolve(order["delivery_zone"], order["delivery_city"])
            cod = is_order_cod(order["payment_method"], order["prepaid_method"])
            price = float(order["total_price"] or 0)
            delivered = bool(item.get("delivered"))
            outcomes.append({
                "order": order,
                "item": item,
                "delivery_status": "delivered" if delivered else "not_delivered",
                "is_cod": cod,
                "total_price": price,
                "carrier_fee": float(fee),
                "amount_collected": price if (delivered and cod) else 0.0,
                "discrepancy": False,
            })

        cod_delivered = [o for o in outcomes if o["delivery_status"] == "delivered" and o["is_cod"]]
        expected = round(sum(o["total_price"] for o in cod_delivered), 2)
        discrepancy = round(total_collected - expected, 2)

        if abs(discrepancy) > DISCREPANCY_TOLERANCE:
            if policy == DiscrepancyPolicy.REQUIRE_CONFIRMATION and not confirmed:
                raise DiscrepancyError(
                    f"Hay una discrepancia de {discrepancy:+,.2f} que no ha sido confirmada "
                    f"(esperado {expected:,.2f}, cobrado {total_collected:,.2f})",
                    discrepancy=discrepancy,
                )
            amounts = allocate_discrepancy([o["total_price"] for o in cod_delivered], discrepancy, strategy)
            for o, amount in zip(cod_delivered, amounts):
                o["amount_collected"] = amount
                o["discrepancy"] = True
            msg = f"Discrepancia {discrepancy:+,.2f} repartida entre {len(cod_delivered)} pedido(s) COD"
            logger.warning(f"{carrier['name']} {dispatch_date}: {msg}")
            warnings.append(msg)

        totals = compute_settlement_totals(outcomes)

        notes = f"Conciliación manual {dispatch_date}"
        if abs(discrepancy) > DISCREPANCY_TOLERANCE:
            notes += f" | Discrepancia: {discrepancy:+,.2f}"
            if data.get("discrepancy_notes"):
                notes += f" ({data['discrepancy_notes']})"

        settlement = insert_settlement(
            con, store_id, carrier_id, totals,
            dispatch_session_id=next(iter(sessions)) if len(sessions) == 1 else None,
            notes=notes, created_by=user_id,
        )

        ts = now_str()
        for o in outcomes:
            order, item = o["order"], o["item"]
            if o["delivery_status"] == "delivered":
                cur = con.execute(
                    """
                    UPDATE orders
                       SET status = 'delivered', delivered_at = ?, reconciled_at = ?, amount_collected = ?,
                           has_amount_discrepancy = ?, delivery_notes = COALESCE(?, delivery_notes)
                     WHERE id = ? AND status = 'shipped'
                    """,
                    (ts, ts, o["amount_collected"], int(o["discrepancy"]), item.get("notes"), order["id"]),
                )
            else:
                cur = con.execute(
                    """
                    UPDATE orders
                       SET status = 'ready_to_ship', amount_collected = 0, failure_reason = ?,
                           delivery_notes = ?
                     WHERE id = ? AND status = 'shipped'
                    """,
                    (item["failure_reason"].strip(), item.get("notes") or item["failure_reason"].strip(), order["id"]),
                )
            if cur.rowcount != 1:
                raise ConflictError(f"El pedido {order['order_number']} cambió de estado durante la conciliación")

            sid = session_of.get(order["id"])
            if sid:
                con.execute(
                    """
                    UPDATE dispatch_session_orders
                       SET delivery_status = ?, amount_collected = ?, failure_reason = ?,
                           courier_notes = ?, delivered_at = ?, processed_at = ?
                     WHERE dispatch_session_id = ? AND order_id = ?
                    """,
                    (o["delivery_status"], o["amount_collected"],
                     None if o["delivery_status"] == "delivered" else item["failure_reason"].strip(),
                     item.get("notes"), ts if o["delivery_status"] == "delivered" else None, ts,
                     sid, order["id"]),
                )
            record_outcome_movements(
                con, store_id, carrier_id, order["id"], order["order_number"],
                o["delivery_status"], o["is_cod"], o["amount_collected"], o["carrier_fee"],
                dispatch_session_id=sid, settlement_id=settlement["id"], created_by=user_id,
            )

        for sid in sessions:
            con.execute(
                """
                UPDATE dispatch_sessions
                   SET status = 'settled', daily_settlement_id = ?, imported_at = ?, settled_at = ?
                 WHERE id = ? AND status = 'dispatched'
                """,
                (settlement["id"], ts, ts, sid),
            )

        settlement = load_settlement(con, settlement["id"], store_id)

    logger.info(
        f"Conciliación {settlement['settlement_code']} ({carrier['name']} {dispatch_date}): "
        f"{totals['total_delivered']} entregados, {totals['total_not_delivered']} fallidos, "
        f"neto {settlement['net_receivable']:,.2f}"
    )
    settlement["discrepancy"] = discrepancy
    settlement["warnings"] = warnings
    return settlement


# ─────────────────────────────────────
# 3. Conciliación por fecha de entrega
# ─────────────────────────────────────
_ACTIVE_SESSIONS_SQL = ", ".join(f"'{s}'" for s in ACTIVE_SESSION_STATUSES)

# pedidos entregados que todavía no pasaron por ninguna liquidación ni
# tienen movimientos de entrega (despacho importado o backfill)
_PENDING_DELIVERED_SQL = f"""
    SELECT o.*, c.name AS carrier_name
      FROM orders o
      LEFT JOIN carriers c ON c.id = o.courier_id
     WHERE o.store_id = ? AND o.status = 'delivered'
       AND o.courier_id IS NOT NULL AND o.delivered_at IS NOT NULL
       AND o.reconciled_at IS NULL
       AND NOT EXISTS (
           SELECT 1 FROM carrier_account_movements m
            WHERE m.order_id = o.id AND m.movement_type IN ('cod_collected', 'delivery_fee')
       )
       AND NOT EXISTS (
           SELECT 1 FROM dispatch_session_orders so
             JOIN dispatch_sessions s ON s.id = so.dispatch_session_id
            WHERE so.order_id = o.id
              AND s.status IN ({_ACTIVE_SESSIONS_SQL})
       )
"""


def get_pending_reconciliation(store_id: str) -> List[Dict[str, Any]]:
    """Entregas sin conciliar agrupadas por courier y día de entrega (más reciente primero)."""
    df = df_from_sql(_PENDING_DELIVERED_SQL + " ORDER BY o.delivered_at DESC", (store_id,))
    if df.empty:
        return []

    df["delivery_date"] = df["delivered_at"].astype(str).str[:10]
    df["is_cod"] = [is_order_cod(pm, pp) for pm, pp in zip(df["payment_method"], df["prepaid_method"])]
    df["cod_amount"] = df["total_price"].fillna(0).astype(float).where(df["is_cod"], 0.0)
    df["carrier_name"] = df["carrier_name"].fillna("Sin courier")

    grouped = (
        df.groupby(["courier_id", "carrier_name", "delivery_date"], as_index=False)
          .agg(total_orders=("id", "count"),
               total_cod=("cod_amount", "sum"),
               total_cod_orders=("is_cod", "sum"))
          .rename(columns={"courier_id": "carrier_id"})
    )
    grouped["total_prepaid"] = grouped["total_orders"] - grouped["total_cod_orders"]
    grouped["total_cod"] = grouped["total_cod"].round(2)
    grouped = grouped.drop(columns=["total_cod_orders"]).sort_values(
        ["delivery_date", "carrier_name"], ascending=[False, True]
    )
    return df_records(grouped)


def get_pending_reconciliation_orders(store_id: str, carrier_id: str,
                                      delivery_date: str,
                                      default_rate: float = DEFAULT_ZONE_RATE) -> List[Dict[str, Any]]:
    """Pedidos de un courier entregados en `delivery_date`, con la tarifa que se cobraría."""
    day = str(to_date(delivery_date))
    with get_connection() as con:
        get_carrier(con, store_id, carrier_id)
        rate_table = load_rate_table(con, store_id, carrier_id, default_rate=default_rate)
        orders = fetch_all(
            con,
            _PENDING_DELIVERED_SQL
            + " AND o.courier_id = ? AND substr(o.delivered_at, 1, 10) = ? ORDER BY o.delivered_at",
            (store_id, carrier_id, day),
        )

    result = []
    for o in orders:
        cod = is_order_cod(o["payment_method"], o["prepaid_method"])
        price = float(o["total_price"] or 0)
        zone_rate = rate_table.match(o["delivery_zone"], o["delivery_city"])
        result.append({
            "id": o["id"],
            "order_number": o["order_number"],
            "customer_name": o["customer_name"] or "Cliente",
            "customer_phone": o["customer_phone"] or "",
            "delivery_address": o["delivery_address"] or "",
            "delivery_city": o["delivery_city"] or o["delivery_zone"] or "",
            "total_price": price,
            "cod_amount": price if cod else 0.0,
            "payment_method": o["payment_method"] or "",
            "prepaid_method": o["prepaid_method"],
            "is_cod": cod,
            "delivered_at": o["delivered_at"],
            "carrier_fee": zone_rate if zone_rate is not None else rate_table.resolve(
                o["delivery_zone"], o["delivery_city"]),
            "fee_source": "zone" if zone_rate is not None else "fallback",
        })
    return result


def _validate_delivery_input(data: Dict[str, Any]) -> tuple:
    carrier_id = data.get("carrier_id")
    delivery_date = data.get("delivery_date")
    items = data.get("orders")
    if not carrier_id or not delivery_date:
        raise SettlementError("Faltan campos requeridos (carrier_id, delivery_date)")
    try:
        day = str(to_date(delivery_date))
    except ValueError:
        raise SettlementError("delivery_date debe tener formato YYYY-MM-DD")
    if not isinstance(items, list) or not items:
        raise SettlementError("Se requiere al menos un pedido para conciliar")

    seen = set()
    for item in items:
        oid = str(item.get("order_id") or "")
        if not oid:
            raise SettlementError("Cada pedido necesita order_id")
        if oid in seen:
            raise SettlementError(f"Pedido {oid} repetido en la conciliación")
        seen.add(oid)
    return carrier_id, day, items, _parse_total(data.get("total_amount_collected"))


def process_delivery_reconciliation(
    store_id: str,
    data: Dict[str, Any],
    user_id: Optional[str] = None,
    policy: DiscrepancyPolicy = DiscrepancyPolicy.WARN_ONLY,
    strategy: AllocationStrategy = AllocationStrategy.EQUAL_SPLIT,
    default_rate: float = DEFAULT_ZONE_RATE,
) -> Dict[str, Any]:
    """
    Concilia las entregas de un courier en un día y crea su liquidación.

    Los pedidos ya están en 'delivered'; el estado no cambia, sólo se
    marcan como conciliados. Un pedido informado como no entregado paga el
    50% de la tarifa. `override_prepaid` trata un pedido COD como prepago
    (el cliente pagó por otro medio).

    Args:
        data: carrier_id, delivery_date, orders [{order_id, delivered,
              failure_reason, override_prepaid}], total_amount_collected,
              discrepancy_notes, confirm_discrepancy

    Returns:
        la liquidación creada, con `discrepancy` y `warnings`
    """
    carrier_id, delivery_date, items, total_collected = _validate_delivery_input(data)
    policy = DiscrepancyPolicy(policy)
    confirmed = bool(data.get("confirm_discrepancy"))
    order_ids = [str(i["order_id"]) for i in items]
    warnings: List[str] = []

    with transaction() as con:
        carrier = get_carrier(con, store_id, carrier_id)

        orders = fetch_all(
            con,
            f"SELECT * FROM orders WHERE store_id = ? AND id IN ({placeholders(order_ids)})",
            (store_id, *order_ids),
        )
        by_id = {o["id"]: o for o in orders}
        missing = [oid for oid in order_ids if oid not in by_id]
        if missing:
            raise NotFoundError(f"{len(missing)} pedido(s) no encontrados: {', '.join(missing)}")

        pending_ids = {r[0] for r in con.execute(
            f"SELECT o.id FROM ({_PENDING_DELIVERED_SQL}) o WHERE o.id IN ({placeholders(order_ids)})",
            (store_id, *order_ids),
        )}
        not_pending = [o for o in orders if o["id"] not in pending_ids]
        if not_pending:
            raise ConflictError(
                f"{len(not_pending)} pedido(s) ya conciliados o no disponibles para conciliar: "
                + ", ".join(f"{o['order_number']} ({o['status']})" for o in not_pending)
            )

        foreign = [o for o in orders if o["courier_id"] != carrier_id]
        if foreign:
            raise SettlementError(
                f"{len(foreign)} pedido(s) no pertenecen al courier seleccionado: "
                + ", ".join(str(o["order_number"]) for o in foreign)
            )

        rate_table = load_rate_table(con, store_id, carrier_id, default_rate=default_rate)
        outcomes: List[Dict[str, Any]] = []
        for item in items:
            order = by_id[str(item["order_id"])]
            cod = is_order_cod(order["payment_method"], order["prepaid_method"]) \
                and not item.get("override_prepaid")
            price = float(order["total_price"] or 0)
            delivered = bool(item.get("delivered"))
            outcomes.append({
                "order": order,
                "item": item,
                "delivery_status": "delivered" if delivered else "not_delivered",
                "is_cod": cod,
                "total_price": price,
                "carrier_fee": rate_table.resolve(order["delivery_zone"], order["delivery_city"]),
                "amount_collected": price if (delivered and cod) else 0.0,
                "discrepancy": False,
            })

        cod_delivered = [o for o in outcomes if o["delivery_status"] == "delivered" and o["is_cod"]]
        expected = round(sum(o["total_price"] for o in cod_delivered), 2)
        discrepancy = round(total_collected - expected, 2)

        if abs(discrepancy) > DISCREPANCY_TOLERANCE:
            if policy == DiscrepancyPolicy.REQUIRE_CONFIRMATION and not confirmed:
                raise DiscrepancyError(
                    f"Hay una discrepancia de {discrepancy:+,.2f} que no ha sido confirmada "
                    f"(esperado {expected:,.2f}, cobrado {total_collected:,.2f})",
                    discrepancy=discrepancy,
                )
            amounts = allocate_discrepancy([o["total_price"] for o in cod_delivered], discrepancy, strategy)
            for o, amount in zip(cod_delivered, amounts):
                o["amount_collected"] = amount
                o["discrepancy"] = True
            msg = f"Discrepancia {discrepancy:+,.2f} repartida entre {len(cod_delivered)} pedido(s) COD"
            logger.warning(f"{carrier['name']} {delivery_date}: {msg}")
            warnings.append(msg)

        totals = compute_settlement_totals(outcomes)

        notes = f"Conciliación de entregas {delivery_date}"
        if abs(discrepancy) > DISCREPANCY_TOLERANCE:
            notes += f" | Discrepancia: {discrepancy:+,.2f}"
            if data.get("discrepancy_notes"):
                notes += f" ({data['discrepancy_notes']})"

        settlement = insert_settlement(
            con, store_id, carrier_id, totals,
            settlement_date=delivery_date, notes=notes, created_by=user_id,
        )

        ts = now_str()
        for o in outcomes:
            order, item = o["order"], o["item"]
            delivered = o["delivery_status"] == "delivered"
            reason = (item.get("failure_reason") or "").strip() or None
            cur = con.execute(
                """
                UPDATE orders
                   SET reconciled_at = ?, amount_collected = ?, has_amount_discrepancy = ?,
                       failure_reason = COALESCE(?, failure_reason)
                 WHERE id = ? AND reconciled_at IS NULL
                """,
                (ts, o["amount_collected"], int(o["discrepancy"]),
                 None if delivered else reason, order["id"]),
            )
            if cur.rowcount != 1:
                raise ConflictError(f"El pedido {order['order_number']} ya fue conciliado")
            record_outcome_movements(
                con, store_id, carrier_id, order["id"], order["order_number"],
                o["delivery_status"], o["is_cod"], o["amount_collected"], o["carrier_fee"],
                settlement_id=settlement["id"], created_by=user_id,
            )

        settlement = load_settlement(con, settlement["id"], store_id)

    logger.info(
        f"Conciliación de entregas {settlement['settlement_code']} ({carrier['name']} {delivery_date}): "
        f"{totals['total_delivered']} entregados, {totals['total_not_delivered']} fallidos, "
        f"neto {settlement['net_receivable']:,.2f}"
    )
    settlement["discrepancy"] = discrepancy
    settlement["warnings"] = warnings
    return settlement
