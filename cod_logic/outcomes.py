"""
cod_logic/outcomes.py - Importación de resultados de entrega
────────────────────────────────────────────────────────────
Planilla del courier (xlsx/csv) o filas JSON → resultado por pedido:
  • ESTADO_ENTREGA texto libre → delivered / not_delivered / rejected /
    rescheduled / returned (no reconocido = pending, no se toca)
  • MOTIVO texto libre → taxonomía fija por subcadena
  • monto cobrado: COD entregado = lo reportado (diferencia = aviso),
    prepago = 0 siempre, no entregado = 0
  • cada fila es independiente: los errores se juntan y el lote sigue

Una fila con resultado final ya registrado se rechaza (el libro es
append-only; las correcciones van por ajuste).
"""

from __future__ import annotations

import io
import logging
import zipfile
from typing import Any, Dict, List, Optional

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from .db import transaction, now_str
from .dispatch import load_session, load_session_orders
from .errors import ConflictError, DiscrepancyError, SettlementError
from .ledger import FAILED_STATUSES, record_outcome_movements
from .policies import DISCREPANCY_TOLERANCE, DiscrepancyPolicy
from .zones import normalize_city

logger = logging.getLogger(__name__)

STATUS_MAP = {
    "ENTREGADO": "delivered",
    "DELIVERED": "delivered",
    "NO ENTREGADO": "not_delivered",
    "NOT_DELIVERED": "not_delivered",
    "NOT DELIVERED": "not_delivered",
    "RECHAZADO": "rejected",
    "REJECTED": "rejected",
    "REPROGRAMADO": "rescheduled",
    "RESCHEDULED": "rescheduled",
    "DEVUELTO": "returned",
    "RETURNED": "returned",
}

# el orden importa: la primera subcadena que coincide gana
FAILURE_REASON_RULES = (
    (("NO CONTESTA",), "no_answer"),
    (("DIRECCION",), "wrong_address"),
    (("AUSENTE",), "customer_absent"),
    (("RECHAZ",), "customer_rejected"),
    (("DINERO", "FONDOS"), "insufficient_funds"),
    (("NO SE ENCONTR",), "address_not_found"),
    (("REPROGRAM",), "rescheduled"),
)

FINAL_STATUSES = ("delivered", *FAILED_STATUSES)

# encabezado de planilla → clave interna
COLUMN_MAP = {
    "PEDIDO": "order_number",
    "ESTADO_ENTREGA": "delivery_status",
    "MONTO_COBRADO": "amount_collected",
    "MOTIVO": "failure_reason",
    "OBSERVACIONES": "notes",
}


def map_delivery_status(text: Any) -> str:
    key = normalize_city(str(text or "")).upper()
    return STATUS_MAP.get(key, "pending")


def map_failure_reason(text: Any) -> Optional[str]:
    key = normalize_city(str(text or "")).upper()
    if not key:
        return None
    for needles, reason in FAILURE_REASON_RULES:
        if any(n in key for n in needles):
            return reason
    return "other"


def _clean_order_number(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _parse_amount(value: Any) -> Optional[float]:
    """None si vacío; ValueError si no es un número."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return None if pd.isna(value) else float(value)
    text = str(value).strip().replace(" ", "")
    if not text:
        return None
    return float(text.replace(",", ""))


# ───────────── lectura de archivos ─────────────────────
def _blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float):
        return pd.isna(value)
    return isinstance(value, str) and not value.strip()


def _frame_to_rows(df: pd.DataFrame) -> List[Dict[str, Any]]:
    df = df.rename(columns=lambda c: normalize_city(str(c)).upper())
    missing = [c for c in ("PEDIDO", "ESTADO_ENTREGA") if c not in df.columns]
    if missing:
        raise SettlementError(f"Faltan columnas en el archivo: {', '.join(missing)}")

    rows: List[Dict[str, Any]] = []
    for rec in df.to_dict(orient="records"):
        row = {key: rec.get(col) for col, key in COLUMN_MAP.items()}
        row = {k: (None if _blank(v) else v) for k, v in row.items()}
        row["order_number"] = _clean_order_number(row["order_number"])
        if not row["order_number"]:
            # fin de los datos (después viene el resumen)
            break
        rows.append(row)
    return rows


def parse_results_file(content: bytes, filename: str = "") -> List[Dict[str, Any]]:
    """
    Lee la planilla devuelta por el courier.

    xlsx: busca la fila de encabezados (fila 4 en la planilla exportada).
    csv: primera fila = encabezados (UTF-8 con o sin BOM).
    """
    name = (filename or "").lower()
    if name.endswith(".csv"):
        df = pd.read_csv(io.BytesIO(content), dtype=str, encoding="utf-8-sig", keep_default_na=False)
        return _frame_to_rows(df)

    try:
        raw = pd.read_excel(io.BytesIO(content), header=None, dtype=object, engine="openpyxl")
    except (ValueError, OSError, zipfile.BadZipFile, InvalidFileException) as e:
        raise SettlementError(f"No se pudo leer el archivo {filename or ''}: {e}")
    header_idx = None
    for idx, values in enumerate(raw.itertuples(index=False)):
        if "PEDIDO" in [normalize_city(str(v)).upper() for v in values]:
            header_idx = idx
            break
    if header_idx is None:
        raise SettlementError("No se encontró la fila de encabezados (columna PEDIDO)")

    df = raw.iloc[header_idx + 1:].copy()
    df.columns = [str(v) for v in raw.iloc[header_idx].tolist()]
    return _frame_to_rows(df.reset_index(drop=True))


# ───────────── importación ──────────────────────────────
def _plan_row(row: Dict[str, Any], by_number: Dict[str, Dict[str, Any]],
              errors: List[str], warnings: List[str]) -> Optional[Dict[str, Any]]:
    """Resuelve una fila a una actualización; None si se omite."""
    number = _clean_order_number(row.get("order_number"))
    order = by_number.get(number) or by_number.get(number.lstrip("#"))
    if order is None:
        errors.append(f"Pedido {number} no encontrado en esta sesión")
        return None

    status = map_delivery_status(row.get("delivery_status"))
    if status == "pending":
        if row.get("delivery_status"):
            warnings.append(
                f"Pedido {number}: estado '{row.get('delivery_status')}' no reconocido, queda pendiente"
            )
        return None

    if order["delivery_status"] in FINAL_STATUSES:
        errors.append(
            f"Pedido {number} ya tiene resultado registrado ({order['delivery_status']})"
        )
        return None

    try:
        reported = _parse_amount(row.get("amount_collected"))
    except ValueError:
        errors.append(f"Pedido {number}: monto cobrado inválido '{row.get('amount_collected')}'")
        return None

    expected = float(order["total_price"] or 0)
    amount = 0.0
    discrepancy = False
    if status == "delivered":
        if order["is_cod"]:
            amount = expected if reported is None else reported
            if abs(amount - expected) > DISCREPANCY_TOLERANCE:
                discrepancy = True
                msg = f"⚠️ Pedido {number}: Discrepancia de monto - Esperado: {expected:,.2f}, Cobrado: {amount:,.2f}"
                logger.warning(msg)
                warnings.append(msg)
        elif reported and reported > 0:
            msg = (
                f"Pedido {number}: Es PREPAGO pero el courier reportó cobrar {reported:,.2f}. "
                f"Se registrará como 0."
            )
            logger.warning(msg)
            warnings.append(msg)

    reason = None
    if status != "delivered":
        reason = map_failure_reason(row.get("failure_reason"))

    return {
        "order": order,
        "number": number,
        "status": status,
        "amount": round(amount, 2),
        "discrepancy": discrepancy,
        "failure_reason": reason,
        "notes": row.get("notes"),
    }


def import_dispatch_results(
    session_id: str,
    store_id: str,
    rows: List[Dict[str, Any]],
    policy: DiscrepancyPolicy = DiscrepancyPolicy.WARN_ONLY,
    confirm_discrepancies: bool = False,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Aplica los resultados reportados por el courier a una sesión.

    Con WARN_ONLY las diferencias de cobro sólo generan avisos; con
    REQUIRE_CONFIRMATION el lote entero se rechaza si hay diferencias y
    no se confirmaron.

    Returns:
        {"processed": n, "errors": [...], "warnings": [...]}
    """
    policy = DiscrepancyPolicy(policy)
    errors: List[str] = []
    warnings: List[str] = []

    with transaction() as con:
        session = load_session(con, session_id, store_id)
        if session["status"] == "settled":
            raise ConflictError("La sesión ya fue liquidada")
        if session["status"] == "cancelled":
            raise ConflictError("La sesión fue cancelada")

        by_number = {str(o["order_number"]).strip(): o for o in load_session_orders(con, session_id)}

        plans = []
        seen = set()
        for row in rows or []:
            plan = _plan_row(row, by_number, errors, warnings)
            if plan is None:
                continue
            if plan["order"]["id"] in seen:
                errors.append(f"Pedido {plan['number']} repetido en el archivo")
                continue
            seen.add(plan["order"]["id"])
            plans.append(plan)

        flagged = [p for p in plans if p["discrepancy"]]
        if flagged and policy == DiscrepancyPolicy.REQUIRE_CONFIRMATION and not confirm_discrepancies:
            raise DiscrepancyError(
                f"{len(flagged)} pedido(s) con discrepancia de monto sin confirmar: "
                + ", ".join(p["number"] for p in flagged),
                discrepancy=round(sum(p["amount"] - float(p["order"]["total_price"] or 0) for p in flagged), 2),
            )

        ts = now_str()
        for p in plans:
            order = p["order"]
            con.execute(
                """
                UPDATE dispatch_session_orders
                   SET delivery_status = ?, amount_collected = ?, failure_reason = ?,
                       courier_notes = ?, delivered_at = ?, processed_at = ?
                 WHERE id = ?
                """,
                (p["status"], p["amount"], p["failure_reason"], p["notes"],
                 ts if p["status"] == "delivered" else None, ts, order["id"]),
            )
            con.execute(
                """
                UPDATE orders
                   SET amount_collected = ?, has_amount_discrepancy = ?,
                       failure_reason = COALESCE(?, failure_reason),
                       delivery_notes = COALESCE(?, delivery_notes)
                 WHERE id = ? AND store_id = ?
                """,
                (p["amount"], int(p["discrepancy"]), p["failure_reason"], p["notes"],
                 order["order_id"], store_id),
            )
            record_outcome_movements(
                con, store_id, session["carrier_id"], order["order_id"], order["order_number"],
                p["status"], order["is_cod"], p["amount"], order["carrier_fee"],
                dispatch_session_id=session_id, created_by=user_id,
            )

        if plans:
            con.execute(
                """
                UPDATE dispatch_sessions SET status = 'processing', imported_at = ?
                 WHERE id = ? AND status IN ('dispatched', 'processing')
                """,
                (ts, session_id),
            )

    logger.info(
        f"Importación {session['session_code']}: {len(plans)} procesados, "
        f"{len(errors)} errores, {len(warnings)} avisos"
    )
    return {"processed": len(plans), "errors": errors, "warnings": warnings}
