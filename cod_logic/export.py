"""
cod_logic/export.py - Planilla de despacho para el courier
────────────────────────────────────────────────────────────
Hoja "Despacho":
  fila 1   título
  fila 2   datos de la sesión / instrucción
  fila 4   encabezados (PEDIDO … OBSERVACIONES)
  fila 5+  un pedido por fila
  fin+2    resumen (la fila en blanco corta la lectura al importar)

Sólo las columnas amarillas (I-L) quedan editables. La protección de la
hoja evita ediciones accidentales; no es un control de seguridad.
"""

from __future__ import annotations

import io
import logging
import os
from typing import Any, Dict, List, Tuple

import pandas as pd
from openpyxl.styles import Alignment, Border, Font, PatternFill, Protection, Side
from openpyxl.worksheet.datavalidation import DataValidation

from .dispatch import get_dispatch_session, mark_session_exported
from .errors import ConflictError

logger = logging.getLogger(__name__)

SHEET_NAME = "Despacho"
SHEET_PASSPHRASE = os.getenv("EXPORT_SHEET_PASSPHRASE", "codsettle")

HEADER_ROW = 4
FIRST_DATA_ROW = HEADER_ROW + 1

COLUMNS = [
    "PEDIDO", "CLIENTE", "TELÉFONO", "DIRECCIÓN", "CIUDAD", "TIPO_PAGO",
    "A_COBRAR", "TARIFA", "ESTADO_ENTREGA", "MONTO_COBRADO", "MOTIVO", "OBSERVACIONES",
]
EDITABLE_COLUMNS = ("I", "J", "K", "L")
COLUMN_WIDTHS = {
    "A": 12, "B": 24, "C": 14, "D": 34, "E": 16, "F": 11,
    "G": 12, "H": 10, "I": 18, "J": 15, "K": 22, "L": 30,
}

DELIVERY_STATUS_OPTIONS = "ENTREGADO,NO ENTREGADO,RECHAZADO,REPROGRAMADO"
FAILURE_REASON_OPTIONS = (
    "NO CONTESTA,DIRECCION INCORRECTA,CLIENTE AUSENTE,RECHAZADO,SIN DINERO,REPROGRAMADO,OTRO"
)

HEADER_FILL = PatternFill("solid", fgColor="1F2937")
EDITABLE_HEADER_FILL = PatternFill("solid", fgColor="D97706")
EDITABLE_FILL = PatternFill("solid", fgColor="FEF3C7")
THIN = Side(style="thin", color="D1D5DB")
BORDER = Border(left=THIN, right=THIN, top=THIN, bottom=THIN)


def dispatch_frame(orders: List[Dict[str, Any]]) -> pd.DataFrame:
    """Pedidos de la sesión → tabla con las columnas de la planilla."""
    rows = []
    for o in orders:
        cod = bool(o.get("is_cod"))
        price = float(o.get("total_price") or 0)
        rows.append({
            "PEDIDO": str(o.get("order_number") or ""),
            "CLIENTE": o.get("customer_name") or "",
            "TELÉFONO": o.get("customer_phone") or "",
            "DIRECCIÓN": o.get("delivery_address") or "",
            "CIUDAD": o.get("delivery_city") or "",
            "TIPO_PAGO": "COD" if cod else "PREPAGO",
            "A_COBRAR": price if cod else 0.0,
            "TARIFA": float(o.get("carrier_fee") or 0),
            "ESTADO_ENTREGA": "",
            "MONTO_COBRADO": "",
            "MOTIVO": "",
            "OBSERVACIONES": "",
        })
    return pd.DataFrame(rows, columns=COLUMNS)


# ───────────── Excel ────────────────────────────────────
def build_dispatch_workbook(session: Dict[str, Any], orders: List[Dict[str, Any]],
                            passphrase: str = SHEET_PASSPHRASE) -> bytes:
    df = dispatch_frame(orders)
    data_end = HEADER_ROW + len(df)
    last_col = "L"

    output = io.BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=SHEET_NAME, index=False, startrow=HEADER_ROW - 1)
        ws = writer.sheets[SHEET_NAME]

        # título e información
        ws.merge_cells(f"A1:{last_col}1")
        ws["A1"] = "Planilla de Despacho"
        ws["A1"].font = Font(bold=True, size=14)
        ws["A1"].alignment = Alignment(horizontal="center")

        ws.merge_cells("A2:F2")
        ws["A2"] = (
            f"Sesión: {session['session_code']} | Courier: {session.get('carrier_name') or ''} | "
            f"Fecha: {session['dispatch_date']}"
        )
        ws.merge_cells(f"G2:{last_col}2")
        ws["G2"] = "Complete las columnas AMARILLAS y devuelva este archivo"
        ws["G2"].font = Font(bold=True, color="B45309")

        # encabezados
        for idx in range(1, len(COLUMNS) + 1):
            cell = ws.cell(row=HEADER_ROW, column=idx)
            editable = cell.column_letter in EDITABLE_COLUMNS
            cell.fill = EDITABLE_HEADER_FILL if editable else HEADER_FILL
            cell.font = Font(bold=True, color="FFFFFF")
            cell.alignment = Alignment(horizontal="center", vertical="center")
            cell.border = BORDER

        for letter, width in COLUMN_WIDTHS.items():
            ws.column_dimensions[letter].width = width

        # datos
        for row in ws.iter_rows(min_row=FIRST_DATA_ROW, max_row=data_end, max_col=len(COLUMNS)):
            for cell in row:
                cell.border = BORDER
                if cell.column_letter in ("G", "H"):
                    cell.number_format = "#,##0"
                if cell.column_letter in EDITABLE_COLUMNS:
                    cell.fill = EDITABLE_FILL
                    cell.protection = Protection(locked=False)

        if len(df):
            status_dv = DataValidation(type="list", formula1=f'"{DELIVERY_STATUS_OPTIONS}"', allow_blank=True)
            reason_dv = DataValidation(type="list", formula1=f'"{FAILURE_REASON_OPTIONS}"', allow_blank=True)
            ws.add_data_validation(status_dv)
            ws.add_data_validation(reason_dv)
            status_dv.add(f"I{FIRST_DATA_ROW}:I{data_end}")
            reason_dv.add(f"K{FIRST_DATA_ROW}:K{data_end}")

        # resumen (deja una fila en blanco después de los datos)
        summary_row = data_end + 2
        cod_count = int((df["TIPO_PAGO"] == "COD").sum())
        ws.cell(row=summary_row, column=1, value=f"Total pedidos: {len(df)}").font = Font(bold=True)
        ws.cell(row=summary_row, column=6, value="Total a cobrar").font = Font(bold=True)
        total_cell = ws.cell(row=summary_row, column=7, value=float(df["A_COBRAR"].sum()))
        total_cell.font = Font(bold=True)
        total_cell.number_format = "#,##0"
        ws.cell(row=summary_row, column=9,
                value=f"{len(df) - cod_count} ya pagado(s) | {cod_count} COD")
        ws.cell(
            row=summary_row + 1, column=1,
            value="ESTADO_ENTREGA: ENTREGADO / NO ENTREGADO / RECHAZADO / REPROGRAMADO. "
                  "Si no se entregó, indique el MOTIVO. MONTO_COBRADO sólo para pedidos COD.",
        ).font = Font(italic=True, color="6B7280")

        ws.freeze_panes = f"A{FIRST_DATA_ROW}"
        ws.protection.sheet = True
        ws.protection.password = passphrase

    return output.getvalue()


# ───────────── CSV ──────────────────────────────────────
def build_dispatch_csv(orders: List[Dict[str, Any]]) -> str:
    return dispatch_frame(orders).to_csv(index=False)


# ───────────── sesión → archivo ─────────────────────────
def _exportable_session(session_id: str, store_id: str) -> Dict[str, Any]:
    session = get_dispatch_session(session_id, store_id)
    if session["status"] == "cancelled":
        raise ConflictError("No se puede exportar una sesión cancelada")
    return session


def export_dispatch_excel(session_id: str, store_id: str,
                          passphrase: str = SHEET_PASSPHRASE) -> Tuple[str, bytes]:
    """Returns: (nombre de archivo, contenido xlsx)"""
    session = _exportable_session(session_id, store_id)
    content = build_dispatch_workbook(session, session["orders"], passphrase=passphrase)
    mark_session_exported(session_id, store_id)
    logger.info(f"Planilla {session['session_code']} exportada (xlsx, {len(session['orders'])} pedidos)")
    return f"{session['session_code']}.xlsx", content


def export_dispatch_csv(session_id: str, store_id: str) -> Tuple[str, bytes]:
    """Returns: (nombre de archivo, contenido csv UTF-8 con BOM)"""
    session = _exportable_session(session_id, store_id)
    content = build_dispatch_csv(session["orders"]).encode("utf-8-sig")
    mark_session_exported(session_id, store_id)
    logger.info(f"Planilla {session['session_code']} exportada (csv, {len(session['orders'])} pedidos)")
    return f"{session['session_code']}.csv", content
