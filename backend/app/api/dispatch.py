"""
backend/app/api/dispatch.py - Despachos API
───────────────────────────────────────────────
Sesiones de despacho: creación, planilla, resultados y liquidación.
"""
import io
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse

from backend.app.api.errors import http_error
from backend.app.api.logs import add_log
from backend.app.config import settings
from backend.app.models import (
    CancelRequest,
    DispatchSessionCreate,
    ImportResultsRequest,
    ImportResultsResponse,
    ListResponse,
    ProcessSettlementRequest,
)
from cod_logic import (
    cancel_dispatch_session,
    create_dispatch_session,
    export_dispatch_csv,
    export_dispatch_excel,
    get_dispatch_session,
    get_dispatch_sessions,
    get_orders_to_dispatch,
    import_dispatch_results,
    parse_results_file,
    process_settlement,
)

router = APIRouter(prefix="/dispatch", tags=["Dispatch"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get("/orders")
async def list_orders_to_dispatch(store_id: str, carrier_id: Optional[str] = None):
    """Pedidos listos para despachar (fuera de sesiones activas)."""
    try:
        orders = get_orders_to_dispatch(store_id, carrier_id)
        return {"success": True, "data": orders, "count": len(orders)}
    except Exception as e:
        raise http_error(e)


@router.get("/sessions", response_model=ListResponse)
async def list_sessions(
    store_id: str,
    status: Optional[str] = None,
    carrier_id: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    try:
        rows, total = get_dispatch_sessions(
            store_id, status=status, carrier_id=carrier_id,
            start_date=start_date, end_date=end_date, limit=limit, offset=offset,
        )
        return ListResponse(data=rows, count=total)
    except Exception as e:
        raise http_error(e)


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, store_id: str):
    try:
        return get_dispatch_session(session_id, store_id)
    except Exception as e:
        raise http_error(e)


@router.post("/sessions", status_code=201)
async def create_session(request: DispatchSessionCreate):
    """
    Crea una sesión de despacho.

    Returns:
        la sesión con sus pedidos y los avisos no bloqueantes
    """
    try:
        session = create_dispatch_session(
            request.store_id,
            request.carrier_id,
            request.order_ids,
            user_id=request.user_id,
            dispatch_date=str(request.dispatch_date) if request.dispatch_date else None,
            notes=request.notes,
            default_rate=settings.DEFAULT_ZONE_RATE,
        )
        add_log(
            "dispatch_created", "dispatch_session", session["id"], session["session_code"],
            request.user_id, f"{session['total_orders']} pedidos",
        )
        return session
    except Exception as e:
        raise http_error(e)


@router.post("/sessions/{session_id}/cancel")
async def cancel_session(session_id: str, request: CancelRequest):
    try:
        session = cancel_dispatch_session(session_id, request.store_id, request.reason)
        add_log(
            "dispatch_cancelled", "dispatch_session", session_id, session["session_code"],
            request.user_id, request.reason,
        )
        return session
    except Exception as e:
        raise http_error(e)


@router.get("/sessions/{session_id}/export")
async def export_session(session_id: str, store_id: str, format: str = "xlsx"):
    """Planilla para el courier (xlsx protegida o csv)."""
    if format not in ("xlsx", "csv"):
        raise HTTPException(status_code=400, detail="format debe ser xlsx o csv")
    try:
        if format == "csv":
            filename, content = export_dispatch_csv(session_id, store_id)
            media_type = "text/csv; charset=utf-8"
        else:
            filename, content = export_dispatch_excel(
                session_id, store_id, passphrase=settings.EXPORT_SHEET_PASSPHRASE
            )
            media_type = XLSX_MEDIA_TYPE
    except Exception as e:
        raise http_error(e)

    return StreamingResponse(
        io.BytesIO(content),
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.post("/sessions/{session_id}/import", response_model=ImportResultsResponse)
async def import_results(session_id: str, request: ImportResultsRequest):
    try:
        rows = [r.model_dump() for r in request.results]
        result = import_dispatch_results(
            session_id, request.store_id, rows,
            policy=request.policy,
            confirm_discrepancies=request.confirm_discrepancies,
            user_id=request.user_id,
        )
        add_log(
            "dispatch_results_imported", "dispatch_session", session_id, None,
            request.user_id, f"{result['processed']} procesados, {len(result['errors'])} errores",
        )
        return ImportResultsResponse(**result)
    except Exception as e:
        raise http_error(e)


@router.post("/sessions/{session_id}/import-file", response_model=ImportResultsResponse)
async def import_results_file(
    session_id: str,
    file: UploadFile = File(..., description="Planilla devuelta por el courier (xlsx/csv)"),
    store_id: str = Form(..., description="Tienda"),
    user_id: Optional[str] = Form(None, description="Usuario"),
    policy: str = Form("warn_only", description="warn_only | require_confirmation"),
    confirm_discrepancies: bool = Form(False, description="Confirma diferencias de cobro"),
):
    contents = await file.read()
    if len(contents) > settings.MAX_UPLOAD_SIZE:
        raise HTTPException(status_code=413, detail="El archivo supera el tamaño máximo permitido")
    try:
        rows = parse_results_file(contents, file.filename or "")
        result = import_dispatch_results(
            session_id, store_id, rows,
            policy=policy, confirm_discrepancies=confirm_discrepancies, user_id=user_id,
        )
        add_log(
            "dispatch_results_imported", "dispatch_session", session_id, file.filename,
            user_id, f"{result['processed']} procesados, {len(result['errors'])} errores",
        )
        return ImportResultsResponse(**result)
    except Exception as e:
        raise http_error(e)


@router.post("/sessions/{session_id}/process")
async def process_session(session_id: str, request: ProcessSettlementRequest):
    """Liquida la sesión y crea la liquidación diaria."""
    try:
        settlement = process_settlement(
            session_id, request.store_id, user_id=request.user_id,
            settlement_date=str(request.settlement_date) if request.settlement_date else None,
        )
        add_log(
            "settlement_created", "daily_settlement", settlement["id"], settlement["settlement_code"],
            request.user_id, f"neto {settlement['net_receivable']:,.2f}",
        )
        return settlement
    except Exception as e:
        raise http_error(e)
