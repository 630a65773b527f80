"""
backend/app/models/schemas.py - Esquemas Pydantic
───────────────────────────────────────────────────────
Validación de entrada y serialización de respuestas.
La lógica vive en cod_logic/.
"""

from datetime import date
from typing import List, Dict, Optional, Any
from pydantic import BaseModel, Field


# ─────────────────────────────────────
# Comunes
# ─────────────────────────────────────
class HealthResponse(BaseModel):
    """Respuesta de salud."""
    status: str = "ok"
    version: str = "1.0.0"


class StoreRequest(BaseModel):
    """Base de toda petición: la tienda y quién opera."""
    store_id: str = Field(..., description="Tienda")
    user_id: Optional[str] = Field(default=None, description="Usuario que opera")


# ─────────────────────────────────────
# Despachos
# ─────────────────────────────────────
class DispatchSessionCreate(StoreRequest):
    """Crear sesión de despacho."""
    carrier_id: str = Field(..., description="Courier")
    order_ids: List[str] = Field(..., min_length=1, description="Pedidos a despachar")
    dispatch_date: Optional[date] = Field(default=None, description="Fecha (hoy si se omite)")
    notes: Optional[str] = Field(default=None, description="Notas")


class CancelRequest(StoreRequest):
    """Cancelar / anular con motivo."""
    reason: Optional[str] = Field(default=None, description="Motivo")


class DeliveryResultRow(BaseModel):
    """Una fila de resultados reportada por el courier."""
    order_number: str = Field(..., description="Número de pedido")
    delivery_status: str = Field(..., description="ENTREGADO / NO ENTREGADO / RECHAZADO / ...")
    amount_collected: Optional[float] = Field(default=None, description="Monto cobrado")
    failure_reason: Optional[str] = Field(default=None, description="Motivo de falla")
    notes: Optional[str] = Field(default=None, description="Observaciones")


class ImportResultsRequest(StoreRequest):
    """Importar resultados como JSON."""
    results: List[DeliveryResultRow] = Field(..., description="Filas de resultados")
    policy: str = Field(default="warn_only", description="warn_only | require_confirmation")
    confirm_discrepancies: bool = Field(default=False, description="Confirma diferencias de cobro")


class ImportResultsResponse(BaseModel):
    """Resultado de la importación."""
    success: bool = True
    processed: int = Field(..., description="Filas aplicadas")
    errors: List[str] = Field(default_factory=list, description="Errores por fila")
    warnings: List[str] = Field(default_factory=list, description="Avisos")


class ProcessSettlementRequest(StoreRequest):
    """Liquidar una sesión."""
    settlement_date: Optional[date] = Field(default=None, description="Fecha de la liquidación")


# ─────────────────────────────────────
# Liquidaciones
# ─────────────────────────────────────
class SettlementPaymentRequest(StoreRequest):
    """Pago de una liquidación."""
    amount: float = Field(..., gt=0, description="Monto pagado")
    method: str = Field(default="cash", description="cash | bank_transfer | mobile_payment | check | deduction | other")
    reference: Optional[str] = Field(default=None, description="Referencia")
    notes: Optional[str] = Field(default=None, description="Notas")


class DisputeRequest(StoreRequest):
    """Disputar una liquidación."""
    reason: str = Field(..., min_length=1, description="Motivo de la disputa")


class ManualReconciliationOrder(BaseModel):
    """Resultado de un pedido en la conciliación manual."""
    order_id: str = Field(..., description="Pedido")
    delivered: bool = Field(..., description="¿Entregado?")
    failure_reason: Optional[str] = Field(default=None, description="Motivo (obligatorio si no se entregó)")
    notes: Optional[str] = Field(default=None, description="Notas")


class ManualReconciliationRequest(StoreRequest):
    """Conciliación manual sin planilla."""
    carrier_id: str = Field(..., description="Courier")
    dispatch_date: date = Field(..., description="Fecha de despacho")
    orders: List[ManualReconciliationOrder] = Field(..., min_length=1, description="Pedidos")
    total_amount_collected: float = Field(..., ge=0, description="Total cobrado informado")
    discrepancy_notes: Optional[str] = Field(default=None, description="Explicación de la diferencia")
    confirm_discrepancy: bool = Field(default=False, description="Confirma la diferencia")


class DeliveryReconciliationOrder(BaseModel):
    """Resultado de un pedido en la conciliación por fecha de entrega."""
    order_id: str = Field(..., description="Pedido")
    delivered: bool = Field(default=True, description="¿Entregado según el courier?")
    failure_reason: Optional[str] = Field(default=None, description="Motivo si no se entregó")
    override_prepaid: bool = Field(default=False, description="El cliente pagó por otro medio")


class DeliveryReconciliationRequest(StoreRequest):
    """Conciliación de las entregas de un courier en un día."""
    carrier_id: str = Field(..., description="Courier")
    delivery_date: date = Field(..., description="Fecha de entrega")
    orders: List[DeliveryReconciliationOrder] = Field(..., min_length=1, description="Pedidos")
    total_amount_collected: float = Field(..., ge=0, description="Total cobrado informado")
    discrepancy_notes: Optional[str] = Field(default=None, description="Explicación de la diferencia")



# ─────────────────────────────────────
# Zonas
# ─────────────────────────────────────
class CarrierZoneIn(BaseModel):
    """Zona / tarifa de un courier."""
    zone_name: str = Field(..., min_length=1, description="Nombre de zona o ciudad")
    rate: float = Field(..., ge=0, description="Tarifa")
    zone_code: Optional[str] = Field(default=None, description="Código")
    is_active: bool = Field(default=True, description="Activa")


class CarrierZoneUpsert(StoreRequest, CarrierZoneIn):
    """Alta / modificación de una zona."""
    carrier_id: str = Field(..., description="Courier")


class CarrierZoneBulk(StoreRequest):
    """Carga masiva de zonas."""
    carrier_id: str = Field(..., description="Courier")
    zones: List[CarrierZoneIn] = Field(..., min_length=1, description="Zonas")


# ─────────────────────────────────────
# Cuenta corriente
# ─────────────────────────────────────
class AdjustmentRequest(StoreRequest):
    """Ajuste manual."""
    carrier_id: str = Field(..., description="Courier")
    amount: float = Field(..., gt=0, description="Monto")
    direction: str = Field(..., description="credit | debit")
    description: str = Field(..., min_length=1, description="Descripción")
    order_id: Optional[str] = Field(default=None, description="Pedido relacionado")


class CarrierPaymentRequest(StoreRequest):
    """Pago registrado en la cuenta corriente."""
    carrier_id: str = Field(..., description="Courier")
    amount: float = Field(..., gt=0, description="Monto")
    direction: str = Field(..., description="from_carrier | to_carrier")
    payment_method: str = Field(..., description="Método de pago")
    payment_reference: Optional[str] = Field(default=None, description="Referencia")
    notes: Optional[str] = Field(default=None, description="Notas")
    settlement_ids: Optional[List[str]] = Field(default=None, description="Liquidaciones a las que se aplica")
    movement_ids: Optional[List[str]] = Field(default=None, description="Movimientos cubiertos")


class CarrierConfigUpdate(StoreRequest):
    """Configuración de liquidación del courier."""
    settlement_type: Optional[str] = Field(default=None, description="net | gross | salary")
    payment_schedule: Optional[str] = Field(default=None, description="daily | weekly | biweekly | monthly")


class BackfillRequest(BaseModel):
    """Backfill de movimientos."""
    store_id: Optional[str] = Field(default=None, description="Tienda (todas si se omite)")


class ListResponse(BaseModel):
    """Lista paginada."""
    success: bool = True
    data: List[Dict[str, Any]]
    count: int
