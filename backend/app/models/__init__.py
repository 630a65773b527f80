"""
backend/app/models - Modelos Pydantic
───────────────────────────────────────────
Modelos de validación de entrada.
"""

from .schemas import (
    # comunes
    HealthResponse,
    StoreRequest,
    ListResponse,
    # despachos
    DispatchSessionCreate,
    CancelRequest,
    DeliveryResultRow,
    ImportResultsRequest,
    ImportResultsResponse,
    ProcessSettlementRequest,
    # liquidaciones
    SettlementPaymentRequest,
    DisputeRequest,
    ManualReconciliationOrder,
    ManualReconciliationRequest,
    DeliveryReconciliationOrder,
    DeliveryReconciliationRequest,
    # zonas
    CarrierZoneIn,
    CarrierZoneUpsert,
    CarrierZoneBulk,
    # cuenta corriente
    AdjustmentRequest,
    CarrierPaymentRequest,
    CarrierConfigUpdate,
    BackfillRequest,
)

__all__ = [
    "HealthResponse",
    "StoreRequest",
    "ListResponse",
    "DispatchSessionCreate",
    "CancelRequest",
    "DeliveryResultRow",
    "ImportResultsRequest",
    "ImportResultsResponse",
    "ProcessSettlementRequest",
    "SettlementPaymentRequest",
    "DisputeRequest",
    "ManualReconciliationOrder",
    "ManualReconciliationRequest",
    "DeliveryReconciliationOrder",
    "DeliveryReconciliationRequest",
    "CarrierZoneIn",
    "CarrierZoneUpsert",
    "CarrierZoneBulk",
    "AdjustmentRequest",
    "CarrierPaymentRequest",
    "CarrierConfigUpdate",
    "BackfillRequest",
]
