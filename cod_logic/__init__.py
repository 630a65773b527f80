"""
cod_logic/ - Liquidación de couriers contra entrega
────────────────────────────────────
Funciones Python puras, sin dependencias del framework web.
Todo el cálculo y las reglas de negocio viven en este paquete.

Estructura:
- db.py: conexión, transacciones y esquema
- errors.py: errores de negocio
- policies.py: políticas con nombre (discrepancias, sobrepagos)
- payment.py: clasificación COD / prepago
- zones.py: tarifas por zona
- dispatch.py: sesiones de despacho
- outcomes.py: importación de resultados del courier
- reconciliation.py: conciliación manual y por fecha de entrega
- settlement.py: liquidaciones y pagos
- ledger.py: cuenta corriente de couriers
- export.py: planillas xlsx / csv
"""

# DB
from .db import (
    get_connection,
    transaction,
    ensure_tables,
    now_str,
    df_from_sql,
)

# Errores y políticas
from .errors import (
    SettlementError,
    NotFoundError,
    ConflictError,
    DiscrepancyError,
)
from .policies import (
    DiscrepancyPolicy,
    AllocationStrategy,
    OverpaymentPolicy,
    allocate_discrepancy,
)

# Clasificación de pago
from .payment import (
    is_cod,
    is_prepaid,
    is_order_cod,
    amount_to_collect,
    normalize_payment_method,
    payment_type_label,
    validate_amount_collected,
)

# Tarifas
from .zones import (
    ZoneRateTable,
    normalize_city,
    resolve_zone_rate,
    get_carrier_zones,
    upsert_carrier_zone,
    bulk_upsert_carrier_zones,
    delete_carrier_zone,
)

# Despachos
from .dispatch import (
    get_orders_to_dispatch,
    get_dispatch_sessions,
    get_dispatch_session,
    create_dispatch_session,
    cancel_dispatch_session,
)

# Resultados
from .outcomes import (
    map_delivery_status,
    map_failure_reason,
    parse_results_file,
    import_dispatch_results,
)
from .reconciliation import (
    get_shipped_orders_grouped,
    process_manual_reconciliation,
    get_pending_reconciliation,
    get_pending_reconciliation_orders,
    process_delivery_reconciliation,
)

# Liquidaciones
from .settlement import (
    compute_settlement_totals,
    process_settlement,
    mark_settlement_paid,
    dispute_settlement,
    cancel_settlement,
    get_daily_settlements,
    get_settlement,
    get_settlements_summary,
    get_pending_by_carrier,
)

# Cuenta corriente
from .ledger import (
    create_adjustment,
    register_carrier_payment,
    get_carrier_payments,
    get_carrier_balances,
    get_carrier_balance,
    get_carrier_balance_summary,
    get_unsettled_movements,
    get_carrier_movements,
    get_carrier_config,
    update_carrier_config,
    backfill_carrier_movements,
    get_carrier_account_summary,
)

# Planillas
from .export import (
    build_dispatch_workbook,
    build_dispatch_csv,
    export_dispatch_excel,
    export_dispatch_csv,
)

__all__ = [
    # db
    "get_connection",
    "transaction",
    "ensure_tables",
    "now_str",
    "df_from_sql",
    # errors / policies
    "SettlementError",
    "NotFoundError",
    "ConflictError",
    "DiscrepancyError",
    "DiscrepancyPolicy",
    "AllocationStrategy",
    "OverpaymentPolicy",
    "allocate_discrepancy",
    # payment
    "is_cod",
    "is_prepaid",
    "is_order_cod",
    "amount_to_collect",
    "normalize_payment_method",
    "payment_type_label",
    "validate_amount_collected",
    # zones
    "ZoneRateTable",
    "normalize_city",
    "resolve_zone_rate",
    "get_carrier_zones",
    "upsert_carrier_zone",
    "bulk_upsert_carrier_zones",
    "delete_carrier_zone",
    # dispatch
    "get_orders_to_dispatch",
    "get_dispatch_sessions",
    "get_dispatch_session",
    "create_dispatch_session",
    "cancel_dispatch_session",
    # outcomes
    "map_delivery_status",
    "map_failure_reason",
    "parse_results_file",
    "import_dispatch_results",
    "get_shipped_orders_grouped",
    "process_manual_reconciliation",
    "get_pending_reconciliation",
    "get_pending_reconciliation_orders",
    "process_delivery_reconciliation",
    # settlement
    "compute_settlement_totals",
    "process_settlement",
    "mark_settlement_paid",
    "dispute_settlement",
    "cancel_settlement",
    "get_daily_settlements",
    "get_settlement",
    "get_settlements_summary",
    "get_pending_by_carrier",
    # ledger
    "create_adjustment",
    "register_carrier_payment",
    "get_carrier_payments",
    "get_carrier_balances",
    "get_carrier_balance",
    "get_carrier_balance_summary",
    "get_unsettled_movements",
    "get_carrier_movements",
    "get_carrier_config",
    "update_carrier_config",
    "backfill_carrier_movements",
    "get_carrier_account_summary",
    # export
    "build_dispatch_workbook",
    "build_dispatch_csv",
    "export_dispatch_excel",
    "export_dispatch_csv",
]
