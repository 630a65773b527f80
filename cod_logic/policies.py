"""
cod_logic/policies.py - Políticas de negocio con nombre
────────────────────────────────────────────────────────
Cada decisión que cambia quién debe dinero a quién vive aquí, no como
un valor mágico dentro de la lógica.
"""
from __future__ import annotations

import os
from enum import Enum
from typing import List

from .errors import SettlementError

# tolerancia de punto flotante para diferencias de cobro
DISCREPANCY_TOLERANCE = 0.01

# penalidad fija por intento fallido (50% de la tarifa)
FAILED_ATTEMPT_FEE_RATE = 0.5


class DiscrepancyPolicy(str, Enum):
    """Qué hacer cuando lo cobrado no coincide con lo esperado."""
    WARN_ONLY = "warn_only"                        # importación por planilla
    REQUIRE_CONFIRMATION = "require_confirmation"  # conciliación manual


class AllocationStrategy(str, Enum):
    """Cómo repartir una diferencia confirmada entre los pedidos COD."""
    EQUAL_SPLIT = "equal_split"
    PROPORTIONAL_SPLIT = "proportional_split"


class OverpaymentPolicy(str, Enum):
    """Pagos que superan el saldo pendiente de una liquidación."""
    ALLOW = "allow"    # balance_due negativo = crédito a favor
    CLAMP = "clamp"    # se registra sólo el saldo pendiente
    REJECT = "reject"


DEFAULT_OVERPAYMENT_POLICY = OverpaymentPolicy(
    os.getenv("OVERPAYMENT_POLICY", OverpaymentPolicy.ALLOW.value)
)


def allocate_discrepancy(
    expected: List[float],
    discrepancy: float,
    strategy: AllocationStrategy = AllocationStrategy.EQUAL_SPLIT,
) -> List[float]:
    """
    Reparte `discrepancy` sobre los montos esperados.

    EQUAL_SPLIT: cada pedido absorbe la misma porción absoluta, sin importar
    su valor. Los montos se redondean a 2 decimales y el resto del redondeo
    va al último pedido, así la suma es exactamente sum(expected) + discrepancy.

    Returns:
        montos cobrados por pedido, en el mismo orden
    """
    if not expected:
        raise SettlementError(
            "No hay pedidos COD entregados para distribuir la discrepancia"
        )
    if strategy != AllocationStrategy.EQUAL_SPLIT:
        raise SettlementError(f"Estrategia de distribución no soportada: {strategy.value}")

    target = round(sum(expected) + discrepancy, 2)
    share = round(discrepancy / len(expected), 2)
    amounts = [round(e + share, 2) for e in expected]
    amounts[-1] = round(amounts[-1] + (target - sum(amounts)), 2)
    return amounts
