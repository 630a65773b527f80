# ─────────────────────────────────────
# cod_logic/payment.py
#   • Clasificación COD / PREPAGO del método de pago
#   • Monto que debe cobrar el courier
#   • Etiquetas para planillas
# ─────────────────────────────────────
from __future__ import annotations

from typing import Optional

# Sin método de pago informado ⇒ contra entrega.
# Cambiar esto cambia quién le debe a quién en pedidos ambiguos.
DEFAULT_TO_COD = True

COD_METHODS = frozenset({"efectivo", "cash", "contra entrega", "cod", ""})

PREPAID_METHODS = frozenset({
    "tarjeta", "card", "qr", "transferencia", "transfer",
    "online", "paypal", "stripe", "mercadopago",
})

COD_LABEL = "CONTRA ENTREGA"

_LABELS = {
    "tarjeta": "TARJETA",
    "card": "TARJETA",
    "qr": "QR",
    "transferencia": "TRANSFERENCIA",
    "transfer": "TRANSFERENCIA",
    "online": "ONLINE",
    "paypal": "PAYPAL",
    "stripe": "STRIPE",
    "mercadopago": "MERCADOPAGO",
}


def _clean(payment_method: Optional[str]) -> str:
    return (payment_method or "").strip().lower()


def is_cod(payment_method: Optional[str]) -> bool:
    """True si el courier tiene que cobrar en efectivo."""
    if not payment_method:
        return DEFAULT_TO_COD
    return _clean(payment_method) in COD_METHODS


def is_prepaid(payment_method: Optional[str]) -> bool:
    return not is_cod(payment_method)


def is_order_cod(payment_method: Optional[str], prepaid_method: Optional[str] = None) -> bool:
    """
    COD real del pedido.

    Un pedido marcado como prepago antes de la entrega (prepaid_method)
    nunca es COD, aunque su método original fuera efectivo.
    """
    if prepaid_method:
        return False
    return is_cod(payment_method)


def amount_to_collect(payment_method: Optional[str], total_price: float,
                      prepaid_method: Optional[str] = None) -> float:
    return float(total_price or 0) if is_order_cod(payment_method, prepaid_method) else 0.0


def normalize_payment_method(payment_method: Optional[str]) -> str:
    """Etiqueta legible en español."""
    if is_cod(payment_method):
        return COD_LABEL
    key = _clean(payment_method)
    return _LABELS.get(key, (payment_method or "").strip().upper())


def payment_type_label(payment_method: Optional[str]) -> str:
    return "COD" if is_cod(payment_method) else "PREPAGO"


def validate_amount_collected(payment_method: Optional[str],
                              amount_collected: Optional[float]) -> Optional[str]:
    """Devuelve un aviso si un pedido prepago reporta cobro; None si es coherente."""
    if not is_cod(payment_method) and amount_collected and amount_collected > 0:
        return (
            f"Pedido prepago debería tener monto cobrado 0, "
            f"pero se reportó {amount_collected:,.2f}"
        )
    return None
