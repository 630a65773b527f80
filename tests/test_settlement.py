import datetime as dt

import pytest

from cod_logic.db import get_connection
from cod_logic.dispatch import create_dispatch_session, get_dispatch_session
from cod_logic.errors import ConflictError, NotFoundError, SettlementError
from cod_logic.ledger import get_carrier_balance, get_carrier_payments
from cod_logic.outcomes import import_dispatch_results
from cod_logic.policies import OverpaymentPolicy
from cod_logic.settlement import (
    cancel_settlement,
    compute_settlement_totals,
    dispute_settlement,
    get_daily_settlements,
    get_pending_by_carrier,
    get_settlement,
    get_settlements_summary,
    mark_settlement_paid,
    process_settlement,
)

from conftest import STORE, order_row

ALL_DELIVERED = [
    {"order_number": "1001", "delivery_status": "ENTREGADO", "amount_collected": 100000},
    {"order_number": "1002", "delivery_status": "ENTREGADO", "amount_collected": 80000},
    {"order_number": "1003", "delivery_status": "ENTREGADO", "amount_collected": 0},
]


def _settle(scenario, rows=ALL_DELIVERED):
    ids = list(scenario["orders"].values())
    session = create_dispatch_session(STORE, scenario["carrier_id"], ids)
    import_dispatch_results(session["id"], STORE, rows)
    return session, process_settlement(session["id"], STORE, user_id="ana")


# ─────────────────────────────────────
# Fórmula
# ─────────────────────────────────────
def _outcome(status, is_cod, price, collected, fee=20000):
    return {"delivery_status": status, "is_cod": is_cod, "total_price": price,
            "amount_collected": collected, "carrier_fee": fee}


def test_cod_fee_is_deducted_from_cash():
    t = compute_settlement_totals([_outcome("delivered", True, 100000, 100000)])
    assert t["total_cod_collected"] == 100000
    assert t["total_carrier_fees"] == 20000
    assert t["net_receivable"] == 80000


def test_prepaid_fee_is_pure_cost():
    t = compute_settlement_totals([_outcome("delivered", False, 100000, 0)])
    assert t["total_cod_collected"] == 0
    assert t["total_prepaid_delivered"] == 1
    assert t["net_receivable"] == -20000


def test_failed_attempt_charges_half_fee():
    t = compute_settlement_totals([_outcome("not_delivered", True, 100000, 0)])
    assert t["failed_attempt_fee"] == 10000
    assert t["total_cod_collected"] == 0
    assert t["total_not_delivered"] == 1
    assert t["net_receivable"] == -10000


def test_pending_outcomes_cost_nothing():
    t = compute_settlement_totals([
        _outcome("pending", True, 100000, 0),
        _outcome("rescheduled", True, 50000, 0),
    ])
    assert t["total_dispatched"] == 2
    assert t["total_cod_expected"] == 150000
    assert t["net_receivable"] == 0


# ─────────────────────────────────────
# Despacho → importación → liquidación → pagos
# ─────────────────────────────────────
def test_end_to_end_partial_then_full_payment(scenario):
    session, settlement = _settle(scenario)

    assert settlement["settlement_code"] == f"LIQ-{dt.date.today():%d%m%Y}-001"
    assert settlement["total_cod_expected"] == 180000
    assert settlement["total_cod_collected"] == 180000
    assert settlement["total_carrier_fees"] == 60000
    assert settlement["net_receivable"] == 120000
    assert settlement["balance_due"] == 120000
    assert settlement["status"] == "pending"
    assert settlement["warnings"] == []

    detail = get_dispatch_session(session["id"], STORE)
    assert detail["status"] == "settled"
    assert detail["daily_settlement_id"] == settlement["id"]
    for oid in scenario["orders"].values():
        assert order_row(oid)["status"] == "delivered"

    first = mark_settlement_paid(settlement["id"], STORE, 50000)
    assert first["status"] == "partial"
    assert first["amount_paid"] == 50000
    assert first["balance_due"] == 70000

    second = mark_settlement_paid(settlement["id"], STORE, 70000, method="bank_transfer", reference="TRX-1")
    assert second["status"] == "paid"
    assert second["amount_paid"] == 120000
    assert second["balance_due"] == 0
    assert second["payment_method"] == "bank_transfer"
    assert second["payment_reference"] == "TRX-1"

    # la cuenta corriente queda saldada
    assert get_carrier_balance(STORE, scenario["carrier_id"])["net_balance"] == 0
    payments = get_carrier_payments(STORE, scenario["carrier_id"])
    assert {p["direction"] for p in payments} == {"from_carrier"}
    assert sorted(p["amount"] for p in payments) == [50000, 70000]


def test_balance_invariant_over_partial_payments(scenario):
    _, settlement = _settle(scenario)
    for amount in (10000, 25000.5, 0.5, 30000, 54998):
        s = mark_settlement_paid(settlement["id"], STORE, amount)
        assert s["balance_due"] == pytest.approx(s["net_receivable"] - s["amount_paid"])
        assert s["status"] == "partial"
    s = mark_settlement_paid(settlement["id"], STORE, 1)
    assert s["balance_due"] == 0
    assert s["status"] == "paid"


def test_failed_attempt_in_settlement(scenario):
    rows = [
        {"order_number": "1001", "delivery_status": "ENTREGADO", "amount_collected": 100000},
        {"order_number": "1002", "delivery_status": "NO ENTREGADO", "failure_reason": "Cliente ausente"},
        {"order_number": "1003", "delivery_status": "ENTREGADO"},
    ]
    _, settlement = _settle(scenario, rows)
    assert settlement["failed_attempt_fee"] == 10000
    assert settlement["total_not_delivered"] == 1
    assert settlement["total_cod_collected"] == 100000
    assert settlement["net_receivable"] == 100000 - 40000 - 10000
    # el pedido fallido vuelve a la cola de despacho
    assert order_row(scenario["orders"]["cod_b"])["status"] == "ready_to_ship"
    assert order_row(scenario["orders"]["cod_b"])["failure_reason"] == "customer_absent"


def test_orders_without_outcome_are_left_out(scenario):
    _, settlement = _settle(scenario, ALL_DELIVERED[:1])
    assert settlement["net_receivable"] == 80000
    assert settlement["total_dispatched"] == 3
    assert len(settlement["warnings"]) == 1
    assert order_row(scenario["orders"]["cod_b"])["status"] == "ready_to_ship"
    assert order_row(scenario["orders"]["prepaid"])["status"] == "ready_to_ship"


def test_session_settles_once(scenario):
    session, _ = _settle(scenario)
    with pytest.raises(ConflictError):
        process_settlement(session["id"], STORE)
    with get_connection() as con:
        assert con.execute("SELECT COUNT(*) FROM daily_settlements").fetchone()[0] == 1


def test_movements_linked_to_settlement(scenario):
    _, settlement = _settle(scenario)
    detail = get_settlement(settlement["id"], STORE)
    assert len(detail["orders"]) == 3
    assert len(detail["movements"]) == 5
    assert sum(m["amount"] for m in detail["movements"]) == 120000


# ─────────────────────────────────────
# Sobrepagos y saldo negativo
# ─────────────────────────────────────
def test_overpayment_allowed_as_credit(scenario):
    _, settlement = _settle(scenario)
    s = mark_settlement_paid(settlement["id"], STORE, 150000, policy=OverpaymentPolicy.ALLOW)
    assert s["status"] == "paid"
    assert s["balance_due"] == -30000


def test_overpayment_clamped(scenario):
    _, settlement = _settle(scenario)
    s = mark_settlement_paid(settlement["id"], STORE, 150000, policy=OverpaymentPolicy.CLAMP)
    assert s["amount_paid"] == 120000
    assert s["balance_due"] == 0
    with pytest.raises(ConflictError):
        mark_settlement_paid(settlement["id"], STORE, 10, policy=OverpaymentPolicy.CLAMP)


def test_overpayment_rejected(scenario):
    _, settlement = _settle(scenario)
    with pytest.raises(SettlementError):
        mark_settlement_paid(settlement["id"], STORE, 150000, policy=OverpaymentPolicy.REJECT)
    assert get_settlement(settlement["id"], STORE)["amount_paid"] == 0
    assert get_carrier_payments(STORE) == []


def test_store_owes_carrier(scenario):
    rows = [{"order_number": "1003", "delivery_status": "ENTREGADO"}]
    _, settlement = _settle(scenario, rows)
    assert settlement["net_receivable"] == -20000

    s = mark_settlement_paid(settlement["id"], STORE, 20000)
    assert s["amount_paid"] == -20000
    assert s["balance_due"] == 0
    assert s["status"] == "paid"
    assert get_carrier_payments(STORE)[0]["direction"] == "to_carrier"
    assert get_carrier_balance(STORE, scenario["carrier_id"])["net_balance"] == 0


def test_payment_validation(scenario):
    _, settlement = _settle(scenario)
    with pytest.raises(SettlementError):
        mark_settlement_paid(settlement["id"], STORE, 0)
    with pytest.raises(SettlementError):
        mark_settlement_paid(settlement["id"], STORE, 100, method="trueque")
    with pytest.raises(NotFoundError):
        mark_settlement_paid("no-existe", STORE, 100)


# ─────────────────────────────────────
# Disputa / anulación
# ─────────────────────────────────────
def test_dispute_blocks_payments(scenario):
    _, settlement = _settle(scenario)
    with pytest.raises(SettlementError):
        dispute_settlement(settlement["id"], STORE, " ")
    s = dispute_settlement(settlement["id"], STORE, "faltan 10000")
    assert s["status"] == "disputed"
    assert "faltan 10000" in s["notes"]
    with pytest.raises(ConflictError):
        mark_settlement_paid(settlement["id"], STORE, 1000)


def test_paid_settlement_cannot_be_disputed_or_cancelled(scenario):
    _, settlement = _settle(scenario)
    mark_settlement_paid(settlement["id"], STORE, 120000)
    with pytest.raises(ConflictError):
        dispute_settlement(settlement["id"], STORE, "tarde")
    with pytest.raises(ConflictError):
        cancel_settlement(settlement["id"], STORE)


def test_cancel_unlinks_movements(scenario):
    _, settlement = _settle(scenario)
    s = cancel_settlement(settlement["id"], STORE, "error de carga")
    assert s["status"] == "cancelled"
    with get_connection() as con:
        linked = con.execute(
            "SELECT COUNT(*) FROM carrier_account_movements WHERE settlement_id = ?", (settlement["id"],)
        ).fetchone()[0]
    assert linked == 0
    with pytest.raises(ConflictError):
        cancel_settlement(settlement["id"], STORE)


# ─────────────────────────────────────
# Consultas
# ─────────────────────────────────────
def test_listing_and_dashboards(scenario):
    _, settlement = _settle(scenario)
    mark_settlement_paid(settlement["id"], STORE, 20000)

    rows, total = get_daily_settlements(STORE)
    assert total == 1 and rows[0]["carrier_name"] == "Rápido"
    assert get_daily_settlements(STORE, status="paid")[1] == 0

    summary = get_settlements_summary(STORE)
    assert summary["total_settlements"] == 1
    assert summary["total_partial"] == 1
    assert summary["total_net_receivable"] == 120000
    assert summary["total_balance_due"] == 100000

    pending = get_pending_by_carrier(STORE)
    assert pending == [{
        "carrier_id": scenario["carrier_id"], "carrier_name": "Rápido",
        "pending_settlements": 1, "total_balance_due": 100000,
    }]
