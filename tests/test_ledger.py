import pytest

from cod_logic.dispatch import create_dispatch_session
from cod_logic.errors import ConflictError, NotFoundError, SettlementError
from cod_logic.ledger import (
    backfill_carrier_movements,
    create_adjustment,
    get_carrier_account_summary,
    get_carrier_balance,
    get_carrier_balance_summary,
    get_carrier_balances,
    get_carrier_config,
    get_carrier_movements,
    get_carrier_payments,
    get_unsettled_movements,
    register_carrier_payment,
    signed_amount,
    update_carrier_config,
)
from cod_logic.outcomes import import_dispatch_results
from cod_logic.settlement import (
    cancel_settlement,
    dispute_settlement,
    get_settlement,
    mark_settlement_paid,
    process_settlement,
)

from conftest import STORE, add_carrier, add_order, add_zone

DELIVERED = [
    {"order_number": "1001", "delivery_status": "ENTREGADO", "amount_collected": 100000},
    {"order_number": "1002", "delivery_status": "ENTREGADO", "amount_collected": 80000},
    {"order_number": "1003", "delivery_status": "ENTREGADO"},
]


def _import(scenario):
    session = create_dispatch_session(STORE, scenario["carrier_id"], list(scenario["orders"].values()))
    import_dispatch_results(session["id"], STORE, DELIVERED)
    return session


def _settle(scenario):
    session = _import(scenario)
    return process_settlement(session["id"], STORE)


@pytest.mark.parametrize("movement_type, amount, expected", [
    ("cod_collected", 100, 100),
    ("delivery_fee", 20, -20),
    ("failed_attempt_fee", -10, -10),
    ("payment_received", 50, -50),
    ("payment_sent", 50, 50),
    ("adjustment_credit", 5, -5),
    ("adjustment_debit", -5, 5),
])
def test_signed_amount(movement_type, amount, expected):
    assert signed_amount(movement_type, amount) == expected


def test_signed_amount_rejects_unknown_type():
    with pytest.raises(SettlementError):
        signed_amount("bonus", 1)


# ─────────────────────────────────────
# Saldos
# ─────────────────────────────────────
def test_balance_is_sum_of_movements(scenario):
    idle = add_carrier("Sin movimientos")
    _import(scenario)

    balance = get_carrier_balance(STORE, scenario["carrier_id"])
    assert balance["total_cod_collected"] == 180000
    assert balance["total_delivery_fees"] == 60000
    assert balance["net_balance"] == 120000
    assert balance["unsettled_balance"] == 120000
    assert balance["unsettled_orders"] == 3

    by_id = {b["carrier_id"]: b for b in get_carrier_balances(STORE)}
    assert by_id[idle]["net_balance"] == 0
    assert by_id[idle]["last_movement_date"] is None

    with pytest.raises(NotFoundError):
        get_carrier_balance(STORE, "nope")


def test_unsettled_movements_until_settled(scenario):
    session = _import(scenario)
    assert len(get_unsettled_movements(STORE, scenario["carrier_id"])) == 5
    process_settlement(session["id"], STORE)
    assert get_unsettled_movements(STORE) == []
    assert get_carrier_balance(STORE, scenario["carrier_id"])["unsettled_balance"] == 0


def test_balance_summary_gross_vs_net(scenario):
    s = _settle(scenario)
    mark_settlement_paid(s["id"], STORE, 50000)

    summary = get_carrier_balance_summary(STORE, scenario["carrier_id"])
    assert summary["cod_collected"] == 180000
    assert summary["delivery_fees"] == 60000
    assert summary["payments_received"] == 50000
    assert summary["gross_balance"] == 120000
    assert summary["net_balance"] == 70000
    assert summary["movement_count"] == 6
    assert summary["orders_count"] == 3

    empty = get_carrier_balance_summary(STORE, scenario["carrier_id"], from_date="2099-01-01")
    assert empty["movement_count"] == 0 and empty["net_balance"] == 0


def test_movements_pagination_and_filter(scenario):
    _import(scenario)
    page = get_carrier_movements(STORE, scenario["carrier_id"], limit=2)
    assert page["count"] == 5
    assert len(page["data"]) == 2
    fees = get_carrier_movements(STORE, scenario["carrier_id"], movement_type="delivery_fee")
    assert fees["count"] == 3
    assert all(m["amount"] == -20000 for m in fees["data"])


# ─────────────────────────────────────
# Ajustes
# ─────────────────────────────────────
def test_adjustments(scenario):
    cid = scenario["carrier_id"]
    credit = create_adjustment(STORE, cid, 5000, "credit", "Bonificación", created_by="ana")
    debit = create_adjustment(STORE, cid, -3000, "debit", "Paquete dañado")
    assert credit["movement_type"] == "adjustment_credit" and credit["amount"] == -5000
    assert debit["amount"] == 3000
    assert credit["created_by"] == "ana"

    balance = get_carrier_balance(STORE, cid)
    assert balance["total_adjustments"] == -2000
    assert balance["net_balance"] == -2000


@pytest.mark.parametrize("amount, direction, description", [
    (0, "credit", "x"),
    (100, "sideways", "x"),
    (100, "debit", "  "),
])
def test_adjustment_validation(scenario, amount, direction, description):
    with pytest.raises(SettlementError):
        create_adjustment(STORE, scenario["carrier_id"], amount, direction, description)


def test_adjustment_unknown_carrier(database):
    with pytest.raises(NotFoundError):
        create_adjustment(STORE, "nope", 100, "credit", "x")


# ─────────────────────────────────────
# Pagos sueltos
# ─────────────────────────────────────
def test_payment_applied_to_settlements(scenario):
    s = _settle(scenario)
    payment = register_carrier_payment(
        STORE, scenario["carrier_id"], 150000, "from_carrier", "bank_transfer",
        payment_reference="TRX-9", settlement_ids=[s["id"]], created_by="ana",
    )
    assert payment["payment_code"].startswith("PAG-")
    assert payment["unapplied_amount"] == 30000
    assert len(payment["movement_ids"]) > 0
    assert payment["settlement_ids"] == [s["id"]]

    detail = get_settlement(s["id"], STORE)
    assert detail["status"] == "paid"
    assert detail["balance_due"] == 0
    assert all(m["payment_record_id"] == payment["id"] for m in detail["movements"])

    # el sobrante queda como crédito del courier
    assert get_carrier_balance(STORE, scenario["carrier_id"])["net_balance"] == -30000

    listed = get_carrier_payments(STORE, scenario["carrier_id"])
    assert listed[0]["settlement_ids"] == [s["id"]]
    assert isinstance(listed[0]["movement_ids"], list)


def test_payment_without_settlements_covers_unsettled(scenario):
    _import(scenario)
    payment = register_carrier_payment(STORE, scenario["carrier_id"], 50000, "from_carrier", "cash")
    assert payment["unapplied_amount"] == 0
    assert len(payment["movement_ids"]) == 5
    assert payment["settlement_ids"] == []
    assert get_unsettled_movements(STORE) == []
    assert get_carrier_balance(STORE, scenario["carrier_id"])["net_balance"] == 70000


def test_payment_to_carrier_raises_balance(scenario):
    register_carrier_payment(STORE, scenario["carrier_id"], 1000, "to_carrier", "cash")
    balance = get_carrier_balance(STORE, scenario["carrier_id"])
    assert balance["total_payments_sent"] == 1000
    assert balance["net_balance"] == 1000


def test_payment_validation(scenario):
    cid = scenario["carrier_id"]
    with pytest.raises(SettlementError):
        register_carrier_payment(STORE, cid, 100, "sideways", "cash")
    with pytest.raises(SettlementError):
        register_carrier_payment(STORE, cid, 100, "from_carrier", "gold")
    with pytest.raises(SettlementError):
        register_carrier_payment(STORE, cid, 0, "from_carrier", "cash")
    with pytest.raises(NotFoundError):
        register_carrier_payment(STORE, cid, 100, "from_carrier", "cash", settlement_ids=["nope"])
    assert get_carrier_payments(STORE) == []


def _settle_prepaid_only(scenario):
    """Liquidación con neto negativo: sólo se entregó el pedido prepago."""
    session = create_dispatch_session(STORE, scenario["carrier_id"], [scenario["orders"]["prepaid"]])
    import_dispatch_results(session["id"], STORE, [{"order_number": "1003", "delivery_status": "ENTREGADO"}])
    return process_settlement(session["id"], STORE)


@pytest.mark.parametrize("close", [
    lambda sid: cancel_settlement(sid, STORE, "error de carga"),
    lambda sid: dispute_settlement(sid, STORE, "faltan 10000"),
    lambda sid: mark_settlement_paid(sid, STORE, 120000),
], ids=["cancelled", "disputed", "paid"])
def test_payment_rejected_on_closed_settlement(scenario, close):
    s = _settle(scenario)
    close(s["id"])
    before = get_settlement(s["id"], STORE)
    payments = len(get_carrier_payments(STORE))

    with pytest.raises(ConflictError, match=before["status"]):
        register_carrier_payment(
            STORE, scenario["carrier_id"], 1000, "from_carrier", "cash", settlement_ids=[s["id"]],
        )

    after = get_settlement(s["id"], STORE)
    assert after["status"] == before["status"]
    assert after["amount_paid"] == before["amount_paid"]
    assert len(get_carrier_payments(STORE)) == payments


def test_payment_direction_must_follow_settlement_net(scenario):
    s = _settle_prepaid_only(scenario)
    assert s["net_receivable"] == -20000
    cid = scenario["carrier_id"]

    with pytest.raises(SettlementError, match="to_carrier"):
        register_carrier_payment(STORE, cid, 20000, "from_carrier", "cash", settlement_ids=[s["id"]])
    assert get_carrier_payments(STORE) == []
    assert get_settlement(s["id"], STORE)["status"] == "pending"

    payment = register_carrier_payment(STORE, cid, 20000, "to_carrier", "cash", settlement_ids=[s["id"]])
    assert payment["unapplied_amount"] == 0
    detail = get_settlement(s["id"], STORE)
    assert detail["status"] == "paid"
    assert detail["amount_paid"] == -20000
    assert detail["balance_due"] == 0
    assert get_carrier_balance(STORE, cid)["net_balance"] == 0


def test_positive_net_rejects_payment_to_carrier(scenario):
    s = _settle(scenario)
    with pytest.raises(SettlementError, match="from_carrier"):
        register_carrier_payment(
            STORE, scenario["carrier_id"], 1000, "to_carrier", "cash", settlement_ids=[s["id"]],
        )
    assert get_settlement(s["id"], STORE)["amount_paid"] == 0


def test_payment_of_another_carrier_settlement(scenario):
    s = _settle(scenario)
    other = add_carrier("Veloz")
    with pytest.raises(SettlementError, match="otro courier"):
        register_carrier_payment(STORE, other, 1000, "from_carrier", "cash", settlement_ids=[s["id"]])


# ─────────────────────────────────────
# Configuración
# ─────────────────────────────────────
def test_carrier_config(scenario):
    cid = scenario["carrier_id"]
    config = get_carrier_config(STORE, cid)
    assert config["settlement_type"] == "net"
    assert config["payment_schedule"] == "weekly"
    assert config["failed_attempt_fee_rate"] == 0.5

    updated = update_carrier_config(STORE, cid, payment_schedule="daily")
    assert updated["payment_schedule"] == "daily"
    assert updated["settlement_type"] == "net"

    with pytest.raises(SettlementError):
        update_carrier_config(STORE, cid, settlement_type="barter")
    with pytest.raises(NotFoundError):
        get_carrier_config(STORE, "nope")


# ─────────────────────────────────────
# Backfill y resumen
# ─────────────────────────────────────
def test_backfill_runs_once(scenario):
    cid = scenario["carrier_id"]
    add_order("3001", 100000, status="delivered", courier_id=cid, delivered_at="2024-03-01 10:00:00")
    add_order("3002", 50000, payment_method="qr", status="delivered", courier_id=cid,
              delivered_at="2024-03-02 10:00:00")
    add_order("3003", 70000, status="delivered")  # sin courier

    assert backfill_carrier_movements(STORE) == {"orders_processed": 2, "movements_created": 3}
    assert backfill_carrier_movements(STORE) == {"orders_processed": 0, "movements_created": 0}

    movements = get_carrier_movements(STORE, cid)["data"]
    assert {m["movement_date"] for m in movements} == {"2024-03-01", "2024-03-02"}
    assert get_carrier_balance(STORE, cid)["net_balance"] == 100000 - 40000


def test_account_summary(scenario):
    _settle(scenario)
    other = add_carrier("Lento")
    add_zone(other, "default", 15000)
    create_adjustment(STORE, other, 5000, "credit", "Bonificación")

    summary = get_carrier_account_summary(STORE)
    assert summary["total_owed_by_carriers"] == 120000
    assert summary["total_owed_to_carriers"] == 5000
    assert summary["net_position"] == 115000
    assert summary["carriers_with_balance"] == 2
    assert summary["pending_settlements_count"] == 1
    assert summary["pending_settlements_amount"] == 120000
    assert len(summary["balances"]) == 2
