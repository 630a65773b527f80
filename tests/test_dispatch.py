import datetime as dt

import pytest

from cod_logic.db import get_connection
from cod_logic.dispatch import (
    cancel_dispatch_session,
    create_dispatch_session,
    get_dispatch_session,
    get_dispatch_sessions,
    get_orders_to_dispatch,
)
from cod_logic.errors import ConflictError, NotFoundError, SettlementError

from conftest import STORE, add_carrier, add_order, add_zone, order_row


def _count_sessions():
    with get_connection() as con:
        return con.execute("SELECT COUNT(*) FROM dispatch_sessions").fetchone()[0]


def test_create_session_totals_and_snapshot(scenario):
    ids = list(scenario["orders"].values())
    session = create_dispatch_session(STORE, scenario["carrier_id"], ids, user_id="ana")

    assert session["total_orders"] == 3
    assert session["total_cod_expected"] == 180000
    assert session["total_prepaid"] == 1
    assert session["status"] == "dispatched"
    assert session["carrier_name"] == "Rápido"
    assert session["session_code"] == f"DISP-{dt.date.today():%d%m%Y}-001"
    assert session["warnings"] == []

    by_number = {o["order_number"]: o for o in session["orders"]}
    assert by_number["1001"]["is_cod"] is True
    assert by_number["1003"]["is_cod"] is False
    assert by_number["1003"]["payment_method"] == "TARJETA"
    assert all(o["carrier_fee"] == 20000 for o in session["orders"])
    assert all(o["delivery_status"] == "pending" for o in session["orders"])

    for oid in ids:
        row = order_row(oid)
        assert row["status"] == "shipped"
        assert row["courier_id"] == scenario["carrier_id"]
        assert row["shipped_at"]


def test_codes_are_sequential_per_day(scenario):
    o = scenario["orders"]
    first = create_dispatch_session(STORE, scenario["carrier_id"], [o["cod_a"]])
    second = create_dispatch_session(STORE, scenario["carrier_id"], [o["cod_b"]])
    assert first["session_code"].endswith("-001")
    assert second["session_code"].endswith("-002")

    other_day = create_dispatch_session(
        STORE, scenario["carrier_id"], [o["prepaid"]], dispatch_date="2024-03-05"
    )
    assert other_day["session_code"] == "DISP-05032024-001"


def test_order_cannot_be_in_two_active_sessions(scenario):
    o = scenario["orders"]
    create_dispatch_session(STORE, scenario["carrier_id"], [o["cod_a"]])

    with pytest.raises(ConflictError) as exc:
        create_dispatch_session(STORE, scenario["carrier_id"], [o["cod_b"], o["cod_a"]])
    assert "DISP-" in str(exc.value)

    # nada cambió
    assert _count_sessions() == 1
    assert order_row(o["cod_b"])["status"] == "confirmed"


def test_carrier_without_zones_is_rejected(database):
    carrier_id = add_carrier("Sin Zonas")
    order_id = add_order("2001", 50000)
    with pytest.raises(SettlementError, match="no tiene zonas configuradas"):
        create_dispatch_session(STORE, carrier_id, [order_id])
    assert _count_sessions() == 0
    assert order_row(order_id)["status"] == "confirmed"


def test_missing_order_and_carrier(scenario):
    with pytest.raises(NotFoundError):
        create_dispatch_session(STORE, scenario["carrier_id"], [scenario["orders"]["cod_a"], "fantasma"])
    with pytest.raises(NotFoundError):
        create_dispatch_session(STORE, "no-existe", [scenario["orders"]["cod_a"]])
    with pytest.raises(SettlementError):
        create_dispatch_session(STORE, scenario["carrier_id"], [])
    assert _count_sessions() == 0


def test_warnings_do_not_block(database):
    carrier_id = add_carrier()
    add_zone(carrier_id, "La Paz", 15000)
    odd = add_order("3001", 40000, city="Oruro", status="pending")

    session = create_dispatch_session(STORE, carrier_id, [odd])
    assert len(session["warnings"]) == 2
    assert any("no están en estado" in w for w in session["warnings"])
    assert any("zona de respaldo" in w for w in session["warnings"])
    # sin zona de respaldo: primera zona
    assert session["orders"][0]["carrier_fee"] == 15000


def test_orders_to_dispatch_excludes_active_sessions(scenario):
    o = scenario["orders"]
    assert len(get_orders_to_dispatch(STORE)) == 3
    create_dispatch_session(STORE, scenario["carrier_id"], [o["cod_a"]])
    pending = {r["id"] for r in get_orders_to_dispatch(STORE)}
    assert pending == {o["cod_b"], o["prepaid"]}


def test_cancel_frees_orders(scenario):
    o = scenario["orders"]
    session = create_dispatch_session(STORE, scenario["carrier_id"], [o["cod_a"], o["cod_b"]])

    cancelled = cancel_dispatch_session(session["id"], STORE, "courier no vino")
    assert cancelled["status"] == "cancelled"
    assert "courier no vino" in cancelled["notes"]
    assert order_row(o["cod_a"])["status"] == "confirmed"

    again = create_dispatch_session(STORE, scenario["carrier_id"], [o["cod_a"]])
    assert again["status"] == "dispatched"

    with pytest.raises(ConflictError):
        cancel_dispatch_session(session["id"], STORE)


def test_listing_and_detail(scenario):
    o = scenario["orders"]
    session = create_dispatch_session(STORE, scenario["carrier_id"], [o["cod_a"]])
    create_dispatch_session(STORE, scenario["carrier_id"], [o["cod_b"]], dispatch_date="2024-01-10")

    rows, total = get_dispatch_sessions(STORE)
    assert total == 2
    assert rows[0]["id"] == session["id"]

    rows, total = get_dispatch_sessions(STORE, start_date="2024-01-01", end_date="2024-01-31")
    assert total == 1

    detail = get_dispatch_session(session["id"], STORE)
    assert [x["order_id"] for x in detail["orders"]] == [o["cod_a"]]
    with pytest.raises(NotFoundError):
        get_dispatch_session(session["id"], "otra-tienda")
