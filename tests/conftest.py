import pytest

from cod_logic import db
from cod_logic.db import get_connection, insert_row, new_id

STORE = "store-1"


@pytest.fixture
def database(tmp_path, monkeypatch):
    """DB vacía en un archivo temporal."""
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "settlements.db")
    db.ensure_tables()
    return db.DB_PATH


def add_carrier(name="Rápido", store_id=STORE, **extra):
    carrier_id = new_id()
    with get_connection() as con:
        insert_row(con, "carriers", {"id": carrier_id, "store_id": store_id, "name": name, **extra})
        con.commit()
    return carrier_id


def add_zone(carrier_id, zone_name, rate, store_id=STORE):
    with get_connection() as con:
        insert_row(con, "carrier_zones", {
            "id": new_id(), "store_id": store_id, "carrier_id": carrier_id,
            "zone_name": zone_name, "rate": rate,
        })
        con.commit()


def add_order(number, total_price, payment_method="efectivo", store_id=STORE,
              city="Santa Cruz", status="confirmed", **extra):
    order_id = new_id()
    with get_connection() as con:
        insert_row(con, "orders", {
            "id": order_id, "store_id": store_id, "order_number": number,
            "customer_name": f"Cliente {number}", "customer_phone": "70000000",
            "delivery_address": "Calle 1", "delivery_city": city,
            "total_price": total_price, "payment_method": payment_method,
            "status": status, **extra,
        })
        con.commit()
    return order_id


def order_row(order_id):
    with get_connection() as con:
        return db.fetch_one(con, "SELECT * FROM orders WHERE id = ?", (order_id,))


@pytest.fixture
def scenario(database):
    """
    Courier con zona 'default' a 20000 y tres pedidos:
    dos COD (100000 y 80000) y uno prepago (50000).
    """
    carrier_id = add_carrier()
    add_zone(carrier_id, "default", 20000)
    orders = {
        "cod_a": add_order("1001", 100000),
        "cod_b": add_order("1002", 80000),
        "prepaid": add_order("1003", 50000, payment_method="tarjeta"),
    }
    return {"store_id": STORE, "carrier_id": carrier_id, "orders": orders}
