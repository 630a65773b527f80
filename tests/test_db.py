import pytest

from cod_logic import db
from cod_logic.db import get_connection, next_code
from cod_logic.errors import ConflictError

from conftest import STORE


def test_next_code_sequence(database):
    with get_connection() as con:
        code = next_code(con, "daily_settlements", "settlement_code", STORE, "LIQ", "2024-03-05")
    assert code == "LIQ-05032024-001"


def test_next_code_exhausted_day_is_conflict(database):
    with get_connection() as con:
        assert next_code(
            con, "daily_settlements", "settlement_code", STORE, "LIQ", "2024-03-05", offset=998
        ) == "LIQ-05032024-999"
        with pytest.raises(ConflictError, match="999"):
            next_code(con, "daily_settlements", "settlement_code", STORE, "LIQ", "2024-03-05", offset=999)


def test_ensure_tables_upgrades_old_schema(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "old.db")
    with get_connection() as con:
        con.executescript(
            """
            CREATE TABLE orders(id TEXT PRIMARY KEY, store_id TEXT NOT NULL, status TEXT);
            CREATE TABLE carrier_account_movements(
                id TEXT PRIMARY KEY, store_id TEXT NOT NULL, carrier_id TEXT NOT NULL,
                movement_type TEXT NOT NULL, amount REAL NOT NULL, order_id TEXT,
                dispatch_session_id TEXT, settlement_id TEXT, movement_date DATE NOT NULL
            );
            CREATE UNIQUE INDEX ux_movements_order_type
                ON carrier_account_movements(order_id, movement_type, COALESCE(dispatch_session_id, settlement_id, ''))
                WHERE order_id IS NOT NULL;
            INSERT INTO carrier_account_movements
                VALUES ('m1', 's', 'c', 'delivery_fee', -20000, 'o1', 'sess-1', NULL, '2024-03-05');
            """
        )
        con.commit()

    db.ensure_tables()
    db.ensure_tables()

    with get_connection() as con:
        order_cols = [c[1] for c in con.execute("PRAGMA table_info(orders);")]
        batch = con.execute("SELECT batch_id FROM carrier_account_movements WHERE id = 'm1'").fetchone()[0]
        indexes = {r[0] for r in con.execute(
            "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = 'carrier_account_movements'"
        )}
    assert "reconciled_at" in order_cols
    assert batch == "sess-1"
    assert "ux_movements_order_batch" in indexes
    assert "ux_movements_order_type" not in indexes
