"""
cod_logic/db.py - Helpers de conexión a la DB
───────────────────────────────────
Python puro, sin dependencias del framework web.
Crea settlements.db automáticamente y garantiza todas las tablas.
"""
from __future__ import annotations

import sqlite3
import textwrap
import datetime as dt
import pathlib
import os
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import pandas as pd

# ── Timestamp → texto YYYY-MM-DD ──
sqlite3.register_adapter(
    pd.Timestamp,
    lambda ts: ts.strftime("%Y-%m-%d")
)

# ─────────────────────────────────────
# 0. Constantes globales
# ─────────────────────────────────────
DB_PATH = pathlib.Path(os.getenv("COD_DB", "settlements.db"))
DATE_FMT = "%Y-%m-%d %H:%M:%S"
DAY_FMT = "%Y-%m-%d"
CODE_RETRY_ATTEMPTS = 5

# sesiones que todavía retienen sus pedidos
ACTIVE_SESSION_STATUSES = ("dispatched", "processing")


# ─────────────────────────────────────
# 1. Conexión
# ─────────────────────────────────────
@contextmanager
def get_connection():
    """Conecta directamente al archivo de la DB."""
    con = None
    try:
        con = sqlite3.connect(DB_PATH)
        # WAL: lecturas concurrentes mientras otro proceso escribe
        con.execute("PRAGMA journal_mode=WAL;")
        con.execute("PRAGMA busy_timeout=5000;")
        yield con
    finally:
        if con:
            con.close()


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """
    Conexión dentro de una transacción BEGIN IMMEDIATE.

    El lock de escritura se toma al inicio, así las validaciones que se
    hagan dentro ven el mismo estado que luego se modifica.
    COMMIT al salir; ROLLBACK ante cualquier excepción.
    """
    with get_connection() as con:
        con.isolation_level = None
        con.execute("BEGIN IMMEDIATE;")
        try:
            yield con
        except BaseException:
            con.execute("ROLLBACK;")
            raise
        con.execute("COMMIT;")


# ─────────────────────────────────────
# 2. DDL – estructura final
# ─────────────────────────────────────
DDL_SQL = textwrap.dedent(
    """
    /* Entidades externas (sólo se mutan estados y campos financieros) */
    CREATE TABLE IF NOT EXISTS carriers(
        id                         TEXT PRIMARY KEY,
        store_id                   TEXT NOT NULL,
        name                       TEXT NOT NULL,
        is_active                  INTEGER DEFAULT 1,
        settlement_type            TEXT DEFAULT 'net',
        payment_schedule           TEXT DEFAULT 'weekly',
        updated_at                 TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS orders(
        id                     TEXT PRIMARY KEY,
        store_id               TEXT NOT NULL,
        order_number           TEXT,
        customer_name          TEXT,
        customer_phone         TEXT,
        delivery_address       TEXT,
        delivery_city          TEXT,
        delivery_zone          TEXT,
        total_price            REAL DEFAULT 0,
        payment_method         TEXT,
        prepaid_method         TEXT,
        status                 TEXT DEFAULT 'confirmed',
        courier_id             TEXT,
        shipped_at             TIMESTAMP,
        delivered_at           TIMESTAMP,
        amount_collected       REAL,
        has_amount_discrepancy INTEGER DEFAULT 0,
        delivery_notes         TEXT,
        failure_reason         TEXT,
        reconciled_at          TIMESTAMP,
        created_at             TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    /* Tarifas por zona */
    CREATE TABLE IF NOT EXISTS carrier_zones(
        id         TEXT PRIMARY KEY,
        store_id   TEXT NOT NULL,
        carrier_id TEXT NOT NULL,
        zone_name  TEXT NOT NULL,
        zone_code  TEXT,
        rate       REAL NOT NULL,
        is_active  INTEGER DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(store_id, carrier_id, zone_name)
    );

    /* Despachos */
    CREATE TABLE IF NOT EXISTS dispatch_sessions(
        id                 TEXT PRIMARY KEY,
        store_id           TEXT NOT NULL,
        carrier_id         TEXT NOT NULL,
        session_code       TEXT NOT NULL,
        dispatch_date      DATE NOT NULL,
        total_orders       INTEGER DEFAULT 0,
        total_cod_expected REAL DEFAULT 0,
        total_prepaid      INTEGER DEFAULT 0,
        status             TEXT DEFAULT 'dispatched',
        daily_settlement_id TEXT,
        notes              TEXT,
        created_by         TEXT,
        created_at         TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        exported_at        TIMESTAMP,
        imported_at        TIMESTAMP,
        settled_at         TIMESTAMP,
        cancelled_at       TIMESTAMP,
        UNIQUE(store_id, session_code)
    );

    CREATE TABLE IF NOT EXISTS dispatch_session_orders(
        id                  TEXT PRIMARY KEY,
        dispatch_session_id TEXT NOT NULL,
        order_id            TEXT NOT NULL,
        order_number        TEXT,
        customer_name       TEXT,
        customer_phone      TEXT,
        delivery_address    TEXT,
        delivery_city       TEXT,
        delivery_zone       TEXT,
        total_price         REAL DEFAULT 0,
        payment_method      TEXT,
        is_cod              INTEGER DEFAULT 1,
        carrier_fee         REAL DEFAULT 0,
        delivery_status     TEXT DEFAULT 'pending',
        amount_collected    REAL,
        failure_reason      TEXT,
        courier_notes       TEXT,
        delivered_at        TIMESTAMP,
        processed_at        TIMESTAMP,
        UNIQUE(dispatch_session_id, order_id),
        FOREIGN KEY (dispatch_session_id) REFERENCES dispatch_sessions(id)
    );

    /* Liquidaciones */
    CREATE TABLE IF NOT EXISTS daily_settlements(
        id                      TEXT PRIMARY KEY,
        store_id                TEXT NOT NULL,
        carrier_id              TEXT NOT NULL,
        dispatch_session_id     TEXT,
        settlement_code         TEXT NOT NULL,
        settlement_date         DATE NOT NULL,
        total_dispatched        INTEGER DEFAULT 0,
        total_delivered         INTEGER DEFAULT 0,
        total_not_delivered     INTEGER DEFAULT 0,
        total_cod_delivered     INTEGER DEFAULT 0,
        total_prepaid_delivered INTEGER DEFAULT 0,
        total_cod_expected      REAL DEFAULT 0,
        total_cod_collected     REAL DEFAULT 0,
        total_carrier_fees      REAL DEFAULT 0,
        failed_attempt_fee      REAL DEFAULT 0,
        net_receivable          REAL DEFAULT 0,
        amount_paid             REAL DEFAULT 0,
        balance_due             REAL DEFAULT 0,
        status                  TEXT DEFAULT 'pending',
        payment_date            TIMESTAMP,
        payment_method          TEXT,
        payment_reference       TEXT,
        notes                   TEXT,
        created_by              TEXT,
        created_at              TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at              TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(store_id, settlement_code)
    );

    /* Cuenta corriente de couriers */
    CREATE TABLE IF NOT EXISTS carrier_payment_records(
        id                 TEXT PRIMARY KEY,
        store_id           TEXT NOT NULL,
        carrier_id         TEXT NOT NULL,
        payment_code       TEXT NOT NULL,
        direction          TEXT NOT NULL,
        amount             REAL NOT NULL,
        period_start       DATE,
        period_end         DATE,
        settlement_ids     TEXT,
        movement_ids       TEXT,
        payment_method     TEXT NOT NULL,
        payment_reference  TEXT,
        notes              TEXT,
        status             TEXT DEFAULT 'completed',
        payment_date       DATE,
        created_by         TEXT,
        created_at         TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(store_id, payment_code)
    );

    CREATE TABLE IF NOT EXISTS carrier_account_movements(
        id                  TEXT PRIMARY KEY,
        store_id            TEXT NOT NULL,
        carrier_id          TEXT NOT NULL,
        movement_type       TEXT NOT NULL,
        amount              REAL NOT NULL,
        order_id            TEXT,
        order_number        TEXT,
        dispatch_session_id TEXT,
        settlement_id       TEXT,
        payment_record_id   TEXT,
        batch_id            TEXT,
        description         TEXT,
        metadata            TEXT,
        movement_date       DATE NOT NULL,
        created_by          TEXT,
        created_at          TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE INDEX IF NOT EXISTS ix_movements_carrier
        ON carrier_account_movements(store_id, carrier_id);

    CREATE INDEX IF NOT EXISTS ix_session_orders_order
        ON dispatch_session_orders(order_id);

    /* Auditoría */
    CREATE TABLE IF NOT EXISTS activity_logs(
        log_id        INTEGER PRIMARY KEY AUTOINCREMENT,
        action_type   TEXT NOT NULL,
        target_type   TEXT,
        target_id     TEXT,
        target_name   TEXT,
        user_nickname TEXT,
        details       TEXT,
        created_at    DATETIME DEFAULT CURRENT_TIMESTAMP
    );
    """
)


# índices que dependen de columnas agregadas después de la primera versión
INDEX_SQL = textwrap.dedent(
    """
    DROP INDEX IF EXISTS ux_movements_order_type;

    /* un movimiento por pedido, tipo y lote; batch_id no cambia al desvincular */
    CREATE UNIQUE INDEX IF NOT EXISTS ux_movements_order_batch
        ON carrier_account_movements(order_id, movement_type, COALESCE(batch_id, ''))
        WHERE order_id IS NOT NULL;
    """
)

# columnas agregadas a tablas ya existentes
LATE_COLUMNS = (
    ("orders", "reconciled_at", "TIMESTAMP"),
    ("carrier_account_movements", "batch_id", "TEXT"),
)


# ─────────────────────────────────────
# 3. Tablas
# ─────────────────────────────────────
def ensure_column(con: sqlite3.Connection, tbl: str, col: str, coltype: str = "TEXT") -> None:
    cols = [c[1] for c in con.execute(f"PRAGMA table_info({tbl});")]
    if col not in cols:
        con.execute(f"ALTER TABLE {tbl} ADD COLUMN {col} {coltype};")


def ensure_tables() -> None:
    """Crea las tablas necesarias.

    ⚠️ Nunca borra datos: sólo CREATE TABLE / INDEX IF NOT EXISTS y
    ALTER TABLE ADD COLUMN para las columnas nuevas.
    """
    with get_connection() as con:
        con.executescript(DDL_SQL)
        for tbl, col, coltype in LATE_COLUMNS:
            ensure_column(con, tbl, col, coltype)
        # movimientos previos: el lote era la sesión o la liquidación
        con.execute(
            "UPDATE carrier_account_movements SET batch_id = COALESCE(dispatch_session_id, settlement_id) "
            "WHERE batch_id IS NULL AND order_id IS NOT NULL"
        )
        con.executescript(INDEX_SQL)
        con.commit()


# ─────────────────────────────────────
# 4. Fechas / ids
# ─────────────────────────────────────
def now_str(fmt: str = DATE_FMT) -> str:
    return dt.datetime.now().strftime(fmt)


def today_str() -> str:
    return dt.date.today().strftime(DAY_FMT)


def new_id() -> str:
    return uuid.uuid4().hex


def to_date(value: Any) -> dt.date:
    """'YYYY-MM-DD', date o datetime → date."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    return dt.datetime.strptime(str(value)[:10], DAY_FMT).date()


# ─────────────────────────────────────
# 5. Códigos legibles PREFIJO-DDMMYYYY-NNN
# ─────────────────────────────────────
def code_prefix(prefix: str, on_date: Any) -> str:
    return f"{prefix}-{to_date(on_date):%d%m%Y}-"


def next_code(con: sqlite3.Connection, table: str, column: str,
              store_id: str, prefix: str, on_date: Any, offset: int = 0) -> str:
    """Siguiente código del día para la tienda (cantidad del día + 1)."""
    day_prefix = code_prefix(prefix, on_date)
    count = con.execute(
        f"SELECT COUNT(*) FROM {table} WHERE store_id = ? AND {column} LIKE ?",
        (store_id, day_prefix + "%"),
    ).fetchone()[0]
    seq = count + 1 + offset
    if seq > 999:
        from .errors import ConflictError

        raise ConflictError(f"Se alcanzó el máximo de 999 códigos {prefix} para el día")
    return f"{day_prefix}{seq:03d}"


def insert_with_code(con: sqlite3.Connection, table: str, column: str,
                     store_id: str, prefix: str, on_date: Any,
                     row: Dict[str, Any]) -> str:
    """
    Inserta `row` con un código único por (tienda, día).

    La unicidad la garantiza el UNIQUE(store_id, <column>); si otro escritor
    tomó el mismo número se avanza la secuencia y se reintenta.

    Returns:
        el código asignado
    """
    from .errors import ConflictError

    for attempt in range(CODE_RETRY_ATTEMPTS):
        code = next_code(con, table, column, store_id, prefix, on_date, offset=attempt)
        data = dict(row, **{column: code})
        try:
            insert_row(con, table, data)
            return code
        except sqlite3.IntegrityError as e:
            if column not in str(e):
                raise
    raise ConflictError(
        f"No se pudo generar un código {prefix} único tras {CODE_RETRY_ATTEMPTS} intentos"
    )


# ─────────────────────────────────────
# 6. Filas
# ─────────────────────────────────────
def insert_row(con: sqlite3.Connection, table: str, data: Dict[str, Any]) -> None:
    cols = list(data)
    con.execute(
        f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({', '.join('?' * len(cols))})",
        [data[c] for c in cols],
    )


def fetch_all(con: sqlite3.Connection, sql: str, params: tuple | list = ()) -> List[Dict[str, Any]]:
    cur = con.execute(sql, params)
    cols = [d[0] for d in cur.description]
    return [dict(zip(cols, r)) for r in cur.fetchall()]


def fetch_one(con: sqlite3.Connection, sql: str, params: tuple | list = ()) -> Optional[Dict[str, Any]]:
    cur = con.execute(sql, params)
    r = cur.fetchone()
    if r is None:
        return None
    return dict(zip([d[0] for d in cur.description], r))


def placeholders(values: list) -> str:
    return ",".join("?" * len(values))


# ─────────────────────────────────────
# 7. DataFrame
# ─────────────────────────────────────
def df_from_sql(sql: str, params: tuple | list | None = None) -> pd.DataFrame:
    with get_connection() as con:
        df = pd.read_sql(sql, con, params=params)
    df.columns = [str(c).strip() for c in df.columns]
    return df


def df_records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """DataFrame → lista de dicts (NaN → None)."""
    return df.astype(object).where(pd.notna(df), None).to_dict(orient="records")
