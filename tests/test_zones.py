import logging

import pytest

from cod_logic.db import get_connection
from cod_logic.errors import NotFoundError, SettlementError
from cod_logic.zones import (
    DEFAULT_ZONE_RATE,
    ZoneRateTable,
    bulk_upsert_carrier_zones,
    delete_carrier_zone,
    get_carrier_zones,
    load_rate_table,
    normalize_city,
    resolve_zone_rate,
    upsert_carrier_zone,
)

from conftest import STORE, add_carrier


def test_normalize_city():
    assert normalize_city("  Asunción ") == "asuncion"
    assert normalize_city("SÃO PAULO") == "sao paulo"
    assert normalize_city(None) == ""


def test_exact_match_ignores_accents_and_case():
    table = ZoneRateTable([("Asunción", 15000), ("default", 20000)])
    assert table.resolve("ASUNCION ") == 15000
    assert table.resolve(None, "asunción") == 15000


def test_zone_wins_over_city():
    table = ZoneRateTable([("Centro", 10000), ("La Paz", 18000), ("otros", 30000)])
    assert table.resolve("Centro", "La Paz") == 10000
    assert table.resolve("", "La Paz") == 18000


def test_only_otros_zone():
    assert resolve_zone_rate({"otros": 17500}, "Ciudad Sin Zona") == 17500


def test_fallback_priority():
    table = ZoneRateTable([("otros", 1000), ("interior", 3000), ("default", 2000)])
    assert table.fallback_zone == "default"
    assert table.resolve("Oruro") == 2000


def test_first_zone_when_no_fallback(caplog):
    table = ZoneRateTable([("La Paz", 12000), ("Cochabamba", 14000)])
    with caplog.at_level(logging.WARNING):
        assert table.resolve("Oruro") == 12000
        assert table.resolve("Potosí") == 12000
    # un solo aviso por tabla
    assert len([r for r in caplog.records if "sin zona de respaldo" in r.message]) == 1


def test_no_zones_uses_constant():
    assert ZoneRateTable([]).resolve("Cualquiera") == DEFAULT_ZONE_RATE
    assert ZoneRateTable([], default_rate=25000).resolve("Cualquiera") == 25000


def test_zone_management(database):
    carrier_id = add_carrier()
    zone = upsert_carrier_zone(STORE, carrier_id, {"zone_name": "default", "rate": 20000})
    assert zone["rate"] == 20000
    assert zone["is_active"] is True

    result = bulk_upsert_carrier_zones(STORE, carrier_id, [
        {"zone_name": "default", "rate": 22000},
        {"zone_name": "La Paz", "rate": 15000},
        {"zone_name": "El Alto", "rate": 18000, "is_active": False},
    ])
    assert result == {"created": 2, "updated": 1}

    zones = {z["zone_name"]: z for z in get_carrier_zones(STORE, carrier_id)}
    assert zones["default"]["rate"] == 22000
    assert zones["El Alto"]["is_active"] is False

    # las zonas inactivas no tarifan
    with get_connection() as con:
        table = load_rate_table(con, STORE, carrier_id)
    assert table.resolve("El Alto") == 22000
    assert table.resolve("la paz") == 15000

    delete_carrier_zone(zones["La Paz"]["id"], STORE)
    assert len(get_carrier_zones(STORE, carrier_id)) == 2
    with pytest.raises(NotFoundError):
        delete_carrier_zone(zones["La Paz"]["id"], STORE)


def test_zone_validation(database):
    carrier_id = add_carrier()
    with pytest.raises(NotFoundError):
        upsert_carrier_zone(STORE, "no-existe", {"zone_name": "default", "rate": 1})
    with pytest.raises(SettlementError):
        upsert_carrier_zone(STORE, carrier_id, {"zone_name": "default", "rate": -5})
    with pytest.raises(SettlementError):
        upsert_carrier_zone(STORE, carrier_id, {"zone_name": " ", "rate": 5})

    # todo o nada
    with pytest.raises(SettlementError):
        bulk_upsert_carrier_zones(STORE, carrier_id, [
            {"zone_name": "default", "rate": 1000},
            {"zone_name": "malo", "rate": "abc"},
        ])
    assert get_carrier_zones(STORE, carrier_id) == []
