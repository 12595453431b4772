import pytest

from rowcol_sync.cdc.catalog import ColumnSpec, RelationCatalog


@pytest.mark.unit
def test_lookup_unknown_relation_returns_none():
    catalog = RelationCatalog()

    assert catalog.lookup(99) is None
    assert 99 not in catalog


@pytest.mark.unit
def test_define_replaces_schema_wholesale():
    catalog = RelationCatalog()
    first = catalog.define(7, "public", "orders", [ColumnSpec("id", 23)])
    second = catalog.define(
        7, "public", "orders", [ColumnSpec("id", 23), ColumnSpec("note", 25)]
    )

    assert catalog.lookup(7) is second
    assert first.column_count == 1
    assert [col.name for col in catalog.lookup(7).columns] == ["id", "note"]
    assert len(catalog) == 1


@pytest.mark.unit
def test_relay_relation_is_flagged_at_definition():
    catalog = RelationCatalog(relay_relation="ddl_queue")
    relay = catalog.define(1, "public", "ddl_queue", [ColumnSpec("id", 20)])
    orders = catalog.define(2, "public", "orders", [ColumnSpec("id", 23)])

    assert relay.is_relay is True
    assert orders.is_relay is False


@pytest.mark.unit
def test_relay_namespace_restricts_match():
    catalog = RelationCatalog(relay_relation="ddl_queue", relay_namespace="rowcol")

    other = catalog.define(1, "public", "ddl_queue", [])
    relay = catalog.define(2, "rowcol", "ddl_queue", [])

    assert other.is_relay is False
    assert relay.is_relay is True
    assert relay.qualified_name == "rowcol.ddl_queue"


@pytest.mark.unit
def test_independent_catalogs_do_not_share_entries():
    first = RelationCatalog()
    second = RelationCatalog()
    first.define(7, "public", "orders", [ColumnSpec("id", 23)])

    assert second.lookup(7) is None
