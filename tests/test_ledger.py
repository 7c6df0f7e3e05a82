"""
Tests for the ledger store and materialized inventory.
"""

from unittest.mock import MagicMock

import pytest

from conftest import ACTOR, InterleavingTables, ledger_row
from stockline.cache import MemoryCache
from stockline.errors import CollaboratorFailure, NotFoundError
from stockline.ledger import LedgerStore, created_record
from stockline.models import (
    COL_ACTOR, COL_QUANTITY, COL_STATUS, COL_VOID_REASON, LEDGER_HEADER, RecordKind, TransactionRecord,
)


class TestMaterializedInventory:
    """Stock is the sum of Valid signed quantities."""

    def test_stock_is_sum_of_valid_rows(self, ledger, seed):
        """Void rows contribute nothing regardless of sign."""
        seed(
            ledger_row("T01", "001", "Widget", 10, "Created"),
            ledger_row("T01", "001", "Widget", 5, "Inbound"),
            ledger_row("T01", "001", "Widget", -3, "Outbound"),
            ledger_row("T01", "001", "Widget", 100, "Inbound", status="Void"),
            ledger_row("T01", "001", "Widget", -50, "Outbound", status="Void"),
        )

        assert ledger.materialized_inventory()["T01001"].stock == 12

    def test_keys_are_separate(self, ledger, seed):
        seed(
            ledger_row("T01", "001", "Widget", 10, "Created"),
            ledger_row("E01", "001", "Cable", 4, "Created", unit="m"),
        )

        inventory = ledger.materialized_inventory()

        assert set(inventory) == {"T01001", "E01001"}
        assert inventory["E01001"].unit == "m"

    def test_descriptive_fields_from_latest_valid_record(self, ledger, seed):
        seed(
            ledger_row("T01", "001", "Widgit", 10, "Created"),
            ledger_row("T01", "001", "Widget", 2, "Inbound"),
        )

        assert ledger.find_material("T01001").name == "Widget"

    def test_numeric_serial_cells_are_padded(self, ledger, seed):
        """Spreadsheets may return serial 1 as a number."""
        seed(ledger_row("T01", 1, "Widget", 10, "Created"))

        assert ledger.find_material("t01 001").stock == 10

    def test_empty_map_when_table_unreachable(self, config):
        tables = MagicMock()
        tables.read_all_rows.side_effect = CollaboratorFailure("down")

        assert LedgerStore(tables, config).materialized_inventory() == {}


class TestCacheCoherence:
    """Writes are visible to the very next read."""

    def test_append_invalidates_cached_view(self, ledger, widget):
        assert ledger.stock_of("T01001") == 3

        ledger.append(TransactionRecord(category="T01", serial="001", name="Widget", unit="pcs",
                                        quantity=4, kind=RecordKind.INBOUND, actor_name=ACTOR))

        assert ledger.stock_of("T01001") == 7

    def test_void_invalidates_cached_view(self, ledger, seed):
        row = seed(
            ledger_row("T01", "001", "Widget", 10, "Created"),
            ledger_row("T01", "001", "Widget", -4, "Outbound"),
        )
        assert ledger.stock_of("T01001") == 6

        assert ledger.void(row, "data error", ACTOR) is True

        assert ledger.stock_of("T01001") == 10

    def test_view_is_cached_between_writes(self, ledger, widget, tables):
        ledger.materialized_inventory()
        tables.append_row("Records", ledger_row("T01", "001", "Widget", 50, "Inbound"))

        # Written behind the ledger's back: not visible until the cache is invalidated
        assert ledger.stock_of("T01001") == 3
        ledger.invalidate_cache()
        assert ledger.stock_of("T01001") == 53

    def test_returned_map_is_a_copy(self, ledger, widget):
        ledger.materialized_inventory().clear()

        assert "T01001" in ledger.materialized_inventory()

    def test_rebuild_overlapping_a_write_is_not_cached(self, config, clock):
        """A write landing while another reader rebuilds must not be hidden by that rebuild."""
        tables = InterleavingTables({"Records": [list(LEDGER_HEADER), ledger_row("T01", "001", "Widget", 3, "Created")]})
        cache = MemoryCache()
        reader = LedgerStore(tables, config, cache=cache, clock=clock)
        writer = LedgerStore(tables, config, cache=cache, clock=clock)
        tables.during_read = lambda: writer.append(TransactionRecord(
            category="T01", serial="001", name="Widget", unit="pcs",
            quantity=-3, kind=RecordKind.OUTBOUND, actor_name=ACTOR))

        # The reader still answers from its own snapshot
        assert reader.materialized_inventory()["T01001"].stock == 3

        assert writer.materialized_inventory()["T01001"].stock == 0
        assert reader.stock_of("T01001") == 0


class TestMemoryCache:

    def test_put_if_generation_stores_when_untouched(self):
        cache = MemoryCache()
        generation = cache.generation("k")

        assert cache.put_if_generation("k", 1, 60, generation) is True
        assert cache.get("k") == 1

    def test_remove_during_rebuild_discards_value(self):
        cache = MemoryCache()
        generation = cache.generation("k")
        cache.remove("k")

        assert cache.put_if_generation("k", "stale", 60, generation) is False
        assert cache.get("k") is None

    def test_clear_during_rebuild_discards_value(self):
        cache = MemoryCache()
        generation = cache.generation("k")
        cache.clear()

        assert cache.put_if_generation("k", "stale", 60, generation) is False

    def test_other_keys_do_not_interfere(self):
        cache = MemoryCache()
        generation = cache.generation("k")
        cache.remove("other")

        assert cache.put_if_generation("k", 1, 60, generation) is True

    def test_entries_expire(self):
        now = [100.0]
        cache = MemoryCache(clock=lambda: now[0])
        cache.put("k", 1, 10)

        now[0] = 110.0

        assert cache.get("k") is None


class TestAppend:

    def test_append_assigns_status_and_timestamp(self, ledger, tables):
        record = created_record("T01", "001", "Widget", "pcs", 10, ACTOR)

        assert ledger.append(record) is True

        row = tables.get_row("Records", 2)
        assert row[8] == "Valid"
        assert row[11] == "2024-03-01 09:00:00"

    def test_append_failure_returns_false(self, config):
        tables = MagicMock()
        tables.append_row.side_effect = CollaboratorFailure("quota exceeded")
        ledger = LedgerStore(tables, config)

        assert ledger.append(created_record("T01", "001", "Widget", "pcs", 1, ACTOR)) is False


class TestVoid:

    def test_void_only_touches_the_target_row(self, ledger, tables, seed):
        seed(ledger_row("T01", "001", "Widget", 10, "Created"))
        target = seed(ledger_row("T01", "001", "Widget", 5, "Inbound"))
        seed(ledger_row("T01", "001", "Widget", -2, "Outbound"))
        before = tables.read_all_rows("Records")

        ledger.void(target, "data error", "Bob")

        after = tables.read_all_rows("Records")
        assert len(after) == len(before)
        for index, row in enumerate(after, start=1):
            if index != target:
                assert row == before[index - 1]
        assert after[target - 1][COL_STATUS - 1] == "Void"
        assert after[target - 1][COL_VOID_REASON - 1] == "data error"
        assert after[target - 1][COL_ACTOR - 1] == "Bob"
        assert after[target - 1][COL_QUANTITY - 1] == 5

    def test_void_missing_row_raises(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.void(99, "data error", ACTOR)

    def test_void_header_row_raises(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.void(1, "data error", ACTOR)


class TestOverwriteCells:

    def test_overwrite_reason_column(self, ledger, tables, widget):
        assert ledger.overwrite_cells(widget, {COL_VOID_REASON: "Corrected fields: name"}) is True

        assert tables.get_row("Records", widget)[COL_VOID_REASON - 1] == "Corrected fields: name"

    @pytest.mark.parametrize("column", [COL_QUANTITY, COL_STATUS])
    def test_protected_columns_refused(self, ledger, widget, column):
        with pytest.raises(ValueError):
            ledger.overwrite_cells(widget, {column: 0})


class TestNextSerial:

    def test_first_serial(self, ledger):
        assert ledger.next_serial("T01") == "001"

    def test_void_serial_is_not_reused(self, ledger, seed):
        seed(
            ledger_row("T01", "001", "Widget", 10, "Created"),
            ledger_row("T01", "002", "Gadget", 1, "Created", status="Void"),
        )

        assert ledger.next_serial("T01") == "003"

    def test_other_categories_ignored(self, ledger, seed):
        seed(
            ledger_row("T01", "001", "Widget", 10, "Created"),
            ledger_row("E01", "007", "Cable", 1, "Created"),
        )

        assert ledger.next_serial("T01") == "002"
        assert ledger.next_serial("E01") == "008"
        assert ledger.next_serial("C01") == "001"

    def test_greater_than_every_valid_serial(self, ledger, seed):
        seed(
            ledger_row("T01", "004", "A", 1, "Created"),
            ledger_row("T01", "002", "B", 1, "Created"),
            ledger_row("T01", "009", "C", 1, "Created"),
        )

        assert ledger.next_serial("T01") == "010"


class TestSearch:

    def test_name_search_ignores_case_and_whitespace(self, ledger, seed):
        seed(
            ledger_row("E01", "001", " LED Strip", 4, "Created"),
            ledger_row("E01", "002", "Cable", 4, "Created"),
        )

        assert [m.key for m in ledger.search_materials("led")] == ["E01001"]
        assert [m.key for m in ledger.search_materials("l e d s")] == ["E01001"]

    def test_empty_query_matches_nothing(self, ledger, widget):
        assert ledger.search_materials("  ") == []

    def test_all_materials_sorted(self, ledger, seed):
        seed(
            ledger_row("T01", "002", "B", 1, "Created"),
            ledger_row("E01", "001", "C", 1, "Created"),
            ledger_row("T01", "001", "A", 1, "Created"),
        )

        assert [m.key for m in ledger.all_materials()] == ["E01001", "T01001", "T01002"]

    def test_material_exists(self, ledger, seed):
        seed(ledger_row("T01", "001", "Widget", 1, "Created", model="W-1"))

        assert ledger.material_exists("Widget", "W-1", "").key == "T01001"
        assert ledger.material_exists("Widget", "", "") is None


class TestRecordsByActor:

    def test_newest_first_including_void(self, ledger, seed):
        seed(
            ledger_row("T01", "001", "Widget", 10, "Created", timestamp="2024-01-01 08:00:00"),
            ledger_row("T01", "001", "Widget", 2, "Inbound", timestamp="2024-01-03 08:00:00", status="Void"),
            ledger_row("T01", "001", "Widget", -1, "Outbound", timestamp="2024-01-02 08:00:00"),
            ledger_row("T01", "001", "Widget", 9, "Inbound", actor="Bob", timestamp="2024-01-04 08:00:00"),
        )

        records = ledger.records_by_actor(ACTOR)

        assert [r.row for r in records] == [3, 4, 2]
        assert not records[0].is_valid

    def test_limit_from_config(self, ledger, seed):
        seed(*[ledger_row("T01", "001", "Widget", 1, "Inbound", timestamp=f"2024-01-{day:02d} 08:00:00")
               for day in range(1, 9)])

        assert len(ledger.records_by_actor(ACTOR)) == 5
        assert len(ledger.records_by_actor(ACTOR, limit=2)) == 2


class TestGetRecord:

    def test_parses_row(self, ledger, widget):
        record = ledger.get_record(widget)

        assert record.key == "T01001"
        assert record.kind is RecordKind.CREATED
        assert record.row == widget

    def test_missing_row(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.get_record(5)
