"""
Tests for the edit flow.
"""

import pytest

from conftest import ACTOR, USER_ID, ledger_row, reply_text
from stockline.flows.edit import changed_fields
from stockline.models import COL_ACTOR, COL_STATUS, COL_VOID_REASON, RecordKind, TransactionRecord
from stockline.sessions import FlowState


@pytest.fixture
def outbound_row(seed):
    """Created 15 then Outbound -5: stock 10, returns the Outbound row."""
    seed(ledger_row("T01", "001", "Widget", 15, "Created"))
    return seed(ledger_row("T01", "001", "Widget", -5, "Outbound"))


def cell(tables, row, column):
    return tables.get_row("Records", row)[column - 1]


class TestEditStockMovement:

    def test_outbound_correction_within_stock_after_void(self, say, sessions, tables, ledger, outbound_row):
        """Original -5 with stock 10: 15 available after voiding, so 12 is accepted."""
        say(postback=f"edit_start&type=stock&row={outbound_row}")
        assert sessions.get(USER_ID).state is FlowState.EDIT_STOCK_AWAITING_CHOICE

        say(postback="edit_stock_choice=quantity")
        assert sessions.get(USER_ID).state is FlowState.EDIT_STOCK_AWAITING_QUANTITY
        say("12")
        assert sessions.get(USER_ID).state is FlowState.EDIT_STOCK_AWAITING_CHOICE

        messages = say(postback="edit_stock_choice=finish")

        assert "Record updated" in reply_text(messages)
        assert sessions.get(USER_ID) is None
        assert cell(tables, outbound_row, COL_STATUS) == "Void"
        assert cell(tables, outbound_row, COL_VOID_REASON) == "Corrected fields: quantity"
        assert cell(tables, outbound_row, COL_ACTOR) == ACTOR
        new_row = tables.read_all_rows("Records")[-1]
        assert (new_row[6], new_row[7], new_row[8]) == (-12, "Outbound", "Valid")
        assert ledger.stock_of("T01001") == 3

    def test_outbound_correction_above_stock_after_void_loops_back(self, say, sessions, tables, outbound_row):
        """Corrected 16 exceeds the 15 available: rejected, still in the choice menu."""
        say(postback=f"edit_start&type=stock&row={outbound_row}")
        say(postback="edit_stock_choice=quantity")
        say("16")

        messages = say(postback="edit_stock_choice=finish")

        assert "Not enough stock" in reply_text(messages)
        assert "Current stock: 15 pcs" in reply_text(messages)
        assert sessions.get(USER_ID).state is FlowState.EDIT_STOCK_AWAITING_CHOICE
        assert cell(tables, outbound_row, COL_STATUS) == "Valid"
        assert len(tables.read_all_rows("Records")) == 3

    def test_change_type_inbound_to_outbound(self, say, tables, ledger, seed):
        seed(ledger_row("T01", "001", "Widget", 10, "Created"))
        inbound = seed(ledger_row("T01", "001", "Widget", 5, "Inbound"))

        say(postback=f"edit_start&type=stock&row={inbound}")
        say(postback="edit_stock_choice=type")
        say(postback="edit_type=outbound")
        say(postback="edit_stock_choice=finish")

        new_row = tables.read_all_rows("Records")[-1]
        assert (new_row[6], new_row[7]) == (-5, "Outbound")
        assert cell(tables, inbound, COL_VOID_REASON) == "Corrected fields: type"
        assert ledger.stock_of("T01001") == 5

    def test_bad_quantity_reprompts(self, say, sessions, outbound_row):
        say(postback=f"edit_start&type=stock&row={outbound_row}")
        say(postback="edit_stock_choice=quantity")

        messages = say("zero")

        assert sessions.get(USER_ID).state is FlowState.EDIT_STOCK_AWAITING_QUANTITY
        assert "positive whole number" in reply_text(messages)


class TestEditNewItem:

    def test_rename_and_change_unit(self, say, sessions, tables, ledger, seed):
        created = seed(ledger_row("T01", "001", "Widgit", 3, "Created"))

        say(postback=f"edit_start&type=new&row={created}")
        assert sessions.get(USER_ID).state is FlowState.EDIT_NEW_AWAITING_CHOICE
        say(postback="edit_field=name")
        assert sessions.get(USER_ID).state is FlowState.EDIT_NEW_AWAITING_NEW_VALUE
        say("Widget")
        say(postback="edit_field=unit")
        assert sessions.get(USER_ID).state is FlowState.EDIT_NEW_AWAITING_UNIT_CHOICE
        say(postback="edit_unit=box")
        say(postback="edit_field=finish")

        assert cell(tables, created, COL_STATUS) == "Void"
        assert cell(tables, created, COL_VOID_REASON) == "Corrected fields: name, unit"
        material = ledger.find_material("T01001")
        assert (material.name, material.unit, material.stock) == ("Widget", "box", 3)

    def test_manual_unit(self, say, sessions, seed):
        created = seed(ledger_row("T01", "001", "Widget", 3, "Created"))
        say(postback=f"edit_start&type=new&row={created}")
        say(postback="edit_field=unit")

        say(postback="edit_unit=_manual")
        assert sessions.get(USER_ID).state is FlowState.EDIT_NEW_AWAITING_MANUAL_UNIT
        say("crate")

        session = sessions.get(USER_ID)
        assert session.state is FlowState.EDIT_NEW_AWAITING_CHOICE
        assert session.draft.corrected.unit == "crate"

    def test_no_change_reason(self, say, tables, seed):
        created = seed(ledger_row("T01", "001", "Widget", 3, "Created"))
        say(postback=f"edit_start&type=new&row={created}")

        say(postback="edit_field=finish")

        assert cell(tables, created, COL_VOID_REASON) == "Edited by user (no content changed)"
        assert tables.read_all_rows("Records")[-1][2] == "Widget"

    def test_created_quantity_correction(self, say, ledger, seed):
        created = seed(ledger_row("T01", "001", "Widget", 3, "Created"))
        say(postback=f"edit_start&type=new&row={created}")
        say(postback="edit_field=quantity")
        say("30")
        say(postback="edit_field=finish")

        assert ledger.stock_of("T01001") == 30

    def test_text_in_menu_reshows_menu(self, say, sessions, seed):
        created = seed(ledger_row("T01", "001", "Widget", 3, "Created"))
        say(postback=f"edit_start&type=new&row={created}")

        messages = say("what?")

        assert sessions.get(USER_ID).state is FlowState.EDIT_NEW_AWAITING_CHOICE
        assert "What would you like to change?" in reply_text(messages)


class TestEditEntry:

    def test_void_record_not_editable(self, say, sessions, seed):
        row = seed(ledger_row("T01", "001", "Widget", 3, "Created", status="Void"))

        messages = say(postback=f"edit_start&type=new&row={row}")

        assert "no longer exists" in reply_text(messages)
        assert sessions.get(USER_ID) is None

    def test_sub_type_must_match_record(self, say, outbound_row):
        messages = say(postback=f"edit_start&type=new&row={outbound_row}")

        assert "no longer exists" in reply_text(messages)

    @pytest.mark.parametrize("row", ["99", "1", "abc", ""])
    def test_bad_rows(self, say, row):
        messages = say(postback=f"edit_start&type=stock&row={row}")

        assert "no longer exists" in reply_text(messages)

    def test_record_voided_meanwhile(self, say, ledger, sessions, outbound_row):
        say(postback=f"edit_start&type=stock&row={outbound_row}")
        ledger.void(outbound_row, "data error", "Bob")

        messages = say(postback="edit_stock_choice=finish")

        assert "no longer exists" in reply_text(messages)
        assert sessions.get(USER_ID) is None


class TestChangedFields:

    def test_quantity_compared_by_magnitude(self):
        original = TransactionRecord(category="T01", serial="001", name="W", unit="pcs",
                                     quantity=-5, kind=RecordKind.OUTBOUND)

        assert changed_fields(original, original.copy(quantity=5)) == []
        assert changed_fields(original, original.copy(quantity=-6, unit="box")) == ["unit", "quantity"]
