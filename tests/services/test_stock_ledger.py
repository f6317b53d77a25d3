"""
StockLedger tests.

Balances never go negative, corrections only raise a balance, and every
change leaves exactly one movement whose after_quantity matches the row.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from textbook_kernel.domain.stock import StockReason
from textbook_kernel.exceptions import (
    BookNotFoundError,
    InsufficientStockError,
    InvalidQuantityError,
    StockCorrectionError,
)
from textbook_kernel.models.audit_event import AuditEvent
from textbook_kernel.models.stock import StockEntry
from textbook_kernel.selectors.stock_selector import StockSelector

ACTOR = "stock-keeper"


class TestAdjust:

    def test_increment_creates_row(self, stock_ledger, hierarchy, book):
        assert stock_ledger.adjust(hierarchy.state, book.id, 25) == 25
        assert stock_ledger.get(hierarchy.state, book.id) == 25

    def test_increment_defaults_to_receipt(self, session, stock_ledger, hierarchy, book):
        stock_ledger.adjust(hierarchy.west, book.id, 10)
        movements = StockSelector(session).movements(hierarchy.west, book.id)
        assert [m.reason for m in movements] == [StockReason.RECEIPT.value]

    def test_decrement_defaults_to_dispatch(self, session, stock_ledger, hierarchy, book,
                                            deterministic_clock):
        stock_ledger.adjust(hierarchy.state, book.id, 10)
        deterministic_clock.advance(1)
        stock_ledger.adjust(hierarchy.state, book.id, -4, reference="CH-1")
        movements = StockSelector(session).movements(hierarchy.state, book.id)
        assert [(m.reason, m.delta, m.after_quantity) for m in movements] == [
            (StockReason.RECEIPT.value, 10, 10),
            (StockReason.DISPATCH.value, -4, 6),
        ]
        assert movements[-1].reference == "CH-1"

    def test_overdraw_rejected_and_balance_untouched(self, stock_ledger, hierarchy, book):
        stock_ledger.adjust(hierarchy.state, book.id, 10)
        with pytest.raises(InsufficientStockError) as exc_info:
            stock_ledger.adjust(hierarchy.state, book.id, -11)
        assert exc_info.value.available == 10
        assert exc_info.value.requested == 11
        assert stock_ledger.get(hierarchy.state, book.id) == 10

    def test_decrement_without_row(self, session, stock_ledger, hierarchy, book):
        with pytest.raises(InsufficientStockError):
            stock_ledger.adjust(hierarchy.west, book.id, -1)
        assert session.execute(select(StockEntry)).scalars().all() == []

    def test_zero_delta_is_noop(self, session, stock_ledger, hierarchy, book):
        stock_ledger.adjust(hierarchy.state, book.id, 5)
        assert stock_ledger.adjust(hierarchy.state, book.id, 0) == 5
        assert len(StockSelector(session).movements(hierarchy.state, book.id)) == 1

    @pytest.mark.parametrize("delta", [1.5, "3", None])
    def test_non_integer_delta(self, stock_ledger, hierarchy, book, delta):
        with pytest.raises(InvalidQuantityError):
            stock_ledger.adjust(hierarchy.state, book.id, delta)

    def test_unknown_book(self, stock_ledger, hierarchy):
        with pytest.raises(BookNotFoundError):
            stock_ledger.adjust(hierarchy.state, uuid4(), 5)

    def test_balances_are_per_owner(self, stock_ledger, hierarchy, book):
        stock_ledger.adjust(hierarchy.state, book.id, 100)
        stock_ledger.adjust(hierarchy.west, book.id, 7)
        assert stock_ledger.get(hierarchy.state, book.id) == 100
        assert stock_ledger.get(hierarchy.west, book.id) == 7
        assert stock_ledger.get(hierarchy.gomati, book.id) == 0


class TestUpsert:

    def test_first_entry_is_opening(self, session, stock_ledger, hierarchy, book):
        assert stock_ledger.upsert(hierarchy.dhukli, book.id, 30, ACTOR) == 30
        movements = StockSelector(session).movements(hierarchy.dhukli, book.id)
        assert movements[0].reason == StockReason.OPENING.value

    def test_raise_is_correction(self, session, stock_ledger, hierarchy, book, deterministic_clock):
        stock_ledger.upsert(hierarchy.dhukli, book.id, 30, ACTOR)
        deterministic_clock.advance(1)
        stock_ledger.upsert(hierarchy.dhukli, book.id, 45, ACTOR)
        movements = StockSelector(session).movements(hierarchy.dhukli, book.id)
        assert movements[-1].reason == StockReason.CORRECTION.value
        assert movements[-1].delta == 15

    def test_same_value_is_idempotent(self, session, stock_ledger, hierarchy, book):
        stock_ledger.upsert(hierarchy.dhukli, book.id, 30, ACTOR)
        assert stock_ledger.upsert(hierarchy.dhukli, book.id, 30, ACTOR) == 30
        assert len(StockSelector(session).movements(hierarchy.dhukli, book.id)) == 1

    def test_lowering_rejected(self, stock_ledger, hierarchy, book):
        stock_ledger.upsert(hierarchy.dhukli, book.id, 30, ACTOR)
        with pytest.raises(StockCorrectionError) as exc_info:
            stock_ledger.upsert(hierarchy.dhukli, book.id, 29, ACTOR)
        assert exc_info.value.current == 30
        assert stock_ledger.get(hierarchy.dhukli, book.id) == 30

    def test_negative_quantity_rejected(self, stock_ledger, hierarchy, book):
        with pytest.raises(InvalidQuantityError):
            stock_ledger.upsert(hierarchy.dhukli, book.id, -1, ACTOR)

    def test_correction_is_audited(self, session, stock_ledger, hierarchy, book):
        stock_ledger.upsert(hierarchy.dhukli, book.id, 12, ACTOR)
        events = session.execute(
            select(AuditEvent).where(AuditEvent.entity_type == "StockEntry")
        ).scalars().all()
        assert len(events) == 1
        assert events[0].actor_id == ACTOR
        assert events[0].payload["quantity"] == 12


class TestBacklog:

    def test_backlog_adds_to_balance(self, stock_ledger, hierarchy, book):
        stock_ledger.record_backlog(hierarchy.state, book.id, 60, ACTOR)
        assert stock_ledger.record_backlog(hierarchy.state, book.id, 40, ACTOR, reference="count-2") == 100

    @pytest.mark.parametrize("quantity", [0, -5])
    def test_backlog_must_be_positive(self, stock_ledger, hierarchy, book, quantity):
        with pytest.raises(InvalidQuantityError):
            stock_ledger.record_backlog(hierarchy.state, book.id, quantity, ACTOR)


class TestMovementInvariant:

    def test_after_quantity_tracks_balance(self, session, stock_ledger, hierarchy, book,
                                           deterministic_clock):
        for delta in (50, -20, 5, -35):
            stock_ledger.adjust(hierarchy.state, book.id, delta)
            deterministic_clock.advance(1)
        movements = StockSelector(session).movements(hierarchy.state, book.id)
        assert sum(m.delta for m in movements) == stock_ledger.get(hierarchy.state, book.id) == 0
        assert movements[-1].after_quantity == 0

    def test_log_emitted(self, stock_ledger, hierarchy, book, captured_logs):
        stock_ledger.adjust(hierarchy.state, book.id, 8)
        records = [r for r in captured_logs() if r["message"] == "stock_adjusted"]
        assert records
        assert records[-1]["delta"] == 8
