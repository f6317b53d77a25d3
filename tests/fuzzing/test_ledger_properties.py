"""
Property tests for the stock ledger and dispatch arithmetic.

Random sequences of stock changes and dispatches must never drive a
balance negative, never push received past quantity, and always leave the
movement journal consistent with the balance.
"""

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from textbook_kernel.domain.dispatch import DispatchLineRequest
from textbook_kernel.domain.requisition import RequisitionStatus
from textbook_kernel.exceptions import (
    ExceedsPendingQuantityError,
    InsufficientStockError,
    RequisitionNotDispatchableError,
)
from textbook_kernel.selectors.requisition_selector import RequisitionSelector
from textbook_kernel.selectors.stock_selector import StockSelector
from textbook_kernel.services.dispatch_service import DispatchService

FIXTURE_SETTINGS = settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)


class TestLedgerProperties:

    @FIXTURE_SETTINGS
    @given(deltas=st.lists(st.integers(min_value=-50, max_value=50), min_size=1, max_size=20))
    def test_balance_never_negative(self, session, stock_ledger, hierarchy, create_book,
                                    deterministic_clock, deltas):
        book = create_book()
        expected = 0
        for delta in deltas:
            deterministic_clock.advance(1)
            if expected + delta < 0:
                with pytest.raises(InsufficientStockError):
                    stock_ledger.adjust(hierarchy.state, book.id, delta)
                continue
            expected = stock_ledger.adjust(hierarchy.state, book.id, delta)

        assert stock_ledger.get(hierarchy.state, book.id) == expected >= 0
        movements = StockSelector(session).movements(hierarchy.state, book.id)
        assert sum(m.delta for m in movements) == expected
        assert all(m.after_quantity >= 0 for m in movements)
        if movements:
            assert movements[-1].after_quantity == expected


class TestDispatchProperties:

    @FIXTURE_SETTINGS
    @given(
        stock=st.integers(min_value=0, max_value=200),
        quantity=st.integers(min_value=1, max_value=150),
        attempts=st.lists(st.integers(min_value=1, max_value=80), min_size=1, max_size=8),
    )
    def test_received_tracks_dispatches(self, session, policy, deterministic_clock, stock_ledger,
                                        hierarchy, create_book, approved_requisition,
                                        state_actor, stock, quantity, attempts):
        book = create_book()
        if stock:
            stock_ledger.record_backlog(hierarchy.state, book.id, stock, "store")
        line = approved_requisition(book.id, quantity)
        dispatch = DispatchService(session, policy, deterministic_clock)

        shipped = 0
        for n, amount in enumerate(attempts):
            try:
                dispatch.issue(
                    state_actor, hierarchy.west, [DispatchLineRequest(line.id, amount)],
                    client_token=f"{book.id}-{n}",
                )
            except (
                InsufficientStockError,
                ExceedsPendingQuantityError,
                RequisitionNotDispatchableError,
            ):
                continue
            shipped += amount

        current = RequisitionSelector(session).get(line.id)
        assert current.received == shipped <= quantity
        assert stock_ledger.get(hierarchy.state, book.id) == stock - shipped
        expected_status = (
            RequisitionStatus.COMPLETED if shipped == quantity else RequisitionStatus.APPROVED
        )
        assert current.status is expected_status
