"""
DispatchService tests.

Issuance (stock, pending and route checks, all-or-nothing, idempotent
replays), challan numbering, the document lifecycle and receipt.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from textbook_kernel.domain.dispatch import (
    DispatchLineRequest,
    DocumentStatus,
    PackagingBreakdown,
)
from textbook_kernel.domain.requisition import RequisitionStatus
from textbook_kernel.domain.stock import StockReason
from textbook_kernel.exceptions import (
    DispatchDocumentNotFoundError,
    DocumentNotDeliveredError,
    ExceedsPendingQuantityError,
    InsufficientStockError,
    InvalidDestinationError,
    InvalidTransitionError,
    MissingSelectionError,
    OutOfScopeError,
    PackagingMismatchError,
    RequisitionNotDispatchableError,
    RequisitionNotFoundError,
)
from textbook_kernel.models.requisition import Requisition
from textbook_kernel.selectors.dispatch_selector import DispatchSelector
from textbook_kernel.selectors.requisition_selector import RequisitionSelector
from textbook_kernel.selectors.stock_selector import StockSelector
from textbook_kernel.services.dispatch_service import DispatchService

KEEPER = "state-store"


@pytest.fixture
def dispatch_service(session, policy, deterministic_clock) -> DispatchService:
    return DispatchService(session, policy, deterministic_clock)


def _line(requisition, quantity, packaging=None) -> DispatchLineRequest:
    return DispatchLineRequest(requisition.id, quantity, packaging)


class TestWorkedScenario:

    def test_partial_then_shortage_then_completion(self, session, dispatch_service, stock_ledger,
                                                   approved_requisition, hierarchy,
                                                   state_actor, book):
        requisitions = RequisitionSelector(session)
        documents = DispatchSelector(session)
        stock_ledger.record_backlog(hierarchy.state, book.id, 60, KEEPER)
        r1 = approved_requisition(book.id, 100)
        assert r1.status is RequisitionStatus.APPROVED

        dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 60)])
        assert stock_ledger.get(hierarchy.state, book.id) == 0
        after_first = requisitions.get(r1.id)
        assert after_first.received == 60
        assert after_first.status is RequisitionStatus.APPROVED

        with pytest.raises(InsufficientStockError) as exc_info:
            dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 50)])
        assert exc_info.value.available == 0
        assert requisitions.get(r1.id).received == 60
        assert len(documents.list_all()) == 1

        stock_ledger.record_backlog(hierarchy.state, book.id, 40, KEEPER)
        dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 40)])
        final = requisitions.get(r1.id)
        assert final.received == 100
        assert final.status is RequisitionStatus.COMPLETED
        assert stock_ledger.get(hierarchy.state, book.id) == 0
        assert documents.dispatched_total(r1.id) == 100


class TestIssue:

    def test_document_contents(self, dispatch_service, stock_ledger, approved_requisition,
                               hierarchy, state_actor, book):
        stock_ledger.record_backlog(hierarchy.state, book.id, 500, KEEPER)
        r1 = approved_requisition(book.id, 80)
        document = dispatch_service.issue(
            state_actor, hierarchy.west, [_line(r1, 80)],
            vehicle_no="TR01-A-1234", agency="State Transport",
        )
        assert document.challan_no == "STATE-16/TEXTBOOK/2024/0601/DISTRICT-1601/00001"
        assert document.status is DocumentStatus.GENERATED
        assert document.source == hierarchy.state
        assert document.destination == hierarchy.west
        assert document.academic_year == "2024-25"
        assert document.vehicle_no == "TR01-A-1234"
        assert document.total_quantity == 80
        assert document.requisition_ids == (r1.id,)
        assert document.issued_by == state_actor.actor_id

    def test_challan_sequence_per_issuer_and_day(self, dispatch_service, stock_ledger,
                                                 approved_requisition, hierarchy,
                                                 state_actor, deterministic_clock, book):
        stock_ledger.record_backlog(hierarchy.state, book.id, 500, KEEPER)
        r1 = approved_requisition(book.id, 90)
        first = dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 30)])
        second = dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 20)])
        deterministic_clock.advance(24 * 3600)
        third = dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 10)])
        assert first.challan_no.endswith("/00001")
        assert second.challan_no.endswith("/00002")
        assert third.challan_no == "STATE-16/TEXTBOOK/2024/0602/DISTRICT-1601/00001"

    def test_stock_movement_references_challan(self, session, dispatch_service, stock_ledger,
                                               approved_requisition, hierarchy,
                                               state_actor, book):
        stock_ledger.record_backlog(hierarchy.state, book.id, 50, KEEPER)
        r1 = approved_requisition(book.id, 50)
        document = dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 50)])
        movements = StockSelector(session).movements_for_reference(document.challan_no)
        assert [(m.reason, m.delta, m.after_quantity) for m in movements] == [
            (StockReason.DISPATCH.value, -50, 0),
        ]

    def test_state_may_ship_straight_to_a_block(self, dispatch_service, stock_ledger,
                                                approved_requisition, hierarchy,
                                                state_actor, book):
        stock_ledger.record_backlog(hierarchy.state, book.id, 10, KEEPER)
        r1 = approved_requisition(book.id, 10)
        document = dispatch_service.issue(state_actor, hierarchy.dhukli, [_line(r1, 10)])
        assert document.destination == hierarchy.dhukli

    def test_district_dispatches_from_its_own_stock(self, dispatch_service, stock_ledger,
                                                    approved_requisition, hierarchy,
                                                    district_actor, book):
        stock_ledger.record_backlog(hierarchy.west, book.id, 25, KEEPER)
        r1 = approved_requisition(book.id, 25)
        dispatch_service.issue(district_actor, hierarchy.dhukli, [_line(r1, 25)])
        assert stock_ledger.get(hierarchy.west, book.id) == 0

    def test_multi_line_totals_checked_per_book(self, session, dispatch_service, stock_ledger,
                                                approved_requisition, hierarchy,
                                                state_actor, book):
        stock_ledger.record_backlog(hierarchy.state, book.id, 70, KEEPER)
        r1 = approved_requisition(book.id, 40)
        r2 = approved_requisition(book.id, 40, school=hierarchy.other_school, block=hierarchy.mohanpur)
        with pytest.raises(InsufficientStockError) as exc_info:
            dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 40), _line(r2, 40)])
        assert exc_info.value.requested == 80
        assert stock_ledger.get(hierarchy.state, book.id) == 70
        assert DispatchSelector(session).list_all() == []

    def test_failure_on_one_book_writes_nothing(self, session, dispatch_service, stock_ledger,
                                                approved_requisition, create_book, hierarchy,
                                                state_actor):
        english, science = create_book(subject="English"), create_book(subject="Science")
        stock_ledger.record_backlog(hierarchy.state, english.id, 100, KEEPER)
        stock_ledger.record_backlog(hierarchy.state, science.id, 5, KEEPER)
        r_eng = approved_requisition(english.id, 50)
        r_sci = approved_requisition(science.id, 50)
        with pytest.raises(InsufficientStockError):
            dispatch_service.issue(state_actor, hierarchy.west, [_line(r_eng, 50), _line(r_sci, 50)])
        requisitions = RequisitionSelector(session)
        assert stock_ledger.get(hierarchy.state, english.id) == 100
        assert requisitions.get(r_eng.id).received == 0
        assert requisitions.get(r_sci.id).received == 0
        assert DispatchSelector(session).list_all() == []

    def test_exceeding_pending(self, dispatch_service, stock_ledger, approved_requisition,
                               hierarchy, state_actor, book):
        stock_ledger.record_backlog(hierarchy.state, book.id, 500, KEEPER)
        r1 = approved_requisition(book.id, 40)
        with pytest.raises(ExceedsPendingQuantityError) as exc_info:
            dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 41)])
        assert exc_info.value.pending == 40

    def test_pending_requisition_not_dispatchable(self, dispatch_service, stock_ledger,
                                                  requisition_service, hierarchy,
                                                  school_actor, state_actor, book):
        stock_ledger.record_backlog(hierarchy.state, book.id, 500, KEEPER)
        pending = requisition_service.create(hierarchy.school.code, book.id, 10, school_actor)
        with pytest.raises(RequisitionNotDispatchableError):
            dispatch_service.issue(state_actor, hierarchy.west, [_line(pending, 10)])

    def test_unknown_requisition(self, dispatch_service, hierarchy, state_actor):
        with pytest.raises(RequisitionNotFoundError):
            dispatch_service.issue(state_actor, hierarchy.west, [DispatchLineRequest(uuid4(), 1)])

    def test_empty_lines(self, dispatch_service, hierarchy, state_actor):
        with pytest.raises(MissingSelectionError):
            dispatch_service.issue(state_actor, hierarchy.west, [])


class TestRoutes:

    @pytest.fixture
    def r1(self, stock_ledger, approved_requisition, hierarchy, book):
        stock_ledger.record_backlog(hierarchy.state, book.id, 100, KEEPER)
        stock_ledger.record_backlog(hierarchy.west, book.id, 100, KEEPER)
        return approved_requisition(book.id, 100)

    def test_same_tier_rejected(self, dispatch_service, hierarchy, district_actor, r1):
        with pytest.raises(InvalidDestinationError):
            dispatch_service.issue(district_actor, hierarchy.gomati, [_line(r1, 1)])

    def test_upward_rejected(self, dispatch_service, hierarchy, district_actor, r1):
        with pytest.raises(InvalidDestinationError):
            dispatch_service.issue(district_actor, hierarchy.state, [_line(r1, 1)])

    def test_school_cannot_dispatch(self, dispatch_service, hierarchy, school_actor, r1):
        with pytest.raises(InvalidDestinationError):
            dispatch_service.issue(school_actor, hierarchy.dhukli, [_line(r1, 1)])

    def test_destination_outside_subtree(self, dispatch_service, hierarchy, district_actor, r1):
        with pytest.raises(OutOfScopeError):
            dispatch_service.issue(district_actor, hierarchy.udaipur, [_line(r1, 1)])

    def test_destination_must_contain_school(self, dispatch_service, hierarchy, state_actor, r1):
        with pytest.raises(OutOfScopeError):
            dispatch_service.issue(state_actor, hierarchy.gomati, [_line(r1, 1)])


class TestPackaging:

    @pytest.fixture
    def r1(self, stock_ledger, approved_requisition, hierarchy, book):
        stock_ledger.record_backlog(hierarchy.state, book.id, 200, KEEPER)
        return approved_requisition(book.id, 200)

    def test_matching_breakdown_is_stored(self, dispatch_service, hierarchy, state_actor, r1):
        packaging = PackagingBreakdown(boxes=1, packets=1, loose=5)
        document = dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 55, packaging)])
        assert document.lines[0].packaging == packaging

    def test_mismatch_rejected(self, dispatch_service, stock_ledger, hierarchy, state_actor, r1, book):
        with pytest.raises(PackagingMismatchError):
            dispatch_service.issue(
                state_actor, hierarchy.west, [_line(r1, 45, PackagingBreakdown(boxes=1))],
            )
        assert stock_ledger.get(hierarchy.state, book.id) == 200


class TestIdempotency:

    @pytest.fixture
    def r1(self, stock_ledger, approved_requisition, hierarchy, book):
        stock_ledger.record_backlog(hierarchy.state, book.id, 100, KEEPER)
        return approved_requisition(book.id, 100)

    def test_same_line_set_returns_existing_document(self, session, dispatch_service,
                                                     stock_ledger, hierarchy, state_actor,
                                                     r1, book, captured_logs):
        first = dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 30)])
        again = dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 30)])
        assert again.id == first.id
        assert stock_ledger.get(hierarchy.state, book.id) == 70
        assert RequisitionSelector(session).get(r1.id).received == 30
        assert any(r["message"] == "dispatch_issue_replayed" for r in captured_logs())

    def test_client_token_allows_identical_documents(self, dispatch_service, stock_ledger,
                                                     hierarchy, state_actor, r1, book):
        first = dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 30)], client_token="a")
        second = dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 30)], client_token="b")
        assert first.id != second.id
        assert stock_ledger.get(hierarchy.state, book.id) == 40

    def test_same_lines_on_a_later_day_issue_a_new_document(self, session, dispatch_service,
                                                             stock_ledger, hierarchy, state_actor,
                                                             deterministic_clock, r1, book):
        first = dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 30)])
        deterministic_clock.advance(24 * 3600)
        second = dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 30)])
        assert second.id != first.id
        assert second.challan_no == "STATE-16/TEXTBOOK/2024/0602/DISTRICT-1601/00001"
        assert stock_ledger.get(hierarchy.state, book.id) == 40
        assert RequisitionSelector(session).get(r1.id).received == 60


class TestRejectionAfterPartialDispatch:

    def test_reject_keeps_received_then_reapproval_completes(self, session, dispatch_service,
                                                             stock_ledger, requisition_service,
                                                             approved_requisition, hierarchy,
                                                             state_actor, district_actor, book):
        stock_ledger.record_backlog(hierarchy.state, book.id, 100, KEEPER)
        r1 = approved_requisition(book.id, 100)
        dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 60)])

        rejected = requisition_service.reject(r1.id, district_actor)
        assert rejected.status is RequisitionStatus.REJECTED_BY_DISTRICT
        stored = session.execute(
            select(Requisition.received).where(Requisition.id == r1.id)
        ).scalar_one()
        assert stored == 60

        with pytest.raises(RequisitionNotDispatchableError):
            dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 40)])
        assert stock_ledger.get(hierarchy.state, book.id) == 40

        assert requisition_service.approve(r1.id, district_actor).status is RequisitionStatus.APPROVED
        dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 40)])
        final = RequisitionSelector(session).get(r1.id)
        assert final.received == 100
        assert final.status is RequisitionStatus.COMPLETED


def _deliver(dispatch_service, document, sender, receiver):
    dispatch_service.mark_in_transit(document.id, sender)
    dispatch_service.mark_delivered(document.id, receiver)
    return dispatch_service.record_receipt(document.id, receiver)


class TestForwarding:

    @pytest.fixture
    def r1(self, stock_ledger, approved_requisition, hierarchy, book):
        stock_ledger.record_backlog(hierarchy.state, book.id, 100, KEEPER)
        return approved_requisition(book.id, 100)

    @pytest.fixture
    def at_district(self, dispatch_service, hierarchy, state_actor, district_actor, r1):
        document = dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 60)])
        return _deliver(dispatch_service, document, state_actor, district_actor)

    def test_state_to_school_through_every_tier(self, session, dispatch_service, stock_ledger,
                                                hierarchy, district_actor, block_actor,
                                                school_actor, r1, at_district, book):
        requisitions = RequisitionSelector(session)
        assert stock_ledger.get(hierarchy.west, book.id) == 60

        to_block = dispatch_service.issue(district_actor, hierarchy.dhukli, [_line(r1, 60)])
        assert to_block.lines[0].forwarded_quantity == 60
        assert requisitions.get(r1.id).received == 60
        _deliver(dispatch_service, to_block, district_actor, block_actor)

        to_school = dispatch_service.issue(block_actor, hierarchy.school, [_line(r1, 60)])
        assert to_school.lines[0].counted_quantity == 0
        _deliver(dispatch_service, to_school, block_actor, school_actor)

        assert stock_ledger.get(hierarchy.state, book.id) == 40
        assert stock_ledger.get(hierarchy.west, book.id) == 0
        assert stock_ledger.get(hierarchy.dhukli, book.id) == 0
        assert stock_ledger.get(hierarchy.school, book.id) == 60
        line = requisitions.get(r1.id)
        assert line.received == 60
        assert line.status is RequisitionStatus.APPROVED
        assert DispatchSelector(session).dispatched_total(r1.id) == 60

    def test_forwarding_past_held_copies_counts_the_rest(self, session, dispatch_service,
                                                         stock_ledger, hierarchy, district_actor,
                                                         r1, at_district, book):
        stock_ledger.record_backlog(hierarchy.west, book.id, 25, KEEPER)
        document = dispatch_service.issue(district_actor, hierarchy.dhukli, [_line(r1, 70)])
        assert (document.lines[0].forwarded_quantity, document.lines[0].counted_quantity) == (60, 10)
        assert RequisitionSelector(session).get(r1.id).received == 70
        assert stock_ledger.get(hierarchy.west, book.id) == 15

    def test_held_copies_raise_the_line_limit(self, dispatch_service, stock_ledger, hierarchy,
                                              district_actor, r1, at_district, book):
        stock_ledger.record_backlog(hierarchy.west, book.id, 100, KEEPER)
        with pytest.raises(ExceedsPendingQuantityError) as exc_info:
            dispatch_service.issue(district_actor, hierarchy.dhukli, [_line(r1, 101)])
        assert exc_info.value.pending == 100
        assert stock_ledger.get(hierarchy.west, book.id) == 160

    def test_completed_line_can_still_be_forwarded(self, session, dispatch_service, hierarchy,
                                                   state_actor, district_actor, r1):
        document = dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 100)])
        _deliver(dispatch_service, document, state_actor, district_actor)
        assert RequisitionSelector(session).get(r1.id).status is RequisitionStatus.COMPLETED
        onward = dispatch_service.issue(district_actor, hierarchy.dhukli, [_line(r1, 100)])
        assert onward.lines[0].forwarded_quantity == 100

    def test_rejected_line_forwards_only_held_copies(self, dispatch_service, stock_ledger,
                                                     requisition_service, hierarchy,
                                                     district_actor, r1, at_district, book):
        stock_ledger.record_backlog(hierarchy.west, book.id, 10, KEEPER)
        requisition_service.reject(r1.id, district_actor)
        with pytest.raises(RequisitionNotDispatchableError):
            dispatch_service.issue(district_actor, hierarchy.dhukli, [_line(r1, 61)])
        onward = dispatch_service.issue(district_actor, hierarchy.dhukli, [_line(r1, 60)])
        assert onward.total_quantity == 60
        assert stock_ledger.get(hierarchy.west, book.id) == 10

    def test_held_copies_are_used_up(self, dispatch_service, stock_ledger, hierarchy,
                                     district_actor, r1, at_district, book):
        stock_ledger.record_backlog(hierarchy.west, book.id, 100, KEEPER)
        first = dispatch_service.issue(district_actor, hierarchy.dhukli, [_line(r1, 50)])
        second = dispatch_service.issue(district_actor, hierarchy.dhukli, [_line(r1, 20)])
        assert first.lines[0].forwarded_quantity == 50
        assert (second.lines[0].forwarded_quantity, second.lines[0].counted_quantity) == (10, 10)

    def test_cancelled_forward_returns_the_copies(self, dispatch_service, stock_ledger,
                                                  hierarchy, district_actor, r1,
                                                  at_district, book):
        onward = dispatch_service.issue(district_actor, hierarchy.dhukli, [_line(r1, 60)])
        dispatch_service.cancel(onward.id, district_actor)
        assert stock_ledger.get(hierarchy.west, book.id) == 60
        again = dispatch_service.issue(district_actor, hierarchy.dhukli, [_line(r1, 60)])
        assert again.id != onward.id
        assert again.lines[0].forwarded_quantity == 60

    def test_plan_offers_held_copies(self, dispatch_service, hierarchy, r1, at_district):
        plan = dispatch_service.plan(hierarchy.west, [r1.id])
        line = plan.line_for(r1.id)
        assert (line.original_pending, line.forwardable, line.available_stock) == (40, 60, 60)
        assert line.dispatch_quantity == 60
        assert line.remaining_after_dispatch == 40


class TestPlan:

    def test_plan_caps_by_stock_then_issues(self, session, dispatch_service, stock_ledger,
                                            approved_requisition, hierarchy, state_actor, book):
        stock_ledger.record_backlog(hierarchy.state, book.id, 70, KEEPER)
        r1 = approved_requisition(book.id, 50)
        r2 = approved_requisition(book.id, 50, school=hierarchy.other_school, block=hierarchy.mohanpur)
        plan = dispatch_service.plan(hierarchy.state, [r1.id, r2.id])
        assert [line.dispatch_quantity for line in plan.lines] == [50, 20]
        assert plan.shortfalls() == {}

        plan = plan.with_quantity(r1.id, 45)
        document = dispatch_service.issue_plan(state_actor, hierarchy.west, plan)
        assert document.total_quantity == 65
        assert stock_ledger.get(hierarchy.state, book.id) == 5

    def test_plan_from_another_node_rejected(self, dispatch_service, stock_ledger,
                                             approved_requisition, hierarchy,
                                             district_actor, book):
        r1 = approved_requisition(book.id, 5)
        plan = dispatch_service.plan(hierarchy.state, [r1.id])
        with pytest.raises(InvalidDestinationError):
            dispatch_service.issue_plan(district_actor, hierarchy.dhukli, plan)

    def test_plan_requires_approved(self, dispatch_service, requisition_service, hierarchy,
                                    school_actor, book):
        pending = requisition_service.create(hierarchy.school.code, book.id, 10, school_actor)
        with pytest.raises(RequisitionNotDispatchableError):
            dispatch_service.plan(hierarchy.state, [pending.id])


class TestLifecycle:

    @pytest.fixture
    def document(self, dispatch_service, stock_ledger, approved_requisition, hierarchy,
                 state_actor, book):
        stock_ledger.record_backlog(hierarchy.state, book.id, 100, KEEPER)
        r1 = approved_requisition(book.id, 100)
        return dispatch_service.issue(state_actor, hierarchy.west, [_line(r1, 60)])

    def test_transit_delivery_and_receipt(self, dispatch_service, stock_ledger, hierarchy,
                                          state_actor, district_actor, document, book):
        assert dispatch_service.mark_in_transit(document.id, state_actor).status is DocumentStatus.IN_TRANSIT
        delivered = dispatch_service.mark_delivered(document.challan_no, district_actor)
        assert delivered.status is DocumentStatus.DELIVERED

        received = dispatch_service.record_receipt(document.id, district_actor)
        assert received.receipt_recorded_at is not None
        assert stock_ledger.get(hierarchy.west, book.id) == 60

        dispatch_service.record_receipt(document.id, district_actor)
        assert stock_ledger.get(hierarchy.west, book.id) == 60

    def test_repeat_transition_is_noop(self, dispatch_service, state_actor, document):
        dispatch_service.mark_in_transit(document.id, state_actor)
        assert dispatch_service.mark_in_transit(document.id, state_actor).status is DocumentStatus.IN_TRANSIT

    def test_cannot_deliver_before_transit(self, dispatch_service, district_actor, document):
        with pytest.raises(InvalidTransitionError):
            dispatch_service.mark_delivered(document.id, district_actor)

    def test_receipt_requires_delivery(self, dispatch_service, district_actor, document):
        with pytest.raises(DocumentNotDeliveredError):
            dispatch_service.record_receipt(document.id, district_actor)

    def test_cancel_restocks_source_and_keeps_received(self, session, dispatch_service,
                                                       stock_ledger, hierarchy, state_actor,
                                                       district_actor, document, book):
        cancelled = dispatch_service.cancel(document.id, state_actor)
        assert cancelled.status is DocumentStatus.CANCELLED
        assert stock_ledger.get(hierarchy.state, book.id) == 100
        movements = StockSelector(session).movements_for_reference(document.challan_no)
        assert sorted((m.reason, m.delta) for m in movements) == [
            (StockReason.CANCELLATION.value, 60),
            (StockReason.DISPATCH.value, -60),
        ]
        requisition_id = document.requisition_ids[0]
        assert RequisitionSelector(session).get(requisition_id).received == 60
        with pytest.raises(DocumentNotDeliveredError):
            dispatch_service.record_receipt(document.id, district_actor)
        with pytest.raises(InvalidTransitionError):
            dispatch_service.mark_in_transit(document.id, state_actor)

    def test_repeat_cancel_restocks_once(self, dispatch_service, stock_ledger, hierarchy,
                                         state_actor, document, book):
        dispatch_service.cancel(document.id, state_actor)
        dispatch_service.cancel(document.challan_no, state_actor)
        assert stock_ledger.get(hierarchy.state, book.id) == 100

    def test_cancelled_copies_are_not_counted_again(self, session, dispatch_service,
                                                    stock_ledger, hierarchy, state_actor,
                                                    document, book):
        dispatch_service.cancel(document.id, state_actor)
        requisition_id = document.requisition_ids[0]
        resent = dispatch_service.issue(
            state_actor, hierarchy.west, [DispatchLineRequest(requisition_id, 100)],
        )
        assert resent.lines[0].forwarded_quantity == 60
        assert resent.lines[0].counted_quantity == 40
        line = RequisitionSelector(session).get(requisition_id)
        assert line.received == 100
        assert line.status is RequisitionStatus.COMPLETED
        assert stock_ledger.get(hierarchy.state, book.id) == 0

    def test_district_cannot_move_state_document(self, dispatch_service, district_actor, document):
        with pytest.raises(OutOfScopeError):
            dispatch_service.mark_in_transit(document.id, district_actor)

    def test_other_district_cannot_receive(self, dispatch_service, hierarchy, state_actor,
                                           district_actor, document):
        dispatch_service.mark_in_transit(document.id, state_actor)
        dispatch_service.mark_delivered(document.id, district_actor)
        with pytest.raises(OutOfScopeError):
            dispatch_service.record_receipt(document.id, hierarchy.actor(hierarchy.gomati))

    def test_unknown_document(self, dispatch_service, state_actor):
        with pytest.raises(DispatchDocumentNotFoundError):
            dispatch_service.mark_in_transit("STATE-16/NOPE", state_actor)
