"""
Concurrent writers against committed data.

Each worker goes through TextbookKernel, so every call is its own unit of
work on its own connection.  A Barrier releases the workers together.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from textbook_kernel.domain.dispatch import DispatchLineRequest
from textbook_kernel.domain.requisition import RequisitionStatus
from textbook_kernel.exceptions import InsufficientStockError, NotCurrentApproverError

pytestmark = pytest.mark.slow_locks

WORKERS = 10


def _run_together(worker, count=WORKERS):
    barrier = threading.Barrier(count)

    def _wrapped(index):
        barrier.wait(timeout=30)
        try:
            return ("ok", worker(index))
        except Exception as exc:
            return ("error", exc)

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(_wrapped, range(count)))


@pytest.fixture
def committed_book(kernel, committed_hierarchy):
    return kernel.register_book(
        "Mathematics Part I", "Class 6", "Mathematics", "English Medium", "45.00", "admin",
    )


def _approved(kernel, hierarchy, book_id, quantity):
    line = kernel.create_requisition(
        hierarchy.school.code, book_id, quantity, hierarchy.actor(hierarchy.school),
    )
    kernel.approve_requisition(line.id, hierarchy.actor(hierarchy.dhukli))
    return kernel.approve_requisition(line.id, hierarchy.actor(hierarchy.west))


class TestConcurrentDispatch:

    def test_stock_is_never_oversold(self, kernel, committed_hierarchy, committed_book):
        hierarchy = committed_hierarchy
        kernel.record_backlog(hierarchy.state, committed_book.id, 100, "store")
        lines = [_approved(kernel, hierarchy, committed_book.id, 20) for _ in range(WORKERS)]
        state = hierarchy.actor(hierarchy.state)

        results = _run_together(
            lambda i: kernel.issue_dispatch(
                state, hierarchy.west, [DispatchLineRequest(lines[i].id, 20)],
            )
        )

        succeeded = [value for outcome, value in results if outcome == "ok"]
        failed = [value for outcome, value in results if outcome == "error"]
        assert len(succeeded) == 5
        assert all(isinstance(exc, InsufficientStockError) for exc in failed)
        assert kernel.get_stock(hierarchy.state, committed_book.id) == 0
        received = sum(kernel.get_requisition(line.id).received for line in lines)
        assert received == 100
        assert len({doc.challan_no for doc in succeeded}) == 5

    def test_same_request_issued_once(self, kernel, committed_hierarchy, committed_book):
        hierarchy = committed_hierarchy
        kernel.record_backlog(hierarchy.state, committed_book.id, 500, "store")
        line = _approved(kernel, hierarchy, committed_book.id, 50)
        state = hierarchy.actor(hierarchy.state)

        results = _run_together(
            lambda i: kernel.issue_dispatch(state, hierarchy.west, [DispatchLineRequest(line.id, 50)]),
            count=4,
        )

        documents = {value.id for outcome, value in results if outcome == "ok"}
        assert len(documents) == 1
        assert kernel.get_stock(hierarchy.state, committed_book.id) == 450
        assert kernel.get_requisition(line.id).status is RequisitionStatus.COMPLETED


class TestConcurrentRequisitions:

    def test_req_ids_are_unique(self, kernel, committed_hierarchy, committed_book):
        hierarchy = committed_hierarchy
        school = hierarchy.actor(hierarchy.school)

        results = _run_together(
            lambda i: kernel.create_requisition(hierarchy.school.code, committed_book.id, i + 1, school)
        )

        assert all(outcome == "ok" for outcome, _ in results)
        req_ids = {value.req_id for _, value in results}
        assert req_ids == {f"REQ{n:04d}" for n in range(1, WORKERS + 1)}

    def test_one_approval_wins(self, kernel, committed_hierarchy, committed_book):
        hierarchy = committed_hierarchy
        line = kernel.create_requisition(
            hierarchy.school.code, committed_book.id, 10, hierarchy.actor(hierarchy.school),
        )
        block = hierarchy.actor(hierarchy.dhukli)

        results = _run_together(lambda i: kernel.approve_requisition(line.id, block), count=4)

        outcomes = [outcome for outcome, _ in results]
        assert outcomes.count("ok") == 1
        assert all(
            isinstance(value, NotCurrentApproverError)
            for outcome, value in results if outcome == "error"
        )
        assert len(kernel.audit_history("Requisition", line.id)) == 2
