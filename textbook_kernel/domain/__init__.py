"""Pure domain layer: value objects, state machines and DTOs (no I/O)."""

from textbook_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from textbook_kernel.domain.dispatch import (
    DocumentStatus,
    DispatchLineRequest,
    DispatchPlan,
    PackagingBreakdown,
    PlanLine,
)
from textbook_kernel.domain.hierarchy import Actor, HierarchyNode, Level, NodeRef
from textbook_kernel.domain.policy import FulfillmentPolicy
from textbook_kernel.domain.requisition import ApprovalChain, RequisitionStatus

__all__ = [
    "Actor",
    "ApprovalChain",
    "Clock",
    "DeterministicClock",
    "DispatchLineRequest",
    "DispatchPlan",
    "DocumentStatus",
    "FulfillmentPolicy",
    "HierarchyNode",
    "Level",
    "NodeRef",
    "PackagingBreakdown",
    "PlanLine",
    "RequisitionStatus",
    "SystemClock",
]
