"""
HierarchySelector -- lookups over the state/district/block/school graph.

Every containment question in the kernel ("is this school inside the
actor's block?", "may this district dispatch to that block?") is answered
here from codes, never from display names.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from textbook_kernel.domain.dtos import SchoolInfo
from textbook_kernel.domain.hierarchy import SCHOOL_LEVELS, HierarchyNode, Level, NodeRef
from textbook_kernel.domain.policy import FulfillmentPolicy
from textbook_kernel.exceptions import NodeNotFoundError, OutOfScopeError
from textbook_kernel.models.hierarchy import Block, ClassEnrollment, District, School
from textbook_kernel.selectors.base import BaseSelector


class HierarchySelector(BaseSelector[School]):

    def __init__(self, session: Session, policy: FulfillmentPolicy):
        super().__init__(session)
        self._policy = policy

    # Listings

    def list_districts(self) -> list[HierarchyNode]:
        state = self._policy.state_node
        rows = self.session.execute(select(District).order_by(District.code)).scalars()
        return [
            HierarchyNode(NodeRef(Level.DISTRICT, d.code), d.name, state)
            for d in rows
        ]

    def list_blocks(self, district_code: str | None = None) -> list[HierarchyNode]:
        stmt = select(Block).order_by(Block.code)
        if district_code is not None:
            stmt = stmt.where(Block.district_code == district_code)
        return [
            HierarchyNode(
                NodeRef(Level.BLOCK, b.code), b.name,
                NodeRef(Level.DISTRICT, b.district_code),
            )
            for b in self.session.execute(stmt).scalars()
        ]

    def list_schools(
        self,
        district_code: str | None = None,
        block_code: str | None = None,
        is_private: bool | None = None,
    ) -> list[SchoolInfo]:
        stmt = select(School).order_by(School.udise)
        if district_code is not None:
            stmt = stmt.where(School.district_code == district_code)
        if block_code is not None:
            stmt = stmt.where(School.block_code == block_code)
        if is_private is not None:
            stmt = stmt.where(School.is_private == is_private)
        return [SchoolInfo.from_model(s) for s in self.session.execute(stmt).scalars()]

    def get_school(self, udise: str) -> SchoolInfo:
        school = self.session.execute(
            select(School).where(School.udise == udise)
        ).scalar_one_or_none()
        if school is None:
            raise NodeNotFoundError(Level.SCHOOL.value, udise)
        return SchoolInfo.from_model(school)

    def enrollment(self, udise: str) -> dict[str, int]:
        """Students per class at one school."""
        rows = self.session.execute(
            select(ClassEnrollment.class_name, ClassEnrollment.students)
            .where(ClassEnrollment.school_udise == udise)
            .order_by(ClassEnrollment.class_name)
        ).all()
        return {class_name: students for class_name, students in rows}

    def total_enrollment(self, scope: NodeRef | None = None) -> int:
        stmt = select(func.coalesce(func.sum(ClassEnrollment.students), 0)).join(
            School, School.udise == ClassEnrollment.school_udise,
        )
        stmt = self._filter_schools(stmt, scope)
        return int(self.session.execute(stmt).scalar_one())

    def _filter_schools(self, stmt, scope: NodeRef | None):
        if scope is None or scope.level is Level.STATE:
            return stmt
        if scope.level is Level.DISTRICT:
            return stmt.where(School.district_code == scope.code)
        if scope.level is Level.BLOCK:
            return stmt.where(School.block_code == scope.code)
        return stmt.where(School.udise == scope.code)

    # Resolution and containment

    def resolve(self, ref: NodeRef) -> HierarchyNode:
        """
        Look up a node and its parent.

        Raises:
            NodeNotFoundError: no such node, or a school resolved at the
                wrong school level (private vs government).
        """
        if ref.level is Level.STATE:
            if ref.code != self._policy.state_code:
                raise NodeNotFoundError(ref.level.value, ref.code)
            return HierarchyNode(ref, self._policy.state_name, None)

        if ref.level is Level.DISTRICT:
            district = self.session.execute(
                select(District).where(District.code == ref.code)
            ).scalar_one_or_none()
            if district is None:
                raise NodeNotFoundError(ref.level.value, ref.code)
            return HierarchyNode(ref, district.name, self._policy.state_node)

        if ref.level is Level.BLOCK:
            block = self.session.execute(
                select(Block).where(Block.code == ref.code)
            ).scalar_one_or_none()
            if block is None:
                raise NodeNotFoundError(ref.level.value, ref.code)
            return HierarchyNode(ref, block.name, NodeRef(Level.DISTRICT, block.district_code))

        school = self.session.execute(
            select(School).where(School.udise == ref.code)
        ).scalar_one_or_none()
        if school is None or (Level.PRIVATE_SCHOOL if school.is_private else Level.SCHOOL) is not ref.level:
            raise NodeNotFoundError(ref.level.value, ref.code)
        return HierarchyNode(ref, school.name, NodeRef(Level.BLOCK, school.block_code))

    def ancestors(self, ref: NodeRef) -> list[NodeRef]:
        """Parent first, ending at STATE."""
        result: list[NodeRef] = []
        node = self.resolve(ref)
        while node.parent is not None:
            result.append(node.parent)
            node = self.resolve(node.parent)
        return result

    def contains(self, ancestor: NodeRef, node: NodeRef) -> bool:
        """True if ``node`` is ``ancestor`` or lies beneath it."""
        if ancestor == node:
            self.resolve(node)
            return True
        if ancestor.level in SCHOOL_LEVELS or not ancestor.level.is_above(node.level):
            return False
        return ancestor in self.ancestors(node)

    def require_within(self, node: NodeRef, scope: NodeRef) -> None:
        """
        Raises:
            OutOfScopeError: ``node`` is not inside ``scope``.
        """
        if not self.contains(scope, node):
            raise OutOfScopeError(str(node), str(scope))
