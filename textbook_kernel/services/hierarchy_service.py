"""
HierarchyService -- registration of districts, blocks, schools and class
enrollment.

Responsibility:
    Write side of the hierarchy graph.  Registrations are idempotent
    upserts keyed by code: re-registering an existing code updates its
    display name but never re-parents it.

Architecture position:
    Kernel > Services.  Reads go through HierarchySelector.

Failure modes:
    - NodeNotFoundError when the parent district/block does not exist.
    - ValidationError when a code is re-registered under a different parent.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from textbook_kernel.db.types import is_non_negative_quantity
from textbook_kernel.domain.clock import Clock
from textbook_kernel.domain.dtos import SchoolInfo
from textbook_kernel.domain.hierarchy import HierarchyNode, Level, NodeRef
from textbook_kernel.domain.policy import FulfillmentPolicy
from textbook_kernel.exceptions import (
    InvalidQuantityError,
    MissingSelectionError,
    NodeNotFoundError,
    ValidationError,
)
from textbook_kernel.logging_config import get_logger
from textbook_kernel.models.hierarchy import Block, ClassEnrollment, District, School
from textbook_kernel.selectors.hierarchy_selector import HierarchySelector
from textbook_kernel.services.base import BaseService

logger = get_logger("services.hierarchy")


def _require(value: str | None, field: str) -> str:
    if value is None or not str(value).strip():
        raise MissingSelectionError(field)
    return str(value).strip()


class HierarchyService(BaseService[School]):

    def __init__(self, session: Session, policy: FulfillmentPolicy, clock: Clock | None = None):
        super().__init__(session, clock)
        self._policy = policy
        self.selector = HierarchySelector(session, policy)

    def register_district(self, code: str, name: str) -> HierarchyNode:
        code, name = _require(code, "district_code"), _require(name, "district_name")
        district = self.session.execute(
            select(District).where(District.code == code)
        ).scalar_one_or_none()
        if district is None:
            district = District(code=code, name=name)
            self.session.add(district)
            logger.info("district_registered", extra={"district_code": code})
        else:
            district.name = name
        self.session.flush()
        return HierarchyNode(NodeRef(Level.DISTRICT, code), name, self._policy.state_node)

    def register_block(self, code: str, name: str, district_code: str) -> HierarchyNode:
        code, name = _require(code, "block_code"), _require(name, "block_name")
        district_code = _require(district_code, "district_code")
        self.selector.resolve(NodeRef(Level.DISTRICT, district_code))

        block = self.session.execute(
            select(Block).where(Block.code == code)
        ).scalar_one_or_none()
        if block is None:
            block = Block(code=code, name=name, district_code=district_code)
            self.session.add(block)
            logger.info(
                "block_registered",
                extra={"block_code": code, "district_code": district_code},
            )
        elif block.district_code != district_code:
            raise ValidationError(
                f"Block {code} belongs to district {block.district_code}, not {district_code}"
            )
        else:
            block.name = name
        self.session.flush()
        return HierarchyNode(NodeRef(Level.BLOCK, code), name, NodeRef(Level.DISTRICT, district_code))

    def register_school(
        self,
        udise: str,
        name: str,
        block_code: str,
        is_private: bool = False,
    ) -> SchoolInfo:
        """The school's district is taken from its block."""
        udise, name = _require(udise, "udise"), _require(name, "school_name")
        block_code = _require(block_code, "block_code")
        block = self.session.execute(
            select(Block).where(Block.code == block_code)
        ).scalar_one_or_none()
        if block is None:
            raise NodeNotFoundError(Level.BLOCK.value, block_code)

        school = self.session.execute(
            select(School).where(School.udise == udise)
        ).scalar_one_or_none()
        if school is None:
            school = School(
                udise=udise,
                name=name,
                block_code=block_code,
                district_code=block.district_code,
                is_private=is_private,
            )
            self.session.add(school)
            logger.info(
                "school_registered",
                extra={"udise": udise, "block_code": block_code, "is_private": is_private},
            )
        elif school.block_code != block_code or school.is_private != is_private:
            raise ValidationError(
                f"School {udise} is already registered under block {school.block_code}"
            )
        else:
            school.name = name
        self.session.flush()
        return SchoolInfo.from_model(school)

    def set_class_enrollment(self, udise: str, class_name: str, students: int) -> int:
        """Set (not add) the number of students in one class."""
        class_name = _require(class_name, "class_name")
        if not is_non_negative_quantity(students):
            raise InvalidQuantityError("students", students, minimum=0)
        self.selector.get_school(udise)

        row = self.session.execute(
            select(ClassEnrollment).where(
                ClassEnrollment.school_udise == udise,
                ClassEnrollment.class_name == class_name,
            )
        ).scalar_one_or_none()
        if row is None:
            row = ClassEnrollment(school_udise=udise, class_name=class_name, students=students)
            self.session.add(row)
        else:
            row.students = students
        self.session.flush()
        return students

    def remove_class_enrollment(self, udise: str, class_name: str) -> bool:
        row = self.session.execute(
            select(ClassEnrollment).where(
                ClassEnrollment.school_udise == udise,
                ClassEnrollment.class_name == class_name,
            )
        ).scalar_one_or_none()
        if row is None:
            return False
        self.session.delete(row)
        self.session.flush()
        return True
