"""
ReferenceDataLoader -- seeds districts and blocks from configuration.

Idempotent: running it twice leaves the same rows.  Input tuples come from
``textbook_config.bridges.hierarchy_seed``.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy.orm import Session

from textbook_kernel.domain.policy import FulfillmentPolicy
from textbook_kernel.logging_config import get_logger
from textbook_kernel.services.hierarchy_service import HierarchyService

logger = get_logger("services.reference_data")


class ReferenceDataLoader:

    def __init__(self, session: Session, policy: FulfillmentPolicy):
        self._hierarchy = HierarchyService(session, policy)

    def load(
        self,
        districts: Iterable[tuple[str, str]],
        blocks: Iterable[tuple[str, str, str]],
    ) -> tuple[int, int]:
        """
        Args:
            districts: (code, name) pairs.
            blocks: (code, name, district_code) triples.

        Returns:
            (district count, block count) processed.
        """
        district_count = 0
        for code, name in districts:
            self._hierarchy.register_district(code, name)
            district_count += 1

        block_count = 0
        for code, name, district_code in blocks:
            self._hierarchy.register_block(code, name, district_code)
            block_count += 1

        logger.info(
            "reference_data_loaded",
            extra={"district_count": district_count, "block_count": block_count},
        )
        return district_count, block_count
