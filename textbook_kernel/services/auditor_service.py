"""
AuditorService -- append-only audit trail.

Responsibility:
    Writes one AuditEvent per significant mutation with a SHA-256 hash of
    its canonical payload.

Architecture position:
    Kernel > Services.  Called by every write-side service inside the same
    transaction as the mutation it records, so an aborted operation leaves
    no audit row.

Invariants enforced:
    - Audit rows are only inserted, never updated or deleted.
    - payload_hash == hash_payload(payload).
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from textbook_kernel.domain.clock import Clock
from textbook_kernel.logging_config import get_logger
from textbook_kernel.models.audit_event import AuditAction, AuditEvent
from textbook_kernel.services.base import BaseService
from textbook_kernel.utils.hashing import hash_payload, to_canonical

logger = get_logger("services.auditor")


class AuditorService(BaseService[AuditEvent]):

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    def record(
        self,
        entity_type: str,
        entity_id: object,
        action: AuditAction,
        actor_id: str,
        payload: dict | None = None,
    ) -> AuditEvent:
        """Append one audit event and flush."""
        # Stored payload is exactly what was hashed (UUIDs, dates, enums as strings)
        body = to_canonical(payload)
        event = AuditEvent(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            actor_id=actor_id,
            occurred_at=self.clock.now(),
            payload=body,
            payload_hash=hash_payload(body),
        )
        self.session.add(event)
        self.session.flush()
        logger.debug(
            "audit_recorded",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
            },
        )
        return event

    def history(self, entity_type: str, entity_id: object) -> list[AuditEvent]:
        """Audit events for one entity, oldest first."""
        return list(
            self.session.execute(
                select(AuditEvent)
                .where(
                    AuditEvent.entity_type == entity_type,
                    AuditEvent.entity_id == str(entity_id),
                )
                .order_by(AuditEvent.occurred_at, AuditEvent.id)
            ).scalars()
        )
