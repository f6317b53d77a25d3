"""
FulfillmentPolicy -- the kernel-side view of configuration.

Responsibility:
    Carries every tunable the services read (state owner code, approval
    chain, reqId format, challan format, packaging sizes).  The kernel never
    reads configuration files; ``textbook_config.bridges`` builds this
    object from the active configuration.

Architecture position:
    Kernel > Domain -- pure value object, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from textbook_kernel.domain.hierarchy import Level, NodeRef
from textbook_kernel.domain.requisition import ApprovalChain


@dataclass(frozen=True)
class FulfillmentPolicy:
    state_code: str = "16"
    state_name: str = "Tripura"
    approval_chain: ApprovalChain = field(default_factory=ApprovalChain)
    req_id_prefix: str = "REQ"
    req_id_width: int = 4
    enforce_windows: bool = True
    document_label: str = "TEXTBOOK"
    sequence_width: int = 5
    books_per_box: int = 40
    books_per_packet: int = 10
    academic_year: str = "2024-25"

    def __post_init__(self) -> None:
        if not self.state_code:
            raise ValueError("state_code is required")
        if self.req_id_width < 1 or self.sequence_width < 1:
            raise ValueError("Identifier widths must be positive")
        if self.books_per_box < 1 or self.books_per_packet < 1:
            raise ValueError("Packaging sizes must be positive")

    @property
    def state_node(self) -> NodeRef:
        return NodeRef(Level.STATE, self.state_code)

    def format_req_id(self, value: int) -> str:
        """REQ0001 style identifier; widens past the padding instead of wrapping."""
        return f"{self.req_id_prefix}{value:0{self.req_id_width}d}"
