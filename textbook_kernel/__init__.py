"""
Textbook Kernel

Requisition fulfillment and stock reconciliation for a state textbook
distribution hierarchy (State > District > Block > School), with:
- Non-negative per-node stock ledgers with a movement journal
- A configurable requisition approval chain
- All-or-nothing dispatch documents (challans)
- Reconciliation reports of requirement against dispatch and stock
"""

__version__ = "0.1.0"
