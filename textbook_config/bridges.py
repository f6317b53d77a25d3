"""
Config -> Kernel Bridges.

Functions that convert a TextbookConfig into kernel inputs.  These live in
textbook_config because the kernel must never import textbook_config.

Usage:
    from textbook_config import get_active_config
    from textbook_config.bridges import build_policy, hierarchy_seed

    config = get_active_config()
    policy = build_policy(config)
    districts, blocks = hierarchy_seed(config)
"""

from __future__ import annotations

from textbook_config.schema import TextbookConfig
from textbook_kernel.domain.hierarchy import Level
from textbook_kernel.domain.policy import FulfillmentPolicy
from textbook_kernel.domain.requisition import ApprovalChain
from textbook_kernel.exceptions import ConfigError


def build_approval_chain(config: TextbookConfig) -> ApprovalChain:
    try:
        return ApprovalChain(tuple(Level.parse(level) for level in config.approval_chain))
    except ValueError as exc:
        raise ConfigError(config.config_id, f"approval_chain: {exc}") from exc


def build_policy(config: TextbookConfig) -> FulfillmentPolicy:
    """Build the kernel's FulfillmentPolicy from a loaded configuration."""
    try:
        return FulfillmentPolicy(
            state_code=config.state.code,
            state_name=config.state.name,
            approval_chain=build_approval_chain(config),
            req_id_prefix=config.requisition.req_id_prefix,
            req_id_width=config.requisition.req_id_width,
            enforce_windows=config.requisition.enforce_windows,
            document_label=config.dispatch.document_label,
            sequence_width=config.dispatch.sequence_width,
            books_per_box=config.dispatch.books_per_box,
            books_per_packet=config.dispatch.books_per_packet,
            academic_year=config.dispatch.academic_year,
        )
    except ValueError as exc:
        raise ConfigError(config.config_id, str(exc)) from exc


def hierarchy_seed(
    config: TextbookConfig,
) -> tuple[list[tuple[str, str]], list[tuple[str, str, str]]]:
    """(code, name) districts and (code, name, district_code) blocks for ReferenceDataLoader."""
    districts = [(d.code, d.name) for d in config.districts]
    blocks = [(b.code, b.name, b.district_code) for b in config.blocks]
    return districts, blocks
