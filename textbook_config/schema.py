"""
TextbookConfig schema.

The human-authored configuration set, parsed from YAML by the loader.
Frozen dataclasses only; ``bridges`` turns these into kernel inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class StateConfig:
    code: str
    name: str


@dataclass(frozen=True)
class RequisitionConfig:
    req_id_prefix: str = "REQ"
    req_id_width: int = 4
    enforce_windows: bool = True


@dataclass(frozen=True)
class DispatchConfig:
    document_label: str = "TEXTBOOK"
    sequence_width: int = 5
    books_per_box: int = 40
    books_per_packet: int = 10
    academic_year: str = "2024-25"


@dataclass(frozen=True)
class ConcurrencyConfig:
    max_attempts: int = 5
    backoff_seconds: float = 0.05


@dataclass(frozen=True)
class DistrictSeed:
    code: str
    name: str


@dataclass(frozen=True)
class BlockSeed:
    code: str
    name: str
    district_code: str


@dataclass(frozen=True)
class TextbookConfig:
    """One configuration set, as loaded from a YAML file."""

    config_id: str
    version: int
    state: StateConfig
    approval_chain: tuple[str, ...] = ("BLOCK", "DISTRICT")
    requisition: RequisitionConfig = field(default_factory=RequisitionConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    districts: tuple[DistrictSeed, ...] = ()
    blocks: tuple[BlockSeed, ...] = ()
    checksum: str = ""
