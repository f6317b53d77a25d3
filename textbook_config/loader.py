"""
Configuration Loader (``textbook_config.loader``).

Loads one YAML configuration set and parses it into the frozen
``textbook_config.schema`` dataclasses.  Runtime callers go through
``textbook_config.get_active_config()`` instead.

Failure modes
-------------
* Missing file, malformed YAML, missing required keys and wrong value
  types all raise ``ConfigError`` naming the file and the problem.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from textbook_config.schema import (
    BlockSeed,
    ConcurrencyConfig,
    DispatchConfig,
    DistrictSeed,
    RequisitionConfig,
    StateConfig,
    TextbookConfig,
)
from textbook_kernel.exceptions import ConfigError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file; an empty file yields an empty dict."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigError(str(path), "file not found") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(str(path), f"malformed YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(str(path), "top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the parsed document."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _section(data: dict[str, Any], key: str, source: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(source, f"'{key}' must be a mapping")
    return value


def _build(cls, data: dict[str, Any], key: str, source: str):
    try:
        return cls(**_section(data, key, source))
    except TypeError as exc:
        raise ConfigError(source, f"'{key}': {exc}") from exc


def parse_config(data: dict[str, Any], source: str = "<memory>") -> TextbookConfig:
    """Build a TextbookConfig from an already-loaded mapping."""
    try:
        state = StateConfig(code=str(data["state"]["code"]), name=str(data["state"]["name"]))
        config_id = str(data["config_id"])
        version = int(data.get("version", 1))
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigError(source, f"missing or invalid required key: {exc}") from exc

    chain = data.get("approval_chain", ["BLOCK", "DISTRICT"])
    if not isinstance(chain, list) or not chain:
        raise ConfigError(source, "'approval_chain' must be a non-empty list")

    hierarchy = _section(data, "hierarchy", source)
    try:
        districts = tuple(
            DistrictSeed(code=str(d["code"]), name=str(d["name"]))
            for d in hierarchy.get("districts", [])
        )
        blocks = tuple(
            BlockSeed(code=str(b["code"]), name=str(b["name"]), district_code=str(b["district"]))
            for b in hierarchy.get("blocks", [])
        )
    except (KeyError, TypeError) as exc:
        raise ConfigError(source, f"invalid hierarchy seed: {exc}") from exc

    known = {d.code for d in districts}
    for block in blocks:
        if block.district_code not in known:
            raise ConfigError(
                source, f"block {block.code} references unknown district {block.district_code}",
            )

    return TextbookConfig(
        config_id=config_id,
        version=version,
        state=state,
        approval_chain=tuple(str(level).upper() for level in chain),
        requisition=_build(RequisitionConfig, data, "requisition", source),
        dispatch=_build(DispatchConfig, data, "dispatch", source),
        concurrency=_build(ConcurrencyConfig, data, "concurrency", source),
        districts=districts,
        blocks=blocks,
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> TextbookConfig:
    return parse_config(load_yaml_file(path), str(path))
