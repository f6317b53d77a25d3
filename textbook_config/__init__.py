"""
textbook_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  The kernel never reads configuration files;
    ``textbook_config.bridges`` translates the loaded set into a
    ``FulfillmentPolicy`` and hierarchy seed data.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``TEXTBOOK_CONFIG_TRACE`` log entry with the config id, version and
    checksum.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from textbook_config.loader import load_config
from textbook_config.schema import TextbookConfig

_logger = logging.getLogger("textbook_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
_DEFAULT_SET = "tripura"

CONFIG_PATH_ENV = "TEXTBOOK_CONFIG"


def get_active_config(path: Path | str | None = None) -> TextbookConfig:
    """The ONLY public configuration entrypoint.

    Resolution order: the ``path`` argument, the ``TEXTBOOK_CONFIG``
    environment variable, then the bundled Tripura set.

    Raises:
        ConfigError: the file is missing, malformed or fails validation.
    """
    if path is None:
        path = os.environ.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_DIR / _DEFAULT_SET / "config.yaml"
    config = load_config(Path(path))

    _logger.info(
        "TEXTBOOK_CONFIG_TRACE",
        extra={
            "trace_type": "TEXTBOOK_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "state_code": config.state.code,
            "approval_chain": list(config.approval_chain),
            "district_count": len(config.districts),
            "block_count": len(config.blocks),
        },
    )
    return config


__all__ = ["CONFIG_PATH_ENV", "TextbookConfig", "get_active_config"]
