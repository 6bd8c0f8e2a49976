"""
crm_config -- single public entrypoint for CRM core configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component may read configuration
    files or environment variables directly.

Architecture position:
    Configuration -- sits above ``crm_kernel`` and below ``crm_services``.
    The kernel MUST NEVER import from ``crm_config``; values reach kernel
    code as constructor arguments.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``CRM_CONFIG_TRACE`` log entry with the config id, version and checksum
    (never secret values).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from crm_config.loader import load_yaml_file, parse_config
from crm_config.schema import (
    CrmConfig,
    DatabaseSettings,
    EncryptionSettings,
    LedgerSettings,
    WebhookSettings,
)
from crm_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

__all__ = [
    "CrmConfig",
    "DatabaseSettings",
    "EncryptionSettings",
    "LedgerSettings",
    "WebhookSettings",
    "config_checksum",
    "get_active_config",
]


def get_active_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> CrmConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to crm_config/defaults.yaml.
        env: Environment to resolve secrets from.  Defaults to os.environ.

    Returns:
        Frozen CrmConfig.

    Raises:
        FileNotFoundError: If the file does not exist.
        KeyError / ValueError: If the document is invalid.
    """
    path = config_path or _DEFAULT_CONFIG_PATH
    data = load_yaml_file(path)
    config = parse_config(data, os.environ if env is None else env)

    _logger.info(
        "CRM_CONFIG_TRACE",
        extra={
            "trace_type": "CRM_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "encryption_configured": config.encryption.configured,
        },
    )
    return config


def config_checksum(config_path: Path | None = None) -> str:
    """Deterministic checksum of a configuration file."""
    from crm_config.loader import compute_checksum

    return compute_checksum(load_yaml_file(config_path or _DEFAULT_CONFIG_PATH))
