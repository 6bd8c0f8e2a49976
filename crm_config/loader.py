"""
Configuration Loader (``crm_config.loader``).

Responsibility
--------------
Loads the YAML configuration file and parses it into the frozen
``crm_config.schema`` dataclasses.  The single public entry point for
runtime config is ``crm_config.get_active_config()``.

Invariants enforced
-------------------
* Secrets are resolved from environment variables named in YAML
  (``*_env`` keys) and never read from the file itself.
* ``compute_checksum`` produces a deterministic SHA-256 hash over the YAML
  data (variable names, not secret values).

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid values  -> ``ValueError`` from the schema.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Mapping

import yaml

from crm_config.schema import (
    CrmConfig,
    DatabaseSettings,
    EncryptionSettings,
    LedgerSettings,
    WebhookSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of data."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_database(data: dict[str, Any], env: Mapping[str, str]) -> DatabaseSettings:
    url_env = data.get("url_env")
    url = (env.get(url_env) if url_env else None) or data["default_url"]
    return DatabaseSettings(
        url=url,
        echo=bool(data.get("echo", False)),
        pool_size=int(data.get("pool_size", 20)),
        max_overflow=int(data.get("max_overflow", 10)),
        pool_timeout=int(data.get("pool_timeout", 30)),
        pool_recycle=int(data.get("pool_recycle", 1800)),
    )


def parse_webhooks(data: dict[str, Any]) -> WebhookSettings:
    return WebhookSettings(
        source=str(data.get("source", "Y-CRM")),
        timeout_seconds=float(data.get("timeout_seconds", 30)),
        response_body_limit=int(data.get("response_body_limit", 10000)),
        test_response_limit=int(data.get("test_response_limit", 500)),
    )


def parse_ledger(data: dict[str, Any]) -> LedgerSettings:
    return LedgerSettings(
        sku_prefix=str(data.get("sku_prefix", "SKU")),
        low_stock_page_size=int(data.get("low_stock_page_size", 50)),
        movement_page_size=int(data.get("movement_page_size", 100)),
    )


def parse_encryption(data: dict[str, Any], env: Mapping[str, str]) -> EncryptionSettings:
    key_env = data.get("key_env")
    return EncryptionSettings(key=(env.get(key_env) or None) if key_env else None)


def parse_config(data: dict[str, Any], env: Mapping[str, str]) -> CrmConfig:
    """
    Parse a full configuration document.

    Raises:
        KeyError: If a required key is missing.
        ValueError: If a value is out of range.
    """
    return CrmConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        checksum=compute_checksum(data),
        database=parse_database(data["database"], env),
        webhooks=parse_webhooks(data.get("webhooks") or {}),
        ledger=parse_ledger(data.get("ledger") or {}),
        encryption=parse_encryption(data.get("encryption") or {}, env),
    )
