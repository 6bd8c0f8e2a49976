"""
Configuration schema.

Frozen dataclasses parsed from YAML by the loader.  Secret values are held
only after resolution from the environment and are excluded from repr.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = field(repr=False)
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class WebhookSettings:
    """Outgoing webhook delivery settings."""

    source: str = "Y-CRM"
    timeout_seconds: float = 30.0
    response_body_limit: int = 10000
    test_response_limit: int = 500

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError("webhooks.timeout_seconds must be positive")
        if self.response_body_limit < 0 or self.test_response_limit < 0:
            raise ValueError("webhook response limits cannot be negative")


@dataclass(frozen=True)
class LedgerSettings:
    sku_prefix: str = "SKU"
    low_stock_page_size: int = 50
    movement_page_size: int = 100


@dataclass(frozen=True)
class EncryptionSettings:
    key: str | None = field(default=None, repr=False)

    @property
    def configured(self) -> bool:
        return bool(self.key)


@dataclass(frozen=True)
class CrmConfig:
    """The complete runtime configuration."""

    config_id: str
    version: int
    checksum: str
    database: DatabaseSettings
    webhooks: WebhookSettings
    ledger: LedgerSettings
    encryption: EncryptionSettings
