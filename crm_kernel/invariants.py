"""
Kernel Invariants Contract.

These invariants are structural law for the stock ledger and the webhook
delivery log.  No configuration value may switch them off.

This module exists solely to declare these invariants explicitly. The
enforcement is distributed across StockLedgerService, the ORM immutability
listeners, and the webhook DeliveryRecorder.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    NO_OVERSELL = "no_oversell"
    """Stock never goes negative through a ledger operation.  Enforced by
    the preflight check and the compare-and-set UPDATE in
    StockLedgerService."""

    MOVEMENT_CONSISTENCY = "movement_consistency"
    """Every movement satisfies new_level - previous_level == quantity.
    Enforced by writing new_level only where the row still holds
    previous_level."""

    LEDGER_ATOMICITY = "ledger_atomicity"
    """All item updates and movements of one ledger operation commit
    together or not at all.  Enforced by the single caller-owned
    transaction and flush-only services."""

    APPEND_ONLY = "append_only"
    """Stock movements and webhook delivery records are never updated or
    deleted.  Enforced by crm_kernel.db.immutability."""

    PRICE_FREEZE = "price_freeze"
    """A movement's unit_price is the price at transaction time and never
    changes when the item price changes later."""

    CONTAINED_DELIVERY = "contained_delivery"
    """One webhook subscriber's failure never affects another subscriber
    or the domain transaction that raised the event."""


# All invariants as a frozenset for programmatic checks.
ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "crm_services",
    "crm_config",
)
