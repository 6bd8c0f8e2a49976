"""Selectors for the CRM kernel (read side)."""

from crm_kernel.selectors.inventory_selector import InventorySelector

__all__ = [
    "InventorySelector",
]
