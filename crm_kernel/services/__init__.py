"""Services for the CRM kernel (write side)."""

from crm_kernel.services.stock_ledger_service import StockLedgerService

__all__ = [
    "StockLedgerService",
]
